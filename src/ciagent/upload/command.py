from __future__ import annotations

import json
import subprocess
import sys
from typing import Callable, Dict, Iterator, List, Optional, TextIO, Tuple

import yaml

from ..agent.api_client import APIClient
from ..agent.models import PipelineChange
from ..agent.pipeline_uploader import PipelineUploader
from ..errors import ConfigError, InterpolationError, PipelineParseError
from ..git_facts import git
from ..pipeline.interpolate import interpolate_document
from ..pipeline.model import Pipeline, pipeline_from_obj
from ..pipeline.parser import iter_documents
from ..ui.console import Console
from .config import INTERPOLATION_PREFERS_RUNTIME_ENV, PipelineUploadConfig, UploadContext
from .if_changed import IfChangedApplicator, diff_base_from_env
from .inputs import PipelineInput
from .secrets import search_for_secrets

TRACE_CONTEXT_KEY = "BUILDKITE_TRACE_CONTEXT"

DRY_RUN_FORMATS = ("json", "yaml")


def resolve_commit(console: Console, environ: Dict[str, str]) -> None:
    """Replace BUILDKITE_COMMIT (which may be a branch or short sha) with the full sha."""
    ref = environ.get("BUILDKITE_COMMIT")
    if ref is None:
        return
    try:
        sha = git.rev_parse(ref)
    except (subprocess.CalledProcessError, OSError) as e:
        console.print_warning(f"Error running git rev-parse {ref!r}: {e}")
        return
    console.print_info(f"Updating BUILDKITE_COMMIT to {sha!r}")
    environ["BUILDKITE_COMMIT"] = sha


def parse_and_interpolate(
    ctx: UploadContext,
    cfg: PipelineUploadConfig,
    src: str,
    text: str,
    environ: Dict[str, str],
) -> Iterator[Tuple[Optional[Pipeline], Optional[Exception]]]:
    """
    Lazily parse (and unless disabled, interpolate) each document in `text`.

    Yields one (pipeline, None) or (None, error) per document. Nothing is
    decoded until the consumer asks for the next item.
    """
    prefer_runtime_env = ctx.experiment_enabled(INTERPOLATION_PREFERS_RUNTIME_ENV)

    for doc, err in iter_documents(text):
        if err is not None:
            yield None, PipelineParseError(f"pipeline parsing of {src!r} failed: {err}")
            continue

        if not cfg.no_interpolation:
            # Pass the trace context from our environment to the pipeline.
            tracing = environ.get(TRACE_CONTEXT_KEY)
            if tracing is not None and isinstance(doc, dict):
                env = doc.get("env")
                if not isinstance(env, dict):
                    env = {}
                doc["env"] = {**env, TRACE_CONTEXT_KEY: tracing}
            try:
                doc = interpolate_document(doc, environ, prefer_runtime_env)
            except InterpolationError as e:
                yield None, PipelineParseError(f"pipeline interpolation of {src!r} failed: {e}")
                continue

        try:
            pipeline = pipeline_from_obj(doc)
        except PipelineParseError as e:
            yield None, PipelineParseError(f"pipeline parsing of {src!r} failed: {e}")
            continue
        yield pipeline, None


def _dry_run_encoder(fmt: str, out: TextIO) -> Callable[[Pipeline], None]:
    if fmt == "json":
        def encode(p: Pipeline) -> None:
            out.write(json.dumps(p.to_dict(), indent=2) + "\n")
        return encode
    if fmt == "yaml":
        def encode(p: Pipeline) -> None:
            out.write(yaml.safe_dump(p.to_dict(), sort_keys=False, explicit_start=True))
        return encode
    raise ConfigError(f"unknown output format {fmt!r}")


def run_pipeline_upload(
    ctx: UploadContext,
    cfg: PipelineUploadConfig,
    console: Console,
    inputs: List[PipelineInput],
    environ: Dict[str, str],
    client: Optional[APIClient] = None,
    out: Optional[TextIO] = None,
    sleep: Optional[Callable[[float], None]] = None,
) -> int:
    """
    Parse, check, filter and upload every pipeline in `inputs`.

    Documents are handled strictly in order; the first error stops the run.
    In dry-run mode the processed pipelines are written to `out` instead
    of being uploaded.

    Returns:
        Number of pipelines processed.

    Raises:
        PipelineParseError, SecretsFoundError, ConfigError, PipelineUploadError
    """
    out = out if out is not None else sys.stdout
    dry_run_encode: Optional[Callable[[Pipeline], None]] = None
    if cfg.dry_run:
        dry_run_encode = _dry_run_encoder(cfg.dry_run_format, out)

    if not cfg.no_interpolation:
        resolve_commit(console, environ)

    # Secret detection uses the original environment; interpolation merges
    # the pipeline's env into a copy.
    secrets_environ = dict(environ)

    if_changed = IfChangedApplicator(
        enabled=cfg.apply_if_changed,
        diff_base=diff_base_from_env(cfg.git_diff_base, environ),
        changed_files_path=cfg.changed_files_path,
        fetch_diff_base=cfg.fetch_diff_base,
    )

    processed = 0
    for pipeline_input in inputs:
        count = 1
        for pipeline, err in parse_and_interpolate(ctx, cfg, pipeline_input.name, pipeline_input.text, environ):
            if err is not None:
                raise err
            assert pipeline is not None

            if cfg.redacted_vars:
                search_for_secrets(console, cfg, secrets_environ, pipeline, pipeline_input.name)

            # Apply or strip out `if_changed`, based on settings.
            if_changed.apply(console, pipeline.steps)

            processed += 1
            console.print_debug(
                f"Pipeline #{processed} from {pipeline_input.name!r} has {len(pipeline.steps)} top-level steps"
            )
            if dry_run_encode is not None:
                dry_run_encode(pipeline)
                continue

            if not cfg.job:
                raise ConfigError(
                    "missing job parameter. Usually this is set in the environment for a job via BUILDKITE_JOB_ID."
                )
            if not cfg.agent_access_token:
                raise ConfigError(
                    "missing agent-access-token parameter. Usually this is set in the environment "
                    "for a job via BUILDKITE_AGENT_ACCESS_TOKEN."
                )
            if client is None:
                client = APIClient(cfg.endpoint, cfg.agent_access_token)

            uploader = PipelineUploader(
                client=client,
                job_id=cfg.job,
                change=PipelineChange.for_pipeline(pipeline, pipeline_input.name, cfg.replace),
                ctx=ctx,
                attempts=cfg.upload_attempts,
                interval=cfg.upload_retry_interval,
                sleep=sleep,
            )
            uploader.upload(console)

            console.print_upload_complete(count, pipeline_input.name)
            count += 1

    return processed
