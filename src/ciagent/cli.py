# cli.py
from __future__ import annotations

import os
import signal
import sys

import click

from ciagent.errors import CIAgentError, Cancelled, SecretsFoundError
from ciagent.ui.console import Console, get_console, set_console
from ciagent.upload.command import DRY_RUN_FORMATS, run_pipeline_upload
from ciagent.upload.config import (
    DEFAULT_ENDPOINT,
    DEFAULT_REDACTED_VARS,
    KNOWN_EXPERIMENTS,
    PipelineUploadConfig,
    UploadContext,
)
from ciagent.upload.inputs import read_inputs


def _split_list(ctx, param, value):
    """Accept repeated options as well as comma-separated values."""
    items = []
    for v in value or ():
        items.extend(part.strip() for part in v.split(",") if part.strip())
    return items


@click.group()
@click.option(
    "--debug",
    is_flag=True,
    default=False,
    envvar="BUILDKITE_AGENT_DEBUG",
    help="Enable debug mode (show stack traces and detailed output)",
)
@click.option(
    "--experiment",
    "experiments",
    multiple=True,
    envvar="BUILDKITE_AGENT_EXPERIMENT",
    callback=_split_list,
    help="Enable experimental features (repeatable or comma-separated)",
)
@click.pass_context
def cli(ctx, debug, experiments):
    """ciagent: CI agent pipeline tools."""
    console = Console(debug=debug)
    set_console(console)
    ctx.ensure_object(dict)
    ctx.obj["debug"] = debug
    ctx.obj["experiments"] = experiments


@cli.group()
def pipeline():
    """Make changes to the pipeline of the currently running build."""


@pipeline.command()
@click.argument("file_paths", nargs=-1, type=click.Path(dir_okay=False))
@click.option("--replace", is_flag=True, envvar="BUILDKITE_PIPELINE_REPLACE",
              help="Replace the rest of the existing pipeline with the steps uploaded")
@click.option("--job", default="", envvar="BUILDKITE_JOB_ID",
              help="The job that is making the changes to its build")
@click.option("--dry-run", is_flag=True, envvar="BUILDKITE_PIPELINE_UPLOAD_DRY_RUN",
              help="Echo the pipeline to stdout rather than uploading it")
@click.option("--format", "dry_run_format", default="json", show_default=True,
              type=click.Choice(DRY_RUN_FORMATS), envvar="BUILDKITE_PIPELINE_UPLOAD_DRY_RUN_FORMAT",
              help="Output format in dry-run mode")
@click.option("--no-interpolation", is_flag=True, envvar="BUILDKITE_PIPELINE_NO_INTERPOLATION",
              help="Skip variable interpolation into the pipeline prior to upload")
@click.option("--redacted-vars", multiple=True, default=DEFAULT_REDACTED_VARS, envvar="BUILDKITE_REDACTED_VARS", callback=_split_list,
              help="Pattern of environment variable names containing sensitive values (pass '' to disable)")
@click.option("--reject-secrets", is_flag=True, envvar="BUILDKITE_AGENT_PIPELINE_UPLOAD_REJECT_SECRETS",
              help="Fail the upload early if the pipeline contains secrets")
@click.option("--apply-if-changed/--no-apply-if-changed", default=True, show_default=True,
              envvar="BUILDKITE_AGENT_APPLY_IF_CHANGED",
              help="Evaluate `if_changed` against the git diff, skipping steps whose globs match nothing")
@click.option("--git-diff-base", default="", envvar="BUILDKITE_GIT_DIFF_BASE",
              help="Base ref for the if_changed diff (defaults to origin/<PR base or default branch>, then origin/main)")
@click.option("--fetch-diff-base", is_flag=True, envvar="BUILDKITE_FETCH_DIFF_BASE",
              help="git-fetch the diff base before computing the diff")
@click.option("--changed-files-path", default="", envvar="BUILDKITE_CHANGED_FILES_PATH",
              help="File listing changed files (newline-separated); skips running git")
@click.option("--endpoint", default=DEFAULT_ENDPOINT, show_default=True, envvar="BUILDKITE_AGENT_ENDPOINT",
              help="Agent API endpoint")
@click.option("--agent-access-token", default="", envvar="BUILDKITE_AGENT_ACCESS_TOKEN",
              help="Access token used to talk to the agent API")
@click.pass_context
def upload(ctx, file_paths, replace, job, dry_run, dry_run_format, no_interpolation, redacted_vars,
           reject_secrets, apply_if_changed, git_diff_base, fetch_diff_base, changed_files_path,
           endpoint, agent_access_token):
    """
    Upload a pipeline (YAML or JSON) to the running build.

    With no FILE_PATHS, reads stdin if it's piped, otherwise looks for a
    default pipeline file such as .buildkite/pipeline.yml.
    """
    console = get_console()
    obj = ctx.find_object(dict) or {}

    experiments = list(obj.get("experiments", []))
    for name in experiments:
        if name not in KNOWN_EXPERIMENTS:
            console.print_warning(f"Unknown experiment {name!r}")

    cfg = PipelineUploadConfig(
        file_paths=list(file_paths),
        replace=replace,
        job=job,
        dry_run=dry_run,
        dry_run_format=dry_run_format,
        no_interpolation=no_interpolation,
        redacted_vars=redacted_vars,
        reject_secrets=reject_secrets,
        apply_if_changed=apply_if_changed,
        git_diff_base=git_diff_base,
        fetch_diff_base=fetch_diff_base,
        changed_files_path=changed_files_path,
        endpoint=endpoint,
        agent_access_token=agent_access_token,
        debug=bool(obj.get("debug")),
        experiments=experiments,
    )
    upload_ctx = UploadContext(experiments=frozenset(experiments))

    def _cancel(signum, frame):
        console.print_info(f"\nReceived signal {signum}, cancelling upload...")
        upload_ctx.cancelled.set()

    signal.signal(signal.SIGTERM, _cancel)

    stdin = None
    if not file_paths and not sys.stdin.isatty():
        stdin = click.get_text_stream("stdin")

    try:
        inputs = read_inputs(console, cfg.file_paths, stdin)
        run_pipeline_upload(
            upload_ctx,
            cfg,
            console,
            inputs,
            dict(os.environ),
            out=click.get_text_stream("stdout"),
        )
    except KeyboardInterrupt:
        console.print_info("\nInterrupted by user")
        sys.exit(130)
    except Cancelled as e:
        console.print_error("Upload cancelled", str(e))
        sys.exit(1)
    except SecretsFoundError as e:
        console.print_error(
            "Pipeline contains secrets",
            str(e),
            suggestion="Reference the variable at runtime instead (e.g. $MY_SECRET), "
                       "or unset --reject-secrets.",
        )
        sys.exit(1)
    except CIAgentError as e:
        console.print_exception(e)
        sys.exit(1)


if __name__ == "__main__":
    cli()
