from __future__ import annotations

from typing import Any, Callable, Iterator, List, Mapping, Set, Tuple

from ..errors import GlobError, SecretsFoundError
from ..pipeline.globs import Glob, compile_glob
from ..pipeline.interpolate import is_pure_substitution
from ..pipeline.model import CommandStep, GroupStep, Pipeline
from ..ui.console import Console
from .config import PipelineUploadConfig

# Shortest value considered a potential secret. If API_TOKEN is "none",
# treating "none" as a secret would do more harm than good.
REDACT_LENGTH_MIN = 6

Pair = Tuple[str, str]


def match_vars(patterns: List[str], pairs: List[Pair]) -> Tuple[List[Pair], List[str], List[str]]:
    """
    Filter env pairs down to those whose names match a redaction pattern.

    Returns:
        (matched, short, bad_patterns): pairs with values long enough to be
        treated as secrets, names of matching vars whose values are too short
        (empty values are not reported), and patterns that failed to compile.
    """
    globs: List[Glob] = []
    bad: List[str] = []
    for pattern in patterns:
        try:
            globs.append(compile_glob(pattern))
        except GlobError:
            bad.append(pattern)

    matched: List[Pair] = []
    short: List[str] = []
    for name, value in pairs:
        if not any(g.match(name) for g in globs):
            continue
        if len(value.encode("utf-8")) < REDACT_LENGTH_MIN:
            if value:
                short.append(name)
            continue
        matched.append((name, value))
    return matched, short, sorted(bad)


def all_env_vars(o: Any, f: Callable[[str, str], None]) -> None:
    """Visit env pairs declared in a pipeline, its command steps and any nested groups."""
    if isinstance(o, Pipeline):
        if o.env is not None:
            for k, v in o.env.items():
                f(k, v)
        for s in o.steps:
            all_env_vars(s, f)
    elif isinstance(o, CommandStep):
        for k, v in o.env.items():
            f(k, v)
    elif isinstance(o, GroupStep):
        for s in o.steps:
            all_env_vars(s, f)


def _strings(o: Any) -> Iterator[str]:
    if isinstance(o, str):
        yield o
    elif isinstance(o, dict):
        for k, v in o.items():
            if isinstance(k, str):
                yield k
            yield from _strings(v)
    elif isinstance(o, list):
        for v in o:
            yield from _strings(v)


def search_for_secrets(
    console: Console,
    cfg: PipelineUploadConfig,
    environ: Mapping[str, str],
    pipeline: Pipeline,
    src: str,
) -> None:
    """
    Look for values of redacted variables baked into a pipeline.

    Two sources are checked. Env vars declared in the pipeline itself whose
    names match a redacted pattern are secrets outright, unless the value is
    only a runtime reference such as "$RUNTIME_SECRET". Values of matching
    vars in `environ` are searched for anywhere in the pipeline.

    Raises:
        SecretsFoundError: secrets were found and cfg.reject_secrets is set.
    """
    found: Set[str] = set()
    short: Set[str] = set()

    declared: List[Pair] = []

    def collect(name: str, value: str) -> None:
        # MY_SECRET: $RUNTIME_SECRET is resolved when the job runs, not now.
        if is_pure_substitution(value):
            return
        declared.append((name, value))

    all_env_vars(pipeline, collect)

    matched, too_short, bad = match_vars(cfg.redacted_vars, declared)
    if bad:
        console.print_warning(f"Couldn't match environment variable names against redacted-vars: bad patterns: {bad}")
    short.update(too_short)
    found.update(name for name, _ in matched)

    runtime = [(k, v) for k, v in environ.items() if not is_pure_substitution(v)]
    matched, too_short, _ = match_vars(cfg.redacted_vars, runtime)
    short.update(too_short)

    haystack = list(_strings(pipeline.to_dict()))
    for name, value in matched:
        if any(value in s for s in haystack):
            found.add(name)

    if short:
        console.print_warning(
            f"Some variables have values below minimum length ({REDACT_LENGTH_MIN} bytes) "
            f"and will not be redacted: {', '.join(sorted(short))}"
        )

    if not found:
        return

    names = sorted(found)
    if cfg.reject_secrets:
        raise SecretsFoundError(src, names)

    console.print_warning(
        f"Pipeline {src!r} contains values interpolated from the following secret environment "
        f"variables: {names}, which could leak sensitive information into the build UI."
    )
    console.print_warning(
        "This pipeline will still be uploaded. Pass --reject-secrets (or set "
        "BUILDKITE_AGENT_PIPELINE_UPLOAD_REJECT_SECRETS) to make the upload fail instead."
    )
