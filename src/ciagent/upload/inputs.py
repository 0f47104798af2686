from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, TextIO

from ..errors import ConfigError
from ..ui.console import Console

DEFAULT_PIPELINE_PATHS = [
    "buildkite.yml",
    "buildkite.yaml",
    "buildkite.json",
    ".buildkite/pipeline.yml",
    ".buildkite/pipeline.yaml",
    ".buildkite/pipeline.json",
    "buildkite/pipeline.yml",
    "buildkite/pipeline.yaml",
    "buildkite/pipeline.json",
]


@dataclass
class PipelineInput:
    """Raw pipeline text and the name it's reported under."""
    name: str
    text: str


def default_pipeline_path(root: Path = Path(".")) -> Path:
    """
    Find the one default pipeline file under `root`.

    Raises:
        ConfigError: none, or more than one, of the default paths exist.
    """
    exists = [p for p in DEFAULT_PIPELINE_PATHS if (root / p).is_file()]
    if len(exists) > 1:
        raise ConfigError(
            f"found multiple configuration files: {', '.join(exists)}. "
            "Please only have 1 configuration file present."
        )
    if not exists:
        raise ConfigError(
            "could not find a default pipeline configuration file. "
            "See `ciagent pipeline upload --help` for more information."
        )
    return root / exists[0]


def _read_file(path: Path) -> str:
    try:
        text = path.read_text(encoding="utf-8")
    except OSError as e:
        raise ConfigError(f"failed to read file {str(path)!r}: {e}") from e
    if not text:
        raise ConfigError(f"pipeline file {str(path)!r} is empty")
    return text


def read_inputs(
    console: Console,
    file_paths: List[str],
    stdin: Optional[TextIO] = None,
    root: Path = Path("."),
) -> List[PipelineInput]:
    """
    Collect pipeline inputs: explicit files, else stdin, else the default file.

    Args:
        console: Where progress is reported
        file_paths: Paths given on the command line
        stdin: A readable stdin (None when stdin is a terminal)
        root: Directory searched for default pipeline files
    """
    if file_paths:
        console.print_info(f"Reading pipeline configs from {file_paths!r}")
        return [PipelineInput(name=Path(p).name, text=_read_file(Path(p))) for p in file_paths]

    if stdin is not None:
        console.print_info("Reading pipeline config from STDIN")
        return [PipelineInput(name="(stdin)", text=stdin.read())]

    console.print_info("Searching for pipeline config...")
    found = default_pipeline_path(root)
    console.print_info(f"Found config file {str(found.relative_to(root))!r}")
    return [PipelineInput(name=found.name, text=_read_file(found))]
