from __future__ import annotations

import threading
from dataclasses import dataclass, field
from typing import FrozenSet, List

# Experiment that lets runtime environment variables take precedence over
# the pipeline's own env block during interpolation.
INTERPOLATION_PREFERS_RUNTIME_ENV = "interpolation-prefers-runtime-env"

KNOWN_EXPERIMENTS = frozenset({INTERPOLATION_PREFERS_RUNTIME_ENV})

DEFAULT_REDACTED_VARS = [
    "*_PASSWORD",
    "*_SECRET",
    "*_TOKEN",
    "*_PRIVATE_KEY",
    "*_ACCESS_KEY",
    "*_SECRET_KEY",
    # Connection strings frequently contain passwords.
    "*_CONNECTION_STRING",
]

DEFAULT_GIT_DIFF_BASE = "origin/main"
DEFAULT_ENDPOINT = "https://agent.buildkite.com/v3"


@dataclass
class UploadContext:
    """
    State threaded through a whole upload run.

    `cancelled` is checked by every wait, so setting it (e.g. from a signal
    handler) stops retry loops promptly.
    """
    experiments: FrozenSet[str] = frozenset()
    cancelled: threading.Event = field(default_factory=threading.Event)

    def experiment_enabled(self, name: str) -> bool:
        return name in self.experiments

    def with_experiment(self, name: str) -> "UploadContext":
        return UploadContext(experiments=self.experiments | {name}, cancelled=self.cancelled)


@dataclass
class PipelineUploadConfig:
    """Options for `ciagent pipeline upload`."""
    file_paths: List[str] = field(default_factory=list)
    replace: bool = False
    job: str = ""
    dry_run: bool = False
    dry_run_format: str = "json"
    no_interpolation: bool = False
    redacted_vars: List[str] = field(default_factory=lambda: list(DEFAULT_REDACTED_VARS))
    reject_secrets: bool = False

    # if_changed processing
    apply_if_changed: bool = True
    git_diff_base: str = ""
    fetch_diff_base: bool = False
    changed_files_path: str = ""

    # API
    endpoint: str = DEFAULT_ENDPOINT
    agent_access_token: str = ""
    upload_attempts: int = 60
    upload_retry_interval: float = 5.0

    debug: bool = False
    experiments: List[str] = field(default_factory=list)
