"""Exception types raised by the pipeline upload engine."""

from __future__ import annotations

from typing import List, Optional


class CIAgentError(Exception):
    """Base class for all ciagent errors."""
    pass


class ConfigError(CIAgentError):
    """Raised when the command is missing required configuration."""
    pass


class PipelineParseError(CIAgentError):
    """Raised when a pipeline document can't be decoded or interpolated."""
    pass


class InterpolationError(CIAgentError):
    """Raised for malformed or failing ${...} expressions."""
    pass


class GlobError(CIAgentError):
    """Raised when an if_changed glob pattern can't be compiled."""
    pass


class SecretsFoundError(CIAgentError):
    """Raised when a pipeline embeds values of redacted variables."""

    def __init__(self, src: str, names: List[str]):
        self.src = src
        self.names = names
        super().__init__(
            f"pipeline {src!r} contains values interpolated from the following "
            f"secret environment variables: {names}, and cannot be uploaded"
        )


class APIError(CIAgentError):
    """Raised when API requests fail."""

    def __init__(self, message: str, status: Optional[int] = None):
        super().__init__(message)
        self.status = status


class PipelineUploadError(CIAgentError):
    """Raised when a pipeline could not be uploaded and accepted."""
    pass


class Cancelled(CIAgentError):
    """Raised when the upload context is cancelled while waiting."""
    pass


# ----------------------------------------------------------------------
# Git errors
# ----------------------------------------------------------------------

class GitError(CIAgentError):
    """A git command used to compute changed files failed."""

    def __init__(self, command: str, stderr: str = ""):
        self.command = command
        self.stderr = stderr
        super().__init__(command)

    def __str__(self) -> str:
        return f"{self.command}: exited non-zero"


class GitRevParseError(GitError):
    def __init__(self, arg: str, stderr: str = ""):
        self.arg = arg
        super().__init__(f"git rev-parse {arg!r}", stderr)


class GitMergeBaseError(GitError):
    def __init__(self, diff_base: str, stderr: str = ""):
        self.diff_base = diff_base
        super().__init__(f"git merge-base {diff_base!r} HEAD", stderr)


class GitDiffError(GitError):
    def __init__(self, merge_base: str, stderr: str = ""):
        self.merge_base = merge_base
        super().__init__(f"git diff --name-only {merge_base!r}", stderr)


class GitLogError(GitError):
    def __init__(self, stderr: str = ""):
        super().__init__('git log --first-parent -1 --name-only --pretty="format:"', stderr)
