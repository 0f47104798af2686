from __future__ import annotations

import subprocess
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

from ..errors import GitDiffError, GitError, GitLogError, GitMergeBaseError, GitRevParseError, GlobError
from ..git_facts import git
from ..pipeline.globs import Glob, compile_glob, match_any
from ..pipeline.model import GroupStep, Step
from ..ui.console import Console
from .config import DEFAULT_GIT_DIFF_BASE

IF_CHANGED_SKIPPED_MSG = "if_changed matched no unexcluded changed files in this build"


def _plural(n: int) -> str:
    return "file" if n == 1 else "files"


def _stderr(err: Exception) -> str:
    """Captured git stderr, or the OS error when git couldn't be run at all."""
    if isinstance(err, subprocess.CalledProcessError):
        return err.stderr or ""
    return str(err)


def read_changed_files_from_path(console: Console, path: str) -> List[str]:
    """
    Read a newline-separated list of changed files, ignoring blank lines.

    Raises:
        OSError: the file couldn't be read.
    """
    data = Path(path).read_text(encoding="utf-8")
    changed = [line for line in data.split("\n") if line.strip()]
    console.print_info(f"if_changed read {len(changed)} changed {_plural(len(changed))} from {path!r}")
    return changed


def gather_changed_files(console: Console, diff_base: str) -> List[str]:
    """
    Work out which files changed in this build using git.

    Normally the diff is taken against the merge-base of `diff_base` and HEAD.
    When the two are the same commit (typical for builds on the default
    branch), the diff falls back to HEAD's first parent.

    Raises:
        GitError: one of the git commands failed.
    """
    try:
        base_commit = git.rev_parse(diff_base)
    except (subprocess.CalledProcessError, OSError) as e:
        raise GitRevParseError(diff_base, _stderr(e)) from e
    try:
        head_commit = git.rev_parse("HEAD")
    except (subprocess.CalledProcessError, OSError) as e:
        raise GitRevParseError("HEAD", _stderr(e)) from e

    if base_commit == head_commit:
        console.print_warning(
            f"Applying if_changed conditions relative to the first parent of HEAD (because HEAD = {diff_base!r})"
        )
        console.print_warning(
            "If this build is intended to include more than one commit on this branch, if_changed may "
            "calculate an incomplete diff. You may need to adjust the --git-diff-base flag or "
            "BUILDKITE_GIT_DIFF_BASE env var to choose a different base commit for calculating diffs."
        )
        try:
            changed = git.first_parent_changed_files()
        except (subprocess.CalledProcessError, OSError) as e:
            raise GitLogError(_stderr(e)) from e
    else:
        try:
            mb = git.merge_base(diff_base, "HEAD")
        except (subprocess.CalledProcessError, OSError) as e:
            raise GitMergeBaseError(diff_base, _stderr(e)) from e
        console.print_info(
            f"Applying if_changed conditions relative to {mb!r} (the merge-base of {diff_base!r} and HEAD)"
        )
        try:
            changed = git.diff_name_only(mb)
        except (subprocess.CalledProcessError, OSError) as e:
            raise GitDiffError(mb, _stderr(e)) from e

    console.print_info(f"if_changed found {len(changed)} changed {_plural(len(changed))}")
    return changed


def if_changed_patterns(value: Any) -> List[Glob]:
    """
    Compile the string or list of strings found in an if_changed value.

    Raises:
        GlobError: the value has the wrong shape or a pattern is malformed.
    """
    if value is None:
        return []
    if isinstance(value, str):
        patterns = [value]
    elif isinstance(value, list):
        patterns = []
        for i, item in enumerate(value):
            if not isinstance(item, str):
                raise GlobError(f"at index {i}, the item had unsupported type {type(item).__name__}")
            patterns.append(item)
    else:
        raise GlobError(f"the value had unsupported type {type(value).__name__}")

    globs = []
    for pattern in patterns:
        try:
            globs.append(compile_glob(pattern))
        except GlobError as e:
            raise GlobError(f"while parsing glob pattern {pattern!r}: {e}") from e
    return globs


@dataclass
class IfChangedApplicator:
    """
    Applies `if_changed` as it appears within an uploaded pipeline.

    When enabled, a step whose if_changed globs match no changed file gets a
    `skip` key. Either way the if_changed key itself is removed, since the
    backend doesn't understand it.

    The changed files are gathered at most once per applicator, on the first
    step that needs them.
    """
    enabled: bool = True
    diff_base: str = DEFAULT_GIT_DIFF_BASE
    changed_files_path: str = ""
    fetch_diff_base: bool = False
    gathered: bool = False
    changed_paths: List[str] = field(default_factory=list)

    def apply(self, console: Console, steps: List[Step]) -> None:
        """Apply or strip `if_changed` on each step, recursing into groups."""
        for step in steps:
            skipped = False
            content = step.fields
            if content is not None:
                skipped = self._apply_to(console, content)

            if isinstance(step, GroupStep):
                if skipped:
                    # The whole group is skipped; children only need normalizing.
                    strip_if_changed(step.steps)
                else:
                    self.apply(console, step.steps)

    def _apply_to(self, console: Console, content: Dict[str, Any]) -> bool:
        """Process one field bag. Returns True if a skip was added."""
        value = content.pop("if_changed", None)
        if value is None or not self.enabled:
            return False

        if not self.gathered and not self._gather(console):
            return False

        include: List[Glob]
        exclude: List[Glob] = []
        if isinstance(value, dict):
            # Object form:
            #   include: required; string or list
            #   exclude: optional; string or list
            if "include" not in value:
                console.print_warning(
                    "The value for if_changed was a mapping, but it didn't have an `include` key. "
                    "The step will not be skipped."
                )
                return False
            try:
                include = if_changed_patterns(value["include"])
            except GlobError as e:
                console.print_warning(f"Couldn't parse if_changed.include patterns: {e}. The step will not be skipped.")
                return False
            try:
                exclude = if_changed_patterns(value.get("exclude"))
            except GlobError as e:
                console.print_warning(f"Couldn't parse if_changed.exclude patterns: {e}. The step will not be skipped.")
                return False
        else:
            try:
                include = if_changed_patterns(value)
            except GlobError as e:
                console.print_warning(f"Couldn't parse if_changed patterns: {e}. The step will not be skipped.")
                return False

        if self.should_run(include, exclude):
            return False
        content["skip"] = IF_CHANGED_SKIPPED_MSG
        return True

    def should_run(self, include: List[Glob], exclude: List[Glob]) -> bool:
        """True if some changed path matches an include pattern and no exclude pattern."""
        for path in self.changed_paths:
            if match_any(exclude, path):
                continue
            if match_any(include, path):
                return True
        return False

    def _gather(self, console: Console) -> bool:
        """
        Fill in changed_paths. On failure, log why and switch the applicator
        off so no step is skipped because of a broken diff.
        """
        try:
            if self.changed_files_path:
                try:
                    self.changed_paths = read_changed_files_from_path(console, self.changed_files_path)
                except OSError as e:
                    console.print_error(
                        "Couldn't read changed files",
                        f"Couldn't read changed files from {self.changed_files_path!r}, "
                        f"not skipping any pipeline steps: {e}",
                    )
                    self.enabled = False
                    return False
            else:
                if self.fetch_diff_base:
                    self._fetch(console)
                try:
                    self.changed_paths = gather_changed_files(console, self.diff_base)
                except GitError as e:
                    self._report_git_error(console, e)
                    self.enabled = False
                    return False
            return True
        finally:
            self.gathered = True

    def _fetch(self, console: Console) -> None:
        remote, _, branch = self.diff_base.partition("/")
        if not branch:
            remote, branch = "origin", self.diff_base
        try:
            git.fetch(remote, branch)
        except (subprocess.CalledProcessError, OSError) as e:
            console.print_warning(f"Couldn't fetch {self.diff_base!r}: {_stderr(e).strip()}")

    def _report_git_error(self, console: Console, err: GitError) -> None:
        details = []
        if err.stderr:
            details.append(f"git: {err.stderr.strip()}")

        suggestion: Optional[str] = None
        if isinstance(err, GitRevParseError):
            suggestion = f"This could be because {err.arg!r} might not be a commit in the repository."
        elif isinstance(err, GitMergeBaseError):
            suggestion = f"This could be because {err.diff_base!r} might not be a commit in the repository."
        elif isinstance(err, GitDiffError):
            suggestion = f"This could be because the merge-base that Git found, {err.merge_base!r}, might be invalid."
        if suggestion:
            suggestion += "\nYou may need to change the --git-diff-base flag or BUILDKITE_GIT_DIFF_BASE env var."

        console.print_error(
            "Couldn't determine git diff from upstream",
            f"Not skipping any pipeline steps: {err}",
            details=details,
            suggestion=suggestion,
        )


def strip_if_changed(steps: List[Step]) -> None:
    """Remove every `if_changed` key from steps, recursively."""
    for step in steps:
        if step.fields is not None:
            step.fields.pop("if_changed", None)
        if isinstance(step, GroupStep):
            strip_if_changed(step.steps)


def diff_base_from_env(flag_value: str, environ: Dict[str, str]) -> str:
    """
    Pick the base ref for if_changed diffs.

    First non-empty of: the flag, origin/$BUILDKITE_PULL_REQUEST_BASE_BRANCH,
    origin/$BUILDKITE_PIPELINE_DEFAULT_BRANCH, origin/main.
    """
    if flag_value:
        return flag_value
    for key in ("BUILDKITE_PULL_REQUEST_BASE_BRANCH", "BUILDKITE_PIPELINE_DEFAULT_BRANCH"):
        branch = environ.get(key, "")
        if branch:
            return f"origin/{branch}"
    return DEFAULT_GIT_DIFF_BASE
