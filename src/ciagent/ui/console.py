"""Console output formatting utilities for ciagent."""

from __future__ import annotations

import sys
from typing import List, Optional, TextIO


class Console:
    """
    Centralized console output formatting.

    Everything is written to stderr, so that stdout stays free for
    dry-run output that other tools may consume.
    """

    def __init__(self, debug: bool = False, stream: Optional[TextIO] = None):
        """
        Initialize console formatter.

        Args:
            debug: If True, show detailed output including stack traces
            stream: Where to write; defaults to sys.stderr at call time
        """
        self.debug = debug
        self._stream = stream

    @property
    def stream(self) -> TextIO:
        return self._stream if self._stream is not None else sys.stderr

    def _emit(self, line: str) -> None:
        print(line, file=self.stream)

    def print_info(self, message: str) -> None:
        """Print informational message."""
        self._emit(message)

    def print_warning(self, message: str) -> None:
        """Print a warning; the run continues."""
        self._emit(f"WARN: {message}")

    def print_error(
        self,
        title: str,
        message: str = "",
        details: Optional[List[str]] = None,
        suggestion: Optional[str] = None,
    ) -> None:
        """
        Print structured error message.

        Args:
            title: Error title
            message: Main error message
            details: Optional list of detail lines
            suggestion: Optional suggestion for user
        """
        self._emit(f"ERROR: {title}")
        if message:
            self._emit(message)
        if details:
            for detail in details:
                self._emit(f"  {detail}")
        if suggestion:
            self._emit(f"\n{suggestion}")

    def print_exception(self, exc: BaseException) -> None:
        """Print exception, with full traceback only in debug mode."""
        if self.debug:
            import traceback
            traceback.print_exception(type(exc), exc, exc.__traceback__, file=self.stream)
        else:
            self._emit(f"Error: {exc}")

    def print_debug(self, message: str) -> None:
        """Print debug message (only if debug mode enabled)."""
        if self.debug:
            self._emit(f"[DEBUG] {message}")

    def print_upload_complete(self, count: int, src: str) -> None:
        self._emit(f"Successfully parsed and uploaded pipeline #{count} from {src!r}")


# Global console instance (will be initialized by CLI)
_console: Optional[Console] = None


def get_console() -> Console:
    """Get the global console instance."""
    global _console
    if _console is None:
        _console = Console()
    return _console


def set_console(console: Console) -> None:
    """Set the global console instance."""
    global _console
    _console = console
