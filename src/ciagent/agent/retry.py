from __future__ import annotations

import threading
from typing import Callable, Optional, TypeVar

from ciagent.errors import Cancelled

T = TypeVar("T")


class Retrier:
    """
    Runs an operation until it succeeds, breaks, or runs out of attempts.

    The operation receives the retrier so it can call `break_()` for errors
    that will never succeed, or `set_next_interval()` when the server says
    how long to wait.
    """

    def __init__(
        self,
        max_attempts: int,
        interval: float,
        sleep: Optional[Callable[[float], None]] = None,
        cancelled: Optional[threading.Event] = None,
    ):
        """
        Args:
            max_attempts: Total attempts, including the first
            interval: Constant seconds to wait between attempts
            sleep: Sleep function; defaults to waiting on `cancelled`
            cancelled: Event that aborts the loop when set
        """
        self.max_attempts = max_attempts
        self.interval = interval
        self.attempt_count = 0
        self._sleep = sleep
        self._cancelled = cancelled or threading.Event()
        self._broken = False
        self._next_interval: Optional[float] = None

    def break_(self) -> None:
        """Stop after the current attempt, whatever it returns."""
        self._broken = True

    def set_next_interval(self, seconds: float) -> None:
        self._next_interval = seconds

    def next_interval(self) -> float:
        return self._next_interval if self._next_interval is not None else self.interval

    def __str__(self) -> str:
        if self._broken:
            return f"Attempt {self.attempt_count}/{self.max_attempts}, not retrying"
        if self.attempt_count >= self.max_attempts:
            return f"Attempt {self.attempt_count}/{self.max_attempts}, no more attempts"
        return f"Attempt {self.attempt_count}/{self.max_attempts} Retrying in {self.next_interval():g}s"

    def wait(self, seconds: float) -> None:
        """Sleep, returning early with Cancelled if the run is cancelled."""
        if self._sleep is not None:
            self._sleep(seconds)
            if self._cancelled.is_set():
                raise Cancelled("upload cancelled")
            return
        if self._cancelled.wait(seconds):
            raise Cancelled("upload cancelled")

    def run(self, operation: Callable[["Retrier"], T]) -> T:
        """
        Call `operation` until it returns.

        Raises:
            Cancelled: the cancellation event was set.
            Exception: the last error, once the loop breaks or attempts run out.
        """
        while True:
            if self._cancelled.is_set():
                raise Cancelled("upload cancelled")
            self.attempt_count += 1
            self._next_interval = None
            try:
                return operation(self)
            except Cancelled:
                raise
            except Exception:
                if self._broken or self.attempt_count >= self.max_attempts:
                    raise
            self.wait(self.next_interval())
