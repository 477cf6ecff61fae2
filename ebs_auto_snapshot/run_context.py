"""
Cancellation and deadlines shared by one run.

A RunContext is checked before every control-plane or ledger request. The
root context is cancelled by the CLI's signal handlers; each volume gets a
child context bounded by its own timeout, released when the volume is done.
"""
from __future__ import annotations

import threading
import time
from typing import Callable, Optional


class RunCancelled(Exception):
    """The run was cancelled from outside (signal, caller)."""


class DeadlineExceeded(Exception):
    """A context's deadline passed before the next request was issued."""


class RunContext:
    def __init__(
        self,
        deadline: Optional[float] = None,
        parent: Optional["RunContext"] = None,
        monotonic: Callable[[], float] = time.monotonic,
    ):
        self._deadline = deadline
        self._parent = parent
        self._monotonic = monotonic
        self._cancelled = threading.Event()

    def child(self, timeout: float) -> "RunContext":
        deadline = self._monotonic() + timeout
        if self._deadline is not None:
            deadline = min(deadline, self._deadline)
        return RunContext(deadline=deadline, parent=self, monotonic=self._monotonic)

    def cancel(self) -> None:
        self._cancelled.set()

    def cancelled(self) -> bool:
        if self._cancelled.is_set():
            return True
        return self._parent is not None and self._parent.cancelled()

    def check(self) -> None:
        if self.cancelled():
            raise RunCancelled("run cancelled")
        if self._deadline is not None and self._monotonic() >= self._deadline:
            raise DeadlineExceeded("deadline exceeded")
