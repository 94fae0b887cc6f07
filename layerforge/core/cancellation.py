"""Cooperative cancellation for build invocations."""

from __future__ import annotations

import threading

from layerforge.core.errors import BuildCancelledError


class CancellationToken:
    """Thread-safe cancellation flag.

    The planner checks it at every stage boundary; long-running stage
    processes poll it and terminate their child process when it fires.
    """

    def __init__(self) -> None:
        self._event = threading.Event()
        self._reason = ""

    def cancel(self, reason: str = "cancelled by caller") -> None:
        self._reason = reason
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    @property
    def reason(self) -> str:
        return self._reason

    def wait(self, timeout: float | None = None) -> bool:
        """Block up to *timeout* seconds; True if cancellation was requested."""
        return self._event.wait(timeout)

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise BuildCancelledError(f"Build cancelled: {self._reason}")
