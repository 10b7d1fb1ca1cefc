"""
Cooperative cancellation for long-running searches.

A token is shared by every worker of a search; workers call
``raise_if_cancelled`` between units of work (grid rows, folds).
"""

import threading
import time
from typing import Optional

from utils.exceptions import SearchCancelled


class CancellationToken:
    """Thread-safe cancellation flag with an optional wall-clock deadline."""

    def __init__(self, deadline: Optional[float] = None):
        self._event = threading.Event()
        self._reason = ""
        self.deadline = deadline

    @classmethod
    def with_timeout(cls, seconds: Optional[float]) -> "CancellationToken":
        """Create a token that expires ``seconds`` from now (never, if None)."""
        if seconds is None:
            return cls()
        return cls(deadline=time.monotonic() + seconds)

    def cancel(self, reason: str = "cancelled by caller") -> None:
        self._reason = reason
        self._event.set()

    @property
    def cancelled(self) -> bool:
        if self._event.is_set():
            return True
        if self.deadline is not None and time.monotonic() >= self.deadline:
            self.cancel("deadline exceeded")
            return True
        return False

    @property
    def reason(self) -> str:
        return self._reason

    def raise_if_cancelled(self, where: str = "") -> None:
        if self.cancelled:
            suffix = f" ({where})" if where else ""
            raise SearchCancelled(f"Search cancelled: {self._reason}{suffix}")
