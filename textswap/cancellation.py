"""Cooperative cancellation shared by batch workers and fan-outs"""

import threading
from typing import Optional

from .exceptions import OperationCancelled


class CancellationToken:
    """
    Thread-safe cancel flag

    Workers poll raise_if_cancelled() between stages; the batch runner and
    callers call cancel(). A child token is cancelled whenever its parent is.
    """

    def __init__(self, parent: Optional["CancellationToken"] = None):
        self._event = threading.Event()
        self._parent = parent

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        if self._event.is_set():
            return True
        return self._parent is not None and self._parent.cancelled

    def raise_if_cancelled(self, stage: str = "") -> None:
        if self.cancelled:
            suffix = f" during {stage}" if stage else ""
            raise OperationCancelled(f"operation cancelled{suffix}")
