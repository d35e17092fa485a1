"""
Cooperative cancellation token
"""
import asyncio
from contextlib import contextmanager
from typing import Iterator, Optional

from .errors import ReviewCancelled


class CancelToken:
    """
    Shared cancellation signal for one review operation

    The token is checked before every I/O boundary. While a task is bound
    (see `bind`), cancelling from another task also interrupts the network
    call that task is awaiting.
    """

    def __init__(self):
        self._cancelled = False
        self._task: Optional[asyncio.Task] = None

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def cancel(self) -> None:
        if self._cancelled:
            return
        self._cancelled = True

        task = self._task
        # The bound task itself sees the flag at its next check
        if task is not None and not task.done() and task is not _current_task():
            task.cancel()

    def raise_if_cancelled(self) -> None:
        if self._cancelled:
            raise ReviewCancelled()

    @contextmanager
    def bind(self) -> Iterator["CancelToken"]:
        """
        Attach the current task for the duration of one network operation

        An asyncio.CancelledError caused by this token is turned into
        ReviewCancelled; any other cancellation propagates untouched.
        """
        task = asyncio.current_task()
        self._task = task
        try:
            yield self
        except asyncio.CancelledError:
            if not self._cancelled or task is None:
                raise
            task.uncancel()
            raise ReviewCancelled() from None
        finally:
            self._task = None


def _current_task() -> Optional[asyncio.Task]:
    try:
        return asyncio.current_task()
    except RuntimeError:
        return None
