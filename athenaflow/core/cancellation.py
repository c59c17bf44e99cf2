# athenaflow/core/cancellation.py
"""
Cooperative cancellation shared by every suspension point in the pipeline.

One token is created by the caller and passed by reference into stream
reads, poll waits, log fetches and apply calls. Each of them checks the
token before and after suspending.
"""

import asyncio
import logging
from typing import Awaitable, Optional, TypeVar

from athenaflow.core.errors import OperationCancelled

logger = logging.getLogger(__name__)

T = TypeVar("T")


class CancellationToken:
    """Thin wrapper around an asyncio.Event with cancellation helpers."""

    def __init__(self) -> None:
        self._event = asyncio.Event()
        self.reason: Optional[str] = None

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self, reason: str = "cancelled by caller") -> None:
        if not self._event.is_set():
            self.reason = reason
            self._event.set()
            logger.info("Cancellation requested: %s", reason)

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise OperationCancelled(self.reason or "Operation cancelled")

    async def sleep(self, delay: float) -> None:
        """Sleep for `delay` seconds, waking early (and raising) on cancel."""
        self.raise_if_cancelled()
        try:
            await asyncio.wait_for(self._event.wait(), timeout=delay)
        except asyncio.TimeoutError:
            return
        self.raise_if_cancelled()

    async def wait_for(self, awaitable: Awaitable[T]) -> T:
        """
        Await `awaitable` unless the token fires first.

        The pending awaitable is cancelled when the token wins the race.
        """
        self.raise_if_cancelled()
        task = asyncio.ensure_future(awaitable)
        waiter = asyncio.ensure_future(self._event.wait())
        try:
            done, _ = await asyncio.wait(
                {task, waiter}, return_when=asyncio.FIRST_COMPLETED
            )
        finally:
            waiter.cancel()
        if task not in done:
            task.cancel()
            try:
                await task
            except (asyncio.CancelledError, Exception):
                pass
            self.raise_if_cancelled()
        self.raise_if_cancelled()
        return task.result()


def ensure_token(cancel: Optional[CancellationToken]) -> CancellationToken:
    """Return `cancel`, or a fresh token that is never cancelled."""
    return cancel if cancel is not None else CancellationToken()
