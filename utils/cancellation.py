"""Cooperative cancellation for the conversation loop.

Cancellation is never preemptive. The loop checks the token at its
checkpoints (loop top, after a halt wait, after the reply wait) and every
wait that can block for long races against ``token.wait()`` so it returns
as soon as the token fires. A backend call already handed to a worker
thread cannot be stopped; the loop stops waiting for it and drops its
result.
"""

import asyncio
from typing import Awaitable, Optional, TypeVar

T = TypeVar("T")


class CancelledRun(Exception):
    """Raised at a checkpoint when the run has been cancelled."""

    def __init__(self, reason: str = "cancelled"):
        super().__init__(reason)
        self.reason = reason


class CancellationToken:
    """One-shot cancellation flag backed by an asyncio.Event."""

    def __init__(self):
        self._event = asyncio.Event()
        self.reason: Optional[str] = None

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self, reason: str = "cancelled") -> bool:
        """Set the token. Returns False if it was already set."""
        if self._event.is_set():
            return False
        self.reason = reason
        self._event.set()
        return True

    async def wait(self):
        await self._event.wait()

    def raise_if_cancelled(self):
        if self._event.is_set():
            raise CancelledRun(self.reason or "cancelled")


async def run_cancellable(awaitable: Awaitable[T], cancel_token: Optional[CancellationToken]) -> T:
    """
    Await ``awaitable`` unless the token fires first.

    When the token wins, the awaitable's task is cancelled and CancelledRun
    is raised. Work already handed to a worker thread keeps running in the
    background; its result is dropped.
    """
    if cancel_token is None:
        return await awaitable
    if cancel_token.cancelled:
        if asyncio.iscoroutine(awaitable):
            awaitable.close()
        raise CancelledRun(cancel_token.reason or "cancelled")

    work = asyncio.ensure_future(awaitable)
    waiter = asyncio.ensure_future(cancel_token.wait())
    try:
        await asyncio.wait({work, waiter}, return_when=asyncio.FIRST_COMPLETED)
    except asyncio.CancelledError:
        work.cancel()
        raise
    finally:
        waiter.cancel()
    if not work.done():
        work.cancel()
        raise CancelledRun(cancel_token.reason or "cancelled")
    return work.result()
