from __future__ import annotations

import asyncio
import time
from typing import Awaitable, Optional, TypeVar

from ..errors import Cancelled

T = TypeVar("T")


class CancellationToken:
    """
    Cooperative cancellation for one pipeline invocation.

    `cancel()` may be called from any coroutine on the same loop. A deadline
    (seconds from now) turns a timeout into cancellation. Every external call
    goes through `guard()`, which races it against the token.
    """

    def __init__(self, timeout: Optional[float] = None) -> None:
        self._event: Optional[asyncio.Event] = None
        self._cancelled = False
        self.reason = ""
        self.deadline: Optional[float] = None
        if timeout is not None:
            self.deadline = time.monotonic() + float(timeout)

    def _ev(self) -> asyncio.Event:
        if self._event is None:
            self._event = asyncio.Event()
            if self._cancelled:
                self._event.set()
        return self._event

    def cancel(self, reason: str = "cancelled by caller") -> None:
        if self._cancelled:
            return
        self._cancelled = True
        self.reason = reason
        if self._event is not None:
            self._event.set()

    @property
    def cancelled(self) -> bool:
        if not self._cancelled and self.deadline is not None and time.monotonic() >= self.deadline:
            self.cancel("deadline exceeded")
        return self._cancelled

    def remaining(self) -> Optional[float]:
        if self.deadline is None:
            return None
        return max(0.0, self.deadline - time.monotonic())

    def raise_if_cancelled(self) -> None:
        if self.cancelled:
            raise Cancelled(self.reason)

    async def guard(self, aw: Awaitable[T]) -> T:
        """Await `aw`; abort it and raise Cancelled if the token fires first."""
        if self.cancelled:
            if asyncio.iscoroutine(aw):
                aw.close()
            raise Cancelled(self.reason)
        task = asyncio.ensure_future(aw)
        waiter = asyncio.ensure_future(self._ev().wait())
        try:
            done, _ = await asyncio.wait(
                {task, waiter},
                timeout=self.remaining(),
                return_when=asyncio.FIRST_COMPLETED,
            )
        except asyncio.CancelledError:
            task.cancel()
            raise
        finally:
            waiter.cancel()
        if task in done:
            return task.result()
        task.cancel()
        if not self._cancelled:
            self.cancel("deadline exceeded")
        raise Cancelled(self.reason)


def ensure_token(token: Optional[CancellationToken], timeout: Optional[float] = None) -> CancellationToken:
    if token is None:
        return CancellationToken(timeout=timeout)
    if timeout is not None and token.deadline is None:
        token.deadline = time.monotonic() + float(timeout)
    return token
