from __future__ import annotations

import asyncio
import time
import weakref
from collections.abc import Awaitable
from typing import TypeVar

from .errors import OperationCancelled

T = TypeVar("T")


class CancellationToken:
    """
    Deadline plus explicit cancel flag, passed down through every provider call.

    A child token fires when its own deadline passes, when it is cancelled,
    or when any ancestor fires. Reasons are "timeout" for an elapsed
    deadline and whatever the caller passed to cancel() otherwise.
    """

    def __init__(
        self,
        deadline: float | None = None,
        parent: CancellationToken | None = None,
    ) -> None:
        if parent is not None and parent.deadline is not None:
            deadline = parent.deadline if deadline is None else min(deadline, parent.deadline)
        self._deadline = deadline
        self._event = asyncio.Event()
        self._reason: str | None = None
        self._children: weakref.WeakSet[CancellationToken] = weakref.WeakSet()

        if parent is not None:
            parent._children.add(self)
            if parent._reason is not None:
                self.cancel(parent._reason)

    @classmethod
    def with_timeout(cls, timeout: float | None) -> CancellationToken:
        if timeout is None:
            return cls()
        return cls(deadline=time.monotonic() + timeout)

    def child(self, timeout: float | None = None) -> CancellationToken:
        deadline = None if timeout is None else time.monotonic() + timeout
        return CancellationToken(deadline=deadline, parent=self)

    @property
    def deadline(self) -> float | None:
        return self._deadline

    @property
    def expired(self) -> bool:
        return self._deadline is not None and time.monotonic() >= self._deadline

    @property
    def cancelled(self) -> bool:
        return self._reason is not None or self.expired

    @property
    def reason(self) -> str | None:
        if self._reason is not None:
            return self._reason
        if self.expired:
            return "timeout"
        return None

    def remaining(self) -> float | None:
        """Seconds until the deadline, or None when there is none."""
        if self._deadline is None:
            return None
        return max(0.0, self._deadline - time.monotonic())

    def cancel(self, reason: str = "cancelled") -> None:
        if self._reason is not None:
            return
        self._reason = reason
        self._event.set()
        for child in list(self._children):
            child.cancel(reason)

    def check(self) -> None:
        if self.cancelled:
            raise OperationCancelled(self.reason or "cancelled")

    async def wait(self) -> str:
        """Block until the token fires and return the reason."""
        try:
            await asyncio.wait_for(self._event.wait(), timeout=self.remaining())
        except asyncio.TimeoutError:
            pass
        return self.reason or "timeout"

    async def guard(self, awaitable: Awaitable[T]) -> T:
        """
        Await `awaitable` unless the token fires first.
        On firing, the awaitable is cancelled and OperationCancelled raised.
        """
        if self.cancelled:
            if asyncio.iscoroutine(awaitable):
                awaitable.close()
            raise OperationCancelled(self.reason or "cancelled")
        task = asyncio.ensure_future(awaitable)
        waiter = asyncio.ensure_future(self.wait())
        try:
            done, _ = await asyncio.wait({task, waiter}, return_when=asyncio.FIRST_COMPLETED)
        except asyncio.CancelledError:
            task.cancel()
            waiter.cancel()
            raise

        if task in done:
            waiter.cancel()
            return task.result()

        task.cancel()
        raise OperationCancelled(self.reason or "timeout")
