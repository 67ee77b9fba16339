"""Cooperative cancellation for in-flight exchanges."""

from __future__ import annotations

import asyncio
from typing import Awaitable, TypeVar

from .error_handler import ExchangeAborted

T = TypeVar("T")


class AbortHandle:
    """Cancellation token owned by a single exchange.

    Calling :meth:`abort` never interrupts work directly; suspension
    points wrapped with :meth:`run` observe the signal and raise
    :class:`ExchangeAborted` instead of returning.
    """

    def __init__(self) -> None:
        self._event = asyncio.Event()

    @property
    def aborted(self) -> bool:
        return self._event.is_set()

    def abort(self) -> None:
        self._event.set()

    async def run(self, awaitable: Awaitable[T]) -> T:
        """Await ``awaitable`` unless the handle is aborted first."""
        if self.aborted:
            if asyncio.iscoroutine(awaitable):
                awaitable.close()
            raise ExchangeAborted()
        task = asyncio.ensure_future(awaitable)
        waiter = asyncio.ensure_future(self._event.wait())
        try:
            done, _ = await asyncio.wait({task, waiter}, return_when=asyncio.FIRST_COMPLETED)
        except asyncio.CancelledError:
            task.cancel()
            raise
        finally:
            waiter.cancel()
        if task in done:
            return task.result()
        task.cancel()
        await asyncio.gather(task, return_exceptions=True)
        raise ExchangeAborted()
