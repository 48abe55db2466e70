from __future__ import annotations

import asyncio
from typing import Awaitable, TypeVar

from app.errors import RequestCancelled

T = TypeVar("T")


class CancellationToken:
    """Cooperative cancellation signal shared by one inbound request.

    The route creates one token per request and hands it to the agent, which
    passes it to every tool call. Work checks it at call boundaries and races
    awaited network calls against it via `run`.
    """

    def __init__(self) -> None:
        self._event = asyncio.Event()
        self.reason: str | None = None

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self, reason: str = "cancelled") -> None:
        if not self._event.is_set():
            self.reason = reason
            self._event.set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise RequestCancelled(self.reason or "cancelled")

    async def run(self, awaitable: Awaitable[T]) -> T:
        """Await `awaitable`, abandoning it as soon as the token fires."""
        self.raise_if_cancelled()
        work = asyncio.ensure_future(awaitable)
        waiter = asyncio.ensure_future(self._event.wait())
        try:
            await asyncio.wait({work, waiter}, return_when=asyncio.FIRST_COMPLETED)
        except asyncio.CancelledError:
            work.cancel()
            raise
        finally:
            waiter.cancel()

        if work.done():
            return work.result()

        work.cancel()
        try:
            await work
        except asyncio.CancelledError:
            pass
        raise RequestCancelled(self.reason or "cancelled")
