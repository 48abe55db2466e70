from __future__ import annotations

import asyncio

import pytest

from app.errors import RequestCancelled
from app.services.cancellation import CancellationToken


@pytest.mark.asyncio
async def test_run_returns_result_when_not_cancelled():
    token = CancellationToken()

    async def work():
        await asyncio.sleep(0)
        return 42

    assert await token.run(work()) == 42


@pytest.mark.asyncio
async def test_run_abandons_work_when_token_fires():
    token = CancellationToken()
    work_cancelled = asyncio.Event()

    async def slow():
        try:
            await asyncio.sleep(10)
        except asyncio.CancelledError:
            work_cancelled.set()
            raise

    async def fire():
        await asyncio.sleep(0.01)
        token.cancel("client disconnected")

    asyncio.create_task(fire())
    with pytest.raises(RequestCancelled, match="client disconnected"):
        await token.run(slow())
    assert work_cancelled.is_set()


@pytest.mark.asyncio
async def test_cancelled_token_rejects_new_work():
    token = CancellationToken()
    token.cancel()
    assert token.cancelled

    coro = asyncio.sleep(0)
    with pytest.raises(RequestCancelled):
        await token.run(coro)
    coro.close()


def test_first_cancel_reason_wins():
    token = CancellationToken()
    token.cancel("first")
    token.cancel("second")
    with pytest.raises(RequestCancelled, match="first"):
        token.raise_if_cancelled()
