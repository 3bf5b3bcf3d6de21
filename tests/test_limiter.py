import asyncio

import pytest

from abai_batch.core.batching.limiter import AcquireCancelled, ConcurrencyLimiter


@pytest.mark.anyio
async def test_limiter_never_exceeds_concurrency():
    limiter = ConcurrencyLimiter(concurrency=2)

    async def worker():
        permit = await limiter.acquire("openai")
        try:
            assert limiter.in_use <= 2
            await asyncio.sleep(0.01)
        finally:
            limiter.release(permit)

    await asyncio.gather(*(worker() for _ in range(10)))
    assert limiter.peak_in_use == 2
    assert limiter.in_use == 0


@pytest.mark.anyio
async def test_provider_limit_is_applied_on_top_of_global_limit():
    limiter = ConcurrencyLimiter(concurrency=5, provider_limits={"anthropic": 1})
    active = {"anthropic": 0}
    peak = {"anthropic": 0}

    async def worker():
        permit = await limiter.acquire("anthropic")
        active["anthropic"] += 1
        peak["anthropic"] = max(peak["anthropic"], active["anthropic"])
        await asyncio.sleep(0.005)
        active["anthropic"] -= 1
        limiter.release(permit)

    await asyncio.gather(*(worker() for _ in range(4)))
    assert peak["anthropic"] == 1


@pytest.mark.anyio
async def test_release_is_idempotent():
    limiter = ConcurrencyLimiter(concurrency=1)
    permit = await limiter.acquire()
    limiter.release(permit)
    limiter.release(permit)
    assert limiter.in_use == 0

    # The slot was returned exactly once
    first = await limiter.acquire()
    with pytest.raises(asyncio.TimeoutError):
        await asyncio.wait_for(limiter.acquire(), timeout=0.05)
    limiter.release(first)


@pytest.mark.anyio
async def test_cancel_aborts_waiting_and_future_acquires():
    limiter = ConcurrencyLimiter(concurrency=1)
    held = await limiter.acquire()

    waiter = asyncio.ensure_future(limiter.acquire())
    await asyncio.sleep(0.01)
    assert not waiter.done()

    limiter.cancel()
    with pytest.raises(AcquireCancelled):
        await waiter
    with pytest.raises(AcquireCancelled):
        await limiter.acquire()

    limiter.release(held)
    assert limiter.in_use == 0


def test_concurrency_is_clamped():
    assert ConcurrencyLimiter(concurrency=50).concurrency == 10
    assert ConcurrencyLimiter(concurrency=0).concurrency == 1
