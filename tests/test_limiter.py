import asyncio
import random

import pytest

from diamond_hands.limiter import ConcurrencyLimiter


def test_rejects_non_positive_limit():
    with pytest.raises(ValueError):
        ConcurrencyLimiter(0)


@pytest.mark.asyncio
async def test_bounds_in_flight_work_and_keeps_order():
    limiter = ConcurrencyLimiter(3)
    peak = 0

    async def worker(i):
        nonlocal peak
        peak = max(peak, limiter.active)
        await asyncio.sleep(random.uniform(0, 0.01))
        return i * 2

    results = await limiter.map(range(20), worker)

    assert results == [i * 2 for i in range(20)]
    assert peak <= 3
    assert limiter.active == 0


@pytest.mark.asyncio
async def test_failure_propagates_and_releases_slot():
    limiter = ConcurrencyLimiter(1)

    async def worker(i):
        await asyncio.sleep(0)
        if i == 2:
            raise ValueError("bad item")
        return i

    with pytest.raises(ValueError, match="bad item"):
        await limiter.map(range(5), worker)

    # the slot is free again afterwards
    assert await limiter.run(lambda: asyncio.sleep(0, result="again")) == "again"
