#!/usr/bin/env python3
"""Tests for the FIFO concurrency limiter."""

import asyncio

import pytest

from logfacets.concurrency import ConcurrencyLimiter


def test_peak_never_exceeds_limit():
    async def scenario():
        limiter = ConcurrencyLimiter(3)
        state = {'running': 0, 'peak': 0}

        async def job():
            state['running'] += 1
            state['peak'] = max(state['peak'], state['running'])
            await asyncio.sleep(0.01)
            state['running'] -= 1
            return True

        results = await asyncio.gather(*[limiter.run(job) for _ in range(10)])
        return state['peak'], results, limiter.active

    peak, results, active = asyncio.run(scenario())
    assert peak == 3
    assert results == [True] * 10
    assert active == 0


def test_waiters_admitted_in_order():
    async def scenario():
        limiter = ConcurrencyLimiter(1)
        order = []

        def job(i):
            async def fn():
                order.append(i)
                await asyncio.sleep(0)
            return fn

        await asyncio.gather(*[limiter.run(job(i)) for i in range(6)])
        return order

    assert asyncio.run(scenario()) == [0, 1, 2, 3, 4, 5]


def test_error_releases_slot():
    async def scenario():
        limiter = ConcurrencyLimiter(1)

        async def fail():
            raise RuntimeError("boom")

        async def ok():
            return 'ok'

        with pytest.raises(RuntimeError):
            await limiter.run(fail)
        return await limiter.run(ok), limiter.active

    assert asyncio.run(scenario()) == ('ok', 0)


def test_cancelled_waiter_is_skipped():
    async def scenario():
        limiter = ConcurrencyLimiter(1)
        gate = asyncio.Event()
        ran = []

        async def hold():
            await gate.wait()
            ran.append('hold')

        async def mark(name):
            ran.append(name)

        holder = asyncio.ensure_future(limiter.run(hold))
        await asyncio.sleep(0)
        waiter = asyncio.ensure_future(limiter.run(lambda: mark('cancelled')))
        follower = asyncio.ensure_future(limiter.run(lambda: mark('follower')))
        await asyncio.sleep(0)
        assert limiter.waiting == 2

        waiter.cancel()
        await asyncio.sleep(0)
        assert limiter.waiting == 1

        gate.set()
        await asyncio.gather(holder, follower)
        return ran, limiter.active

    ran, active = asyncio.run(scenario())
    assert ran == ['hold', 'follower']
    assert active == 0


def test_invalid_limit():
    with pytest.raises(ValueError):
        ConcurrencyLimiter(0)
