import asyncio

import pytest

from electrodev.runtime.latch import OneShotLatch
from electrodev.utils.diagnostics import InitialBuildTimeoutError


def test_latch_releases_every_waiter_once_signaled():
    async def scenario():
        latch = OneShotLatch("preload")
        released = []

        async def waiter(name):
            await latch.wait()
            released.append(name)

        tasks = [asyncio.ensure_future(waiter(n)) for n in ("a", "b")]
        await asyncio.sleep(0)
        assert released == []

        assert latch.signal() is True
        await asyncio.gather(*tasks)
        return released

    assert sorted(asyncio.run(scenario())) == ["a", "b"]


def test_latch_signal_is_idempotent():
    async def scenario():
        latch = OneShotLatch("main")
        first = latch.signal()
        second = latch.signal()
        await latch.wait()
        return first, second, latch.signaled

    assert asyncio.run(scenario()) == (True, False, True)


def test_wait_after_signal_returns_immediately():
    async def scenario():
        latch = OneShotLatch("main")
        latch.signal()
        await latch.wait_with_timeout(1)

    asyncio.run(scenario())


def test_wait_with_timeout_names_the_pipeline():
    async def scenario():
        latch = OneShotLatch("preload")
        await latch.wait_with_timeout(20)

    with pytest.raises(InitialBuildTimeoutError) as exc_info:
        asyncio.run(scenario())

    assert exc_info.value.pipeline == "preload"
    assert exc_info.value.timeout_ms == 20
    assert "Initial preload build did not complete within 20ms" in str(exc_info.value)
    assert isinstance(exc_info.value, TimeoutError)
