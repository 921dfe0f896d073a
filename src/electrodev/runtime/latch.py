from __future__ import annotations

import asyncio

from electrodev.utils.diagnostics import InitialBuildTimeoutError

DEFAULT_INITIAL_BUILD_TIMEOUT_MS = 10_000


class OneShotLatch:
    """Single-resolution signal used for one-time events such as "first build done"."""

    def __init__(self, name: str) -> None:
        self.name = name
        self._event = asyncio.Event()

    @property
    def signaled(self) -> bool:
        return self._event.is_set()

    def signal(self) -> bool:
        """Resolve all waiters. Returns False when the latch was already signaled."""
        if self._event.is_set():
            return False
        self._event.set()
        return True

    async def wait(self) -> None:
        await self._event.wait()

    async def wait_with_timeout(self, timeout_ms: int = DEFAULT_INITIAL_BUILD_TIMEOUT_MS) -> None:
        """Wait for the signal, raising InitialBuildTimeoutError after ``timeout_ms``."""
        try:
            await asyncio.wait_for(self._event.wait(), timeout=timeout_ms / 1000.0)
        except asyncio.TimeoutError as exc:
            raise InitialBuildTimeoutError(self.name, timeout_ms) from exc
