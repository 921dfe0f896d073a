from __future__ import annotations

import asyncio
import inspect
from typing import Any, Callable, Optional, Set


class Debouncer:
    """Cancel-then-reschedule timer: only the last ``trigger`` within ``delay_ms`` fires."""

    def __init__(
        self,
        delay_ms: int,
        on_error: Optional[Callable[[BaseException], None]] = None,
    ) -> None:
        self.delay_ms = delay_ms
        self.on_error = on_error
        self._handle: Optional[asyncio.TimerHandle] = None
        self._tasks: Set[asyncio.Task] = set()

    @property
    def pending(self) -> bool:
        return self._handle is not None

    def trigger(self, callback: Callable[[], Any]) -> None:
        self.cancel()
        loop = asyncio.get_running_loop()
        self._handle = loop.call_later(self.delay_ms / 1000.0, self._fire, callback)

    def cancel(self) -> None:
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None

    def _fire(self, callback: Callable[[], Any]) -> None:
        self._handle = None
        try:
            result = callback()
        except Exception as exc:
            self._report(exc)
            return

        if inspect.isawaitable(result):
            task = asyncio.ensure_future(result)
            self._tasks.add(task)
            task.add_done_callback(self._task_done)

    def _task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            self._report(exc)

    def _report(self, exc: BaseException) -> None:
        if self.on_error is None:
            raise exc
        self.on_error(exc)
