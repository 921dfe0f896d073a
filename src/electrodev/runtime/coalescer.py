from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Awaitable, Callable, Optional

from electrodev.runtime.contracts import (
    CoalescerEvent,
    CoalescerState,
    transition_coalescer_state,
)
from electrodev.runtime.debounce import Debouncer

DEFAULT_RESTART_DEBOUNCE_MS = 80


@dataclass
class RestartRequest:
    """Single-slot mailbox for restarts requested while a cycle is in flight."""

    queued: bool = False
    reason: Optional[Path] = None
    in_flight: bool = False

    def merge(self, reason: Optional[Path]) -> None:
        self.queued = True
        if reason is not None:
            self.reason = reason

    def take(self) -> Optional[Path]:
        reason = self.reason
        self.queued = False
        self.reason = None
        return reason

    def clear(self) -> None:
        self.queued = False
        self.reason = None


class RestartCoalescer:
    """Debounces rebuild signals and serializes the resulting restart cycles.

    ``notify`` is the entry point for rebuild events: it merges the reason and
    re-arms the debounce timer. When the timer fires, ``request_restart`` runs a
    cycle, or queues into the mailbox if one is already running. Requests that
    arrive mid-cycle are drained by the running loop, so no request is dropped
    and at most one cycle runs at a time.
    """

    def __init__(
        self,
        restart: Callable[[Optional[Path]], Awaitable[object]],
        debounce_ms: int = DEFAULT_RESTART_DEBOUNCE_MS,
        on_error: Optional[Callable[[BaseException], None]] = None,
    ) -> None:
        self._restart = restart
        self.state = CoalescerState.IDLE
        self.cycles = 0
        self.closed = False
        self._mailbox = RestartRequest()
        self._pending = RestartRequest()
        self._debouncer = Debouncer(debounce_ms, on_error=on_error)

    @property
    def timer_pending(self) -> bool:
        return self._debouncer.pending

    def notify(self, reason: Optional[Path]) -> None:
        """Record a rebuild event and restart once activity settles."""
        if self.closed:
            return
        self._pending.merge(reason)
        self._debouncer.trigger(self._flush)

    async def _flush(self) -> None:
        if not self._pending.queued:
            return
        await self.request_restart(self._pending.take())

    async def request_restart(self, reason: Optional[Path]) -> None:
        if self.closed:
            return

        if self.state == CoalescerState.RESTARTING:
            self._mailbox.merge(reason)
            return

        self.state = transition_coalescer_state(self.state, CoalescerEvent.BEGIN_CYCLE)
        self._mailbox.in_flight = True
        try:
            next_reason = reason
            while True:
                await self._restart(next_reason)
                self.cycles += 1
                if self.closed or not self._mailbox.queued:
                    break
                next_reason = self._mailbox.take()
                self.state = transition_coalescer_state(self.state, CoalescerEvent.DRAIN)
        finally:
            self._mailbox.in_flight = False
            self.state = transition_coalescer_state(self.state, CoalescerEvent.SETTLE)

    def close(self) -> None:
        """Cancel the debounce timer and drop queued requests."""
        self.closed = True
        self._debouncer.cancel()
        self._pending.clear()
        self._mailbox.clear()
