"""Session runtime primitives: latches, debouncing, restart coalescing and process supervision."""

from electrodev.runtime.coalescer import RestartCoalescer, RestartRequest
from electrodev.runtime.contracts import (
    INITIAL_BUILD_ORDER,
    CoalescerEvent,
    CoalescerState,
    PipelineScope,
    WatcherEvent,
    WatcherState,
    transition_coalescer_state,
    transition_watcher_state,
)
from electrodev.runtime.debounce import Debouncer
from electrodev.runtime.latch import OneShotLatch
from electrodev.runtime.supervisor import ManagedProcess, ProcessLauncher, ProcessSupervisor

__all__ = [
    "CoalescerEvent",
    "CoalescerState",
    "Debouncer",
    "INITIAL_BUILD_ORDER",
    "ManagedProcess",
    "OneShotLatch",
    "PipelineScope",
    "ProcessLauncher",
    "ProcessSupervisor",
    "RestartCoalescer",
    "RestartRequest",
    "WatcherEvent",
    "WatcherState",
    "transition_coalescer_state",
    "transition_watcher_state",
]
