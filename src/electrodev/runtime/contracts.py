from __future__ import annotations

from enum import Enum
from typing import List


class PipelineScope(str, Enum):
    """The independently watched builds of a dev session."""

    RENDERER = "renderer"
    PRELOAD = "preload"
    MAIN = "main"


# Initial builds are awaited in this order before the runtime process launches;
# main consumes the preload bridge, so preload must be complete first.
INITIAL_BUILD_ORDER: List[PipelineScope] = [
    PipelineScope.PRELOAD,
    PipelineScope.MAIN,
]


class CoalescerState(str, Enum):
    """States of the restart coalescer."""

    IDLE = "idle"
    RESTARTING = "restarting"


class CoalescerEvent(str, Enum):
    """Events that drive restart coalescer transitions."""

    BEGIN_CYCLE = "begin_cycle"
    DRAIN = "drain"
    SETTLE = "settle"


class WatcherState(str, Enum):
    """Lifecycle states for the polling output watcher."""

    STOPPED = "stopped"
    WATCHING = "watching"
    DEBOUNCING = "debouncing"


class WatcherEvent(str, Enum):
    """Events that drive watcher state transitions."""

    START = "start"
    FILE_CHANGE = "file_change"
    DEBOUNCE_ELAPSED = "debounce_elapsed"
    STOP = "stop"


def transition_coalescer_state(current: CoalescerState, event: CoalescerEvent) -> CoalescerState:
    """Compute the next coalescer state for a given event.

    - idle --begin_cycle--> restarting
    - restarting --drain--> restarting (a request queued during the cycle)
    - restarting --settle--> idle

    Invalid transitions raise ValueError.
    """

    if current == CoalescerState.IDLE:
        if event == CoalescerEvent.BEGIN_CYCLE:
            return CoalescerState.RESTARTING
        raise ValueError(f"Invalid coalescer transition: {current} -> {event}")

    if current == CoalescerState.RESTARTING:
        if event == CoalescerEvent.DRAIN:
            return CoalescerState.RESTARTING
        if event == CoalescerEvent.SETTLE:
            return CoalescerState.IDLE
        raise ValueError(f"Invalid coalescer transition: {current} -> {event}")

    raise ValueError(f"Unknown coalescer state: {current}")


def transition_watcher_state(current: WatcherState, event: WatcherEvent) -> WatcherState:
    """Compute the next watcher state for a given event.

    Invalid transitions raise ValueError.
    """

    if event == WatcherEvent.STOP:
        return WatcherState.STOPPED

    if current == WatcherState.STOPPED:
        if event == WatcherEvent.START:
            return WatcherState.WATCHING
        raise ValueError(f"Invalid watcher transition: {current} -> {event}")

    if current in {WatcherState.WATCHING, WatcherState.DEBOUNCING}:
        if event == WatcherEvent.FILE_CHANGE:
            return WatcherState.DEBOUNCING
        if event == WatcherEvent.DEBOUNCE_ELAPSED and current == WatcherState.DEBOUNCING:
            return WatcherState.WATCHING
        raise ValueError(f"Invalid watcher transition: {current} -> {event}")

    raise ValueError(f"Unknown watcher state: {current}")
