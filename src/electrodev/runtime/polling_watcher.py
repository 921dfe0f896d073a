from __future__ import annotations

import asyncio
from dataclasses import dataclass
from fnmatch import fnmatch
from pathlib import Path
from typing import Callable, Dict, List, Optional, Set

from electrodev.runtime.contracts import (
    WatcherEvent,
    WatcherState,
    transition_watcher_state,
)

DEFAULT_EXCLUDE_PATTERNS = ["node_modules/*", ".git/*", ".electro/*", "__pycache__/*"]


@dataclass(frozen=True)
class WatcherPollResult:
    """Result from one watcher poll cycle."""

    settled: bool
    changed_paths: List[str]


class PollingWatcher:
    """Polling-based directory watcher with include/exclude filters and debounce logic.

    ``poll`` reports ``settled`` once changes stop arriving for ``debounce_ms``,
    returning every path that changed during the burst.
    """

    def __init__(
        self,
        root_dir: Path,
        debounce_ms: int = 300,
        include_patterns: Optional[List[str]] = None,
        exclude_patterns: Optional[List[str]] = None,
    ) -> None:
        self.root_dir = root_dir
        self.debounce_ms = debounce_ms
        self.include_patterns = include_patterns or ["*"]
        self.exclude_patterns = DEFAULT_EXCLUDE_PATTERNS if exclude_patterns is None else exclude_patterns

        self.state: WatcherState = WatcherState.STOPPED
        self._snapshot: Dict[str, int] = {}
        self._pending_changes: Set[str] = set()
        self._last_change_at: Optional[float] = None

    def start(self) -> None:
        """Start watcher lifecycle and initialize file snapshot."""
        self.state = transition_watcher_state(self.state, WatcherEvent.START)
        self._snapshot = self._build_snapshot()

    def stop(self) -> None:
        """Stop watcher lifecycle."""
        self.state = transition_watcher_state(self.state, WatcherEvent.STOP)

    def poll(self, now: float) -> WatcherPollResult:
        """Execute one poll cycle and return whether the debounce window has elapsed."""
        if self.state == WatcherState.STOPPED:
            raise RuntimeError("PollingWatcher is not started. Call start() before poll().")

        current_snapshot = self._build_snapshot()
        changed_paths = self._detect_changes(self._snapshot, current_snapshot)
        self._snapshot = current_snapshot

        if changed_paths:
            self._pending_changes.update(changed_paths)
            self._last_change_at = now
            self.state = transition_watcher_state(self.state, WatcherEvent.FILE_CHANGE)
            return WatcherPollResult(settled=False, changed_paths=[])

        if self.state == WatcherState.DEBOUNCING and self._last_change_at is not None:
            debounce_seconds = self.debounce_ms / 1000.0
            if (now - self._last_change_at) >= debounce_seconds:
                self.state = transition_watcher_state(self.state, WatcherEvent.DEBOUNCE_ELAPSED)
                paths = sorted(self._pending_changes)
                self._pending_changes.clear()
                self._last_change_at = None
                return WatcherPollResult(settled=True, changed_paths=paths)

        return WatcherPollResult(settled=False, changed_paths=[])

    def tracked_paths(self) -> Set[str]:
        """Return current tracked relative paths from the latest snapshot."""
        return set(self._snapshot.keys())

    def _build_snapshot(self) -> Dict[str, int]:
        snapshot: Dict[str, int] = {}
        if not self.root_dir.exists():
            return snapshot

        for path in self.root_dir.rglob("*"):
            if not path.is_file():
                continue

            relative = path.relative_to(self.root_dir).as_posix()
            if not self._is_tracked_path(relative, path.name):
                continue

            try:
                snapshot[relative] = path.stat().st_mtime_ns
            except FileNotFoundError:
                continue

        return snapshot

    def _is_tracked_path(self, relative_path: str, filename: str) -> bool:
        included = any(
            fnmatch(relative_path, pattern) or fnmatch(filename, pattern)
            for pattern in self.include_patterns
        )
        if not included:
            return False

        excluded = any(
            fnmatch(relative_path, pattern) or fnmatch(filename, pattern)
            for pattern in self.exclude_patterns
        )
        return not excluded

    @staticmethod
    def _detect_changes(previous: Dict[str, int], current: Dict[str, int]) -> Set[str]:
        changes: Set[str] = set()

        previous_paths = set(previous.keys())
        current_paths = set(current.keys())

        changes.update(current_paths - previous_paths)
        changes.update(previous_paths - current_paths)

        for existing in previous_paths & current_paths:
            if previous[existing] != current[existing]:
                changes.add(existing)

        return changes


def _mtime(path: Path) -> Optional[int]:
    try:
        return path.stat().st_mtime_ns
    except OSError:
        return None


class PathWatcher:
    """Polls an explicit set of absolute file paths and reports changes per path."""

    def __init__(self, interval_ms: int = 100) -> None:
        self.interval_ms = interval_ms
        self._paths: Dict[Path, Optional[int]] = {}
        self._listeners: List[Callable[[Path], None]] = []
        self._task: Optional[asyncio.Task] = None
        self.closed = False

    def watch(self, path: Path) -> None:
        if self.closed:
            return
        self._paths[path] = _mtime(path)
        if self._task is None:
            self._task = asyncio.get_running_loop().create_task(self._poll_loop())

    def unwatch(self, path: Path) -> None:
        self._paths.pop(path, None)

    def on_change(self, callback: Callable[[Path], None]) -> None:
        self._listeners.append(callback)

    def watched_paths(self) -> Set[Path]:
        return set(self._paths)

    def check(self) -> List[Path]:
        """Run one poll pass and notify listeners; returns the changed paths."""
        changed: List[Path] = []
        for path, previous in list(self._paths.items()):
            current = _mtime(path)
            if current != previous:
                self._paths[path] = current
                changed.append(path)

        for path in changed:
            for listener in list(self._listeners):
                listener(path)
        return changed

    async def _poll_loop(self) -> None:
        interval_seconds = max(self.interval_ms / 1000.0, 0.01)
        while not self.closed:
            await asyncio.sleep(interval_seconds)
            self.check()

    def close(self) -> None:
        self.closed = True
        self._paths.clear()
        self._listeners.clear()
        if self._task is not None:
            self._task.cancel()
            self._task = None