from __future__ import annotations

from pathlib import Path
from typing import Callable, Iterable, Protocol, Set

from electrodev.cli.formatter import OutputFormatter
from electrodev.runtime.debounce import Debouncer

DEFAULT_CONFIG_DEBOUNCE_MS = 300


class FileWatcher(Protocol):
    def watch(self, path: Path) -> None:
        ...

    def unwatch(self, path: Path) -> None:
        ...

    def on_change(self, callback: Callable[[Path], None]) -> None:
        ...

    def close(self) -> None:
        ...


class ConfigWatcher:
    """Triggers a whole-session reload when any config source file changes.

    Uses its own debounce window, longer than the restart coalescer's, because
    the resulting action tears down and recreates every pipeline.
    """

    def __init__(
        self,
        watcher: FileWatcher,
        paths: Iterable[Path],
        on_change: Callable[[], None],
        debounce_ms: int = DEFAULT_CONFIG_DEBOUNCE_MS,
    ) -> None:
        self._watcher = watcher
        self.paths: Set[Path] = set(paths)
        self._on_change = on_change
        self._debouncer = Debouncer(debounce_ms)
        self.attached = False
        self.closed = False

    @property
    def timer_pending(self) -> bool:
        return self._debouncer.pending

    def attach(self) -> None:
        if self.attached or self.closed:
            return
        self.attached = True
        for path in self.paths:
            self._watcher.watch(path)
        self._watcher.on_change(self._handle_change)

    def _handle_change(self, changed_path: Path) -> None:
        if self.closed or Path(changed_path) not in self.paths:
            return
        self._debouncer.trigger(self._fire)

    def _fire(self) -> None:
        if self.closed:
            return
        OutputFormatter.info("Config file changed, restarting...")
        self._on_change()

    def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        self._debouncer.cancel()
        if self.attached:
            for path in self.paths:
                self._watcher.unwatch(path)
        self.paths.clear()
