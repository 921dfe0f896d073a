"""In-memory stand-ins for the build backend, runtime process, codegen and file watcher."""

import asyncio
from pathlib import Path
from typing import Callable, Dict, List, Optional

from electrodev.backend.base import WatchOptions
from electrodev.config.loader import LoadedConfig
from electrodev.config.models import DevSettings, ElectroConfig, RuntimeSettings, WindowSettings
from electrodev.runtime.contracts import PipelineScope
from electrodev.runtime.session import DevOptions, SessionController

KILL_EXIT_CODE = -15


class FakeProcess:
    def __init__(self, index: int, exit_delay: float = 0.0) -> None:
        self.index = index
        self.exit_delay = exit_delay
        self.exited = asyncio.get_running_loop().create_future()
        self.kills = 0
        self.on_kill: Optional[Callable[["FakeProcess"], None]] = None

    def kill(self) -> None:
        self.kills += 1
        if self.on_kill is not None:
            self.on_kill(self)
        if self.exited.done():
            return
        asyncio.get_running_loop().call_later(self.exit_delay, self.exit, KILL_EXIT_CODE)

    def exit(self, code: Optional[int]) -> None:
        if not self.exited.done():
            self.exited.set_result(code)


class FakeLauncher:
    def __init__(
        self,
        exit_delay: float = 0.0,
        events: Optional[List[str]] = None,
        hold_from: Optional[int] = None,
    ) -> None:
        self.exit_delay = exit_delay
        # Launches with index >= hold_from block until release() is called.
        self.hold_from = hold_from
        self._gate: Optional[asyncio.Event] = None
        self.events = events if events is not None else []
        self.processes: List[FakeProcess] = []
        self.calls: List[tuple] = []

    def release(self) -> None:
        self._held().set()

    def _held(self) -> asyncio.Event:
        if self._gate is None:
            self._gate = asyncio.Event()
        return self._gate

    @property
    def launches(self) -> int:
        return len(self.processes)

    async def __call__(self, entry: Path, env: Dict[str, str]) -> FakeProcess:
        self.calls.append((entry, dict(env)))
        if self.hold_from is not None and len(self.calls) > self.hold_from:
            await self._held().wait()
        self.events.append("launch")
        proc = FakeProcess(len(self.processes), exit_delay=self.exit_delay)
        self.processes.append(proc)
        return proc


class FakeBuild:
    def __init__(self, scope: PipelineScope, options: WatchOptions, events: List[str]) -> None:
        self.scope = scope
        self.options = options
        self.events = events
        self.closes = 0
        self._rebuild_callbacks = []
        self._error_callbacks = []

    def on_rebuild_complete(self, callback) -> None:
        self._rebuild_callbacks.append(callback)

    def on_build_error(self, callback) -> None:
        self._error_callbacks.append(callback)

    def complete(self, changed: Optional[Path] = None) -> None:
        self.events.append(f"built:{self.scope.value}")
        for callback in list(self._rebuild_callbacks):
            callback(changed)

    def fail(self, error: BaseException) -> None:
        for callback in list(self._error_callbacks):
            callback(error)

    def close(self) -> None:
        self.closes += 1


class FakeUiServer(FakeBuild):
    def __init__(self, options: WatchOptions, events: List[str]) -> None:
        super().__init__(PipelineScope.RENDERER, options, events)
        self.url = f"http://localhost:{options.port}"
        self.reloads = 0

    def broadcast_full_reload(self) -> None:
        self.reloads += 1


class FakeBackend:
    """Starts fake builds; the initial build of each scope completes after its delay (None: never)."""

    def __init__(
        self,
        delays: Optional[Dict[PipelineScope, Optional[float]]] = None,
        events: Optional[List[str]] = None,
        fail_on: Optional[PipelineScope] = None,
    ) -> None:
        self.delays = delays or {}
        self.events = events if events is not None else []
        self.fail_on = fail_on
        self.builds: Dict[PipelineScope, FakeBuild] = {}
        self.ui: Optional[FakeUiServer] = None
        self.started: List[PipelineScope] = []

    async def start_watch(self, options: WatchOptions) -> FakeBuild:
        self._check(options.scope)
        build = FakeBuild(options.scope, options, self.events)
        self.builds[options.scope] = build
        self.started.append(options.scope)
        self.events.append(f"start:{options.scope.value}")

        delay = self.delays.get(options.scope, 0.0)
        if delay is not None:
            asyncio.get_running_loop().call_later(delay, build.complete)
        return build

    async def start_ui_server(self, options: WatchOptions) -> FakeUiServer:
        self._check(PipelineScope.RENDERER)
        self.ui = FakeUiServer(options, self.events)
        self.started.append(PipelineScope.RENDERER)
        self.events.append("start:renderer")
        return self.ui

    def _check(self, scope: PipelineScope) -> None:
        if self.fail_on == scope:
            raise RuntimeError(f"{scope.value} backend exploded")


class FakeCodegen:
    def __init__(self, refresh_result: bool = False) -> None:
        self.refresh_result = refresh_result
        self.runs = 0
        self.refreshes = 0

    async def run(self, output_dir: Path, src_dir: Path) -> None:
        self.runs += 1

    async def refresh(self, output_dir: Path, src_dir: Path) -> bool:
        self.refreshes += 1
        return self.refresh_result


class FakeFileWatcher:
    def __init__(self) -> None:
        self.watched = set()
        self.unwatched = []
        self.listeners = []
        self.closed = False

    def watch(self, path: Path) -> None:
        self.watched.add(path)

    def unwatch(self, path: Path) -> None:
        self.watched.discard(path)
        self.unwatched.append(path)

    def on_change(self, callback) -> None:
        self.listeners.append(callback)

    def emit(self, path: Path) -> None:
        for listener in list(self.listeners):
            listener(path)

    def close(self) -> None:
        self.closed = True


def make_loaded(
    root: Path = Path("/app"),
    config_name: str = "electro.config.ts",
    windows=("main",),
    **dev,
) -> LoadedConfig:
    config_path = root / config_name
    config = ElectroConfig(
        runtime=RuntimeSettings(entry="src/main.ts", source=config_path),
        windows=[
            WindowSettings(name=name, entry=f"src/windows/{name}/index.html", source=config_path)
            for name in windows
        ],
        dev=DevSettings(**dev),
    )
    return LoadedConfig(config=config, config_path=config_path, root=root)


def make_controller(
    loaded: LoadedConfig,
    backend: FakeBackend,
    launcher: FakeLauncher,
    codegen: Optional[FakeCodegen] = None,
    file_watcher: Optional[FakeFileWatcher] = None,
    options: Optional[DevOptions] = None,
) -> SessionController:
    return SessionController(
        loaded.config_path,
        options,
        config_loader=lambda _path: loaded,
        backend_factory=lambda _loaded: backend,
        codegen_factory=lambda _loaded: codegen or FakeCodegen(),
        launcher_factory=lambda _root: launcher,
        file_watcher_factory=lambda _loaded: file_watcher if file_watcher is not None else FakeFileWatcher(),
        externals_resolver=lambda _root: ["electron"],
    )
