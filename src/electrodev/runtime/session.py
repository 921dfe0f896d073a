from __future__ import annotations

import asyncio
import inspect
import json
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, List, Optional, Set

from pydantic import BaseModel, Field

from electrodev.backend.base import BuildBackend, Codegen, UiServer, WatchOptions
from electrodev.backend.commands import CommandBuildBackend, CommandCodegen
from electrodev.cli.formatter import OutputFormatter, SessionMeta, WindowMeta, start_timer
from electrodev.config.loader import LoadedConfig, load_config
from electrodev.runtime.coalescer import RestartCoalescer
from electrodev.runtime.config_watcher import ConfigWatcher, FileWatcher
from electrodev.runtime.contracts import INITIAL_BUILD_ORDER, PipelineScope
from electrodev.runtime.externals import resolve_externals
from electrodev.runtime.launcher import create_runtime_launcher
from electrodev.runtime.pipeline import PipelineWatcher
from electrodev.runtime.polling_watcher import PathWatcher
from electrodev.runtime.supervisor import ProcessLauncher, ProcessSupervisor


@dataclass
class Session:
    """In-memory state of one dev session; cleared on stop()."""

    config_source_paths: Set[Path] = field(default_factory=set)
    output_dir: Optional[Path] = None
    root: Optional[Path] = None
    renderer_only: bool = False
    cleaned_up: bool = False
    shutting_down: bool = False

    def clear(self) -> None:
        self.config_source_paths = set()
        self.output_dir = None
        self.root = None


class DevOptions(BaseModel):
    """Options supplied by the `dev` command."""

    log_level: Optional[str] = None
    clear_screen: bool = False
    renderer_only: bool = False
    sourcemap: Optional[str] = None
    out_dir: Optional[str] = None
    # Extra child process environment (debugger flags and friends).
    env: Dict[str, str] = Field(default_factory=dict)


def crash_exit_status(code: Optional[int]) -> int:
    """Map a child exit code to a process exit status; signal deaths follow the shell 128+N rule."""
    if not code:
        return 1
    if code < 0:
        return 128 - code
    return code


def _default_backend(loaded: LoadedConfig) -> BuildBackend:
    return CommandBuildBackend(loaded.config.build, interval_ms=loaded.config.dev.watch_interval_ms)


def _default_codegen(loaded: LoadedConfig) -> Codegen:
    return CommandCodegen(loaded.config.build.codegen, loaded.root)


def _default_file_watcher(loaded: LoadedConfig) -> FileWatcher:
    return PathWatcher(interval_ms=loaded.config.dev.watch_interval_ms)


class SessionController:
    """Sequences a dev session: codegen, pipelines, runtime process and reloads.

    Collaborators are created through factories so tests can substitute the
    build backend, process launcher, codegen and file watcher.
    """

    def __init__(
        self,
        config_path: Path,
        options: Optional[DevOptions] = None,
        *,
        config_loader: Callable[[Path], LoadedConfig] = load_config,
        backend_factory: Callable[[LoadedConfig], BuildBackend] = _default_backend,
        codegen_factory: Callable[[LoadedConfig], Codegen] = _default_codegen,
        launcher_factory: Callable[[Path], ProcessLauncher] = create_runtime_launcher,
        file_watcher_factory: Callable[[LoadedConfig], FileWatcher] = _default_file_watcher,
        externals_resolver: Callable[[Path], List[str]] = resolve_externals,
    ) -> None:
        self.config_path = Path(config_path)
        self.options = options or DevOptions()
        self.session = Session(renderer_only=self.options.renderer_only)

        self._config_loader = config_loader
        self._backend_factory = backend_factory
        self._codegen_factory = codegen_factory
        self._launcher_factory = launcher_factory
        self._file_watcher_factory = file_watcher_factory
        self._externals_resolver = externals_resolver

        self.loaded: Optional[LoadedConfig] = None
        self.backend: Optional[BuildBackend] = None
        self.codegen: Optional[Codegen] = None
        self.supervisor: Optional[ProcessSupervisor] = None
        self.coalescer: Optional[RestartCoalescer] = None
        self.config_watcher: Optional[ConfigWatcher] = None
        self.pipelines: Dict[PipelineScope, PipelineWatcher] = {}
        self._file_watcher: Optional[FileWatcher] = None
        self._on_restart: Optional[Callable[[], None]] = None
        self._on_exit: Optional[Callable[[int], None]] = None
        self._tasks: Set[asyncio.Task] = set()
        self._rebuild_lock = asyncio.Lock()

    # ── Public API ──────────────────────────────────────────

    def set_on_restart(self, fn: Callable[[], None]) -> None:
        """Register the callback that recreates the session after a config change."""
        self._on_restart = fn

    def set_on_exit(self, fn: Callable[[int], None]) -> None:
        """Register the callback receiving the exit status when the session terminates itself."""
        self._on_exit = fn

    async def start(self) -> None:
        self.session.cleaned_up = False
        self.session.shutting_down = False

        if self.options.log_level:
            OutputFormatter.set_log_level(self.options.log_level)

        total_timer = start_timer()

        loaded = await self._run_step("config", lambda: self._config_loader(self.config_path))
        self.loaded = loaded
        config = loaded.config
        out_dir = self.options.out_dir or config.dev.out_dir
        self.session.root = loaded.root
        self.session.output_dir = (loaded.root / out_dir).resolve()
        self.session.config_source_paths = loaded.source_paths()
        OutputFormatter.print_diagnostics(loaded.warnings)

        self.backend = self._backend_factory(loaded)
        self.codegen = self._codegen_factory(loaded)
        self._file_watcher = self._file_watcher_factory(loaded)
        OutputFormatter.session(self._session_meta())

        await self._run_step("codegen", lambda: self.codegen.run(self.session.output_dir, self._src_dir()))

        if config.windows:
            await self._run_step("renderer", self._start_renderer)

        if self.session.renderer_only:
            OutputFormatter.note("Renderer-only mode: skipping main, preload and Electron")
            OutputFormatter.footer(f"Ready in {total_timer()}", self._renderer_url())
            self._attach_config_watcher()
            return

        externals = self._externals_resolver(loaded.root)

        if config.windows:
            await self._run_step("preload", lambda: self._start_pipeline(PipelineScope.PRELOAD, externals))
        await self._run_step("main", lambda: self._start_pipeline(PipelineScope.MAIN, externals))

        for scope in INITIAL_BUILD_ORDER:
            watcher = self.pipelines.get(scope)
            if watcher is None:
                continue
            await self._run_step(
                f"{scope.value} build",
                lambda w=watcher: w.wait_for_initial_build(config.dev.initial_build_timeout_ms),
            )

        self.supervisor = ProcessSupervisor(
            self._launcher_factory(loaded.root),
            self.session,
            on_crash=self._handle_crash,
            root=loaded.root,
        )
        self.coalescer = RestartCoalescer(
            self.supervisor.restart,
            debounce_ms=config.dev.restart_debounce_ms,
            on_error=self._handle_restart_failure,
        )
        await self._run_step("electron", lambda: self.supervisor.launch(self._main_output(), self._runtime_env()))

        OutputFormatter.footer(f"Ready in {total_timer()}", self._renderer_url())
        self._attach_config_watcher()

    def stop(self) -> None:
        """Clean shutdown; idempotent and safe to call from any callback."""
        if self.session.cleaned_up:
            return
        self.session.cleaned_up = True
        self.session.shutting_down = True

        if self.config_watcher is not None:
            self.config_watcher.close()
            self.config_watcher = None
        if self._file_watcher is not None:
            self._file_watcher.close()
        self._file_watcher = None

        if self.coalescer is not None:
            self.coalescer.close()

        for scope in (PipelineScope.MAIN, PipelineScope.PRELOAD, PipelineScope.RENDERER):
            watcher = self.pipelines.pop(scope, None)
            if watcher is not None:
                watcher.stop()

        if self.supervisor is not None:
            self.supervisor.stop()

        for task in list(self._tasks):
            task.cancel()
        self._tasks.clear()

        self.session.clear()

    # ── Startup steps ───────────────────────────────────────

    async def _run_step(self, label: str, action: Callable[[], Any]) -> Any:
        timer = start_timer()
        try:
            result = action()
            if inspect.isawaitable(result):
                result = await result
        except Exception as exc:
            OutputFormatter.step_fail(label, str(exc))
            raise
        OutputFormatter.step(label, timer())
        return result

    async def _start_renderer(self) -> None:
        config = self.loaded.config
        watcher = PipelineWatcher(PipelineScope.RENDERER, self.backend, self._route_rebuild)
        self.pipelines[PipelineScope.RENDERER] = watcher
        handle = await watcher.start(
            WatchOptions(
                scope=PipelineScope.RENDERER,
                root=self.loaded.root,
                entries={w.name: w.entry_path() for w in config.windows},
                out_dir=self.session.output_dir / "renderer",
                port=config.dev.renderer_port,
                log_level=OutputFormatter.level,
                clear_screen=self.options.clear_screen,
            )
        )
        # The UI server is ready once it is listening.
        handle.initial_build_latch.signal()

    async def _start_pipeline(self, scope: PipelineScope, externals: List[str]) -> None:
        config = self.loaded.config
        output_dir = self.session.output_dir

        if scope == PipelineScope.PRELOAD:
            entries = {
                w.name: output_dir / "generated" / "preload" / f"{w.name}.gen.ts" for w in config.windows
            }
            define: Dict[str, str] = {}
        else:
            entries = {"main": config.runtime.entry_path()}
            window_defs = [
                {
                    "name": w.name,
                    "type": w.type,
                    "lifecycle": w.lifecycle,
                    "autoShow": w.auto_show,
                }
                for w in config.windows
            ]
            define = {"__ELECTRO_WINDOW_DEFINITIONS__": json.dumps(window_defs)}

        watcher = PipelineWatcher(scope, self.backend, self._route_rebuild)
        self.pipelines[scope] = watcher
        await watcher.start(
            WatchOptions(
                scope=scope,
                root=self.loaded.root,
                entries=entries,
                out_dir=output_dir / scope.value,
                externals=externals,
                sourcemap=self.options.sourcemap,
                define=define,
                log_level=OutputFormatter.level,
                clear_screen=self.options.clear_screen,
            )
        )

    def _attach_config_watcher(self) -> None:
        if self._file_watcher is None:
            return
        self.config_watcher = ConfigWatcher(
            self._file_watcher,
            self.session.config_source_paths,
            self._handle_config_change,
            debounce_ms=self.loaded.config.dev.config_debounce_ms,
        )
        self.config_watcher.attach()

    # ── Rebuild routing ─────────────────────────────────────

    def _route_rebuild(self, scope: PipelineScope, reason: Optional[Path]) -> None:
        if self.session.shutting_down:
            return

        if scope == PipelineScope.MAIN:
            self._spawn(self._handle_main_rebuild(reason))
            return

        if scope == PipelineScope.PRELOAD:
            OutputFormatter.runtime_log("preload", "rebuild → page reload", self._relative(reason))
        ui = self._ui_server()
        if ui is not None:
            ui.broadcast_full_reload()

    async def _handle_main_rebuild(self, reason: Optional[Path]) -> None:
        # Serialized so rebuild events reach the coalescer in arrival order.
        async with self._rebuild_lock:
            try:
                regenerated = await self.codegen.refresh(self.session.output_dir, self._src_dir())
            except Exception as exc:
                OutputFormatter.runtime_log("main", f"codegen failed: {exc}")
                regenerated = False
            if regenerated:
                OutputFormatter.runtime_log("main", "generated")

            if self.session.shutting_down or self.coalescer is None:
                return
            self.coalescer.notify(reason)

    def _spawn(self, awaitable: Awaitable[None]) -> None:
        task = asyncio.ensure_future(awaitable)
        self._tasks.add(task)
        task.add_done_callback(self._task_done)

    def _task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            self._handle_restart_failure(exc)

    # ── Termination paths ───────────────────────────────────

    def _handle_crash(self, code: Optional[int]) -> None:
        self.stop()
        self._exit(crash_exit_status(code))

    def _handle_restart_failure(self, exc: BaseException) -> None:
        if self.session.shutting_down:
            return
        OutputFormatter.error(f"Failed to restart Electron: {exc}")
        self.stop()
        self._exit(1)

    def _handle_config_change(self) -> None:
        self.stop()
        if self._on_restart is not None:
            self._on_restart()

    def _exit(self, code: int) -> None:
        if self._on_exit is not None:
            self._on_exit(code)

    # ── Helpers ─────────────────────────────────────────────

    def _src_dir(self) -> Path:
        return self.session.root / "src"

    def _main_output(self) -> Path:
        return self.session.output_dir / self.loaded.config.dev.main_output

    def _ui_server(self) -> Optional[UiServer]:
        watcher = self.pipelines.get(PipelineScope.RENDERER)
        if watcher is None or watcher.handle is None:
            return None
        return watcher.handle.close_handle

    def _renderer_url(self) -> Optional[str]:
        ui = self._ui_server()
        return ui.url if ui is not None else None

    def _runtime_env(self) -> Dict[str, str]:
        config = self.loaded.config
        env: Dict[str, str] = {**config.env, **self.options.env, "ELECTRO_DEV": "true"}

        base = self._renderer_url()
        if base:
            env["ELECTRO_RENDERER_BASE"] = base
            for window in config.windows:
                relative = os.path.relpath(window.entry_path(), self.session.root)
                env[f"ELECTRO_DEV_URL_{window.name}"] = f"{base}/{Path(relative).as_posix()}"
        return env

    def _relative(self, path: Optional[Path]) -> Optional[str]:
        if path is None:
            return None
        try:
            return Path(path).relative_to(self.session.root).as_posix()
        except (ValueError, TypeError):
            return str(path)

    def _session_meta(self) -> SessionMeta:
        config = self.loaded.config
        root = self.loaded.root
        windows = config.windows
        return SessionMeta(
            root=root,
            main=config.runtime.entry_path(),
            preload=self.session.output_dir / "generated" / "preload" if windows else None,
            renderer=windows[0].entry_path().parent if windows else None,
            windows=[WindowMeta(name=w.name, entry=w.entry_path()) for w in windows],
        )
