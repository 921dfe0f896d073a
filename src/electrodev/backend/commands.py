from __future__ import annotations

import asyncio
import json
import os
import shutil
import time
from pathlib import Path
from typing import Dict, List, Optional, Set

from electrodev.backend.base import BuildErrorCallback, RebuildCallback, WatchOptions
from electrodev.cli.formatter import OutputFormatter
from electrodev.config.models import BuildCommands
from electrodev.runtime.contracts import PipelineScope
from electrodev.runtime.polling_watcher import PollingWatcher
from electrodev.utils.diagnostics import BuildCommandError

DEFAULT_POLL_INTERVAL_MS = 100
DEFAULT_SETTLE_MS = 150
RELOAD_TOKEN_NAME = ".reload"


class _TemplateValues(dict):
    def __missing__(self, key: str) -> str:
        return "{" + key + "}"


def render_command(template: List[str], options: WatchOptions) -> List[str]:
    """Expand {root}, {entry}, {entries}, {out_dir}, {port}, {sourcemap} and {externals}."""
    entries = list(options.entries.items())
    values = _TemplateValues(
        root=str(options.root),
        entry=str(entries[0][1]) if entries else "",
        entries=",".join(f"{name}={path}" for name, path in entries),
        out_dir=str(options.out_dir) if options.out_dir else "",
        port=str(options.port) if options.port is not None else "",
        sourcemap=options.sourcemap or "linked",
        externals=",".join(options.externals),
    )
    return [part.format_map(values) for part in template]


def _command_env(options: WatchOptions) -> Dict[str, str]:
    env = {
        **os.environ,
        "ELECTRO_SCOPE": options.scope.value,
        "ELECTRO_LOG_LEVEL": options.log_level,
    }
    if options.define:
        env["ELECTRO_DEFINES"] = json.dumps(options.define)
    return env


async def _spawn(label: str, command: List[str], options: WatchOptions) -> asyncio.subprocess.Process:
    try:
        return await asyncio.create_subprocess_exec(
            *command,
            cwd=str(options.root),
            env=_command_env(options),
            stdin=asyncio.subprocess.DEVNULL,
        )
    except OSError as exc:
        raise BuildCommandError(label, f"could not start {command[0]}: {exc}") from exc


class CommandWatch:
    """Shared lifecycle for a long-running backend command."""

    def __init__(self, scope: PipelineScope, command: List[str], options: WatchOptions) -> None:
        self.scope = scope
        self.command = command
        self.options = options
        self.closed = False
        self._rebuild_callbacks: List[RebuildCallback] = []
        self._error_callbacks: List[BuildErrorCallback] = []
        self._process: Optional[asyncio.subprocess.Process] = None
        self._tasks: List[asyncio.Task] = []

    def on_rebuild_complete(self, callback: RebuildCallback) -> None:
        self._rebuild_callbacks.append(callback)

    def on_build_error(self, callback: BuildErrorCallback) -> None:
        self._error_callbacks.append(callback)

    async def start(self) -> None:
        self._process = await _spawn(self.scope.value, self.command, self.options)
        self._tasks.append(asyncio.get_running_loop().create_task(self._monitor_exit()))

    def _emit_rebuild(self, changed: Optional[Path]) -> None:
        for callback in list(self._rebuild_callbacks):
            try:
                callback(changed)
            except Exception as exc:
                OutputFormatter.runtime_log(self.scope.value, f"rebuild handler failed: {exc}")

    def _emit_error(self, error: BaseException) -> None:
        for callback in list(self._error_callbacks):
            callback(error)

    async def _monitor_exit(self) -> None:
        code = await self._process.wait()
        if self.closed:
            return
        self._emit_error(BuildCommandError(self.scope.value, f"watch command exited with code {code}", code))

    def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        for task in self._tasks:
            task.cancel()
        if self._process is not None and self._process.returncode is None:
            try:
                self._process.terminate()
            except ProcessLookupError:
                pass


class CommandWatchBuild(CommandWatch):
    """Watch build whose completions are detected from the output directory.

    A rebuild is complete once output writes settle; the reported reason is the
    first source file that changed since the previous completion.
    """

    def __init__(
        self,
        scope: PipelineScope,
        command: List[str],
        options: WatchOptions,
        interval_ms: int = DEFAULT_POLL_INTERVAL_MS,
        settle_ms: int = DEFAULT_SETTLE_MS,
    ) -> None:
        super().__init__(scope, command, options)
        self.interval_ms = interval_ms
        self._output_watcher = PollingWatcher(options.out_dir, debounce_ms=settle_ms, exclude_patterns=[])
        self._source_watcher = PollingWatcher(options.root / "src", debounce_ms=0)
        self._changed: Optional[Path] = None

    async def start(self) -> None:
        out_dir = self.options.out_dir
        if out_dir.exists():
            shutil.rmtree(out_dir)
        out_dir.mkdir(parents=True, exist_ok=True)

        self._output_watcher.start()
        self._source_watcher.start()
        await super().start()
        self._tasks.append(asyncio.get_running_loop().create_task(self._watch_loop()))

    def poll_once(self, now: float) -> None:
        source = self._source_watcher.poll(now)
        if source.settled and source.changed_paths and self._changed is None:
            self._changed = self._source_watcher.root_dir / source.changed_paths[0]

        output = self._output_watcher.poll(now)
        if output.settled:
            changed, self._changed = self._changed, None
            self._emit_rebuild(changed)

    async def _watch_loop(self) -> None:
        interval_seconds = max(self.interval_ms / 1000.0, 0.01)
        while not self.closed:
            await asyncio.sleep(interval_seconds)
            try:
                self.poll_once(time.monotonic())
            except Exception as exc:
                OutputFormatter.runtime_log(self.scope.value, f"watch poll failed: {exc}")

    def close(self) -> None:
        if self.closed:
            return
        super().close()
        self._output_watcher.stop()
        self._source_watcher.stop()


class CommandUiServer(CommandWatch):
    """Renderer dev server process; live reloads are pushed through a token file."""

    def __init__(self, command: List[str], options: WatchOptions) -> None:
        super().__init__(PipelineScope.RENDERER, command, options)
        self.url: Optional[str] = f"http://localhost:{options.port}" if options.port else None
        self.reload_token = options.out_dir / RELOAD_TOKEN_NAME if options.out_dir else None
        self.reloads = 0

    def broadcast_full_reload(self) -> None:
        self.reloads += 1
        if self.reload_token is None:
            return
        self.reload_token.parent.mkdir(parents=True, exist_ok=True)
        self.reload_token.write_text(
            json.dumps({"type": "full-reload", "sequence": self.reloads, "at": time.time()}),
            encoding="utf-8",
        )


class CommandBuildBackend:
    """Build backend that delegates every pipeline to a configured shell command."""

    def __init__(
        self,
        commands: BuildCommands,
        interval_ms: int = DEFAULT_POLL_INTERVAL_MS,
        settle_ms: int = DEFAULT_SETTLE_MS,
    ) -> None:
        self.commands = commands
        self.interval_ms = interval_ms
        self.settle_ms = settle_ms

    def _template(self, scope: PipelineScope) -> List[str]:
        template = getattr(self.commands, scope.value)
        if not template:
            raise BuildCommandError(scope.value, f"no build.{scope.value} command configured")
        return template

    async def start_watch(self, options: WatchOptions) -> CommandWatchBuild:
        if options.out_dir is None:
            raise BuildCommandError(options.scope.value, "watch builds require an output directory")
        command = render_command(self._template(options.scope), options)
        build = CommandWatchBuild(
            options.scope,
            command,
            options,
            interval_ms=self.interval_ms,
            settle_ms=self.settle_ms,
        )
        await build.start()
        return build

    async def start_ui_server(self, options: WatchOptions) -> CommandUiServer:
        command = render_command(self._template(PipelineScope.RENDERER), options)
        server = CommandUiServer(command, options)
        await server.start()
        return server


class CommandCodegen:
    """Runs the configured codegen command and tracks the source inventory."""

    def __init__(self, command: Optional[List[str]], root: Path) -> None:
        self.command = command
        self.root = root
        self._inventory: Optional[Set[str]] = None

    def _scan(self, src_dir: Path) -> Set[str]:
        watcher = PollingWatcher(src_dir, debounce_ms=0)
        watcher.start()
        return watcher.tracked_paths()

    async def run(self, output_dir: Path, src_dir: Path) -> None:
        output_dir.mkdir(parents=True, exist_ok=True)
        self._inventory = self._scan(src_dir)
        if not self.command:
            return

        options = WatchOptions(scope=PipelineScope.MAIN, root=self.root, out_dir=output_dir)
        command = render_command(self.command, options)
        process = await _spawn("codegen", command, options)
        code = await process.wait()
        if code != 0:
            raise BuildCommandError("codegen", f"{command[0]} exited with code {code}", code)

    async def refresh(self, output_dir: Path, src_dir: Path) -> bool:
        if self._inventory is not None and self._scan(src_dir) == self._inventory:
            return False
        await self.run(output_dir, src_dir)
        return bool(self.command)
