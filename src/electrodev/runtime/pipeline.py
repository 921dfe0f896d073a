from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Optional

from electrodev.backend.base import BuildBackend, WatchBuild, WatchOptions
from electrodev.cli.formatter import OutputFormatter
from electrodev.runtime.contracts import PipelineScope
from electrodev.runtime.latch import DEFAULT_INITIAL_BUILD_TIMEOUT_MS, OneShotLatch
from electrodev.utils.diagnostics import PipelineBuildError

RebuildRouter = Callable[[PipelineScope, Optional[Path]], None]


@dataclass
class PipelineHandle:
    """Live state of one watched build."""

    scope: PipelineScope
    close_handle: WatchBuild
    initial_build_latch: OneShotLatch
    last_rebuild_reason: Optional[Path] = None
    output_dir: Optional[Path] = None
    rebuilds: int = field(default=0)


class PipelineWatcher:
    """Wraps one external watch build and turns its callbacks into routed events.

    The first completed build only signals the initial-build latch. Every later
    completion is forwarded to ``on_rebuild`` together with the changed file, if
    the backend reported one.
    """

    def __init__(self, scope: PipelineScope, backend: BuildBackend, on_rebuild: RebuildRouter) -> None:
        self.scope = scope
        self._backend = backend
        self._on_rebuild = on_rebuild
        self.handle: Optional[PipelineHandle] = None
        self._initial_error: Optional[BaseException] = None
        self._closed = False

    async def start(self, options: WatchOptions) -> PipelineHandle:
        if self.scope == PipelineScope.RENDERER:
            build = await self._backend.start_ui_server(options)
        else:
            build = await self._backend.start_watch(options)

        self.handle = PipelineHandle(
            scope=self.scope,
            close_handle=build,
            initial_build_latch=OneShotLatch(self.scope.value),
            output_dir=None if self.scope == PipelineScope.RENDERER else options.out_dir,
        )
        build.on_rebuild_complete(self._handle_rebuild)
        build.on_build_error(self._handle_build_error)
        return self.handle

    async def wait_for_initial_build(self, timeout_ms: int = DEFAULT_INITIAL_BUILD_TIMEOUT_MS) -> None:
        """Wait for the first build; raises if it failed or timed out."""
        if self.handle is None:
            raise RuntimeError(f"{self.scope.value} pipeline was not started.")

        await self.handle.initial_build_latch.wait_with_timeout(timeout_ms)
        if self._initial_error is not None:
            raise PipelineBuildError(self.scope.value, str(self._initial_error)) from self._initial_error

    def _handle_rebuild(self, changed: Optional[Path]) -> None:
        if self._closed or self.handle is None:
            return

        if self.handle.initial_build_latch.signal():
            return

        self.handle.last_rebuild_reason = changed
        self.handle.rebuilds += 1
        self._on_rebuild(self.scope, changed)

    def _handle_build_error(self, error: BaseException) -> None:
        if self._closed or self.handle is None:
            return

        latch = self.handle.initial_build_latch
        if not latch.signaled:
            self._initial_error = error
            latch.signal()
            return

        # Previous output stays in place and in use.
        OutputFormatter.runtime_log(self.scope.value, f"build error: {error}")

    def stop(self) -> None:
        if self._closed:
            return
        self._closed = True
        if self.handle is not None:
            self.handle.close_handle.close()
