from __future__ import annotations

from pathlib import Path
from typing import Callable, Dict, List, Optional, Protocol

from pydantic import BaseModel, Field

from electrodev.runtime.contracts import PipelineScope

RebuildCallback = Callable[[Optional[Path]], None]
BuildErrorCallback = Callable[[BaseException], None]


class WatchOptions(BaseModel):
    """Everything a backend needs to start one watch-mode build."""

    scope: PipelineScope
    root: Path
    entries: Dict[str, Path] = Field(default_factory=dict)
    out_dir: Optional[Path] = None
    externals: List[str] = Field(default_factory=list)
    sourcemap: Optional[str] = None
    define: Dict[str, str] = Field(default_factory=dict)
    port: Optional[int] = None
    log_level: str = "info"
    clear_screen: bool = False


class WatchBuild(Protocol):
    """Handle to a running watch build owned by the backend."""

    def on_rebuild_complete(self, callback: RebuildCallback) -> None:
        ...

    def on_build_error(self, callback: BuildErrorCallback) -> None:
        ...

    def close(self) -> None:
        ...


class UiServer(WatchBuild, Protocol):
    """The renderer dev server; pushes live-reload signals to connected clients."""

    url: Optional[str]

    def broadcast_full_reload(self) -> None:
        ...


class BuildBackend(Protocol):
    async def start_watch(self, options: WatchOptions) -> WatchBuild:
        ...

    async def start_ui_server(self, options: WatchOptions) -> UiServer:
        ...


class Codegen(Protocol):
    """Generates preload bridges and typings from the project sources."""

    async def run(self, output_dir: Path, src_dir: Path) -> None:
        ...

    async def refresh(self, output_dir: Path, src_dir: Path) -> bool:
        """Re-run generation if the source inventory changed; returns whether it ran."""
        ...
