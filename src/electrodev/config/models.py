from pathlib import Path
from typing import Dict, List, Optional
from pydantic import BaseModel, ConfigDict, Field


class RuntimeSettings(BaseModel):
    """
    The desktop runtime definition (the required 'runtime' section in electro.yaml).
    """
    model_config = ConfigDict(extra='forbid')

    entry: str
    # Config file that declared the runtime; entry is resolved relative to it.
    source: Optional[Path] = None

    def entry_path(self) -> Path:
        return (self.source.parent / self.entry).resolve()


class WindowSettings(BaseModel):
    """
    One renderer window, declared inline or in its own window config file.
    """
    model_config = ConfigDict(extra='ignore')

    name: str = Field(..., pattern=r'^[a-zA-Z][a-zA-Z0-9_-]{0,63}$')
    entry: str
    type: str = "browser-window"
    features: Optional[List[str]] = None
    lifecycle: Optional[str] = None
    auto_show: Optional[bool] = None
    source: Optional[Path] = None

    def entry_path(self) -> Path:
        return (self.source.parent / self.entry).resolve()


class DevSettings(BaseModel):
    """
    Dev session tuning (the top-level 'dev' section in electro.yaml).
    """
    model_config = ConfigDict(extra='ignore')

    out_dir: str = ".electro"
    # Compiled main image, relative to out_dir.
    main_output: str = "main/index.mjs"
    restart_debounce_ms: int = Field(default=80, ge=0)
    config_debounce_ms: int = Field(default=300, ge=0)
    initial_build_timeout_ms: int = Field(default=10_000, gt=0)
    renderer_port: int = Field(default=5173, ge=1, le=65535)
    watch_interval_ms: int = Field(default=100, ge=10)


class BuildCommands(BaseModel):
    """
    Command templates for the command build backend (the 'build' section).

    Templates may reference {root}, {entry}, {entries}, {out_dir}, {port},
    {sourcemap} and {externals}.
    """
    model_config = ConfigDict(extra='forbid')

    renderer: Optional[List[str]] = None
    preload: Optional[List[str]] = None
    main: Optional[List[str]] = None
    codegen: Optional[List[str]] = None


class ElectroConfig(BaseModel):
    """
    Fully loaded session configuration.
    """
    model_config = ConfigDict(extra='ignore')

    runtime: RuntimeSettings
    windows: List[WindowSettings] = Field(default_factory=list)
    dev: DevSettings = Field(default_factory=DevSettings)
    build: BuildCommands = Field(default_factory=BuildCommands)
    env: Dict[str, str] = Field(default_factory=dict)
