import os
import re
import yaml
from pathlib import Path
from typing import Any, Dict, List, Set

from pydantic import BaseModel, ConfigDict, ValidationError

from electrodev.cli.formatter import OutputFormatter
from electrodev.config.models import ElectroConfig, RuntimeSettings, WindowSettings
from electrodev.utils.diagnostics import ConfigDiagnostic, ConfigError

ENV_VAR_PATTERN = re.compile(r"\$\{([^}:]+)(?::([^}]+))?\}")

DEFAULT_CONFIG_NAME = "electro.yaml"
VALID_SOURCEMAP_VALUES = ["linked", "inline", "external", "none"]


class LoadedConfig(BaseModel):
    """Result of loading a session config file."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    config: ElectroConfig
    # Absolute path to the config file
    config_path: Path
    # Project root (directory containing the config)
    root: Path
    warnings: List[ConfigDiagnostic] = []

    def source_paths(self) -> Set[Path]:
        """Every config file whose change requires a full session reload."""
        paths = {self.config_path}
        for window in self.config.windows:
            if window.source is not None:
                paths.add(window.source)
        return paths


def interpolate_env_vars(content: str) -> str:
    """Replace ${VAR} or ${VAR:default} with environment variables."""
    def replace_match(match: re.Match) -> str:
        var_name = match.group(1)
        default_value = match.group(2) if match.group(2) is not None else ""
        return os.environ.get(var_name, default_value)

    return ENV_VAR_PATTERN.sub(replace_match, content)


def _read_yaml(path: Path) -> Dict[str, Any]:
    try:
        content = path.read_text(encoding="utf-8")
        data = yaml.safe_load(interpolate_env_vars(content)) or {}
    except (OSError, yaml.YAMLError) as exc:
        raise ConfigError(f"Could not read {path}: {exc}", config_path=str(path)) from exc

    if not isinstance(data, dict):
        raise ConfigError(f"{path} must contain a mapping at the top level", config_path=str(path))
    return data


def _load_window(raw: Any, config_path: Path) -> WindowSettings:
    if isinstance(raw, str):
        window_path = (config_path.parent / raw).resolve()
        if not window_path.exists():
            raise ConfigError(f"Window config not found: {window_path}", config_path=str(config_path))
        payload = _read_yaml(window_path)
        source = window_path
    elif isinstance(raw, dict):
        payload = dict(raw)
        source = config_path
    else:
        raise ConfigError(
            f"Window entries must be a mapping or a path, got {type(raw).__name__}",
            config_path=str(config_path),
        )

    payload["source"] = source
    try:
        return WindowSettings.model_validate(payload)
    except ValidationError as exc:
        raise ConfigError(f"Invalid window config in {source}: {exc}", config_path=str(source)) from exc


def load_config(path: Path) -> LoadedConfig:
    """
    Load electro.yaml with environment variable interpolation.

    Fails fast when the file, the runtime definition or any declared entry file
    is missing.
    """
    config_path = Path(path).expanduser().resolve()
    root = config_path.parent

    if not config_path.exists():
        raise ConfigError(f"Config file not found: {config_path}", config_path=str(config_path))

    data = _read_yaml(config_path)

    runtime_raw = data.get("runtime")
    if not runtime_raw:
        raise ConfigError(f"{config_path.name} must define a runtime section", config_path=str(config_path))

    if isinstance(runtime_raw, str):
        runtime_raw = {"entry": runtime_raw}

    try:
        runtime = RuntimeSettings.model_validate({**runtime_raw, "source": config_path})
        windows = [_load_window(raw, config_path) for raw in data.get("windows") or []]
        config = ElectroConfig.model_validate(
            {
                "runtime": runtime,
                "windows": windows,
                "dev": data.get("dev") or {},
                "build": data.get("build") or {},
                "env": data.get("env") or {},
            }
        )
    except ValidationError as exc:
        raise ConfigError(f"Invalid config {config_path}: {exc}", config_path=str(config_path)) from exc

    warnings = validate_config(config)
    return LoadedConfig(config=config, config_path=config_path, root=root, warnings=warnings)


def validate_config(config: ElectroConfig) -> List[ConfigDiagnostic]:
    """
    Check structural issues. Raises ConfigError on fatal problems and returns
    warnings for suspicious but usable settings.
    """
    main_entry = config.runtime.entry_path()
    if not main_entry.exists():
        raise ConfigError(f"Main entry not found: {main_entry}", config_path=str(config.runtime.source))

    names = set()
    for window in config.windows:
        if window.name in names:
            raise ConfigError(
                f'Duplicate window name "{window.name}". Window names must be unique.',
                config_path=str(window.source),
            )
        names.add(window.name)

    for window in config.windows:
        window_entry = window.entry_path()
        if not window_entry.exists():
            raise ConfigError(
                f'Window "{window.name}" entry not found: {window_entry}',
                config_path=str(window.source),
            )

    warnings: List[ConfigDiagnostic] = []
    for window in config.windows:
        if window.features is not None and len(window.features) == 0:
            warnings.append(
                ConfigDiagnostic(
                    file_path=str(window.source),
                    error_code="WINDOW_NO_FEATURES",
                    message=(
                        f'Window "{window.name}" has an empty features array; '
                        "it won't have access to any services."
                    ),
                )
            )
    return warnings


def validate_sourcemap(value: str) -> str:
    """Return the sourcemap mode to use; unknown values fall back to 'linked'."""
    if value in VALID_SOURCEMAP_VALUES:
        return value
    OutputFormatter.warn(
        f'Unknown --sourcemap value "{value}". '
        f'Valid values: {", ".join(VALID_SOURCEMAP_VALUES)}. Defaulting to "linked".'
    )
    return "linked"
