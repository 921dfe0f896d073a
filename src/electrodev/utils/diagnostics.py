from typing import Optional
from pydantic import BaseModel

class ConfigDiagnostic(BaseModel):
    """
    Non-fatal finding reported while validating a dev session configuration.
    """
    file_path: str
    error_code: str
    message: str
    severity: str = "warning" # 'warning', 'error'
    suggestion: Optional[str] = None

    def __str__(self) -> str:
        return f"[{self.error_code}] {self.message} (at {self.file_path})"

class ElectroDevError(Exception):
    """Base class for errors raised by the dev session orchestrator."""

class ConfigError(ElectroDevError):
    """
    Raised when the session configuration is missing, unreadable or invalid.
    """
    def __init__(self, message: str, config_path: str = None):
        self.message = message
        self.config_path = config_path
        super().__init__(message)

class PipelineBuildError(ElectroDevError):
    """
    Raised when the first build of a watched pipeline fails.
    """
    def __init__(self, scope: str, message: str):
        self.scope = scope
        self.message = message
        super().__init__(f"{scope} build failed: {message}")

class InitialBuildTimeoutError(ElectroDevError, TimeoutError):
    """Raised when a pipeline's initial build does not finish in time."""

    def __init__(self, pipeline: str, timeout_ms: int):
        self.pipeline = pipeline
        self.timeout_ms = timeout_ms
        super().__init__(f"Initial {pipeline} build did not complete within {timeout_ms}ms")

class RuntimeBinaryNotFoundError(ElectroDevError):
    """Raised when no desktop runtime binary can be located for the project."""

class BuildCommandError(ElectroDevError):
    """
    Raised (or reported) when a build backend command cannot run or exits early.
    """
    def __init__(self, scope: str, message: str, exit_code: Optional[int] = None):
        self.scope = scope
        self.exit_code = exit_code
        super().__init__(f"{scope}: {message}")
