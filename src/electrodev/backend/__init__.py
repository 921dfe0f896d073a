from electrodev.backend.base import BuildBackend, Codegen, UiServer, WatchBuild, WatchOptions
from electrodev.backend.commands import CommandBuildBackend, CommandCodegen

__all__ = [
    "BuildBackend",
    "Codegen",
    "CommandBuildBackend",
    "CommandCodegen",
    "UiServer",
    "WatchBuild",
    "WatchOptions",
]
