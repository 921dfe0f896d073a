import re
import time
from datetime import datetime
from pathlib import Path
from typing import Callable, List, Optional

from pydantic import BaseModel
from rich.console import Console
from rich.markup import escape

from electrodev.utils.diagnostics import ConfigDiagnostic

# Create a stderr console for logging
error_console = Console(stderr=True, highlight=False)

LOG_LEVELS = {"info": 0, "warn": 1, "error": 2, "silent": 3}

STEP_WIDTH = 26

# Runtime diagnostic lines: "HH:MM:SS [tag] code → message"
DIAGNOSTIC_LINE_PATTERN = re.compile(r"^(\d{2}:\d{2}:\d{2}) \[(electro|warn|error)\] (.+?) → (.+)$")

RUNTIME_MESSAGE_STYLES = [
    ("hmr update", "green"),
    ("page reload", "yellow"),
    ("rebuild", "cyan"),
    ("generated", "magenta"),
    ("crashed", "red"),
    ("exited", "bright_black"),
]


class WindowMeta(BaseModel):
    name: str
    entry: Path


class SessionMeta(BaseModel):
    """Paths shown in the session banner."""

    root: Path
    main: Path
    preload: Optional[Path] = None
    renderer: Optional[Path] = None
    windows: List[WindowMeta] = []


def format_duration(ms: float) -> str:
    if ms < 1000:
        return f"{int(ms)}ms"
    seconds = ms / 1000
    if seconds < 60:
        return f"{seconds:.1f}s"
    minutes = int(seconds // 60)
    rest = round(seconds % 60)
    return f"{minutes}m{rest:02d}s"


def start_timer() -> Callable[[], str]:
    """Return a callable reporting the formatted time elapsed since this call."""
    started_at = time.monotonic()
    return lambda: format_duration((time.monotonic() - started_at) * 1000)


def _relative(root: Path, path: Path) -> str:
    try:
        rel = Path(path).relative_to(root).as_posix()
    except ValueError:
        return str(path)
    return rel or "."


class OutputFormatter:
    """
    Handles console output for the dev session.
    Everything is written to stderr; log level gating applies to informational output.
    """

    level: str = "info"

    @classmethod
    def set_log_level(cls, level: str) -> None:
        if level not in LOG_LEVELS:
            raise ValueError(f"Unknown log level: {level}")
        cls.level = level

    @classmethod
    def _enabled(cls, level: str) -> bool:
        return LOG_LEVELS[cls.level] <= LOG_LEVELS[level]

    @staticmethod
    def log(message: str, severity: str = "info") -> None:
        """
        Print system messages to stderr with color coding.
        """
        style = "white"
        prefix = "[electro]"

        if severity == "warning":
            style = "yellow"
        elif severity == "error":
            style = "red"
        elif severity == "critical":
            style = "bold red"
        elif severity == "success":
            style = "green"

        gate = {"warning": "warn", "error": "error", "critical": "error"}.get(severity, "info")
        if not OutputFormatter._enabled(gate):
            return
        error_console.print(f"[{style}]{prefix} {escape(message)}[/{style}]")

    @classmethod
    def info(cls, message: str) -> None:
        if not cls._enabled("info"):
            return
        error_console.print(f"  [bright_black]▸[/bright_black] {escape(message)}")

    @classmethod
    def warn(cls, message: str) -> None:
        if not cls._enabled("warn"):
            return
        error_console.print(f"  [yellow]⚠ {escape(message)}[/yellow]")

    @classmethod
    def error(cls, message: str) -> None:
        if not cls._enabled("error"):
            return
        error_console.print(f"  [red]✗ {escape(message)}[/red]")

    @classmethod
    def note(cls, message: str) -> None:
        if not cls._enabled("info"):
            return
        error_console.print(f"    [bright_black]{escape(message)}[/bright_black]")

    @classmethod
    def step(cls, label: str, duration: str, extra: Optional[str] = None) -> None:
        if not cls._enabled("info"):
            return
        dots = "·" * max(2, STEP_WIDTH - len(label) - 1)
        suffix = f"  [bright_black]{escape(extra)}[/bright_black]" if extra else ""
        error_console.print(
            f"  {escape(label)} [bright_black]{dots}[/bright_black] [green]✓ {duration:>5}[/green]{suffix}"
        )

    @staticmethod
    def step_fail(label: str, message: str) -> None:
        dots = "·" * max(2, STEP_WIDTH - len(label) - 1)
        error_console.print(f"  {escape(label)} [bright_black]{dots}[/bright_black] [red]✗ {escape(message)}[/red]")

    @classmethod
    def runtime_log(cls, scope: str, message: str, changed_file: Optional[str] = None) -> None:
        """Timestamped runtime event, e.g. ``12:00:01 [electro] (main) rebuild → restart src/a.py``."""
        if not cls._enabled("info"):
            return
        stamp = datetime.now().strftime("%H:%M:%S")
        styled = escape(message)
        for keyword, style in RUNTIME_MESSAGE_STYLES:
            if message.startswith(keyword):
                styled = f"[{style}]{escape(keyword)}[/{style}]{escape(message[len(keyword):])}"
                break
        file_part = f" [bright_black]{escape(changed_file)}[/bright_black]" if changed_file else ""
        error_console.print(
            f"[bright_black]{stamp}[/bright_black] [yellow]\\[electro][/yellow] "
            f"[bright_black]({escape(scope)})[/bright_black] {styled}{file_part}"
        )

    @classmethod
    def footer(cls, message: str, url: Optional[str] = None) -> None:
        if not cls._enabled("info"):
            return
        error_console.print()
        error_console.print(f"  [bold green]✓ {escape(message)}[/bold green]")
        if url:
            error_console.print(f"    [yellow]→ {escape(url)}[/yellow]")
        error_console.print()

    @classmethod
    def session(cls, meta: SessionMeta) -> None:
        """Print the session banner listing every scope and configured window."""
        if not cls._enabled("info"):
            return

        main_entry = _relative(meta.root, meta.main)
        preload_entry = _relative(meta.root, meta.preload) if meta.preload else "(none)"
        renderer_entry = _relative(meta.root, meta.renderer) if meta.renderer else "(none)"
        width = max(14, len(main_entry), len(preload_entry), len(renderer_entry)) + 2

        error_console.print()
        error_console.print(f"[bold yellow]⚡ electro dev[/bold yellow] → [cyan]{escape(meta.root.name)}[/cyan]")
        error_console.print()
        error_console.print(f"  [bright_black]Scope      {'Entry'.ljust(width)}Mode[/bright_black]")
        error_console.print(f"  [cyan]main[/cyan]       {escape(main_entry.ljust(width))}[bright_black]watch[/bright_black]")
        error_console.print(
            f"  [yellow]preload[/yellow]    {escape(preload_entry.ljust(width))}[bright_black]watch[/bright_black]"
        )
        error_console.print(
            f"  [green]renderer[/green]   {escape(renderer_entry.ljust(width))}[bright_black]dev server[/bright_black]"
        )

        if meta.windows:
            error_console.print()
            error_console.print(f"  [bright_black]Windows[/bright_black]    {len(meta.windows)} configured")
            for window in meta.windows:
                error_console.print(
                    f"  {escape(window.name.ljust(10))} [bright_black]{escape(_relative(meta.root, window.entry))}[/bright_black]"
                )
        error_console.print()

    @staticmethod
    def child_output(line: str) -> None:
        """Echo one line of child process output, coloring runtime diagnostics."""
        match = DIAGNOSTIC_LINE_PATTERN.match(line)
        if not match:
            error_console.print(escape(line))
            return

        stamp, tag, code, message = match.groups()
        tag_style = "red" if tag == "error" else "yellow"
        error_console.print(
            f"[bright_black]{stamp}[/bright_black] [{tag_style}]\\[{tag}][/{tag_style}] "
            f"[bright_black]{escape(code)}[/bright_black] → {escape(message)}"
        )

    @staticmethod
    def print_diagnostics(diagnostics: List[ConfigDiagnostic]) -> None:
        """Print configuration warnings collected while loading the session."""
        for diag in diagnostics:
            color = "red" if diag.severity == "error" else "yellow"
            error_console.print(f"  [{color}]⚠ {escape(diag.message)}[/{color}] [bright_black]({escape(diag.file_path)})[/bright_black]")
