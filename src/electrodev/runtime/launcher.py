from __future__ import annotations

import asyncio
import os
from pathlib import Path
from typing import Dict, List, Mapping, Optional

from electrodev.cli.formatter import OutputFormatter
from electrodev.runtime.supervisor import ProcessLauncher
from electrodev.utils.diagnostics import RuntimeBinaryNotFoundError


def find_runtime_binary(root: Path, environ: Optional[Mapping[str, str]] = None) -> Path:
    """
    Find the desktop runtime binary. Resolution order:
    1. ELECTRON_EXEC_PATH env var
    2. node_modules/electron/path.txt (npm package convention)
    3. node_modules/.bin/electron symlink
    """
    environ = os.environ if environ is None else environ
    if environ.get("ELECTRON_EXEC_PATH"):
        return Path(environ["ELECTRON_EXEC_PATH"])

    electron_dir = root / "node_modules" / "electron"
    path_txt = electron_dir / "path.txt"
    if path_txt.exists():
        try:
            relative_bin = path_txt.read_text(encoding="utf-8").strip()
        except OSError:
            relative_bin = ""
        if relative_bin:
            resolved = (electron_dir / relative_bin).resolve()
            if resolved.exists():
                return resolved

    bin_symlink = root / "node_modules" / ".bin" / "electron"
    if bin_symlink.exists():
        return bin_symlink

    raise RuntimeBinaryNotFoundError("Could not find Electron binary. Install electron: npm add -D electron")


class RuntimeProcess:
    """ManagedProcess backed by an asyncio subprocess with streamed output."""

    def __init__(self, process: asyncio.subprocess.Process) -> None:
        self._process = process
        loop = asyncio.get_running_loop()
        self.exited: asyncio.Future = loop.create_future()
        self._pumps: List[asyncio.Task] = [
            loop.create_task(self._pump(stream))
            for stream in (process.stdout, process.stderr)
            if stream is not None
        ]
        self._waiter = loop.create_task(self._wait())

    @property
    def pid(self) -> int:
        return self._process.pid

    async def _pump(self, stream: asyncio.StreamReader) -> None:
        async for raw in stream:
            OutputFormatter.child_output(raw.decode("utf-8", errors="replace").rstrip("\r\n"))

    async def _wait(self) -> None:
        code = await self._process.wait()
        # Flush remaining output before reporting the exit.
        await asyncio.gather(*self._pumps, return_exceptions=True)
        if not self.exited.done():
            self.exited.set_result(code)

    def kill(self) -> None:
        if self._process.returncode is not None:
            return
        try:
            self._process.terminate()
        except ProcessLookupError:
            pass


def create_runtime_launcher(root: Path) -> ProcessLauncher:
    """Return a launcher spawning ``<runtime binary> <entry>`` inside ``root``."""

    async def launch(entry: Path, env: Dict[str, str]) -> RuntimeProcess:
        binary = find_runtime_binary(root)
        process = await asyncio.create_subprocess_exec(
            str(binary),
            str(entry),
            cwd=str(root),
            env={**os.environ, **env},
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
        return RuntimeProcess(process)

    return launch
