from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Awaitable, Callable, Dict, Optional, Protocol

from electrodev.cli.formatter import OutputFormatter


class ManagedProcess(Protocol):
    """One live child process: ``exited`` resolves to the exit code (None if unknown)."""

    exited: "asyncio.Future[Optional[int]]"

    def kill(self) -> None:
        ...


ProcessLauncher = Callable[[Path, Dict[str, str]], Awaitable[ManagedProcess]]


class ShutdownFlag(Protocol):
    shutting_down: bool


class ProcessSupervisor:
    """Owns the single child-process slot of a session.

    The reference in ``current`` is always nulled before its process is killed,
    so the exit observer of a superseded process sees itself as stale and does
    nothing.
    """

    def __init__(
        self,
        launcher: ProcessLauncher,
        session: ShutdownFlag,
        on_crash: Optional[Callable[[Optional[int]], None]] = None,
        root: Optional[Path] = None,
    ) -> None:
        self._launcher = launcher
        self._session = session
        self._on_crash = on_crash
        self._root = root
        self.current: Optional[ManagedProcess] = None
        self.launches = 0
        self._entry: Optional[Path] = None
        self._env: Dict[str, str] = {}
        # Launches and restarts never overlap; bumped by stop() to void launches in flight.
        self._lock = asyncio.Lock()
        self._generation = 0

    async def launch(self, entry: Path, env: Dict[str, str]) -> Optional[ManagedProcess]:
        """Spawn the child; returns None if the session stopped while it was starting."""
        async with self._lock:
            self._entry = entry
            self._env = dict(env)
            return await self._spawn()

    async def _spawn(self) -> Optional[ManagedProcess]:
        generation = self._generation
        proc = await self._launcher(self._entry, self._env)
        if self._session.shutting_down or generation != self._generation:
            proc.kill()
            return None

        self.current = proc
        self.launches += 1
        proc.exited.add_done_callback(lambda future: self._handle_exit(proc, future))
        return proc

    async def restart(self, reason: Optional[Path] = None) -> Optional[ManagedProcess]:
        """Replace the current process; returns None if the session shut down meanwhile."""
        if self._entry is None:
            raise RuntimeError("ProcessSupervisor.restart() called before launch().")

        OutputFormatter.runtime_log("main", "rebuild → restart", self._display(reason))

        # Waits for a launch still in flight, so its process is the one replaced.
        async with self._lock:
            previous = self.current
            if previous is not None:
                self.current = None
                previous.kill()
                await previous.exited

            if self._session.shutting_down:
                return None
            return await self._spawn()

    def stop(self) -> None:
        self._generation += 1
        previous = self.current
        if previous is None:
            return
        self.current = None
        previous.kill()

    def _handle_exit(self, proc: ManagedProcess, future: "asyncio.Future[Optional[int]]") -> None:
        if self.current is not proc or self._session.shutting_down:
            return

        code = None
        if not future.cancelled() and future.exception() is None:
            code = future.result()
        self.current = None
        if code == 0:
            OutputFormatter.runtime_log("main", "exited")
            return

        OutputFormatter.runtime_log("main", f"crashed (exit {code})")
        if self._on_crash is not None:
            self._on_crash(code)

    def _display(self, reason: Optional[Path]) -> Optional[str]:
        if reason is None:
            return None
        if self._root is not None:
            try:
                return Path(reason).relative_to(self._root).as_posix()
            except ValueError:
                pass
        return str(reason)
