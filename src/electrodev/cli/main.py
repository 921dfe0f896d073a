import asyncio
import json
from pathlib import Path
from typing import Callable, Dict, List, Optional, Set

import typer

from electrodev.cli.formatter import LOG_LEVELS, OutputFormatter
from electrodev.cli.signals import install_shutdown_handlers
from electrodev.config.loader import DEFAULT_CONFIG_NAME, validate_sourcemap
from electrodev.runtime.session import DevOptions, SessionController

DEFAULT_INSPECT_PORT = 9229

app = typer.Typer(name="electrodev", help="electrodev CLI Interface", rich_markup_mode=None)


@app.callback()
def main() -> None:
    """Development session orchestrator for Electron apps."""


def _read_option_value(tokens: List[str], index: int, option_name: str) -> tuple:
    if index + 1 >= len(tokens):
        raise typer.BadParameter(f"Option {option_name} requires a value.")
    return tokens[index + 1], index + 2


def _parse_port(value: str, option_name: str) -> int:
    try:
        port = int(value)
    except ValueError as exc:
        raise typer.BadParameter(f"Option {option_name} must be an integer.") from exc
    if not (1 <= port <= 65535):
        raise typer.BadParameter(f"Option {option_name} must be between 1 and 65535.")
    return port


def _read_optional_port(tokens: List[str], index: int, option_name: str) -> tuple:
    """Read ``--flag [PORT]``; the port is taken only when the next token is numeric."""
    if index + 1 < len(tokens) and tokens[index + 1].isdigit():
        return _parse_port(tokens[index + 1], option_name), index + 2
    return DEFAULT_INSPECT_PORT, index + 1


def build_runtime_env(
    inspect: Optional[int] = None,
    inspect_brk: Optional[int] = None,
    remote_debugging_port: Optional[int] = None,
    no_sandbox: bool = False,
    runtime_args: Optional[List[str]] = None,
) -> Dict[str, str]:
    """Translate debug flags into environment for the runtime process."""
    env: Dict[str, str] = {"ELECTRO_MODE": "development"}

    if remote_debugging_port is not None:
        env["REMOTE_DEBUGGING_PORT"] = str(remote_debugging_port)

    # --inspect-brk wins over --inspect when both are given.
    if inspect_brk is not None:
        env["NODE_OPTIONS"] = f"--inspect-brk={inspect_brk}"
    elif inspect is not None:
        env["NODE_OPTIONS"] = f"--inspect={inspect}"

    if no_sandbox:
        env["NO_SANDBOX"] = "1"

    if runtime_args:
        env["ELECTRON_CLI_ARGS"] = json.dumps(runtime_args)

    return env


async def run_dev_session(
    config_path: Path,
    options: DevOptions,
    controller_factory: Callable[[Path, DevOptions], SessionController] = SessionController,
) -> int:
    """
    Run dev sessions until the runtime exits, a signal arrives, or startup fails.

    A config change stops the current session and starts a fresh one from the
    reloaded configuration. Returns the process exit status.
    """
    loop = asyncio.get_running_loop()
    finished: asyncio.Future = loop.create_future()
    tasks: Set[asyncio.Task] = set()
    state: Dict[str, Optional[SessionController]] = {"controller": None}

    def finish(code: int) -> None:
        if not finished.done():
            finished.set_result(code)

    def schedule_start() -> None:
        if finished.done():
            return
        task = loop.create_task(start_session())
        tasks.add(task)
        task.add_done_callback(tasks.discard)

    async def start_session() -> None:
        controller = controller_factory(config_path, options)
        state["controller"] = controller
        controller.set_on_exit(finish)
        controller.set_on_restart(schedule_start)
        try:
            await controller.start()
        except Exception as exc:
            OutputFormatter.log(f"Failed to start dev server: {exc}", severity="error")
            controller.stop()
            finish(1)

    remove_handlers = install_shutdown_handlers(loop, lambda _sig: finish(0))
    try:
        schedule_start()
        return await finished
    finally:
        remove_handlers()
        for task in list(tasks):
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        if state["controller"] is not None:
            state["controller"].stop()


@app.command(context_settings={"allow_extra_args": True, "ignore_unknown_options": True})
def dev(
    ctx: typer.Context,
):
    """
    Start a development session with live rebuilds and runtime restarts.
    """
    config_path = Path(DEFAULT_CONFIG_NAME)
    out_dir: Optional[str] = None
    log_level: Optional[str] = None
    sourcemap: Optional[str] = None
    clear_screen = True
    renderer_only = False
    inspect: Optional[int] = None
    inspect_brk: Optional[int] = None
    remote_debugging_port: Optional[int] = None
    no_sandbox = False
    runtime_args: List[str] = []

    tokens = list(ctx.args)
    index = 0
    while index < len(tokens):
        token = tokens[index]
        if token == "--":
            runtime_args.extend(tokens[index + 1:])
            break
        if token in ("--config", "-c"):
            config_value, index = _read_option_value(tokens, index, token)
            config_path = Path(config_value)
            continue
        if token.startswith("--config="):
            config_path = Path(token.split("=", 1)[1])
            index += 1
            continue
        if token in ("--out-dir", "-o"):
            out_dir, index = _read_option_value(tokens, index, token)
            continue
        if token.startswith("--out-dir="):
            out_dir = token.split("=", 1)[1]
            index += 1
            continue
        if token in ("--log-level", "-l"):
            log_level, index = _read_option_value(tokens, index, token)
            continue
        if token.startswith("--log-level="):
            log_level = token.split("=", 1)[1]
            index += 1
            continue
        if token == "--sourcemap":
            sourcemap, index = _read_option_value(tokens, index, token)
            continue
        if token.startswith("--sourcemap="):
            sourcemap = token.split("=", 1)[1]
            index += 1
            continue
        if token == "--clear-screen":
            clear_screen = True
            index += 1
            continue
        if token == "--no-clear-screen":
            clear_screen = False
            index += 1
            continue
        if token == "--renderer-only":
            renderer_only = True
            index += 1
            continue
        if token == "--inspect":
            inspect, index = _read_optional_port(tokens, index, token)
            continue
        if token.startswith("--inspect="):
            inspect = _parse_port(token.split("=", 1)[1], "--inspect")
            index += 1
            continue
        if token == "--inspect-brk":
            inspect_brk, index = _read_optional_port(tokens, index, token)
            continue
        if token.startswith("--inspect-brk="):
            inspect_brk = _parse_port(token.split("=", 1)[1], "--inspect-brk")
            index += 1
            continue
        if token == "--remote-debugging-port":
            port_value, index = _read_option_value(tokens, index, token)
            remote_debugging_port = _parse_port(port_value, token)
            continue
        if token.startswith("--remote-debugging-port="):
            remote_debugging_port = _parse_port(token.split("=", 1)[1], "--remote-debugging-port")
            index += 1
            continue
        if token == "--no-sandbox":
            no_sandbox = True
            index += 1
            continue
        # click drops a bare "--", so anything unrecognized is forwarded to the runtime.
        runtime_args.append(token)
        index += 1

    if log_level is not None and log_level not in LOG_LEVELS:
        raise typer.BadParameter(f"Option --log-level must be one of: {' | '.join(LOG_LEVELS)}.")

    if sourcemap is not None:
        sourcemap = validate_sourcemap(sourcemap)

    options = DevOptions(
        log_level=log_level,
        clear_screen=clear_screen,
        renderer_only=renderer_only,
        sourcemap=sourcemap,
        out_dir=out_dir,
        env=build_runtime_env(
            inspect=inspect,
            inspect_brk=inspect_brk,
            remote_debugging_port=remote_debugging_port,
            no_sandbox=no_sandbox,
            runtime_args=runtime_args,
        ),
    )

    code = asyncio.run(run_dev_session(config_path, options))
    raise typer.Exit(code=code)


if __name__ == "__main__":
    app()
