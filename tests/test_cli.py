import asyncio
import json
from pathlib import Path

from typer.testing import CliRunner

from electrodev.cli import main as cli_main
from electrodev.cli.main import app, build_runtime_env, run_dev_session
from electrodev.runtime.session import DevOptions

runner = CliRunner()


def _combined_output(result) -> str:
    return f"{result.stdout}{getattr(result, 'stderr', '')}"


def _capture_session(monkeypatch, code=0):
    captured = {}

    async def fake_run(config_path, options):
        captured["config_path"] = config_path
        captured["options"] = options
        return code

    monkeypatch.setattr(cli_main, "run_dev_session", fake_run)
    return captured


def test_dev_help():
    result = runner.invoke(app, ["dev", "--help"])
    assert result.exit_code == 0
    assert "Start a development session" in result.stdout


def test_dev_defaults(monkeypatch):
    captured = _capture_session(monkeypatch)

    result = runner.invoke(app, ["dev"])

    assert result.exit_code == 0
    assert captured["config_path"] == Path("electro.yaml")
    options = captured["options"]
    assert options.clear_screen is True
    assert options.renderer_only is False
    assert options.env == {"ELECTRO_MODE": "development"}


def test_dev_flags_become_session_options(monkeypatch):
    captured = _capture_session(monkeypatch)

    result = runner.invoke(
        app,
        [
            "dev",
            "--config",
            "app/electro.yaml",
            "--renderer-only",
            "--out-dir=.out",
            "--log-level",
            "warn",
            "--sourcemap",
            "inline",
            "--no-clear-screen",
            "--inspect",
            "--remote-debugging-port",
            "9333",
            "--no-sandbox",
            "window-arg",
        ],
    )

    assert result.exit_code == 0, _combined_output(result)
    options = captured["options"]
    assert captured["config_path"] == Path("app/electro.yaml")
    assert options.renderer_only is True
    assert options.out_dir == ".out"
    assert options.log_level == "warn"
    assert options.sourcemap == "inline"
    assert options.clear_screen is False
    assert options.env["NODE_OPTIONS"] == "--inspect=9229"
    assert options.env["REMOTE_DEBUGGING_PORT"] == "9333"
    assert options.env["NO_SANDBOX"] == "1"
    assert json.loads(options.env["ELECTRON_CLI_ARGS"]) == ["window-arg"]


def test_dev_inspect_accepts_explicit_port(monkeypatch):
    captured = _capture_session(monkeypatch)

    result = runner.invoke(app, ["dev", "--inspect-brk", "9300"])

    assert result.exit_code == 0
    assert captured["options"].env["NODE_OPTIONS"] == "--inspect-brk=9300"
    assert "ELECTRON_CLI_ARGS" not in captured["options"].env


def test_dev_unknown_sourcemap_falls_back_to_linked(monkeypatch):
    captured = _capture_session(monkeypatch)

    result = runner.invoke(app, ["dev", "--sourcemap", "bogus"])

    assert result.exit_code == 0
    assert captured["options"].sourcemap == "linked"


def test_dev_rejects_bad_log_level(monkeypatch):
    _capture_session(monkeypatch)

    result = runner.invoke(app, ["dev", "--log-level", "loud"])

    assert result.exit_code != 0
    assert "--log-level" in _combined_output(result)


def test_dev_rejects_bad_port(monkeypatch):
    _capture_session(monkeypatch)

    result = runner.invoke(app, ["dev", "--remote-debugging-port", "abc"])

    assert result.exit_code != 0


def test_dev_exit_code_follows_session(monkeypatch):
    _capture_session(monkeypatch, code=7)

    result = runner.invoke(app, ["dev"])

    assert result.exit_code == 7


def test_build_runtime_env_prefers_inspect_brk():
    env = build_runtime_env(inspect=9229, inspect_brk=9230, runtime_args=["--trace-warnings"])

    assert env["NODE_OPTIONS"] == "--inspect-brk=9230"
    assert env["ELECTRO_MODE"] == "development"
    assert json.loads(env["ELECTRON_CLI_ARGS"]) == ["--trace-warnings"]
    assert "NO_SANDBOX" not in env


class StubController:
    def __init__(self, config_path, options, start_error=None, on_started=None):
        self.config_path = config_path
        self.options = options
        self.start_error = start_error
        self.on_started = on_started
        self.stops = 0
        self.on_exit = None
        self.on_restart = None

    def set_on_exit(self, fn):
        self.on_exit = fn

    def set_on_restart(self, fn):
        self.on_restart = fn

    async def start(self):
        if self.start_error is not None:
            raise self.start_error
        if self.on_started is not None:
            asyncio.get_running_loop().call_soon(self.on_started, self)

    def stop(self):
        self.stops += 1


def test_run_dev_session_reports_startup_failure(capsys):
    controllers = []

    def factory(config_path, options):
        controller = StubController(config_path, options, start_error=RuntimeError("boom"))
        controllers.append(controller)
        return controller

    code = asyncio.run(run_dev_session(Path("electro.yaml"), DevOptions(), controller_factory=factory))

    assert code == 1
    assert len(controllers) == 1
    assert controllers[0].stops >= 1
    assert "Failed to start dev server: boom" in capsys.readouterr().err


def test_run_dev_session_recreates_session_on_config_change():
    controllers = []

    def on_started(controller):
        if len(controllers) == 1:
            controller.stop()
            controller.on_restart()
        else:
            controller.on_exit(0)

    def factory(config_path, options):
        controller = StubController(config_path, options, on_started=on_started)
        controllers.append(controller)
        return controller

    code = asyncio.run(run_dev_session(Path("electro.yaml"), DevOptions(), controller_factory=factory))

    assert code == 0
    assert len(controllers) == 2
    assert controllers[0].stops == 1
    assert controllers[1].stops == 1


def test_run_dev_session_propagates_runtime_exit_code():
    def factory(config_path, options):
        return StubController(config_path, options, on_started=lambda controller: controller.on_exit(5))

    assert asyncio.run(run_dev_session(Path("electro.yaml"), DevOptions(), controller_factory=factory)) == 5
