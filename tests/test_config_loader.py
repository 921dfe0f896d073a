import pytest
from pathlib import Path

from electrodev.config.loader import interpolate_env_vars, load_config, validate_sourcemap
from electrodev.utils.diagnostics import ConfigError


def _project(tmp_path, config: str, files=("src/main.ts", "src/windows/main/index.html")) -> Path:
    for relative in files:
        path = tmp_path / relative
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text("// entry")
    config_file = tmp_path / "electro.yaml"
    config_file.write_text(config)
    return config_file


def test_load_config_no_file(tmp_path):
    with pytest.raises(ConfigError, match="Config file not found"):
        load_config(tmp_path / "nonexistent.yaml")


def test_load_config_basic(tmp_path):
    config_file = _project(tmp_path, """
runtime:
  entry: src/main.ts
windows:
  - name: main
    entry: src/windows/main/index.html
    features: [app-core]
dev:
  restart_debounce_ms: 50
build:
  main: ["esbuild", "{entry}", "--outdir={out_dir}"]
env:
  API_URL: http://localhost:3000
""")

    loaded = load_config(config_file)

    assert loaded.root == tmp_path.resolve()
    assert loaded.config_path == config_file.resolve()
    assert loaded.config.runtime.entry_path() == (tmp_path / "src/main.ts").resolve()
    assert loaded.config.windows[0].name == "main"
    assert loaded.config.windows[0].source == config_file.resolve()
    assert loaded.config.dev.restart_debounce_ms == 50
    assert loaded.config.dev.config_debounce_ms == 300
    assert loaded.config.dev.initial_build_timeout_ms == 10000
    assert loaded.config.build.main == ["esbuild", "{entry}", "--outdir={out_dir}"]
    assert loaded.config.env == {"API_URL": "http://localhost:3000"}
    assert loaded.warnings == []


def test_load_config_interpolation(tmp_path, monkeypatch):
    monkeypatch.setenv("ELECTRO_MAIN", "src/main.ts")
    monkeypatch.delenv("MISSING_VAR", raising=False)
    config_file = _project(tmp_path, """
runtime: "${ELECTRO_MAIN}"
env:
  PORT: "${PORT_OVERRIDE:4000}"
  MISSING: "${MISSING_VAR}"
""")

    loaded = load_config(config_file)

    assert loaded.config.runtime.entry == "src/main.ts"
    assert loaded.config.env["PORT"] == "4000"
    assert loaded.config.env["MISSING"] == ""


def test_interpolate_env_vars_prefers_environment(monkeypatch):
    monkeypatch.setenv("HOST_NAME", "example.test")
    assert interpolate_env_vars("${HOST_NAME:localhost}") == "example.test"


def test_window_files_are_config_sources(tmp_path):
    config_file = _project(tmp_path, """
runtime:
  entry: src/main.ts
windows:
  - src/windows/main/window.yaml
""")
    window_file = tmp_path / "src/windows/main/window.yaml"
    window_file.write_text("name: main\nentry: index.html\n")

    loaded = load_config(config_file)

    window = loaded.config.windows[0]
    assert window.source == window_file.resolve()
    assert window.entry_path() == (tmp_path / "src/windows/main/index.html").resolve()
    assert loaded.source_paths() == {config_file.resolve(), window_file.resolve()}


def test_missing_runtime_fails_fast(tmp_path):
    config_file = _project(tmp_path, "windows: []\n")

    with pytest.raises(ConfigError, match="must define a runtime"):
        load_config(config_file)


def test_missing_main_entry_fails_fast(tmp_path):
    config_file = _project(tmp_path, "runtime:\n  entry: src/missing.ts\n")

    with pytest.raises(ConfigError, match="Main entry not found"):
        load_config(config_file)


def test_duplicate_window_names_fail_fast(tmp_path):
    config_file = _project(tmp_path, """
runtime:
  entry: src/main.ts
windows:
  - {name: main, entry: src/windows/main/index.html}
  - {name: main, entry: src/windows/main/index.html}
""")

    with pytest.raises(ConfigError, match='Duplicate window name "main"'):
        load_config(config_file)


def test_missing_window_entry_fails_fast(tmp_path):
    config_file = _project(tmp_path, """
runtime:
  entry: src/main.ts
windows:
  - {name: settings, entry: src/windows/settings/index.html}
""")

    with pytest.raises(ConfigError, match='Window "settings" entry not found'):
        load_config(config_file)


def test_invalid_window_name_is_rejected(tmp_path):
    config_file = _project(tmp_path, """
runtime:
  entry: src/main.ts
windows:
  - {name: "1bad", entry: src/windows/main/index.html}
""")

    with pytest.raises(ConfigError, match="Invalid window config"):
        load_config(config_file)


def test_unknown_runtime_keys_are_rejected(tmp_path):
    config_file = _project(tmp_path, "runtime:\n  entry: src/main.ts\n  bogus: true\n")

    with pytest.raises(ConfigError, match="Invalid config"):
        load_config(config_file)


def test_invalid_yaml_is_a_config_error(tmp_path):
    config_file = _project(tmp_path, "runtime: [unclosed\n")

    with pytest.raises(ConfigError, match="Could not read"):
        load_config(config_file)


def test_empty_features_produce_warning(tmp_path):
    config_file = _project(tmp_path, """
runtime:
  entry: src/main.ts
windows:
  - {name: main, entry: src/windows/main/index.html, features: []}
""")

    loaded = load_config(config_file)

    assert [w.error_code for w in loaded.warnings] == ["WINDOW_NO_FEATURES"]
    assert "empty features array" in loaded.warnings[0].message


def test_validate_sourcemap_falls_back_to_linked(capsys):
    assert validate_sourcemap("inline") == "inline"
    assert validate_sourcemap("bogus") == "linked"
    assert 'Unknown --sourcemap value "bogus"' in capsys.readouterr().err
