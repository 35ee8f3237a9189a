from pathlib import Path

import pytest

from sqlpane import __version__
from sqlpane.cli import build_parser, load_settings, main
from sqlpane.keymap import Action, Mode

SQLITE_CONFIG = """
connections:
  - type: sqlite
    name: local
    path: {path}
"""


def write_file(tmp_path: Path, name: str, content: str) -> Path:
    path = tmp_path / name
    path.write_text(content)
    return path


def test_version(capsys: pytest.CaptureFixture) -> None:
    with pytest.raises(SystemExit) as exc_info:
        main(["--version"])
    assert exc_info.value.code == 0
    assert __version__ in capsys.readouterr().out


def test_invalid_config_exits_before_ui(tmp_path: Path, capsys: pytest.CaptureFixture) -> None:
    config = write_file(tmp_path, "config.yml", "connections:\n  - type: sqlite\n    name: local\n")
    assert main(["--config-path", str(config)]) == 1
    assert "sqlpane: connections[0]: sqlite needs a path" in capsys.readouterr().err


def test_invalid_key_bindings_exit_before_ui(tmp_path: Path, capsys: pytest.CaptureFixture) -> None:
    config = write_file(tmp_path, "config.yml", SQLITE_CONFIG.format(path=tmp_path / "app.db"))
    bindings = write_file(tmp_path, "key_bind.yml", "record_view:\n  j: teleport\n")
    assert main(["-c", str(config), "-k", str(bindings)]) == 1
    assert "Unknown action 'teleport'" in capsys.readouterr().err


def test_missing_key_binding_file_is_an_error(tmp_path: Path, capsys: pytest.CaptureFixture) -> None:
    config = write_file(tmp_path, "config.yml", SQLITE_CONFIG.format(path=tmp_path / "app.db"))
    assert main(["-c", str(config), "-k", str(tmp_path / "absent.yml")]) == 1
    assert "not found" in capsys.readouterr().err


def test_config_path_from_environment(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    config = write_file(tmp_path, "config.yml", SQLITE_CONFIG.format(path=tmp_path / "app.db"))
    monkeypatch.setenv("SQLPANE_CONFIG", str(config))
    monkeypatch.setenv("HOME", str(tmp_path))

    app_config, keymap = load_settings(build_parser().parse_args([]))

    assert [c.id for c in app_config.connections] == ["local"]
    assert keymap.resolve(Mode.RECORD_VIEW, "j") is Action.SCROLL_DOWN


def test_key_bind_path_from_config(tmp_path: Path) -> None:
    bindings = write_file(tmp_path, "keys.yml", "table_list:\n  j: scroll_up\n")
    config = write_file(
        tmp_path,
        "config.yml",
        SQLITE_CONFIG.format(path=tmp_path / "app.db") + f"key_bind_path: {bindings}\n",
    )

    _, keymap = load_settings(build_parser().parse_args(["-c", str(config)]))

    assert keymap.resolve(Mode.TABLE_LIST, "j") is Action.SCROLL_UP
    assert keymap.resolve(Mode.TABLE_LIST, "k") is Action.SCROLL_UP


def test_directory_config_path_exits_before_ui(tmp_path: Path, capsys: pytest.CaptureFixture) -> None:
    assert main(["--config-path", str(tmp_path)]) == 1
    assert "sqlpane: Cannot read" in capsys.readouterr().err


def test_directory_key_binding_path_exits_before_ui(
    tmp_path: Path, capsys: pytest.CaptureFixture
) -> None:
    config = write_file(tmp_path, "config.yml", SQLITE_CONFIG.format(path=tmp_path / "app.db"))
    bindings = tmp_path / "bindings"
    bindings.mkdir()
    assert main(["-c", str(config), "-k", str(bindings)]) == 1
    assert "Cannot read" in capsys.readouterr().err
