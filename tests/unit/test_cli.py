"""
Unit tests for the command line: config files, precedence and errors.
"""

import json
from pathlib import Path

import pytest

from devserve import __main__ as cli
from devserve.config import ConfigError


def write_py_config(path: Path, body: str) -> Path:
    path.write_text(body, encoding="utf-8")
    return path


class TestParser:
    def test_defaults_are_unset(self):
        args = cli.build_parser().parse_args([])

        assert args.config is None
        assert args.port is None
        assert args.host is None
        assert args.open is None
        assert args.log_level is None
        assert cli.cli_options(args) == {}

    def test_flags(self):
        args = cli.build_parser().parse_args(["-p", "3000", "-H", "0.0.0.0", "--open", "-l", "debug"])

        assert cli.cli_options(args) == {
            "port": 3000, "host": "0.0.0.0", "open": True, "log_level": "debug",
        }

    def test_version(self, capsys):
        with pytest.raises(SystemExit) as exc_info:
            cli.build_parser().parse_args(["--version"])

        assert exc_info.value.code == 0
        assert capsys.readouterr().out.strip() == f"devserve {cli.__version__}"


class TestLoadConfigFile:
    """Tests for load_config_file()."""

    def test_json(self, tmp_path):
        path = tmp_path / "devserve.config.json"
        path.write_text(json.dumps({"port": 4000, "fallback": True}))

        assert cli.load_config_file(str(path)) == {"port": 4000, "fallback": True}

    def test_python_config(self, tmp_path):
        path = write_py_config(tmp_path / "devserve.config.py",
                               "config = {'port': 4001, 'headers': {'X-A': '1'}}\n")

        assert cli.load_config_file(str(path)) == {"port": 4001, "headers": {"X-A": "1"}}

    def test_python_upper_case_name(self, tmp_path):
        path = write_py_config(tmp_path / "devserve.config.py", "CONFIG = {'port': 4002}\n")

        assert cli.load_config_file(str(path)) == {"port": 4002}

    def test_missing_file(self, tmp_path):
        missing = str(tmp_path / "nope.json")

        with pytest.raises(cli.ConfigFileNotFound) as exc_info:
            cli.load_config_file(missing)

        assert str(exc_info.value) == f'Config file not found at "{missing}"'

    def test_invalid_json(self, tmp_path):
        path = tmp_path / "bad.json"
        path.write_text("{port: ")

        with pytest.raises(ConfigError):
            cli.load_config_file(str(path))

    def test_not_a_mapping(self, tmp_path):
        path = tmp_path / "list.json"
        path.write_text("[1, 2]")

        with pytest.raises(ConfigError):
            cli.load_config_file(str(path))


class TestFindConfigFile:
    def test_none_found(self, tmp_path):
        assert cli.find_config_file(str(tmp_path)) is None

    def test_python_preferred(self, tmp_path):
        (tmp_path / "devserve.config.json").write_text("{}")
        write_py_config(tmp_path / "devserve.config.py", "config = {}\n")

        assert cli.find_config_file(str(tmp_path)) == str(tmp_path / "devserve.config.py")

    def test_json_found(self, tmp_path):
        (tmp_path / "devserve.config.json").write_text("{}")

        assert cli.find_config_file(str(tmp_path)) == str(tmp_path / "devserve.config.json")


class TestResolveOptions:
    """Config file < environment < CLI flags."""

    def test_precedence(self, tmp_path):
        (tmp_path / "devserve.config.json").write_text(
            json.dumps({"port": 1000, "host": "file-host", "log_level": "warn", "fallback": True})
        )
        args = cli.build_parser().parse_args(["--port", "3000"])
        environ = {"DEVSERVE_PORT": "2000", "DEVSERVE_HOST": "env-host"}

        options = cli.resolve_options(args, environ=environ, cwd=str(tmp_path))

        assert options["port"] == 3000
        assert options["host"] == "env-host"
        assert options["log_level"] == "warn"
        assert options["fallback"] is True

    def test_explicit_config_path(self, tmp_path):
        path = tmp_path / "other.json"
        path.write_text(json.dumps({"port": 5000}))
        args = cli.build_parser().parse_args(["-c", str(path)])

        assert cli.resolve_options(args, environ={}, cwd=str(tmp_path)) == {"port": 5000}


class TestMain:
    def test_missing_config_exits_with_message(self, tmp_path, capsys, monkeypatch):
        calls = []
        monkeypatch.setattr(cli, "setup_logging", lambda **kwargs: calls.append(kwargs))
        missing = str(tmp_path / "missing.config.py")

        with pytest.raises(SystemExit) as exc_info:
            cli.main(["--config", missing])

        assert exc_info.value.code == 1
        assert capsys.readouterr().err.strip() == f'Error: Config file not found at "{missing}"'
        assert calls == []

    def test_serves_until_stopped(self, tmp_path, site, monkeypatch, manager):
        (tmp_path / "devserve.config.json").write_text(json.dumps({
            "content_base": str(site), "host": "127.0.0.1", "port": 0, "verbose": False,
        }))
        monkeypatch.chdir(tmp_path)
        monkeypatch.setattr(cli, "setup_logging", lambda **kwargs: None)
        monkeypatch.setattr(cli, "shutdown_logging", lambda: None)
        monkeypatch.setattr(cli, "get_manager", lambda: manager)
        monkeypatch.setattr("devserve.controller.get_manager", lambda: manager)
        seen = []

        def fake_wait(timeout=None):
            seen.append(manager.instance)
            raise KeyboardInterrupt

        monkeypatch.setattr(manager, "wait", fake_wait)

        cli.main([])

        assert seen[0] is not None
        assert manager.instance is None
