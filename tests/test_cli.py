"""Tests for argument handling and the CLI entry point."""

import json
from unittest.mock import patch

import pytest

from defib.cli import build_parser, cli_overrides, main, resolve_targets
from defib.config import DefibConfig, load_config
from defib.watchdog import RunReport

pytestmark = pytest.mark.unit


def _parse(*argv):
    return build_parser().parse_args(list(argv))


class TestCliOverrides:
    def test_container_flags(self) -> None:
        args = _parse("-w", "https://hooks.example/x", "container",
                      "--health", "http://localhost:8000/health", "-d", "/srv/app", "-b", "30")
        assert cli_overrides(args) == {
            "webhookUrl": "https://hooks.example/x",
            "container": {
                "healthUrl": "http://localhost:8000/health",
                "composeDir": "/srv/app",
                "backoffMinutes": 30.0,
            },
        }

    def test_repeatable_patterns(self) -> None:
        args = _parse("processes", "--safe-to-kill", "stress-ng", "--safe-to-kill", "yes-loop", "--ignore", "ffmpeg")
        layer = cli_overrides(args)
        assert layer["processes"]["safeToKillPatterns"] == ["stress-ng", "yes-loop"]
        assert layer["processes"]["ignorePatterns"] == ["ffmpeg"]

    def test_system_flags(self) -> None:
        args = _parse("system", "--no-dstate", "--swap-restart-dir", "/srv/app", "--swap-restart-service", "worker")
        assert cli_overrides(args)["system"] == {
            "checkDState": False,
            "swapRestartCompose": {"composeDir": "/srv/app", "serviceName": "worker"},
        }

    def test_overrides_validate(self) -> None:
        args = _parse("processes", "--memory-threshold", "2048")
        config = load_config(cli_overrides=cli_overrides(args), environ={})
        assert config.processes.memory_threshold_mb == 2048


class TestResolveTargets:
    def test_all_without_container(self) -> None:
        assert resolve_targets("all", DefibConfig(state_file="/tmp/s.json")) == ["processes", "system"]

    def test_all_with_container(self) -> None:
        config = DefibConfig(state_file="/tmp/s.json",
                             container={"healthUrl": "http://localhost/health", "composeDir": "/srv/app"})
        assert resolve_targets("all", config) == ["container", "processes", "system"]

    def test_single(self) -> None:
        assert resolve_targets("system", DefibConfig(state_file="/tmp/s.json")) == ["system"]


class TestMain:
    @pytest.fixture(autouse=True)
    def clean_env(self, monkeypatch) -> None:
        for name in ("DEFIB_STATE_FILE", "DEFIB_HEALTH_URL", "DEFIB_COMPOSE_DIR", "DEFIB_WEBHOOK_URL"):
            monkeypatch.delenv(name, raising=False)

    def test_dangerous_pattern_exits_1(self, tmp_path, capsys) -> None:
        code = main(["--state-file", str(tmp_path / "state.json"), "processes", "--safe-to-kill", "node"])
        assert code == 1
        assert "Dangerous safe-to-kill pattern" in capsys.readouterr().err

    def test_relative_compose_dir_exits_1(self, tmp_path, capsys) -> None:
        code = main(["--state-file", str(tmp_path / "state.json"),
                     "container", "--health", "http://localhost/health", "-d", "relative/dir"])
        assert code == 1
        assert "absolute path" in capsys.readouterr().err

    def test_missing_config_file_exits_1(self, tmp_path, capsys) -> None:
        assert main(["-c", str(tmp_path / "missing.json"), "processes"]) == 1
        assert "Config file not found" in capsys.readouterr().err

    def test_dismiss(self, tmp_path, capsys) -> None:
        state_file = tmp_path / "state.json"

        assert main(["--state-file", str(state_file), "dismiss", "31337"]) == 0

        data = json.loads(state_file.read_text())
        assert "runaway:31337" in data["known_issues"]
        assert "Dismissed alerts for PID 31337" in capsys.readouterr().out

    def test_dismiss_invalid_pid(self, tmp_path) -> None:
        assert main(["--state-file", str(tmp_path / "state.json"), "dismiss", "abc"]) == 1

    def test_report_printed_as_json(self, tmp_path, capsys) -> None:
        report = RunReport(timestamp="2024-01-01T00:00:00", targets=["system"])
        with patch("defib.cli.Watchdog") as watchdog_cls:
            watchdog_cls.return_value.run.return_value = report
            code = main(["--json", "--state-file", str(tmp_path / "state.json"), "system"])

        assert code == 0
        watchdog_cls.return_value.run.assert_called_once_with(["system"])
        assert json.loads(capsys.readouterr().out)["targets"] == ["system"]

    def test_report_summary(self, tmp_path, capsys) -> None:
        report = RunReport(timestamp="2024-01-01T00:00:00", targets=["processes"])
        with patch("defib.cli.Watchdog") as watchdog_cls:
            watchdog_cls.return_value.run.return_value = report
            main(["--state-file", str(tmp_path / "state.json"), "processes"])

        assert "defib processes: 0 issue(s), 0 critical" in capsys.readouterr().out
