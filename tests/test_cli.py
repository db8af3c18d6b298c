"""Tests for the command-line entry point."""

import pytest

from acid_harness import cli
from acid_harness.consistency import ConsistencyViolation
from acid_harness.store import Row

pytestmark = pytest.mark.usefixtures("restore_root_logging")


def test_parse_args_defaults():
    args = cli.parse_args([])
    assert args.config is None
    assert args.scenario is None
    assert args.duration is None


def test_parse_args_repeatable_scenario():
    args = cli.parse_args(["--scenario", "get", "--scenario", "mixed", "--writers", "2"])
    assert args.scenario == ["get", "mixed"]
    assert args.writers == 2


def test_parse_args_rejects_unknown_scenario():
    with pytest.raises(SystemExit):
        cli.parse_args(["--scenario", "bogus"])


def test_short_run_passes(tmp_path):
    log_file = tmp_path / "run.log"
    code = cli.main(
        [
            "--scenario",
            "mixed",
            "--duration",
            "0.3",
            "--seed",
            "5",
            "--log-file",
            str(log_file),
        ]
    )
    assert code == 0
    text = log_file.read_text(encoding="utf-8")
    assert "Scenario mixed passed" in text
    assert "Finished test" in text


def test_default_log_path_uses_log_dir(tmp_path):
    config = tmp_path / "acid.toml"
    config.write_text(
        f'[harness]\nscenarios = ["get"]\nduration = 0.1\n\n[logging]\nlog_dir = "{tmp_path / "logs"}"\n',
        encoding="utf-8",
    )
    assert cli.main(["--config", str(config)]) == 0
    logs = list((tmp_path / "logs").glob("run_*_get.log"))
    assert len(logs) == 1


def test_failed_run_returns_one(tmp_path, monkeypatch):
    def explode(scenario, settings):
        raise ConsistencyViolation(b"value", Row(b"test_row_0", {(b"A", b"data0"): b"value"}), 3)

    monkeypatch.setattr(cli, "run_scenario", explode)
    log_file = tmp_path / "run.log"
    assert cli.main(["--scenario", "get", "--log-file", str(log_file)]) == 1
    assert "Scenario get FAILED: Failed after 3!" in log_file.read_text(encoding="utf-8")


def test_missing_config_returns_two(tmp_path, capsys):
    assert cli.main(["--config", str(tmp_path / "absent.toml")]) == 2
    assert "not found" in capsys.readouterr().err


def test_invalid_override_exits_two(tmp_path):
    with pytest.raises(SystemExit) as info:
        cli.main(["--rows", "0", "--log-file", str(tmp_path / "run.log")])
    assert info.value.code == 2


@pytest.mark.parametrize(
    "line",
    ["filter_column = 5", "table = 7", "payload = 3", 'flush = "false"'],
)
def test_mistyped_run_knob_exits_two(tmp_path, line):
    config = tmp_path / "acid.toml"
    config.write_text(f'[harness]\nscenarios = ["get"]\nduration = 0.1\n\n[run]\n{line}\n', encoding="utf-8")
    with pytest.raises(SystemExit) as info:
        cli.main(["--config", str(config), "--log-file", str(tmp_path / "run.log")])
    assert info.value.code == 2
