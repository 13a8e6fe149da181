"""Integration tests for the firewall apply command.

Runs the full CLI against a configuration whose install targets live in
a temporary directory, mocking the reload commands and the root check.
"""

import subprocess
from pathlib import Path
from typing import Generator
from unittest.mock import MagicMock, patch

import pytest
import yaml
from typer.testing import CliRunner

from hostcfg.cli import app
from hostcfg.core.audit import AuditLogger


runner = CliRunner()


@pytest.fixture(autouse=True)
def clean_environment(monkeypatch) -> None:
    monkeypatch.delenv("HOSTCFG_FORCE", raising=False)
    monkeypatch.delenv("HOSTCFG_CONFIG", raising=False)


@pytest.fixture(autouse=True)
def no_audit() -> Generator[None, None, None]:
    """Keep audit events out of /var/log."""
    with patch(
        "hostcfg.services.firewall_step.get_audit_logger",
        return_value=AuditLogger(enabled=False),
    ):
        yield


@pytest.fixture
def mock_root_check() -> Generator[None, None, None]:
    """Mock the root check to allow tests to run without root."""
    with patch("hostcfg.commands.firewall.os.geteuid", return_value=0):
        yield


@pytest.fixture
def mock_reload() -> Generator[MagicMock, None, None]:
    """Mock the reload commands."""
    with patch("hostcfg.core.executor.subprocess.run") as mock:
        mock.return_value = subprocess.CompletedProcess(args=[], returncode=0, stdout="", stderr="")
        yield mock


def write_config(tmp_path: Path, **firewall) -> Path:
    data = {
        "networks": {"Office": ["10.1.0.0/16", "2001:db8:1::/48"]},
        "firewall": {
            "enabled": True,
            "accept": ["Office", "22 # ssh", "any", "443"],
            "drop": ["192.168.1.10", "53:udp"],
            "iptables": {"rules_path": str(tmp_path / "rules.v4"), "reload_command": ["reload-v4"]},
            "ip6tables": {"rules_path": str(tmp_path / "rules.v6"), "reload_command": ["reload-v6"]},
        },
    }
    data["firewall"].update(firewall)
    path = tmp_path / "config.yaml"
    path.write_text(yaml.safe_dump(data))
    return path


class TestApplyNotForced:
    """Without a force signal nothing is installed."""

    def test_shows_changes_only(self, tmp_path, mock_reload):
        config = write_config(tmp_path)

        result = runner.invoke(app, ["firewall", "apply", "--config", str(config)])

        assert result.exit_code == 0
        assert "--force-step" in result.output
        assert not (tmp_path / "rules.v4").exists()
        assert not (tmp_path / "rules.v6").exists()
        mock_reload.assert_not_called()

    def test_disabled_firewall_does_nothing(self, tmp_path, mock_reload):
        config = write_config(tmp_path, enabled=False)

        result = runner.invoke(app, ["firewall", "apply", "--force", "--dry-run", "--config", str(config)])

        assert result.exit_code == 0
        assert "not_run" in result.output
        mock_reload.assert_not_called()


class TestApplyForced:
    """Forced steps write the ruleset and reload."""

    def test_force_step_installs_one_family(self, tmp_path, mock_root_check, mock_reload):
        config = write_config(tmp_path)

        result = runner.invoke(
            app, ["firewall", "apply", "--force-step", "iptables", "--config", str(config)],
        )

        assert result.exit_code == 0
        rules_v4 = (tmp_path / "rules.v4").read_text()
        assert "-A inputdrop -s 192.168.1.10 -p udp --dport 53 -j DROP" in rules_v4
        assert "-A INPUT -s 10.1.0.0/16 -p tcp --dport 22 -j ACCEPT" in rules_v4
        assert not (tmp_path / "rules.v6").exists()
        mock_reload.assert_called_once()
        assert mock_reload.call_args[0][0] == ["reload-v4"]

    def test_force_installs_both(self, tmp_path, mock_root_check, mock_reload):
        config = write_config(tmp_path)

        result = runner.invoke(app, ["firewall", "apply", "--force", "--config", str(config)])

        assert result.exit_code == 0
        rules_v6 = (tmp_path / "rules.v6").read_text()
        assert "-A INPUT -s 2001:db8:1::/48 -p tcp --dport 22 -j ACCEPT" in rules_v6
        assert "192.168.1.10" not in rules_v6
        assert [c.args[0] for c in mock_reload.call_args_list] == [["reload-v4"], ["reload-v6"]]

    def test_force_from_environment(self, tmp_path, monkeypatch, mock_root_check, mock_reload):
        monkeypatch.setenv("HOSTCFG_FORCE", "ip6tables")
        config = write_config(tmp_path)

        result = runner.invoke(app, ["firewall", "apply", "--config", str(config)])

        assert result.exit_code == 0
        assert (tmp_path / "rules.v6").exists()
        assert not (tmp_path / "rules.v4").exists()

    def test_second_run_is_unchanged(self, tmp_path, mock_root_check, mock_reload):
        config = write_config(tmp_path)
        runner.invoke(app, ["firewall", "apply", "--force", "--config", str(config)])
        mock_reload.reset_mock()

        result = runner.invoke(app, ["firewall", "apply", "--force", "--config", str(config)])

        assert result.exit_code == 0
        assert "unchanged" in result.output
        mock_reload.assert_not_called()

    def test_dry_run_writes_nothing(self, tmp_path, mock_reload):
        config = write_config(tmp_path)

        result = runner.invoke(
            app, ["firewall", "apply", "--force", "--dry-run", "--config", str(config)],
        )

        assert result.exit_code == 0
        assert "DRY-RUN" in result.output
        assert not (tmp_path / "rules.v4").exists()
        mock_reload.assert_not_called()

    def test_reload_failure_exit_code(self, tmp_path, mock_root_check, mock_reload):
        mock_reload.return_value = subprocess.CompletedProcess(
            args=[], returncode=1, stdout="", stderr="unit not found",
        )
        config = write_config(tmp_path)

        result = runner.invoke(app, ["firewall", "apply", "--force", "--config", str(config)])

        assert result.exit_code == 1
        assert (tmp_path / "rules.v4").exists()
        assert "reload failed" in result.output

    def test_requires_root(self, tmp_path, mock_reload):
        config = write_config(tmp_path)

        with patch("hostcfg.commands.firewall.os.geteuid", return_value=1000):
            result = runner.invoke(app, ["firewall", "apply", "--force", "--config", str(config)])

        assert result.exit_code == 6
        assert not (tmp_path / "rules.v4").exists()


class TestApplyErrors:
    """Configuration errors abort before anything is installed."""

    def test_any_any_aborts(self, tmp_path, mock_root_check, mock_reload):
        config = write_config(tmp_path, accept=["any", "22", "any", "any"])

        result = runner.invoke(app, ["firewall", "apply", "--force", "--config", str(config)])

        assert result.exit_code == 2
        assert not (tmp_path / "rules.v4").exists()
        assert not (tmp_path / "rules.v6").exists()
        mock_reload.assert_not_called()

    def test_unwritable_rules_path(self, tmp_path, mock_root_check, mock_reload):
        (tmp_path / "notadir").write_text("")
        config = write_config(
            tmp_path,
            iptables={"rules_path": str(tmp_path / "notadir" / "rules.v4"), "reload_command": ["reload-v4"]},
        )

        result = runner.invoke(
            app, ["firewall", "apply", "--force-step", "iptables", "--config", str(config)],
        )

        assert result.exit_code == 15
        assert "Cannot write ruleset" in result.output
        mock_reload.assert_not_called()

    def test_invalid_config_file(self, tmp_path):
        config = tmp_path / "config.yaml"
        config.write_text("firewall: [broken\n")

        result = runner.invoke(app, ["firewall", "apply", "--config", str(config)])

        assert result.exit_code == 2
