"""Tests for the signoff CLI."""

from __future__ import annotations

import time
from pathlib import Path

import pytest
from click.testing import CliRunner

from signoff.auth.jwt import create_token, jwt_secret, verify_token
from signoff.cli import main
from signoff.config import Config


@pytest.fixture
def runner(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> CliRunner:
    monkeypatch.setenv("SIGNOFF_CONFIG", str(tmp_path))
    monkeypatch.delenv("SIGNOFF_LOG_LEVEL", raising=False)
    return CliRunner()


class TestCLI:
    """Test each command end to end."""

    def test_init(self, runner: CliRunner, tmp_path: Path) -> None:
        target = tmp_path / "cfg"
        result = runner.invoke(main, ["init", str(target)])
        assert result.exit_code == 0
        assert (target / "config.yaml").exists()

    def test_check(self, runner: CliRunner) -> None:
        result = runner.invoke(main, ["check"])
        assert result.exit_code == 0
        assert "Matrix, rules and workflows OK" in result.output

    def test_who(self, runner: CliRunner) -> None:
        result = runner.invoke(main, ["who", "expense", "approve_chargeable"])
        assert result.exit_code == 0
        assert "customer_pm" in result.output
        assert "supplier_pm" not in result.output

    def test_who_nobody(self, runner: CliRunner) -> None:
        result = runner.invoke(main, ["who", "invoice", "mark_overdue"])
        assert result.exit_code == 0
        assert "Nobody" in result.output

    def test_can_allowed(self, runner: CliRunner) -> None:
        result = runner.invoke(
            main,
            [
                "can", "delete", "timesheet",
                "--role", "contributor",
                "--actor", "c1",
                "--owner", "c1",
                "--status", "Draft",
            ],
        )
        assert result.exit_code == 0
        assert "allowed" in result.output

    def test_can_denied(self, runner: CliRunner) -> None:
        result = runner.invoke(
            main,
            [
                "can", "validate", "expense",
                "--role", "supplier_pm",
                "--status", "Submitted",
                "--chargeable",
            ],
        )
        assert result.exit_code == 0
        assert "denied: forbidden" in result.output

    def test_transitions(self, runner: CliRunner) -> None:
        result = runner.invoke(main, ["transitions", "timesheet", "--status", "Submitted"])
        assert result.exit_code == 0
        assert "validate" in result.output

    def test_transitions_for_role(self, runner: CliRunner) -> None:
        result = runner.invoke(
            main, ["transitions", "timesheet", "--status", "Validated", "--role", "customer_pm"]
        )
        assert result.exit_code == 0
        assert "approve" in result.output

    def test_matrix(self, runner: CliRunner) -> None:
        result = runner.invoke(main, ["matrix"])
        assert result.exit_code == 0
        assert "asymmetric entry" in result.output

    def test_matrix_for_role(self, runner: CliRunner) -> None:
        assert runner.invoke(main, ["matrix", "--role", "viewer"]).exit_code == 0
        assert runner.invoke(main, ["matrix", "--tier", "organisation"]).exit_code == 0

    def test_matrix_unknown_role(self, runner: CliRunner) -> None:
        result = runner.invoke(main, ["matrix", "--role", "wizard"])
        assert result.exit_code == 1
        assert "Unknown role" in result.output

    def test_whoami(self, runner: CliRunner) -> None:
        token = create_token("user-1", project_role="customer_pm", session_id="sess-1")
        result = runner.invoke(main, ["whoami", token])
        assert result.exit_code == 0
        assert "user-1" in result.output
        assert "Customer PM" in result.output

    def test_whoami_invalid(self, runner: CliRunner) -> None:
        result = runner.invoke(main, ["whoami", "not.a.token"])
        assert result.exit_code == 1
        assert "Error" in result.output

    def test_who_unknown_action(self, runner: CliRunner) -> None:
        result = runner.invoke(main, ["who", "certificate", "edit"])
        assert result.exit_code == 1
        assert "sign_as_customer" in result.output

    def test_can_reports_invalid_transition(self, runner: CliRunner) -> None:
        result = runner.invoke(
            main, ["can", "record_payment", "invoice", "--role", "supplier_pm", "--status", "Draft"]
        )
        assert result.exit_code == 0
        assert "denied: invalid_transition" in result.output

    def test_token_uses_configured_lifetime(self, runner: CliRunner, tmp_path: Path) -> None:
        Config(config_path=tmp_path, token_minutes=5).save()
        result = runner.invoke(main, ["token", "user-7", "--role", "contributor"])
        assert result.exit_code == 0
        payload = verify_token(result.output.strip(), jwt_secret())
        assert payload["sub"] == "user-7"
        assert payload["role"] == "contributor"
        assert payload["exp"] <= int(time.time()) + 5 * 60

        whoami = runner.invoke(main, ["whoami", result.output.strip()])
        assert "Contributor" in whoami.output

    def test_token_unknown_role(self, runner: CliRunner) -> None:
        result = runner.invoke(main, ["token", "user-7", "--role", "wizard"])
        assert result.exit_code == 1
        assert "Unknown role" in result.output
