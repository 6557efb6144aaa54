# Overview: Pytest coverage for terminals, settings and the CLI groups.

import pytest

from poscore.services import settings_service, terminal_service
from poscore.validation import ConflictError, NotFoundError, ValidationError


class TestTerminals:
    def test_create_and_list(self, db_session):
        terminal_service.create_terminal("TILL-02", "Back Counter")
        terminal_service.create_terminal("TILL-01", "Front Counter")

        assert [t.terminal_code for t in terminal_service.get_active_terminals()] == ["TILL-01", "TILL-02"]

    def test_duplicate_code_conflicts(self, db_session, terminal):
        with pytest.raises(ConflictError):
            terminal_service.create_terminal("TILL-01", "Another")

    def test_missing_terminal(self, db_session):
        with pytest.raises(NotFoundError):
            terminal_service.get_terminal(404)

    def test_deactivated_terminal_hidden(self, db_session, terminal):
        terminal_service.deactivate_terminal(terminal.id)
        assert terminal_service.get_active_terminals() == []


class TestSettings:
    def test_defaults_seeded_from_config(self, db_session):
        settings = settings_service.get_settings()

        assert settings.tax_rate_bps == 1500
        assert settings.order_prefix == "POS-"
        assert settings.currency == "JMD"
        assert settings.require_open_session is True

    def test_update(self, db_session):
        settings = settings_service.update_settings(tax_rate_bps=1650, currency="usd", order_prefix="SHOP-")

        assert settings.tax_rate_bps == 1650
        assert settings.currency == "USD"
        assert settings.order_prefix == "SHOP-"

    def test_invalid_updates_rejected(self, db_session):
        with pytest.raises(ValidationError):
            settings_service.update_settings(tax_rate_bps=10_001)
        with pytest.raises(ValidationError):
            settings_service.update_settings(currency="JA")
        with pytest.raises(ValidationError):
            settings_service.update_settings(favourite_colour="blue")


class TestCli:
    def test_terminal_and_session_commands(self, app, db_session):
        runner = app.test_cli_runner()

        result = runner.invoke(args=["terminals", "create", "--code", "TILL-09", "--name", "Kiosk"])
        assert result.exit_code == 0
        assert "PASS Created terminal: TILL-09" in result.output

        terminal = terminal_service.get_active_terminals()[0]
        result = runner.invoke(args=[
            "sessions", "open", "--terminal-id", str(terminal.id), "--cashier", "Jane", "--float-cents", "50000",
        ])
        assert result.exit_code == 0

        result = runner.invoke(args=["sessions", "list"])
        assert "Jane" in result.output
        assert "500.00" in result.output

    def test_cli_reports_errors(self, app, db_session):
        runner = app.test_cli_runner()

        result = runner.invoke(args=["reports", "z", "--session-id", "999"])

        assert result.exit_code == 1
        assert "FAIL Error" in result.output
