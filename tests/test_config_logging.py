"""
Tests for configuration, structured logging and the system context
"""

import json
import logging
import sys
from decimal import Decimal

import pytest

from accounting_core import config as config_module
from accounting_core.config import LedgerConfig, get_config, reload_config
from accounting_core.logging_config import JSONFormatter, get_logger, log_action, setup_logging
from accounting_core.storage import InMemoryStorage, SQLiteStorage
from accounting_core.system import AccountingSystem


class TestLedgerConfig:

    def test_defaults(self):
        config = LedgerConfig()
        assert config.balance_tolerance == "0.01"
        assert config.entry_number_prefix == "JE"
        assert config.cash_account_codes == ["1000", "1010"]

    def test_environment_overrides(self, monkeypatch):
        monkeypatch.setenv("LEDGER_API_PORT", "9100")
        monkeypatch.setenv("LEDGER_FISCAL_YEAR_START_MONTH", "7")
        monkeypatch.setenv("LEDGER_CASH_ACCOUNT_CODES", '["1100"]')

        config = LedgerConfig()
        assert config.api_port == 9100
        assert config.fiscal_year_start_month == 7
        assert config.cash_account_codes == ["1100"]

    def test_reload_config(self, monkeypatch):
        original = get_config()
        monkeypatch.setenv("LEDGER_ENTRY_NUMBER_PREFIX", "GJ")
        try:
            assert reload_config().entry_number_prefix == "GJ"
            assert get_config().entry_number_prefix == "GJ"
        finally:
            config_module.config = original


class TestStructuredLogging:

    @pytest.fixture(autouse=True)
    def restore_logger(self):
        logger = logging.getLogger("accounting")
        handlers, level, propagate = logger.handlers[:], logger.level, logger.propagate
        yield
        for handler in logger.handlers[:]:
            logger.removeHandler(handler)
            handler.close()
        for handler in handlers:
            logger.addHandler(handler)
        logger.setLevel(level)
        logger.propagate = propagate

    def test_json_log_file(self, tmp_path):
        log_file = tmp_path / "ledger.log"
        setup_logging(level="INFO", log_format="json", log_file=str(log_file))

        log_action(get_logger("ledger"), "info", "Posted journal entry JE20260001",
                   user_id="alice", action="post_entry", resource="JE20260001",
                   extra={"total": "500.00"})
        get_logger("ledger").debug("not written")

        lines = log_file.read_text().strip().splitlines()
        assert len(lines) == 1
        record = json.loads(lines[0])
        assert record["level"] == "INFO"
        assert record["logger"] == "accounting.ledger"
        assert record["user_id"] == "alice"
        assert record["resource"] == "JE20260001"
        assert record["extra"] == {"total": "500.00"}
        assert "correlation_id" not in record

    def test_text_format(self, tmp_path):
        log_file = tmp_path / "ledger.log"
        setup_logging(level="WARNING", log_format="text", log_file=str(log_file))
        get_logger("accounts").warning("Standard account 1000 not created")

        assert "WARNING accounting.accounts: Standard account 1000 not created" in log_file.read_text()

    def test_formatter_includes_exception(self):
        try:
            raise RuntimeError("boom")
        except RuntimeError:
            record = logging.getLogger("accounting").makeRecord(
                "accounting", logging.ERROR, __file__, 1, "failed", None, exc_info=sys.exc_info()
            )
        data = json.loads(JSONFormatter().format(record))
        assert "RuntimeError: boom" in data["exception"]

    def test_get_logger_root(self):
        assert get_logger().name == "accounting"


class TestAccountingSystem:

    def test_wires_configuration(self):
        system = AccountingSystem(LedgerConfig(
            database_url="memory://",
            entry_number_prefix="GJ",
            balance_tolerance="0.05",
            cash_account_codes=["1100"],
            enable_audit_logging=False
        ))

        assert isinstance(system.storage, InMemoryStorage)
        assert system.ledger.entry_number_prefix == "GJ"
        assert system.reports.tolerance == Decimal("0.05")
        assert system.reconciliation.tolerance == Decimal("0.05")
        assert system.reports.cash_flow_rules.cash_account_codes == {"1100"}
        assert not system.audit_trail.enabled

    def test_injected_storage_wins(self, tmp_path):
        storage = SQLiteStorage(tmp_path / "ledger.db")
        system = AccountingSystem(LedgerConfig(database_url="memory://"), storage=storage)
        assert system.storage is storage
        system.close()

    def test_independent_systems_do_not_share_state(self):
        first = AccountingSystem(LedgerConfig(database_url="memory://"))
        second = AccountingSystem(LedgerConfig(database_url="memory://"))
        first.accounts.setup_standard_chart()
        assert second.accounts.list_accounts() == []
