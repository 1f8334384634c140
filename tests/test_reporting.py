"""
Tests for financial statements
"""

from datetime import date
from decimal import Decimal

import pytest

from accounting_core.accounts import AccountRegistry
from accounting_core.audit import AuditTrail, AuditEventType
from accounting_core.balances import BalanceStore
from accounting_core.errors import (
    AccountQuarantinedError, CashFlowMismatchError, TrialBalanceMismatchError,
    UnbalancedEntryError, ValidationError
)
from accounting_core.ledger import LedgerPoster
from accounting_core.models import AccountType, JournalEntryDraft, JournalEntryLine
from accounting_core.reporting import CashFlowActivity, CashFlowRules, ReportEngine
from accounting_core.repository import LedgerRepository
from accounting_core.storage import InMemoryStorage


class ReportTestCase:
    """Standard chart with a quarter of activity"""

    def setup_method(self):
        self.storage = InMemoryStorage()
        self.audit_trail = AuditTrail(self.storage)
        self.repository = LedgerRepository(self.storage)
        self.registry = AccountRegistry(self.repository, self.audit_trail)
        self.balances = BalanceStore(self.repository, self.audit_trail)
        self.ledger = LedgerPoster(self.repository, self.balances, self.audit_trail)
        self.reports = ReportEngine(self.repository, self.registry, self.balances)
        self.registry.setup_standard_chart()

    def account(self, code):
        return self.registry.get_by_code(code)

    def post(self, entry_date, *lines, post=True):
        draft = JournalEntryDraft(
            entry_date=entry_date,
            description="Entry",
            lines=tuple(
                JournalEntryLine.debit(self.account(code).id, amount) if side == "dr"
                else JournalEntryLine.credit(self.account(code).id, amount)
                for side, code, amount in lines
            )
        )
        entry = self.ledger.create_entry(draft)
        if post:
            entry = self.ledger.post_entry(entry.id)
        return entry

    def record_quarter(self):
        self.post(date(2026, 1, 2), ("dr", "1000", "10000"), ("cr", "3000", "10000"))  # owner investment
        self.post(date(2026, 1, 15), ("dr", "1500", "4000"), ("cr", "1000", "4000"))    # buy equipment
        self.post(date(2026, 1, 20), ("dr", "1000", "5000"), ("cr", "2500", "5000"))    # bank loan
        self.post(date(2026, 2, 1), ("dr", "1000", "3000"), ("cr", "4000", "3000"))     # cash sale
        self.post(date(2026, 2, 5), ("dr", "1200", "2000"), ("cr", "4100", "2000"))     # sale on credit
        self.post(date(2026, 2, 10), ("dr", "5000", "800"), ("cr", "1300", "800"))      # cost of goods
        self.post(date(2026, 2, 28), ("dr", "6100", "1200"), ("cr", "1000", "1200"))    # rent
        self.post(date(2026, 3, 5), ("dr", "6000", "900"), ("cr", "2100", "900"))       # accrued wages
        self.post(date(2026, 3, 10), ("dr", "1000", "1500"), ("cr", "1200", "1500"))    # customer pays
        self.post(date(2026, 3, 20), ("dr", "1010", "1000"), ("cr", "1000", "1000"))    # transfer to savings


class TestTrialBalance(ReportTestCase):

    def test_cash_sale_scenario(self):
        self.post(date(2026, 1, 2), ("dr", "1000", "500"), ("cr", "4000", "500"))
        trial_balance = self.reports.trial_balance()

        assert trial_balance.total_debits == trial_balance.total_credits == Decimal("500.00")
        assert trial_balance.row_for(self.account("1000").id).debit_balance == Decimal("500.00")
        assert trial_balance.row_for(self.account("4000").id).credit_balance == Decimal("500.00")
        assert len(trial_balance.rows) == 2

    def test_balanced_every_month(self):
        self.record_quarter()
        for as_of in (date(2026, 1, 31), date(2026, 2, 28), date(2026, 3, 31), None):
            trial_balance = self.reports.trial_balance(as_of)
            assert trial_balance.is_balanced
            assert trial_balance.total_debits == trial_balance.total_credits

    def test_include_zero_balances(self):
        self.post(date(2026, 1, 2), ("dr", "1000", "500"), ("cr", "4000", "500"))
        assert len(self.reports.trial_balance(include_zero_balances=True).rows) == 18

    def test_negative_balance_flips_column(self):
        # Overdrawn cash sits in the credit column
        self.post(date(2026, 1, 2), ("dr", "6100", "300"), ("cr", "1000", "300"))
        row = self.reports.trial_balance().row_for(self.account("1000").id)

        assert row.net_balance == Decimal("-300.00")
        assert row.debit_balance == Decimal("0.00")
        assert row.credit_balance == Decimal("300.00")

    def test_to_dict(self):
        self.post(date(2026, 1, 2), ("dr", "1000", "500"), ("cr", "4000", "500"))
        data = self.reports.trial_balance(date(2026, 1, 31)).to_dict()

        assert data["as_of"] == "2026-01-31"
        assert data["total_debits"] == "500.00"
        assert data["rows"][0]["account_type"] == "asset"

    def test_mismatch_quarantines_suspect_accounts(self):
        entry = self.post(date(2026, 1, 2), ("dr", "1000", "500"), ("cr", "4000", "500"))
        data = self.storage.load("journal_entries", entry.id)
        data["lines"][0]["debit_amount"] = "700.00"
        self.storage.save("journal_entries", entry.id, data)

        with pytest.raises(TrialBalanceMismatchError) as excinfo:
            self.reports.trial_balance()

        expected = sorted([self.account("1000").id, self.account("4000").id])
        assert excinfo.value.suspect_accounts == expected
        assert self.balances.quarantined_accounts() == set(expected)
        assert self.audit_trail.get_events_by_type(AuditEventType.CONSISTENCY_FAULT)

        with pytest.raises(AccountQuarantinedError):
            self.post(date(2026, 1, 3), ("dr", "1000", "10"), ("cr", "4000", "10"))

    def test_many_small_entries_keep_the_ledger_open(self):
        for _ in range(3):
            with pytest.raises(UnbalancedEntryError):
                self.post(date(2026, 1, 2), ("dr", "1000", "100.00"), ("cr", "4000", "100.01"))
        for _ in range(5):
            self.post(date(2026, 1, 2), ("dr", "1000", "33.334"), ("cr", "4000", "33.331"))

        trial_balance = self.reports.trial_balance()
        assert trial_balance.total_debits == trial_balance.total_credits == Decimal("166.65")
        assert not self.balances.quarantined_accounts()

        # Posting continues normally
        self.post(date(2026, 1, 3), ("dr", "1000", "1"), ("cr", "4000", "1"))
        assert self.account("1000").balance == Decimal("167.65")


class TestBalanceSheet(ReportTestCase):

    def test_accounting_equation_holds(self):
        self.record_quarter()
        sheet = self.reports.balance_sheet()

        assert sheet.total_assets == Decimal("18000.00")
        assert sheet.total_liabilities == Decimal("5900.00")
        assert sheet.current_earnings == Decimal("2100.00")
        assert sheet.total_equity == Decimal("12100.00")
        assert sheet.is_balanced

    def test_sections(self):
        self.record_quarter()
        sheet = self.reports.balance_sheet()

        assert [item.account_code for item in sheet.fixed_assets] == ["1500"]
        assert [item.account_code for item in sheet.long_term_liabilities] == ["2500"]
        assert [item.account_code for item in sheet.equity_accounts] == ["3000"]
        assert {item.account_code for item in sheet.current_assets} == {"1000", "1010", "1200", "1300"}

    def test_as_of_date(self):
        self.record_quarter()
        sheet = self.reports.balance_sheet(date(2026, 1, 31))

        assert sheet.total_assets == Decimal("15000.00")
        assert sheet.current_earnings == Decimal("0.00")
        assert sheet.is_balanced

    def test_to_dict_shape(self):
        self.record_quarter()
        data = self.reports.balance_sheet().to_dict()

        assert set(data["assets"]) == {"current", "fixed", "other", "total"}
        assert set(data["liabilities"]) == {"current", "long_term", "total"}
        assert set(data["equity"]) == {"accounts", "current_earnings", "total"}
        assert data["equity"]["current_earnings"] == "2100.00"
        assert data["is_balanced"] is True


class TestIncomeStatement(ReportTestCase):

    def test_single_day_sale(self):
        today = date(2026, 4, 1)
        self.post(today, ("dr", "1000", "500"), ("cr", "4000", "500"))
        assert self.reports.income_statement(today, today).net_income == Decimal("500.00")

    def test_quarter(self):
        self.record_quarter()
        statement = self.reports.income_statement(date(2026, 1, 1), date(2026, 3, 31))

        assert statement.total_revenue == Decimal("5000.00")
        assert statement.total_cogs == Decimal("800.00")
        assert statement.gross_profit == Decimal("4200.00")
        assert statement.total_expenses == Decimal("2100.00")
        assert statement.net_income == Decimal("2100.00")
        assert [item.account_code for item in statement.operating_revenue] == ["4000", "4100"]

    def test_period_filter_and_drafts(self):
        self.record_quarter()
        self.post(date(2026, 3, 15), ("dr", "1000", "999"), ("cr", "4000", "999"), post=False)
        statement = self.reports.income_statement(date(2026, 3, 1), date(2026, 3, 31))

        assert statement.total_revenue == Decimal("0.00")
        assert statement.total_expenses == Decimal("900.00")
        assert statement.net_income == Decimal("-900.00")

    def test_invalid_period(self):
        with pytest.raises(ValidationError):
            self.reports.income_statement(date(2026, 3, 31), date(2026, 1, 1))


class TestCashFlowStatement(ReportTestCase):

    def test_quarter_buckets(self):
        self.record_quarter()
        statement = self.reports.cash_flow_statement(date(2026, 1, 1), date(2026, 3, 31))

        # Sales 3000 + collections 1500 - rent 1200
        assert statement.net_operating == Decimal("3300.00")
        assert statement.net_investing == Decimal("-4000.00")
        assert statement.net_financing == Decimal("15000.00")
        assert statement.net_cash_flow == Decimal("14300.00")
        assert statement.beginning_cash == Decimal("0.00")
        assert statement.ending_cash == Decimal("14300.00")

    def test_transfers_between_cash_accounts_ignored(self):
        self.record_quarter()
        statement = self.reports.cash_flow_statement(date(2026, 3, 15), date(2026, 3, 31))

        assert statement.net_cash_flow == Decimal("0.00")
        assert statement.operating_activities == []
        assert statement.beginning_cash == statement.ending_cash == Decimal("14300.00")

    def test_beginning_cash_uses_prior_day(self):
        self.record_quarter()
        statement = self.reports.cash_flow_statement(date(2026, 2, 1), date(2026, 2, 28))

        assert statement.beginning_cash == Decimal("11000.00")
        assert statement.net_operating == Decimal("1800.00")
        assert statement.ending_cash == Decimal("12800.00")

    def test_code_rules_override_categories(self):
        self.record_quarter()
        rules = CashFlowRules(code_activities={"2500": CashFlowActivity.OPERATING})
        statement = self.reports.cash_flow_statement(date(2026, 1, 1), date(2026, 3, 31), rules=rules)

        assert statement.net_financing == Decimal("10000.00")
        assert statement.net_operating == Decimal("8300.00")

    def test_mismatch_raises(self):
        entry = self.post(date(2026, 1, 2), ("dr", "1000", "500"), ("cr", "4000", "500"))
        data = self.storage.load("journal_entries", entry.id)
        data["lines"][1]["credit_amount"] = "400.00"
        self.storage.save("journal_entries", entry.id, data)

        with pytest.raises(CashFlowMismatchError):
            self.reports.cash_flow_statement(date(2026, 1, 1), date(2026, 1, 31))
        assert self.account("1000").id in self.balances.quarantined_accounts()
