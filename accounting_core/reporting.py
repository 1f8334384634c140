"""
Financial Reporting Module

Trial balance, balance sheet, income statement and cash-flow statement,
all derived on demand from posted journal entries. Reports never write
to the ledger. When a ledger-wide invariant fails the report is not
produced: the fault is logged, the suspect accounts are quarantined and
a ConsistencyError is raised for an operator to investigate.
"""

from collections import defaultdict
from dataclasses import dataclass, field
from datetime import date, timedelta
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Set

from .accounts import AccountRegistry
from .balances import BalanceStore
from .errors import (
    BalanceSheetImbalanceError, CashFlowMismatchError, ConsistencyError,
    TrialBalanceMismatchError, ValidationError
)
from .models import Account, AccountCategory, AccountType
from .money import BALANCE_TOLERANCE, ZERO, amounts_equal
from .repository import LedgerRepository


def _decimals_to_str(value: Any) -> Any:
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, (date,)):
        return value.isoformat()
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, dict):
        return {k: _decimals_to_str(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_decimals_to_str(v) for v in value]
    if hasattr(value, '__dataclass_fields__'):
        return {name: _decimals_to_str(getattr(value, name)) for name in value.__dataclass_fields__}
    return value


class ReportSerializable:
    def to_dict(self) -> Dict[str, Any]:
        return _decimals_to_str(self)


# Trial balance

@dataclass
class TrialBalanceRow(ReportSerializable):
    account_id: str
    account_code: str
    account_name: str
    account_type: AccountType
    debit_balance: Decimal
    credit_balance: Decimal
    net_balance: Decimal


@dataclass
class TrialBalance(ReportSerializable):
    as_of: Optional[date]
    rows: List[TrialBalanceRow]
    total_debits: Decimal
    total_credits: Decimal

    @property
    def is_balanced(self) -> bool:
        return amounts_equal(self.total_debits, self.total_credits)

    def row_for(self, account_id: str) -> Optional[TrialBalanceRow]:
        for row in self.rows:
            if row.account_id == account_id:
                return row
        return None


# Balance sheet

@dataclass
class BalanceSheetItem(ReportSerializable):
    account_id: str
    account_code: str
    account_name: str
    balance: Decimal


@dataclass
class BalanceSheet(ReportSerializable):
    as_of: Optional[date]
    current_assets: List[BalanceSheetItem]
    fixed_assets: List[BalanceSheetItem]
    other_assets: List[BalanceSheetItem]
    total_assets: Decimal
    current_liabilities: List[BalanceSheetItem]
    long_term_liabilities: List[BalanceSheetItem]
    total_liabilities: Decimal
    equity_accounts: List[BalanceSheetItem]
    current_earnings: Decimal  # revenue - expense not yet closed to equity
    total_equity: Decimal

    @property
    def is_balanced(self) -> bool:
        return amounts_equal(self.total_assets, self.total_liabilities + self.total_equity)

    def to_dict(self) -> Dict[str, Any]:
        return _decimals_to_str({
            'as_of': self.as_of,
            'assets': {
                'current': self.current_assets,
                'fixed': self.fixed_assets,
                'other': self.other_assets,
                'total': self.total_assets
            },
            'liabilities': {
                'current': self.current_liabilities,
                'long_term': self.long_term_liabilities,
                'total': self.total_liabilities
            },
            'equity': {
                'accounts': self.equity_accounts,
                'current_earnings': self.current_earnings,
                'total': self.total_equity
            },
            'is_balanced': self.is_balanced
        })


# Income statement

@dataclass
class IncomeStatementItem(ReportSerializable):
    account_id: str
    account_code: str
    account_name: str
    amount: Decimal


@dataclass
class IncomeStatement(ReportSerializable):
    start_date: date
    end_date: date
    operating_revenue: List[IncomeStatementItem]
    non_operating_revenue: List[IncomeStatementItem]
    total_revenue: Decimal
    cogs_items: List[IncomeStatementItem]
    total_cogs: Decimal
    gross_profit: Decimal
    operating_expenses: List[IncomeStatementItem]
    non_operating_expenses: List[IncomeStatementItem]
    total_expenses: Decimal
    net_income: Decimal


# Cash flow

class CashFlowActivity(Enum):
    OPERATING = "operating"
    INVESTING = "investing"
    FINANCING = "financing"


DEFAULT_CATEGORY_ACTIVITIES = {
    AccountCategory.CURRENT_ASSET: CashFlowActivity.OPERATING,
    AccountCategory.FIXED_ASSET: CashFlowActivity.INVESTING,
    AccountCategory.OTHER_ASSET: CashFlowActivity.INVESTING,
    AccountCategory.CURRENT_LIABILITY: CashFlowActivity.OPERATING,
    AccountCategory.LONG_TERM_LIABILITY: CashFlowActivity.FINANCING,
    AccountCategory.OWNERS_EQUITY: CashFlowActivity.FINANCING,
    AccountCategory.RETAINED_EARNINGS: CashFlowActivity.FINANCING,
    AccountCategory.OPERATING_REVENUE: CashFlowActivity.OPERATING,
    AccountCategory.NON_OPERATING_REVENUE: CashFlowActivity.OPERATING,
    AccountCategory.COST_OF_GOODS_SOLD: CashFlowActivity.OPERATING,
    AccountCategory.OPERATING_EXPENSE: CashFlowActivity.OPERATING,
    AccountCategory.NON_OPERATING_EXPENSE: CashFlowActivity.OPERATING,
}


@dataclass
class CashFlowRules:
    """
    Which accounts hold cash, and which activity each counterpart belongs to

    Lookup order for a counterpart account: ``code_activities`` by code,
    then ``category_activities`` by category, then ``default_activity``.
    """
    cash_account_codes: Set[str] = field(default_factory=lambda: {"1000", "1010"})
    category_activities: Dict[AccountCategory, CashFlowActivity] = field(
        default_factory=lambda: dict(DEFAULT_CATEGORY_ACTIVITIES)
    )
    code_activities: Dict[str, CashFlowActivity] = field(default_factory=dict)
    default_activity: CashFlowActivity = CashFlowActivity.OPERATING

    def activity_for(self, account: Account) -> CashFlowActivity:
        if account.code in self.code_activities:
            return self.code_activities[account.code]
        return self.category_activities.get(account.category, self.default_activity)


@dataclass
class CashFlowItem(ReportSerializable):
    account_id: str
    account_code: str
    description: str
    amount: Decimal  # positive = cash in


@dataclass
class CashFlowStatement(ReportSerializable):
    start_date: date
    end_date: date
    operating_activities: List[CashFlowItem]
    investing_activities: List[CashFlowItem]
    financing_activities: List[CashFlowItem]
    net_operating: Decimal
    net_investing: Decimal
    net_financing: Decimal
    net_cash_flow: Decimal
    beginning_cash: Decimal
    ending_cash: Decimal


class ReportEngine:
    """
    Builds financial statements from BalanceStore snapshots

    Inactive accounts are included: a deactivated account may still carry
    a balance that belongs in the statements.
    """

    def __init__(
        self,
        repository: LedgerRepository,
        registry: AccountRegistry,
        balance_store: BalanceStore,
        tolerance: Decimal = BALANCE_TOLERANCE,
        cash_flow_rules: Optional[CashFlowRules] = None
    ):
        self.repository = repository
        self.registry = registry
        self.balance_store = balance_store
        self.tolerance = tolerance
        self.cash_flow_rules = cash_flow_rules or CashFlowRules()

    def trial_balance(self, as_of: Optional[date] = None, include_zero_balances: bool = False) -> TrialBalance:
        """
        List every account balance as of a date in debit/credit columns

        A positive balance sits on the account's normal side; a negative
        balance (e.g. an overdrawn cash account) moves to the other column.

        Raises:
            TrialBalanceMismatchError: the debit column differs from the credit column
        """
        snapshot = self.balance_store.snapshot_as_of(as_of)
        rows = []
        total_debits = ZERO
        total_credits = ZERO

        for account in self.registry.list_accounts(include_inactive=True):
            net = snapshot.get(account.id, ZERO)
            if net == ZERO and not include_zero_balances:
                continue

            debit_side = (net >= ZERO) == account.is_debit_normal
            debit_balance = abs(net) if debit_side else ZERO
            credit_balance = ZERO if debit_side else abs(net)
            total_debits += debit_balance
            total_credits += credit_balance

            rows.append(TrialBalanceRow(
                account_id=account.id,
                account_code=account.code,
                account_name=account.name,
                account_type=account.account_type,
                debit_balance=debit_balance,
                credit_balance=credit_balance,
                net_balance=net
            ))

        trial_balance = TrialBalance(
            as_of=as_of,
            rows=rows,
            total_debits=total_debits,
            total_credits=total_credits
        )

        if not amounts_equal(total_debits, total_credits, self.tolerance):
            self._fault(TrialBalanceMismatchError(
                f"Trial balance does not balance: debits={total_debits}, credits={total_credits}",
                details=trial_balance.to_dict(),
                suspect_accounts=self._suspect_accounts(as_of, snapshot)
            ))
        return trial_balance

    def balance_sheet(self, as_of: Optional[date] = None) -> BalanceSheet:
        """
        Assets, liabilities and equity as of a date

        Raises:
            TrialBalanceMismatchError: underlying trial balance is broken
            BalanceSheetImbalanceError: assets != liabilities + equity
        """
        trial_balance = self.trial_balance(as_of)
        accounts = {account.id: account for account in self.registry.list_accounts(include_inactive=True)}

        sections: Dict[AccountCategory, List[BalanceSheetItem]] = defaultdict(list)
        totals: Dict[AccountType, Decimal] = defaultdict(lambda: ZERO)

        for row in trial_balance.rows:
            account = accounts[row.account_id]
            totals[account.account_type] += row.net_balance
            if account.account_type in (AccountType.REVENUE, AccountType.EXPENSE):
                continue
            sections[account.category].append(BalanceSheetItem(
                account_id=account.id,
                account_code=account.code,
                account_name=account.name,
                balance=row.net_balance
            ))

        current_earnings = totals[AccountType.REVENUE] - totals[AccountType.EXPENSE]
        total_assets = totals[AccountType.ASSET]
        total_liabilities = totals[AccountType.LIABILITY]
        total_equity = totals[AccountType.EQUITY] + current_earnings

        balance_sheet = BalanceSheet(
            as_of=as_of,
            current_assets=sections[AccountCategory.CURRENT_ASSET],
            fixed_assets=sections[AccountCategory.FIXED_ASSET],
            other_assets=sections[AccountCategory.OTHER_ASSET],
            total_assets=total_assets,
            current_liabilities=sections[AccountCategory.CURRENT_LIABILITY],
            long_term_liabilities=sections[AccountCategory.LONG_TERM_LIABILITY],
            total_liabilities=total_liabilities,
            equity_accounts=(
                sections[AccountCategory.OWNERS_EQUITY] + sections[AccountCategory.RETAINED_EARNINGS]
            ),
            current_earnings=current_earnings,
            total_equity=total_equity
        )

        if not amounts_equal(total_assets, total_liabilities + total_equity, self.tolerance):
            self._fault(BalanceSheetImbalanceError(
                f"Balance sheet does not balance: assets={total_assets}, "
                f"liabilities + equity={total_liabilities + total_equity}",
                details=balance_sheet.to_dict(),
                suspect_accounts=[row.account_id for row in trial_balance.rows]
            ))
        return balance_sheet

    def income_statement(self, start_date: date, end_date: date) -> IncomeStatement:
        """Revenue, cost of goods sold and expenses of entries dated in [start, end]"""
        if start_date > end_date:
            raise ValidationError(f"Start date {start_date} is after end date {end_date}")

        activity = self.balance_store.activity_between(start_date, end_date)
        groups: Dict[AccountCategory, List[IncomeStatementItem]] = defaultdict(list)

        for account in self.registry.list_accounts(include_inactive=True):
            if account.account_type not in (AccountType.REVENUE, AccountType.EXPENSE):
                continue
            amount = activity.get(account.id, ZERO)
            if amount == ZERO:
                continue
            groups[account.category].append(IncomeStatementItem(
                account_id=account.id,
                account_code=account.code,
                account_name=account.name,
                amount=amount
            ))

        def total(*categories: AccountCategory) -> Decimal:
            return sum((item.amount for c in categories for item in groups[c]), ZERO)

        total_revenue = total(AccountCategory.OPERATING_REVENUE, AccountCategory.NON_OPERATING_REVENUE)
        total_cogs = total(AccountCategory.COST_OF_GOODS_SOLD)
        total_expenses = total(AccountCategory.OPERATING_EXPENSE, AccountCategory.NON_OPERATING_EXPENSE)
        gross_profit = total_revenue - total_cogs

        return IncomeStatement(
            start_date=start_date,
            end_date=end_date,
            operating_revenue=groups[AccountCategory.OPERATING_REVENUE],
            non_operating_revenue=groups[AccountCategory.NON_OPERATING_REVENUE],
            total_revenue=total_revenue,
            cogs_items=groups[AccountCategory.COST_OF_GOODS_SOLD],
            total_cogs=total_cogs,
            gross_profit=gross_profit,
            operating_expenses=groups[AccountCategory.OPERATING_EXPENSE],
            non_operating_expenses=groups[AccountCategory.NON_OPERATING_EXPENSE],
            total_expenses=total_expenses,
            net_income=gross_profit - total_expenses
        )

    def cash_flow_statement(self, start_date: date, end_date: date,
                            rules: Optional[CashFlowRules] = None) -> CashFlowStatement:
        """
        Cash movement of [start, end] split into operating, investing and financing

        Each posted entry that touches a cash account contributes the
        credit - debit of its non-cash lines to the activity of that line's
        account. Transfers between cash accounts contribute nothing.

        Raises:
            CashFlowMismatchError: bucket totals differ from the change in cash
        """
        if start_date > end_date:
            raise ValidationError(f"Start date {start_date} is after end date {end_date}")

        rules = rules or self.cash_flow_rules
        accounts = {account.id: account for account in self.registry.list_accounts(include_inactive=True)}
        cash_ids = {account_id for account_id, account in accounts.items()
                    if account.code in rules.cash_account_codes}

        beginning_cash = self._cash_total(self.balance_store.snapshot_as_of(start_date - timedelta(days=1)), cash_ids)
        ending_cash = self._cash_total(self.balance_store.snapshot_as_of(end_date), cash_ids)

        flows: Dict[CashFlowActivity, Dict[str, Decimal]] = {
            activity: defaultdict(lambda: ZERO) for activity in CashFlowActivity
        }
        for entry in self.repository.load_posted_entries(start_date=start_date, end_date=end_date):
            if not entry.get_affected_accounts() & cash_ids:
                continue
            for line in entry.lines:
                if line.account_id in cash_ids:
                    continue
                activity = rules.activity_for(accounts[line.account_id])
                flows[activity][line.account_id] += line.credit_amount - line.debit_amount

        def items(activity: CashFlowActivity) -> List[CashFlowItem]:
            return [
                CashFlowItem(
                    account_id=account_id,
                    account_code=accounts[account_id].code,
                    description=accounts[account_id].name,
                    amount=amount
                )
                for account_id, amount in sorted(flows[activity].items(), key=lambda kv: accounts[kv[0]].code)
                if amount != ZERO
            ]

        operating = items(CashFlowActivity.OPERATING)
        investing = items(CashFlowActivity.INVESTING)
        financing = items(CashFlowActivity.FINANCING)
        net_operating = sum((item.amount for item in operating), ZERO)
        net_investing = sum((item.amount for item in investing), ZERO)
        net_financing = sum((item.amount for item in financing), ZERO)
        net_cash_flow = net_operating + net_investing + net_financing

        statement = CashFlowStatement(
            start_date=start_date,
            end_date=end_date,
            operating_activities=operating,
            investing_activities=investing,
            financing_activities=financing,
            net_operating=net_operating,
            net_investing=net_investing,
            net_financing=net_financing,
            net_cash_flow=net_cash_flow,
            beginning_cash=beginning_cash,
            ending_cash=ending_cash
        )

        if not amounts_equal(net_cash_flow, ending_cash - beginning_cash, self.tolerance):
            self._fault(CashFlowMismatchError(
                f"Cash flow {net_cash_flow} does not match change in cash {ending_cash - beginning_cash}",
                details=statement.to_dict(),
                suspect_accounts=self._suspect_accounts(end_date, {}, start_date=start_date) or cash_ids
            ))
        return statement

    @staticmethod
    def _cash_total(snapshot: Dict[str, Decimal], cash_ids: Iterable[str]) -> Decimal:
        return sum((snapshot.get(account_id, ZERO) for account_id in cash_ids), ZERO)

    def _suspect_accounts(self, as_of: Optional[date], snapshot: Dict[str, Decimal],
                          start_date: Optional[date] = None) -> Set[str]:
        """Accounts of unbalanced posted entries, else every account carrying a balance"""
        suspects: Set[str] = set()
        for entry in self.repository.load_posted_entries(start_date=start_date, end_date=as_of):
            if not entry.is_balanced():
                suspects |= entry.get_affected_accounts()
        if not suspects:
            suspects = {account_id for account_id, balance in snapshot.items() if balance != ZERO}
        return suspects

    def _fault(self, error: ConsistencyError) -> None:
        self.balance_store.report_fault(error)
        raise error
