"""
Ledger Data Model

Accounts, journal entry lines, draft entries and stored journal entries.

A JournalEntryDraft cannot be constructed unless it is balanced and has at
least two valid lines, so every entry handed to the poster already
satisfies the double-entry rule. Stored JournalEntry records are not
re-validated on load; the poster and the report engine check them.
"""

from decimal import Decimal
from datetime import datetime, date
from dataclasses import dataclass, field, replace
from typing import Any, Dict, List, Optional, Sequence, Set, Tuple, Union
from enum import Enum

from .errors import (
    InvalidCategoryError, InvalidLineError, LineTotalMismatchError,
    TooFewLinesError, UnbalancedEntryError
)
from .money import ZERO, AmountLike, to_amount
from .storage import StorageRecord


class AccountType(Enum):
    """Standard accounting account types"""
    ASSET = "asset"           # Debit normal balance
    LIABILITY = "liability"   # Credit normal balance
    EQUITY = "equity"         # Credit normal balance
    REVENUE = "revenue"       # Credit normal balance
    EXPENSE = "expense"       # Debit normal balance

    @property
    def is_debit_normal(self) -> bool:
        return self in (AccountType.ASSET, AccountType.EXPENSE)


class AccountCategory(Enum):
    """Sub-classification used to group accounts in statements"""
    CURRENT_ASSET = "current_asset"
    FIXED_ASSET = "fixed_asset"
    OTHER_ASSET = "other_asset"
    CURRENT_LIABILITY = "current_liability"
    LONG_TERM_LIABILITY = "long_term_liability"
    OWNERS_EQUITY = "owners_equity"
    RETAINED_EARNINGS = "retained_earnings"
    OPERATING_REVENUE = "operating_revenue"
    NON_OPERATING_REVENUE = "non_operating_revenue"
    COST_OF_GOODS_SOLD = "cost_of_goods_sold"
    OPERATING_EXPENSE = "operating_expense"
    NON_OPERATING_EXPENSE = "non_operating_expense"

    @property
    def account_type(self) -> AccountType:
        return CATEGORY_TYPES[self]


CATEGORY_TYPES = {
    AccountCategory.CURRENT_ASSET: AccountType.ASSET,
    AccountCategory.FIXED_ASSET: AccountType.ASSET,
    AccountCategory.OTHER_ASSET: AccountType.ASSET,
    AccountCategory.CURRENT_LIABILITY: AccountType.LIABILITY,
    AccountCategory.LONG_TERM_LIABILITY: AccountType.LIABILITY,
    AccountCategory.OWNERS_EQUITY: AccountType.EQUITY,
    AccountCategory.RETAINED_EARNINGS: AccountType.EQUITY,
    AccountCategory.OPERATING_REVENUE: AccountType.REVENUE,
    AccountCategory.NON_OPERATING_REVENUE: AccountType.REVENUE,
    AccountCategory.COST_OF_GOODS_SOLD: AccountType.EXPENSE,
    AccountCategory.OPERATING_EXPENSE: AccountType.EXPENSE,
    AccountCategory.NON_OPERATING_EXPENSE: AccountType.EXPENSE,
}

DEFAULT_CATEGORIES = {
    AccountType.ASSET: AccountCategory.CURRENT_ASSET,
    AccountType.LIABILITY: AccountCategory.CURRENT_LIABILITY,
    AccountType.EQUITY: AccountCategory.OWNERS_EQUITY,
    AccountType.REVENUE: AccountCategory.OPERATING_REVENUE,
    AccountType.EXPENSE: AccountCategory.OPERATING_EXPENSE,
}


def normal_balance_delta(account_type: AccountType, debit: Decimal, credit: Decimal) -> Decimal:
    """
    Balance change produced by a debit/credit pair

    Asset and Expense balances grow with debits; Liability, Equity and
    Revenue balances grow with credits.
    """
    if account_type.is_debit_normal:
        return debit - credit
    return credit - debit


def parse_date(value: Union[date, datetime, str]) -> date:
    """Accept a date, datetime or ISO string and return a date"""
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    return date.fromisoformat(value)


@dataclass
class Account(StorageRecord):
    """
    Chart of accounts entry

    ``balance`` follows the normal-balance convention of ``account_type``
    and is written only by the BalanceStore.
    """
    code: str
    name: str
    account_type: AccountType
    category: AccountCategory
    parent_id: Optional[str] = None
    is_active: bool = True
    balance: Decimal = ZERO
    description: Optional[str] = None
    tax_line: Optional[str] = None

    def __post_init__(self):
        if not isinstance(self.balance, Decimal):
            self.balance = to_amount(self.balance)
        if self.category.account_type != self.account_type:
            raise InvalidCategoryError(
                f"Category {self.category.value} belongs to {self.category.account_type.value} "
                f"accounts, not {self.account_type.value}"
            )

    @property
    def is_debit_normal(self) -> bool:
        return self.account_type.is_debit_normal

    def to_dict(self) -> Dict[str, Any]:
        result = super().to_dict()
        result['account_type'] = self.account_type.value
        result['category'] = self.category.value
        result['balance'] = str(self.balance)
        return result

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Account':
        data = dict(data)
        data['account_type'] = AccountType(data['account_type'])
        data['category'] = AccountCategory(data['category'])
        data['balance'] = Decimal(data.get('balance', '0.00'))
        return super().from_dict(data)


@dataclass(frozen=True)
class JournalEntryLine:
    """
    Individual line item in a journal entry
    Each line affects one account with either a debit or a credit
    """
    account_id: str
    debit_amount: Decimal = ZERO
    credit_amount: Decimal = ZERO
    description: Optional[str] = None
    line_number: int = 0

    def __post_init__(self):
        debit = to_amount(self.debit_amount)
        credit = to_amount(self.credit_amount)
        object.__setattr__(self, 'debit_amount', debit)
        object.__setattr__(self, 'credit_amount', credit)

        if debit < ZERO or credit < ZERO:
            raise InvalidLineError("Journal entry line amounts cannot be negative")
        if debit == ZERO and credit == ZERO:
            raise InvalidLineError("Journal entry line must have either debit or credit amount")
        if debit != ZERO and credit != ZERO:
            raise InvalidLineError("Journal entry line cannot have both debit and credit amounts")

    @classmethod
    def debit(cls, account_id: str, amount: AmountLike, description: Optional[str] = None) -> 'JournalEntryLine':
        return cls(account_id=account_id, debit_amount=to_amount(amount), description=description)

    @classmethod
    def credit(cls, account_id: str, amount: AmountLike, description: Optional[str] = None) -> 'JournalEntryLine':
        return cls(account_id=account_id, credit_amount=to_amount(amount), description=description)

    @property
    def is_debit(self) -> bool:
        return self.debit_amount != ZERO

    @property
    def amount(self) -> Decimal:
        """The non-zero side of the line"""
        return self.debit_amount if self.is_debit else self.credit_amount

    def reversed(self) -> 'JournalEntryLine':
        """Same line with debit and credit swapped"""
        return JournalEntryLine(
            account_id=self.account_id,
            debit_amount=self.credit_amount,
            credit_amount=self.debit_amount,
            description=f"REVERSAL: {self.description}" if self.description else "REVERSAL"
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            'account_id': self.account_id,
            'debit_amount': str(self.debit_amount),
            'credit_amount': str(self.credit_amount),
            'description': self.description,
            'line_number': self.line_number
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'JournalEntryLine':
        return cls(
            account_id=data['account_id'],
            debit_amount=Decimal(data['debit_amount']),
            credit_amount=Decimal(data['credit_amount']),
            description=data.get('description'),
            line_number=data.get('line_number', 0)
        )


def _totals(lines: Sequence[JournalEntryLine]) -> Tuple[Decimal, Decimal]:
    total_debit = sum((line.debit_amount for line in lines), ZERO)
    total_credit = sum((line.credit_amount for line in lines), ZERO)
    return total_debit, total_credit


@dataclass(frozen=True)
class JournalEntryDraft:
    """
    A journal entry that has not been stored yet

    Construction fails unless the draft has at least two lines and its
    debits equal its credits to the cent. Line amounts are rounded to cents
    first, so sub-cent noise in the inputs is absorbed there; a whole-cent
    gap is an unbalanced entry. Lines are renumbered
    1..n in the order given.
    """
    entry_date: date
    description: str
    lines: Tuple[JournalEntryLine, ...]
    reference: Optional[str] = None
    created_by: Optional[str] = None
    total_debit: Decimal = field(init=False)
    total_credit: Decimal = field(init=False)

    def __post_init__(self):
        object.__setattr__(self, 'entry_date', parse_date(self.entry_date))
        lines = tuple(
            replace(line, line_number=number)
            for number, line in enumerate(self.lines, start=1)
        )
        object.__setattr__(self, 'lines', lines)

        if len(lines) < 2:
            raise TooFewLinesError("Journal entry must have at least two lines")

        total_debit, total_credit = _totals(lines)
        if total_debit != total_credit:
            raise UnbalancedEntryError(
                f"Journal entry must balance: debits={total_debit}, credits={total_credit}",
                details={'total_debit': str(total_debit), 'total_credit': str(total_credit)}
            )
        object.__setattr__(self, 'total_debit', total_debit)
        object.__setattr__(self, 'total_credit', total_credit)

    @classmethod
    def build(
        cls,
        entry_date: Union[date, datetime, str],
        description: str,
        lines: Sequence[JournalEntryLine],
        reference: Optional[str] = None,
        created_by: Optional[str] = None,
        declared_total_debit: Optional[AmountLike] = None,
        declared_total_credit: Optional[AmountLike] = None
    ) -> 'JournalEntryDraft':
        """
        Build a draft from header fields, checking any declared totals

        Raises:
            UnbalancedEntryError: declared or computed debits differ from credits
            TooFewLinesError: fewer than two lines
            LineTotalMismatchError: declared totals differ from the line totals
        """
        if declared_total_debit is not None and declared_total_credit is not None:
            declared_debit = to_amount(declared_total_debit)
            declared_credit = to_amount(declared_total_credit)
            if declared_debit != declared_credit:
                raise UnbalancedEntryError(
                    f"Journal entry must balance: declared debits={declared_debit}, "
                    f"declared credits={declared_credit}"
                )

        draft = cls(
            entry_date=entry_date,
            description=description,
            lines=tuple(lines),
            reference=reference,
            created_by=created_by
        )

        if declared_total_debit is not None and draft.total_debit != to_amount(declared_total_debit):
            raise LineTotalMismatchError(
                f"Declared debit total {to_amount(declared_total_debit)} does not match "
                f"line total {draft.total_debit}"
            )
        if declared_total_credit is not None and draft.total_credit != to_amount(declared_total_credit):
            raise LineTotalMismatchError(
                f"Declared credit total {to_amount(declared_total_credit)} does not match "
                f"line total {draft.total_credit}"
            )
        return draft

    def get_affected_accounts(self) -> Set[str]:
        return {line.account_id for line in self.lines}


class JournalEntryState(Enum):
    """States of a journal entry; POSTED is terminal"""
    DRAFT = "draft"
    POSTED = "posted"


@dataclass
class JournalEntry(StorageRecord):
    """
    Stored journal entry
    Immutable once posted; corrections are new offsetting entries
    """
    entry_number: str
    entry_date: date
    description: str
    lines: List[JournalEntryLine]
    state: JournalEntryState
    total_debit: Decimal
    total_credit: Decimal
    reference: Optional[str] = None
    created_by: Optional[str] = None
    posted_at: Optional[datetime] = None
    posted_by: Optional[str] = None
    reverses: Optional[str] = None  # ID of the entry this one offsets

    @property
    def is_posted(self) -> bool:
        return self.state == JournalEntryState.POSTED

    def get_affected_accounts(self) -> Set[str]:
        """Get set of account IDs affected by this entry"""
        return {line.account_id for line in self.lines}

    def line_totals(self) -> Tuple[Decimal, Decimal]:
        """Debit and credit totals recomputed from the lines"""
        return _totals(self.lines)

    def is_balanced(self) -> bool:
        total_debit, total_credit = self.line_totals()
        return len(self.lines) >= 2 and total_debit == total_credit

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'created_at': self.created_at.isoformat(),
            'updated_at': self.updated_at.isoformat(),
            'entry_number': self.entry_number,
            'entry_date': self.entry_date.isoformat(),
            'description': self.description,
            'lines': [line.to_dict() for line in self.lines],
            'state': self.state.value,
            'total_debit': str(self.total_debit),
            'total_credit': str(self.total_credit),
            'reference': self.reference,
            'created_by': self.created_by,
            'posted_at': self.posted_at.isoformat() if self.posted_at else None,
            'posted_by': self.posted_by,
            'reverses': self.reverses,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'JournalEntry':
        posted_at = data.get('posted_at')
        return cls(
            id=data['id'],
            created_at=datetime.fromisoformat(data['created_at']),
            updated_at=datetime.fromisoformat(data['updated_at']),
            entry_number=data['entry_number'],
            entry_date=date.fromisoformat(data['entry_date']),
            description=data['description'],
            lines=[JournalEntryLine.from_dict(line) for line in data['lines']],
            state=JournalEntryState(data['state']),
            total_debit=Decimal(data['total_debit']),
            total_credit=Decimal(data['total_credit']),
            reference=data.get('reference'),
            created_by=data.get('created_by'),
            posted_at=datetime.fromisoformat(posted_at) if posted_at else None,
            posted_by=data.get('posted_by'),
            reverses=data.get('reverses'),
        )
