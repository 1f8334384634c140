"""
Bank Reconciliation Module

Compares the book balance of an asset account (normally cash) against a
bank statement, adjusted for deposits in transit, outstanding checks and
manual adjustments.
"""

import logging
import uuid
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Optional, Union

from .audit import AuditTrail, AuditEventType
from .balances import BalanceStore
from .errors import AccountNotFoundError, ValidationError
from .models import AccountType, parse_date
from .money import BALANCE_TOLERANCE, AmountLike, sum_amounts, to_amount
from .repository import LedgerRepository


logger = logging.getLogger("accounting.reconciliation")


@dataclass(frozen=True)
class OutstandingItem:
    """A deposit, check or adjustment not yet reflected on one side"""
    amount: Decimal
    description: Optional[str] = None
    reference: Optional[str] = None
    item_date: Optional[date] = None

    def __post_init__(self):
        object.__setattr__(self, 'amount', to_amount(self.amount))

    def to_dict(self) -> Dict[str, Any]:
        return {
            'amount': str(self.amount),
            'description': self.description,
            'reference': self.reference,
            'item_date': self.item_date.isoformat() if self.item_date else None
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'OutstandingItem':
        return cls(
            amount=to_amount(data['amount']),
            description=data.get('description'),
            reference=data.get('reference'),
            item_date=parse_date(data['item_date']) if data.get('item_date') else None
        )


ItemLike = Union[OutstandingItem, AmountLike]


def _items(values: Iterable[ItemLike]) -> List[OutstandingItem]:
    return [value if isinstance(value, OutstandingItem) else OutstandingItem(amount=value)
            for value in values]


@dataclass
class ReconciliationResult:
    id: str
    account_id: str
    account_code: str
    statement_date: date
    statement_balance: Decimal
    book_balance: Decimal
    outstanding_deposits: List[OutstandingItem] = field(default_factory=list)
    outstanding_checks: List[OutstandingItem] = field(default_factory=list)
    adjustments: List[OutstandingItem] = field(default_factory=list)
    reconciled_balance: Decimal = Decimal('0.00')
    difference: Decimal = Decimal('0.00')  # reconciled - book
    is_reconciled: bool = False
    performed_by: Optional[str] = None
    performed_at: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'account_id': self.account_id,
            'account_code': self.account_code,
            'statement_date': self.statement_date.isoformat(),
            'statement_balance': str(self.statement_balance),
            'book_balance': str(self.book_balance),
            'outstanding_deposits': [item.to_dict() for item in self.outstanding_deposits],
            'outstanding_checks': [item.to_dict() for item in self.outstanding_checks],
            'adjustments': [item.to_dict() for item in self.adjustments],
            'reconciled_balance': str(self.reconciled_balance),
            'difference': str(self.difference),
            'is_reconciled': self.is_reconciled,
            'performed_by': self.performed_by,
            'performed_at': self.performed_at.isoformat() if self.performed_at else None
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'ReconciliationResult':
        return cls(
            id=data['id'],
            account_id=data['account_id'],
            account_code=data['account_code'],
            statement_date=parse_date(data['statement_date']),
            statement_balance=Decimal(data['statement_balance']),
            book_balance=Decimal(data['book_balance']),
            outstanding_deposits=[OutstandingItem.from_dict(i) for i in data.get('outstanding_deposits', [])],
            outstanding_checks=[OutstandingItem.from_dict(i) for i in data.get('outstanding_checks', [])],
            adjustments=[OutstandingItem.from_dict(i) for i in data.get('adjustments', [])],
            reconciled_balance=Decimal(data['reconciled_balance']),
            difference=Decimal(data['difference']),
            is_reconciled=data['is_reconciled'],
            performed_by=data.get('performed_by'),
            performed_at=datetime.fromisoformat(data['performed_at']) if data.get('performed_at') else None
        )


class ReconciliationEngine:
    """Book-to-bank reconciliation for asset accounts"""

    def __init__(
        self,
        repository: LedgerRepository,
        balance_store: BalanceStore,
        audit_trail: AuditTrail,
        tolerance: Decimal = BALANCE_TOLERANCE
    ):
        self.repository = repository
        self.balance_store = balance_store
        self.audit_trail = audit_trail
        self.tolerance = tolerance

    def reconcile(
        self,
        account_id: str,
        statement_date: date,
        statement_balance: AmountLike,
        outstanding_deposits: Iterable[ItemLike] = (),
        outstanding_checks: Iterable[ItemLike] = (),
        adjustments: Iterable[ItemLike] = (),
        performed_by: Optional[str] = None
    ) -> ReconciliationResult:
        """
        Reconcile an account's book balance with a bank statement

        reconciled = statement + deposits in transit - outstanding checks + adjustments

        Args:
            account_id: Asset account to reconcile
            statement_date: Closing date of the bank statement
            statement_balance: Closing balance printed on the statement
            outstanding_deposits: Deposits booked but not yet on the statement
            outstanding_checks: Checks booked but not yet cleared
            adjustments: Signed corrections (bank fees, interest, errors)
            performed_by: User running the reconciliation

        Returns:
            ReconciliationResult, persisted with the account's history

        Raises:
            AccountNotFoundError: no such account
            ValidationError: account is not an asset account
        """
        account = self.repository.load_account(account_id)
        if not account:
            raise AccountNotFoundError(f"Account {account_id} not found")
        if account.account_type != AccountType.ASSET:
            raise ValidationError(
                f"Only asset accounts can be reconciled, {account.code} is {account.account_type.value}"
            )

        deposits = _items(outstanding_deposits)
        checks = _items(outstanding_checks)
        adjustment_items = _items(adjustments)

        statement_balance = to_amount(statement_balance)
        book_balance = self.balance_store.balance_as_of(account_id, statement_date)
        reconciled_balance = (
            statement_balance
            + sum_amounts(item.amount for item in deposits)
            - sum_amounts(item.amount for item in checks)
            + sum_amounts(item.amount for item in adjustment_items)
        )
        difference = reconciled_balance - book_balance

        result = ReconciliationResult(
            id=str(uuid.uuid4()),
            account_id=account.id,
            account_code=account.code,
            statement_date=statement_date,
            statement_balance=statement_balance,
            book_balance=book_balance,
            outstanding_deposits=deposits,
            outstanding_checks=checks,
            adjustments=adjustment_items,
            reconciled_balance=reconciled_balance,
            difference=difference,
            is_reconciled=abs(difference) < self.tolerance,
            performed_by=performed_by,
            performed_at=datetime.now(timezone.utc)
        )
        self.repository.save_reconciliation(result.id, result.to_dict())

        if result.is_reconciled:
            logger.info("Reconciled account %s as of %s", account.code, statement_date)
        else:
            logger.warning("Account %s does not reconcile as of %s: difference %s",
                           account.code, statement_date, difference)
        self.audit_trail.log_event(
            event_type=AuditEventType.RECONCILIATION_PERFORMED,
            entity_type="account",
            entity_id=account.id,
            metadata={
                "reconciliation_id": result.id,
                "statement_date": statement_date,
                "statement_balance": statement_balance,
                "book_balance": book_balance,
                "difference": difference,
                "is_reconciled": result.is_reconciled
            },
            user_id=performed_by
        )
        return result

    def get_reconciliations(self, account_id: str) -> List[ReconciliationResult]:
        """Reconciliation history of an account, oldest statement first"""
        results = [ReconciliationResult.from_dict(data)
                   for data in self.repository.load_reconciliations(account_id)]
        return sorted(results, key=lambda r: (r.statement_date, r.performed_at or datetime.min.replace(tzinfo=timezone.utc)))
