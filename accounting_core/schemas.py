"""
Pydantic schemas for API requests
"""

from datetime import date
from typing import List, Optional

from pydantic import BaseModel, Field

from .models import AccountCategory, AccountType, JournalEntryDraft, JournalEntryLine
from .money import to_amount
from .reconciliation import OutstandingItem


# Account schemas
class CreateAccountRequest(BaseModel):
    code: str
    name: str
    account_type: AccountType
    category: Optional[AccountCategory] = None
    parent_id: Optional[str] = None
    is_active: bool = True
    description: Optional[str] = None
    tax_line: Optional[str] = None
    created_by: Optional[str] = None


class UpdateAccountRequest(BaseModel):
    code: Optional[str] = None
    name: Optional[str] = None
    account_type: Optional[AccountType] = None
    category: Optional[AccountCategory] = None
    parent_id: Optional[str] = None
    is_active: Optional[bool] = None
    description: Optional[str] = None
    tax_line: Optional[str] = None
    updated_by: Optional[str] = None

    def changes(self):
        """Fields explicitly sent by the client"""
        return self.model_dump(exclude_unset=True, exclude={'updated_by'})


# Journal entry schemas
class JournalLineModel(BaseModel):
    account_id: str
    debit_amount: str = Field("0", description="Decimal amount as string")
    credit_amount: str = Field("0", description="Decimal amount as string")
    description: Optional[str] = None

    def to_line(self) -> JournalEntryLine:
        return JournalEntryLine(
            account_id=self.account_id,
            debit_amount=to_amount(self.debit_amount),
            credit_amount=to_amount(self.credit_amount),
            description=self.description
        )


class JournalEntryRequest(BaseModel):
    entry_date: date
    description: str
    lines: List[JournalLineModel]
    reference: Optional[str] = None
    created_by: Optional[str] = None
    total_debit: Optional[str] = None  # Declared header totals, checked against the lines
    total_credit: Optional[str] = None

    def to_draft(self) -> JournalEntryDraft:
        return JournalEntryDraft.build(
            entry_date=self.entry_date,
            description=self.description,
            lines=[line.to_line() for line in self.lines],
            reference=self.reference,
            created_by=self.created_by,
            declared_total_debit=to_amount(self.total_debit) if self.total_debit is not None else None,
            declared_total_credit=to_amount(self.total_credit) if self.total_credit is not None else None
        )


class PostEntryRequest(BaseModel):
    posted_by: Optional[str] = None


class ReverseEntryRequest(BaseModel):
    reason: str
    created_by: Optional[str] = None
    reversal_date: Optional[date] = None
    post: bool = True


# Reconciliation schemas
class OutstandingItemModel(BaseModel):
    amount: str = Field(..., description="Decimal amount as string")
    description: Optional[str] = None
    reference: Optional[str] = None
    item_date: Optional[date] = None

    def to_item(self) -> OutstandingItem:
        return OutstandingItem(
            amount=to_amount(self.amount),
            description=self.description,
            reference=self.reference,
            item_date=self.item_date
        )


class ReconcileRequest(BaseModel):
    account_id: str
    statement_date: date
    statement_balance: str = Field(..., description="Decimal amount as string")
    outstanding_deposits: List[OutstandingItemModel] = []
    outstanding_checks: List[OutstandingItemModel] = []
    adjustments: List[OutstandingItemModel] = []
    performed_by: Optional[str] = None


class BootstrapRequest(BaseModel):
    created_by: Optional[str] = None
