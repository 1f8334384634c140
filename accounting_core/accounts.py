"""
Chart of Accounts Module

Owns account identity and hierarchy: creation with code uniqueness and
parent/child type checks, metadata updates, lookups, and the standard
chart bootstrap. Accounts are never deleted, only deactivated.
"""

import logging
import threading
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from .audit import AuditTrail, AuditEventType
from .errors import (
    AccountNotFoundError, DuplicateAccountCodeError, HierarchyCycleError,
    ImmutableAccountFieldError, InvalidParentTypeError, ParentNotFoundError,
    ValidationError
)
from .models import DEFAULT_CATEGORIES, Account, AccountCategory, AccountType
from .money import ZERO
from .repository import LedgerRepository


logger = logging.getLogger("accounting.accounts")


# Fields update_account may change at any time
METADATA_FIELDS = {'name', 'category', 'description', 'tax_line', 'is_active', 'parent_id'}

# Fields that become immutable once a journal line references the account
STRUCTURAL_FIELDS = {'code', 'account_type'}


STANDARD_CHART = [
    # Assets
    ("1000", "Cash - Operating", AccountType.ASSET, AccountCategory.CURRENT_ASSET),
    ("1010", "Cash - Savings", AccountType.ASSET, AccountCategory.CURRENT_ASSET),
    ("1200", "Accounts Receivable", AccountType.ASSET, AccountCategory.CURRENT_ASSET),
    ("1300", "Inventory", AccountType.ASSET, AccountCategory.CURRENT_ASSET),
    ("1500", "Equipment", AccountType.ASSET, AccountCategory.FIXED_ASSET),
    ("1510", "Accumulated Depreciation - Equipment", AccountType.ASSET, AccountCategory.FIXED_ASSET),

    # Liabilities
    ("2000", "Accounts Payable", AccountType.LIABILITY, AccountCategory.CURRENT_LIABILITY),
    ("2100", "Accrued Expenses", AccountType.LIABILITY, AccountCategory.CURRENT_LIABILITY),
    ("2500", "Long-term Debt", AccountType.LIABILITY, AccountCategory.LONG_TERM_LIABILITY),

    # Equity
    ("3000", "Owner's Equity", AccountType.EQUITY, AccountCategory.OWNERS_EQUITY),
    ("3900", "Retained Earnings", AccountType.EQUITY, AccountCategory.RETAINED_EARNINGS),

    # Revenue
    ("4000", "Service Revenue", AccountType.REVENUE, AccountCategory.OPERATING_REVENUE),
    ("4100", "Product Sales", AccountType.REVENUE, AccountCategory.OPERATING_REVENUE),

    # Expenses
    ("5000", "Cost of Goods Sold", AccountType.EXPENSE, AccountCategory.COST_OF_GOODS_SOLD),
    ("6000", "Wages and Salaries", AccountType.EXPENSE, AccountCategory.OPERATING_EXPENSE),
    ("6100", "Rent Expense", AccountType.EXPENSE, AccountCategory.OPERATING_EXPENSE),
    ("6200", "Office Supplies", AccountType.EXPENSE, AccountCategory.OPERATING_EXPENSE),
    ("6300", "Depreciation Expense", AccountType.EXPENSE, AccountCategory.OPERATING_EXPENSE),
]


@dataclass
class BootstrapResult:
    """Outcome of seeding the standard chart of accounts"""
    created: List[Account] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'created': [account.code for account in self.created],
            'warnings': list(self.warnings)
        }


class AccountRegistry:
    """
    Chart of accounts manager

    Balances are read-only here; the BalanceStore is their only writer.
    Metadata updates and balance writes share the per-account lock, so
    neither overwrites the other.
    """

    def __init__(self, repository: LedgerRepository, audit_trail: AuditTrail):
        self.repository = repository
        self.audit_trail = audit_trail
        self._create_lock = threading.Lock()

    def create_account(
        self,
        code: str,
        name: str,
        account_type: AccountType,
        category: Optional[AccountCategory] = None,
        parent_id: Optional[str] = None,
        is_active: bool = True,
        description: Optional[str] = None,
        tax_line: Optional[str] = None,
        created_by: Optional[str] = None
    ) -> Account:
        """
        Create a new account with a zero balance

        Args:
            code: Unique account code, e.g. "1000"
            name: Display name
            account_type: Asset, Liability, Equity, Revenue or Expense
            category: Statement grouping; defaults per account type
            parent_id: Optional parent account of the same type
            is_active: Whether the account accepts postings
            description: Free text
            tax_line: Tax form mapping label
            created_by: User creating the account

        Returns:
            Created Account

        Raises:
            DuplicateAccountCodeError: code already in use
            ParentNotFoundError: parent_id does not exist
            InvalidParentTypeError: parent has a different account type
            InvalidCategoryError: category belongs to another account type
        """
        code = (code or "").strip()
        if not code:
            raise ValidationError("Account code is required")

        with self._create_lock:
            if self.repository.find_account_by_code(code):
                raise DuplicateAccountCodeError(f"Account code {code} already exists")

            if parent_id:
                self._check_parent(parent_id, account_type)

            now = datetime.now(timezone.utc)
            account = Account(
                id=str(uuid.uuid4()),
                created_at=now,
                updated_at=now,
                code=code,
                name=name,
                account_type=account_type,
                category=category or DEFAULT_CATEGORIES[account_type],
                parent_id=parent_id,
                is_active=is_active,
                balance=ZERO,
                description=description,
                tax_line=tax_line
            )
            self.repository.save_account(account)

        logger.info("Created account %s %s (%s)", account.code, account.name, account.account_type.value)
        self.audit_trail.log_event(
            event_type=AuditEventType.ACCOUNT_CREATED,
            entity_type="account",
            entity_id=account.id,
            metadata={
                "code": account.code,
                "name": account.name,
                "account_type": account.account_type,
                "category": account.category,
                "parent_id": parent_id
            },
            user_id=created_by
        )
        return account

    def update_account(self, account_id: str, updated_by: Optional[str] = None, **changes) -> Account:
        """
        Update account metadata

        ``code`` and ``account_type`` can only change while no journal line
        references the account. ``balance`` and ``id`` are never writable.

        Raises:
            AccountNotFoundError: account does not exist
            ImmutableAccountFieldError: structural change on an account with history
            ValidationError: unknown field, or an invalid new value
        """
        unknown = set(changes) - METADATA_FIELDS - STRUCTURAL_FIELDS
        if unknown:
            raise ValidationError(f"Cannot update account fields: {', '.join(sorted(unknown))}")

        with self._create_lock, self.repository.account_locks([account_id]):
            account = self.repository.load_account(account_id)
            if not account:
                raise AccountNotFoundError(f"Account {account_id} not found")

            structural = {
                name for name in STRUCTURAL_FIELDS
                if name in changes and changes[name] != getattr(account, name)
            }
            if structural and self.repository.account_has_lines(account_id):
                raise ImmutableAccountFieldError(
                    f"Cannot change {', '.join(sorted(structural))} of account {account.code}: "
                    f"journal lines already reference it"
                )

            if 'code' in structural:
                new_code = (changes['code'] or "").strip()
                existing = self.repository.find_account_by_code(new_code)
                if not new_code or (existing and existing.id != account_id):
                    raise DuplicateAccountCodeError(f"Account code {new_code} already exists")
                changes['code'] = new_code

            new_type = changes.get('account_type', account.account_type)
            if 'account_type' in structural and 'category' not in changes:
                changes['category'] = DEFAULT_CATEGORIES[new_type]

            new_parent = changes.get('parent_id', account.parent_id)
            if new_parent and ('parent_id' in changes or 'account_type' in structural):
                self._check_parent(new_parent, new_type, child_id=account_id)
            if 'account_type' in structural and self.get_children(account_id):
                raise InvalidParentTypeError(
                    f"Cannot change type of account {account.code}: it has child accounts"
                )

            previous = {name: getattr(account, name) for name in changes}
            for name, value in changes.items():
                setattr(account, name, value)
            # Re-run dataclass validation (category must match type)
            account = Account.from_dict(account.to_dict())
            account.updated_at = datetime.now(timezone.utc)
            self.repository.save_account(account)

        logger.info("Updated account %s: %s", account.code, ", ".join(sorted(changes)))
        self.audit_trail.log_event(
            event_type=AuditEventType.ACCOUNT_UPDATED,
            entity_type="account",
            entity_id=account.id,
            metadata={
                "changes": {name: value for name, value in changes.items()},
                "previous": previous
            },
            user_id=updated_by
        )
        return account

    def deactivate_account(self, account_id: str, updated_by: Optional[str] = None) -> Account:
        return self.update_account(account_id, updated_by=updated_by, is_active=False)

    def get_account(self, account_id: str) -> Optional[Account]:
        return self.repository.load_account(account_id)

    def get_by_code(self, code: str) -> Optional[Account]:
        return self.repository.find_account_by_code(code)

    def get_by_type(self, account_type: AccountType, include_inactive: bool = False) -> List[Account]:
        """Accounts of one type, ordered by code"""
        return [
            account for account in self.list_accounts(include_inactive=include_inactive)
            if account.account_type == account_type
        ]

    def list_accounts(self, include_inactive: bool = False) -> List[Account]:
        accounts = self.repository.load_accounts()
        if include_inactive:
            return accounts
        return [account for account in accounts if account.is_active]

    def get_children(self, account_id: str) -> List[Account]:
        return [
            account for account in self.repository.load_accounts()
            if account.parent_id == account_id
        ]

    def get_ancestors(self, account_id: str) -> List[Account]:
        """Parent chain from the direct parent up to the root"""
        ancestors = []
        seen = {account_id}
        account = self.repository.load_account(account_id)
        while account and account.parent_id:
            if account.parent_id in seen:
                raise HierarchyCycleError(f"Account hierarchy cycle at {account.parent_id}")
            seen.add(account.parent_id)
            account = self.repository.load_account(account.parent_id)
            if account:
                ancestors.append(account)
        return ancestors

    def setup_standard_chart(self, created_by: Optional[str] = None) -> BootstrapResult:
        """
        Seed the standard chart of accounts

        Safe to re-run: codes that already exist are skipped and reported
        as warnings instead of failing the whole bootstrap.
        """
        result = BootstrapResult()
        for code, name, account_type, category in STANDARD_CHART:
            try:
                account = self.create_account(
                    code=code,
                    name=name,
                    account_type=account_type,
                    category=category,
                    created_by=created_by
                )
                result.created.append(account)
            except DuplicateAccountCodeError as e:
                logger.warning("Standard account %s not created: %s", code, e)
                result.warnings.append(f"Account {code} already exists")

        self.audit_trail.log_event(
            event_type=AuditEventType.CHART_BOOTSTRAPPED,
            entity_type="chart_of_accounts",
            entity_id="standard",
            metadata=result.to_dict(),
            user_id=created_by
        )
        return result

    def _check_parent(self, parent_id: str, account_type: AccountType, child_id: Optional[str] = None) -> None:
        """Validate a parent assignment, including cycle prevention on reparenting"""
        parent = self.repository.load_account(parent_id)
        if not parent:
            raise ParentNotFoundError(f"Parent account {parent_id} does not exist")
        if parent.account_type != account_type:
            raise InvalidParentTypeError(
                f"Child account type {account_type.value} must match parent account type "
                f"{parent.account_type.value}"
            )
        if child_id is None:
            return
        if parent_id == child_id:
            raise HierarchyCycleError("Account cannot be its own parent")
        for ancestor in self.get_ancestors(parent_id):
            if ancestor.id == child_id:
                raise HierarchyCycleError(
                    f"Assigning parent {parent.code} would create a cycle in the account hierarchy"
                )
