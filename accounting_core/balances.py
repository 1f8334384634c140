"""
Balance Store

Single writer of ``Account.balance``. Live balances are a cache of the
posted journal log; ``snapshot_as_of`` rebuilds them from the log for any
date and ``verify_integrity`` compares the two.

Writes to one account are serialized by that account's lock; writes to
different accounts never wait on each other.
"""

import logging
from collections import defaultdict
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Dict, Iterable, Mapping, Optional, Set

from .audit import AuditTrail, AuditEventType
from .errors import AccountInactiveOrMissingError, BalanceDriftError, ConsistencyError
from .models import AccountType, JournalEntry, normal_balance_delta
from .money import ZERO, to_amount
from .repository import LedgerRepository


logger = logging.getLogger("accounting.balances")


class BalanceStore:
    """Live balances, point-in-time snapshots and posting quarantine"""

    def __init__(self, repository: LedgerRepository, audit_trail: AuditTrail):
        self.repository = repository
        self.audit_trail = audit_trail

    def get_balance(self, account_id: str) -> Decimal:
        account = self.repository.load_account(account_id)
        if not account:
            raise AccountInactiveOrMissingError(f"Account {account_id} not found")
        return account.balance

    def apply_delta(self, account_id: str, amount: Decimal) -> Decimal:
        """
        Add a signed amount to one account's balance

        Returns:
            The new balance
        """
        with self.repository.account_locks([account_id]):
            with self.repository.atomic():
                return self._apply(account_id, to_amount(amount))

    def apply_deltas(self, deltas: Mapping[str, Decimal]) -> Dict[str, Decimal]:
        """
        Apply signed amounts to several accounts as one unit

        The caller must already hold the locks of every account in
        ``deltas`` and an open storage transaction; posting does both.
        """
        return {
            account_id: self._apply(account_id, to_amount(amount))
            for account_id, amount in sorted(deltas.items())
        }

    def _apply(self, account_id: str, amount: Decimal) -> Decimal:
        account = self.repository.load_account(account_id)
        if not account:
            raise AccountInactiveOrMissingError(f"Account {account_id} not found")
        new_balance = account.balance + amount
        self.repository.store_balance(account_id, new_balance)
        return new_balance

    @staticmethod
    def entry_deltas(entry: JournalEntry, account_types: Mapping[str, AccountType]) -> Dict[str, Decimal]:
        """Net normal-balance change of each account touched by an entry"""
        deltas: Dict[str, Decimal] = defaultdict(lambda: ZERO)
        for line in entry.lines:
            account_type = account_types[line.account_id]
            deltas[line.account_id] += normal_balance_delta(
                account_type, line.debit_amount, line.credit_amount
            )
        return dict(deltas)

    def _account_types(self) -> Dict[str, AccountType]:
        return {account.id: account.account_type for account in self.repository.load_accounts()}

    def _replay(self, entries: Iterable[JournalEntry]) -> Dict[str, Decimal]:
        account_types = self._account_types()
        balances = {account_id: ZERO for account_id in account_types}
        for entry in entries:
            for account_id, delta in self.entry_deltas(entry, account_types).items():
                balances[account_id] = balances.get(account_id, ZERO) + delta
        return balances

    def snapshot_as_of(self, as_of: Optional[date] = None) -> Dict[str, Decimal]:
        """
        Balances rebuilt from posted entries dated on or before ``as_of``

        With ``as_of=None`` every posted entry is replayed, which must equal
        the live balances of a healthy ledger.
        """
        return self._replay(self.repository.load_posted_entries(end_date=as_of))

    def balance_as_of(self, account_id: str, as_of: Optional[date] = None) -> Decimal:
        return self.snapshot_as_of(as_of).get(account_id, ZERO)

    def activity_between(self, start_date: date, end_date: date) -> Dict[str, Decimal]:
        """Normal-balance movement per account from entries dated in [start, end]"""
        return self._replay(self.repository.load_posted_entries(start_date=start_date, end_date=end_date))

    def verify_integrity(self) -> Dict[str, object]:
        """
        Compare live balances against a full replay of the entry log

        Drifting accounts are quarantined and a critical fault is logged.
        Nothing is corrected: the log stays the ground truth and an
        operator decides how to repair the cache.
        """
        replayed = self.snapshot_as_of(None)
        drift = []
        for account in self.repository.load_accounts():
            expected = replayed.get(account.id, ZERO)
            if account.balance != expected:
                drift.append({
                    'account_id': account.id,
                    'account_code': account.code,
                    'live_balance': str(account.balance),
                    'replayed_balance': str(expected)
                })

        result = {'valid': not drift, 'accounts_checked': len(replayed), 'drift': drift}
        if drift:
            self.report_fault(BalanceDriftError(
                f"{len(drift)} account balance(s) disagree with the journal log",
                details=result,
                suspect_accounts=[item['account_id'] for item in drift]
            ))
        return result

    # Quarantine

    def report_fault(self, error: ConsistencyError) -> None:
        """Log, audit and quarantine the accounts named by a consistency error"""
        logger.critical("Ledger consistency fault: %s", error.message,
                        extra={'extra': {'suspect_accounts': error.suspect_accounts}})
        self.audit_trail.log_event(
            event_type=AuditEventType.CONSISTENCY_FAULT,
            entity_type="ledger",
            entity_id=type(error).__name__,
            metadata={'message': error.message, 'suspect_accounts': error.suspect_accounts}
        )
        self.quarantine(error.suspect_accounts, reason=error.message)

    def quarantine(self, account_ids: Iterable[str], reason: str) -> None:
        """Halt posting against accounts until an operator releases them"""
        now = datetime.now(timezone.utc)
        for account_id in account_ids:
            if self.is_quarantined(account_id):
                continue
            self.repository.save_quarantine(account_id, {
                'account_id': account_id,
                'reason': reason,
                'active': True,
                'quarantined_at': now.isoformat()
            })
            logger.critical("Posting halted for account %s: %s", account_id, reason)
            self.audit_trail.log_event(
                event_type=AuditEventType.ACCOUNT_QUARANTINED,
                entity_type="account",
                entity_id=account_id,
                metadata={'reason': reason}
            )

    def release(self, account_id: str, released_by: Optional[str] = None) -> bool:
        """Resume posting for a quarantined account"""
        record = self.repository.load_quarantine().get(account_id)
        if not record:
            return False
        record['active'] = False
        record['released_at'] = datetime.now(timezone.utc).isoformat()
        record['released_by'] = released_by
        self.repository.save_quarantine(account_id, record)
        logger.warning("Posting resumed for account %s", account_id)
        self.audit_trail.log_event(
            event_type=AuditEventType.ACCOUNT_RELEASED,
            entity_type="account",
            entity_id=account_id,
            metadata={'reason': record.get('reason')},
            user_id=released_by
        )
        return True

    def is_quarantined(self, account_id: str) -> bool:
        return account_id in self.repository.load_quarantine()

    def quarantined_accounts(self) -> Set[str]:
        return set(self.repository.load_quarantine())
