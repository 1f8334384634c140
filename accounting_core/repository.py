"""
Ledger Repository

Narrow persistence seam between the accounting services and a storage
backend: accounts, journal entries, entry-number sequences, balance writes
and reconciliation history. Services never talk to storage tables directly.
"""

import threading
from contextlib import contextmanager
from datetime import date
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Optional

from .models import Account, JournalEntry, JournalEntryState
from .storage import StorageInterface


class KeyedLocks:
    """
    One re-entrant lock per key, alive while some thread holds or waits on it

    ``hold`` acquires several keys in sorted order so callers locking
    overlapping key sets cannot deadlock. A lock is dropped once its last
    user releases it, so the table only grows with the keys in use.
    """

    def __init__(self):
        self._locks: Dict[str, threading.RLock] = {}
        self._users: Dict[str, int] = {}
        self._guard = threading.Lock()

    def __len__(self) -> int:
        with self._guard:
            return len(self._locks)

    def _checkout(self, key: str) -> threading.RLock:
        with self._guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = threading.RLock()
                self._locks[key] = lock
            self._users[key] = self._users.get(key, 0) + 1
            return lock

    def _checkin(self, key: str) -> None:
        with self._guard:
            self._users[key] -= 1
            if not self._users[key]:
                del self._users[key]
                del self._locks[key]

    @contextmanager
    def hold(self, keys: Iterable[str]):
        acquired = []
        try:
            for key in sorted(set(keys)):
                lock = self._checkout(key)
                try:
                    lock.acquire()
                except BaseException:
                    self._checkin(key)
                    raise
                acquired.append((key, lock))
            yield
        finally:
            for key, lock in reversed(acquired):
                lock.release()
                self._checkin(key)


class LedgerRepository:
    """Typed access to ledger tables over a StorageInterface"""

    ACCOUNTS = "accounts"
    ENTRIES = "journal_entries"
    RECONCILIATIONS = "reconciliations"
    QUARANTINE = "account_quarantine"

    def __init__(self, storage: StorageInterface):
        self.storage = storage
        self.locks = KeyedLocks()

    def atomic(self):
        """Storage transaction covering every write made inside it"""
        return self.storage.atomic()

    def account_locks(self, account_ids: Iterable[str]):
        return self.locks.hold(f"account:{account_id}" for account_id in account_ids)

    def entry_lock(self, entry_id: str):
        return self.locks.hold([f"entry:{entry_id}"])

    # Accounts

    def save_account(self, account: Account) -> None:
        self.storage.save(self.ACCOUNTS, account.id, account.to_dict())

    def load_account(self, account_id: str) -> Optional[Account]:
        data = self.storage.load(self.ACCOUNTS, account_id)
        if data:
            return Account.from_dict(data)
        return None

    def find_account_by_code(self, code: str) -> Optional[Account]:
        matches = self.storage.find(self.ACCOUNTS, {'code': code})
        if matches:
            return Account.from_dict(matches[0])
        return None

    def load_accounts(self) -> List[Account]:
        accounts = [Account.from_dict(data) for data in self.storage.load_all(self.ACCOUNTS)]
        accounts.sort(key=lambda a: a.code)
        return accounts

    def store_balance(self, account_id: str, balance: Decimal) -> None:
        """Overwrite the cached balance of one account"""
        data = self.storage.load(self.ACCOUNTS, account_id)
        if data is None:
            raise KeyError(account_id)
        data['balance'] = str(balance)
        self.storage.save(self.ACCOUNTS, account_id, data)

    # Journal entries

    def save_entry(self, entry: JournalEntry) -> None:
        self.storage.save(self.ENTRIES, entry.id, entry.to_dict())

    def load_entry(self, entry_id: str) -> Optional[JournalEntry]:
        data = self.storage.load(self.ENTRIES, entry_id)
        if data:
            return JournalEntry.from_dict(data)
        return None

    def load_entries(self) -> List[JournalEntry]:
        entries = [JournalEntry.from_dict(data) for data in self.storage.load_all(self.ENTRIES)]
        entries.sort(key=lambda e: (e.entry_date, e.entry_number))
        return entries

    def load_posted_entries(self, start_date: Optional[date] = None,
                            end_date: Optional[date] = None) -> List[JournalEntry]:
        """Posted entries dated within [start_date, end_date], oldest first"""
        entries = []
        for entry in self.load_entries():
            if entry.state != JournalEntryState.POSTED:
                continue
            if start_date and entry.entry_date < start_date:
                continue
            if end_date and entry.entry_date > end_date:
                continue
            entries.append(entry)
        return entries

    def account_has_lines(self, account_id: str) -> bool:
        """True if any journal line, posted or draft, references the account"""
        for data in self.storage.load_all(self.ENTRIES):
            if any(line['account_id'] == account_id for line in data['lines']):
                return True
        return False

    def next_entry_sequence(self, fiscal_year: int) -> int:
        return self.storage.next_sequence(f"journal_entry:{fiscal_year}")

    # Quarantine

    def save_quarantine(self, account_id: str, data: Dict[str, Any]) -> None:
        self.storage.save(self.QUARANTINE, account_id, data)

    def load_quarantine(self) -> Dict[str, Dict[str, Any]]:
        return {
            data['account_id']: data
            for data in self.storage.load_all(self.QUARANTINE)
            if data.get('active')
        }

    # Reconciliations

    def save_reconciliation(self, reconciliation_id: str, data: Dict[str, Any]) -> None:
        self.storage.save(self.RECONCILIATIONS, reconciliation_id, data)

    def load_reconciliations(self, account_id: str) -> List[Dict[str, Any]]:
        return self.storage.find(self.RECONCILIATIONS, {'account_id': account_id})
