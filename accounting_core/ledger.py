"""
Double-Entry Ledger Engine

Validates and posts journal entries. Every entry is created as a draft
from a balanced JournalEntryDraft; posting applies the normal-balance
deltas of all its lines and flips it to POSTED in one storage transaction.
Posted entries are never edited: corrections are new offsetting entries.
"""

import logging
import uuid
from datetime import date, datetime, timezone
from typing import List, Optional

from .audit import AuditTrail, AuditEventType
from .balances import BalanceStore
from .errors import (
    AccountInactiveOrMissingError, AccountNotFoundError, AccountQuarantinedError,
    EntryAlreadyPostedError, EntryNotFoundError, StateError, UnbalancedEntryError
)
from .logging_config import log_action
from .models import JournalEntry, JournalEntryDraft, JournalEntryState
from .repository import LedgerRepository


logger = logging.getLogger("accounting.ledger")


class LedgerPoster:
    """
    Owns the Draft -> Posted transition of journal entries

    Posting locks the entry, then every account it touches (sorted by id),
    so entries over the same account apply one after another while
    entries over disjoint accounts proceed in parallel.
    """

    def __init__(
        self,
        repository: LedgerRepository,
        balance_store: BalanceStore,
        audit_trail: AuditTrail,
        entry_number_prefix: str = "JE",
        sequence_padding: int = 4,
        fiscal_year_start_month: int = 1
    ):
        if not 1 <= fiscal_year_start_month <= 12:
            raise ValueError("fiscal_year_start_month must be between 1 and 12")
        self.repository = repository
        self.balance_store = balance_store
        self.audit_trail = audit_trail
        self.entry_number_prefix = entry_number_prefix
        self.sequence_padding = sequence_padding
        self.fiscal_year_start_month = fiscal_year_start_month

    def fiscal_year(self, entry_date: date) -> int:
        """Fiscal years are named after the calendar year they end in"""
        if self.fiscal_year_start_month > 1 and entry_date.month >= self.fiscal_year_start_month:
            return entry_date.year + 1
        return entry_date.year

    def next_entry_number(self, entry_date: date) -> str:
        """
        Allocate the next entry number of the entry's fiscal year

        Backed by an atomic storage sequence: numbers may be skipped
        (e.g. a failed create) but are never handed out twice.
        """
        year = self.fiscal_year(entry_date)
        sequence = self.repository.next_entry_sequence(year)
        return f"{self.entry_number_prefix}{year}{sequence:0{self.sequence_padding}d}"

    def create_entry(self, draft: JournalEntryDraft, reverses: Optional[str] = None) -> JournalEntry:
        """
        Store a new journal entry in DRAFT state

        Args:
            draft: Balanced entry header and lines
            reverses: ID of the posted entry this one offsets, if any

        Returns:
            Created JournalEntry

        Raises:
            AccountNotFoundError: a line references an unknown account
        """
        # Account code and type stay fixed from the check until the lines are saved
        with self.repository.account_locks(draft.get_affected_accounts()):
            self._check_draft(draft)

            now = datetime.now(timezone.utc)
            entry = JournalEntry(
                id=str(uuid.uuid4()),
                created_at=now,
                updated_at=now,
                entry_number=self.next_entry_number(draft.entry_date),
                entry_date=draft.entry_date,
                description=draft.description,
                lines=list(draft.lines),
                state=JournalEntryState.DRAFT,
                total_debit=draft.total_debit,
                total_credit=draft.total_credit,
                reference=draft.reference,
                created_by=draft.created_by,
                reverses=reverses
            )
            self.repository.save_entry(entry)

        logger.info("Created journal entry %s (%s lines, %s)",
                    entry.entry_number, len(entry.lines), entry.total_debit,
                    extra={'entry_number': entry.entry_number})
        self.audit_trail.log_event(
            event_type=AuditEventType.JOURNAL_ENTRY_CREATED,
            entity_type="journal_entry",
            entity_id=entry.id,
            metadata={
                "entry_number": entry.entry_number,
                "entry_date": entry.entry_date,
                "reference": entry.reference,
                "total": entry.total_debit,
                "accounts": sorted(entry.get_affected_accounts()),
                "reverses": reverses
            },
            user_id=entry.created_by
        )
        return entry

    def update_draft(self, entry_id: str, draft: JournalEntryDraft, updated_by: Optional[str] = None) -> JournalEntry:
        """
        Replace the header and lines of a DRAFT entry

        The entry keeps its id and entry number.

        Raises:
            EntryNotFoundError: no such entry
            EntryAlreadyPostedError: the entry is posted and immutable
        """
        with self.repository.entry_lock(entry_id):
            entry = self._load(entry_id)
            if entry.is_posted:
                raise EntryAlreadyPostedError(
                    f"Journal entry {entry.entry_number} is already posted and cannot be edited"
                )
            with self.repository.account_locks(draft.get_affected_accounts()):
                self._check_draft(draft)

                entry.entry_date = draft.entry_date
                entry.description = draft.description
                entry.lines = list(draft.lines)
                entry.total_debit = draft.total_debit
                entry.total_credit = draft.total_credit
                entry.reference = draft.reference
                entry.updated_at = datetime.now(timezone.utc)
                self.repository.save_entry(entry)

        self.audit_trail.log_event(
            event_type=AuditEventType.JOURNAL_ENTRY_UPDATED,
            entity_type="journal_entry",
            entity_id=entry.id,
            metadata={"entry_number": entry.entry_number, "total": entry.total_debit},
            user_id=updated_by
        )
        return entry

    def post_entry(self, entry_id: str, posted_by: Optional[str] = None) -> JournalEntry:
        """
        Post a journal entry, applying its balance changes

        All line deltas and the state change commit together; on any
        failure the entry stays DRAFT and no balance moves.

        Raises:
            EntryNotFoundError: no such entry
            EntryAlreadyPostedError: entry was posted before (retries are safe)
            UnbalancedEntryError: stored lines no longer balance
            AccountInactiveOrMissingError: a line targets a missing or inactive account
            AccountQuarantinedError: a line targets an account halted after a fault
        """
        with self.repository.entry_lock(entry_id):
            entry = self._load(entry_id)
            if entry.is_posted:
                raise EntryAlreadyPostedError(f"Journal entry {entry.entry_number} is already posted")

            total_debit, total_credit = entry.line_totals()
            if not entry.is_balanced():
                raise UnbalancedEntryError(
                    f"Journal entry {entry.entry_number} does not balance: "
                    f"debits={total_debit}, credits={total_credit}"
                )

            account_ids = entry.get_affected_accounts()
            with self.repository.account_locks(account_ids):
                account_types = {}
                for account_id in sorted(account_ids):
                    account = self.repository.load_account(account_id)
                    if not account or not account.is_active:
                        raise AccountInactiveOrMissingError(
                            f"Account {account_id} is inactive or missing",
                            details={'account_id': account_id}
                        )
                    if self.balance_store.is_quarantined(account_id):
                        raise AccountQuarantinedError(
                            f"Posting to account {account.code} is halted pending a consistency review",
                            details={'account_id': account_id}
                        )
                    account_types[account_id] = account.account_type

                deltas = BalanceStore.entry_deltas(entry, account_types)
                with self.repository.atomic():
                    self.balance_store.apply_deltas(deltas)
                    now = datetime.now(timezone.utc)
                    entry.state = JournalEntryState.POSTED
                    entry.posted_at = now
                    entry.posted_by = posted_by
                    entry.updated_at = now
                    self.repository.save_entry(entry)

        log_action(logger, "info", f"Posted journal entry {entry.entry_number}",
                   user_id=posted_by, action="post_entry", resource=entry.entry_number)
        self.audit_trail.log_event(
            event_type=AuditEventType.JOURNAL_ENTRY_POSTED,
            entity_type="journal_entry",
            entity_id=entry.id,
            metadata={
                "entry_number": entry.entry_number,
                "posted_at": entry.posted_at,
                "deltas": {account_id: str(delta) for account_id, delta in deltas.items()}
            },
            user_id=posted_by
        )
        return entry

    def reverse_entry(
        self,
        entry_id: str,
        reason: str,
        created_by: Optional[str] = None,
        reversal_date: Optional[date] = None,
        post: bool = True
    ) -> JournalEntry:
        """
        Offset a posted entry with a new entry of swapped debits and credits

        The original entry is left untouched; the new entry points at it
        through ``reverses``.

        Raises:
            EntryNotFoundError: no such entry
            StateError: entry is not posted, or already has a reversal
        """
        with self.repository.entry_lock(entry_id):
            original = self._load(entry_id)
            if not original.is_posted:
                raise StateError(f"Can only reverse posted journal entries, {original.entry_number} is a draft")
            existing = self.get_reversal(entry_id)
            if existing:
                raise StateError(
                    f"Journal entry {original.entry_number} is already reversed by {existing.entry_number}"
                )

            draft = JournalEntryDraft(
                entry_date=reversal_date or date.today(),
                description=f"REVERSAL: {reason}",
                lines=tuple(line.reversed() for line in original.lines),
                reference=f"REV-{original.entry_number}",
                created_by=created_by
            )
            reversal = self.create_entry(draft, reverses=original.id)
            if post:
                reversal = self.post_entry(reversal.id, posted_by=created_by)

        log_action(logger, "info",
                   f"Reversed journal entry {original.entry_number} with {reversal.entry_number}",
                   user_id=created_by, action="reverse_entry", resource=original.entry_number,
                   extra={'reason': reason})
        self.audit_trail.log_event(
            event_type=AuditEventType.JOURNAL_ENTRY_REVERSED,
            entity_type="journal_entry",
            entity_id=original.id,
            metadata={
                "entry_number": original.entry_number,
                "reversal_entry_id": reversal.id,
                "reversal_entry_number": reversal.entry_number,
                "reason": reason
            },
            user_id=created_by
        )
        return reversal

    def get_entry(self, entry_id: str) -> Optional[JournalEntry]:
        return self.repository.load_entry(entry_id)

    def get_by_number(self, entry_number: str) -> Optional[JournalEntry]:
        for entry in self.repository.load_entries():
            if entry.entry_number == entry_number:
                return entry
        return None

    def get_reversal(self, entry_id: str) -> Optional[JournalEntry]:
        """The entry offsetting ``entry_id``, if one was created"""
        for entry in self.repository.load_entries():
            if entry.reverses == entry_id:
                return entry
        return None

    def list_entries(
        self,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
        account_id: Optional[str] = None,
        is_posted: Optional[bool] = None
    ) -> List[JournalEntry]:
        """Entries ordered by date then entry number, optionally filtered"""
        entries = self.repository.load_entries()
        if start_date:
            entries = [e for e in entries if e.entry_date >= start_date]
        if end_date:
            entries = [e for e in entries if e.entry_date <= end_date]
        if account_id:
            entries = [e for e in entries if account_id in e.get_affected_accounts()]
        if is_posted is not None:
            entries = [e for e in entries if e.is_posted == is_posted]
        return entries

    def _load(self, entry_id: str) -> JournalEntry:
        entry = self.repository.load_entry(entry_id)
        if not entry:
            raise EntryNotFoundError(f"Journal entry {entry_id} not found")
        return entry

    def _check_draft(self, draft: JournalEntryDraft) -> None:
        missing = sorted(
            account_id for account_id in draft.get_affected_accounts()
            if not self.repository.load_account(account_id)
        )
        if missing:
            raise AccountNotFoundError(
                f"Unknown account(s): {', '.join(missing)}",
                details={'account_ids': list(missing)}
            )
