"""
Ledger Error Taxonomy

Three families of errors, all ValueError subclasses:

- ValidationError: bad input, rejected before anything is written
- StateError: the request conflicts with current ledger state
- ConsistencyError: a ledger-wide invariant failed; signals corrupted data
  and is never corrected automatically
"""

from typing import Any, Dict, Iterable, Optional


class LedgerError(ValueError):
    """Base class for all accounting core errors"""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


# Validation errors

class ValidationError(LedgerError):
    pass


class UnbalancedEntryError(ValidationError):
    pass


class TooFewLinesError(ValidationError):
    pass


class LineTotalMismatchError(ValidationError):
    """Declared header totals disagree with the line totals"""


class InvalidLineError(ValidationError):
    """Negative amount, or a line that is both or neither debit and credit"""


class DuplicateAccountCodeError(ValidationError):
    pass


class InvalidParentTypeError(ValidationError):
    pass


class ParentNotFoundError(ValidationError):
    pass


class InvalidCategoryError(ValidationError):
    pass


class HierarchyCycleError(ValidationError):
    pass


class ImmutableAccountFieldError(ValidationError):
    """code/account_type change on an account that already has journal lines"""


# State errors

class StateError(LedgerError):
    pass


class AccountNotFoundError(StateError):
    pass


class EntryNotFoundError(StateError):
    pass


class EntryAlreadyPostedError(StateError):
    pass


class AccountInactiveOrMissingError(StateError):
    pass


class AccountQuarantinedError(StateError):
    """Posting halted on an account after a consistency fault"""


# Consistency errors

class ConsistencyError(LedgerError):

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None,
                 suspect_accounts: Iterable[str] = ()):
        super().__init__(message, details)
        self.suspect_accounts = sorted(set(suspect_accounts))


class TrialBalanceMismatchError(ConsistencyError):
    pass


class BalanceSheetImbalanceError(ConsistencyError):
    pass


class CashFlowMismatchError(ConsistencyError):
    pass


class BalanceDriftError(ConsistencyError):
    """Live balances disagree with the replayed entry log"""
