"""
Accounting System Context

Wires storage, audit trail and the ledger services together from a
LedgerConfig. Every service receives its collaborators through its
constructor; nothing here is a module-level singleton.
"""

import logging
from decimal import Decimal
from typing import Optional

from .accounts import AccountRegistry
from .audit import AuditTrail
from .balances import BalanceStore
from .config import LedgerConfig
from .ledger import LedgerPoster
from .logging_config import setup_logging
from .money import decimal_from_string
from .reconciliation import ReconciliationEngine
from .reporting import CashFlowRules, ReportEngine
from .repository import LedgerRepository
from .storage import StorageInterface, create_storage


logger = logging.getLogger("accounting.system")


class AccountingSystem:
    """Accounting core with all components initialized"""

    def __init__(self, config: Optional[LedgerConfig] = None,
                 storage: Optional[StorageInterface] = None,
                 configure_logging: bool = False):
        self.config = config or LedgerConfig()
        if configure_logging:
            setup_logging(
                level=self.config.log_level,
                log_format=self.config.log_format,
                log_file=self.config.log_file
            )

        tolerance: Decimal = decimal_from_string(self.config.balance_tolerance)

        # Initialize storage
        self.storage = storage or create_storage(self.config.database_url)
        self.repository = LedgerRepository(self.storage)

        # Initialize core components
        self.audit_trail = AuditTrail(self.storage, enabled=self.config.enable_audit_logging)
        self.accounts = AccountRegistry(self.repository, self.audit_trail)
        self.balances = BalanceStore(self.repository, self.audit_trail)
        self.ledger = LedgerPoster(
            self.repository, self.balances, self.audit_trail,
            entry_number_prefix=self.config.entry_number_prefix,
            sequence_padding=self.config.entry_sequence_padding,
            fiscal_year_start_month=self.config.fiscal_year_start_month
        )
        self.reports = ReportEngine(
            self.repository, self.accounts, self.balances,
            tolerance=tolerance,
            cash_flow_rules=CashFlowRules(cash_account_codes=set(self.config.cash_account_codes))
        )
        self.reconciliation = ReconciliationEngine(
            self.repository, self.balances, self.audit_trail, tolerance=tolerance
        )

        logger.info("Accounting system initialized (storage: %s)", type(self.storage).__name__)

    def close(self) -> None:
        self.storage.close()
