"""
FastAPI REST API Module

Exposes the chart of accounts, journal posting, financial reports and
bank reconciliation over HTTP. The app is built around an injected
AccountingSystem; ``run_server`` builds one from configuration.
"""

from datetime import date, datetime, timezone
from typing import Any, Dict, Optional

from fastapi import Depends, FastAPI, HTTPException, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
import uvicorn

from . import __version__
from .config import LedgerConfig
from .logging_config import get_logger
from .errors import (
    AccountNotFoundError, ConsistencyError, EntryNotFoundError, LedgerError,
    StateError, ValidationError
)
from .models import Account, AccountType, JournalEntry
from .schemas import (
    BootstrapRequest, CreateAccountRequest, JournalEntryRequest, PostEntryRequest,
    ReconcileRequest, ReverseEntryRequest, UpdateAccountRequest
)
from .money import to_amount
from .system import AccountingSystem


logger = get_logger("api")


def error_status(error: LedgerError) -> int:
    """HTTP status code of a ledger error"""
    if isinstance(error, (AccountNotFoundError, EntryNotFoundError)):
        return status.HTTP_404_NOT_FOUND
    if isinstance(error, ValidationError):
        return status.HTTP_400_BAD_REQUEST
    if isinstance(error, StateError):
        return status.HTTP_409_CONFLICT
    if isinstance(error, ConsistencyError):
        return status.HTTP_500_INTERNAL_SERVER_ERROR
    return status.HTTP_400_BAD_REQUEST


def get_system(request: Request) -> AccountingSystem:
    return request.app.state.system


def account_response(account: Account) -> Dict[str, Any]:
    return account.to_dict()


def entry_response(entry: JournalEntry, system: Optional[AccountingSystem] = None) -> Dict[str, Any]:
    result = entry.to_dict()
    result['is_posted'] = entry.is_posted
    if system is not None:
        reversal = system.ledger.get_reversal(entry.id)
        result['reversed_by'] = reversal.id if reversal else None
    return result


def create_app(system: AccountingSystem) -> FastAPI:
    """Create and configure the FastAPI application"""
    app = FastAPI(
        title="Accounting Core API",
        description="Double-entry ledger, financial statements and bank reconciliation",
        version=__version__,
        docs_url="/docs",
        redoc_url="/redoc"
    )
    app.state.system = system

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],  # Configure appropriately for production
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(LedgerError)
    async def ledger_error_handler(request: Request, exc: LedgerError):
        status_code = error_status(exc)
        logger.warning("%s %s rejected: %s", request.method, request.url.path, exc.message)
        content = {"detail": exc.message, "error": type(exc).__name__}
        if exc.details:
            content["details"] = exc.details
        if isinstance(exc, ConsistencyError):
            content["suspect_accounts"] = exc.suspect_accounts
        return JSONResponse(status_code=status_code, content=content)

    @app.exception_handler(ValueError)
    async def value_error_handler(request: Request, exc: ValueError):
        return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST,
                            content={"detail": str(exc), "error": type(exc).__name__})

    # Health check endpoint
    @app.get("/health")
    async def health_check():
        """Health check endpoint"""
        return {
            "status": "healthy",
            "service": "accounting_core_api",
            "version": __version__,
            "timestamp": datetime.now(timezone.utc).isoformat()
        }

    # Chart of accounts
    @app.post("/accounts", status_code=status.HTTP_201_CREATED)
    async def create_account(request: CreateAccountRequest,
                             system: AccountingSystem = Depends(get_system)):
        """Create a new account"""
        account = system.accounts.create_account(
            code=request.code,
            name=request.name,
            account_type=request.account_type,
            category=request.category,
            parent_id=request.parent_id,
            is_active=request.is_active,
            description=request.description,
            tax_line=request.tax_line,
            created_by=request.created_by
        )
        return account_response(account)

    @app.get("/accounts")
    async def list_accounts(account_type: Optional[AccountType] = None,
                            include_inactive: bool = False,
                            system: AccountingSystem = Depends(get_system)):
        """List accounts ordered by code"""
        if account_type:
            accounts = system.accounts.get_by_type(account_type, include_inactive=include_inactive)
        else:
            accounts = system.accounts.list_accounts(include_inactive=include_inactive)
        return {"accounts": [account_response(a) for a in accounts]}

    @app.post("/accounts/bootstrap", status_code=status.HTTP_201_CREATED)
    async def bootstrap_accounts(request: Optional[BootstrapRequest] = None,
                                 system: AccountingSystem = Depends(get_system)):
        """Seed the standard chart of accounts"""
        result = system.accounts.setup_standard_chart(created_by=request.created_by if request else None)
        return result.to_dict()

    @app.get("/accounts/by-code/{code}")
    async def get_account_by_code(code: str, system: AccountingSystem = Depends(get_system)):
        """Get account by code"""
        account = system.accounts.get_by_code(code)
        if not account:
            raise HTTPException(status_code=404, detail="Account not found")
        return account_response(account)

    @app.get("/accounts/{account_id}")
    async def get_account(account_id: str, system: AccountingSystem = Depends(get_system)):
        """Get account by ID"""
        account = system.accounts.get_account(account_id)
        if not account:
            raise HTTPException(status_code=404, detail="Account not found")
        result = account_response(account)
        result['quarantined'] = system.balances.is_quarantined(account_id)
        return result

    @app.patch("/accounts/{account_id}")
    async def update_account(account_id: str, request: UpdateAccountRequest,
                             system: AccountingSystem = Depends(get_system)):
        """Update account metadata"""
        account = system.accounts.update_account(
            account_id, updated_by=request.updated_by, **request.changes()
        )
        return account_response(account)

    @app.get("/accounts/{account_id}/reconciliations")
    async def list_reconciliations(account_id: str, system: AccountingSystem = Depends(get_system)):
        """Reconciliation history of an account"""
        results = system.reconciliation.get_reconciliations(account_id)
        return {"reconciliations": [r.to_dict() for r in results]}

    # Journal entries
    @app.post("/journal-entries", status_code=status.HTTP_201_CREATED)
    async def create_journal_entry(request: JournalEntryRequest,
                                   system: AccountingSystem = Depends(get_system)):
        """Create a draft journal entry"""
        entry = system.ledger.create_entry(request.to_draft())
        return entry_response(entry)

    @app.get("/journal-entries")
    async def list_journal_entries(start_date: Optional[date] = None,
                                   end_date: Optional[date] = None,
                                   account_id: Optional[str] = None,
                                   is_posted: Optional[bool] = None,
                                   system: AccountingSystem = Depends(get_system)):
        """List journal entries ordered by date and number"""
        entries = system.ledger.list_entries(
            start_date=start_date, end_date=end_date,
            account_id=account_id, is_posted=is_posted
        )
        return {"entries": [entry_response(e) for e in entries]}

    @app.get("/journal-entries/{entry_id}")
    async def get_journal_entry(entry_id: str, system: AccountingSystem = Depends(get_system)):
        """Get journal entry by ID"""
        entry = system.ledger.get_entry(entry_id)
        if not entry:
            raise HTTPException(status_code=404, detail="Journal entry not found")
        return entry_response(entry, system)

    @app.put("/journal-entries/{entry_id}")
    async def update_journal_entry(entry_id: str, request: JournalEntryRequest,
                                   system: AccountingSystem = Depends(get_system)):
        """Replace the contents of a draft journal entry"""
        entry = system.ledger.update_draft(entry_id, request.to_draft(), updated_by=request.created_by)
        return entry_response(entry)

    @app.post("/journal-entries/{entry_id}/post")
    async def post_journal_entry(entry_id: str, request: Optional[PostEntryRequest] = None,
                                 system: AccountingSystem = Depends(get_system)):
        """Post a draft journal entry"""
        entry = system.ledger.post_entry(entry_id, posted_by=request.posted_by if request else None)
        return entry_response(entry)

    @app.post("/journal-entries/{entry_id}/reverse", status_code=status.HTTP_201_CREATED)
    async def reverse_journal_entry(entry_id: str, request: ReverseEntryRequest,
                                    system: AccountingSystem = Depends(get_system)):
        """Create the offsetting entry of a posted journal entry"""
        reversal = system.ledger.reverse_entry(
            entry_id,
            reason=request.reason,
            created_by=request.created_by,
            reversal_date=request.reversal_date,
            post=request.post
        )
        return entry_response(reversal)

    # Reports
    @app.get("/reports/trial-balance")
    async def trial_balance(as_of: Optional[date] = None, include_zero_balances: bool = False,
                            system: AccountingSystem = Depends(get_system)):
        """Trial balance as of a date"""
        return system.reports.trial_balance(as_of, include_zero_balances=include_zero_balances).to_dict()

    @app.get("/reports/balance-sheet")
    async def balance_sheet(as_of: Optional[date] = None, system: AccountingSystem = Depends(get_system)):
        """Balance sheet as of a date"""
        return system.reports.balance_sheet(as_of).to_dict()

    @app.get("/reports/income-statement")
    async def income_statement(start_date: date, end_date: date,
                               system: AccountingSystem = Depends(get_system)):
        """Income statement for a period"""
        return system.reports.income_statement(start_date, end_date).to_dict()

    @app.get("/reports/cash-flow")
    async def cash_flow(start_date: date, end_date: date, system: AccountingSystem = Depends(get_system)):
        """Cash-flow statement for a period"""
        return system.reports.cash_flow_statement(start_date, end_date).to_dict()

    # Reconciliation
    @app.post("/reconciliations", status_code=status.HTTP_201_CREATED)
    async def reconcile(request: ReconcileRequest, system: AccountingSystem = Depends(get_system)):
        """Reconcile an account against a bank statement"""
        result = system.reconciliation.reconcile(
            account_id=request.account_id,
            statement_date=request.statement_date,
            statement_balance=to_amount(request.statement_balance),
            outstanding_deposits=[item.to_item() for item in request.outstanding_deposits],
            outstanding_checks=[item.to_item() for item in request.outstanding_checks],
            adjustments=[item.to_item() for item in request.adjustments],
            performed_by=request.performed_by
        )
        return result.to_dict()

    # Ledger health
    @app.get("/ledger/integrity")
    async def ledger_integrity(system: AccountingSystem = Depends(get_system)):
        """Verify live balances and the audit hash chain"""
        balances = system.balances.verify_integrity()
        audit = system.audit_trail.verify_integrity()
        return {
            "valid": balances['valid'] and audit['valid'],
            "balances": balances,
            "audit": audit,
            "quarantined_accounts": sorted(system.balances.quarantined_accounts())
        }

    @app.post("/ledger/quarantine/{account_id}/release")
    async def release_account(account_id: str, released_by: Optional[str] = None,
                              system: AccountingSystem = Depends(get_system)):
        """Resume posting for a quarantined account"""
        if not system.balances.release(account_id, released_by=released_by):
            raise HTTPException(status_code=404, detail="Account is not quarantined")
        return {"account_id": account_id, "released": True}

    return app


def run_server(config: Optional[LedgerConfig] = None, debug: bool = False):
    """Run the FastAPI server"""
    config = config or LedgerConfig()
    system = AccountingSystem(config, configure_logging=True)
    uvicorn.run(
        create_app(system),
        host=config.api_host,
        port=config.api_port,
        log_level="debug" if debug else config.log_level.lower()
    )
