"""
Accounting Core

Double-entry accounting engine: chart of accounts, journal posting with
normal-balance rules, point-in-time balances, financial statements and
bank reconciliation. All monetary values use Decimal.
"""

__version__ = "1.0.0"
