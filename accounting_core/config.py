"""
Configuration Management Module

Provides centralized configuration using pydantic-settings for environment-based configuration.
"""

from pydantic_settings import BaseSettings
from typing import List, Optional


class LedgerConfig(BaseSettings):
    """Accounting core configuration"""

    # Storage configuration
    database_url: str = "sqlite:///ledger.db"  # or memory://

    # API configuration
    api_host: str = "0.0.0.0"
    api_port: int = 8091

    # Logging configuration
    log_level: str = "INFO"
    log_format: str = "json"  # json or text
    log_file: Optional[str] = None  # If None, logs to stdout

    # Ledger rules
    balance_tolerance: str = "0.01"  # Report cross-checks and reconciliation; entries balance to the cent
    entry_number_prefix: str = "JE"
    entry_sequence_padding: int = 4
    fiscal_year_start_month: int = 1  # 1 = calendar year

    # Cash-flow statement
    cash_account_codes: List[str] = ["1000", "1010"]

    # Feature flags
    enable_audit_logging: bool = True

    class Config:
        env_prefix = "LEDGER_"
        env_file = ".env"
        case_sensitive = False


# Global configuration instance
config = LedgerConfig()


def get_config() -> LedgerConfig:
    """Get global configuration instance"""
    return config


def reload_config() -> LedgerConfig:
    """Reload configuration from environment"""
    global config
    config = LedgerConfig()
    return config
