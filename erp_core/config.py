"""
Configuration Management Module

Provides centralized configuration using pydantic-settings for environment-based configuration.
"""

from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import Optional


class ErpConfig(BaseSettings):
    """ERP core configuration"""

    model_config = SettingsConfigDict(
        env_prefix="ERP_",
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
    )

    # Database configuration
    database_path: str = "erp.db"
    use_sqlite: bool = True

    # API configuration
    api_host: str = "0.0.0.0"
    api_port: int = 8090

    # Logging configuration
    log_level: str = "INFO"
    log_file: Optional[str] = None  # If None, logs to stdout

    # Business rules configuration
    default_currency: str = "COP"
    amortization_max_periods: int = 360  # 30 years of monthly periods
    amortization_balance_cutoff: str = "100"  # Currency units, Decimal as string
    code_allocation_attempts: int = 3
    payables_default_credit_days: int = 30
    invoice_vat_rate: str = "0.19"

    # Feature flags
    enable_audit_logging: bool = True


# Global configuration instance
config = ErpConfig()


def get_config() -> ErpConfig:
    """Get global configuration instance"""
    return config


def reload_config() -> ErpConfig:
    """Reload configuration from environment"""
    global config
    config = ErpConfig()
    return config
