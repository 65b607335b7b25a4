"""
Configuration Management Module

Provides centralized configuration using pydantic-settings for environment-based configuration.
"""

from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import Any, Dict, Optional


class ServicingConfig(BaseSettings):
    """Loan servicing core configuration"""

    model_config = SettingsConfigDict(
        env_prefix="LOAN_SERVICING_",
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
    )

    # Database configuration
    database_url: str = "sqlite:///loan_servicing.db"  # memory:// for tests

    # API configuration
    api_host: str = "0.0.0.0"
    api_port: int = 8090

    # Logging configuration
    log_level: str = "INFO"
    log_format: str = "json"  # json or text
    log_file: Optional[str] = None  # If None, logs to stdout

    # Automated status thresholds (days)
    status_dormant_days: int = 365
    status_litigation_days_after_maturity: int = 180
    status_past_due_days_after_maturity: int = 7
    status_arrears_daily_days: int = 3
    status_arrears_weekly_days: int = 7
    status_arrears_semi_monthly_days: int = 15
    status_arrears_monthly_days: int = 30

    # Legacy collection store (database import source)
    legacy_collections_table: str = "legacy_collections"

    # Runtime flags initial values
    maintenance_mode: bool = False

    # Feature flags
    enable_audit_logging: bool = True

    def status_thresholds(self) -> Dict[str, int]:
        """Default thresholds keyed the way the status engine expects them"""
        return {
            "dormant_days": self.status_dormant_days,
            "litigation_days_after_maturity": self.status_litigation_days_after_maturity,
            "past_due_days_after_maturity": self.status_past_due_days_after_maturity,
            "arrears_daily_days": self.status_arrears_daily_days,
            "arrears_weekly_days": self.status_arrears_weekly_days,
            "arrears_semi_monthly_days": self.status_arrears_semi_monthly_days,
            "arrears_monthly_days": self.status_arrears_monthly_days,
        }


class RuntimeFlags:
    """
    Process-wide toggles that can change while the service runs.

    Built once at startup from configuration and injected where needed;
    values are not persisted and reset on restart.
    """

    def __init__(self, maintenance: bool = False):
        self.maintenance = maintenance

    @classmethod
    def from_config(cls, config: ServicingConfig) -> 'RuntimeFlags':
        return cls(maintenance=config.maintenance_mode)

    def to_dict(self) -> Dict[str, Any]:
        return {"maintenance": self.maintenance}


# Global configuration instance
config = ServicingConfig()


def get_config() -> ServicingConfig:
    """Get global configuration instance"""
    return config


def reload_config() -> ServicingConfig:
    """Reload configuration from environment"""
    global config
    config = ServicingConfig()
    return config
