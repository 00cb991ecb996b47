"""
Configuration Management Module

Provides centralized configuration using pydantic-settings for environment-based configuration.
"""

from decimal import Decimal
from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import Optional


class EngineConfig(BaseSettings):
    """Investment engine configuration"""

    model_config = SettingsConfigDict(
        env_prefix="INVEST_",
        env_file=".env",
        case_sensitive=False,
        extra="ignore"
    )

    # Logging configuration
    log_level: str = "INFO"
    log_format: str = "json"  # json or text
    log_file: Optional[str] = None  # If None, logs to stdout

    # Business rules configuration
    breakdown_tolerance: str = "0.01"  # Payment breakdown must sum to amount within this
    max_tenure_months: int = 240
    max_interest_rate: str = "100"  # Monthly percentage ceiling

    # Reporting windows
    upcoming_window_days: int = 7
    max_upcoming_window_days: int = 90

    # Feature flags
    enable_audit_logging: bool = True

    @property
    def breakdown_tolerance_amount(self) -> Decimal:
        return Decimal(self.breakdown_tolerance)

    @property
    def max_interest_rate_amount(self) -> Decimal:
        return Decimal(self.max_interest_rate)


# Global configuration instance
config = EngineConfig()


def get_config() -> EngineConfig:
    """Get global configuration instance"""
    return config


def reload_config() -> EngineConfig:
    """Reload configuration from environment"""
    global config
    config = EngineConfig()
    return config
