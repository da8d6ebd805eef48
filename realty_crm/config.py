"""
Configuration Management Module

Provides centralized configuration using pydantic-settings for environment-based configuration.
"""

from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class RealtyConfig(BaseSettings):
    """Real-estate CRM lending configuration"""

    model_config = SettingsConfigDict(
        env_prefix="REALTY_",
        env_file=".env",
        case_sensitive=False,
        extra="ignore"
    )

    # Storage configuration
    storage_backend: str = "memory"  # memory or sqlite
    database_path: str = "realty_crm.db"

    # API configuration
    api_host: str = "0.0.0.0"
    api_port: int = 8090
    api_debug: bool = False

    # Logging configuration
    log_level: str = "INFO"
    log_format: str = "json"  # json or text
    log_file: Optional[str] = None  # If None, logs to stdout

    # Loan defaults
    default_currency: str = "USD"
    default_payment_frequency: str = "monthly"


# Global configuration instance
config = RealtyConfig()


def get_config() -> RealtyConfig:
    """Get global configuration instance"""
    return config


def reload_config() -> RealtyConfig:
    """Reload configuration from environment"""
    global config
    config = RealtyConfig()
    return config
