"""
Configuration Management Module

Provides centralized configuration using pydantic-settings for environment-based configuration.
"""

from pydantic_settings import BaseSettings
from typing import Optional


class VaultConfig(BaseSettings):
    """Value vault service configuration"""

    # Ledger parameters (immutable once the ledger is created)
    bank_cap: int = 1_000_000_000_000_000_000_000  # 1000 units at 18 decimals
    withdraw_limit: int = 10_000_000_000_000_000_000  # 10 units at 18 decimals
    deployer: str = "deployer"

    # Storage configuration
    database_path: str = ""  # Empty = in-memory storage

    # API configuration
    api_host: str = "0.0.0.0"
    api_port: int = 8090

    # Security configuration
    auth_enabled: bool = True
    jwt_secret: str = "change-me-in-production"
    jwt_algorithm: str = "HS256"

    # Transfer executor configuration
    transfer_url: str = ""  # Empty = in-process recording executor
    transfer_timeout: float = 5.0
    transfer_api_key: str = ""

    # Logging configuration
    log_level: str = "INFO"
    log_file: Optional[str] = None  # If None, logs to stdout

    # Feature flags
    enable_audit_logging: bool = True

    class Config:
        env_prefix = "VAULT_"
        env_file = ".env"
        case_sensitive = False


# Global configuration instance
config = VaultConfig()


def get_config() -> VaultConfig:
    """Get global configuration instance"""
    return config


def reload_config() -> VaultConfig:
    """Reload configuration from environment"""
    global config
    config = VaultConfig()
    return config
