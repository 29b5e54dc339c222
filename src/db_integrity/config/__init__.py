"""Configuration management: profiles, TOML loading, and config models.

Usage:
    >>> from db_integrity.config import load_db_config, DatabaseProfile, DatabaseConfig
"""

from db_integrity.config.loader import load_db_config
from db_integrity.config.models import (
    ConnectionSettings,
    DatabaseConfig,
    DatabaseProfile,
    DriftSettings,
    MigrationSettings,
)

__all__ = [
    "load_db_config",
    "DatabaseConfig",
    "DatabaseProfile",
    "MigrationSettings",
    "DriftSettings",
    "ConnectionSettings",
]
