"""TOML configuration loader for db-integrity.

Reads ``db.toml`` and returns a ``DatabaseConfig`` instance.  The default
location is the current working directory, so the CLI works from any
project root.

Usage:
    from db_integrity.config.loader import load_db_config

    config = load_db_config()                       # ./db.toml
    config = load_db_config(Path("/etc/db.toml"))   # explicit path
"""

import tomllib
from pathlib import Path

from db_integrity.config.models import (
    ConnectionSettings,
    DatabaseConfig,
    DatabaseProfile,
    DriftSettings,
    MigrationSettings,
)


def load_db_config(config_path: Path | None = None) -> DatabaseConfig:
    """Load database configuration from TOML file.

    Args:
        config_path: Path to db.toml (default: ``Path.cwd() / "db.toml"``).

    Returns:
        DatabaseConfig with all profiles and settings.

    Raises:
        FileNotFoundError: If config file doesn't exist.
        tomllib.TOMLDecodeError: If the file is not valid TOML.
        pydantic.ValidationError: If a section has invalid values.
    """
    if config_path is None:
        config_path = Path.cwd() / "db.toml"

    if not config_path.exists():
        raise FileNotFoundError(
            f"Database config not found: {config_path}\n"
            f"Create db.toml with at least one [profiles.<name>] section."
        )

    with open(config_path, "rb") as f:
        data = tomllib.load(f)

    profiles = {
        name: DatabaseProfile(**profile_data)
        for name, profile_data in data.get("profiles", {}).items()
    }

    schema_settings = data.get("schema", {})

    return DatabaseConfig(
        profiles=profiles,
        schema_file=schema_settings.get("file", "schema.prisma"),
        db_schema=schema_settings.get("db_schema", "public"),
        migrations=MigrationSettings(**data.get("migrations", {})),
        drift=DriftSettings(**data.get("drift", {})),
        connection=ConnectionSettings(**data.get("connection", {})),
    )
