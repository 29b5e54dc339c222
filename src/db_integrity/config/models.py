"""Pydantic models for db.toml configuration."""

from pydantic import BaseModel, Field

from db_integrity.adapters.retry import DEFAULT_RETRY_ATTEMPTS, DEFAULT_RETRY_DELAY


# ============================================================================
# Configuration Models
# ============================================================================


class DatabaseProfile(BaseModel):
    """Database connection profile from db.toml."""

    url: str
    description: str = ""
    db_password: str | None = None  # For [YOUR-PASSWORD] placeholder substitution
    provider: str = "postgres"


class MigrationSettings(BaseModel):
    """``[migrations]`` section."""

    directory: str = "migrations"
    ledger_table: str = "_prisma_migrations"
    tracking_table: str = "_migration_history"


class DriftSettings(BaseModel):
    """``[drift]`` section.  Patterns are matched with ``re.search``."""

    ignore_patterns: list[str] = Field(default_factory=list)


class ConnectionSettings(BaseModel):
    """``[connection]`` section."""

    retry_attempts: int = Field(default=DEFAULT_RETRY_ATTEMPTS, ge=1)
    retry_delay: float = Field(default=DEFAULT_RETRY_DELAY, ge=0)
    connect_timeout: int = Field(default=10, ge=1)


class DatabaseConfig(BaseModel):
    """Complete database configuration from db.toml."""

    profiles: dict[str, DatabaseProfile]
    schema_file: str = "schema.prisma"
    db_schema: str = "public"
    migrations: MigrationSettings = Field(default_factory=MigrationSettings)
    drift: DriftSettings = Field(default_factory=DriftSettings)
    connection: ConnectionSettings = Field(default_factory=ConnectionSettings)

    @property
    def excluded_tables(self) -> set[str]:
        """Bookkeeping tables that never take part in drift detection."""
        return {self.migrations.ledger_table, self.migrations.tracking_table}
