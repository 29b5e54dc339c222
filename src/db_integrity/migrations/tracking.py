"""Migration history table (``_migration_history``).

The tracking table is this library's own record of generated and executed
migrations.  ``metadata.created_tables`` is what manual-change detection
reads to decide which live tables have a provenance.

Usage:
    from db_integrity.migrations.tracking import TrackingStore

    store = TrackingStore(adapter)
    await store.ensure_table()
    await store.insert(migration)
    tracked = await store.tracked_tables()
"""

import json
import logging
from typing import Any

from db_integrity.adapters.base import DatabaseClient
from db_integrity.migrations.models import Migration, MigrationStatus
from db_integrity.schema.ddl import quote_ident

logger = logging.getLogger(__name__)

DEFAULT_TRACKING_TABLE = "_migration_history"

_COLUMNS = (
    "id, name, checksum, status, sql, rollback_sql, created_at, executed_at, "
    "rolled_back_at, execution_time_ms, error, metadata"
)


class TrackingStore:
    """Reads and writes ``Migration`` rows through a ``DatabaseClient``.

    Args:
        client: Connected database client.  Must treat ``metadata`` as a
            JSONB column.
        table: Tracking table name.
    """

    def __init__(self, client: DatabaseClient, table: str = DEFAULT_TRACKING_TABLE) -> None:
        self._client = client
        self._table = quote_ident(table)
        self.table_name = table

    async def ensure_table(self) -> None:
        """Create the tracking table if it does not exist."""
        await self._client.execute(
            f"""
            CREATE TABLE IF NOT EXISTS {self._table} (
                id text PRIMARY KEY,
                name text NOT NULL,
                checksum text NOT NULL,
                status text NOT NULL DEFAULT 'pending',
                sql text NOT NULL,
                rollback_sql text,
                created_at timestamptz NOT NULL DEFAULT CURRENT_TIMESTAMP,
                executed_at timestamptz,
                rolled_back_at timestamptz,
                execution_time_ms double precision,
                error text,
                metadata jsonb NOT NULL DEFAULT '{{}}'
            )
            """
        )

    async def insert(self, migration: Migration) -> None:
        await self._client.insert(self._table, self._to_row(migration))
        logger.debug("Tracked migration %s (%s)", migration.id, migration.status.value)

    async def update(self, migration: Migration) -> None:
        """Persist the mutable fields of ``migration`` (status and outcome)."""
        row = self._to_row(migration)
        data = {
            key: row[key]
            for key in (
                "status",
                "executed_at",
                "rolled_back_at",
                "execution_time_ms",
                "error",
                "metadata",
            )
        }
        await self._client.update(self._table, data, {"id": migration.id})

    async def get(self, migration_id: str) -> Migration | None:
        rows = await self._client.select(self._table, _COLUMNS, filters={"id": migration_id})
        return self._from_row(rows[0]) if rows else None

    async def list_all(self) -> list[Migration]:
        """All tracked migrations in id (creation) order."""
        rows = await self._client.select(self._table, _COLUMNS, order_by="id")
        return [self._from_row(row) for row in rows]

    async def pending(self) -> list[Migration]:
        rows = await self._client.select(
            self._table,
            _COLUMNS,
            filters={"status": MigrationStatus.PENDING.value},
            order_by="id",
        )
        return [self._from_row(row) for row in rows]

    async def tracked_tables(self) -> set[str]:
        """Tables created by migrations that are currently applied."""
        tables: set[str] = set()
        for migration in await self.list_all():
            if migration.status == MigrationStatus.COMPLETED:
                tables.update(migration.created_tables)
        return tables

    # ------------------------------------------------------------------
    # Row mapping
    # ------------------------------------------------------------------

    @staticmethod
    def _to_row(migration: Migration) -> dict[str, Any]:
        return {
            "id": migration.id,
            "name": migration.name,
            "checksum": migration.checksum,
            "status": migration.status.value,
            "sql": migration.sql,
            "rollback_sql": migration.rollback_sql,
            "created_at": migration.created_at,
            "executed_at": migration.executed_at,
            "rolled_back_at": migration.rolled_back_at,
            "execution_time_ms": migration.execution_time_ms,
            "error": migration.error,
            "metadata": dict(migration.metadata),
        }

    @staticmethod
    def _from_row(row: dict[str, Any]) -> Migration:
        data = dict(row)
        metadata = data.get("metadata")
        # asyncpg returns JSONB as text unless a codec is registered
        if isinstance(metadata, str):
            data["metadata"] = json.loads(metadata)
        elif metadata is None:
            data["metadata"] = {}
        return Migration.model_validate(data)
