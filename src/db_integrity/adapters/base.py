"""Database client protocol definition.

Defines the ``DatabaseClient`` Protocol the migration layer talks to.
All methods are ``async def`` -- the library is async-first.

Usage:
    from db_integrity.adapters.base import DatabaseClient

    async def do_work(client: DatabaseClient) -> None:
        rows = await client.select("_migration_history", "id, status")
        await client.execute_in_transaction([
            "ALTER TABLE users ADD COLUMN email text;",
            "CREATE INDEX users_email_idx ON users (email);",
        ])
        await client.close()
"""

from typing import Any, Protocol


class DatabaseClient(Protocol):
    """Database client interface used by tracking, ledger and runner.

    All methods are async -- callers must ``await`` every operation.
    """

    async def select(
        self,
        table: str,
        columns: str,
        filters: dict[str, Any] | None = None,
        order_by: str | None = None,
    ) -> list[dict]:
        """Select rows from table.

        Args:
            table: Table name.
            columns: Comma-separated column names (e.g., ``"id, name, status"``).
            filters: Optional dict of field=value filters (all must match via AND).
            order_by: Optional column name to sort by.

        Returns:
            List of dicts, one per row.  Empty list if no matches.
        """
        ...

    async def insert(self, table: str, data: dict) -> dict:
        """Insert row into table and return the created row."""
        ...

    async def update(self, table: str, data: dict, filters: dict[str, Any]) -> dict:
        """Update rows in table and return the first updated row.

        Raises:
            ValueError: If no rows match filters.
        """
        ...

    async def execute(self, sql: str, params: dict | None = None) -> None:
        """Execute a single raw SQL statement in its own transaction."""
        ...

    async def execute_in_transaction(self, statements: list[str]) -> None:
        """Run every statement on one connection inside one transaction.

        Either all statements commit or none do.

        Args:
            statements: SQL statements, already split, without
                ``BEGIN``/``COMMIT``.

        Raises:
            TransactionError: On the first failing statement, after the
                transaction has been rolled back.
            DatabaseConnectionError: If no connection could be acquired.
        """
        ...

    async def table_exists(self, table: str, schema_name: str = "public") -> bool:
        """Return ``True`` when ``schema_name.table`` exists."""
        ...

    async def close(self) -> None:
        """Close database connection and clean up resources."""
        ...
