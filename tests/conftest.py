"""Shared fixtures: an in-memory ``DatabaseClient`` and schema helpers."""

from typing import Any

import pytest

from db_integrity.errors import TransactionError
from db_integrity.schema.changes import (
    AddColumn,
    AddEnumValues,
    AdoptTable,
    AlterColumn,
    CreateEnum,
    CreateIndex,
    CreateTable,
    DropColumn,
    DropTable,
)
from db_integrity.schema.models import DatabaseSchema, EnumType, Index


class FakeClient:
    """In-memory stand-in for ``AsyncPostgresAdapter``.

    Rows are stored per table name.  ``fail_on`` makes
    ``execute_in_transaction`` raise ``TransactionError`` for the first
    statement containing that substring, with ``fail_message`` as the
    driver text.
    """

    def __init__(self) -> None:
        self.tables: dict[str, list[dict]] = {}
        self.executed: list[str] = []
        self.transactions: list[list[str]] = []
        self.fail_on: str | None = None
        self.fail_message = "boom"
        self.closed = False

    async def select(
        self,
        table: str,
        columns: str,
        filters: dict[str, Any] | None = None,
        order_by: str | None = None,
    ) -> list[dict]:
        rows = [
            dict(r)
            for r in self.tables.get(table, [])
            if all(r.get(k) == v for k, v in (filters or {}).items())
        ]
        if order_by:
            rows.sort(key=lambda r: (r.get(order_by) is None, str(r.get(order_by))))
        return rows

    async def insert(self, table: str, data: dict) -> dict:
        self.tables.setdefault(table, []).append(dict(data))
        return dict(data)

    async def update(self, table: str, data: dict, filters: dict[str, Any]) -> dict:
        for row in self.tables.get(table, []):
            if all(row.get(k) == v for k, v in filters.items()):
                row.update(data)
                return dict(row)
        raise ValueError(f"No rows matched filters: {filters}")

    async def execute(self, sql: str, params: dict | None = None) -> None:
        self.executed.append(sql)

    async def execute_in_transaction(self, statements: list[str]) -> None:
        for index, statement in enumerate(statements):
            if self.fail_on and self.fail_on in statement:
                raise TransactionError(
                    f"Statement {index + 1} of {len(statements)} failed: {self.fail_message}",
                    statement=statement,
                    statement_index=index,
                    original=self.fail_message,
                )
        self.transactions.append(list(statements))

    async def table_exists(self, table: str, schema_name: str = "public") -> bool:
        return table in self.tables

    async def close(self) -> None:
        self.closed = True


@pytest.fixture
def fake_client() -> FakeClient:
    return FakeClient()


def apply_change(schema: DatabaseSchema, change) -> DatabaseSchema:
    """Simulate a change against a live snapshot (what the database would look like)."""
    tables = list(schema.tables)
    enums = list(schema.enums)

    def replace_table(name, fn):
        for i, t in enumerate(tables):
            if t.name == name:
                tables[i] = fn(t)

    if isinstance(change, (CreateTable, AdoptTable)):
        if schema.table(change.table.name) is None:
            # Inline UNIQUE columns come back from the catalog as unique indexes
            implicit = tuple(
                Index(columns=(c.name,), unique=True)
                for c in change.table.columns
                if c.unique and (c.name,) != change.table.primary_key
            )
            tables.append(
                change.table.model_copy(update={"indexes": change.table.indexes + implicit})
            )
    elif isinstance(change, DropTable):
        tables = [t for t in tables if t.name != change.table.name]
    elif isinstance(change, AddColumn):
        # ADD COLUMN without a default is rendered nullable
        column = change.column
        if column.default is None:
            column = column.model_copy(update={"nullable": True})
        replace_table(
            change.table_name,
            lambda t: t.model_copy(update={"columns": t.columns + (column,)}),
        )
    elif isinstance(change, DropColumn):
        replace_table(
            change.table_name,
            lambda t: t.model_copy(
                update={"columns": tuple(c for c in t.columns if c.name != change.column.name)}
            ),
        )
    elif isinstance(change, AlterColumn):
        def alter(t):
            cols = []
            for c in t.columns:
                if c.name == change.column_name:
                    update = {}
                    if change.to_type is not None:
                        update["type"] = change.to_type
                    if change.to_nullable is not None:
                        update["nullable"] = change.to_nullable
                    c = c.model_copy(update=update)
                cols.append(c)
            return t.model_copy(update={"columns": tuple(cols)})

        replace_table(change.table_name, alter)
    elif isinstance(change, CreateEnum):
        enums.append(EnumType(name=change.enum_name, values=change.values))
    elif isinstance(change, AddEnumValues):
        enums = [
            e.model_copy(update={"values": e.values + change.values})
            if e.name == change.enum_name
            else e
            for e in enums
        ]
    elif isinstance(change, CreateIndex):
        replace_table(
            change.table_name,
            lambda t: t.model_copy(update={"indexes": t.indexes + (change.index,)}),
        )
    return DatabaseSchema(tables=tuple(tables), enums=tuple(enums))


@pytest.fixture
def simulate():
    return apply_change
