"""Closed set of schema changes a migration can be built from.

``SchemaChange`` is a discriminated union on ``kind``.  Every member renders
its own forward SQL (``to_sql``) and its inverse (``rollback_sql``);
``rollback_sql`` returns ``None`` when no safe inverse exists, and callers
must treat that as "rollback unavailable" rather than guessing.

Usage:
    from db_integrity.schema.changes import AddColumn, diff_schemas

    change = AddColumn(table_name="user", column=Column(name="name", type="text"))
    change.to_sql()        # ['ALTER TABLE user ADD COLUMN name text;']
    change.rollback_sql()  # ['ALTER TABLE user DROP COLUMN IF EXISTS name;']
"""

from typing import Annotated, Literal, Union

from pydantic import BaseModel, ConfigDict, Field

from db_integrity.schema import ddl
from db_integrity.schema.models import Column, DatabaseSchema, Index, Table
from db_integrity.schema.types import types_match


class _Change(BaseModel):
    model_config = ConfigDict(frozen=True)

    @property
    def created_tables(self) -> list[str]:
        return []


class CreateTable(_Change):
    kind: Literal["create_table"] = "create_table"
    table: Table

    def to_sql(self) -> list[str]:
        return [ddl.create_table_sql(self.table)]

    def rollback_sql(self) -> list[str] | None:
        return [ddl.drop_table_sql(self.table.name)]

    def describe(self) -> str:
        return f"create table {self.table.name}"

    @property
    def created_tables(self) -> list[str]:
        return [self.table.name]


class DropTable(_Change):
    """Drop a table.  ``table`` is the pre-drop snapshot used for rollback."""

    kind: Literal["drop_table"] = "drop_table"
    table: Table

    def to_sql(self) -> list[str]:
        return [ddl.drop_table_sql(self.table.name)]

    def rollback_sql(self) -> list[str] | None:
        return [ddl.create_table_sql(self.table)]

    def describe(self) -> str:
        return f"drop table {self.table.name}"


class AddColumn(_Change):
    kind: Literal["add_column"] = "add_column"
    table_name: str
    column: Column

    def to_sql(self) -> list[str]:
        return [ddl.add_column_sql(self.table_name, self.column)]

    def rollback_sql(self) -> list[str] | None:
        return [ddl.drop_column_sql(self.table_name, self.column.name)]

    def describe(self) -> str:
        return f"add column {self.table_name}.{self.column.name}"


class DropColumn(_Change):
    kind: Literal["drop_column"] = "drop_column"
    table_name: str
    column: Column

    def to_sql(self) -> list[str]:
        return [ddl.drop_column_sql(self.table_name, self.column.name)]

    def rollback_sql(self) -> list[str] | None:
        return [ddl.add_column_sql(self.table_name, self.column)]

    def describe(self) -> str:
        return f"drop column {self.table_name}.{self.column.name}"


class AlterColumn(_Change):
    """Change a column's type and/or nullability.

    Unset ``to_*`` values mean "unchanged".  The rollback restores the
    ``from_*`` values in reverse statement order.
    """

    kind: Literal["alter_column"] = "alter_column"
    table_name: str
    column_name: str
    from_type: str | None = None
    to_type: str | None = None
    from_nullable: bool | None = None
    to_nullable: bool | None = None

    @property
    def changes_type(self) -> bool:
        return self.to_type is not None and not (
            self.from_type is not None and types_match(self.from_type, self.to_type)
        )

    @property
    def changes_nullability(self) -> bool:
        return self.to_nullable is not None and self.to_nullable != self.from_nullable

    def to_sql(self) -> list[str]:
        statements = []
        if self.changes_type:
            statements.append(
                ddl.alter_column_type_sql(self.table_name, self.column_name, self.to_type)
            )
        if self.changes_nullability:
            statements.append(
                ddl.alter_column_nullability_sql(self.table_name, self.column_name, self.to_nullable)
            )
        return statements

    def rollback_sql(self) -> list[str] | None:
        statements = []
        if self.changes_nullability:
            if self.from_nullable is None:
                return None
            statements.append(
                ddl.alter_column_nullability_sql(self.table_name, self.column_name, self.from_nullable)
            )
        if self.changes_type:
            if self.from_type is None:
                return None
            statements.append(
                ddl.alter_column_type_sql(self.table_name, self.column_name, self.from_type)
            )
        return statements

    def describe(self) -> str:
        return f"alter column {self.table_name}.{self.column_name}"


class CreateEnum(_Change):
    kind: Literal["create_enum"] = "create_enum"
    enum_name: str
    values: tuple[str, ...]

    def to_sql(self) -> list[str]:
        return [ddl.create_enum_sql(self.enum_name, self.values)]

    def rollback_sql(self) -> list[str] | None:
        return [ddl.drop_enum_sql(self.enum_name)]

    def describe(self) -> str:
        return f"create enum {self.enum_name}"


class AddEnumValues(_Change):
    """Append labels to an existing enum.  PostgreSQL cannot remove them again."""

    kind: Literal["add_enum_values"] = "add_enum_values"
    enum_name: str
    values: tuple[str, ...]

    def to_sql(self) -> list[str]:
        return [ddl.add_enum_value_sql(self.enum_name, v) for v in self.values]

    def rollback_sql(self) -> list[str] | None:
        return None

    def describe(self) -> str:
        return f"add values {', '.join(self.values)} to enum {self.enum_name}"


class CreateIndex(_Change):
    kind: Literal["create_index"] = "create_index"
    table_name: str
    index: Index

    def to_sql(self) -> list[str]:
        return [ddl.create_index_sql(self.table_name, self.index)]

    def rollback_sql(self) -> list[str] | None:
        return [ddl.drop_index_sql(ddl.index_name(self.table_name, self.index))]

    def describe(self) -> str:
        return f"create index on {self.table_name} ({', '.join(self.index.columns)})"


class AdoptTable(_Change):
    """Retroactively record a manually created table.

    Renders ``CREATE TABLE IF NOT EXISTS`` of the live shape, so applying it
    changes nothing in the database; its purpose is to put the table under
    migration tracking.  Dropping an adopted table would destroy live data,
    so there is no rollback.
    """

    kind: Literal["adopt_table"] = "adopt_table"
    table: Table

    def to_sql(self) -> list[str]:
        return [ddl.create_table_sql(self.table, if_not_exists=True)]

    def rollback_sql(self) -> list[str] | None:
        return None

    def describe(self) -> str:
        return f"adopt manually created table {self.table.name}"

    @property
    def created_tables(self) -> list[str]:
        return [self.table.name]


SchemaChange = Annotated[
    Union[
        CreateTable,
        DropTable,
        AddColumn,
        DropColumn,
        AlterColumn,
        CreateEnum,
        AddEnumValues,
        CreateIndex,
        AdoptTable,
    ],
    Field(discriminator="kind"),
]


# ------------------------------------------------------------------
# Model-to-model diff
# ------------------------------------------------------------------


def diff_schemas(old: DatabaseSchema, new: DatabaseSchema) -> list[SchemaChange]:
    """Compute the changes that turn ``old`` into ``new``.

    Order: new enums and enum additions, new tables (in ``new``'s order,
    which puts referenced tables first), column changes per table, then
    dropped tables last.

    Args:
        old: Snapshot before the change.
        new: Snapshot after the change.

    Returns:
        Ordered list of changes.  Empty when the snapshots match.
    """
    changes: list[SchemaChange] = []

    for enum in new.enums:
        previous = old.enum(enum.name)
        if previous is None:
            changes.append(CreateEnum(enum_name=enum.name, values=enum.values))
            continue
        added = tuple(v for v in enum.values if v not in previous.values)
        if added:
            changes.append(AddEnumValues(enum_name=enum.name, values=added))

    for table in new.tables:
        if old.table(table.name) is None:
            changes.append(CreateTable(table=table))

    for table in new.tables:
        previous = old.table(table.name)
        if previous is None:
            continue
        for column in table.columns:
            before = previous.column(column.name)
            if before is None:
                changes.append(AddColumn(table_name=table.name, column=column))
                continue
            type_changed = not types_match(before.type, column.type)
            null_changed = before.nullable != column.nullable
            if type_changed or null_changed:
                changes.append(
                    AlterColumn(
                        table_name=table.name,
                        column_name=column.name,
                        from_type=before.type if type_changed else None,
                        to_type=column.type if type_changed else None,
                        from_nullable=before.nullable if null_changed else None,
                        to_nullable=column.nullable if null_changed else None,
                    )
                )
        for column in previous.columns:
            if table.column(column.name) is None:
                changes.append(DropColumn(table_name=table.name, column=column))

    for table in reversed(old.tables):
        if new.table(table.name) is None:
            changes.append(DropTable(table=table))

    return changes
