"""Canonical schema model shared by the parser, introspector and detector.

Both the declarative document and the live catalog are normalized into these
types before comparison.  Every model is frozen: a change produces a new
snapshot, never an in-place mutation.
"""

import re
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, model_validator

from db_integrity.schema.types import declared_type

_DBGENERATED_RE = re.compile(r'^dbgenerated\(\s*"(.*)"\s*\)$', re.DOTALL)
_IDENT_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


def _check_unique(names: list[str], what: str) -> None:
    seen: set[str] = set()
    for name in names:
        if name in seen:
            raise ValueError(f"Duplicate {what} name: {name}")
        seen.add(name)


# ============================================================================
# Live Schema Models
# ============================================================================


class DefaultKind(str, Enum):
    NOW = "now"
    UUID = "uuid"
    CUID = "cuid"
    AUTOINCREMENT = "autoincrement"
    LITERAL = "literal"
    OPAQUE = "opaque"


class ColumnDefault(BaseModel):
    """A column default: a generator function, a literal, or an opaque expression."""

    model_config = ConfigDict(frozen=True)

    kind: DefaultKind
    value: bool | int | float | str | None = None


class Column(BaseModel):
    """A physical column with a canonical type."""

    model_config = ConfigDict(frozen=True)

    name: str
    type: str
    nullable: bool = True
    default: ColumnDefault | None = None
    unique: bool = False


class Index(BaseModel):
    """A (non-primary) index.  Declared indexes carry no name."""

    model_config = ConfigDict(frozen=True)

    name: str | None = None
    columns: tuple[str, ...]
    unique: bool = False


class ForeignKey(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str | None = None
    columns: tuple[str, ...]
    references_table: str
    references_columns: tuple[str, ...]
    on_delete: str | None = None


class Table(BaseModel):
    """A table: ordered columns keyed by name, plus keys and indexes."""

    model_config = ConfigDict(frozen=True)

    name: str
    columns: tuple[Column, ...] = ()
    primary_key: tuple[str, ...] | None = None
    foreign_keys: tuple[ForeignKey, ...] = ()
    indexes: tuple[Index, ...] = ()

    @model_validator(mode="after")
    def _unique_columns(self) -> "Table":
        _check_unique([c.name for c in self.columns], f"column in table '{self.name}'")
        return self

    def column(self, name: str) -> Column | None:
        for col in self.columns:
            if col.name == name:
                return col
        return None

    @property
    def column_names(self) -> list[str]:
        return [c.name for c in self.columns]


class EnumType(BaseModel):
    """An enum with ordered labels.

    ``db_name`` is the storage-name override (``@@map``) on the declarative
    side; live enums leave it unset because ``name`` already is the
    storage name.
    """

    model_config = ConfigDict(frozen=True)

    name: str
    values: tuple[str, ...] = ()
    db_name: str | None = None
    documentation: str | None = None

    @property
    def storage_name(self) -> str:
        return self.db_name or self.name.lower()


class DatabaseSchema(BaseModel):
    """Immutable snapshot of tables and enums."""

    model_config = ConfigDict(frozen=True)

    tables: tuple[Table, ...] = ()
    enums: tuple[EnumType, ...] = ()

    @model_validator(mode="after")
    def _unique_names(self) -> "DatabaseSchema":
        _check_unique([t.name for t in self.tables], "table")
        _check_unique([e.name for e in self.enums], "enum")
        return self

    def table(self, name: str) -> Table | None:
        for table in self.tables:
            if table.name == name:
                return table
        return None

    def enum(self, name: str) -> EnumType | None:
        for enum in self.enums:
            if enum.name == name:
                return enum
        return None

    @property
    def table_names(self) -> list[str]:
        return [t.name for t in self.tables]


# ============================================================================
# Declarative Schema Models
# ============================================================================


class RelationInfo(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str | None = None
    fields: tuple[str, ...] = ()
    references: tuple[str, ...] = ()
    on_delete: str | None = None


class FieldDef(BaseModel):
    """A declared field.  Relation fields are virtual and never become columns."""

    model_config = ConfigDict(frozen=True)

    name: str
    type: str
    is_list: bool = False
    is_optional: bool = False
    is_id: bool = False
    is_unique: bool = False
    is_updated_at: bool = False
    default: ColumnDefault | None = None
    relation: RelationInfo | None = None
    is_relation: bool = False
    map_name: str | None = None
    native_type: str | None = None
    documentation: str | None = None

    @property
    def column_name(self) -> str:
        return self.map_name or self.name


class ModelDef(BaseModel):
    """A declared model (the declarative analog of a table)."""

    model_config = ConfigDict(frozen=True)

    name: str
    fields: tuple[FieldDef, ...] = ()
    primary_key: tuple[str, ...] | None = None
    unique_indexes: tuple[tuple[str, ...], ...] = ()
    indexes: tuple[tuple[str, ...], ...] = ()
    db_name: str | None = None
    documentation: str | None = None

    @model_validator(mode="after")
    def _unique_fields(self) -> "ModelDef":
        _check_unique([f.name for f in self.fields], f"field in model '{self.name}'")
        return self

    @property
    def table_name(self) -> str:
        return self.db_name or self.name.lower()

    @property
    def scalar_fields(self) -> list[FieldDef]:
        return [f for f in self.fields if not f.is_relation]

    def field(self, name: str) -> FieldDef | None:
        for f in self.fields:
            if f.name == name:
                return f
        return None

    def column_for(self, field_name: str) -> str:
        """Map a field name to its column name (``@map`` aware)."""
        f = self.field(field_name)
        return f.column_name if f else field_name

    def primary_key_columns(self) -> tuple[str, ...] | None:
        """Primary key as column names, from ``@@id`` or field-level ``@id``."""
        if self.primary_key:
            return tuple(self.column_for(n) for n in self.primary_key)
        ids = tuple(f.column_name for f in self.fields if f.is_id)
        return ids or None


class DeclarativeSchema(BaseModel):
    """Parsed declarative document: models plus enums."""

    model_config = ConfigDict(frozen=True)

    models: tuple[ModelDef, ...] = ()
    enums: tuple[EnumType, ...] = ()

    @model_validator(mode="after")
    def _unique_names(self) -> "DeclarativeSchema":
        _check_unique([m.name for m in self.models], "model")
        _check_unique([e.name for e in self.enums], "enum")
        return self

    def model(self, name: str) -> ModelDef | None:
        for m in self.models:
            if m.name == name:
                return m
        return None

    @property
    def enum_storage_names(self) -> dict[str, str]:
        return {e.name: e.storage_name for e in self.enums}

    def column_type(self, field: FieldDef) -> str:
        """Canonical type for a scalar field."""
        return declared_type(
            field.type,
            native_type=field.native_type,
            enums=self.enum_storage_names,
            is_list=field.is_list,
        )

    def to_column(self, field: FieldDef) -> Column:
        return Column(
            name=field.column_name,
            type=self.column_type(field),
            nullable=field.is_optional,
            default=self._sql_default(field),
            unique=field.is_unique,
        )

    def _sql_default(self, field: FieldDef) -> ColumnDefault | None:
        """Resolve declared opaque defaults into SQL-ready ones.

        ``dbgenerated("expr")`` becomes the raw expression and a bare enum
        member becomes a string literal.
        """
        default = field.default
        if default is None or default.kind != DefaultKind.OPAQUE:
            return default
        raw = str(default.value)
        match = _DBGENERATED_RE.match(raw)
        if match:
            return ColumnDefault(kind=DefaultKind.OPAQUE, value=match.group(1).replace('\\"', '"'))
        if field.type in self.enum_storage_names and _IDENT_RE.match(raw):
            return ColumnDefault(kind=DefaultKind.LITERAL, value=raw)
        return default

    def to_table(self, model: ModelDef) -> Table:
        """Project a model onto its physical table."""
        foreign_keys: list[ForeignKey] = []
        for f in model.fields:
            if not (f.is_relation and f.relation and f.relation.fields):
                continue
            target = self.model(f.type)
            if target is None:
                continue
            foreign_keys.append(
                ForeignKey(
                    columns=tuple(model.column_for(n) for n in f.relation.fields),
                    references_table=target.table_name,
                    references_columns=tuple(
                        target.column_for(n) for n in f.relation.references
                    ),
                    on_delete=f.relation.on_delete,
                )
            )

        indexes = [
            Index(columns=tuple(model.column_for(n) for n in cols), unique=True)
            for cols in model.unique_indexes
        ] + [
            Index(columns=tuple(model.column_for(n) for n in cols), unique=False)
            for cols in model.indexes
        ]

        return Table(
            name=model.table_name,
            columns=tuple(self.to_column(f) for f in model.scalar_fields),
            primary_key=model.primary_key_columns(),
            foreign_keys=tuple(foreign_keys),
            indexes=tuple(indexes),
        )

    def to_database_schema(self) -> DatabaseSchema:
        """Project the whole document, referenced tables ordered first."""
        tables = {m.table_name: self.to_table(m) for m in self.models}
        dependencies = {
            name: {fk.references_table for fk in table.foreign_keys}
            for name, table in tables.items()
        }
        ordered = topological_sort(dependencies, list(tables))
        enums = tuple(
            EnumType(name=e.storage_name, values=e.values) for e in self.enums
        )
        return DatabaseSchema(tables=tuple(tables[n] for n in ordered), enums=enums)


def topological_sort(dependencies: dict[str, set[str]], tables: list[str]) -> list[str]:
    """Topological sort of tables based on FK dependencies.

    Returns tables in forward order: parent tables first, child tables last.
    Cycles are broken by emitting the table where the cycle was found.

    Args:
        dependencies: FK dependency graph (table -> set of referenced tables).
        tables: Table names to sort, in their original order.

    Returns:
        Tables sorted so that parent tables come before child tables.
    """
    relevant = {t: dependencies.get(t, set()) & set(tables) for t in tables}

    sorted_tables: list[str] = []
    visited: set[str] = set()
    visiting: set[str] = set()

    def visit(table: str) -> None:
        if table in visited or table in visiting:
            return
        visiting.add(table)
        for dep in sorted(relevant.get(table, set()) - {table}):
            visit(dep)
        visiting.discard(table)
        visited.add(table)
        sorted_tables.append(table)

    for table in tables:
        visit(table)

    return sorted_tables


def snapshot_value(value: Any) -> Any:
    """Render a model (or plain value) as an opaque JSON-compatible snapshot."""
    if isinstance(value, BaseModel):
        return value.model_dump(mode="json", exclude_none=True)
    return value
