"""PostgreSQL DDL rendering for canonical schema objects.

Every statement the drift detector proposes and every statement the
migration generator writes goes through these helpers, so a drift's
``fix_sql`` and the migration built from it are byte-identical.

Identifiers are emitted bare when they are plain lower-case names and
double-quoted otherwise (mixed case, punctuation).

Usage:
    from db_integrity.schema.ddl import add_column_sql
    from db_integrity.schema.models import Column

    add_column_sql("user", Column(name="name", type="text"))
    # 'ALTER TABLE user ADD COLUMN name text;'
"""

import re

from db_integrity.schema.models import Column, ColumnDefault, DefaultKind, Index, Table

_PLAIN_IDENT_RE = re.compile(r"^[a-z_][a-z0-9_]*$")
_TRANSACTION_CONTROL = {"BEGIN", "COMMIT", "END", "BEGIN TRANSACTION", "START TRANSACTION"}


def quote_ident(name: str) -> str:
    """Quote an identifier only when PostgreSQL would otherwise fold or reject it."""
    if _PLAIN_IDENT_RE.match(name):
        return name
    return '"' + name.replace('"', '""') + '"'


def quote_literal(value: str) -> str:
    return "'" + value.replace("'", "''") + "'"


def _quote_type(type_name: str) -> str:
    # User-defined (enum) type names may need quoting; builtin names are plain
    is_array = type_name.endswith("[]")
    base = type_name[:-2] if is_array else type_name
    if " " not in base:
        base = quote_ident(base)
    return f"{base}[]" if is_array else base


# ------------------------------------------------------------------
# Column fragments
# ------------------------------------------------------------------


def render_default(default: ColumnDefault) -> str | None:
    """Render a default as a SQL expression.

    Returns ``None`` for autoincrement, which is rendered as an identity
    clause instead of a ``DEFAULT``.
    """
    if default.kind == DefaultKind.NOW:
        return "CURRENT_TIMESTAMP"
    if default.kind in (DefaultKind.UUID, DefaultKind.CUID):
        return "gen_random_uuid()"
    if default.kind == DefaultKind.AUTOINCREMENT:
        return None
    if default.kind == DefaultKind.OPAQUE:
        return str(default.value)

    value = default.value
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (int, float)):
        return str(value)
    if value is None:
        return "NULL"
    return quote_literal(str(value))


def column_definition(column: Column, inline_unique: bool = True) -> str:
    """Render ``name type [identity] [NOT NULL] [DEFAULT x] [UNIQUE]``."""
    parts = [quote_ident(column.name), _quote_type(column.type)]
    if column.default and column.default.kind == DefaultKind.AUTOINCREMENT:
        parts.append("GENERATED BY DEFAULT AS IDENTITY")
    if not column.nullable:
        parts.append("NOT NULL")
    if column.default:
        rendered = render_default(column.default)
        if rendered is not None:
            parts.append(f"DEFAULT {rendered}")
    if inline_unique and column.unique:
        parts.append("UNIQUE")
    return " ".join(parts)


# ------------------------------------------------------------------
# Statements
# ------------------------------------------------------------------


def create_table_sql(table: Table, if_not_exists: bool = False) -> str:
    """Render ``CREATE TABLE`` with primary key and foreign keys."""
    lines = [f"    {column_definition(col)}" for col in table.columns]
    if table.primary_key:
        cols = ", ".join(quote_ident(c) for c in table.primary_key)
        lines.append(f"    PRIMARY KEY ({cols})")
    for fk in table.foreign_keys:
        cols = ", ".join(quote_ident(c) for c in fk.columns)
        refs = ", ".join(quote_ident(c) for c in fk.references_columns)
        clause = f"    FOREIGN KEY ({cols}) REFERENCES {quote_ident(fk.references_table)} ({refs})"
        if fk.on_delete:
            clause += f" ON DELETE {_referential_action(fk.on_delete)}"
        lines.append(clause)

    exists = "IF NOT EXISTS " if if_not_exists else ""
    body = ",\n".join(lines)
    return f"CREATE TABLE {exists}{quote_ident(table.name)} (\n{body}\n);"


def _referential_action(action: str) -> str:
    # Declared actions are PascalCase (SetNull); SQL wants SET NULL
    words = re.sub(r"(?<!^)(?=[A-Z])", " ", action.strip()).upper()
    return " ".join(words.split())


def drop_table_sql(table_name: str) -> str:
    return f"DROP TABLE IF EXISTS {quote_ident(table_name)} CASCADE;"


def add_column_sql(table_name: str, column: Column) -> str:
    """Render ``ALTER TABLE ... ADD COLUMN``.

    ``NOT NULL`` is kept only when the column also carries a default (or is
    an identity column); adding a bare ``NOT NULL`` column fails on any
    table that already holds rows.  Uniqueness is left to a separate index.
    """
    has_fill = column.default is not None
    safe = column.model_copy(update={"nullable": column.nullable or not has_fill})
    definition = column_definition(safe, inline_unique=False)
    return f"ALTER TABLE {quote_ident(table_name)} ADD COLUMN {definition};"


def drop_column_sql(table_name: str, column_name: str) -> str:
    return (
        f"ALTER TABLE {quote_ident(table_name)} "
        f"DROP COLUMN IF EXISTS {quote_ident(column_name)};"
    )


def alter_column_type_sql(table_name: str, column_name: str, new_type: str) -> str:
    col = quote_ident(column_name)
    type_sql = _quote_type(new_type)
    return (
        f"ALTER TABLE {quote_ident(table_name)} "
        f"ALTER COLUMN {col} TYPE {type_sql} USING {col}::{type_sql};"
    )


def alter_column_nullability_sql(table_name: str, column_name: str, nullable: bool) -> str:
    action = "DROP NOT NULL" if nullable else "SET NOT NULL"
    return (
        f"ALTER TABLE {quote_ident(table_name)} "
        f"ALTER COLUMN {quote_ident(column_name)} {action};"
    )


def create_enum_sql(enum_name: str, values: tuple[str, ...] | list[str]) -> str:
    labels = ", ".join(quote_literal(v) for v in values)
    return f"CREATE TYPE {quote_ident(enum_name)} AS ENUM ({labels});"


def add_enum_value_sql(enum_name: str, value: str) -> str:
    return f"ALTER TYPE {quote_ident(enum_name)} ADD VALUE {quote_literal(value)};"


def drop_enum_sql(enum_name: str) -> str:
    return f"DROP TYPE IF EXISTS {quote_ident(enum_name)};"


def index_name(table_name: str, index: Index) -> str:
    """Index name: explicit if set, else ``<table>_<cols>_key|_idx``."""
    if index.name:
        return index.name
    suffix = "key" if index.unique else "idx"
    return "_".join([table_name, *index.columns, suffix])


def create_index_sql(table_name: str, index: Index) -> str:
    unique = "UNIQUE " if index.unique else ""
    cols = ", ".join(quote_ident(c) for c in index.columns)
    return (
        f"CREATE {unique}INDEX {quote_ident(index_name(table_name, index))} "
        f"ON {quote_ident(table_name)} ({cols});"
    )


def drop_index_sql(name: str) -> str:
    return f"DROP INDEX IF EXISTS {quote_ident(name)};"


# ------------------------------------------------------------------
# Script handling
# ------------------------------------------------------------------


def split_statements(sql: str) -> list[str]:
    """Split a SQL script into statements on top-level semicolons.

    Semicolons inside quoted strings, quoted identifiers, comments and
    dollar-quoted bodies do not split.  Chunks holding only comments or
    whitespace are dropped.  Returned statements have no trailing ``;``.
    """
    statements: list[str] = []
    buf: list[str] = []
    i = 0
    n = len(sql)

    while i < n:
        ch = sql[i]

        if ch == "-" and sql.startswith("--", i):
            end = sql.find("\n", i)
            end = n if end == -1 else end
            buf.append(sql[i:end])
            i = end
            continue

        if ch == "/" and sql.startswith("/*", i):
            end = sql.find("*/", i + 2)
            end = n if end == -1 else end + 2
            buf.append(sql[i:end])
            i = end
            continue

        if ch in ("'", '"'):
            j = i + 1
            while j < n:
                if sql[j] == ch:
                    # Doubled quote is an escaped quote
                    if j + 1 < n and sql[j + 1] == ch:
                        j += 2
                        continue
                    break
                j += 1
            buf.append(sql[i:j + 1])
            i = j + 1
            continue

        if ch == "$":
            match = re.match(r"\$[A-Za-z_]*\$", sql[i:])
            if match:
                tag = match.group(0)
                end = sql.find(tag, i + len(tag))
                end = n if end == -1 else end + len(tag)
                buf.append(sql[i:end])
                i = end
                continue

        if ch == ";":
            _flush(buf, statements)
            buf = []
            i += 1
            continue

        buf.append(ch)
        i += 1

    _flush(buf, statements)
    return statements


def _flush(buf: list[str], statements: list[str]) -> None:
    text = "".join(buf).strip()
    if text and strip_comments(text):
        statements.append(text)


def strip_comments(sql: str) -> str:
    """Remove ``--`` line comments and ``/* */`` block comments (naive)."""
    without_block = re.sub(r"/\*.*?\*/", "", sql, flags=re.DOTALL)
    lines = [line.split("--", 1)[0] for line in without_block.splitlines()]
    return "\n".join(lines).strip()


def is_transaction_control(statement: str) -> bool:
    """True for ``BEGIN``/``COMMIT`` style wrapper statements."""
    return " ".join(strip_comments(statement).upper().split()) in _TRANSACTION_CONTROL
