"""Type normalization between declared types and PostgreSQL native types.

Both sides of a comparison are resolved into one canonical type name before
they are compared.  ``SYNONYMS`` is the single place dialect knowledge lives:
supporting another engine means extending this table, nothing else.

Usage:
    from db_integrity.schema.types import canonical_type, declared_type, types_match

    declared_type("String")                  # 'text'
    canonical_type("character varying(255)") # 'text'
    types_match("int4", "integer")           # True
"""

import re
from collections.abc import Mapping

# Canonical name -> every spelling that resolves to it
SYNONYMS: dict[str, frozenset[str]] = {
    "text": frozenset({"text", "varchar", "character varying", "char", "character", "bpchar", "citext"}),
    "integer": frozenset({"integer", "int", "int4", "serial", "serial4"}),
    "bigint": frozenset({"bigint", "int8", "bigserial", "serial8"}),
    "smallint": frozenset({"smallint", "int2", "smallserial"}),
    "double precision": frozenset({"double precision", "float8", "real", "float4", "float"}),
    "numeric": frozenset({"numeric", "decimal"}),
    "boolean": frozenset({"boolean", "bool"}),
    "timestamp": frozenset({"timestamp", "timestamp without time zone"}),
    "timestamptz": frozenset({"timestamptz", "timestamp with time zone"}),
    "date": frozenset({"date"}),
    "time": frozenset({"time", "time without time zone"}),
    "jsonb": frozenset({"jsonb", "json"}),
    "bytea": frozenset({"bytea"}),
    "uuid": frozenset({"uuid"}),
}

_LOOKUP: dict[str, str] = {
    spelling: canonical for canonical, spellings in SYNONYMS.items() for spelling in spellings
}

# Declared abstract type -> canonical type
DECLARED_TYPES: dict[str, str] = {
    "String": "text",
    "Int": "integer",
    "BigInt": "bigint",
    "Float": "double precision",
    "Decimal": "numeric",
    "Boolean": "boolean",
    "DateTime": "timestamp",
    "Json": "jsonb",
    "Bytes": "bytea",
}

_PRECISION_RE = re.compile(r"\s*\([^)]*\)")


def canonical_type(db_type: str) -> str:
    """Resolve a database-reported type name to its canonical name.

    Strips precision/length suffixes and quoting, lower-cases, and keeps an
    array marker.  Both ``text[]`` and the catalog's ``_text`` spelling
    resolve to ``text[]``.  Unknown names (user-defined enums) come back
    lower-cased and unquoted.
    """
    name = db_type.strip().strip('"').lower()

    is_array = False
    if name.endswith("[]"):
        is_array = True
        name = name[:-2]
    elif name.startswith("_"):
        is_array = True
        name = name[1:]

    # "timestamp(3) without time zone" -> "timestamp without time zone"
    name = _PRECISION_RE.sub("", name).strip()
    name = " ".join(name.split())

    base = _LOOKUP.get(name, name)
    return f"{base}[]" if is_array else base


def declared_type(
    type_name: str,
    native_type: str | None = None,
    enums: Mapping[str, str] | None = None,
    is_list: bool = False,
) -> str:
    """Resolve a declared field type to its canonical name.

    Args:
        type_name: Declared type (``String``, ``Int``, an enum name, ...).
        native_type: Optional native override from ``@db.X(...)``; wins over
            the abstract mapping when present.
        enums: Declared enum name -> storage name.
        is_list: Whether the field carries a list marker.

    Returns:
        Canonical type name.
    """
    if native_type:
        base = canonical_type(native_sql_type(native_type))
    elif enums and type_name in enums:
        base = enums[type_name].lower()
    else:
        base = DECLARED_TYPES.get(type_name, type_name.lower())
    return f"{base}[]" if is_list else base


def types_match(left: str, right: str) -> bool:
    """True iff both type names resolve to the same canonical entry."""
    return canonical_type(left) == canonical_type(right)


# Native-type attribute (``@db.VarChar(255)``) -> SQL base type
NATIVE_TYPES: dict[str, str] = {
    "Text": "text",
    "VarChar": "varchar",
    "Char": "char",
    "Citext": "citext",
    "Uuid": "uuid",
    "SmallInt": "smallint",
    "Integer": "integer",
    "BigInt": "bigint",
    "Real": "real",
    "DoublePrecision": "double precision",
    "Decimal": "numeric",
    "Money": "money",
    "Boolean": "boolean",
    "Date": "date",
    "Time": "time",
    "Timestamp": "timestamp",
    "Timestamptz": "timestamptz",
    "Json": "json",
    "JsonB": "jsonb",
    "ByteA": "bytea",
}


def native_sql_type(native: str) -> str:
    """Translate a native-type attribute body (``VarChar(255)``) to SQL (``varchar(255)``)."""
    name, sep, args = native.partition("(")
    base = NATIVE_TYPES.get(name.strip(), name.strip().lower())
    return f"{base}({args}" if sep else base
