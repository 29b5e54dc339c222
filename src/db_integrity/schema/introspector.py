"""PostgreSQL catalog introspection via information_schema and pg_catalog.

Reads the live database into the canonical ``DatabaseSchema``:
- Tables, columns, canonical types, nullability, defaults
- Primary keys and foreign keys
- Indexes (name, columns, uniqueness)
- Enums (name, ordered labels)

Uses psycopg (v3) ``AsyncConnection``.  Queries are read-only; the result
is a point-in-time snapshot and two introspections taken around a write
are never assumed consistent.
"""

import logging
import re

import psycopg
from psycopg import AsyncConnection

from db_integrity.adapters.retry import (
    DEFAULT_RETRY_ATTEMPTS,
    DEFAULT_RETRY_DELAY,
    connect_with_retry,
)
from db_integrity.errors import IntrospectionError
from db_integrity.schema.models import (
    Column,
    ColumnDefault,
    DatabaseSchema,
    DefaultKind,
    EnumType,
    ForeignKey,
    Index,
    Table,
)
from db_integrity.schema.types import canonical_type

logger = logging.getLogger(__name__)

_CAST_SUFFIX_RE = re.compile(r"::[\w\s\".\[\]]+$")
_NUMBER_RE = re.compile(r"^-?\d+(\.\d+)?$")


def parse_db_default(expression: str | None) -> ColumnDefault | None:
    """Classify a catalog ``column_default`` expression.

    Example:
        parse_db_default("nextval('user_id_seq'::regclass)")  # autoincrement
        parse_db_default("'ACTIVE'::status")                  # literal 'ACTIVE'
    """
    if expression is None:
        return None
    expr = expression.strip()
    lowered = expr.lower()

    if lowered.startswith("nextval("):
        return ColumnDefault(kind=DefaultKind.AUTOINCREMENT)
    if lowered in ("now()", "current_timestamp", "current_timestamp(3)", "transaction_timestamp()"):
        return ColumnDefault(kind=DefaultKind.NOW)
    if lowered in ("gen_random_uuid()", "uuid_generate_v4()"):
        return ColumnDefault(kind=DefaultKind.UUID)

    # Strip a trailing type cast: 'x'::text, 0::bigint, (-1)::integer
    bare = _CAST_SUFFIX_RE.sub("", expr).strip()
    if bare.startswith("(") and bare.endswith(")"):
        bare = _CAST_SUFFIX_RE.sub("", bare[1:-1].strip()).strip()

    if bare.startswith("'") and bare.endswith("'") and len(bare) >= 2:
        return ColumnDefault(kind=DefaultKind.LITERAL, value=bare[1:-1].replace("''", "'"))
    if bare.lower() in ("true", "false"):
        return ColumnDefault(kind=DefaultKind.LITERAL, value=bare.lower() == "true")
    if _NUMBER_RE.match(bare):
        value: int | float = float(bare) if "." in bare else int(bare)
        return ColumnDefault(kind=DefaultKind.LITERAL, value=value)
    return ColumnDefault(kind=DefaultKind.OPAQUE, value=expr)


class SchemaIntrospector:
    """Introspects a PostgreSQL database into a ``DatabaseSchema``.

    Works with any PostgreSQL database (RDS, Supabase, local).  Opening the
    connection is retried with linear backoff; queries are not.

    Usage:
        async with SchemaIntrospector(database_url) as introspector:
            schema = await introspector.introspect()
            names = await introspector.get_table_names()
    """

    # Tables never reported (extensions and foreign migration tools)
    EXCLUDED_TABLES_DEFAULT = {
        "schema_migrations",
        "pg_stat_statements",
        "spatial_ref_sys",
    }

    def __init__(
        self,
        database_url: str,
        excluded_tables: set[str] | None = None,
        connect_timeout: int = 10,
        retry_attempts: int = DEFAULT_RETRY_ATTEMPTS,
        retry_delay: float = DEFAULT_RETRY_DELAY,
    ):
        """Initialize with database connection URL.

        Args:
            database_url: PostgreSQL connection URL.
            excluded_tables: Table names to skip.  ``None`` uses
                ``EXCLUDED_TABLES_DEFAULT``; pass ``set()`` to skip nothing.
            connect_timeout: Seconds before a connection attempt gives up.
            retry_attempts: Connection attempts before failing.
            retry_delay: Base backoff between attempts, in seconds.
        """
        self._database_url = database_url
        self._excluded_tables = (
            set(self.EXCLUDED_TABLES_DEFAULT) if excluded_tables is None else set(excluded_tables)
        )
        self._connect_timeout = connect_timeout
        self._retry_attempts = retry_attempts
        self._retry_delay = retry_delay
        self._conn: AsyncConnection | None = None

    async def __aenter__(self) -> "SchemaIntrospector":
        """Open the connection (with bounded retry)."""
        self._conn = await connect_with_retry(
            lambda: psycopg.AsyncConnection.connect(
                self._database_url,
                connect_timeout=self._connect_timeout,
            ),
            attempts=self._retry_attempts,
            delay=self._retry_delay,
            retry_on=(psycopg.OperationalError, OSError),
        )
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        """Close the connection."""
        if self._conn:
            await self._conn.close()
            self._conn = None

    def _require_connection(self) -> AsyncConnection:
        if not self._conn:
            raise RuntimeError("Introspector not connected. Use 'async with'.")
        return self._conn

    async def test_connection(self) -> bool:
        """Run ``SELECT 1``.

        Raises:
            ConnectionError: If the query fails.
        """
        conn = self._require_connection()
        try:
            async with conn.cursor() as cur:
                await cur.execute("SELECT 1")
                row = await cur.fetchone()
                return row is not None and row[0] == 1
        except psycopg.Error as e:
            raise ConnectionError(f"Connection test failed: {e}") from e

    async def introspect(self, schema_name: str = "public") -> DatabaseSchema:
        """Introspect tables and enums of one PostgreSQL schema.

        Args:
            schema_name: PostgreSQL schema to read (default: public).

        Returns:
            Immutable ``DatabaseSchema`` snapshot.

        Raises:
            RuntimeError: If not connected.
            IntrospectionError: If any catalog query fails.
        """
        self._require_connection()
        try:
            tables: list[Table] = []
            for table_name in await self._get_tables(schema_name):
                if table_name in self._excluded_tables:
                    continue
                tables.append(
                    Table(
                        name=table_name,
                        columns=tuple(await self._get_columns(schema_name, table_name)),
                        primary_key=await self._get_primary_key(schema_name, table_name),
                        foreign_keys=tuple(await self._get_foreign_keys(schema_name, table_name)),
                        indexes=tuple(await self._get_indexes(schema_name, table_name)),
                    )
                )
            enums = await self._get_enums(schema_name)
        except psycopg.Error as e:
            raise IntrospectionError(f"Catalog introspection failed: {e}") from e

        logger.debug("Introspected %d tables, %d enums", len(tables), len(enums))
        return DatabaseSchema(tables=tuple(tables), enums=tuple(enums))

    async def get_table_names(self, schema_name: str = "public") -> list[str]:
        """Table names only, exclusions applied."""
        self._require_connection()
        try:
            names = await self._get_tables(schema_name)
        except psycopg.Error as e:
            raise IntrospectionError(f"Catalog introspection failed: {e}") from e
        return [n for n in names if n not in self._excluded_tables]

    async def _fetch(self, query: str, params: tuple) -> list[tuple]:
        async with self._require_connection().cursor() as cur:
            await cur.execute(query, params)
            return await cur.fetchall()

    async def _get_tables(self, schema_name: str) -> list[str]:
        query = """
            SELECT table_name
            FROM information_schema.tables
            WHERE table_schema = %s
              AND table_type = 'BASE TABLE'
            ORDER BY table_name
        """
        return [row[0] for row in await self._fetch(query, (schema_name,))]

    async def _get_columns(self, schema_name: str, table_name: str) -> list[Column]:
        query = """
            SELECT
                column_name,
                data_type,
                udt_name,
                is_nullable,
                column_default,
                is_identity
            FROM information_schema.columns
            WHERE table_schema = %s
              AND table_name = %s
            ORDER BY ordinal_position
        """
        columns = []
        for row in await self._fetch(query, (schema_name, table_name)):
            name, data_type, udt_name, is_nullable, default, is_identity = row
            parsed_default = (
                ColumnDefault(kind=DefaultKind.AUTOINCREMENT)
                if is_identity == "YES"
                else parse_db_default(default)
            )
            columns.append(
                Column(
                    name=name,
                    type=self._normalize_data_type(data_type, udt_name),
                    nullable=(is_nullable == "YES"),
                    default=parsed_default,
                )
            )
        return columns

    def _normalize_data_type(self, data_type: str, udt_name: str | None = None) -> str:
        """Resolve information_schema types to canonical names.

        ``USER-DEFINED`` (enums) and ``ARRAY`` report their real type only
        through ``udt_name``.
        """
        if data_type.upper() in ("USER-DEFINED", "ARRAY") and udt_name:
            return canonical_type(udt_name)
        return canonical_type(data_type)

    async def _get_primary_key(self, schema_name: str, table_name: str) -> tuple[str, ...] | None:
        query = """
            SELECT kcu.column_name
            FROM information_schema.table_constraints tc
            JOIN information_schema.key_column_usage kcu
                ON tc.constraint_name = kcu.constraint_name
                AND tc.table_schema = kcu.table_schema
                AND tc.table_name = kcu.table_name
            WHERE tc.table_schema = %s
              AND tc.table_name = %s
              AND tc.constraint_type = 'PRIMARY KEY'
            ORDER BY kcu.ordinal_position
        """
        cols = tuple(row[0] for row in await self._fetch(query, (schema_name, table_name)))
        return cols or None

    async def _get_foreign_keys(self, schema_name: str, table_name: str) -> list[ForeignKey]:
        query = """
            SELECT
                con.conname,
                array_agg(src.attname ORDER BY k.ordinality) AS columns,
                ref.relname AS references_table,
                array_agg(dst.attname ORDER BY k.ordinality) AS references_columns,
                con.confdeltype
            FROM pg_constraint con
            JOIN pg_class t ON t.oid = con.conrelid
            JOIN pg_namespace n ON n.oid = t.relnamespace
            JOIN pg_class ref ON ref.oid = con.confrelid
            JOIN LATERAL unnest(con.conkey, con.confkey)
                WITH ORDINALITY AS k(src_attnum, dst_attnum, ordinality) ON TRUE
            JOIN pg_attribute src ON src.attrelid = con.conrelid AND src.attnum = k.src_attnum
            JOIN pg_attribute dst ON dst.attrelid = con.confrelid AND dst.attnum = k.dst_attnum
            WHERE con.contype = 'f'
              AND n.nspname = %s
              AND t.relname = %s
            GROUP BY con.conname, ref.relname, con.confdeltype
            ORDER BY con.conname
        """
        actions = {"c": "CASCADE", "n": "SET NULL", "d": "SET DEFAULT", "r": "RESTRICT"}
        fks = []
        for row in await self._fetch(query, (schema_name, table_name)):
            name, columns, ref_table, ref_columns, del_type = row
            fks.append(
                ForeignKey(
                    name=name,
                    columns=tuple(columns),
                    references_table=ref_table,
                    references_columns=tuple(ref_columns),
                    on_delete=actions.get(del_type),
                )
            )
        return fks

    async def _get_indexes(self, schema_name: str, table_name: str) -> list[Index]:
        """Indexes for a table, excluding the primary key."""
        query = """
            SELECT
                i.relname AS index_name,
                array_agg(a.attname ORDER BY x.ordinality) AS columns,
                ix.indisunique AS is_unique
            FROM pg_index ix
            JOIN pg_class t ON t.oid = ix.indrelid
            JOIN pg_class i ON i.oid = ix.indexrelid
            JOIN pg_namespace n ON n.oid = t.relnamespace
            JOIN LATERAL unnest(ix.indkey) WITH ORDINALITY AS x(attnum, ordinality) ON TRUE
            JOIN pg_attribute a ON a.attrelid = t.oid AND a.attnum = x.attnum
            WHERE n.nspname = %s
              AND t.relname = %s
              AND NOT ix.indisprimary
            GROUP BY i.relname, ix.indisunique
            ORDER BY i.relname
        """
        return [
            Index(name=name, columns=tuple(columns), unique=is_unique)
            for name, columns, is_unique in await self._fetch(query, (schema_name, table_name))
        ]

    async def _get_enums(self, schema_name: str) -> list[EnumType]:
        query = """
            SELECT t.typname, e.enumlabel
            FROM pg_type t
            JOIN pg_enum e ON e.enumtypid = t.oid
            JOIN pg_namespace n ON n.oid = t.typnamespace
            WHERE n.nspname = %s
            ORDER BY t.typname, e.enumsortorder
        """
        labels: dict[str, list[str]] = {}
        for type_name, label in await self._fetch(query, (schema_name,)):
            labels.setdefault(type_name, []).append(label)
        return [EnumType(name=name, values=tuple(values)) for name, values in labels.items()]
