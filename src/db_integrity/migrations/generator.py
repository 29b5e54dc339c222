"""Migration generation from drift reports, change lists, or schema diffs.

Every migration is built from a list of ``SchemaChange`` values.  Forward
SQL keeps the change order; rollback SQL walks the changes backwards and
asks each one for its inverse.  Changes with no safe inverse are listed in
``metadata["rollback_unavailable"]`` instead of being guessed at.

Usage:
    from db_integrity.migrations.generator import MigrationGenerator
    from db_integrity.migrations.models import GenerationOptions

    generator = MigrationGenerator("migrations", tracking=store)
    migration = await generator.generate_from_drifts(
        report.fixable_drifts, GenerationOptions(name="add_user_name")
    )
    print(migration.id, migration.sql)
"""

import logging
import re
from collections.abc import Callable, Sequence
from datetime import datetime, timedelta
from pathlib import Path

from db_integrity.errors import GenerationError
from db_integrity.events import (
    EventCategory,
    EventSink,
    LoggingEventSink,
    track_operation,
)
from db_integrity.migrations.models import (
    GenerationOptions,
    Migration,
    MigrationSource,
    compute_checksum,
    utc_now,
)
from db_integrity.migrations.tracking import TrackingStore
from db_integrity.schema.changes import (
    AddEnumValues,
    CreateEnum,
    CreateTable,
    SchemaChange,
    diff_schemas,
)
from db_integrity.schema.models import DatabaseSchema, topological_sort
from db_integrity.schema.report import Drift

logger = logging.getLogger(__name__)

MIGRATION_FILE = "migration.sql"
ROLLBACK_FILE = "down.sql"

_STAMP_FORMAT = "%Y%m%d%H%M%S"
MIGRATION_DIR_RE = re.compile(r"^(\d{14})_")


def slugify(name: str) -> str:
    """Lower-case ``name`` and collapse anything non-alphanumeric to ``_``."""
    slug = re.sub(r"[^a-z0-9]+", "_", name.lower()).strip("_")
    return slug or "migration"


def render_body(statements: Sequence[str], atomic: bool, preamble: Sequence[str] = ()) -> str:
    """Join statements into a migration body, optionally wrapped in BEGIN/COMMIT."""
    parts = list(preamble)
    if atomic:
        parts.append("BEGIN;")
    parts.extend(statements)
    if atomic:
        parts.append("COMMIT;")
    return "\n\n".join(parts) + "\n"


def order_by_dependency(changes: Sequence[SchemaChange]) -> list[SchemaChange]:
    """Order repair changes so every statement's prerequisites run first.

    Enum changes come first, then new tables with referenced tables ahead
    of the tables whose foreign keys point at them, then everything else.
    Each group otherwise keeps its input order.
    """
    enums = [c for c in changes if isinstance(c, (CreateEnum, AddEnumValues))]
    tables = {c.table.name: c for c in changes if isinstance(c, CreateTable)}
    rest = [c for c in changes if not isinstance(c, (CreateEnum, AddEnumValues, CreateTable))]

    dependencies = {
        name: {fk.references_table for fk in change.table.foreign_keys}
        for name, change in tables.items()
    }
    ordered = topological_sort(dependencies, list(tables))
    return [*enums, *(tables[name] for name in ordered), *rest]


class MigrationGenerator:
    """Builds versioned migrations and (unless dry-running) persists them.

    Args:
        migrations_dir: Directory holding ``<id>/migration.sql`` folders.
        tracking: Optional tracking store; generated migrations are
            registered there as ``pending``.
        sink: Event receiver; defaults to ``LoggingEventSink``.
        clock: Returns the current UTC time (injected by tests).
    """

    COMPONENT = "MigrationGenerator"

    def __init__(
        self,
        migrations_dir: str | Path,
        tracking: TrackingStore | None = None,
        sink: EventSink | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._dir = Path(migrations_dir)
        self._tracking = tracking
        self._sink = sink or LoggingEventSink()
        self._clock = clock or utc_now
        self._last_stamp: str | None = None

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def generate_from_changes(
        self,
        changes: Sequence[SchemaChange],
        options: GenerationOptions | None = None,
        source: MigrationSource = MigrationSource.HAND_AUTHORED,
    ) -> Migration:
        """Build a migration from an explicit change list."""
        return await self._generate(changes, options or GenerationOptions(), source)

    async def generate_from_drifts(
        self,
        drifts: Sequence[Drift],
        options: GenerationOptions | None = None,
    ) -> Migration:
        """Build a migration repairing every drift in ``drifts``.

        Drifts arrive sorted by severity, so their changes are reordered by
        dependency before rendering.

        Raises:
            GenerationError: If any drift is not fixable, or ``drifts`` is
                empty.
        """
        changes: list[SchemaChange] = []
        for drift in drifts:
            if not drift.fixable or drift.change is None:
                hint = f" ({drift.declarative_fix})" if drift.declarative_fix else ""
                raise GenerationError(
                    f"Drift on '{drift.object}' ({drift.type.value}) has no safe "
                    f"SQL fix{hint}"
                )
            changes.append(drift.change)
        return await self._generate(
            order_by_dependency(changes),
            options or GenerationOptions(),
            MigrationSource.DRIFT_REPORT,
            extra_metadata={"drift_ids": [d.id for d in drifts]},
        )

    async def generate_from_schemas(
        self,
        old: DatabaseSchema,
        new: DatabaseSchema,
        options: GenerationOptions | None = None,
    ) -> Migration:
        """Build a migration turning snapshot ``old`` into snapshot ``new``."""
        return await self._generate(
            diff_schemas(old, new), options or GenerationOptions(), MigrationSource.SCHEMA_DIFF
        )

    def build(
        self,
        changes: Sequence[SchemaChange],
        options: GenerationOptions,
        source: MigrationSource = MigrationSource.HAND_AUTHORED,
        extra_metadata: dict | None = None,
    ) -> Migration:
        """Render a ``Migration`` without touching disk or database.

        Raises:
            GenerationError: If there is nothing to generate.
        """
        if not changes:
            raise GenerationError("No changes to generate a migration from")

        forward = [stmt for change in changes for stmt in change.to_sql()]
        if not forward:
            raise GenerationError("Changes produced no SQL statements")
        sql = render_body(forward, options.atomic)

        inverse: list[str] = []
        unavailable: list[str] = []
        for change in reversed(changes):
            statements = change.rollback_sql()
            if statements is None:
                unavailable.append(change.describe())
            else:
                inverse.extend(statements)

        rollback_sql = None
        if options.include_rollback and inverse:
            preamble = [f"-- rollback unavailable: {d}" for d in unavailable]
            rollback_sql = render_body(inverse, options.atomic, preamble=preamble)

        created_tables: list[str] = []
        for change in changes:
            for table in change.created_tables:
                if table not in created_tables:
                    created_tables.append(table)

        metadata = {
            "source": source.value,
            "changes": [c.describe() for c in changes],
            "created_tables": created_tables,
            "rollback_unavailable": unavailable,
            **(extra_metadata or {}),
        }

        return Migration(
            id=self.next_id(options.name),
            name=options.name,
            sql=sql,
            rollback_sql=rollback_sql,
            checksum=compute_checksum(sql),
            created_at=self._clock(),
            metadata=metadata,
        )

    def next_id(self, name: str) -> str:
        """Allocate ``<YYYYMMDDHHMMSS>_<slug>``, strictly after every known id.

        Within one second (or when the clock lags the newest directory on
        disk) the timestamp is bumped forward one second at a time.
        """
        stamp = self._clock().strftime(_STAMP_FORMAT)
        floor = max(
            (s for s in (self._last_stamp, self._latest_stamp_on_disk()) if s),
            default=None,
        )
        if floor is not None and stamp <= floor:
            bumped = datetime.strptime(floor, _STAMP_FORMAT) + timedelta(seconds=1)
            stamp = bumped.strftime(_STAMP_FORMAT)
        self._last_stamp = stamp
        return f"{stamp}_{slugify(name)}"

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _generate(
        self,
        changes: Sequence[SchemaChange],
        options: GenerationOptions,
        source: MigrationSource,
        extra_metadata: dict | None = None,
    ) -> Migration:
        with track_operation(
            self._sink, EventCategory.MIGRATION, "generate", self.COMPONENT
        ) as op:
            migration = self.build(changes, options, source, extra_metadata)
            op.details.update(
                {
                    "migration_id": migration.id,
                    "changes": len(changes),
                    "dry_run": options.dry_run,
                    "rollback_available": migration.rollback_sql is not None,
                }
            )

            if options.dry_run:
                op.message = f"Dry run: {migration.id} not written"
                return migration

            self._write_files(migration)
            if self._tracking is not None:
                await self._tracking.insert(migration)
            op.message = f"Generated {migration.id}"

        logger.info("Generated migration %s (%d changes)", migration.id, len(changes))
        return migration

    def _write_files(self, migration: Migration) -> Path:
        target = self._dir / migration.id
        target.mkdir(parents=True, exist_ok=False)
        (target / MIGRATION_FILE).write_text(migration.sql, encoding="utf-8")
        if migration.rollback_sql is not None:
            (target / ROLLBACK_FILE).write_text(migration.rollback_sql, encoding="utf-8")
        return target

    def _latest_stamp_on_disk(self) -> str | None:
        if not self._dir.is_dir():
            return None
        stamps: list[str] = []
        for entry in self._dir.iterdir():
            match = MIGRATION_DIR_RE.match(entry.name)
            if entry.is_dir() and match:
                stamps.append(match.group(1))
        return max(stamps, default=None)
