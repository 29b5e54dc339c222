"""Migration execution with status tracking.

Each migration body runs as one transaction on one connection.  A failure
rolls back every statement of that migration, marks it ``failed`` with the
driver's message verbatim, and re-raises.  The runner never retries a
statement and never re-runs a ``completed`` migration.

Usage:
    from db_integrity.migrations.runner import MigrationRunner

    runner = MigrationRunner(adapter, store, "migrations")
    result = await runner.run_pending()
    if not result.success:
        print(f"{result.failed}: {result.error}")
"""

import asyncio
import logging
import time
from collections.abc import Callable
from datetime import datetime
from pathlib import Path

from db_integrity.adapters.base import DatabaseClient
from db_integrity.errors import DatabaseConnectionError, MigrationStateError, TransactionError
from db_integrity.events import (
    EventCategory,
    EventSink,
    LoggingEventSink,
    track_operation,
)
from db_integrity.migrations.ledger import LedgerReconciler, scan_migrations_dir
from db_integrity.migrations.models import (
    Migration,
    MigrationSource,
    MigrationStatus,
    RunResult,
    utc_now,
)
from db_integrity.migrations.tracking import TrackingStore
from db_integrity.schema.ddl import is_transaction_control, split_statements

logger = logging.getLogger(__name__)


def executable_statements(body: str) -> list[str]:
    """Split a migration body, dropping its BEGIN/COMMIT wrapper."""
    return [s for s in split_statements(body) if not is_transaction_control(s)]


class MigrationRunner:
    """Applies and rolls back tracked migrations.

    Args:
        client: Database client providing ``execute_in_transaction``.
        tracking: Tracking store holding migration status.
        migrations_dir: Directory scanned for hand-authored migrations.
        ledger: Optional ledger reconciler.  Directories the ledger already
            reports as applied are never picked up as pending.
        sink: Event receiver; defaults to ``LoggingEventSink``.
        clock: Returns the current UTC time (injected by tests).
    """

    COMPONENT = "MigrationRunner"

    def __init__(
        self,
        client: DatabaseClient,
        tracking: TrackingStore,
        migrations_dir: str | Path,
        ledger: LedgerReconciler | None = None,
        sink: EventSink | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._client = client
        self._tracking = tracking
        self._dir = Path(migrations_dir)
        self._ledger = ledger
        self._sink = sink or LoggingEventSink()
        self._clock = clock or utc_now

    @property
    def tracking(self) -> TrackingStore:
        return self._tracking

    async def apply(self, migration: Migration) -> Migration:
        """Execute ``migration`` and return it in its final state.

        Whatever interrupts execution, cancellation included, leaves the
        migration ``failed`` before it propagates; it never stays
        ``running``.

        Raises:
            MigrationStateError: If the migration is not pending or failed.
            TransactionError: A statement failed; the migration is now
                ``failed`` in the tracking table.
            DatabaseConnectionError: No connection could be acquired; the
                migration is now ``failed``.
        """
        running = migration.transition(MigrationStatus.RUNNING, error=None)
        await self._tracking.update(running)
        statements = executable_statements(migration.sql)

        with track_operation(
            self._sink, EventCategory.MIGRATION, "apply", self.COMPONENT
        ) as op:
            op.details.update({"migration_id": migration.id, "statements": len(statements)})
            started = time.perf_counter()
            try:
                await self._client.execute_in_transaction(statements)
            except BaseException as e:
                error = e.original if isinstance(e, TransactionError) else str(e) or type(e).__name__
                failed = running.transition(MigrationStatus.FAILED, error=error)
                await asyncio.shield(self._tracking.update(failed))
                raise
            elapsed_ms = (time.perf_counter() - started) * 1000

            completed = running.transition(
                MigrationStatus.COMPLETED,
                executed_at=self._clock(),
                execution_time_ms=elapsed_ms,
            )
            await asyncio.shield(self._tracking.update(completed))
            op.message = f"Applied {migration.id}"

        logger.info("Applied migration %s in %.1f ms", migration.id, elapsed_ms)
        return completed

    async def rollback(self, migration: Migration) -> Migration:
        """Run the rollback body of a completed migration.

        Raises:
            MigrationStateError: If the migration is not completed or has no
                rollback.
            TransactionError: The rollback failed; the migration stays
                ``completed``.
        """
        if migration.status != MigrationStatus.COMPLETED:
            raise MigrationStateError(
                f"Migration {migration.id} is {migration.status.value}; only "
                "completed migrations can be rolled back"
            )
        statements = executable_statements(migration.rollback_sql or "")
        if not statements:
            unavailable = migration.metadata.get("rollback_unavailable") or []
            detail = f": {', '.join(unavailable)}" if unavailable else ""
            raise MigrationStateError(
                f"Migration {migration.id} has no rollback available{detail}"
            )

        with track_operation(
            self._sink, EventCategory.MIGRATION, "rollback", self.COMPONENT
        ) as op:
            op.details["migration_id"] = migration.id
            await self._client.execute_in_transaction(statements)
            rolled_back = migration.transition(
                MigrationStatus.ROLLED_BACK, rolled_back_at=self._clock()
            )
            await self._tracking.update(rolled_back)
            op.message = f"Rolled back {migration.id}"

        return rolled_back

    async def pending(self, register: bool = True) -> list[Migration]:
        """Pending migrations in id order.

        Includes tracked ``pending`` rows, ``failed`` rows (so a retry keeps
        its place in the order), plus migration directories the tracking
        table has never seen.  The latter are registered as
        ``hand_authored`` unless ``register`` is false.
        """
        tracked = {m.id: m for m in await self._tracking.list_all()}
        result = [
            m for m in tracked.values()
            if m.status in (MigrationStatus.PENDING, MigrationStatus.FAILED)
        ]

        applied_in_ledger: set[str] = set()
        if self._ledger is not None:
            applied_in_ledger = {
                r.migration_name for r in await self._ledger.read_ledger() if r.is_applied
            }

        for found in scan_migrations_dir(self._dir):
            if found.name in tracked or found.name in applied_in_ledger:
                continue
            migration = Migration(
                id=found.name,
                name=found.name.split("_", 1)[-1],
                sql=found.sql,
                rollback_sql=found.rollback_sql,
                checksum=found.checksum,
                metadata={"source": MigrationSource.HAND_AUTHORED.value},
            )
            if register:
                await self._tracking.insert(migration)
            result.append(migration)

        return sorted(result, key=lambda m: m.id)

    async def run_pending(self, dry_run: bool = False) -> RunResult:
        """Apply every pending migration in order, stopping at the first failure.

        Checksums of on-disk bodies are verified against the tracking table
        before anything runs; a mismatch stops the run with nothing executed.
        """
        pending = await self.pending(register=not dry_run)
        ids = [m.id for m in pending]
        on_disk = {m.name: m for m in scan_migrations_dir(self._dir)}

        for migration in pending:
            found = on_disk.get(migration.id)
            if found is not None and found.checksum != migration.checksum:
                return RunResult(
                    success=False,
                    failed=migration.id,
                    error=(
                        f"Checksum mismatch for {migration.id}: tracked "
                        f"{migration.checksum}, on disk {found.checksum}"
                    ),
                    skipped=ids,
                    dry_run=dry_run,
                )

        if dry_run:
            return RunResult(success=True, skipped=ids, dry_run=True)

        applied: list[str] = []
        for index, migration in enumerate(pending):
            try:
                await self.apply(migration)
            except (TransactionError, DatabaseConnectionError) as e:
                logger.error("Migration %s failed: %s", migration.id, e)
                return RunResult(
                    success=False,
                    applied=applied,
                    failed=migration.id,
                    error=e.original if isinstance(e, TransactionError) else str(e),
                    skipped=ids[index + 1:],
                )
            applied.append(migration.id)

        return RunResult(success=True, applied=applied)
