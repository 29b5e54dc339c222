"""Migration ledger reconciliation.

Three records of "what has been applied" can disagree: the migration
directory on disk, the external ledger table (``_prisma_migrations``), and
this library's own tracking table.  ``LedgerReconciler.reconcile()`` reports
every disagreement as a ``LedgerIssue`` value and resolves nothing; the
only write path is the explicit ``record()``.

Usage:
    from db_integrity.migrations.ledger import LedgerReconciler

    reconciler = LedgerReconciler("prisma/migrations", adapter, tracking=store)
    report = await reconciler.reconcile()
    for issue in report.issues:
        print(issue.type.value, issue.migration_name)
"""

import logging
from pathlib import Path

from db_integrity.adapters.base import DatabaseClient
from db_integrity.events import (
    EventCategory,
    EventLevel,
    EventSink,
    LoggingEventSink,
    track_operation,
)
from db_integrity.migrations.generator import MIGRATION_DIR_RE, MIGRATION_FILE, ROLLBACK_FILE
from db_integrity.migrations.models import (
    FilesystemMigration,
    IssueType,
    LedgerIssue,
    Migration,
    MigrationRecord,
    MigrationSource,
    MigrationStatus,
    ReconciliationReport,
    compute_checksum,
)
from db_integrity.migrations.tracking import TrackingStore
from db_integrity.schema.ddl import quote_ident

logger = logging.getLogger(__name__)

DEFAULT_LEDGER_TABLE = "_prisma_migrations"

_LEDGER_COLUMNS = (
    "id, checksum, migration_name, started_at, finished_at, rolled_back_at, "
    "applied_steps_count, logs"
)


def scan_migrations_dir(migrations_dir: str | Path) -> list[FilesystemMigration]:
    """List ``<14-digit stamp>_<slug>/migration.sql`` folders in name order.

    The checksum is the sha256 of the raw ``migration.sql`` bytes, the same
    way the ledger computes it.
    """
    root = Path(migrations_dir)
    if not root.is_dir():
        return []

    found: list[FilesystemMigration] = []
    for entry in sorted(root.iterdir(), key=lambda p: p.name):
        if not (entry.is_dir() and MIGRATION_DIR_RE.match(entry.name)):
            continue
        body_path = entry / MIGRATION_FILE
        if not body_path.is_file():
            logger.debug("Skipping %s: no %s", entry.name, MIGRATION_FILE)
            continue
        raw = body_path.read_bytes()
        down_path = entry / ROLLBACK_FILE
        found.append(
            FilesystemMigration(
                name=entry.name,
                checksum=compute_checksum(raw),
                sql=raw.decode("utf-8"),
                rollback_sql=down_path.read_text(encoding="utf-8") if down_path.is_file() else None,
            )
        )
    return found


class LedgerReconciler:
    """Cross-checks filesystem, ledger table and tracking table.

    Args:
        migrations_dir: Migration directory root.
        client: Database client used for reading the ledger.
        ledger_table: External ledger table name.
        tracking: Optional tracking store; enables ``untracked`` issues.
        sink: Event receiver; defaults to ``LoggingEventSink``.
    """

    COMPONENT = "LedgerReconciler"

    def __init__(
        self,
        migrations_dir: str | Path,
        client: DatabaseClient,
        ledger_table: str = DEFAULT_LEDGER_TABLE,
        tracking: TrackingStore | None = None,
        sink: EventSink | None = None,
    ) -> None:
        self._dir = Path(migrations_dir)
        self._client = client
        self._ledger_table = ledger_table
        self._tracking = tracking
        self._sink = sink or LoggingEventSink()

    def scan_filesystem(self) -> list[FilesystemMigration]:
        return scan_migrations_dir(self._dir)

    async def read_ledger(self) -> list[MigrationRecord]:
        """Return the effective ledger: latest row per ``migration_name``.

        A missing ledger table reads as an empty ledger.
        """
        if not await self._client.table_exists(self._ledger_table):
            logger.info("Ledger table %s does not exist", self._ledger_table)
            return []

        rows = await self._client.select(
            quote_ident(self._ledger_table), _LEDGER_COLUMNS, order_by="started_at"
        )
        latest: dict[str, MigrationRecord] = {}
        for row in rows:
            record = MigrationRecord.model_validate(row)
            latest[record.migration_name] = record
        return [latest[name] for name in sorted(latest)]

    async def reconcile(self) -> ReconciliationReport:
        """Collect every ledger anomaly.  Nothing is auto-resolved."""
        with track_operation(
            self._sink, EventCategory.RECONCILIATION, "reconcile", self.COMPONENT
        ) as op:
            filesystem = {m.name: m for m in self.scan_filesystem()}
            ledger = await self.read_ledger()
            applied = {r.migration_name: r for r in ledger if r.is_applied}
            failed = {r.migration_name: r for r in ledger if r.is_failed}

            issues: list[LedgerIssue] = []

            for name in sorted(applied):
                if name not in filesystem:
                    issues.append(
                        LedgerIssue(
                            type=IssueType.MISSING_FILES,
                            migration_name=name,
                            description=f"Migration '{name}' is applied but its directory is missing",
                        )
                    )

            for name in sorted(failed):
                logs = failed[name].logs
                detail = f": {logs.strip()}" if logs and logs.strip() else ""
                issues.append(
                    LedgerIssue(
                        type=IssueType.FAILED,
                        migration_name=name,
                        description=f"Migration '{name}' started but never finished{detail}",
                    )
                )

            for name in sorted(filesystem):
                record = applied.get(name)
                if record is None and name in failed:
                    continue
                if record is None:
                    issues.append(
                        LedgerIssue(
                            type=IssueType.UNAPPLIED,
                            migration_name=name,
                            description=f"Migration '{name}' exists on disk but is not applied",
                        )
                    )
                elif record.checksum != filesystem[name].checksum:
                    issues.append(
                        LedgerIssue(
                            type=IssueType.CHECKSUM_MISMATCH,
                            migration_name=name,
                            description=f"Migration '{name}' was modified after it was applied",
                            expected=record.checksum,
                            actual=filesystem[name].checksum,
                        )
                    )

            tracking_count = None
            if self._tracking is not None:
                tracked = {m.id for m in await self._tracking.list_all()}
                tracking_count = len(tracked)
                for name in sorted(applied):
                    if name not in tracked:
                        issues.append(
                            LedgerIssue(
                                type=IssueType.UNTRACKED,
                                migration_name=name,
                                description=f"Migration '{name}' is applied but absent from the tracking table",
                            )
                        )

            report = ReconciliationReport(
                issues=tuple(issues),
                filesystem_count=len(filesystem),
                ledger_count=len(applied),
                tracking_count=tracking_count,
            )
            op.details.update(
                {
                    "issues": len(issues),
                    "filesystem": len(filesystem),
                    "ledger": len(applied),
                }
            )
            op.message = f"Found {len(issues)} ledger issue(s)"
            if issues:
                op.level = EventLevel.WARN

        return report

    async def record(self, report: ReconciliationReport) -> list[Migration]:
        """Import ``untracked`` ledger entries into the tracking table.

        Each becomes a ``completed`` tracking row with source ``ledger``.

        Raises:
            ValueError: If no tracking store was configured.
        """
        if self._tracking is None:
            raise ValueError("record() requires a tracking store")

        untracked = report.by_type(IssueType.UNTRACKED)
        if not untracked:
            return []

        with track_operation(
            self._sink, EventCategory.RECONCILIATION, "record", self.COMPONENT
        ) as op:
            filesystem = {m.name: m for m in self.scan_filesystem()}
            ledger = {r.migration_name: r for r in await self.read_ledger()}

            recorded: list[Migration] = []
            for issue in untracked:
                record = ledger.get(issue.migration_name)
                if record is None or not record.is_applied:
                    continue
                on_disk = filesystem.get(issue.migration_name)
                migration = Migration(
                    id=issue.migration_name,
                    name=issue.migration_name.split("_", 1)[-1],
                    sql=on_disk.sql if on_disk else "",
                    rollback_sql=on_disk.rollback_sql if on_disk else None,
                    checksum=record.checksum,
                    status=MigrationStatus.COMPLETED,
                    executed_at=record.finished_at,
                    metadata={"source": MigrationSource.LEDGER.value},
                )
                await self._tracking.insert(migration)
                recorded.append(migration)

            op.details["recorded"] = len(recorded)
            op.message = f"Recorded {len(recorded)} ledger migration(s)"

        return recorded
