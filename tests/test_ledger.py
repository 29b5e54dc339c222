"""Tests for ledger reconciliation across filesystem, ledger and tracking table."""

from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

from db_integrity.events import EventCategory, EventLevel, NullEventSink, RecordingEventSink
from db_integrity.migrations.ledger import (
    DEFAULT_LEDGER_TABLE,
    LedgerReconciler,
    scan_migrations_dir,
)
from db_integrity.migrations.models import (
    IssueType,
    LedgerIssue,
    MigrationSource,
    MigrationStatus,
    ReconciliationReport,
    compute_checksum,
)
from db_integrity.migrations.tracking import TrackingStore


STARTED = datetime(2024, 1, 1, tzinfo=timezone.utc)


def _write_migration(root: Path, name: str, body: str, down: str | None = None) -> str:
    target = root / name
    target.mkdir(parents=True)
    (target / "migration.sql").write_text(body)
    if down is not None:
        (target / "down.sql").write_text(down)
    return compute_checksum(body)


def _ledger_row(
    name: str,
    checksum: str,
    offset: int = 0,
    rolled_back: bool = False,
    failed: bool = False,
) -> dict:
    started = STARTED + timedelta(minutes=offset)
    return {
        "id": f"row-{name}-{offset}",
        "checksum": checksum,
        "migration_name": name,
        "started_at": started,
        "finished_at": None if failed else started + timedelta(seconds=1),
        "rolled_back_at": started + timedelta(seconds=2) if rolled_back else None,
        "applied_steps_count": 0 if failed else 1,
        "logs": "ERROR: relation \"post\" already exists" if failed else None,
    }


class TestScanMigrationsDir:
    def test_only_stamped_directories_with_body(self, tmp_path: Path) -> None:
        _write_migration(tmp_path, "20240102000000_b", "SELECT 2;", down="SELECT -2;")
        _write_migration(tmp_path, "20240101000000_a", "SELECT 1;")
        (tmp_path / "20240103000000_empty").mkdir()
        (tmp_path / "notes").mkdir()
        (tmp_path / "migration_lock.toml").write_text('provider = "postgresql"')

        found = scan_migrations_dir(tmp_path)
        assert [m.name for m in found] == ["20240101000000_a", "20240102000000_b"]
        assert found[0].checksum == compute_checksum("SELECT 1;")
        assert found[0].rollback_sql is None
        assert found[1].rollback_sql == "SELECT -2;"

    def test_missing_directory(self, tmp_path: Path) -> None:
        assert scan_migrations_dir(tmp_path / "nope") == []


class TestReadLedger:
    @pytest.mark.asyncio
    async def test_missing_table_reads_empty(self, tmp_path: Path, fake_client) -> None:
        reconciler = LedgerReconciler(tmp_path, fake_client, sink=NullEventSink())
        assert await reconciler.read_ledger() == []

    @pytest.mark.asyncio
    async def test_latest_row_wins(self, tmp_path: Path, fake_client) -> None:
        """A re-applied migration is represented by its newest row."""
        fake_client.tables[DEFAULT_LEDGER_TABLE] = [
            _ledger_row("20240101000000_a", "new", offset=5),
            _ledger_row("20240101000000_a", "old", offset=0, rolled_back=True),
        ]
        reconciler = LedgerReconciler(tmp_path, fake_client, sink=NullEventSink())
        records = await reconciler.read_ledger()
        assert len(records) == 1
        assert records[0].checksum == "new"
        assert records[0].is_applied


class TestReconcile:
    @pytest.mark.asyncio
    async def test_consistent(self, tmp_path: Path, fake_client) -> None:
        checksum = _write_migration(tmp_path, "20240101000000_a", "SELECT 1;")
        fake_client.tables[DEFAULT_LEDGER_TABLE] = [_ledger_row("20240101000000_a", checksum)]
        report = await LedgerReconciler(tmp_path, fake_client, sink=NullEventSink()).reconcile()
        assert report.is_consistent
        assert report.filesystem_count == 1
        assert report.ledger_count == 1
        assert report.tracking_count is None

    @pytest.mark.asyncio
    async def test_checksum_mismatch(self, tmp_path: Path, fake_client) -> None:
        """A body edited after it was applied is one checksum_mismatch issue."""
        original = compute_checksum("SELECT 1;")
        edited = _write_migration(tmp_path, "20240101000000_a", "SELECT 1; -- edited")
        fake_client.tables[DEFAULT_LEDGER_TABLE] = [_ledger_row("20240101000000_a", original)]

        report = await LedgerReconciler(tmp_path, fake_client, sink=NullEventSink()).reconcile()
        assert len(report.issues) == 1
        issue = report.issues[0]
        assert issue.type == IssueType.CHECKSUM_MISMATCH
        assert issue.migration_name == "20240101000000_a"
        assert issue.expected == original
        assert issue.actual == edited

    @pytest.mark.asyncio
    async def test_missing_files_and_unapplied(self, tmp_path: Path, fake_client) -> None:
        _write_migration(tmp_path, "20240102000000_b", "SELECT 2;")
        fake_client.tables[DEFAULT_LEDGER_TABLE] = [_ledger_row("20240101000000_a", "abc")]

        report = await LedgerReconciler(tmp_path, fake_client, sink=NullEventSink()).reconcile()
        assert [(i.type, i.migration_name) for i in report.issues] == [
            (IssueType.MISSING_FILES, "20240101000000_a"),
            (IssueType.UNAPPLIED, "20240102000000_b"),
        ]

    @pytest.mark.asyncio
    async def test_rolled_back_entry_counts_as_unapplied(self, tmp_path: Path, fake_client) -> None:
        checksum = _write_migration(tmp_path, "20240101000000_a", "SELECT 1;")
        fake_client.tables[DEFAULT_LEDGER_TABLE] = [
            _ledger_row("20240101000000_a", checksum, rolled_back=True)
        ]
        report = await LedgerReconciler(tmp_path, fake_client, sink=NullEventSink()).reconcile()
        assert [i.type for i in report.issues] == [IssueType.UNAPPLIED]

    @pytest.mark.asyncio
    async def test_unfinished_entry_reported_as_failed(self, tmp_path: Path, fake_client) -> None:
        """A ledger row that never finished is not an applied migration."""
        checksum = _write_migration(tmp_path, "20240101000000_a", "CREATE TABLE post (id integer);")
        fake_client.tables[DEFAULT_LEDGER_TABLE] = [
            _ledger_row("20240101000000_a", checksum, failed=True)
        ]
        reconciler = LedgerReconciler(tmp_path, fake_client, sink=NullEventSink())
        records = await reconciler.read_ledger()
        assert not records[0].is_applied
        assert records[0].is_failed

        report = await reconciler.reconcile()
        assert [(i.type, i.migration_name) for i in report.issues] == [
            (IssueType.FAILED, "20240101000000_a"),
        ]
        assert 'relation "post" already exists' in report.issues[0].description
        assert report.ledger_count == 0

    @pytest.mark.asyncio
    async def test_all_issues_collected(self, tmp_path: Path, fake_client) -> None:
        """Reconciliation reports every issue rather than stopping at the first."""
        _write_migration(tmp_path, "20240101000000_a", "edited")
        _write_migration(tmp_path, "20240103000000_c", "SELECT 3;")
        fake_client.tables[DEFAULT_LEDGER_TABLE] = [
            _ledger_row("20240101000000_a", "stale"),
            _ledger_row("20240102000000_b", "gone", offset=1),
        ]
        report = await LedgerReconciler(tmp_path, fake_client, sink=NullEventSink()).reconcile()
        assert len(report.by_type(IssueType.CHECKSUM_MISMATCH)) == 1
        assert len(report.by_type(IssueType.MISSING_FILES)) == 1
        assert len(report.by_type(IssueType.UNAPPLIED)) == 1

    @pytest.mark.asyncio
    async def test_reconcile_is_read_only(self, tmp_path: Path, fake_client) -> None:
        _write_migration(tmp_path, "20240101000000_a", "SELECT 1;")
        fake_client.tables[DEFAULT_LEDGER_TABLE] = [_ledger_row("20240101000000_a", "stale")]
        before = [dict(r) for r in fake_client.tables[DEFAULT_LEDGER_TABLE]]
        await LedgerReconciler(tmp_path, fake_client, sink=NullEventSink()).reconcile()
        assert fake_client.tables[DEFAULT_LEDGER_TABLE] == before
        assert fake_client.executed == []
        assert fake_client.transactions == []

    @pytest.mark.asyncio
    async def test_event_level(self, tmp_path: Path, fake_client) -> None:
        _write_migration(tmp_path, "20240101000000_a", "SELECT 1;")
        sink = RecordingEventSink()
        await LedgerReconciler(tmp_path, fake_client, sink=sink).reconcile()
        events = sink.by_category(EventCategory.RECONCILIATION)
        assert len(events) == 1
        assert events[0].level == EventLevel.WARN
        assert events[0].details["issues"] == 1


class TestTrackingReconciliation:
    @pytest.mark.asyncio
    async def test_untracked_then_record(self, tmp_path: Path, fake_client) -> None:
        checksum = _write_migration(tmp_path, "20240101000000_init", "SELECT 1;", down="SELECT 0;")
        fake_client.tables[DEFAULT_LEDGER_TABLE] = [_ledger_row("20240101000000_init", checksum)]
        store = TrackingStore(fake_client)
        reconciler = LedgerReconciler(tmp_path, fake_client, tracking=store, sink=NullEventSink())

        report = await reconciler.reconcile()
        assert [i.type for i in report.issues] == [IssueType.UNTRACKED]
        assert report.tracking_count == 0

        recorded = await reconciler.record(report)
        assert len(recorded) == 1
        migration = await store.get("20240101000000_init")
        assert migration.status == MigrationStatus.COMPLETED
        assert migration.name == "init"
        assert migration.checksum == checksum
        assert migration.rollback_sql == "SELECT 0;"
        assert migration.metadata["source"] == MigrationSource.LEDGER.value

        assert (await reconciler.reconcile()).is_consistent

    @pytest.mark.asyncio
    async def test_record_without_tracking(self, tmp_path: Path, fake_client) -> None:
        reconciler = LedgerReconciler(tmp_path, fake_client, sink=NullEventSink())
        report = await reconciler.reconcile()
        with pytest.raises(ValueError):
            await reconciler.record(report)

    @pytest.mark.asyncio
    async def test_failed_entry_is_not_recorded(self, tmp_path: Path, fake_client) -> None:
        checksum = _write_migration(tmp_path, "20240101000000_a", "SELECT 1;")
        fake_client.tables[DEFAULT_LEDGER_TABLE] = [
            _ledger_row("20240101000000_a", checksum, failed=True)
        ]
        store = TrackingStore(fake_client)
        reconciler = LedgerReconciler(tmp_path, fake_client, tracking=store, sink=NullEventSink())

        report = await reconciler.reconcile()
        assert report.by_type(IssueType.UNTRACKED) == []
        assert await reconciler.record(report) == []
        forced = ReconciliationReport(
            issues=(
                LedgerIssue(
                    type=IssueType.UNTRACKED,
                    migration_name="20240101000000_a",
                    description="untracked",
                ),
            )
        )
        assert await reconciler.record(forced) == []
        assert await store.get("20240101000000_a") is None

    @pytest.mark.asyncio
    async def test_record_nothing_to_do(self, tmp_path: Path, fake_client) -> None:
        reconciler = LedgerReconciler(
            tmp_path, fake_client, tracking=TrackingStore(fake_client), sink=NullEventSink()
        )
        assert await reconciler.record(await reconciler.reconcile()) == []
