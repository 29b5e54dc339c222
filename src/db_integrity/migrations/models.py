"""Migration, ledger and run-result models."""

import hashlib
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from db_integrity.errors import MigrationStateError


def compute_checksum(body: str | bytes) -> str:
    """sha256 hex digest of a migration body."""
    data = body.encode("utf-8") if isinstance(body, str) else body
    return hashlib.sha256(data).hexdigest()


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


# ============================================================================
# Migration
# ============================================================================


class MigrationStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    ROLLED_BACK = "rolled_back"


ALLOWED_TRANSITIONS: dict[MigrationStatus, frozenset[MigrationStatus]] = {
    MigrationStatus.PENDING: frozenset({MigrationStatus.RUNNING}),
    MigrationStatus.RUNNING: frozenset({MigrationStatus.COMPLETED, MigrationStatus.FAILED}),
    MigrationStatus.FAILED: frozenset({MigrationStatus.RUNNING}),
    MigrationStatus.COMPLETED: frozenset({MigrationStatus.ROLLED_BACK}),
    MigrationStatus.ROLLED_BACK: frozenset(),
}


class MigrationSource(str, Enum):
    DRIFT_REPORT = "drift_report"
    SCHEMA_DIFF = "schema_diff"
    HAND_AUTHORED = "hand_authored"
    LEDGER = "ledger"


class Migration(BaseModel):
    """One versioned migration.

    Status changes go through ``transition()``, which returns a new
    instance and refuses anything outside ``ALLOWED_TRANSITIONS``.
    """

    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    sql: str
    rollback_sql: str | None = None
    checksum: str
    status: MigrationStatus = MigrationStatus.PENDING
    created_at: datetime = Field(default_factory=utc_now)
    executed_at: datetime | None = None
    rolled_back_at: datetime | None = None
    execution_time_ms: float | None = None
    error: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)

    @property
    def created_tables(self) -> list[str]:
        return list(self.metadata.get("created_tables", []))

    def transition(self, status: MigrationStatus, **updates: Any) -> "Migration":
        """Move to ``status``, applying ``updates`` to the copy.

        Raises:
            MigrationStateError: If ``self.status -> status`` is not allowed.
        """
        if status not in ALLOWED_TRANSITIONS[self.status]:
            raise MigrationStateError(
                f"Migration {self.id}: cannot move from "
                f"{self.status.value} to {status.value}"
            )
        return self.model_copy(update={"status": status, **updates})


class GenerationOptions(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str = "schema_sync"
    dry_run: bool = False
    include_rollback: bool = True
    atomic: bool = False


# ============================================================================
# Ledger
# ============================================================================


class MigrationRecord(BaseModel):
    """One row of the external migration ledger (read-only)."""

    model_config = ConfigDict(frozen=True)

    id: str
    checksum: str
    migration_name: str
    started_at: datetime | None = None
    finished_at: datetime | None = None
    rolled_back_at: datetime | None = None
    applied_steps_count: int = 0
    logs: str | None = None

    @property
    def is_applied(self) -> bool:
        return self.finished_at is not None and self.rolled_back_at is None

    @property
    def is_failed(self) -> bool:
        """Started but never finished or rolled back."""
        return self.finished_at is None and self.rolled_back_at is None


class FilesystemMigration(BaseModel):
    """A migration directory found on disk."""

    model_config = ConfigDict(frozen=True)

    name: str
    checksum: str
    sql: str
    rollback_sql: str | None = None


class IssueType(str, Enum):
    MISSING_FILES = "missing_files"
    UNAPPLIED = "unapplied"
    CHECKSUM_MISMATCH = "checksum_mismatch"
    UNTRACKED = "untracked"
    FAILED = "failed"


class LedgerIssue(BaseModel):
    model_config = ConfigDict(frozen=True)

    type: IssueType
    migration_name: str
    description: str
    expected: str | None = None
    actual: str | None = None


class ReconciliationReport(BaseModel):
    """Every ledger/filesystem/tracking anomaly found in one pass."""

    model_config = ConfigDict(frozen=True)

    issues: tuple[LedgerIssue, ...] = ()
    filesystem_count: int = 0
    ledger_count: int = 0
    tracking_count: int | None = None

    @property
    def is_consistent(self) -> bool:
        return not self.issues

    def by_type(self, issue_type: IssueType) -> list[LedgerIssue]:
        return [i for i in self.issues if i.type == issue_type]


# ============================================================================
# Run Result
# ============================================================================


class RunResult(BaseModel):
    """Outcome of ``MigrationRunner.run_pending``."""

    success: bool
    applied: list[str] = Field(default_factory=list)
    failed: str | None = None
    error: str | None = None
    skipped: list[str] = Field(default_factory=list)
    dry_run: bool = False
