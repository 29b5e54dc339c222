"""Migration generation, tracking, ledger reconciliation and execution.

Usage:
    from db_integrity.migrations import MigrationGenerator, MigrationRunner, TrackingStore
"""

from db_integrity.migrations.generator import MigrationGenerator
from db_integrity.migrations.ledger import LedgerReconciler
from db_integrity.migrations.models import (
    ALLOWED_TRANSITIONS,
    GenerationOptions,
    IssueType,
    LedgerIssue,
    Migration,
    MigrationRecord,
    MigrationSource,
    MigrationStatus,
    ReconciliationReport,
    RunResult,
)
from db_integrity.migrations.runner import MigrationRunner
from db_integrity.migrations.tracking import TrackingStore

__all__ = [
    "MigrationGenerator",
    "LedgerReconciler",
    "MigrationRunner",
    "TrackingStore",
    "Migration",
    "MigrationStatus",
    "MigrationSource",
    "ALLOWED_TRANSITIONS",
    "GenerationOptions",
    "MigrationRecord",
    "LedgerIssue",
    "IssueType",
    "ReconciliationReport",
    "RunResult",
]
