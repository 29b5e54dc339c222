"""db-integrity: Schema drift detection and migration synchronization.

Compares a declarative schema document against a live PostgreSQL catalog,
classifies every discrepancy by severity, generates reversible migrations,
and reconciles the migration ledger with the migration directory.

Usage:
    from db_integrity import parse_schema, SchemaIntrospector, DriftDetector
    from db_integrity import MigrationGenerator, GenerationOptions
    from db_integrity import check_drift, load_db_config
"""

__version__ = "0.1.0"

# Adapters
from db_integrity.adapters.base import DatabaseClient
from db_integrity.adapters.postgres import AsyncPostgresAdapter

# Config
from db_integrity.config.loader import load_db_config
from db_integrity.config.models import DatabaseConfig, DatabaseProfile

# Errors
from db_integrity.errors import (
    DatabaseConnectionError,
    GenerationError,
    IntegrityError,
    IntrospectionError,
    MigrationStateError,
    ParseError,
    TransactionError,
)

# Events
from db_integrity.events import (
    EventCategory,
    EventSink,
    IntegrityEvent,
    LoggingEventSink,
    NullEventSink,
    RecordingEventSink,
)

# Factory
from db_integrity.factory import (
    ProfileNotFoundError,
    check_drift,
    connect_and_check,
    get_adapter,
    reconcile_ledger,
    resolve_url,
    run_pending,
)

# Migrations
from db_integrity.migrations import (
    GenerationOptions,
    LedgerReconciler,
    Migration,
    MigrationGenerator,
    MigrationRunner,
    MigrationStatus,
    TrackingStore,
)

# Schema
from db_integrity.schema import (
    DatabaseSchema,
    DeclarativeSchema,
    DriftDetector,
    DriftReport,
    DriftSeverity,
    SchemaIntrospector,
    parse_schema,
)

__all__ = [
    # Adapters
    "DatabaseClient",
    "AsyncPostgresAdapter",
    # Config
    "load_db_config",
    "DatabaseProfile",
    "DatabaseConfig",
    # Errors
    "IntegrityError",
    "ParseError",
    "IntrospectionError",
    "DatabaseConnectionError",
    "GenerationError",
    "TransactionError",
    "MigrationStateError",
    # Events
    "EventCategory",
    "EventSink",
    "IntegrityEvent",
    "LoggingEventSink",
    "NullEventSink",
    "RecordingEventSink",
    # Factory
    "get_adapter",
    "check_drift",
    "connect_and_check",
    "reconcile_ledger",
    "run_pending",
    "ProfileNotFoundError",
    "resolve_url",
    # Migrations
    "MigrationGenerator",
    "MigrationRunner",
    "LedgerReconciler",
    "TrackingStore",
    "Migration",
    "MigrationStatus",
    "GenerationOptions",
    # Schema
    "parse_schema",
    "SchemaIntrospector",
    "DriftDetector",
    "DriftReport",
    "DriftSeverity",
    "DatabaseSchema",
    "DeclarativeSchema",
]
