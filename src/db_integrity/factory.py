"""Profile resolution and end-to-end orchestration.

Profile mode: ``db.toml`` holds named profiles and the ``.db-profile`` lock
file remembers the last profile that connected cleanly.  The orchestration
helpers below wire config, parser, introspector, detector, generator,
reconciler and runner together; every component stays usable on its own.

Usage:
    from db_integrity.factory import check_drift, get_adapter

    result = await check_drift(profile_name="local")
    if result.success and result.report.has_drift:
        print(result.report.format_report())

    adapter = await get_adapter(profile_name="local")
"""

import logging
import os
from collections.abc import Iterable
from pathlib import Path
from urllib.parse import quote

from sqlalchemy.exc import SQLAlchemyError

from db_integrity.adapters.postgres import AsyncPostgresAdapter
from db_integrity.config.loader import load_db_config
from db_integrity.config.models import DatabaseConfig, DatabaseProfile
from db_integrity.errors import (
    DatabaseConnectionError,
    GenerationError,
    IntrospectionError,
    ParseError,
)
from db_integrity.events import EventCategory, EventSink, LoggingEventSink, track_operation
from db_integrity.migrations.generator import MigrationGenerator
from db_integrity.migrations.ledger import LedgerReconciler
from db_integrity.migrations.models import (
    GenerationOptions,
    Migration,
    ReconciliationReport,
    RunResult,
)
from db_integrity.migrations.runner import MigrationRunner
from db_integrity.migrations.tracking import TrackingStore
from db_integrity.schema.comparator import DriftDetector
from db_integrity.schema.introspector import SchemaIntrospector
from db_integrity.schema.models import DatabaseSchema, DeclarativeSchema
from db_integrity.schema.parser import parse_schema
from db_integrity.schema.report import DriftCheckResult, DriftSeverity

logger = logging.getLogger(__name__)

# Profile lock file path (current working directory)
_PROFILE_LOCK_FILE = Path.cwd() / ".db-profile"

# Columns the adapter serializes as JSONB
_JSONB_COLUMNS = ["metadata"]


# ============================================================================
# Profile Lock File Operations
# ============================================================================


class ProfileNotFoundError(Exception):
    """Raised when no database profile is configured or it does not exist."""

    pass


def read_profile_lock() -> str | None:
    """Read profile name from lock file.

    Returns:
        Profile name if lock file exists, None otherwise
    """
    if _PROFILE_LOCK_FILE.exists():
        return _PROFILE_LOCK_FILE.read_text().strip()
    return None


def write_profile_lock(profile_name: str) -> None:
    """Write profile name to lock file.

    Only call this after a successful drift check.
    """
    _PROFILE_LOCK_FILE.write_text(profile_name)


def clear_profile_lock() -> None:
    """Remove profile lock file."""
    if _PROFILE_LOCK_FILE.exists():
        _PROFILE_LOCK_FILE.unlink()


def get_active_profile_name(env_prefix: str = "") -> str:
    """Get active profile name from env var or lock file.

    Priority:
    1. ``{env_prefix}DB_PROFILE`` env var (for initial connect or CI/CD)
    2. .db-profile file (profile from previous successful connect)
    3. Raise ProfileNotFoundError

    Args:
        env_prefix: Prefix for the environment variable lookup.

    Raises:
        ProfileNotFoundError: If no profile is configured
    """
    env_var = f"{env_prefix}DB_PROFILE"
    env_profile = os.environ.get(env_var)
    if env_profile:
        return env_profile

    lock_profile = read_profile_lock()
    if lock_profile:
        return lock_profile

    raise ProfileNotFoundError(
        "No database profile configured.\n"
        f"Run: {env_var}=<name> db-integrity connect\n"
        "Profiles are defined in db.toml under [profiles.<name>]."
    )


def get_active_profile(
    profile_name: str | None = None,
    env_prefix: str = "",
    config: DatabaseConfig | None = None,
) -> tuple[str, DatabaseProfile]:
    """Resolve a profile name to its configuration.

    Raises:
        ProfileNotFoundError: If no profile is configured or the name is
            not in db.toml.
        FileNotFoundError: If db.toml is missing.
    """
    if profile_name is None:
        profile_name = get_active_profile_name(env_prefix)
    if config is None:
        config = load_db_config()

    if profile_name not in config.profiles:
        available = ", ".join(config.profiles.keys()) or "(none)"
        raise ProfileNotFoundError(
            f"Profile '{profile_name}' not found in db.toml. Available: {available}"
        )
    return profile_name, config.profiles[profile_name]


def resolve_url(profile: DatabaseProfile) -> str:
    """Resolve profile URL with password substitution."""
    url = profile.url
    if profile.db_password and "[YOUR-PASSWORD]" in url:
        url = url.replace("[YOUR-PASSWORD]", quote(profile.db_password, safe=""))
    return url


# ============================================================================
# Database Adapter Factory
# ============================================================================


async def get_adapter(
    profile_name: str | None = None,
    env_prefix: str = "",
    database_url: str | None = None,
    config: DatabaseConfig | None = None,
    jsonb_columns: list[str] | None = None,
) -> AsyncPostgresAdapter:
    """Create a new adapter.  No caching: the caller owns and closes it.

    Args:
        profile_name: Profile from db.toml (ignored when ``database_url`` is
            given).  Falls back to env var, then lock file.
        env_prefix: Prefix for the ``DB_PROFILE`` env var.
        database_url: Direct connection URL, bypassing profiles.
        config: Pre-loaded config (loaded from ./db.toml when omitted).
        jsonb_columns: Columns the adapter should treat as JSONB.

    Raises:
        ProfileNotFoundError: If no profile can be resolved.
    """
    if database_url is not None:
        return AsyncPostgresAdapter(database_url=database_url, jsonb_columns=jsonb_columns)

    if config is None:
        config = load_db_config()
    _, profile = get_active_profile(profile_name, env_prefix, config)
    return AsyncPostgresAdapter(
        database_url=resolve_url(profile),
        jsonb_columns=jsonb_columns,
        retry_attempts=config.connection.retry_attempts,
        retry_delay=config.connection.retry_delay,
        connect_timeout=config.connection.connect_timeout,
    )


# ============================================================================
# Schema Loading
# ============================================================================


def load_declared_schema(path: str | Path, sink: EventSink | None = None) -> DeclarativeSchema:
    """Read and parse the declarative schema document.

    Raises:
        ParseError: If the document is malformed.
        FileNotFoundError: If the document does not exist.
    """
    path = Path(path)
    with track_operation(
        sink or LoggingEventSink(), EventCategory.PARSING, "parse", "SchemaParser"
    ) as op:
        schema = parse_schema(path.read_text(encoding="utf-8"))
        op.details.update(
            {"file": str(path), "models": len(schema.models), "enums": len(schema.enums)}
        )
    return schema


async def introspect_database(
    url: str, config: DatabaseConfig, sink: EventSink | None = None
) -> DatabaseSchema:
    """Snapshot the live schema, skipping the ledger and tracking tables."""
    async with SchemaIntrospector(
        url,
        excluded_tables=SchemaIntrospector.EXCLUDED_TABLES_DEFAULT | config.excluded_tables,
        connect_timeout=config.connection.connect_timeout,
        retry_attempts=config.connection.retry_attempts,
        retry_delay=config.connection.retry_delay,
    ) as introspector:
        with track_operation(
            sink or LoggingEventSink(),
            EventCategory.INTROSPECTION,
            "introspect",
            "SchemaIntrospector",
        ) as op:
            schema = await introspector.introspect(config.db_schema)
            op.details.update({"tables": len(schema.tables), "enums": len(schema.enums)})
    return schema


async def _tracked_tables(adapter: AsyncPostgresAdapter, config: DatabaseConfig) -> set[str] | None:
    """Tables with migration provenance, or None when tracking was never set up."""
    table = config.migrations.tracking_table
    if not await adapter.table_exists(table, config.db_schema):
        return None
    return await TrackingStore(adapter, table).tracked_tables()


def _failure(profile_name: str | None, error: BaseException) -> DriftCheckResult:
    return DriftCheckResult(
        success=False,
        profile_name=profile_name,
        error=str(error),
        error_type=type(error).__name__,
    )


# ============================================================================
# Orchestration
# ============================================================================


async def check_drift(
    profile_name: str | None = None,
    env_prefix: str = "",
    config: DatabaseConfig | None = None,
    sink: EventSink | None = None,
    ignore_patterns: Iterable[str] | None = None,
) -> DriftCheckResult:
    """Run one detection pass against a profile.

    Parse, introspection and connection failures come back as
    ``success=False``, never as a partial report.

    Args:
        profile_name: Profile from db.toml; falls back to env var / lock file.
        env_prefix: Prefix for the ``DB_PROFILE`` env var.
        config: Pre-loaded config.
        sink: Event receiver shared by every component in the pass.
        ignore_patterns: Extra ignore regexes on top of ``[drift]``.

    Example:
        >>> result = await check_drift("local")
        >>> if not result.success:
        ...     print(result.error_type, result.error)
    """
    sink = sink or LoggingEventSink()
    try:
        if config is None:
            config = load_db_config()
        profile_name, profile = get_active_profile(profile_name, env_prefix, config)
    except (ProfileNotFoundError, FileNotFoundError) as e:
        return _failure(profile_name, e)

    url = resolve_url(profile)

    try:
        declared = load_declared_schema(config.schema_file, sink)
        actual = await introspect_database(url, config, sink)
    except (ParseError, FileNotFoundError, IntrospectionError, DatabaseConnectionError) as e:
        return _failure(profile_name, e)

    adapter = AsyncPostgresAdapter(
        database_url=url,
        retry_attempts=config.connection.retry_attempts,
        retry_delay=config.connection.retry_delay,
        connect_timeout=config.connection.connect_timeout,
    )
    try:
        tracked = await _tracked_tables(adapter, config)
    except (SQLAlchemyError, OSError) as e:
        return _failure(profile_name, e)
    finally:
        await adapter.close()

    patterns = list(config.drift.ignore_patterns) + list(ignore_patterns or [])
    report = DriftDetector(sink=sink).detect(
        declared, actual, tracked_tables=tracked, ignore_patterns=patterns
    )
    return DriftCheckResult(success=True, profile_name=profile_name, report=report)


async def connect_and_check(
    profile_name: str | None = None,
    env_prefix: str = "",
    config: DatabaseConfig | None = None,
    sink: EventSink | None = None,
) -> DriftCheckResult:
    """Check drift and lock the profile when there is no critical drift.

    This is the primary setup API.  Subsequent commands without an explicit
    profile use the locked one.
    """
    result = await check_drift(profile_name, env_prefix, config, sink)
    if not result.success:
        return result

    critical = result.report.by_severity(DriftSeverity.CRITICAL)
    if critical:
        return DriftCheckResult(
            success=False,
            profile_name=result.profile_name,
            report=result.report,
            error=f"Critical schema drift: {len(critical)} issue(s)",
            error_type="DriftError",
        )

    write_profile_lock(result.profile_name)
    return result


async def generate_migration(
    options: GenerationOptions,
    profile_name: str | None = None,
    env_prefix: str = "",
    config: DatabaseConfig | None = None,
    sink: EventSink | None = None,
) -> Migration:
    """Detect drift and generate one migration repairing every fixable drift.

    Non-fixable drifts are left out; they need a declarative edit.

    Raises:
        GenerationError: If the check failed or nothing is fixable.
    """
    sink = sink or LoggingEventSink()
    if config is None:
        config = load_db_config()

    result = await check_drift(profile_name, env_prefix, config, sink)
    if not result.success:
        raise GenerationError(f"Drift check failed: {result.error}")
    fixable = result.report.fixable_drifts
    if not fixable:
        raise GenerationError("No fixable drift detected")

    adapter = await get_adapter(result.profile_name, env_prefix, config=config, jsonb_columns=_JSONB_COLUMNS)
    try:
        tracking = None
        if not options.dry_run:
            tracking = TrackingStore(adapter, config.migrations.tracking_table)
            await tracking.ensure_table()
        generator = MigrationGenerator(config.migrations.directory, tracking=tracking, sink=sink)
        return await generator.generate_from_drifts(fixable, options)
    finally:
        await adapter.close()


async def reconcile_ledger(
    profile_name: str | None = None,
    env_prefix: str = "",
    config: DatabaseConfig | None = None,
    sink: EventSink | None = None,
    record: bool = False,
) -> tuple[ReconciliationReport, list[Migration]]:
    """Reconcile filesystem, ledger and tracking table.

    Returns:
        The report and the migrations imported into tracking (empty unless
        ``record`` is set).
    """
    if config is None:
        config = load_db_config()

    adapter = await get_adapter(profile_name, env_prefix, config=config, jsonb_columns=_JSONB_COLUMNS)
    try:
        tracking = None
        if record or await adapter.table_exists(config.migrations.tracking_table, config.db_schema):
            tracking = TrackingStore(adapter, config.migrations.tracking_table)
            await tracking.ensure_table()
        reconciler = LedgerReconciler(
            config.migrations.directory,
            adapter,
            ledger_table=config.migrations.ledger_table,
            tracking=tracking,
            sink=sink,
        )
        report = await reconciler.reconcile()
        recorded = await reconciler.record(report) if record else []
        return report, recorded
    finally:
        await adapter.close()


async def _runner(
    adapter: AsyncPostgresAdapter, config: DatabaseConfig, sink: EventSink | None
) -> MigrationRunner:
    tracking = TrackingStore(adapter, config.migrations.tracking_table)
    await tracking.ensure_table()
    ledger = LedgerReconciler(
        config.migrations.directory,
        adapter,
        ledger_table=config.migrations.ledger_table,
        sink=sink,
    )
    return MigrationRunner(
        adapter, tracking, config.migrations.directory, ledger=ledger, sink=sink
    )


async def run_pending(
    profile_name: str | None = None,
    env_prefix: str = "",
    config: DatabaseConfig | None = None,
    sink: EventSink | None = None,
    dry_run: bool = False,
) -> RunResult:
    """Apply every pending migration for a profile."""
    if config is None:
        config = load_db_config()

    adapter = await get_adapter(profile_name, env_prefix, config=config, jsonb_columns=_JSONB_COLUMNS)
    try:
        runner = await _runner(adapter, config, sink)
        return await runner.run_pending(dry_run=dry_run)
    finally:
        await adapter.close()


async def rollback_migration(
    migration_id: str,
    profile_name: str | None = None,
    env_prefix: str = "",
    config: DatabaseConfig | None = None,
    sink: EventSink | None = None,
) -> Migration:
    """Roll back one completed migration by id.

    Raises:
        KeyError: If the id is not in the tracking table.
        MigrationStateError: If it is not completed or has no rollback.
        TransactionError: If the rollback statements failed.
    """
    if config is None:
        config = load_db_config()

    adapter = await get_adapter(profile_name, env_prefix, config=config, jsonb_columns=_JSONB_COLUMNS)
    try:
        runner = await _runner(adapter, config, sink)
        migration = await runner.tracking.get(migration_id)
        if migration is None:
            raise KeyError(f"Migration '{migration_id}' is not tracked")
        return await runner.rollback(migration)
    finally:
        await adapter.close()
