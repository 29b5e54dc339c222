"""CLI for schema drift detection and migration management.

Usage:
    DB_PROFILE=local db-integrity connect
    db-integrity status
    db-integrity disconnect
    db-integrity profiles
    db-integrity drift --ignore '^audit_'
    db-integrity generate --name add_user_name --dry-run
    db-integrity migrate
    db-integrity rollback 20240101120000_add_user_name
    db-integrity ledger --record

Commands:
    connect    - Check connectivity and drift, lock the profile
    status     - Show current connection status
    disconnect - Remove the profile lock written by connect
    profiles   - List available profiles
    drift      - Report schema drift for the current profile
    generate   - Generate a migration repairing fixable drift
    migrate    - Run pending migrations
    rollback   - Roll back a completed migration
    ledger     - Reconcile migration directory, ledger and tracking table
"""

import argparse
import asyncio
import logging
import sys

from rich.console import Console
from rich.table import Table

from db_integrity.config.loader import load_db_config
from db_integrity.errors import GenerationError, IntegrityError
from db_integrity.factory import (
    ProfileNotFoundError,
    check_drift,
    clear_profile_lock,
    connect_and_check,
    generate_migration,
    read_profile_lock,
    reconcile_ledger,
    rollback_migration,
    run_pending,
)
from db_integrity.migrations.models import GenerationOptions
from db_integrity.schema.report import DriftReport, DriftSeverity

console = Console()

_SEVERITY_STYLES = {
    DriftSeverity.CRITICAL: "bold red",
    DriftSeverity.HIGH: "red",
    DriftSeverity.MEDIUM: "yellow",
    DriftSeverity.LOW: "dim",
}


# ============================================================================
# Rendering helpers
# ============================================================================


def _print_report(report: DriftReport) -> None:
    """Render drifts as a rich table followed by recommendations."""
    if not report.has_drift:
        console.print("[bold green]v[/bold green] No schema drift detected")
        return

    table = Table(title=f"Schema Drift ({report.summary.total_drifts})", header_style="bold")
    table.add_column("Severity")
    table.add_column("Type")
    table.add_column("Object", style="cyan")
    table.add_column("Description")
    table.add_column("Fix")

    for drift in report.drifts:
        style = _SEVERITY_STYLES[drift.severity]
        fix = drift.fix_sql or drift.declarative_fix or ""
        table.add_row(
            f"[{style}]{drift.severity.value}[/{style}]",
            drift.type.value,
            drift.object,
            drift.description,
            fix,
        )
    console.print(table)

    summary = report.summary
    console.print(
        f"\n[bold]{summary.fixable}[/bold] fixable, "
        f"[bold]{summary.requires_manual_intervention}[/bold] need manual intervention"
    )

    if report.recommendations:
        console.print("\n[bold]Recommendations:[/bold]")
        for rec in report.recommendations:
            console.print(f"  {rec.priority}. {rec.action} [dim]({rec.reason})[/dim]")
            for command in rec.commands:
                console.print(f"       [cyan]{command}[/cyan]")


# ============================================================================
# Async command implementations
# ============================================================================


async def _async_connect(args: argparse.Namespace) -> int:
    """Async implementation for connect command.

    Returns:
        0 on success, 1 on failure or critical drift.
    """
    env_prefix = getattr(args, "env_prefix", "")
    previous_profile = read_profile_lock()

    console.print("Connecting to database...", style="dim")

    result = await connect_and_check(env_prefix=env_prefix)

    if result.success:
        console.print()
        console.print(
            f"[bold green]v[/bold green] Connected to profile: "
            f"[bold cyan]{result.profile_name}[/bold cyan]"
        )
        drift_count = result.report.summary.total_drifts
        if drift_count:
            console.print(f"  Schema drift: [yellow]{drift_count} non-critical issue(s)[/yellow]")
        else:
            console.print("  Schema drift: [green]NONE[/green]")

        if previous_profile and previous_profile != result.profile_name:
            console.print(
                f"\n[dim]Switched from[/dim] [bold]{previous_profile}[/bold] "
                f"[dim]to[/dim] [bold cyan]{result.profile_name}[/bold cyan]"
            )
        return 0

    console.print()
    console.print(f"[bold red]x[/bold red] {result.error}")
    if result.report:
        _print_report(result.report)
    return 1


async def _async_drift(args: argparse.Namespace) -> int:
    """Async implementation for drift command.

    Returns:
        0 when no drift, 1 when drift was found or the check failed.
    """
    result = await check_drift(
        env_prefix=getattr(args, "env_prefix", ""),
        ignore_patterns=args.ignore or [],
    )

    if not result.success:
        console.print(f"[bold red]x[/bold red] {result.error_type}: {result.error}")
        return 1

    if args.json:
        console.print_json(result.report.model_dump_json())
    else:
        console.print(f"Profile: [bold cyan]{result.profile_name}[/bold cyan]\n")
        _print_report(result.report)

    return 1 if result.report.has_drift else 0


async def _async_generate(args: argparse.Namespace) -> int:
    """Async implementation for generate command."""
    options = GenerationOptions(
        name=args.name,
        dry_run=args.dry_run,
        include_rollback=not args.no_rollback,
        atomic=args.atomic,
    )

    try:
        migration = await generate_migration(options, env_prefix=getattr(args, "env_prefix", ""))
    except GenerationError as e:
        console.print(f"[bold red]x[/bold red] {e}")
        return 1

    verb = "Would generate" if options.dry_run else "Generated"
    console.print(f"[bold green]v[/bold green] {verb} migration [bold cyan]{migration.id}[/bold cyan]")
    console.print(f"\n[bold]migration.sql[/bold]\n{migration.sql}")
    if migration.rollback_sql:
        console.print(f"[bold]down.sql[/bold]\n{migration.rollback_sql}")
    unavailable = migration.metadata.get("rollback_unavailable") or []
    if unavailable:
        console.print("[yellow]Rollback unavailable for:[/yellow]")
        for item in unavailable:
            console.print(f"  - {item}")
    return 0


async def _async_migrate(args: argparse.Namespace) -> int:
    """Async implementation for migrate command."""
    result = await run_pending(env_prefix=getattr(args, "env_prefix", ""), dry_run=args.dry_run)

    if result.dry_run and result.success:
        if not result.skipped:
            console.print("No pending migrations.")
        for migration_id in result.skipped:
            console.print(f"  [dim]would apply[/dim] {migration_id}")
        return 0

    for migration_id in result.applied:
        console.print(f"[bold green]v[/bold green] {migration_id}")

    if not result.success:
        console.print(f"[bold red]x[/bold red] {result.failed}: {result.error}")
        if result.skipped:
            console.print(f"[dim]Not run: {', '.join(result.skipped)}[/dim]")
        return 1

    if not result.applied:
        console.print("No pending migrations.")
    return 0


async def _async_rollback(args: argparse.Namespace) -> int:
    """Async implementation for rollback command."""
    try:
        migration = await rollback_migration(
            args.migration_id, env_prefix=getattr(args, "env_prefix", "")
        )
    except (KeyError, IntegrityError) as e:
        message = e.args[0] if isinstance(e, KeyError) else str(e)
        console.print(f"[bold red]x[/bold red] {message}")
        return 1

    console.print(f"[bold green]v[/bold green] Rolled back [bold cyan]{migration.id}[/bold cyan]")
    return 0


async def _async_ledger(args: argparse.Namespace) -> int:
    """Async implementation for ledger command.

    Returns:
        0 when consistent (or every issue was recorded), 1 otherwise.
    """
    report, recorded = await reconcile_ledger(
        env_prefix=getattr(args, "env_prefix", ""), record=args.record
    )

    console.print(
        f"Filesystem: {report.filesystem_count}  Ledger: {report.ledger_count}  "
        f"Tracking: {report.tracking_count if report.tracking_count is not None else '-'}"
    )

    if report.is_consistent:
        console.print("[bold green]v[/bold green] Ledger is consistent")
        return 0

    table = Table(title="Ledger Issues", header_style="bold")
    table.add_column("Issue")
    table.add_column("Migration", style="cyan")
    table.add_column("Description")
    for issue in report.issues:
        table.add_row(issue.type.value, issue.migration_name, issue.description)
    console.print(table)

    if recorded:
        console.print(f"\n[green]Recorded {len(recorded)} migration(s) into tracking.[/green]")

    remaining = len(report.issues) - len(recorded)
    return 0 if remaining == 0 else 1


# ============================================================================
# Sync command wrappers (cmd_status, cmd_profiles read local files only)
# ============================================================================


def _run(coro) -> int:
    """Run a command coroutine, reporting profile/config errors uniformly."""
    try:
        return asyncio.run(coro)
    except (ProfileNotFoundError, FileNotFoundError) as e:
        console.print(f"[red]Error: {e}[/red]")
        return 1


def cmd_connect(args: argparse.Namespace) -> int:
    """Check connectivity and drift, then lock the profile."""
    return _run(_async_connect(args))


def cmd_drift(args: argparse.Namespace) -> int:
    """Report schema drift."""
    return _run(_async_drift(args))


def cmd_generate(args: argparse.Namespace) -> int:
    """Generate a migration from fixable drift."""
    return _run(_async_generate(args))


def cmd_migrate(args: argparse.Namespace) -> int:
    """Run pending migrations."""
    return _run(_async_migrate(args))


def cmd_rollback(args: argparse.Namespace) -> int:
    """Roll back one completed migration."""
    return _run(_async_rollback(args))


def cmd_ledger(args: argparse.Namespace) -> int:
    """Reconcile the migration ledger."""
    return _run(_async_ledger(args))


def cmd_status(args: argparse.Namespace) -> int:
    """Show current connection status.

    Reads only local files (lock file and TOML config), no database calls.

    Returns:
        0 always (informational command).
    """
    profile = read_profile_lock()

    if profile:
        table = Table(title="Connection Status", show_header=False)
        table.add_column("Key", style="dim")
        table.add_column("Value")

        table.add_row("Current profile", f"[bold cyan]{profile}[/bold cyan]")
        table.add_row("Profile source", ".db-profile (checked)")

        try:
            config = load_db_config()
            if profile in config.profiles:
                p = config.profiles[profile]
                table.add_row("Provider", p.provider)
                if p.description:
                    table.add_row("Description", p.description)
            table.add_row("Schema file", config.schema_file)
            table.add_row("Migrations", config.migrations.directory)
        except FileNotFoundError:
            table.add_row("Warning", "[yellow]db.toml not found[/yellow]")

        console.print(table)
    else:
        console.print("[yellow]No locked profile.[/yellow]")
        console.print("[dim]Run:[/dim] [cyan]DB_PROFILE=<name> db-integrity connect[/cyan]")

    return 0


def cmd_profiles(args: argparse.Namespace) -> int:
    """List available profiles from db.toml.

    Returns:
        0 on success, 1 if db.toml not found.
    """
    try:
        config = load_db_config()
    except FileNotFoundError as e:
        console.print(f"[red]Error: {e}[/red]")
        return 1

    current = read_profile_lock()

    table = Table(title="Database Profiles", show_header=True, header_style="bold")
    table.add_column("", width=2)
    table.add_column("Profile")
    table.add_column("Provider")
    table.add_column("Description")

    for name, profile in config.profiles.items():
        marker = "[bold green]*[/bold green]" if name == current else " "
        name_style = "bold cyan" if name == current else ""
        table.add_row(
            marker,
            f"[{name_style}]{name}[/{name_style}]" if name_style else name,
            profile.provider,
            profile.description or "",
        )

    console.print(table)

    if current:
        console.print("\n[bold green]*[/bold green] = current profile")

    return 0


def cmd_disconnect(args: argparse.Namespace) -> int:
    """Remove the profile lock so the next command needs DB_PROFILE again."""
    profile = read_profile_lock()
    clear_profile_lock()
    if profile:
        console.print(f"[green]Unlocked profile [bold]{profile}[/bold].[/green]")
    else:
        console.print("[yellow]No locked profile.[/yellow]")
    return 0


# ============================================================================
# Main entry point
# ============================================================================


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="db-integrity",
        description="Schema drift detection and migration synchronization",
    )

    parser.add_argument(
        "--env-prefix",
        default="",
        help=(
            "Prefix for environment variable lookup "
            "(e.g., --env-prefix APP_ reads APP_DB_PROFILE)"
        ),
    )
    parser.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        help="Enable debug logging",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    p_connect = subparsers.add_parser(
        "connect", help="Check connectivity and drift, lock the profile"
    )
    p_connect.set_defaults(func=cmd_connect)

    p_status = subparsers.add_parser("status", help="Show current connection status")
    p_status.set_defaults(func=cmd_status)

    p_disconnect = subparsers.add_parser("disconnect", help="Remove the profile lock")
    p_disconnect.set_defaults(func=cmd_disconnect)

    p_profiles = subparsers.add_parser("profiles", help="List available profiles")
    p_profiles.set_defaults(func=cmd_profiles)

    p_drift = subparsers.add_parser("drift", help="Report schema drift")
    p_drift.add_argument(
        "--ignore",
        action="append",
        metavar="REGEX",
        help="Ignore drifts whose object matches REGEX (repeatable)",
    )
    p_drift.add_argument("--json", action="store_true", help="Print the report as JSON")
    p_drift.set_defaults(func=cmd_drift)

    p_generate = subparsers.add_parser(
        "generate", help="Generate a migration repairing fixable drift"
    )
    p_generate.add_argument("--name", default="schema_sync", help="Migration name")
    p_generate.add_argument(
        "--dry-run", action="store_true", help="Print the migration without writing it"
    )
    p_generate.add_argument(
        "--no-rollback", action="store_true", help="Do not generate down.sql"
    )
    p_generate.add_argument(
        "--atomic", action="store_true", help="Wrap the body in BEGIN/COMMIT"
    )
    p_generate.set_defaults(func=cmd_generate)

    p_migrate = subparsers.add_parser("migrate", help="Run pending migrations")
    p_migrate.add_argument(
        "--dry-run", action="store_true", help="List pending migrations without running them"
    )
    p_migrate.set_defaults(func=cmd_migrate)

    p_rollback = subparsers.add_parser("rollback", help="Roll back a completed migration")
    p_rollback.add_argument("migration_id", help="Migration id, e.g. 20240101120000_add_name")
    p_rollback.set_defaults(func=cmd_rollback)

    p_ledger = subparsers.add_parser(
        "ledger", help="Reconcile migration directory, ledger and tracking table"
    )
    p_ledger.add_argument(
        "--record",
        action="store_true",
        help="Import applied-but-untracked ledger migrations into tracking",
    )
    p_ledger.set_defaults(func=cmd_ledger)

    return parser


def main(argv: list[str] | None = None) -> int:
    """Main CLI entry point.

    Returns:
        Exit code (0 for success, non-zero for errors).
    """
    args = build_parser().parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
