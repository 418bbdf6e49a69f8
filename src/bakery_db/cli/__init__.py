"""CLI for snapshots, restores and the deployment guard.

Usage:
    bakery-db status
    bakery-db profiles
    bakery-db backup
    bakery-db list
    bakery-db validate backup-2026-10-19T08-30-00-123456Z.json
    bakery-db restore --latest --confirm
    bakery-db capture-baseline
    bakery-db verify
    bakery-db ensure-schema --seed
    bakery-db setup --restore-on-loss
    bakery-db serve

Commands:
    status            - Show connection status and table sizes
    profiles          - List profiles from db.toml
    backup            - Write a snapshot artifact
    list              - List snapshot artifacts, newest first
    validate          - Check an artifact's structure
    restore           - Restore an artifact (requires --confirm)
    capture-baseline  - Record pre-deploy row counts (and snapshot)
    verify            - Compare row counts against the baseline
    ensure-schema     - Create missing application tables / columns
    setup             - Full deploy cycle (baseline, ensure, seed, verify)
    serve             - Run the HTTP API

Exit codes: 0 success, 1 failure, 2 data loss detected.
"""

import argparse
import asyncio
import sys
from collections.abc import Awaitable, Callable
from pathlib import Path

from rich.console import Console
from rich.table import Table

from bakery_db.backup.models import RestoreReport, RestoreStatus
from bakery_db.backup.storage import ArtifactStore
from bakery_db.config.loader import get_active_profile_name, load_db_config, load_settings
from bakery_db.config.models import PersistenceSettings
from bakery_db.deploy.cycle import run_deploy_cycle
from bakery_db.deploy.models import GuardState, VerificationResult
from bakery_db.errors import (
    ArtifactError,
    ConfigError,
    DatabaseConnectionError,
    NoTablesError,
    PersistenceError,
    RestoreError,
)
from bakery_db.factory import PersistenceServices, build_services
from bakery_db.log_setup import configure_logging

console = Console()

EXIT_DATA_LOSS = 2


# ============================================================================
# Helpers
# ============================================================================


def _load_settings(args: argparse.Namespace) -> PersistenceSettings | None:
    config_path = Path(args.config) if getattr(args, "config", None) else None
    try:
        settings = load_settings(config_path, env_prefix=getattr(args, "env_prefix", ""))
    except (FileNotFoundError, ConfigError) as e:
        console.print(f"[red]Error: {e}[/red]")
        return None
    configure_logging(getattr(args, "log_level", None) or settings.log_level, settings.log_format)
    return settings


def _run(
    args: argparse.Namespace,
    fn: Callable[[PersistenceServices, argparse.Namespace], Awaitable[int]],
) -> int:
    """Build services, run ``fn`` on a fresh event loop, always close."""
    settings = _load_settings(args)
    if settings is None:
        return 1

    async def runner() -> int:
        async with build_services(settings) as services:
            try:
                return await fn(services, args)
            except DatabaseConnectionError as e:
                console.print(f"[bold red]x[/bold red] Database unavailable: {e}")
                return 1

    return asyncio.run(runner())


def _print_report(report: RestoreReport) -> None:
    table = Table(title="Restore Report", show_header=True, header_style="bold")
    table.add_column("Table")
    table.add_column("Status")
    table.add_column("Rows", justify="right")
    table.add_column("Notes", style="dim")

    styles = {
        RestoreStatus.RESTORED: "green",
        RestoreStatus.SKIPPED_EMPTY: "dim",
        RestoreStatus.SKIPPED_MISSING_TABLE: "yellow",
        RestoreStatus.FAILED: "bold red",
        RestoreStatus.ROLLED_BACK: "red",
    }
    for o in report.outcomes:
        notes = o.cause or ""
        if o.dropped_columns:
            notes = f"dropped columns: {', '.join(o.dropped_columns)}"
        style = styles[o.status]
        table.add_row(o.table, f"[{style}]{o.status.value}[/{style}]", str(o.rows), notes)
    console.print(table)


def _print_verification(result: VerificationResult) -> int:
    if result.state == GuardState.STALE:
        console.print(f"[yellow]Baseline stale:[/yellow] {result.reason}")
        return 0
    if result.state == GuardState.VERIFIED:
        console.print(
            f"[bold green]v[/bold green] No data loss across {len(result.after)} tables"
        )
        return 0

    table = Table(title="Data Loss Detected", show_header=True, header_style="bold red")
    table.add_column("Table")
    table.add_column("Before", justify="right")
    table.add_column("After", justify="right")
    table.add_column("Lost", justify="right")
    for r in result.regressions:
        name = f"{r.table} [dim](missing)[/dim]" if r.missing else r.table
        table.add_row(name, str(r.before), str(r.after), f"[red]{r.lost}[/red]")
    console.print(table)
    if result.artifact:
        console.print(
            f"[dim]Baseline snapshot:[/dim] [cyan]{result.artifact}[/cyan] "
            f"[dim](bakery-db restore {result.artifact} --confirm)[/dim]"
        )
    return EXIT_DATA_LOSS


# ============================================================================
# Async command implementations
# ============================================================================


async def _async_status(services: PersistenceServices, args: argparse.Namespace) -> int:
    if not services.manager.is_configured:
        console.print("[yellow]DATABASE_URL is not configured.[/yellow]")
        return 1

    async with services.manager.transaction(read_only=True) as tx:
        introspector = services.introspector.bind(tx)
        info = await introspector.database_info()
        counts = await introspector.get_row_counts()

    summary = Table(title="Connection Status", show_header=False)
    summary.add_column("Key", style="dim")
    summary.add_column("Value")
    summary.add_row("Profile", services.settings.profile_name or "DATABASE_URL")
    summary.add_row("Database", info.name)
    summary.add_row("User", info.user)
    summary.add_row("Server time", info.server_time)
    summary.add_row("Storage", str(services.settings.storage_dir))
    console.print(summary)

    tables = Table(title="Tables", show_header=True, header_style="bold")
    tables.add_column("Table")
    tables.add_column("Rows", justify="right")
    for name, count in counts.items():
        tables.add_row(name, str(count))
    console.print(tables)
    return 0


async def _async_backup(services: PersistenceServices, args: argparse.Namespace) -> int:
    try:
        info = await services.writer.create_snapshot()
    except NoTablesError as e:
        console.print(f"[yellow]{e}[/yellow] - nothing to back up")
        return 1
    except PersistenceError as e:
        console.print(f"[bold red]x[/bold red] {e}")
        return 1

    console.print(f"[bold green]v[/bold green] Snapshot written: [cyan]{info.path}[/cyan]")
    console.print(
        f"  {len(info.row_counts)} tables, {sum(info.row_counts.values())} rows, "
        f"{info.size} bytes"
    )
    return 0


async def _async_restore(services: PersistenceServices, args: argparse.Namespace) -> int:
    store = services.store
    if args.latest:
        latest = store.latest()
        if latest is None:
            console.print(f"[yellow]No artifacts in {store.directory}[/yellow]")
            return 1
        name = latest.name
    elif args.artifact:
        name = args.artifact
    else:
        console.print("[red]Error: give an artifact name or --latest[/red]")
        return 1

    try:
        artifact = store.load(name)
    except ArtifactError as e:
        console.print(f"[red]Error: {e}[/red]")
        return 1

    console.print(f"Artifact: [cyan]{artifact.name}[/cyan] ({artifact.timestamp})")
    for table, count in artifact.row_counts.items():
        console.print(f"  {table}: {count} rows")

    if not args.confirm:
        console.print()
        console.print(
            "[dim]Restoring replaces the contents of these tables. To proceed, add[/dim] "
            "[cyan]--confirm[/cyan] [dim]flag.[/dim]"
        )
        return 0

    try:
        report = await services.restorer.restore(artifact)
    except RestoreError as e:
        console.print(f"[bold red]x[/bold red] {e}")
        if e.report:
            _print_report(e.report)
        console.print("[dim]All changes were rolled back.[/dim]")
        return 1
    except PersistenceError as e:
        console.print(f"[bold red]x[/bold red] {e}")
        return 1

    _print_report(report)
    console.print("[bold green]v[/bold green] Restore committed")
    return 0


async def _async_capture(services: PersistenceServices, args: argparse.Namespace) -> int:
    result = await services.guard.capture_baseline()
    if result.snapshot_error:
        console.print(f"[yellow]Snapshot skipped:[/yellow] {result.snapshot_error}")
    elif result.artifact:
        console.print(f"Snapshot: [cyan]{result.artifact}[/cyan]")
    console.print(
        f"[bold green]v[/bold green] Baseline recorded for {len(result.counts)} tables "
        f"({services.guard.stats_path})"
    )
    return 0


async def _async_verify(services: PersistenceServices, args: argparse.Namespace) -> int:
    return _print_verification(await services.guard.verify_after_deploy())


async def _async_ensure(services: PersistenceServices, args: argparse.Namespace) -> int:
    result = await services.ensurer.ensure_schema()
    for table in result.created_tables:
        console.print(f"  CREATE TABLE [cyan]{table}[/cyan]")
    for diff in result.added_columns:
        console.print(f"  ALTER TABLE [cyan]{diff.table}[/cyan] ADD COLUMN {diff.column}")
    for diff in result.skipped_columns:
        console.print(f"  [yellow]Skipped key column {diff.table}.{diff.column}[/yellow]")
    if not result.changed:
        console.print("[bold green]v[/bold green] Schema already up to date")

    if args.seed:
        seed = await services.ensurer.seed_minimum_data()
        _print_seed(seed.admin_created, seed.admin_username, seed.one_time_password)
        if seed.branch_created:
            console.print("  Seeded default branch")
    return 0


def _print_seed(created: bool, username: str | None, password: str | None) -> None:
    if not created:
        return
    console.print(f"  Seeded administrator [cyan]{username}[/cyan]")
    if password:
        console.print(
            f"  One-time password: [bold]{password}[/bold] "
            "[dim](shown once; change required at first login)[/dim]"
        )


async def _async_setup(services: PersistenceServices, args: argparse.Namespace) -> int:
    try:
        result = await run_deploy_cycle(services, restore_on_loss=args.restore_on_loss)
    except RestoreError as e:
        console.print(f"[bold red]x[/bold red] {e}")
        if e.report:
            _print_report(e.report)
        return 1

    if result.ensure.created_tables:
        console.print(f"Created tables: {', '.join(result.ensure.created_tables)}")
    if result.empty_restore.restored and result.empty_restore.report:
        console.print(f"Empty database restored from [cyan]{result.empty_restore.artifact}[/cyan]")
        _print_report(result.empty_restore.report)
    _print_seed(
        result.seed.admin_created,
        result.seed.admin_username,
        result.seed.one_time_password,
    )
    code = _print_verification(result.verification)
    if result.loss_restore is not None:
        _print_report(result.loss_restore)
    return code


# ============================================================================
# Sync command wrappers
# ============================================================================


def cmd_status(args: argparse.Namespace) -> int:
    """Show connection status and table sizes."""
    return _run(args, _async_status)


def cmd_profiles(args: argparse.Namespace) -> int:
    """List available profiles from db.toml.

    Reads only local TOML config -- no database calls.
    """
    config_path = Path(args.config) if args.config else None
    try:
        config = load_db_config(config_path)
    except (FileNotFoundError, ConfigError) as e:
        console.print(f"[red]Error: {e}[/red]")
        return 1

    current = get_active_profile_name(args.env_prefix)

    table = Table(title="Database Profiles", show_header=True, header_style="bold")
    table.add_column("", width=2)
    table.add_column("Profile")
    table.add_column("Provider")
    table.add_column("Description")

    for name, profile in config.profiles.items():
        marker = "[bold green]*[/bold green]" if name == current else " "
        table.add_row(
            marker,
            f"[bold cyan]{name}[/bold cyan]" if name == current else name,
            profile.provider,
            profile.description or "",
        )
    console.print(table)
    return 0


def cmd_backup(args: argparse.Namespace) -> int:
    """Write a snapshot artifact."""
    return _run(args, _async_backup)


def cmd_list(args: argparse.Namespace) -> int:
    """List artifacts in the storage directory. No database calls."""
    settings = _load_settings(args)
    if settings is None:
        return 1
    store = ArtifactStore(settings.storage_dir)
    artifacts = store.list_artifacts()
    if not artifacts:
        console.print(f"[yellow]No artifacts in {store.directory}[/yellow]")
        return 0

    table = Table(title=f"Artifacts in {store.directory}", show_header=True, header_style="bold")
    table.add_column("Name")
    table.add_column("Size", justify="right")
    table.add_column("Modified")
    for a in artifacts:
        table.add_row(a.name, f"{a.size:,}", a.created_at.strftime("%Y-%m-%d %H:%M:%S"))
    console.print(table)
    return 0


def cmd_validate(args: argparse.Namespace) -> int:
    """Check an artifact's structure. No database calls."""
    settings = _load_settings(args)
    if settings is None:
        return 1
    result = ArtifactStore(settings.storage_dir).validate(args.artifact)
    for error in result.errors:
        console.print(f"  [red]error[/red] {error}")
    for warning in result.warnings:
        console.print(f"  [yellow]warning[/yellow] {warning}")
    if result.valid:
        console.print("[bold green]v[/bold green] Artifact is valid")
        return 0
    console.print("[bold red]x[/bold red] Artifact is invalid")
    return 1


def cmd_restore(args: argparse.Namespace) -> int:
    """Restore an artifact."""
    return _run(args, _async_restore)


def cmd_capture(args: argparse.Namespace) -> int:
    """Record the pre-deploy baseline."""
    return _run(args, _async_capture)


def cmd_verify(args: argparse.Namespace) -> int:
    """Verify row counts against the baseline."""
    return _run(args, _async_verify)


def cmd_ensure(args: argparse.Namespace) -> int:
    """Create missing application tables and columns."""
    return _run(args, _async_ensure)


def cmd_setup(args: argparse.Namespace) -> int:
    """Run the full deploy cycle."""
    return _run(args, _async_setup)


def cmd_serve(args: argparse.Namespace) -> int:
    """Run the HTTP API with uvicorn."""
    import uvicorn

    from bakery_db.api.app import create_app

    settings = _load_settings(args)
    if settings is None:
        return 1
    uvicorn.run(
        create_app(settings),
        host=args.host or settings.host,
        port=args.port or settings.port,
        log_config=None,
    )
    return 0


# ============================================================================
# Main
# ============================================================================


def main(argv: list[str] | None = None) -> int:
    """Main CLI entry point.

    Returns:
        Exit code (0 success, 1 failure, 2 data loss detected).
    """
    parser = argparse.ArgumentParser(
        prog="bakery-db",
        description="Snapshot, restore and deployment guard for the bakery database",
    )
    parser.add_argument(
        "--env-prefix",
        default="",
        help="Prefix for DB_PROFILE lookup (e.g., --env-prefix APP_ reads APP_DB_PROFILE)",
    )
    parser.add_argument("--config", default=None, help="Path to db.toml")
    parser.add_argument("--log-level", default=None, help="Override LOG_LEVEL")

    subparsers = parser.add_subparsers(dest="command", required=True)

    p = subparsers.add_parser("status", help="Show connection status and table sizes")
    p.set_defaults(func=cmd_status)

    p = subparsers.add_parser("profiles", help="List available profiles")
    p.set_defaults(func=cmd_profiles)

    p = subparsers.add_parser("backup", help="Write a snapshot artifact")
    p.set_defaults(func=cmd_backup)

    p = subparsers.add_parser("list", help="List snapshot artifacts")
    p.set_defaults(func=cmd_list)

    p = subparsers.add_parser("validate", help="Check an artifact's structure")
    p.add_argument("artifact", help="Artifact name or path in the storage directory")
    p.set_defaults(func=cmd_validate)

    p = subparsers.add_parser("restore", help="Restore an artifact")
    p.add_argument("artifact", nargs="?", help="Artifact name or path")
    p.add_argument("--latest", action="store_true", help="Restore the newest artifact")
    p.add_argument("--confirm", action="store_true", help="Actually perform the restore")
    p.set_defaults(func=cmd_restore)

    p = subparsers.add_parser("capture-baseline", help="Record pre-deploy row counts")
    p.set_defaults(func=cmd_capture)

    p = subparsers.add_parser("verify", help="Compare row counts with the baseline")
    p.set_defaults(func=cmd_verify)

    p = subparsers.add_parser("ensure-schema", help="Create missing application tables")
    p.add_argument("--seed", action="store_true", help="Also seed admin and branch rows")
    p.set_defaults(func=cmd_ensure)

    p = subparsers.add_parser("setup", help="Run the full deploy cycle")
    p.add_argument(
        "--restore-on-loss",
        action="store_true",
        help="Restore the baseline snapshot if data loss is detected",
    )
    p.set_defaults(func=cmd_setup)

    p = subparsers.add_parser("serve", help="Run the HTTP API")
    p.add_argument("--host", default=None)
    p.add_argument("--port", type=int, default=None)
    p.set_defaults(func=cmd_serve)

    args = parser.parse_args(argv)
    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
