"""CLI module for Supabase/PostgreSQL backups.

Provides commands for running a backup, validating a backup snapshot,
and listing configured connection profiles.

Usage:
    supabase-backup backup
    DB_PROFILE=prod supabase-backup backup --output-dir ./backups --fast
    supabase-backup backup --profile prod --schema-only
    supabase-backup validate backups/2025-01-15T10-30-00/complete-backup.json
    supabase-backup profiles

Commands:
    backup    - Discover schema, extract data, write SQL/JSON/CSV artifacts
    validate  - Check a complete-backup.json snapshot for consistency
    profiles  - List profiles from db.toml
"""

import argparse
import asyncio
import contextlib
import logging
import signal
import sys
from pathlib import Path

from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from supabase_backup.backup.validate import validate_backup
from supabase_backup.config.loader import load_db_config
from supabase_backup.config.models import BackupConfig
from supabase_backup.errors import ArtifactWriteFailed, BackupCancelled
from supabase_backup.factory import (
    ProfileNotFoundError,
    get_active_profile_name,
    get_catalog_client,
    manual_tables_from_env,
    resolve_profile,
)
from supabase_backup.orchestrator import BackupResult, BackupRunner

console = Console()

FAST_MAX_ROWS = 1000

SCHEMA_CATEGORIES = (
    "include_tables",
    "include_views",
    "include_functions",
    "include_triggers",
    "include_policies",
    "include_indexes",
    "include_sequences",
    "include_enums",
    "include_constraints",
    "include_extensions",
)


def setup_logging(verbose: bool = False) -> None:
    """Route library logging through rich."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, rich_tracebacks=True, show_path=False)],
    )
    # HTTP client libraries are chatty at INFO
    for noisy in ("httpx", "httpcore", "hpack"):
        logging.getLogger(noisy).setLevel(logging.WARNING)


# ============================================================================
# Backup configuration from flags
# ============================================================================


def _base_backup_config(config_path: Path | None) -> BackupConfig:
    """``[backup]`` table of db.toml, or defaults when there is no db.toml."""
    try:
        return load_db_config(config_path).backup
    except FileNotFoundError:
        return BackupConfig()


def build_backup_config(args: argparse.Namespace, base: BackupConfig) -> BackupConfig:
    """Apply command-line flags on top of ``base``.

    ``--data-only`` turns every schema category off, ``--schema-only``
    turns data off, ``--fast`` caps rows at ``FAST_MAX_ROWS`` (an explicit
    ``--max-rows`` wins).  ``MANUAL_TABLES`` is used when neither the flag
    nor db.toml lists manual tables.
    """
    overrides: dict = {}

    if args.schema_only:
        overrides["include_data"] = False
    if args.data_only:
        overrides.update({name: False for name in SCHEMA_CATEGORIES})
        overrides["include_data"] = True

    if args.fast:
        overrides["max_rows_per_table"] = FAST_MAX_ROWS
    if args.max_rows is not None:
        overrides["max_rows_per_table"] = args.max_rows

    if args.sql_only:
        overrides["export_formats"] = ["sql"]
    elif args.no_csv:
        overrides["export_formats"] = [f for f in base.export_formats if f != "csv"] or ["sql"]

    for flag, option in (
        ("no_functions", "include_functions"),
        ("no_policies", "include_policies"),
        ("no_views", "include_views"),
        ("no_triggers", "include_triggers"),
        ("no_enums", "include_enums"),
    ):
        if getattr(args, flag):
            overrides[option] = False

    if args.manual_tables:
        overrides["manual_tables"] = [t.strip() for t in args.manual_tables.split(",") if t.strip()]
    elif not base.manual_tables:
        env_tables = manual_tables_from_env()
        if env_tables:
            overrides["manual_tables"] = env_tables

    # Re-validate the merged options
    return BackupConfig(**{**base.model_dump(), **overrides})


# ============================================================================
# Output
# ============================================================================


def _print_result(result: BackupResult) -> None:
    stats = result.context.statistics

    table = Table(title="Backup Summary", show_header=True, header_style="bold")
    table.add_column("Object", style="dim")
    table.add_column("Count", justify="right")
    for label, value in [
        ("Schemas", stats.schemas),
        ("Tables", stats.tables),
        ("Columns", stats.columns),
        ("Views", stats.views),
        ("Functions", stats.functions),
        ("Triggers", stats.triggers),
        ("Indexes", stats.indexes),
        ("Policies", stats.policies),
        ("Sequences", stats.sequences),
        ("Enums", stats.enums),
        ("Constraints", stats.constraints),
        ("Extensions", stats.extensions),
        ("Tables with data", stats.tables_with_data),
        ("Total rows", stats.total_rows),
    ]:
        table.add_row(label, str(value))
    console.print(table)

    tiers = result.context.discovery_tiers
    if tiers:
        console.print(
            "[dim]Discovery:[/dim] "
            + ", ".join(f"{category}={tier}" for category, tier in sorted(tiers.items()))
        )

    for issue in result.context.errors:
        console.print(f"  [red]x[/red] [bold]{issue.context}[/bold]: {issue.message}")
    for issue in result.context.warnings:
        console.print(f"  [yellow]![/yellow] [bold]{issue.context}[/bold]: {issue.message}")

    console.print()
    status = "[bold green]v[/bold green]" if result.succeeded_cleanly else "[bold yellow]![/bold yellow]"
    console.print(
        f"{status} Backup written to [bold cyan]{result.output_dir}[/bold cyan] "
        f"in {stats.duration_seconds:.1f}s "
        f"({len(result.context.errors)} errors, {len(result.context.warnings)} warnings)"
    )


# ============================================================================
# Async command implementations
# ============================================================================


async def _async_backup(args: argparse.Namespace) -> int:
    """Async implementation for backup command.

    Returns:
        0 when artifacts were written (even with errors/warnings), 1 on
        fatal failures.
    """
    env_prefix = getattr(args, "env_prefix", "")
    config_path = Path(args.config) if args.config else None

    try:
        profile_name, profile = resolve_profile(args.profile, config_path, env_prefix)
    except ProfileNotFoundError as e:
        console.print(f"[red]Error: {e}[/red]")
        return 1

    try:
        config = build_backup_config(args, _base_backup_config(config_path))
    except ValueError as e:
        console.print(f"[red]Invalid backup options: {e}[/red]")
        return 1

    console.print(
        f"Backing up profile [bold cyan]{profile_name}[/bold cyan] "
        f"([dim]{profile.provider}[/dim])"
    )

    try:
        client = get_catalog_client(profile, timeout=config.query_timeout)
    except ProfileNotFoundError as e:
        console.print(f"[red]Error: {e}[/red]")
        return 1

    cancel_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    # Not available on every platform; Ctrl-C then simply interrupts
    with contextlib.suppress(NotImplementedError):
        loop.add_signal_handler(signal.SIGINT, cancel_event.set)

    runner = BackupRunner(
        client,
        config,
        Path(args.output_dir),
        endpoint=profile.url.split("@")[-1],
        cancel_event=cancel_event,
    )
    try:
        result = await runner.run()
    except ArtifactWriteFailed as e:
        console.print(f"[bold red]x[/bold red] {e}")
        return 1
    except BackupCancelled as e:
        console.print(f"[yellow]{e}[/yellow]")
        return 1
    finally:
        await client.close()

    _print_result(result)
    return 0


# ============================================================================
# Command handlers
# ============================================================================


def cmd_backup(args: argparse.Namespace) -> int:
    """Run a backup.

    Wraps the async implementation with ``asyncio.run()``.
    """
    return asyncio.run(_async_backup(args))


def cmd_validate(args: argparse.Namespace) -> int:
    """Validate a ``complete-backup.json`` snapshot.

    Returns:
        0 if valid, 1 otherwise.
    """
    path = Path(args.path)
    if path.is_dir():
        path = path / "complete-backup.json"

    report = validate_backup(path)

    for error in report["errors"]:
        console.print(f"  [red]x[/red] {error}")
    for warning in report["warnings"]:
        console.print(f"  [yellow]![/yellow] {warning}")

    if report["valid"]:
        console.print(f"[bold green]v[/bold green] {path} is valid")
        return 0
    console.print(f"[bold red]x[/bold red] {path} is invalid")
    return 1


def cmd_profiles(args: argparse.Namespace) -> int:
    """List available profiles from db.toml.

    Returns:
        0 on success, 1 if db.toml not found.
    """
    config_path = Path(args.config) if args.config else None
    try:
        config = load_db_config(config_path)
    except FileNotFoundError as e:
        console.print(f"[red]Error: {e}[/red]")
        return 1

    current = get_active_profile_name(getattr(args, "env_prefix", ""))

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
        console.print("\n[bold green]*[/bold green] = selected profile")

    return 0


# ============================================================================
# Main entry point
# ============================================================================


def main() -> int:
    """Main CLI entry point.

    Parses command line arguments and dispatches to appropriate handler.

    Returns:
        Exit code (0 for success, non-zero for errors).
    """
    parser = argparse.ArgumentParser(
        prog="supabase-backup",
        description="Schema and data backup for Supabase/PostgreSQL databases",
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
        "--config",
        default=None,
        help="Path to db.toml (default: ./db.toml)",
    )
    parser.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        help="Debug logging",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    # backup command
    p_backup = subparsers.add_parser(
        "backup",
        help="Back up schema and data",
    )
    p_backup.add_argument("--profile", "-p", default=None, help="Profile name from db.toml")
    p_backup.add_argument(
        "--output-dir",
        "-o",
        default="backups",
        help="Root directory for timestamped backup folders (default: ./backups)",
    )
    mode = p_backup.add_mutually_exclusive_group()
    mode.add_argument("--schema-only", action="store_true", help="Skip data extraction")
    mode.add_argument("--data-only", action="store_true", help="Skip schema objects")
    p_backup.add_argument(
        "--fast",
        action="store_true",
        help=f"Cap rows per table at {FAST_MAX_ROWS}",
    )
    p_backup.add_argument("--max-rows", type=int, default=None, help="Rows per table cap")
    p_backup.add_argument("--no-csv", action="store_true", help="Skip CSV export")
    p_backup.add_argument("--sql-only", action="store_true", help="Write SQL scripts only")
    p_backup.add_argument("--no-functions", action="store_true", help="Skip functions")
    p_backup.add_argument("--no-policies", action="store_true", help="Skip RLS policies")
    p_backup.add_argument("--no-views", action="store_true", help="Skip views")
    p_backup.add_argument("--no-triggers", action="store_true", help="Skip triggers")
    p_backup.add_argument("--no-enums", action="store_true", help="Skip enum types")
    p_backup.add_argument(
        "--manual-tables",
        default=None,
        help="Comma-separated tables to use when discovery finds none (e.g., users,orders)",
    )
    p_backup.set_defaults(func=cmd_backup)

    # validate command
    p_validate = subparsers.add_parser(
        "validate",
        help="Validate a backup snapshot",
    )
    p_validate.add_argument("path", help="complete-backup.json or its backup directory")
    p_validate.set_defaults(func=cmd_validate)

    # profiles command
    p_profiles = subparsers.add_parser(
        "profiles",
        help="List available profiles",
    )
    p_profiles.set_defaults(func=cmd_profiles)

    args = parser.parse_args()
    setup_logging(args.verbose)
    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
