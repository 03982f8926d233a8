"""CLI for the shadow mirror backup pipeline.

Runs capture cycles (typically from cron or a systemd timer), restores
snapshots into the remote store, and inspects the local backup artifacts.

Usage:
    shadow-mirror capture
    shadow-mirror capture --override-guard
    shadow-mirror restore --dry-run
    shadow-mirror restore --snapshot 42 --user-id abc123 --yes
    shadow-mirror restore --skip-filter
    shadow-mirror snapshots --limit 10
    shadow-mirror verify
    shadow-mirror prune --keep 20
    SHADOW_PROFILE=cloud shadow-mirror --config /etc/shadow-mirror.toml capture

Commands:
    capture    - Run one backup cycle (probe, capture, guard, persist, export)
    restore    - Restore a snapshot into the remote store
    snapshots  - List recent snapshots in the local store
    verify     - Check the export file and the latest snapshot checksum
    prune      - Run the retention pass manually
"""

import argparse
import asyncio
import sys
from datetime import datetime
from pathlib import Path

from rich.console import Console
from rich.table import Table

from shadow_mirror.config.loader import load_config
from shadow_mirror.config.models import MirrorConfig
from shadow_mirror.errors import (
    ConfigError,
    CycleLockedError,
    PersistenceError,
    RestoreError,
    ShadowMirrorError,
)
from shadow_mirror.factory import get_adapter, select_profile
from shadow_mirror.logging_setup import setup_logging
from shadow_mirror.mirror.export import verify_export
from shadow_mirror.mirror.lock import CycleLock
from shadow_mirror.mirror.pipeline import CycleResult, run_cycle
from shadow_mirror.restore.engine import RestorationEngine, load_snapshot
from shadow_mirror.restore.models import RestoreReport
from shadow_mirror.store.checksum import verify_checksum
from shadow_mirror.store.retention import prune
from shadow_mirror.store.snapshot_store import SnapshotStore

console = Console()


# ============================================================================
# Helpers
# ============================================================================


def _load(args: argparse.Namespace, with_profile: bool = False) -> MirrorConfig | None:
    """Load the config file and optionally resolve the active profile.

    Prints the error and returns None on failure.
    """
    config_path = Path(args.config) if getattr(args, "config", None) else None
    try:
        config = load_config(config_path)
        if with_profile:
            config = select_profile(
                config,
                profile_name=getattr(args, "profile", None),
                env_prefix=getattr(args, "env_prefix", ""),
            )
    except (FileNotFoundError, ConfigError) as e:
        console.print(f"[red]Error: {e}[/red]")
        return None
    return config


def _open_store(config: MirrorConfig) -> SnapshotStore | None:
    """Open the local snapshot store.

    Prints the error and returns None on failure.
    """
    try:
        return SnapshotStore(config.mirror.store_path)
    except PersistenceError as e:
        console.print(f"[red]Error: {e}[/red]")
        return None


def _format_ts(timestamp_ms: int) -> str:
    return datetime.fromtimestamp(timestamp_ms / 1000).strftime("%Y-%m-%d %H:%M:%S")


def _format_counts(counts: dict[str, int] | None) -> str:
    if not counts:
        return "-"
    return ", ".join(f"{n} {name}" for name, n in counts.items())


def _print_cycle_result(result: CycleResult) -> None:
    if result.ok:
        console.print(
            f"[bold green]v[/bold green] Snapshot [bold]{result.snapshot_id}[/bold] saved: "
            f"{_format_counts(result.counts)}"
        )
        if result.health:
            console.print(f"  Latency: [dim]{result.health.latency_ms}ms[/dim]")
        if result.checksum:
            console.print(f"  Checksum: [dim]{result.checksum}[/dim]")
        if result.prune and result.prune.deleted:
            console.print(f"  Pruned: [dim]{result.prune.deleted} old snapshots[/dim]")
        if result.store_backup:
            console.print(f"  SQLite backup: [dim]{result.store_backup}[/dim]")
        return

    if result.status == "suspicious" and result.verdict:
        console.print("[bold red]x BLOCKED by anomaly guard[/bold red]")
        console.print(f"  {result.verdict.reason}")

        table = Table(title="Counts", show_header=True, header_style="bold")
        table.add_column("Collection", style="dim")
        table.add_column("Last good", justify="right")
        table.add_column("New", justify="right")
        previous = result.verdict.previous_counts or {}
        for name, new in result.verdict.new_counts.items():
            table.add_row(name, str(previous.get(name, "-")), str(new))
        console.print(table)
        console.print(
            "[dim]Last good snapshot preserved. If the drop is intentional, re-run with[/dim] "
            "[cyan]--override-guard[/cyan][dim].[/dim]"
        )
        return

    console.print(f"[bold red]x[/bold red] Cycle {result.status}: {result.reason}")


def _print_restore_report(report: RestoreReport, verbose: bool = False) -> None:
    table = Table(
        title="Restore Summary" + (" (dry run)" if report.dry_run else ""),
        show_header=True,
        header_style="bold",
    )
    table.add_column("Collection", style="dim")
    table.add_column("Restored", justify="right", style="green")
    table.add_column("Skipped", justify="right", style="yellow")
    table.add_column("Failed", justify="right", style="red")
    table.add_column("Degraded", justify="right")

    for name, tally in report.tallies.items():
        table.add_row(
            name,
            str(tally.restored),
            str(tally.skipped) if tally.skipped else "-",
            str(tally.failed) if tally.failed else "-",
            str(tally.degraded) if tally.degraded else "-",
        )
    console.print(table)

    for warning in report.warnings:
        console.print(f"[yellow]Warning: {warning}[/yellow]")

    # Plain restores are noise unless asked for
    notable = [
        d for d in report.decisions
        if verbose or d.action != "restore" or d.detached
    ]
    if notable:
        console.print()
        console.print("[bold]Decisions:[/bold]")
        for d in notable:
            reason = f" - {d.reason}" if d.reason else ""
            console.print(f"  {d.action:<16} {d.collection}/{d.record_id}{reason}")


# ============================================================================
# Async command implementations
# ============================================================================


async def _async_capture(args: argparse.Namespace) -> int:
    """Async implementation for capture command.

    Args:
        args: Parsed arguments with override_guard.

    Returns:
        0 when a snapshot was saved, 1 on abort or failure.
    """
    config = _load(args, with_profile=True)
    if config is None:
        return 1

    lock = CycleLock(config.mirror.store_path)
    try:
        lock.acquire()
    except CycleLockedError as e:
        console.print(f"[red]Error: {e}[/red]")
        return 1

    try:
        console.print(
            f"Capturing from profile: [bold cyan]{config.active_profile}[/bold cyan]",
            style="dim",
        )
        adapter = await get_adapter(config)
        try:
            store = SnapshotStore(config.mirror.store_path)
            try:
                result = await run_cycle(
                    adapter, store, config, override_guard=args.override_guard
                )
            finally:
                store.close()
        finally:
            await adapter.close()
    except ShadowMirrorError as e:
        console.print(f"[bold red]x[/bold red] {e}")
        return 1
    finally:
        lock.release()

    _print_cycle_result(result)
    return 0 if result.ok else 1


async def _async_restore(args: argparse.Namespace) -> int:
    """Async implementation for restore command.

    Args:
        args: Parsed arguments with snapshot, user_id, dry_run, skip_filter,
            yes and verbose.

    Returns:
        0 when every record restored (or on dry run / cancel), 1 otherwise.
    """
    config = _load(args, with_profile=True)
    if config is None:
        return 1

    store = _open_store(config)
    if store is None:
        return 1
    try:
        snapshot = load_snapshot(store, args.snapshot)
    except (RestoreError, PersistenceError) as e:
        console.print(f"[red]Error: {e}[/red]")
        return 1
    finally:
        store.close()

    console.print(
        f"Snapshot [bold]{snapshot.id}[/bold] from {_format_ts(snapshot.timestamp)}: "
        f"{_format_counts(snapshot.counts(config.mirror_schema))}"
    )
    console.print(f"  Target profile: [bold cyan]{config.active_profile}[/bold cyan]")
    if args.skip_filter:
        console.print("  [yellow]Filter disabled: deleted records will be restored[/yellow]")

    if not args.yes and not args.dry_run:
        response = console.input("Continue? [y/N] ")
        if response.strip().lower() not in ("y", "yes"):
            console.print("Cancelled.")
            return 0

    try:
        adapter = await get_adapter(config)
    except ShadowMirrorError as e:
        console.print(f"[red]Error: {e}[/red]")
        return 1

    try:
        engine = RestorationEngine(adapter, config.mirror_schema, config.restore)
        report = await engine.restore(
            snapshot,
            user_id=args.user_id,
            dry_run=args.dry_run,
            skip_filter=args.skip_filter,
        )
    except RestoreError as e:
        console.print(f"[red]Error: {e}[/red]")
        return 1
    finally:
        await adapter.close()

    console.print(f"  Target user: [bold]{report.target_user_id}[/bold] ({report.identity_source})")
    console.print()
    _print_restore_report(report, verbose=args.verbose)

    if report.dry_run:
        console.print()
        console.print("[bold yellow]DRY RUN[/bold yellow] - No changes made.")
        return 0

    if not report.ok:
        console.print(
            f"\n[bold red]x[/bold red] Restore completed with {report.total_failed} failures"
        )
        return 1

    console.print(f"\n[bold green]v[/bold green] Restored {report.total_restored} records.")
    return 0


# ============================================================================
# Sync command wrappers (snapshots, verify, prune read local files only)
# ============================================================================


def cmd_capture(args: argparse.Namespace) -> int:
    """Run one backup cycle.

    Wraps the async implementation with ``asyncio.run()``.

    Args:
        args: Parsed CLI arguments.

    Returns:
        0 on success, 1 on failure.
    """
    return asyncio.run(_async_capture(args))


def cmd_restore(args: argparse.Namespace) -> int:
    """Restore a snapshot into the remote store.

    Wraps the async implementation with ``asyncio.run()``.

    Args:
        args: Parsed CLI arguments.

    Returns:
        0 on success, 1 on failure.
    """
    return asyncio.run(_async_restore(args))


def cmd_snapshots(args: argparse.Namespace) -> int:
    """List recent snapshots from the local store.

    Args:
        args: Parsed CLI arguments.

    Returns:
        0 on success, 1 if the config cannot be loaded.
    """
    config = _load(args)
    if config is None:
        return 1

    store = _open_store(config)
    if store is None:
        return 1
    try:
        snapshots = store.list_recent(args.limit)
        good = store.latest_good()
    except PersistenceError as e:
        console.print(f"[red]Error: {e}[/red]")
        return 1
    finally:
        store.close()

    if not snapshots:
        console.print("[yellow]No snapshots yet.[/yellow]")
        console.print("[dim]Run[/dim] [cyan]shadow-mirror capture[/cyan] [dim]first.[/dim]")
        return 0

    schema = config.mirror_schema
    table = Table(title="Snapshots", show_header=True, header_style="bold")
    table.add_column("", width=2)
    table.add_column("ID", justify="right")
    table.add_column("Taken")
    table.add_column("Counts")
    table.add_column("Healthy")
    table.add_column("Checksum", style="dim")

    for s in snapshots:
        marker = "[bold green]*[/bold green]" if good and s.id == good.id else " "
        table.add_row(
            marker,
            str(s.id),
            _format_ts(s.timestamp),
            _format_counts(s.counts(schema)),
            "[green]yes[/green]" if s.connection_healthy else "[red]no[/red]",
            s.checksum[:19],
        )

    console.print(table)
    if good:
        console.print("\n[bold green]*[/bold green] = latest known-good snapshot")
    return 0


def cmd_verify(args: argparse.Namespace) -> int:
    """Check the export file and the latest snapshot's checksum.

    Args:
        args: Parsed CLI arguments.

    Returns:
        0 if both are valid, 1 otherwise.
    """
    config = _load(args)
    if config is None:
        return 1

    ok = True
    export_path = config.mirror.export_path
    report = verify_export(export_path, config.mirror_schema)

    if report["valid"]:
        console.print(
            f"[bold green]v[/bold green] Export valid: [dim]{export_path}[/dim] "
            f"({_format_counts(report['counts'])})"
        )
    else:
        ok = False
        console.print(f"[bold red]x[/bold red] Export invalid: [dim]{export_path}[/dim]")
        for error in report["errors"]:
            console.print(f"  [red]{error}[/red]")
    for warning in report["warnings"]:
        console.print(f"  [yellow]Warning: {warning}[/yellow]")

    store = _open_store(config)
    if store is None:
        return 1
    try:
        latest = store.latest()
    except PersistenceError as e:
        console.print(f"[red]Error: {e}[/red]")
        return 1
    finally:
        store.close()

    if latest is None:
        console.print("[yellow]No snapshots in the local store.[/yellow]")
    elif verify_checksum(latest.payload, latest.checksum, config.mirror_schema):
        console.print(f"[bold green]v[/bold green] Snapshot {latest.id} checksum matches")
    else:
        ok = False
        console.print(f"[bold red]x[/bold red] Snapshot {latest.id} checksum mismatch")

    return 0 if ok else 1


def cmd_prune(args: argparse.Namespace) -> int:
    """Run the retention pass manually.

    Args:
        args: Parsed CLI arguments with keep and force.

    Returns:
        0 on success, 1 on failure.
    """
    config = _load(args)
    if config is None:
        return 1

    retention = config.retention
    keep = args.keep if args.keep is not None else retention.keep_protected

    store = _open_store(config)
    if store is None:
        return 1
    try:
        result = prune(
            store,
            keep_protected=keep,
            high_water_mark=0 if args.force else retention.high_water_mark,
            window_days=retention.window_days,
        )
    finally:
        store.close()

    if result.error:
        console.print(f"[bold red]x[/bold red] Prune failed: {result.error}")
        return 1

    if not result.ran:
        console.print(
            f"[dim]Nothing to prune ({result.total_before} snapshots, "
            f"high-water mark {retention.high_water_mark}).[/dim]"
        )
        return 0

    console.print(
        f"[bold green]v[/bold green] Pruned {result.deleted} of {result.total_before} "
        f"snapshots (kept {result.protected} protected)"
    )
    return 0


# ============================================================================
# Main entry point
# ============================================================================


def build_parser() -> argparse.ArgumentParser:
    """Build the argument parser for all subcommands."""
    parser = argparse.ArgumentParser(
        prog="shadow-mirror",
        description="Continuous local backup and recovery for a remote task store",
    )

    parser.add_argument(
        "--config",
        default=None,
        help="Path to shadow-mirror.toml (default: ./shadow-mirror.toml)",
    )
    parser.add_argument(
        "--profile",
        default=None,
        help="Remote store profile to use (overrides SHADOW_PROFILE)",
    )
    parser.add_argument(
        "--env-prefix",
        default="",
        help=(
            "Prefix for environment variable lookup "
            "(e.g., --env-prefix APP_ reads APP_SHADOW_PROFILE)"
        ),
    )
    parser.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        help="Debug logging and full restore decision trace",
    )
    parser.add_argument(
        "--log-file",
        default=None,
        help="Also write debug logs to this file",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    # capture command
    p_capture = subparsers.add_parser(
        "capture",
        help="Run one backup cycle",
    )
    p_capture.add_argument(
        "--override-guard",
        action="store_true",
        help="Save the snapshot even if the anomaly guard flags it",
    )
    p_capture.set_defaults(func=cmd_capture)

    # restore command
    p_restore = subparsers.add_parser(
        "restore",
        help="Restore a snapshot into the remote store",
    )
    p_restore.add_argument(
        "--snapshot",
        type=int,
        default=None,
        help="Snapshot id to restore (default: latest known-good)",
    )
    p_restore.add_argument(
        "--user-id",
        default=None,
        help="Owner of the restored records (default: auto-detect)",
    )
    p_restore.add_argument(
        "--dry-run",
        action="store_true",
        help="Show what would be restored without making changes",
    )
    p_restore.add_argument(
        "--skip-filter",
        action="store_true",
        help="Also restore soft-deleted and tombstoned records",
    )
    p_restore.add_argument(
        "--yes",
        "-y",
        action="store_true",
        help="Skip the confirmation prompt",
    )
    p_restore.set_defaults(func=cmd_restore)

    # snapshots command
    p_snapshots = subparsers.add_parser(
        "snapshots",
        help="List recent snapshots",
    )
    p_snapshots.add_argument(
        "--limit",
        type=int,
        default=20,
        help="Number of snapshots to show (default: 20)",
    )
    p_snapshots.set_defaults(func=cmd_snapshots)

    # verify command
    p_verify = subparsers.add_parser(
        "verify",
        help="Check the export file and the latest snapshot checksum",
    )
    p_verify.set_defaults(func=cmd_verify)

    # prune command
    p_prune = subparsers.add_parser(
        "prune",
        help="Run the retention pass manually",
    )
    p_prune.add_argument(
        "--keep",
        type=int,
        default=None,
        help="Known-good snapshots to protect (default: retention.keep_protected)",
    )
    p_prune.add_argument(
        "--force",
        action="store_true",
        help="Prune even below the high-water mark",
    )
    p_prune.set_defaults(func=cmd_prune)

    return parser


def main(argv: list[str] | None = None) -> int:
    """Main CLI entry point.

    Parses command line arguments and dispatches to appropriate handler.

    Returns:
        Exit code (0 for success, non-zero for errors).
    """
    parser = build_parser()
    args = parser.parse_args(argv)
    setup_logging(verbose=args.verbose, log_file=args.log_file)
    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
