"""
``flask hris`` commands.

Every command runs inline in the CLI process; ``sync`` goes through the same
orchestrator as the admin API so the single in-progress guard applies here
too.
"""

from __future__ import annotations

import json
from datetime import datetime
from typing import Optional

import click
from flask.cli import ScriptInfo

from feedback_app.models.hris.schema import SyncMode, SyncTrigger
from feedback_app.utils.hris import get_hris_client_kind, is_hris_enabled

from .errors import ConflictResolutionError, DirectoryError, SyncAlreadyRunningError
from .orchestrator import create_sync_orchestrator, resolve_directory_client
from .resolver import ConflictResolver
from .run_service import (
    ConflictFilters,
    HRISConflictService,
    HRISRunService,
    RunFilters,
    serialize_conflict,
    summarize_run,
)


def _load_enabled_app(ctx):
    info = ctx.ensure_object(ScriptInfo)
    app = info.load_app()
    if not is_hris_enabled(app):
        raise click.ClickException("HRIS sync is disabled; enable it via HRIS_SYNC_ENABLED before running.")
    return app


@click.group(name="hris", invoke_without_command=True)
@click.pass_context
def hris_cli(ctx):
    """
    HRIS directory sync commands.

    Shows the configured directory client when invoked without a subcommand.
    """
    app = _load_enabled_app(ctx)
    if ctx.invoked_subcommand is None:
        click.echo(f"HRIS sync enabled (client: {get_hris_client_kind(app)}).")


def get_disabled_hris_group() -> click.Group:
    """Return a minimal command group that informs the operator the sync is disabled."""

    @click.group(name="hris", invoke_without_command=True)
    def disabled_group():
        raise click.ClickException("HRIS commands are unavailable because HRIS_SYNC_ENABLED=false.")

    return disabled_group


def _format_run(summary: dict) -> str:
    stats = summary["statistics"]
    lines = [
        f"Run {summary['id']} {summary['status']} (mode={summary['mode']}, dry_run={summary['dry_run']}).",
        f"  records_processed      : {stats['records_processed']}",
        f"  records_created        : {stats['records_created']}",
        f"  records_updated        : {stats['records_updated']}",
        f"  records_failed         : {stats['records_failed']}",
        f"  conflicts_detected     : {stats['conflicts_detected']}",
        f"  conflicts_auto_resolved: {stats['conflicts_auto_resolved']}",
        f"  village_transfers      : {stats['village_transfers']}",
    ]
    if summary.get("error_message"):
        lines.append(f"  error                  : {summary['error_message']}")
    return "\n".join(lines)


@hris_cli.command("sync")
@click.option(
    "--mode",
    type=click.Choice([mode.value for mode in SyncMode]),
    default=SyncMode.INCREMENTAL.value,
    show_default=True,
)
@click.option("--dry-run", is_flag=True, help="Compute outcomes without writing identities or conflicts.")
@click.option("--since", type=click.DateTime(), help="Override the incremental watermark (UTC).")
@click.option("--employee-id", "employee_ids", multiple=True, help="Employee id for manual runs (repeatable).")
@click.option("--status", "status_filter", help="Lifecycle status filter for full runs.")
@click.option("--json", "as_json", is_flag=True, help="Emit the run summary as JSON.")
@click.pass_context
def hris_sync(
    ctx,
    mode: str,
    dry_run: bool,
    since: Optional[datetime],
    employee_ids: tuple[str, ...],
    status_filter: Optional[str],
    as_json: bool,
):
    """Run a directory sync inline."""
    app = _load_enabled_app(ctx)
    sync_mode = SyncMode(mode)
    if sync_mode == SyncMode.MANUAL and not employee_ids:
        raise click.ClickException("Manual sync requires at least one --employee-id.")
    if sync_mode != SyncMode.FULL and status_filter:
        raise click.ClickException("--status only applies to full syncs.")

    if sync_mode == SyncMode.FULL and not status_filter:
        status_filter = app.config.get("HRIS_FULL_SYNC_STATUS")

    orchestrator = create_sync_orchestrator(app)
    try:
        run = orchestrator.run_sync(
            sync_mode,
            dry_run=dry_run,
            since=since,
            employee_ids=list(employee_ids),
            status_filter=status_filter,
            trigger=SyncTrigger.CLI,
        )
    except SyncAlreadyRunningError as exc:
        raise click.ClickException(str(exc)) from exc
    except (DirectoryError, ValueError) as exc:
        raise click.ClickException(f"HRIS sync failed: {exc}") from exc

    summary = summarize_run(run).as_dict()
    if as_json:
        click.echo(json.dumps(summary, indent=2, sort_keys=True))
    else:
        click.echo(_format_run(summary))


@hris_cli.command("status")
@click.pass_context
def hris_status(ctx):
    """Show whether a sync is running and the latest run."""
    _load_enabled_app(ctx)
    snapshot = HRISRunService().status()
    click.echo(json.dumps(snapshot.as_dict(), indent=2, sort_keys=True))


@hris_cli.command("history")
@click.option("--limit", default=10, show_default=True, type=click.IntRange(1, 100))
@click.option("--page", default=1, show_default=True, type=click.IntRange(1))
@click.pass_context
def hris_history(ctx, limit: int, page: int):
    """List recent sync runs, newest first."""
    _load_enabled_app(ctx)
    result = HRISRunService().list_runs(RunFilters.coerce(page=page, page_size=limit))
    if not result.items:
        click.echo("No sync runs recorded.")
        return
    for summary in result.items:
        stats = summary.statistics
        click.echo(
            f"{summary.id:>5}  {summary.status:<11} {summary.mode:<11} "
            f"{'dry-run ' if summary.dry_run else ''}"
            f"processed={stats['records_processed']} created={stats['records_created']} "
            f"updated={stats['records_updated']} failed={stats['records_failed']} "
            f"conflicts={stats['conflicts_detected']}"
        )
    click.echo(f"Page {result.page}/{max(result.total_pages, 1)} ({result.total} runs)")


@hris_cli.command("conflicts")
@click.option("--run-id", type=int, help="Only conflicts detected by this run.")
@click.option("--status", "statuses", multiple=True, help="Conflict status filter (default: pending).")
@click.option("--kind", "kinds", multiple=True, help="Conflict kind filter (repeatable).")
@click.option("--page", default=1, show_default=True, type=click.IntRange(1))
@click.pass_context
def hris_conflicts(ctx, run_id: Optional[int], statuses: tuple[str, ...], kinds: tuple[str, ...], page: int):
    """List conflicts as JSON."""
    _load_enabled_app(ctx)
    try:
        filters = ConflictFilters.coerce(page=page, run_id=run_id, statuses=statuses, kinds=kinds)
    except ValueError as exc:
        raise click.BadParameter(str(exc)) from exc
    result = HRISConflictService().list_conflicts(filters)
    payload = {
        "conflicts": [serialize_conflict(conflict) for conflict in result.items],
        "total": result.total,
        "page": result.page,
        "total_pages": result.total_pages,
    }
    click.echo(json.dumps(payload, indent=2, sort_keys=True))


def _parse_merge(pairs: tuple[str, ...]) -> dict[str, str] | None:
    if not pairs:
        return None
    selections: dict[str, str] = {}
    for pair in pairs:
        name, sep, source = pair.partition("=")
        if not sep or not name.strip() or not source.strip():
            raise click.BadParameter(f"Expected FIELD=system|hris, got '{pair}'.", param_hint="--merge")
        selections[name.strip()] = source.strip()
    return selections


@hris_cli.command("resolve")
@click.argument("conflict_id", type=int)
@click.argument("choice", type=click.Choice(["keep_system", "use_hris", "merge", "create_new"]))
@click.option("--notes", help="Free-text note stored with the resolution.")
@click.option("--merge", "merge_pairs", multiple=True, help="FIELD=system|hris selection for merge (repeatable).")
@click.option("--force", is_flag=True, help="Apply even if the identity changed since detection.")
@click.option("--actor", "actor_id", help="User id recorded as the resolver.")
@click.pass_context
def hris_resolve(
    ctx,
    conflict_id: int,
    choice: str,
    notes: Optional[str],
    merge_pairs: tuple[str, ...],
    force: bool,
    actor_id: Optional[str],
):
    """Resolve a pending conflict."""
    app = _load_enabled_app(ctx)
    resolver = ConflictResolver(logger=app.logger)
    try:
        conflict = resolver.apply_resolution(
            conflict_id,
            choice,
            actor_id=actor_id,
            notes=notes,
            merge=_parse_merge(merge_pairs),
            force=force,
        )
    except ConflictResolutionError as exc:
        raise click.ClickException(str(exc)) from exc
    click.echo(f"Conflict {conflict.id} resolved with {conflict.resolution.value}.")


@hris_cli.command("test-connection")
@click.pass_context
def hris_test_connection(ctx):
    """Check that the configured directory answers."""
    app = _load_enabled_app(ctx)
    status = resolve_directory_client(app).test_connection()
    if not status.ok:
        raise click.ClickException(f"HRIS connection failed: {status.error}")
    click.echo(f"HRIS connection OK (client: {get_hris_client_kind(app)}).")


@hris_cli.command("reap-stale")
@click.option("--minutes", type=click.IntRange(1), help="Age threshold (default: HRIS_STALE_RUN_MINUTES).")
@click.pass_context
def hris_reap_stale(ctx, minutes: Optional[int]):
    """Fail in-progress runs older than the threshold."""
    app = _load_enabled_app(ctx)
    threshold = minutes or int(app.config.get("HRIS_STALE_RUN_MINUTES", 180))
    reaped = HRISRunService().reap_stale_runs(older_than_minutes=threshold)
    if not reaped:
        click.echo("No stale runs found.")
        return
    click.echo(f"Marked {len(reaped)} stale run(s) as failed: {', '.join(str(run_id) for run_id in reaped)}")
