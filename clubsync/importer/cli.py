"""
Importer CLI commands.

``flask importer`` lists the configured adapters; ``flask importer wildapricot``
drives sync runs, readiness checks, status seeding and stale mapping cleanup.
Commands print JSON so they can be scripted.
"""

from __future__ import annotations

import json
from typing import Any, Optional

import click
from celery import Celery
from celery.exceptions import TimeoutError as CeleryTimeoutError
from flask import current_app
from flask.cli import ScriptInfo, with_appcontext

from clubsync.importer.adapters.wildapricot import (
    WildApricotError,
    check_wildapricot_adapter_readiness,
    ensure_wildapricot_adapter_ready,
    is_dry_run,
)
from clubsync.importer.celery_app import DEFAULT_QUEUE_NAME, get_celery_app
from clubsync.importer.pipeline.preflight import PreflightError, check_preflight, seed_membership_statuses
from clubsync.importer.pipeline.stale import DEFAULT_STALE_DAYS, cleanup_stale_mappings, detect_stale_records
from clubsync.importer.pipeline.wildapricot_sync import SYNC_MODES, run_wildapricot_sync
from clubsync.models import db
from clubsync.utils.importer import get_importer_adapters, is_importer_enabled


def _echo_json(payload: Any) -> None:
    click.echo(json.dumps(payload, indent=2, sort_keys=True, default=str))


@click.group(name="importer", invoke_without_command=True)
@click.pass_context
def importer_cli(ctx):
    """
    Importer management commands.

    Displays configured adapters when invoked without a subcommand.
    """
    info = ctx.ensure_object(ScriptInfo)
    app = info.load_app()
    if not is_importer_enabled(app):
        raise click.ClickException(
            "Importer is disabled via IMPORTER_ENABLED=false. Enable it to run importer CLI commands."
        )
    if ctx.invoked_subcommand is None:
        adapters = get_importer_adapters(app)
        if not adapters:
            click.echo("No importer adapters configured.")
        else:
            click.echo("Enabled importer adapters:")
            for adapter in adapters:
                click.echo(f"  - {adapter}")


def get_disabled_importer_group() -> click.Group:
    """
    Return a minimal command group that informs the operator the importer is disabled.
    """

    @click.group(name="importer", invoke_without_command=True)
    def disabled_group():
        raise click.ClickException("Importer commands are unavailable because IMPORTER_ENABLED=false.")

    return disabled_group


def _resolve_celery(app) -> Optional[Celery]:
    celery_app = get_celery_app(app)
    if celery_app is None:
        raise click.ClickException(
            "Importer Celery app is unavailable. Ensure IMPORTER_ENABLED=true and the "
            "importer package initialises before running worker commands."
        )
    return celery_app


# Worker ----------------------------------------------------------------------------


@importer_cli.group(name="worker")
@click.pass_context
def worker_group(ctx):
    """Manage the importer background worker."""
    info = ctx.ensure_object(ScriptInfo)
    app = info.load_app()
    state = app.extensions.get("importer", {})
    if not state.get("worker_enabled") and not app.config.get("IMPORTER_WORKER_ENABLED"):
        click.echo(
            "Warning: IMPORTER_WORKER_ENABLED is false. Commands will still run, "
            "but enable the flag to surface accurate health status.",
            err=True,
        )


@worker_group.command("run")
@click.option("--loglevel", default="info", show_default=True)
@click.option("--concurrency", type=int, help="Number of worker processes/threads.")
@click.option("--pool", type=str, help="Celery pool implementation (e.g., 'prefork', 'solo', 'threads').")
@click.option("--queues", default=DEFAULT_QUEUE_NAME, show_default=True, help="Comma-separated queue list to consume.")
@click.pass_context
def worker_run(ctx, loglevel: str, concurrency: Optional[int], pool: Optional[str], queues: str):
    """
    Start the Celery worker in the current process.
    """
    info = ctx.ensure_object(ScriptInfo)
    app = info.load_app()
    celery_app = _resolve_celery(app)
    app.extensions.setdefault("importer", {})["worker_enabled"] = True

    argv = ["worker", "--loglevel", loglevel, "-Q", queues]
    if concurrency:
        argv.extend(["--concurrency", str(concurrency)])
    if pool:
        argv.extend(["--pool", pool])

    pool_msg = f", pool: {pool}" if pool else ""
    click.echo(f"Starting importer worker (queues: {queues}, loglevel: {loglevel}{pool_msg})")
    try:
        celery_app.worker_main(argv=argv)
    except KeyboardInterrupt:
        click.echo("Worker shutdown requested. Exiting...")


@worker_group.command("ping")
@click.option("--timeout", default=10.0, show_default=True, help="Seconds to wait for a response.")
@click.pass_context
def worker_ping(ctx, timeout: float):
    """
    Validate worker connectivity by executing the heartbeat task.
    """
    info = ctx.ensure_object(ScriptInfo)
    app = info.load_app()
    celery_app = _resolve_celery(app)
    task = celery_app.tasks.get("importer.healthcheck")
    if task is None:
        raise click.ClickException("Heartbeat task 'importer.healthcheck' is not registered.")

    result = task.apply_async()
    try:
        payload = result.get(timeout=timeout)
    except CeleryTimeoutError as exc:
        raise click.ClickException(f"Worker did not respond within {timeout}s") from exc
    except Exception as exc:  # pragma: no cover - surfacing unexpected errors
        raise click.ClickException(f"Worker ping failed: {exc}") from exc

    _echo_json(payload)


# Wild Apricot ---------------------------------------------------------------------


@importer_cli.group(name="wildapricot")
def wildapricot_group():
    """Wild Apricot sync commands."""


@wildapricot_group.command("sync")
@click.option("--mode", type=click.Choice(SYNC_MODES), default="full", show_default=True)
@click.option("--dry-run", is_flag=True, help="Run every step without persisting anything (also set by DRY_RUN=1).")
@click.option("--async", "run_async", is_flag=True, help="Queue the sync on the importer worker instead of running inline.")
@with_appcontext
def wildapricot_sync(mode: str, dry_run: bool, run_async: bool):
    """Reconcile Wild Apricot contacts, events and registrations."""
    dry_run = dry_run or is_dry_run()
    if run_async:
        celery_app = _resolve_celery(current_app)
        async_result = celery_app.send_task(
            "importer.wildapricot.sync",
            kwargs={"mode": mode, "dry_run": dry_run},
        )
        current_app.logger.info(
            "Wild Apricot sync queued via CLI",
            extra={"importer_task_id": async_result.id, "wa_sync_mode": mode, "wa_sync_dry_run": dry_run},
        )
        _echo_json({"task_id": async_result.id, "status": "queued", "mode": mode, "dry_run": dry_run})
        return

    try:
        result = run_wildapricot_sync(mode, dry_run=dry_run, session=db.session)
    except (WildApricotError, PreflightError) as exc:
        raise click.ClickException(str(exc)) from exc
    _echo_json(result.to_dict())
    if not result.success:
        raise click.ClickException(f"Sync finished with {len(result.errors)} error(s).")


@wildapricot_group.command("health")
@with_appcontext
def wildapricot_health():
    """Authenticate and call the account endpoint."""
    readiness = check_wildapricot_adapter_readiness(require_auth_ping=True)
    _echo_json(readiness.as_dict())
    if readiness.status != "ready":
        raise click.ClickException("Wild Apricot health check failed: " + "; ".join(readiness.messages()))


@wildapricot_group.command("readiness")
@with_appcontext
def wildapricot_readiness():
    """Validate adapter configuration without contacting Wild Apricot."""
    try:
        readiness = ensure_wildapricot_adapter_ready()
    except WildApricotError as exc:
        raise click.ClickException(str(exc)) from exc
    _echo_json(readiness.as_dict())


@wildapricot_group.command("preflight")
@with_appcontext
def wildapricot_preflight():
    """Verify that the lookup rows the sync depends on are present."""
    result = check_preflight(db.session)
    _echo_json(result.to_dict())
    if not result.ok:
        raise click.ClickException(" ".join(result.errors) or "Preflight checks failed.")


@wildapricot_group.command("seed-statuses")
@with_appcontext
def wildapricot_seed_statuses():
    """Insert or refresh the default membership statuses."""
    _echo_json(seed_membership_statuses(db.session))


@wildapricot_group.command("stale")
@click.option("--days", default=DEFAULT_STALE_DAYS, show_default=True, type=click.IntRange(min=1))
@with_appcontext
def wildapricot_stale(days: int):
    """Report mappings that have not been seen by a sync within the window."""
    result = detect_stale_records(days, session=db.session)
    _echo_json(result.to_dict())


@wildapricot_group.command("cleanup-stale")
@click.option("--days", default=DEFAULT_STALE_DAYS, show_default=True, type=click.IntRange(min=1))
@click.option("--apply", "apply_changes", is_flag=True, help="Delete the stale mappings instead of reporting them.")
@with_appcontext
def wildapricot_cleanup_stale(days: int, apply_changes: bool):
    """Delete stale id mappings (report only unless --apply is given)."""
    removed = cleanup_stale_mappings(days, dry_run=not apply_changes, session=db.session)
    _echo_json({"stale_days": days, "dry_run": not apply_changes, "mappings": removed})
