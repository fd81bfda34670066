"""
Importer Celery tasks.

``importer.healthcheck`` is the worker heartbeat; ``importer.wildapricot.sync``
runs one Wild Apricot reconciliation pass and returns its result payload.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from celery import shared_task
from flask import current_app

from clubsync.importer.pipeline.wildapricot_sync import SYNC_MODE_FULL, run_wildapricot_sync
from clubsync.models import db


@shared_task(name="importer.healthcheck", bind=True)
def importer_healthcheck(self) -> dict[str, Any]:
    """
    Simple heartbeat task used by worker health checks.
    """
    now = datetime.now(timezone.utc)
    return {
        "status": "ok",
        "timestamp": now.isoformat(),
        "worker_hostname": self.request.hostname,
    }


@shared_task(name="importer.wildapricot.sync", bind=True)
def sync_wildapricot(self, *, mode: str = SYNC_MODE_FULL, dry_run: bool | None = None) -> dict[str, Any]:
    """
    Execute a Wild Apricot sync on the importer worker.
    """
    try:
        result = run_wildapricot_sync(mode, dry_run=dry_run, session=db.session)
    except Exception as exc:
        db.session.rollback()
        current_app.logger.exception(
            "Wild Apricot sync task failed",
            extra={"importer_task_id": self.request.id, "wa_sync_mode": mode, "importer_error": str(exc)},
        )
        raise

    payload = result.to_dict()
    current_app.logger.info(
        "Wild Apricot sync task completed",
        extra={
            "importer_task_id": self.request.id,
            "wa_sync_run_id": result.run_id,
            "wa_sync_mode": mode,
            "wa_sync_success": result.success,
        },
    )
    return payload
