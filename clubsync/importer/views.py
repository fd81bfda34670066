"""
Importer blueprint: health, worker heartbeat, and Wild Apricot status endpoints.
"""

from __future__ import annotations

from celery.exceptions import TimeoutError as CeleryTimeoutError
from flask import Blueprint, current_app, jsonify, request
from sqlalchemy import select

from clubsync.models import SyncState, db

from .celery_app import DEFAULT_QUEUE_NAME, get_celery_app
from .pipeline.stale import DEFAULT_STALE_DAYS, get_stale_record_counts
from .registry import AdapterDescriptor

importer_blueprint = Blueprint("importer", __name__, url_prefix="/importer")


def _serialize_adapter(adapter: AdapterDescriptor) -> dict:
    return {
        "name": adapter.name,
        "title": adapter.title,
        "summary": adapter.summary,
        "required_env_vars": list(adapter.required_env_vars),
    }


def _isoformat(value):
    return value.isoformat() if value is not None else None


@importer_blueprint.get("/health")
def importer_healthcheck():
    """
    Lightweight health endpoint proving the importer blueprint mounted correctly.
    """
    importer_state = current_app.extensions.get("importer", {})
    adapters = importer_state.get("active_adapters", ())
    return (
        jsonify(
            {
                "status": "ok",
                "enabled": importer_state.get("enabled", False),
                "adapters": [_serialize_adapter(adapter) for adapter in adapters],
                "readiness": importer_state.get("adapter_readiness", {}),
            }
        ),
        200,
    )


@importer_blueprint.get("/worker_health")
def importer_worker_health():
    """
    Validate importer worker availability via the heartbeat task.
    """
    importer_state = current_app.extensions.get("importer", {})
    enabled = importer_state.get("enabled", False)
    worker_enabled = importer_state.get("worker_enabled", False)
    timeout_seconds = float(request.args.get("timeout", 5))

    payload = {
        "importer_enabled": enabled,
        "worker_enabled": worker_enabled,
        "queue": DEFAULT_QUEUE_NAME,
        "timeout_seconds": timeout_seconds,
    }

    if not enabled or not worker_enabled:
        payload["status"] = "disabled"
        if enabled:
            payload["message"] = "Worker flag disabled; start the worker or set IMPORTER_WORKER_ENABLED=true."
        return jsonify(payload), 200

    celery_app = get_celery_app(current_app)
    if celery_app is None:
        payload["status"] = "error"
        payload["error"] = "celery_app_unavailable"
        return jsonify(payload), 500

    task = celery_app.tasks.get("importer.healthcheck")
    if task is None:
        payload["status"] = "error"
        payload["error"] = "heartbeat_task_missing"
        return jsonify(payload), 500

    result = task.apply_async()
    try:
        payload["heartbeat"] = result.get(timeout=timeout_seconds)
        payload["status"] = "ok"
        return jsonify(payload), 200
    except CeleryTimeoutError:
        payload["status"] = "timeout"
        return jsonify(payload), 504
    except Exception as exc:  # pragma: no cover - surfacing unexpected errors
        current_app.logger.exception("Importer worker health check failed.")
        payload["status"] = "error"
        payload["error"] = str(exc)
        return jsonify(payload), 500


@importer_blueprint.get("/wildapricot/status")
def wildapricot_status():
    """
    Report adapter readiness, the last sync watermarks and stale mapping counts.

    ``?refresh=1`` recomputes readiness; ``?ping=1`` additionally authenticates.
    """
    from . import get_adapter_readiness, refresh_adapter_readiness

    if request.args.get("refresh") == "1" or request.args.get("ping") == "1":
        readiness = refresh_adapter_readiness(current_app, require_auth_ping=request.args.get("ping") == "1")
    else:
        readiness = get_adapter_readiness(current_app)

    state = db.session.scalars(select(SyncState).order_by(SyncState.id.asc())).first()
    stale_days = current_app.config.get("WA_STALE_DAYS", DEFAULT_STALE_DAYS)
    payload = {
        "readiness": readiness.get("wildapricot"),
        "sync_state": {
            "last_full_sync_at": _isoformat(state.last_full_sync_at) if state else None,
            "last_incremental_sync_at": _isoformat(state.last_incremental_sync_at) if state else None,
            "last_contact_sync_at": _isoformat(state.last_contact_sync_at) if state else None,
            "last_event_sync_at": _isoformat(state.last_event_sync_at) if state else None,
            "last_registration_sync_at": _isoformat(state.last_registration_sync_at) if state else None,
        },
        "stale": {"stale_days": stale_days, "counts": get_stale_record_counts(stale_days, session=db.session)},
    }
    return jsonify(payload), 200
