"""Wild Apricot sync pipeline: transforms, write sinks, preflight, stale detection and orchestration."""

from .preflight import (
    DEFAULT_MEMBERSHIP_STATUSES,
    PreflightError,
    PreflightResult,
    check_preflight,
    run_preflight_checks,
    seed_membership_statuses,
)
from .sink import DryRunSink, LiveSink, SyncSink
from .stale import (
    DEFAULT_STALE_DAYS,
    StaleDetectionResult,
    StaleRecord,
    cleanup_stale_mappings,
    detect_stale_records,
    get_stale_record_counts,
)
from .transform import TransformResult, transform_contact, transform_event, transform_registration
from .wildapricot_sync import (
    SYNC_MODE_FULL,
    SYNC_MODE_INCREMENTAL,
    SYNC_MODES,
    EntityCounters,
    SyncError,
    SyncResult,
    WildApricotSync,
    full_sync,
    incremental_sync,
    run_wildapricot_sync,
)

__all__ = [
    "DEFAULT_MEMBERSHIP_STATUSES",
    "PreflightError",
    "PreflightResult",
    "check_preflight",
    "run_preflight_checks",
    "seed_membership_statuses",
    "SyncSink",
    "LiveSink",
    "DryRunSink",
    "DEFAULT_STALE_DAYS",
    "StaleRecord",
    "StaleDetectionResult",
    "detect_stale_records",
    "get_stale_record_counts",
    "cleanup_stale_mappings",
    "TransformResult",
    "transform_contact",
    "transform_event",
    "transform_registration",
    "SYNC_MODE_FULL",
    "SYNC_MODE_INCREMENTAL",
    "SYNC_MODES",
    "EntityCounters",
    "SyncError",
    "SyncResult",
    "WildApricotSync",
    "full_sync",
    "incremental_sync",
    "run_wildapricot_sync",
]
