"""
Wild Apricot sync orchestrator.

Reconciles contacts, events and registrations from Wild Apricot into the
ClubSync tables. Each record is resolved through ``wa_id_mappings`` and then
created, updated (only when a field changed) or skipped. Every record runs in
its own savepoint so a failure is counted and the pass moves on; transport and
authentication failures abort the run.
"""

from __future__ import annotations

import logging
import uuid
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Iterable, Mapping, Sequence

from sqlalchemy import select
from sqlalchemy.orm import Session

from clubsync.importer.adapters.wildapricot import is_dry_run, validate_production_safety
from clubsync.importer.adapters.wildapricot.client import WildApricotClient, create_wildapricot_client
from clubsync.importer.adapters.wildapricot.config import WildApricotConfig
from clubsync.importer.adapters.wildapricot.records import WAContact, WAEvent, WAEventRegistration
from clubsync.importer.metrics import record_wildapricot_rows, record_wildapricot_sync_run
from clubsync.models import (
    AuditAction,
    EntityType,
    Event,
    EventRegistration,
    IdMapping,
    Member,
    MembershipStatus,
    SyncState,
    db,
)

from .preflight import run_preflight_checks
from .sink import DryRunSink, LiveSink, SyncSink
from .transform import (
    EVENT_SYNC_FIELDS,
    MEMBER_SYNC_FIELDS,
    REGISTRATION_SYNC_FIELDS,
    UNKNOWN_STATUS_CODE,
    get_entity_changes,
    map_contact_status_to_code,
    transform_contact,
    transform_event,
    transform_registration,
)

SYNC_MODE_FULL = "full"
SYNC_MODE_INCREMENTAL = "incremental"
SYNC_MODES = (SYNC_MODE_FULL, SYNC_MODE_INCREMENTAL)
AUDIT_SOURCE = "wa_import"


@dataclass(frozen=True)
class _EntityKind:
    key: str
    entity_type: str
    model: type
    resource_type: str
    fields: Sequence[str]
    cache_attr: str | None = None


MEMBERS = _EntityKind("members", EntityType.MEMBER, Member, "Member", MEMBER_SYNC_FIELDS, "member_ids")
EVENTS = _EntityKind("events", EntityType.EVENT, Event, "Event", EVENT_SYNC_FIELDS, "event_ids")
REGISTRATIONS = _EntityKind(
    "registrations",
    EntityType.REGISTRATION,
    EventRegistration,
    "EventRegistration",
    REGISTRATION_SYNC_FIELDS,
)


@dataclass
class EntityCounters:
    created: int = 0
    updated: int = 0
    skipped: int = 0
    errors: int = 0

    def bump(self, action: str) -> None:
        setattr(self, action, getattr(self, action) + 1)

    def to_dict(self) -> dict[str, int]:
        return {
            "created": self.created,
            "updated": self.updated,
            "skipped": self.skipped,
            "errors": self.errors,
        }


@dataclass(frozen=True)
class SyncError:
    entity_type: str
    external_id: str | None
    message: str

    def to_dict(self) -> dict[str, object]:
        return {"entity_type": self.entity_type, "external_id": self.external_id, "message": self.message}


def _new_stats() -> dict[str, EntityCounters]:
    return {kind.key: EntityCounters() for kind in (MEMBERS, EVENTS, REGISTRATIONS)}


@dataclass
class SyncRun:
    """In-memory state for one sync invocation."""

    run_id: str
    mode: str
    dry_run: bool
    started_at: datetime
    finished_at: datetime | None = None
    stats: dict[str, EntityCounters] = field(default_factory=_new_stats)
    errors: list[SyncError] = field(default_factory=list)
    rejected: list[SyncError] = field(default_factory=list)
    member_ids: dict[str, str] = field(default_factory=dict)
    event_ids: dict[str, str] = field(default_factory=dict)
    status_ids: dict[str, str] = field(default_factory=dict)
    pending_writes: int = 0


@dataclass
class SyncResult:
    run_id: str
    mode: str
    dry_run: bool
    started_at: datetime
    finished_at: datetime
    stats: dict[str, EntityCounters]
    errors: list[SyncError]
    rejected: list[SyncError]

    @classmethod
    def from_run(cls, run: SyncRun) -> "SyncResult":
        return cls(
            run_id=run.run_id,
            mode=run.mode,
            dry_run=run.dry_run,
            started_at=run.started_at,
            finished_at=run.finished_at or run.started_at,
            stats=run.stats,
            errors=list(run.errors),
            rejected=list(run.rejected),
        )

    @property
    def success(self) -> bool:
        return not self.errors

    @property
    def duration_seconds(self) -> float:
        return max(0.0, (self.finished_at - self.started_at).total_seconds())

    def to_dict(self) -> dict[str, object]:
        return {
            "run_id": self.run_id,
            "mode": self.mode,
            "dry_run": self.dry_run,
            "success": self.success,
            "started_at": self.started_at.isoformat(),
            "finished_at": self.finished_at.isoformat(),
            "duration_seconds": round(self.duration_seconds, 3),
            "stats": {key: counters.to_dict() for key, counters in self.stats.items()},
            "errors": [error.to_dict() for error in self.errors],
            "rejected": [error.to_dict() for error in self.rejected],
        }


def _external_id(value: object | None) -> str | None:
    if value is None:
        return None
    token = str(value).strip()
    return token or None


class WildApricotSync:
    """Run full or incremental reconciliation passes against one Wild Apricot account."""

    def __init__(
        self,
        client: WildApricotClient,
        *,
        config: WildApricotConfig | None = None,
        session: Session | None = None,
        dry_run: bool | None = None,
        sink: SyncSink | None = None,
        clock: Callable[[], datetime] | None = None,
        env: Mapping[str, str] | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self.client = client
        self.config = config or client.config
        self.session = session or db.session
        self.env = env
        self.dry_run = is_dry_run(env) if dry_run is None else dry_run
        self.sink = sink or (DryRunSink(self.session) if self.dry_run else LiveSink(self.session))
        self.clock = clock or (lambda: datetime.now(timezone.utc))
        self.logger = logger or logging.getLogger(__name__)

    # Public API -----------------------------------------------------------------

    def full_sync(self) -> SyncResult:
        """Reconcile every contact, event and registration."""
        return self._execute(SYNC_MODE_FULL)

    def incremental_sync(self) -> SyncResult:
        """Reconcile recently modified contacts and events inside the lookback window."""
        return self._execute(SYNC_MODE_INCREMENTAL)

    def sync(self, mode: str) -> SyncResult:
        if mode not in SYNC_MODES:
            raise ValueError(f"Unknown sync mode {mode!r}; expected one of {', '.join(SYNC_MODES)}.")
        return self._execute(mode)

    # Run lifecycle --------------------------------------------------------------

    def _execute(self, mode: str) -> SyncResult:
        if not self.dry_run:
            validate_production_safety(self.env)
        run_preflight_checks(self.session)

        run = SyncRun(run_id=str(uuid.uuid4()), mode=mode, dry_run=self.dry_run, started_at=self.clock())
        self._load_run_caches(run)
        self.logger.info(
            "Wild Apricot %s sync started (%s)",
            mode,
            "dry run" if run.dry_run else "live",
            extra={"wa_sync_run_id": run.run_id, "wa_sync_mode": mode, "wa_sync_dry_run": run.dry_run},
        )

        try:
            with self._transaction():
                contacts, events = self._fetch(run)
                self._sync_members(run, contacts)
                self._sync_events(run, events)
                self._sync_registrations(run, events)
                self.sink.write_sync_state(self._watermarks(run))
        except Exception:
            elapsed = (self.clock() - run.started_at).total_seconds()
            record_wildapricot_sync_run(mode=mode, status="failure", duration_seconds=elapsed)
            self.logger.error(
                "Wild Apricot %s sync aborted",
                mode,
                exc_info=True,
                extra={"wa_sync_run_id": run.run_id, "wa_sync_stats": self._stats_dict(run)},
            )
            raise

        run.finished_at = self.clock()
        result = SyncResult.from_run(run)
        self._report(result)
        return result

    def _fetch(self, run: SyncRun) -> tuple[list[WAContact], list[WAEvent]]:
        if run.mode == SYNC_MODE_FULL:
            return self.client.fetch_contacts(), self.client.fetch_events()

        state = self._get_sync_state()
        contacts_since = state.last_contact_sync_at if state and state.last_contact_sync_at else None
        if contacts_since is None:
            contacts_since = run.started_at - timedelta(days=self.config.contacts_lookback_days)
        events_from = run.started_at - timedelta(days=self.config.events_lookback_days)
        self.logger.info(
            "Incremental window resolved",
            extra={
                "wa_sync_run_id": run.run_id,
                "wa_contacts_since": contacts_since.isoformat(),
                "wa_events_from": events_from.isoformat(),
            },
        )
        contacts = self.client.fetch_contacts_modified_since(contacts_since)
        events = self.client.fetch_events_from_date(events_from)
        return contacts, events

    def _load_run_caches(self, run: SyncRun) -> None:
        run.status_ids = {status.code: status.id for status in self.session.scalars(select(MembershipStatus))}
        stmt = select(IdMapping).where(IdMapping.entity_type.in_((EntityType.MEMBER, EntityType.EVENT)))
        for mapping in self.session.scalars(stmt):
            cache = run.member_ids if mapping.entity_type == EntityType.MEMBER else run.event_ids
            cache[mapping.external_id] = mapping.internal_id

    def _get_sync_state(self) -> SyncState | None:
        return self.session.scalars(select(SyncState).order_by(SyncState.id.asc())).first()

    def _watermarks(self, run: SyncRun) -> dict[str, datetime]:
        mode_field = "last_full_sync_at" if run.mode == SYNC_MODE_FULL else "last_incremental_sync_at"
        return {
            mode_field: run.started_at,
            "last_contact_sync_at": run.started_at,
            "last_event_sync_at": run.started_at,
            "last_registration_sync_at": run.started_at,
        }

    # Entity passes --------------------------------------------------------------

    def _sync_members(self, run: SyncRun, contacts: Iterable[WAContact]) -> None:
        for contact in contacts:
            self._process(run, MEMBERS, _external_id(contact.get("Id")), self._sync_member, contact)

    def _sync_member(self, run: SyncRun, external_id: str, contact: WAContact) -> str:
        code = map_contact_status_to_code(contact.get("Status"))
        status_id = run.status_ids.get(code) or run.status_ids[UNKNOWN_STATUS_CODE]
        result = transform_contact(contact, status_id)
        if not result.success:
            self._reject(run, MEMBERS, external_id, result.error)
            return "skipped"
        self._log_warnings(run, result.warnings)
        email = result.data["email"]
        return self._upsert(
            run,
            MEMBERS,
            external_id,
            result.data,
            natural_key=lambda: self.sink.find_member_by_email(email),
        )

    def _sync_events(self, run: SyncRun, events: Iterable[WAEvent]) -> None:
        for event in events:
            self._process(run, EVENTS, _external_id(event.get("Id")), self._sync_event, event)

    def _sync_event(self, run: SyncRun, external_id: str, event: WAEvent) -> str:
        organizer = (event.get("Details") or {}).get("Organizer") or {}
        organizer_id = _external_id(organizer.get("Id"))
        event_chair_id = None
        if organizer_id is not None:
            event_chair_id = run.member_ids.get(organizer_id)
            if event_chair_id is None:
                self.logger.warning(
                    "Event chair %s not found for event %s",
                    organizer_id,
                    external_id,
                    extra={"wa_sync_run_id": run.run_id},
                )
        result = transform_event(event, event_chair_id)
        if not result.success:
            self._reject(run, EVENTS, external_id, result.error)
            return "skipped"
        self._log_warnings(run, result.warnings)
        return self._upsert(run, EVENTS, external_id, result.data)

    def _sync_registrations(self, run: SyncRun, events: Iterable[WAEvent]) -> None:
        for event in events:
            external_event_id = _external_id(event.get("Id"))
            event_id = run.event_ids.get(external_event_id) if external_event_id else None
            if event_id is None:
                continue
            registrations = self.client.fetch_event_registrations(event["Id"])
            for registration in registrations:
                self._process(
                    run,
                    REGISTRATIONS,
                    _external_id(registration.get("Id")),
                    self._sync_registration,
                    registration,
                    event_id,
                )

    def _sync_registration(
        self,
        run: SyncRun,
        external_id: str,
        registration: WAEventRegistration,
        event_id: str,
    ) -> str:
        contact_id = _external_id((registration.get("Contact") or {}).get("Id"))
        member_id = run.member_ids.get(contact_id) if contact_id else None
        if member_id is None:
            self._reject(
                run,
                REGISTRATIONS,
                external_id,
                f"Registration {external_id} references unknown contact {contact_id}",
            )
            return "skipped"
        result = transform_registration(registration, event_id, member_id)
        if not result.success:
            self._reject(run, REGISTRATIONS, external_id, result.error)
            return "skipped"
        self._log_warnings(run, result.warnings)
        return self._upsert(
            run,
            REGISTRATIONS,
            external_id,
            result.data,
            natural_key=lambda: self.sink.find_registration(event_id, member_id),
        )

    # Reconciliation -------------------------------------------------------------

    def _process(
        self,
        run: SyncRun,
        kind: _EntityKind,
        external_id: str | None,
        handler: Callable[..., str],
        *args: Any,
    ) -> None:
        counters = run.stats[kind.key]
        if external_id is None:
            self._reject(run, kind, None, f"{kind.resource_type} record without an Id")
            counters.skipped += 1
            return
        try:
            with self.session.begin_nested():
                action = handler(run, external_id, *args)
        except Exception as exc:
            counters.errors += 1
            run.errors.append(SyncError(kind.entity_type, external_id, str(exc)))
            self.logger.error(
                "Failed to sync %s %s",
                kind.entity_type,
                external_id,
                exc_info=True,
                extra={"wa_sync_run_id": run.run_id, "wa_entity_type": kind.entity_type},
            )
            return
        counters.bump(action)
        self._checkpoint(run)

    def _upsert(
        self,
        run: SyncRun,
        kind: _EntityKind,
        external_id: str,
        data: Mapping[str, Any],
        *,
        natural_key: Callable[[], Any] | None = None,
    ) -> str:
        now = self.clock()
        mapping = self.sink.get_mapping(kind.entity_type, external_id)
        if mapping is not None:
            record = self.sink.load(kind.model, mapping.internal_id)
            if record is None:
                internal_id = self.sink.create(kind.model, data)
                self.sink.repoint_mapping(mapping, internal_id, now)
                self._remember(run, kind, external_id, internal_id)
                self.logger.warning(
                    "Mapping for %s %s pointed at a missing record; recreated it",
                    kind.entity_type,
                    external_id,
                    extra={"wa_sync_run_id": run.run_id, "wa_internal_id": internal_id},
                )
                self.sink.audit(
                    AuditAction.CREATE,
                    kind.resource_type,
                    internal_id,
                    self._audit_metadata(run, external_id, repaired_mapping=True),
                )
                return "created"
            self._remember(run, kind, external_id, record.id)
            action = self._apply_changes(run, kind, record, external_id, data)
            self.sink.touch_mapping(mapping, now)
            return action

        existing = natural_key() if natural_key is not None else None
        if existing is not None:
            self.logger.warning(
                "%s %s matches existing record %s; linking instead of creating",
                kind.resource_type,
                external_id,
                existing.id,
                extra={"wa_sync_run_id": run.run_id, "wa_entity_type": kind.entity_type},
            )
            self.sink.create_mapping(kind.entity_type, external_id, existing.id, now)
            self._remember(run, kind, external_id, existing.id)
            return self._apply_changes(run, kind, existing, external_id, data)

        internal_id = self.sink.create(kind.model, data)
        self.sink.create_mapping(kind.entity_type, external_id, internal_id, now)
        self._remember(run, kind, external_id, internal_id)
        self.sink.audit(AuditAction.CREATE, kind.resource_type, internal_id, self._audit_metadata(run, external_id))
        return "created"

    def _apply_changes(
        self,
        run: SyncRun,
        kind: _EntityKind,
        record: Any,
        external_id: str,
        data: Mapping[str, Any],
    ) -> str:
        changes = get_entity_changes(record, data, kind.fields)
        if not changes:
            return "skipped"
        self.sink.update(record, changes)
        self.sink.audit(
            AuditAction.UPDATE,
            kind.resource_type,
            record.id,
            self._audit_metadata(run, external_id, changes=changes),
        )
        return "updated"

    # Helpers --------------------------------------------------------------------

    @staticmethod
    def _remember(run: SyncRun, kind: _EntityKind, external_id: str, internal_id: str) -> None:
        if kind.cache_attr:
            getattr(run, kind.cache_attr)[external_id] = internal_id

    @staticmethod
    def _audit_metadata(run: SyncRun, external_id: str, **extra: Any) -> dict[str, Any]:
        return {
            "source": AUDIT_SOURCE,
            "sync_run_id": run.run_id,
            "mode": run.mode,
            "external_id": external_id,
            **extra,
        }

    def _reject(self, run: SyncRun, kind: _EntityKind, external_id: str | None, message: str | None) -> None:
        message = message or "Transform failed"
        run.rejected.append(SyncError(kind.entity_type, external_id, message))
        self.logger.warning(
            "Skipping %s %s: %s",
            kind.entity_type,
            external_id,
            message,
            extra={"wa_sync_run_id": run.run_id, "wa_entity_type": kind.entity_type},
        )

    def _log_warnings(self, run: SyncRun, warnings: Iterable[str]) -> None:
        for warning in warnings:
            self.logger.warning(warning, extra={"wa_sync_run_id": run.run_id})

    def _checkpoint(self, run: SyncRun) -> None:
        run.pending_writes += 1
        if run.pending_writes >= self.config.db_batch_size:
            self.session.commit()
            run.pending_writes = 0

    @staticmethod
    def _stats_dict(run: SyncRun) -> dict[str, dict[str, int]]:
        return {key: counters.to_dict() for key, counters in run.stats.items()}

    def _report(self, result: SyncResult) -> None:
        for key, counters in result.stats.items():
            for action, count in counters.to_dict().items():
                record_wildapricot_rows(entity=key, action=action, count=count)
        status = "success" if result.success else "partial"
        record_wildapricot_sync_run(mode=result.mode, status=status, duration_seconds=result.duration_seconds)
        self.logger.info(
            "Wild Apricot %s sync finished (%s)",
            result.mode,
            status,
            extra={
                "wa_sync_run_id": result.run_id,
                "wa_sync_stats": {key: counters.to_dict() for key, counters in result.stats.items()},
                "wa_sync_error_count": len(result.errors),
                "wa_sync_rejected_count": len(result.rejected),
                "wa_sync_duration_seconds": round(result.duration_seconds, 3),
            },
        )

    @contextmanager
    def _transaction(self):
        try:
            yield
            self.session.commit()
        except Exception:
            self.session.rollback()
            raise


def run_wildapricot_sync(
    mode: str = SYNC_MODE_FULL,
    *,
    client: WildApricotClient | None = None,
    dry_run: bool | None = None,
    session: Session | None = None,
    env: Mapping[str, str] | None = None,
) -> SyncResult:
    """Build a client from the environment (unless given) and run one sync pass."""

    client = client or create_wildapricot_client(env=env)
    return WildApricotSync(client, session=session, dry_run=dry_run, env=env).sync(mode)


def full_sync(**kwargs: Any) -> SyncResult:
    return run_wildapricot_sync(SYNC_MODE_FULL, **kwargs)


def incremental_sync(**kwargs: Any) -> SyncResult:
    return run_wildapricot_sync(SYNC_MODE_INCREMENTAL, **kwargs)
