"""
Write gate for the Wild Apricot sync.

The orchestrator never writes to the session directly; it goes through a
``SyncSink``. ``LiveSink`` persists entities, mappings, audit rows and
watermarks. ``DryRunSink`` stages creates and updates in an in-memory overlay
keyed by ``(model, id)`` so later reads in the same run see them, and persists
nothing.
"""

from __future__ import annotations

import abc
import enum
import logging
import uuid
from datetime import date, datetime
from types import SimpleNamespace
from typing import Any, Mapping

from sqlalchemy import inspect, select
from sqlalchemy.orm import Session

from clubsync.models import (
    SYSTEM_ACTOR,
    AuditAction,
    AuditLog,
    EventRegistration,
    IdMapping,
    Member,
    SyncState,
)

logger = logging.getLogger(__name__)


def _jsonable(value: Any) -> Any:
    if isinstance(value, enum.Enum):
        return value.value
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, Mapping):
        return {key: _jsonable(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [_jsonable(item) for item in value]
    return value


class SyncSink(abc.ABC):
    """Read helpers shared by both sinks plus the abstract write interface."""

    def __init__(self, session: Session) -> None:
        self.session = session

    # Reads ----------------------------------------------------------------------

    def get_mapping(self, entity_type: str, external_id: str):
        stmt = select(IdMapping).where(
            IdMapping.entity_type == entity_type,
            IdMapping.external_id == external_id,
        )
        return self.session.scalars(stmt).first()

    def load(self, model, internal_id: str):
        return self.session.get(model, internal_id)

    def find_member_by_email(self, email: str):
        return self.session.scalars(select(Member).where(Member.email == email)).first()

    def find_registration(self, event_id: str, member_id: str):
        stmt = select(EventRegistration).where(
            EventRegistration.event_id == event_id,
            EventRegistration.member_id == member_id,
        )
        return self.session.scalars(stmt).first()

    # Writes ---------------------------------------------------------------------

    @abc.abstractmethod
    def create(self, model, data: Mapping[str, Any]) -> str:
        """Insert a record built from ``data`` and return its id."""

    @abc.abstractmethod
    def update(self, record, changes: Mapping[str, Any]) -> None:
        """Apply ``changes`` to ``record``."""

    @abc.abstractmethod
    def create_mapping(self, entity_type: str, external_id: str, internal_id: str, synced_at: datetime):
        """Link an external id to an internal id."""

    @abc.abstractmethod
    def repoint_mapping(self, mapping, internal_id: str, synced_at: datetime) -> None:
        """Point an existing mapping at a replacement record."""

    @abc.abstractmethod
    def touch_mapping(self, mapping, synced_at: datetime) -> None:
        """Refresh ``last_synced_at`` on a mapping seen in this run."""

    @abc.abstractmethod
    def audit(self, action: AuditAction, resource_type: str, resource_id: str, metadata: Mapping[str, Any]) -> None:
        """Record an audit entry; failures must not abort the run."""

    @abc.abstractmethod
    def write_sync_state(self, updates: Mapping[str, datetime]) -> None:
        """Persist run watermarks."""


class LiveSink(SyncSink):
    def create(self, model, data: Mapping[str, Any]) -> str:
        record = model(id=str(uuid.uuid4()), **data)
        self.session.add(record)
        self.session.flush()
        return record.id

    def update(self, record, changes: Mapping[str, Any]) -> None:
        for name, value in changes.items():
            setattr(record, name, value)
        self.session.flush()

    def create_mapping(self, entity_type: str, external_id: str, internal_id: str, synced_at: datetime):
        mapping = IdMapping(
            entity_type=entity_type,
            external_id=external_id,
            internal_id=internal_id,
            last_synced_at=synced_at,
        )
        self.session.add(mapping)
        self.session.flush()
        return mapping

    def repoint_mapping(self, mapping, internal_id: str, synced_at: datetime) -> None:
        mapping.repoint(internal_id, synced_at=synced_at)
        self.session.flush()

    def touch_mapping(self, mapping, synced_at: datetime) -> None:
        mapping.mark_synced(synced_at=synced_at)

    def audit(self, action: AuditAction, resource_type: str, resource_id: str, metadata: Mapping[str, Any]) -> None:
        try:
            with self.session.begin_nested():
                self.session.add(
                    AuditLog(
                        action=action,
                        resource_type=resource_type,
                        resource_id=resource_id,
                        actor=SYSTEM_ACTOR,
                        metadata_json=_jsonable(dict(metadata)),
                    )
                )
        except Exception:
            logger.exception(
                "Failed to write audit log entry",
                extra={"audit_resource_type": resource_type, "audit_resource_id": resource_id},
            )

    def write_sync_state(self, updates: Mapping[str, datetime]) -> None:
        state = self.session.scalars(select(SyncState).order_by(SyncState.id.asc())).first()
        if state is None:
            state = SyncState()
            self.session.add(state)
        for name, value in updates.items():
            setattr(state, name, value)
        self.session.flush()


class DryRunSink(SyncSink):
    def __init__(self, session: Session) -> None:
        super().__init__(session)
        self._records: dict[tuple[type, str], SimpleNamespace] = {}
        self._mappings: dict[tuple[str, str], SimpleNamespace] = {}

    def get_mapping(self, entity_type: str, external_id: str):
        staged = self._mappings.get((entity_type, external_id))
        if staged is not None:
            return staged
        return super().get_mapping(entity_type, external_id)

    def load(self, model, internal_id: str):
        staged = self._records.get((model, internal_id))
        if staged is not None:
            return staged
        return super().load(model, internal_id)

    def find_member_by_email(self, email: str):
        for (model, _), record in self._records.items():
            if model is Member and record.email == email:
                return record
        return self._unless_staged(Member, super().find_member_by_email(email))

    def find_registration(self, event_id: str, member_id: str):
        for (model, _), record in self._records.items():
            if model is EventRegistration and record.event_id == event_id and record.member_id == member_id:
                return record
        return self._unless_staged(EventRegistration, super().find_registration(event_id, member_id))

    def create(self, model, data: Mapping[str, Any]) -> str:
        internal_id = f"dry-run-{uuid.uuid4()}"
        self._records[(model, internal_id)] = SimpleNamespace(id=internal_id, **data)
        return internal_id

    def update(self, record, changes: Mapping[str, Any]) -> None:
        if isinstance(record, SimpleNamespace):
            staged = record
        else:
            staged = self._records.setdefault((type(record), record.id), self._detached_copy(record))
        for name, value in changes.items():
            setattr(staged, name, value)

    def create_mapping(self, entity_type: str, external_id: str, internal_id: str, synced_at: datetime):
        mapping = SimpleNamespace(
            entity_type=entity_type,
            external_id=external_id,
            internal_id=internal_id,
            last_synced_at=synced_at,
        )
        self._mappings[(entity_type, external_id)] = mapping
        return mapping

    def repoint_mapping(self, mapping, internal_id: str, synced_at: datetime) -> None:
        # Persistent mappings must not be mutated; stage a replacement instead.
        self.create_mapping(mapping.entity_type, mapping.external_id, internal_id, synced_at)

    def touch_mapping(self, mapping, synced_at: datetime) -> None:
        return None

    def audit(self, action: AuditAction, resource_type: str, resource_id: str, metadata: Mapping[str, Any]) -> None:
        return None

    def write_sync_state(self, updates: Mapping[str, datetime]) -> None:
        return None

    @staticmethod
    def _detached_copy(record) -> SimpleNamespace:
        """Snapshot an ORM instance's column values; the instance itself is never modified."""
        columns = inspect(record).mapper.column_attrs
        return SimpleNamespace(**{attr.key: getattr(record, attr.key) for attr in columns})

    def _unless_staged(self, model, record):
        # A persistent row with a staged copy only matches through that copy.
        if record is not None and (model, record.id) in self._records:
            return None
        return record
