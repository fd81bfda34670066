"""
Stale mapping detection.

Every sync touches ``last_synced_at`` on the mappings it observes, even when
nothing changed. A mapping untouched for longer than the threshold most likely
points at a record deleted in Wild Apricot. Cleanup removes only the mapping
rows, never the internal entity.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import List

from sqlalchemy import delete, select
from sqlalchemy.orm import Session

from clubsync.models import EntityType, IdMapping, db

DEFAULT_STALE_DAYS = 30


@dataclass(frozen=True)
class StaleRecord:
    entity_type: str
    external_id: str
    internal_id: str
    last_synced_at: datetime

    def to_dict(self) -> dict[str, object]:
        return {
            "entity_type": self.entity_type,
            "external_id": self.external_id,
            "internal_id": self.internal_id,
            "last_synced_at": self.last_synced_at.isoformat() if self.last_synced_at else None,
        }


@dataclass
class StaleDetectionResult:
    stale_days: int
    cutoff: datetime
    members: List[StaleRecord] = field(default_factory=list)
    events: List[StaleRecord] = field(default_factory=list)
    registrations: List[StaleRecord] = field(default_factory=list)

    @property
    def total(self) -> int:
        return len(self.members) + len(self.events) + len(self.registrations)

    def counts(self) -> dict[str, int]:
        return {
            "members": len(self.members),
            "events": len(self.events),
            "registrations": len(self.registrations),
            "total": self.total,
        }

    def to_dict(self) -> dict[str, object]:
        return {
            "stale_days": self.stale_days,
            "cutoff": self.cutoff.isoformat(),
            "counts": self.counts(),
            "members": [record.to_dict() for record in self.members],
            "events": [record.to_dict() for record in self.events],
            "registrations": [record.to_dict() for record in self.registrations],
        }


def _cutoff(stale_days: int, now: datetime | None) -> datetime:
    if stale_days < 0:
        raise ValueError("stale_days must be >= 0")
    now = now or datetime.now(timezone.utc)
    return now - timedelta(days=stale_days)


def detect_stale_records(
    stale_days: int = DEFAULT_STALE_DAYS,
    *,
    session: Session | None = None,
    now: datetime | None = None,
) -> StaleDetectionResult:
    """Return mappings not touched within ``stale_days``, partitioned by entity type."""
    session = session or db.session
    cutoff = _cutoff(stale_days, now)
    result = StaleDetectionResult(stale_days=stale_days, cutoff=cutoff)
    buckets = {
        EntityType.MEMBER: result.members,
        EntityType.EVENT: result.events,
        EntityType.REGISTRATION: result.registrations,
    }
    stmt = (
        select(IdMapping)
        .where(IdMapping.last_synced_at < cutoff)
        .order_by(IdMapping.entity_type.asc(), IdMapping.last_synced_at.asc())
    )
    for mapping in session.scalars(stmt):
        bucket = buckets.get(mapping.entity_type)
        if bucket is None:
            continue
        bucket.append(
            StaleRecord(
                entity_type=mapping.entity_type,
                external_id=mapping.external_id,
                internal_id=mapping.internal_id,
                last_synced_at=mapping.last_synced_at,
            )
        )
    return result


def get_stale_record_counts(
    stale_days: int = DEFAULT_STALE_DAYS,
    *,
    session: Session | None = None,
    now: datetime | None = None,
) -> dict[str, int]:
    return detect_stale_records(stale_days, session=session, now=now).counts()


def cleanup_stale_mappings(
    stale_days: int = DEFAULT_STALE_DAYS,
    *,
    dry_run: bool = True,
    session: Session | None = None,
    now: datetime | None = None,
) -> int:
    """
    Delete stale mapping rows and return how many were (or would be) removed.

    Internal entities are left untouched. Members and registrations seen again
    later are relinked through their natural keys.
    """
    session = session or db.session
    detection = detect_stale_records(stale_days, session=session, now=now)
    if dry_run or detection.total == 0:
        return detection.total
    stmt = delete(IdMapping).where(
        IdMapping.last_synced_at < detection.cutoff,
        IdMapping.entity_type.in_(EntityType.ALL),
    )
    session.execute(stmt)
    session.commit()
    return detection.total
