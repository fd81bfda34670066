from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import func, select

from clubsync.importer.pipeline.stale import (
    cleanup_stale_mappings,
    detect_stale_records,
    get_stale_record_counts,
)
from clubsync.models import EntityType, IdMapping, db

NOW = datetime(2024, 5, 1, tzinfo=timezone.utc)


def _mapping(entity_type, external_id, days_ago):
    mapping = IdMapping(
        entity_type=entity_type,
        external_id=external_id,
        internal_id=f"internal-{external_id}",
        last_synced_at=NOW - timedelta(days=days_ago),
    )
    db.session.add(mapping)
    return mapping


@pytest.fixture
def mappings(app):
    _mapping(EntityType.MEMBER, "1", 45)
    _mapping(EntityType.MEMBER, "2", 2)
    _mapping(EntityType.EVENT, "10", 31)
    _mapping(EntityType.REGISTRATION, "100", 90)
    _mapping(EntityType.REGISTRATION, "101", 29)
    db.session.commit()


def test_detect_stale_records_partitions_by_entity(mappings):
    result = detect_stale_records(30, session=db.session, now=NOW)

    assert [record.external_id for record in result.members] == ["1"]
    assert [record.external_id for record in result.events] == ["10"]
    assert [record.external_id for record in result.registrations] == ["100"]
    assert result.total == 3
    assert result.to_dict()["counts"] == {"members": 1, "events": 1, "registrations": 1, "total": 3}


def test_stale_counts_respect_window(mappings):
    assert get_stale_record_counts(60, session=db.session, now=NOW)["total"] == 1
    assert get_stale_record_counts(1, session=db.session, now=NOW)["total"] == 5


def test_cleanup_defaults_to_report_only(mappings):
    removed = cleanup_stale_mappings(30, session=db.session, now=NOW)

    assert removed == 3
    assert db.session.scalar(select(func.count()).select_from(IdMapping)) == 5


def test_cleanup_deletes_only_stale_mappings(mappings):
    removed = cleanup_stale_mappings(30, dry_run=False, session=db.session, now=NOW)

    assert removed == 3
    remaining = sorted(db.session.scalars(select(IdMapping.external_id)))
    assert remaining == ["101", "2"]


def test_negative_window_is_rejected(app):
    with pytest.raises(ValueError):
        detect_stale_records(-1, session=db.session, now=NOW)
