"""
SQLAlchemy models backing the Wild Apricot sync engine.

``wa_id_mappings`` is the durable bridge between Wild Apricot identifiers and
ClubSync primary keys; ``wa_sync_state`` holds the single row of watermarks
used to bound incremental runs.
"""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import CheckConstraint, Index, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from ..base import BaseModel, db, utcnow


class EntityType:
    """Entity type keys stored in ``wa_id_mappings.entity_type``."""

    MEMBER = "member"
    EVENT = "event"
    REGISTRATION = "registration"

    ALL = (MEMBER, EVENT, REGISTRATION)


class IdMapping(BaseModel):
    """Maps a Wild Apricot identifier onto the internal record it was synced into."""

    __tablename__ = "wa_id_mappings"

    id: Mapped[int] = mapped_column(db.Integer, primary_key=True, autoincrement=True)
    entity_type: Mapped[str] = mapped_column(db.String(50), nullable=False, index=True)
    external_id: Mapped[str] = mapped_column(db.String(64), nullable=False)
    internal_id: Mapped[str] = mapped_column(db.String(36), nullable=False)
    last_synced_at: Mapped[datetime] = mapped_column(
        db.DateTime(timezone=True),
        nullable=False,
        default=utcnow,
    )
    created_at: Mapped[datetime] = mapped_column(db.DateTime(timezone=True), nullable=False, default=utcnow)

    __table_args__ = (
        UniqueConstraint("entity_type", "external_id", name="uq_wa_id_mappings_entity_external"),
        Index("idx_wa_id_mappings_synced", "entity_type", "last_synced_at"),
        CheckConstraint("external_id <> ''", name="ck_wa_id_mappings_external_non_empty"),
    )

    def mark_synced(self, *, synced_at: datetime | None = None) -> None:
        """Record that the external identifier was observed during a sync run."""
        self.last_synced_at = synced_at or utcnow()

    def repoint(self, internal_id: str, *, synced_at: datetime | None = None) -> None:
        """Attach the mapping to a replacement record after the original was removed."""
        self.internal_id = internal_id
        self.mark_synced(synced_at=synced_at)


class SyncState(BaseModel):
    """Single-row table of watermarks for the last successful runs."""

    __tablename__ = "wa_sync_state"

    id: Mapped[int] = mapped_column(db.Integer, primary_key=True, autoincrement=True)
    last_full_sync_at: Mapped[datetime | None] = mapped_column(db.DateTime(timezone=True), nullable=True)
    last_incremental_sync_at: Mapped[datetime | None] = mapped_column(db.DateTime(timezone=True), nullable=True)
    last_contact_sync_at: Mapped[datetime | None] = mapped_column(db.DateTime(timezone=True), nullable=True)
    last_event_sync_at: Mapped[datetime | None] = mapped_column(db.DateTime(timezone=True), nullable=True)
    last_registration_sync_at: Mapped[datetime | None] = mapped_column(db.DateTime(timezone=True), nullable=True)
    updated_at: Mapped[datetime] = mapped_column(
        db.DateTime(timezone=True),
        nullable=False,
        default=utcnow,
        onupdate=utcnow,
    )
