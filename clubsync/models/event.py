# clubsync/models/event.py

from __future__ import annotations

import enum
from datetime import datetime

from sqlalchemy import Enum, ForeignKey, Index, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import BaseModel, db, new_uuid, utcnow


class RegistrationStatus(str, enum.Enum):
    """Lifecycle states for an event registration."""

    CONFIRMED = "CONFIRMED"
    CANCELLED = "CANCELLED"
    PENDING_PAYMENT = "PENDING_PAYMENT"
    NO_SHOW = "NO_SHOW"
    WAITLISTED = "WAITLISTED"


class Event(BaseModel):
    """Club event. ``internal_notes`` is managed by staff and never synced."""

    __tablename__ = "events"

    id: Mapped[str] = mapped_column(db.String(36), primary_key=True, default=new_uuid)
    title: Mapped[str] = mapped_column(db.String(255), nullable=False, index=True)
    description: Mapped[str | None] = mapped_column(db.Text, nullable=True)
    category: Mapped[str | None] = mapped_column(db.String(100), nullable=True, index=True)
    location: Mapped[str | None] = mapped_column(db.String(255), nullable=True)
    start_time: Mapped[datetime] = mapped_column(db.DateTime(timezone=True), nullable=False, index=True)
    end_time: Mapped[datetime | None] = mapped_column(db.DateTime(timezone=True), nullable=True)
    capacity: Mapped[int | None] = mapped_column(db.Integer, nullable=True)
    is_published: Mapped[bool] = mapped_column(db.Boolean, nullable=False, default=False)
    event_chair_id: Mapped[str | None] = mapped_column(
        ForeignKey("members.id", ondelete="SET NULL"),
        nullable=True,
    )
    internal_notes: Mapped[str | None] = mapped_column(db.Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        db.DateTime(timezone=True),
        nullable=False,
        default=utcnow,
        onupdate=utcnow,
    )

    event_chair = relationship("Member", foreign_keys=[event_chair_id])
    registrations = relationship(
        "EventRegistration",
        back_populates="event",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    def __repr__(self) -> str:
        return f"<Event {self.title}>"


class EventRegistration(BaseModel):
    """A member's registration for an event."""

    __tablename__ = "event_registrations"

    id: Mapped[str] = mapped_column(db.String(36), primary_key=True, default=new_uuid)
    event_id: Mapped[str] = mapped_column(ForeignKey("events.id", ondelete="CASCADE"), nullable=False)
    member_id: Mapped[str] = mapped_column(ForeignKey("members.id", ondelete="CASCADE"), nullable=False)
    status: Mapped[RegistrationStatus] = mapped_column(
        Enum(RegistrationStatus, name="registration_status_enum"),
        nullable=False,
        default=RegistrationStatus.CONFIRMED,
    )
    registered_at: Mapped[datetime | None] = mapped_column(db.DateTime(timezone=True), nullable=True)
    waitlist_position: Mapped[int | None] = mapped_column(db.Integer, nullable=True)
    created_at: Mapped[datetime] = mapped_column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        db.DateTime(timezone=True),
        nullable=False,
        default=utcnow,
        onupdate=utcnow,
    )

    event = relationship("Event", back_populates="registrations")
    member = relationship("Member", back_populates="registrations")

    __table_args__ = (
        UniqueConstraint("event_id", "member_id", name="uq_event_registrations_event_member"),
        Index("idx_event_registrations_member", "member_id"),
    )
