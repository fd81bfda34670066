# clubsync/models/member.py

from __future__ import annotations

from datetime import datetime

from sqlalchemy import ForeignKey
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import BaseModel, db, new_uuid, utcnow


class MembershipStatus(BaseModel):
    """Reference table of membership lifecycle states (active, lapsed, ...)."""

    __tablename__ = "membership_statuses"

    id: Mapped[str] = mapped_column(db.String(36), primary_key=True, default=new_uuid)
    code: Mapped[str] = mapped_column(db.String(50), nullable=False, unique=True, index=True)
    label: Mapped[str] = mapped_column(db.String(100), nullable=False)
    description: Mapped[str | None] = mapped_column(db.Text, nullable=True)
    is_active: Mapped[bool] = mapped_column(db.Boolean, nullable=False, default=False)
    is_eligible_for_renewal: Mapped[bool] = mapped_column(db.Boolean, nullable=False, default=False)
    sort_order: Mapped[int] = mapped_column(db.Integer, nullable=False, default=0)
    created_at: Mapped[datetime] = mapped_column(db.DateTime(timezone=True), nullable=False, default=utcnow)

    members = relationship("Member", back_populates="membership_status")

    def __repr__(self) -> str:
        return f"<MembershipStatus {self.code}>"


class Member(BaseModel):
    """Club member. Sync owns the profile fields; ``notes`` belongs to club staff."""

    __tablename__ = "members"

    id: Mapped[str] = mapped_column(db.String(36), primary_key=True, default=new_uuid)
    first_name: Mapped[str] = mapped_column(db.String(100), nullable=False)
    last_name: Mapped[str] = mapped_column(db.String(100), nullable=False, default="")
    email: Mapped[str] = mapped_column(db.String(255), nullable=False, unique=True, index=True)
    phone: Mapped[str | None] = mapped_column(db.String(40), nullable=True)
    joined_at: Mapped[datetime | None] = mapped_column(db.DateTime(timezone=True), nullable=True)
    membership_status_id: Mapped[str] = mapped_column(
        ForeignKey("membership_statuses.id"),
        nullable=False,
        index=True,
    )
    membership_level: Mapped[str | None] = mapped_column(db.String(100), nullable=True)
    notes: Mapped[str | None] = mapped_column(db.Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        db.DateTime(timezone=True),
        nullable=False,
        default=utcnow,
        onupdate=utcnow,
    )

    membership_status = relationship("MembershipStatus", back_populates="members")
    registrations = relationship("EventRegistration", back_populates="member")

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()

    def __repr__(self) -> str:
        return f"<Member {self.email}>"
