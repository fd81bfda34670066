# clubsync/models/audit.py

from __future__ import annotations

import enum
from datetime import datetime

from sqlalchemy import Enum, Index
from sqlalchemy.orm import Mapped, mapped_column

from .base import BaseModel, db, utcnow

SYSTEM_ACTOR = "system@wa-import"


class AuditAction(str, enum.Enum):
    CREATE = "CREATE"
    UPDATE = "UPDATE"
    DELETE = "DELETE"


class AuditLog(BaseModel):
    """Append-only record of writes performed against core tables."""

    __tablename__ = "audit_log"

    id: Mapped[int] = mapped_column(db.Integer, primary_key=True, autoincrement=True)
    action: Mapped[AuditAction] = mapped_column(Enum(AuditAction, name="audit_action_enum"), nullable=False)
    resource_type: Mapped[str] = mapped_column(db.String(50), nullable=False)
    resource_id: Mapped[str] = mapped_column(db.String(64), nullable=False)
    actor: Mapped[str] = mapped_column(db.String(255), nullable=False, default=SYSTEM_ACTOR)
    metadata_json: Mapped[dict | None] = mapped_column(db.JSON, nullable=True)
    created_at: Mapped[datetime] = mapped_column(db.DateTime(timezone=True), nullable=False, default=utcnow)

    __table_args__ = (Index("idx_audit_log_resource", "resource_type", "resource_id"),)
