# clubsync/models/base.py

from __future__ import annotations

import uuid
from datetime import datetime, timezone

from flask_sqlalchemy import SQLAlchemy

db = SQLAlchemy()


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_uuid() -> str:
    return str(uuid.uuid4())


class BaseModel(db.Model):
    """Abstract base for all ClubSync tables."""

    __abstract__ = True
