# clubsync/models/__init__.py
"""
Database models package
"""

from .audit import SYSTEM_ACTOR, AuditAction, AuditLog
from .base import BaseModel, db
from .event import Event, EventRegistration, RegistrationStatus
from .importer import EntityType, IdMapping, SyncState
from .member import Member, MembershipStatus

__all__ = [
    "db",
    "BaseModel",
    "Member",
    "MembershipStatus",
    "Event",
    "EventRegistration",
    "RegistrationStatus",
    "AuditLog",
    "AuditAction",
    "SYSTEM_ACTOR",
    # Importer models
    "EntityType",
    "IdMapping",
    "SyncState",
]
