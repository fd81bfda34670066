"""
Preflight checks and reference-data seeding for the Wild Apricot sync.

Syncing members requires every membership status code the transform layer can
emit. Missing reference data is reported with a remediation command rather
than surfacing as per-record foreign key failures mid-run.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Sequence

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from clubsync.models import MembershipStatus, db

logger = logging.getLogger(__name__)

SEED_COMMAND = "flask importer wildapricot seed-statuses"

DEFAULT_MEMBERSHIP_STATUSES: Sequence[dict[str, object]] = (
    {
        "code": "active",
        "label": "Active",
        "description": "Current member in good standing.",
        "is_active": True,
        "is_eligible_for_renewal": True,
        "sort_order": 10,
    },
    {
        "code": "lapsed",
        "label": "Lapsed",
        "description": "Membership expired without renewal.",
        "is_active": False,
        "is_eligible_for_renewal": True,
        "sort_order": 20,
    },
    {
        "code": "pending_new",
        "label": "Pending New",
        "description": "Application received, awaiting approval or payment.",
        "is_active": False,
        "is_eligible_for_renewal": False,
        "sort_order": 30,
    },
    {
        "code": "pending_renewal",
        "label": "Pending Renewal",
        "description": "Renewal started but not yet completed.",
        "is_active": True,
        "is_eligible_for_renewal": False,
        "sort_order": 40,
    },
    {
        "code": "suspended",
        "label": "Suspended",
        "description": "Membership suspended by an administrator.",
        "is_active": False,
        "is_eligible_for_renewal": False,
        "sort_order": 50,
    },
    {
        "code": "not_a_member",
        "label": "Not a Member",
        "description": "Contact record without a membership.",
        "is_active": False,
        "is_eligible_for_renewal": False,
        "sort_order": 60,
    },
    {
        "code": "unknown",
        "label": "Unknown",
        "description": "Status could not be mapped from the source system.",
        "is_active": False,
        "is_eligible_for_renewal": False,
        "sort_order": 99,
    },
)

REQUIRED_STATUS_CODES: tuple[str, ...] = tuple(str(item["code"]) for item in DEFAULT_MEMBERSHIP_STATUSES)


class PreflightError(RuntimeError):
    """Raised when prerequisites for a sync run are missing."""

    def __init__(self, message: str, *, missing_status_codes: Sequence[str] = ()) -> None:
        super().__init__(message)
        self.missing_status_codes = tuple(missing_status_codes)


@dataclass
class PreflightResult:
    ok: bool
    missing_status_codes: list[str] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, object]:
        return {
            "ok": self.ok,
            "missing_status_codes": list(self.missing_status_codes),
            "errors": list(self.errors),
        }


def check_preflight(session: Session | None = None) -> PreflightResult:
    """Non-raising variant of ``run_preflight_checks``."""
    session = session or db.session
    try:
        present = set(session.scalars(select(MembershipStatus.code)))
    except SQLAlchemyError as exc:
        session.rollback()
        return PreflightResult(
            ok=False,
            errors=[
                f"membership_statuses table is not readable ({exc.__class__.__name__}). "
                "Create the schema (flask db upgrade or db.create_all) before syncing."
            ],
        )
    missing = [code for code in REQUIRED_STATUS_CODES if code not in present]
    errors: list[str] = []
    if missing:
        errors.append(f"Missing membership status codes: {', '.join(missing)}. Run `{SEED_COMMAND}`.")
    return PreflightResult(ok=not errors, missing_status_codes=missing, errors=errors)


def run_preflight_checks(session: Session | None = None) -> PreflightResult:
    """
    Verify reference data needed by the sync.

    Raises:
        PreflightError: with an actionable remediation message.
    """
    result = check_preflight(session)
    if not result.ok:
        logger.error("Wild Apricot sync preflight failed", extra={"preflight_errors": result.errors})
        raise PreflightError(" ".join(result.errors), missing_status_codes=result.missing_status_codes)
    return result


def seed_membership_statuses(session: Session | None = None) -> dict[str, int]:
    """Insert or refresh the default membership statuses. Safe to run repeatedly."""
    session = session or db.session
    counters = {"created": 0, "updated": 0, "unchanged": 0}
    existing = {status.code: status for status in session.scalars(select(MembershipStatus))}
    for definition in DEFAULT_MEMBERSHIP_STATUSES:
        status = existing.get(str(definition["code"]))
        if status is None:
            session.add(MembershipStatus(**definition))
            counters["created"] += 1
            continue
        changed = False
        for name, value in definition.items():
            if getattr(status, name) != value:
                setattr(status, name, value)
                changed = True
        counters["updated" if changed else "unchanged"] += 1
    session.commit()
    logger.info("Seeded membership statuses", extra={"seed_counts": counters})
    return counters
