"""
Pure mapping from Wild Apricot payloads to ClubSync entity inputs.

Nothing in this module touches the database or the network. Each
``transform_*`` function returns a ``TransformResult``; a failed result names
the violated field so the orchestrator can log and skip the record.
"""

from __future__ import annotations

import html
import re
from dataclasses import dataclass, field
from datetime import date, datetime, time, timezone
from typing import Any, Iterable, Mapping, Sequence

from clubsync.importer.adapters.wildapricot.records import (
    WAContact,
    WAEvent,
    WAEventRegistration,
    WAFieldValue,
)
from clubsync.models.event import RegistrationStatus

UNKNOWN_STATUS_CODE = "unknown"

CONTACT_STATUS_CODES: Mapping[str, str] = {
    "Active": "active",
    "Lapsed": "lapsed",
    "PendingNew": "pending_new",
    "PendingRenewal": "pending_renewal",
    "Suspended": "suspended",
    "NotAMember": "not_a_member",
}

REGISTRATION_STATUSES: Mapping[str, RegistrationStatus] = {
    "Confirmed": RegistrationStatus.CONFIRMED,
    "Cancelled": RegistrationStatus.CANCELLED,
    "PendingPayment": RegistrationStatus.PENDING_PAYMENT,
    "NoShow": RegistrationStatus.NO_SHOW,
}

# Committee mailbox prefix -> event category.
ORGANIZER_CATEGORY_PREFIXES: Sequence[tuple[str, str]] = (
    ("wine@", "Wine Appreciation"),
    ("hiking@", "Happy Hikers"),
)

PHONE_FIELD_NAMES: Sequence[str] = ("Phone", "phone", "Mobile phone", "MobilePhone")

MEMBER_SYNC_FIELDS: Sequence[str] = (
    "first_name",
    "last_name",
    "email",
    "phone",
    "membership_status_id",
    "membership_level",
)
EVENT_SYNC_FIELDS: Sequence[str] = (
    "title",
    "description",
    "category",
    "location",
    "start_time",
    "end_time",
    "capacity",
    "is_published",
    "event_chair_id",
)
REGISTRATION_SYNC_FIELDS: Sequence[str] = ("status", "registered_at")

_TAG_RE = re.compile(r"<[^>]+>")
_WHITESPACE_RE = re.compile(r"\s+")
_PHONE_STRIP_RE = re.compile(r"[^\d]")
_DATE_ONLY_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")


@dataclass
class TransformResult:
    success: bool
    data: dict[str, Any] | None = None
    warnings: list[str] = field(default_factory=list)
    error: str | None = None

    @classmethod
    def ok(cls, data: dict[str, Any], warnings: Iterable[str] = ()) -> "TransformResult":
        return cls(success=True, data=data, warnings=list(warnings))

    @classmethod
    def failure(cls, error: str) -> "TransformResult":
        return cls(success=False, error=error)


# Field helpers ------------------------------------------------------------------


def _coerce_string(value: object | None) -> str | None:
    """Coerce a value to a string, returning None for empty strings."""
    if value is None:
        return None
    token = str(value).strip()
    return token or None


def _coerce_int(value: object | None) -> int | None:
    """Coerce a value to an integer, returning None if conversion fails."""
    if value is None or value == "":
        return None
    try:
        return int(value)
    except (ValueError, TypeError):
        return None


def map_contact_status_to_code(status: str | None) -> str:
    """Map a Wild Apricot contact status onto a membership status code."""
    if not status:
        return UNKNOWN_STATUS_CODE
    return CONTACT_STATUS_CODES.get(status, UNKNOWN_STATUS_CODE)


def map_registration_status(status: str | None, on_waitlist: bool) -> RegistrationStatus:
    """Waitlisted registrations are WAITLISTED whatever their raw status says."""
    if on_waitlist:
        return RegistrationStatus.WAITLISTED
    return REGISTRATION_STATUSES.get(status or "", RegistrationStatus.CONFIRMED)


def extract_field_value(field_values: Sequence[WAFieldValue] | None, name: str) -> Any:
    """Look up a custom field by ``FieldName`` or ``SystemCode``."""
    for entry in field_values or ():
        if entry.get("FieldName") == name or entry.get("SystemCode") == name:
            return entry.get("Value")
    return None


def extract_phone(field_values: Sequence[WAFieldValue] | None) -> str | None:
    for name in PHONE_FIELD_NAMES:
        raw = _coerce_string(extract_field_value(field_values, name))
        if raw is None:
            continue
        digits = _PHONE_STRIP_RE.sub("", raw)
        if not digits:
            continue
        return f"+{digits}" if raw.startswith("+") else digits
    return None


def normalize_email(value: object | None) -> str | None:
    """
    Lower-case and trim an email address.

    Returns None for blank values or strings missing ``@`` or ``.``.
    """
    token = _coerce_string(value)
    if token is None:
        return None
    token = token.lower()
    if "@" not in token or "." not in token:
        return None
    return token


def parse_date(value: object | None) -> datetime | None:
    """
    Parse an ISO-8601 date or date-time into an aware UTC datetime.

    Date-only values resolve to UTC midnight; naive date-times are treated as
    UTC. Unparseable input yields None.
    """
    if value is None:
        return None
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, date):
        parsed = datetime.combine(value, time.min)
    else:
        token = str(value).strip()
        if not token:
            return None
        if _DATE_ONLY_RE.match(token):
            try:
                return datetime.combine(date.fromisoformat(token), time.min, tzinfo=timezone.utc)
            except ValueError:
                return None
        try:
            parsed = datetime.fromisoformat(token.replace("Z", "+00:00"))
        except ValueError:
            return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def strip_html(value: object | None) -> str | None:
    text = _coerce_string(value)
    if text is None:
        return None
    text = html.unescape(_TAG_RE.sub(" ", text))
    return _coerce_string(_WHITESPACE_RE.sub(" ", text))


def derive_category(event: WAEvent) -> str | None:
    """Category from the organizer's committee mailbox, else the first tag."""
    organizer = (event.get("Details") or {}).get("Organizer") or {}
    organizer_email = (_coerce_string(organizer.get("Email")) or "").lower()
    for prefix, category in ORGANIZER_CATEGORY_PREFIXES:
        if organizer_email.startswith(prefix):
            return category
    for tag in event.get("Tags") or ():
        tag_value = _coerce_string(tag)
        if tag_value:
            return tag_value
    return None


# Record transforms --------------------------------------------------------------


def transform_contact(contact: WAContact, membership_status_id: str) -> TransformResult:
    contact_id = contact.get("Id")
    email = normalize_email(contact.get("Email"))
    if email is None:
        return TransformResult.failure(f"Invalid or missing email for contact {contact_id}")
    first_name = _coerce_string(contact.get("FirstName"))
    if first_name is None:
        return TransformResult.failure(f"Missing first name for contact {contact_id}")

    warnings: list[str] = []
    last_name = _coerce_string(contact.get("LastName"))
    if last_name is None:
        warnings.append(f"Contact {contact_id} has no last name")
        last_name = ""
    joined_at = parse_date(contact.get("MemberSince")) or parse_date(contact.get("CreationDate"))
    level = contact.get("MembershipLevel") or {}

    return TransformResult.ok(
        {
            "first_name": first_name,
            "last_name": last_name,
            "email": email,
            "phone": extract_phone(contact.get("FieldValues")),
            "joined_at": joined_at,
            "membership_status_id": membership_status_id,
            "membership_level": _coerce_string(level.get("Name")),
        },
        warnings,
    )


def transform_event(event: WAEvent, event_chair_id: str | None = None) -> TransformResult:
    event_id = event.get("Id")
    title = _coerce_string(event.get("Name"))
    if title is None:
        return TransformResult.failure(f"Missing name for event {event_id}")
    start_time = parse_date(event.get("StartDate"))
    if start_time is None:
        return TransformResult.failure(f"Missing or invalid start date for event {event_id}")

    warnings: list[str] = []
    end_time = parse_date(event.get("EndDate"))
    if end_time is not None and end_time < start_time:
        warnings.append(f"Event {event_id} ends before it starts; dropping end date")
        end_time = None
    details = event.get("Details") or {}

    return TransformResult.ok(
        {
            "title": title,
            "description": strip_html(details.get("DescriptionHtml")),
            "category": derive_category(event),
            "location": _coerce_string(event.get("Location")),
            "start_time": start_time,
            "end_time": end_time,
            "capacity": _coerce_int(event.get("RegistrationsLimit")),
            "is_published": event.get("AccessLevel") == "Public",
            "event_chair_id": event_chair_id,
        },
        warnings,
    )


def transform_registration(
    registration: WAEventRegistration,
    event_id: str,
    member_id: str,
) -> TransformResult:
    warnings: list[str] = []
    raw_status = registration.get("Status")
    on_waitlist = bool(registration.get("OnWaitlist"))
    if not on_waitlist and raw_status not in REGISTRATION_STATUSES:
        warnings.append(
            f"Registration {registration.get('Id')} has unrecognised status {raw_status!r}; treating as CONFIRMED"
        )
    return TransformResult.ok(
        {
            "event_id": event_id,
            "member_id": member_id,
            "status": map_registration_status(raw_status, on_waitlist),
            "registered_at": parse_date(registration.get("RegistrationDate")),
            "waitlist_position": None,
        },
        warnings,
    )


# Change detection ---------------------------------------------------------------


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def has_changed(old: Any, new: Any) -> bool:
    """Compare two field values; None equals None and datetimes compare by instant."""
    if old is None and new is None:
        return False
    if old is None or new is None:
        return True
    if isinstance(old, datetime) and isinstance(new, datetime):
        return _as_utc(old) != _as_utc(new)
    return old != new


def get_entity_changes(
    existing: Any,
    transformed: Mapping[str, Any],
    fields: Sequence[str],
) -> dict[str, Any] | None:
    """
    Return ``{field: new_value}`` for fields whose value differs, or None.

    ``existing`` may be a model instance or a mapping. Fields absent from
    ``transformed`` are ignored so host-managed columns are never touched.
    """
    changes: dict[str, Any] = {}
    for name in fields:
        if name not in transformed:
            continue
        if isinstance(existing, Mapping):
            current = existing.get(name)
        else:
            current = getattr(existing, name, None)
        if has_changed(current, transformed[name]):
            changes[name] = transformed[name]
    return changes or None
