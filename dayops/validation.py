from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
import re
from typing import Any


_ID_PATTERN = re.compile(r"^[a-zA-Z0-9][a-zA-Z0-9_-]*$")
_ISO_DATE_PATTERN = re.compile(r"^\d{4}-\d{2}-\d{2}$")

TODAY_STATUSES = (
    "not started",
    "in progress",
    "waiting",
    "blocked",
    "complete",
    "cancelled",
    "deferred",
    "archived",
)
RECIPIENT_STATUSES = ("pending", "complete")


@dataclass(frozen=True)
class Failure:
    code: str
    message: str
    details: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {"code": self.code, "message": self.message, "details": dict(self.details)}


@dataclass(frozen=True)
class Result:
    """Tagged outcome shared by validators and store commands."""

    ok: bool
    value: Any = None
    error: Failure | None = None

    @property
    def code(self) -> str:
        return self.error.code if self.error is not None else ""

    @property
    def message(self) -> str:
        return self.error.message if self.error is not None else ""

    def to_dict(self) -> dict[str, Any]:
        if self.ok:
            return {"ok": True, "value": self.value}
        assert self.error is not None
        return {"ok": False, "error": self.error.to_dict()}


def ok(value: Any = None) -> Result:
    return Result(ok=True, value=value)


def fail(code: str, message: str, details: dict[str, Any] | None = None) -> Result:
    return Result(ok=False, error=Failure(code=code, message=message, details=dict(details or {})))


def validate_id(value: Any, field_name: str = "id") -> Result:
    if not isinstance(value, str) or not value.strip():
        return fail("VALIDATION_ID_REQUIRED", f"{field_name} is required.", {"field": field_name})
    cleaned = value.strip()
    if not _ID_PATTERN.match(cleaned):
        return fail(
            "VALIDATION_ID_INVALID",
            f"{field_name} must contain only letters, numbers, underscores, or dashes.",
            {"field": field_name, "value": value},
        )
    return ok(cleaned)


def validate_status(value: Any, allowed: tuple[str, ...] | list[str], field_name: str = "status") -> Result:
    if not isinstance(value, str):
        return fail("VALIDATION_STATUS_REQUIRED", f"{field_name} is required.", {"field": field_name, "allowed": list(allowed)})
    cleaned = value.strip()
    if cleaned not in allowed:
        return fail(
            "VALIDATION_STATUS_INVALID",
            f"{field_name} must be one of the allowed values.",
            {"field": field_name, "value": value, "allowed": list(allowed)},
        )
    return ok(cleaned)


def normalize_iso_date(value: Any, field_name: str) -> Result:
    """Empty input is allowed and normalizes to ''; anything else must be YYYY-MM-DD."""

    cleaned = value.strip() if isinstance(value, str) else ""
    if not cleaned:
        return ok("")
    if not _ISO_DATE_PATTERN.match(cleaned):
        return fail(
            "VALIDATION_DATE_INVALID",
            f"{field_name} must be in ISO date format YYYY-MM-DD.",
            {"field": field_name, "value": value},
        )
    try:
        datetime.strptime(cleaned, "%Y-%m-%d")
    except ValueError:
        return fail(
            "VALIDATION_DATE_INVALID",
            f"{field_name} must be a real calendar date.",
            {"field": field_name, "value": value},
        )
    return ok(cleaned)


def validate_iso_datetime(value: Any, field_name: str) -> Result:
    if not isinstance(value, str) or not value.strip():
        return fail("VALIDATION_DATETIME_REQUIRED", f"{field_name} is required.", {"field": field_name})
    cleaned = value.strip()
    if parse_datetime(cleaned) is None:
        return fail(
            "VALIDATION_DATETIME_INVALID",
            f"{field_name} must be a valid ISO datetime string.",
            {"field": field_name, "value": value},
        )
    return ok(cleaned)


def normalize_required_text(value: Any, field_name: str, fallback: str = "") -> Result:
    cleaned = " ".join(value.split()) if isinstance(value, str) else ""
    if cleaned:
        return ok(cleaned)
    fallback_clean = " ".join((fallback or "").split())
    if fallback_clean:
        return ok(fallback_clean)
    return fail("VALIDATION_REQUIRED_TEXT_MISSING", f"{field_name} is required.", {"field": field_name})


def normalize_priority(value: Any, field_name: str = "priority", *, default: int = 3) -> Result:
    if value is None or (isinstance(value, str) and not value.strip()):
        return ok(default)
    try:
        number = int(str(value).strip().lower().removeprefix("p"))
    except ValueError:
        return fail("VALIDATION_PRIORITY_INVALID", f"{field_name} must be a number from 1 to 5.", {"field": field_name, "value": value})
    if number < 1 or number > 5:
        return fail("VALIDATION_PRIORITY_INVALID", f"{field_name} must be a number from 1 to 5.", {"field": field_name, "value": value})
    return ok(number)


def normalize_follow_up_recipients(recipients: Any) -> Result:
    if not isinstance(recipients, list):
        return fail("VALIDATION_RECIPIENTS_REQUIRED", "follow-up recipients must be a list.", {"field": "recipients"})

    normalized: list[dict[str, str]] = []
    for recipient in recipients:
        if not isinstance(recipient, dict):
            return fail(
                "VALIDATION_RECIPIENT_SHAPE_INVALID",
                "Each recipient must be an object with personId and status.",
                {"recipient": recipient},
            )
        person = validate_id(recipient.get("personId"), "personId")
        if not person.ok:
            return person
        status = validate_status(recipient.get("status") or "pending", RECIPIENT_STATUSES, "recipient.status")
        if not status.ok:
            return status
        normalized.append({"personId": person.value, "status": status.value})
    return ok(normalized)


def parse_datetime(value: Any) -> datetime | None:
    """Parse an ISO-8601 datetime; naive values are read as UTC."""

    if not isinstance(value, str) or not value.strip():
        return None
    raw = value.strip()
    if raw.endswith("Z"):
        raw = raw[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(raw)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed
