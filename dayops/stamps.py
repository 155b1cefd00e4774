"""Per-field stamps used to reconcile snapshots from different devices.

A record keeps its plain values at the top level (`record["title"]`) and an
explicit stamp map beside them (`record["stamps"]["title"]`). Reads prefer the
stamp; a missing or malformed stamp degrades to the plain value.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any

from .validation import parse_datetime


STAMPS_KEY = "stamps"


@dataclass(frozen=True)
class FieldStamp:
    value: Any
    updated_at: str
    updated_by_device_id: str

    @property
    def moment(self) -> datetime:
        parsed = parse_datetime(self.updated_at)
        if parsed is None:
            raise ValueError(f"unparseable stamp timestamp: {self.updated_at!r}")
        return parsed

    def to_dict(self) -> dict[str, Any]:
        return {
            "value": self.value,
            "updatedAt": self.updated_at,
            "updatedByDeviceId": self.updated_by_device_id,
        }

    @classmethod
    def from_dict(cls, raw: Any) -> "FieldStamp | None":
        if not isinstance(raw, dict) or "value" not in raw:
            return None
        updated_at = raw.get("updatedAt")
        if parse_datetime(updated_at) is None:
            return None
        device = raw.get("updatedByDeviceId")
        return cls(
            value=raw.get("value"),
            updated_at=str(updated_at),
            updated_by_device_id=device if isinstance(device, str) else "",
        )


def stamp(value: Any, device_id: str, timestamp: str) -> dict[str, Any]:
    return FieldStamp(value=value, updated_at=timestamp, updated_by_device_id=device_id).to_dict()


def stamp_map(record: dict[str, Any]) -> dict[str, Any]:
    stamps = record.get(STAMPS_KEY)
    if not isinstance(stamps, dict):
        stamps = {}
        record[STAMPS_KEY] = stamps
    return stamps


def write_stamped(record: dict[str, Any], field: str, value: Any, device_id: str, timestamp: str) -> None:
    stamp_map(record)[field] = stamp(value, device_id, timestamp)
    record[field] = value


def read_stamp(record: dict[str, Any], field: str) -> FieldStamp | None:
    stamps = record.get(STAMPS_KEY)
    if not isinstance(stamps, dict):
        return None
    return FieldStamp.from_dict(stamps.get(field))


def read_stamped(record: dict[str, Any], field: str, fallback: Any = None) -> Any:
    try:
        current = read_stamp(record, field)
    except Exception:  # noqa: BLE001
        current = None
    if current is not None:
        return current.value
    if isinstance(record, dict) and field in record and record[field] is not None:
        return record[field]
    return fallback


def latest_stamp(local: Any, incoming: Any) -> dict[str, Any] | None:
    """Pick the newer of two raw stamps; ties go to `incoming`.

    Either side may be absent or malformed, in which case the valid side wins.
    Returns None when neither side is a usable stamp.
    """

    a = FieldStamp.from_dict(local)
    b = FieldStamp.from_dict(incoming)
    if a is None and b is None:
        return None
    if a is None:
        return dict(incoming)
    if b is None:
        return dict(local)
    return dict(incoming) if b.moment >= a.moment else dict(local)


def ensure_stamps(
    record: dict[str, Any],
    fields: tuple[str, ...],
    *,
    device_id: str,
    timestamp: str,
) -> int:
    """Stamp every listed field that lacks a valid stamp. Returns how many were added."""

    added = 0
    for field in fields:
        if read_stamp(record, field) is not None:
            continue
        write_stamped(record, field, record.get(field), device_id, timestamp)
        added += 1
    return added
