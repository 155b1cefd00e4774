from __future__ import annotations

from datetime import datetime, timezone
import re
import secrets
import time
from typing import Any


CURRENT_SCHEMA_VERSION = 3
STATE_RECORD_ID = "wireframe-state"

INBOX = "inbox"
TASKS = "tasks"
MEETINGS = "meetings"
PEOPLE = "people"
PROJECTS = "projects"
REMINDERS = "reminders"
NOTES = "notes"
FOLLOW_UPS = "followUps"
TODAY = "today"
DAILY_LOGS = "dailyLogs"
SUGGESTIONS = "suggestions"
# Not a collection; only used as an id prefix for Today update notes.
EXECUTION_NOTE = "executionNote"

RECORD_COLLECTIONS = (INBOX, TASKS, MEETINGS, PEOPLE, PROJECTS, REMINDERS, NOTES, FOLLOW_UPS, TODAY, DAILY_LOGS)
# Collections the library commands (archive/restore/delete/edit) may touch.
ENTITY_COLLECTIONS = (TASKS, PROJECTS, PEOPLE, MEETINGS, REMINDERS, NOTES, FOLLOW_UPS)
SCHEDULABLE_COLLECTIONS = (TASKS, REMINDERS, MEETINGS)

BUCKETS = ("must", "should", "could")
STORAGE_STATUSES = ("loading", "ready", "degraded")

# Fields carrying an independent {value, updatedAt, updatedByDeviceId} stamp.
STAMPED_FIELDS: dict[str, tuple[str, ...]] = {
    INBOX: ("raw", "type", "archived", "processed", "snoozed", "deleted"),
    TASKS: ("title", "status", "due", "scheduled", "priority", "context", "archived", "deleted"),
    MEETINGS: ("title", "scheduled", "time", "meetingType", "agenda", "notes", "archived", "deleted"),
    PEOPLE: ("name", "email", "phone", "archived", "deleted"),
    PROJECTS: ("name", "status", "archived", "deleted"),
    REMINDERS: ("title", "status", "due", "scheduled", "priority", "context", "archived", "deleted"),
    NOTES: ("title", "body", "archived", "deleted"),
    FOLLOW_UPS: ("title", "recipients", "archived", "deleted"),
    TODAY: ("title", "bucket", "status", "archived", "deleted"),
    DAILY_LOGS: (),
}

# Singular record kind used in suggestion ids and Today items.
RECORD_KIND = {
    TASKS: "task",
    MEETINGS: "meeting",
    REMINDERS: "reminder",
    FOLLOW_UPS: "followup",
    PROJECTS: "project",
    PEOPLE: "person",
    NOTES: "note",
}

ID_PREFIX = {
    INBOX: "in",
    TASKS: "t",
    MEETINGS: "m",
    PEOPLE: "p",
    PROJECTS: "pr",
    REMINDERS: "r",
    NOTES: "n",
    FOLLOW_UPS: "f",
    TODAY: "td",
    DAILY_LOGS: "dl",
    EXECUTION_NOTE: "nt",
}

TASK_CLOSED_STATUSES = frozenset({"done", "cancelled", "archived"})
TASK_PARKED_STATUSES = ("backlog", "waiting", "blocked")
PROJECT_CLOSED_STATUSES = frozenset({"done", "complete", "cancelled", "archived"})
CONTEXTS = ("work", "personal")
MEETING_TYPES = ("group", "one_to_one")

_SLUG_SAFE = re.compile(r"[^a-z0-9]+")
EPOCH_ISO = "1970-01-01T00:00:00+00:00"


def utc_now_iso() -> str:
    return datetime.now(tz=timezone.utc).replace(microsecond=0).isoformat()


def slugify(value: str, *, max_len: int = 42) -> str:
    text = (value or "").strip().lower()
    text = _SLUG_SAFE.sub("-", text).strip("-")
    if len(text) > max_len:
        text = text[:max_len].rstrip("-")
    return text


def new_record_id(collection: str) -> str:
    prefix = ID_PREFIX.get(collection, "rec")
    stamp = base36(int(time.time() * 1000))
    return f"{prefix}_{stamp}{secrets.token_hex(3)}"


def base36(number: int) -> str:
    digits = "0123456789abcdefghijklmnopqrstuvwxyz"
    if number <= 0:
        return "0"
    out: list[str] = []
    while number:
        number, rem = divmod(number, 36)
        out.append(digits[rem])
    return "".join(reversed(out))


def apply_lifecycle_defaults(record: dict[str, Any]) -> dict[str, Any]:
    record["archived"] = bool(record.get("archived", False))
    record["deleted"] = bool(record.get("deleted", False))
    deleted_at = record.get("deletedAt")
    record["deletedAt"] = deleted_at if isinstance(deleted_at, str) and deleted_at else None
    if not isinstance(record.get("stamps"), dict):
        record["stamps"] = {}
    return record


def is_active(record: dict[str, Any]) -> bool:
    return not record.get("archived") and not record.get("deleted")


def find_record(records: list[dict[str, Any]], record_id: str) -> dict[str, Any] | None:
    for record in records:
        if record.get("id") == record_id:
            return record
    return None


def record_label(record: dict[str, Any]) -> str:
    return str(record.get("title") or record.get("name") or record.get("raw") or record.get("id") or "")


def empty_buckets() -> dict[str, list[dict[str, Any]]]:
    return {bucket: [] for bucket in BUCKETS}


def empty_document() -> dict[str, Any]:
    doc: dict[str, Any] = {name: [] for name in RECORD_COLLECTIONS}
    doc[SUGGESTIONS] = empty_buckets()
    doc["lastActiveDate"] = ""
    doc["storageStatus"] = "loading"
    doc["isDemoMode"] = False
    doc["schemaVersion"] = CURRENT_SCHEMA_VERSION
    return doc


def sample_collections_v1() -> dict[str, Any]:
    """Demo fixture in the unversioned (v1) shape; callers migrate it forward."""

    return {
        INBOX: [
            {"id": "in_1", "raw": "Follow up with @Mina on launch metrics tomorrow", "type": "follow-up", "archived": False},
            {"id": "in_2", "raw": "Book 1:1 with @Harper #Roadmap do:2026-02-18", "type": "meeting", "archived": False},
            {"id": "in_3", "raw": "Sketch decision log format for team", "type": "task", "archived": False},
            {"id": "in_4", "raw": "Archive old status note", "type": "note", "archived": True},
        ],
        SUGGESTIONS: empty_buckets(),
        TODAY: [],
        TASKS: [
            {"id": "t1", "title": "Refine intake template", "status": "in progress", "due": "2026-02-17", "priority": 2},
            {"id": "t2", "title": "Clean backlog tags", "status": "waiting", "due": "2026-02-19", "priority": 4},
        ],
        PEOPLE: [
            {"id": "p1", "name": "Mina Iqbal", "email": "mina@example.com", "phone": "(555) 102-3344"},
            {"id": "p2", "name": "Harper Lin", "email": "harper@example.com", "phone": "(555) 671-9090"},
        ],
        MEETINGS: [
            {"id": "m1", "title": "Roadmap sync", "time": "10:00", "meetingType": "group", "agenda": "Prioritize Q2 bets", "notes": "Placeholder notes"},
            {"id": "m2", "title": "Mina 1:1", "time": "15:30", "meetingType": "one_to_one", "agenda": "Growth feedback", "notes": "Placeholder notes"},
        ],
        FOLLOW_UPS: [
            {
                "id": "f1",
                "title": "Share launch metrics recap",
                "source": "meeting",
                "meetingId": "m1",
                "recipients": [
                    {"personId": "p1", "status": "pending"},
                    {"personId": "p2", "status": "complete"},
                ],
            },
            {
                "id": "f2",
                "title": "Prepare 1:1 recap",
                "source": "inbox",
                "meetingId": "m2",
                "recipients": [{"personId": "p1", "status": "pending"}],
            },
        ],
        PROJECTS: [],
        REMINDERS: [],
        NOTES: [],
        DAILY_LOGS: [],
    }
