from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from typing import Any, Iterable

from .model import (
    BUCKETS,
    FOLLOW_UPS,
    MEETINGS,
    PEOPLE,
    PROJECT_CLOSED_STATUSES,
    PROJECTS,
    RECORD_KIND,
    REMINDERS,
    SCHEDULABLE_COLLECTIONS,
    SUGGESTIONS,
    TASK_CLOSED_STATUSES,
    TASK_PARKED_STATUSES,
    TASKS,
    empty_buckets,
    is_active,
    record_label,
)
from .validation import parse_datetime


NO_DUE_SENTINEL = "9999-12-31"
DEFAULT_PRIORITY = 3

_TYPE_LABEL = {
    "task": "task",
    "meeting": "meeting",
    "reminder": "reminder",
    "followup": "follow-up",
    "project": "project",
}


@dataclass(frozen=True)
class SuggestionRules:
    could_limit: int = 8
    due_soon_days: int = 3
    stale_project_days: int = 7
    priority_threshold: int = 2


def suggestion_id(bucket: str, kind: str, source_id: str) -> str:
    return f"sg_{bucket}_{kind}_{source_id}"


def _as_date(value: Any) -> date | None:
    if not isinstance(value, str) or not value.strip():
        return None
    try:
        return date.fromisoformat(value.strip()[:10])
    except ValueError:
        return None


def _numeric_priority(record: dict[str, Any]) -> int | None:
    value = record.get("priority")
    if isinstance(value, bool):
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def _active(records: Any) -> Iterable[dict[str, Any]]:
    for record in records if isinstance(records, list) else []:
        if isinstance(record, dict) and record.get("id") and is_active(record):
            yield record


class _BucketBuilder:
    """Collects suggestions; the first rule to claim an id keeps it."""

    def __init__(self, previous: Any, now_iso: str) -> None:
        self.buckets = empty_buckets()
        self._seen: set[str] = set()
        self._now_iso = now_iso
        self._created: dict[str, str] = {}
        if isinstance(previous, dict):
            for bucket in BUCKETS:
                for item in previous.get(bucket) or []:
                    if isinstance(item, dict) and isinstance(item.get("id"), str) and item.get("createdAt"):
                        self._created.setdefault(item["id"], str(item["createdAt"]))

    def add(self, bucket: str, kind: str, record: dict[str, Any], *, meta: str, rule: str) -> None:
        sid = suggestion_id(bucket, kind, str(record["id"]))
        if sid in self._seen:
            return
        self._seen.add(sid)
        self.buckets[bucket].append(
            {
                "id": sid,
                "bucket": bucket,
                "title": record_label(record),
                "type": _TYPE_LABEL.get(kind, kind),
                "meta": meta,
                "rule": rule,
                "sourceType": kind,
                "sourceId": str(record["id"]),
                "createdAt": self._created.get(sid, self._now_iso),
            }
        )


def _pending_preview(group: dict[str, Any], names: dict[str, str]) -> tuple[int, str]:
    pending = [
        recipient
        for recipient in group.get("recipients") or []
        if isinstance(recipient, dict) and recipient.get("status") == "pending"
    ]
    labels = [names.get(str(recipient.get("personId")), str(recipient.get("personId") or "?")) for recipient in pending]
    preview = ", ".join(labels[:2])
    if len(labels) > 2:
        preview += f" +{len(labels) - 2}"
    return len(pending), preview


def _project_staleness(
    project: dict[str, Any],
    tasks: list[dict[str, Any]],
    local_date: date,
) -> int | None:
    """Days since the latest touch of the project or its linked active tasks; None if never touched."""

    moments = []
    own = parse_datetime(project.get("updatedAt"))
    if own is not None:
        moments.append(own)
    for task in tasks:
        linked = task.get("linkedProjects")
        if not isinstance(linked, list) or project["id"] not in linked:
            continue
        touched = parse_datetime(task.get("updatedAt"))
        if touched is not None:
            moments.append(touched)
    if not moments:
        return None
    latest = max(moments)
    return (local_date - latest.astimezone().date()).days


def rebuild_suggestions(
    doc: dict[str, Any],
    local_date: date,
    *,
    now_iso: str,
    rules: SuggestionRules | None = None,
) -> dict[str, list[dict[str, Any]]]:
    """Recompute must/should/could from live entities. Pure; does not touch `doc`."""

    rules = rules or SuggestionRules()
    today_iso = local_date.isoformat()
    builder = _BucketBuilder(doc.get(SUGGESTIONS), now_iso)

    schedulable = [
        (RECORD_KIND[name], record)
        for name in SCHEDULABLE_COLLECTIONS
        for record in _active(doc.get(name))
    ]
    tasks = list(_active(doc.get(TASKS)))

    # must
    for meeting in _active(doc.get(MEETINGS)):
        if meeting.get("scheduled") == today_iso:
            builder.add("must", "meeting", meeting, meta=str(meeting.get("time") or "today"), rule="meeting_today")
    for kind, record in schedulable:
        if record.get("scheduled") == today_iso:
            builder.add("must", kind, record, meta="scheduled today", rule="scheduled_today")
    for kind, record in schedulable:
        if record.get("due") == today_iso:
            builder.add("must", kind, record, meta="due today", rule="due_today")
    names = {str(person["id"]): str(person.get("name") or person["id"]) for person in _active(doc.get(PEOPLE))}
    for group in _active(doc.get(FOLLOW_UPS)):
        count, preview = _pending_preview(group, names)
        if count:
            builder.add("must", "followup", group, meta=f"pending: {preview}", rule="follow_up_pending")

    # should
    for task in tasks:
        priority = _numeric_priority(task)
        if priority is None or priority > rules.priority_threshold:
            continue
        if str(task.get("status") or "").strip().lower() in TASK_CLOSED_STATUSES:
            continue
        builder.add("should", "task", task, meta=f"priority p{priority}", rule="high_priority")
    for kind, record in schedulable:
        due = _as_date(record.get("due"))
        if due is None:
            continue
        days = (due - local_date).days
        if 1 <= days <= rules.due_soon_days:
            builder.add("should", kind, record, meta=f"due in {days} day{'s' if days != 1 else ''}", rule="due_soon")
    for project in _active(doc.get(PROJECTS)):
        if str(project.get("status") or "active").strip().lower() in PROJECT_CLOSED_STATUSES:
            continue
        days = _project_staleness(project, tasks, local_date)
        if days is None:
            builder.add("should", "project", project, meta="no activity recorded", rule="stale_project")
        elif days >= rules.stale_project_days:
            builder.add("should", "project", project, meta=f"no updates in {days} days", rule="stale_project")

    # could
    parked = [task for task in tasks if str(task.get("status") or "").strip().lower() in TASK_PARKED_STATUSES]
    parked.sort(
        key=lambda task: (
            _numeric_priority(task) or DEFAULT_PRIORITY,
            _as_date(task.get("due")).isoformat() if _as_date(task.get("due")) else NO_DUE_SENTINEL,
        )
    )
    for task in parked[: max(0, rules.could_limit)]:
        builder.add("could", "task", task, meta=str(task.get("status") or "backlog"), rule="parked_task")

    return builder.buckets
