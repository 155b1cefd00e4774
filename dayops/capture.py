from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, timedelta
import re
from typing import Any

from .model import CONTEXTS, FOLLOW_UPS, MEETINGS, NOTES, PEOPLE, PROJECTS, REMINDERS, TASKS
from .validation import Result, fail, normalize_iso_date, normalize_priority, normalize_required_text, ok, validate_status


TARGET_TYPES = {
    "task": TASKS,
    "meeting": MEETINGS,
    "note": NOTES,
    "reminder": REMINDERS,
    "followup": FOLLOW_UPS,
    "follow-up": FOLLOW_UPS,
    "project": PROJECTS,
    "person": PEOPLE,
}

_PERSON_RE = re.compile(r"(?<![\w.])@([A-Za-z0-9][\w.-]*)")
_PROJECT_RE = re.compile(r"(?<![\w&])#([A-Za-z0-9][\w-]*)")
_PRIORITY_RE = re.compile(r"(?<!\w)!p([1-5])(?!\w)", re.IGNORECASE)
_DUE_RE = re.compile(r"(?<!\w)due:(\d{4}-\d{2}-\d{2})(?!\w)", re.IGNORECASE)
_DO_RE = re.compile(r"(?<!\w)do:(\d{4}-\d{2}-\d{2})(?!\w)", re.IGNORECASE)
_TYPE_RE = re.compile(r"(?<!\w)type:([A-Za-z-]+)", re.IGNORECASE)
_CONTEXT_RE = re.compile(r"(?<!\w)(work|personal):(?=\s|$)", re.IGNORECASE)
_RELATIVE_DATE_RE = re.compile(r"\b(today|tomorrow)\b", re.IGNORECASE)
_MEETING_RE = re.compile(
    r"(?<![\w:-])(meeting|1:1|1-1|one-on-one|sync|standup|stand-up|check-in|catch-up|call)(?![\w:-])",
    re.IGNORECASE,
)


@dataclass(frozen=True)
class CaptureOptions:
    relative_dates: bool = True
    meeting_heuristic: bool = True
    default_context: str = "work"


@dataclass(frozen=True)
class CaptureTokens:
    title: str
    people: tuple[str, ...] = ()
    projects: tuple[str, ...] = ()
    priority: int | None = None
    due: str = ""
    scheduled: str = ""
    target_type: str = ""
    context: str = ""


@dataclass(frozen=True)
class CaptureHeuristics:
    scheduled: str = ""
    target_type: str = ""


@dataclass(frozen=True)
class ResolvedCapture:
    collection: str
    title: str
    people: tuple[str, ...]
    projects: tuple[str, ...]
    priority: int
    due: str
    scheduled: str
    context: str
    extra: dict[str, str] = field(default_factory=dict)


def _dedupe(values: list[str]) -> tuple[str, ...]:
    seen: set[str] = set()
    out: list[str] = []
    for value in values:
        key = value.lower()
        if not value or key in seen:
            continue
        seen.add(key)
        out.append(value)
    return tuple(out)


def parse_capture(raw: str) -> CaptureTokens:
    text = raw or ""
    people = _dedupe([match.rstrip(".-") for match in _PERSON_RE.findall(text)])
    projects = _dedupe([match.rstrip("-") for match in _PROJECT_RE.findall(text)])

    priority_match = _PRIORITY_RE.search(text)
    due_match = _DUE_RE.search(text)
    do_match = _DO_RE.search(text)
    type_match = _TYPE_RE.search(text)
    context_match = _CONTEXT_RE.search(text)

    title = _PERSON_RE.sub(lambda match: match.group(1), text)
    for pattern in (_PROJECT_RE, _PRIORITY_RE, _DUE_RE, _DO_RE, _TYPE_RE, _CONTEXT_RE):
        title = pattern.sub(" ", title)
    title = " ".join(title.split())

    return CaptureTokens(
        title=title,
        people=people,
        projects=projects,
        priority=int(priority_match.group(1)) if priority_match else None,
        due=due_match.group(1) if due_match else "",
        scheduled=do_match.group(1) if do_match else "",
        target_type=type_match.group(1).lower() if type_match else "",
        context=context_match.group(1).lower() if context_match else "",
    )


def infer_heuristics(raw: str, local_date: date, options: CaptureOptions | None = None) -> CaptureHeuristics:
    options = options or CaptureOptions()
    scheduled = ""
    if options.relative_dates:
        match = _RELATIVE_DATE_RE.search(raw or "")
        if match:
            offset = 1 if match.group(1).lower() == "tomorrow" else 0
            scheduled = (local_date + timedelta(days=offset)).isoformat()
    target_type = ""
    if options.meeting_heuristic and _MEETING_RE.search(raw or ""):
        target_type = "meeting"
    return CaptureHeuristics(scheduled=scheduled, target_type=target_type)


def _field(fields: dict[str, Any], *names: str) -> str:
    for name in names:
        value = fields.get(name)
        if value is None:
            continue
        text = str(value).strip()
        if text:
            return text
    return ""


def _split_names(value: Any, marker: str) -> tuple[str, ...]:
    if isinstance(value, (list, tuple)):
        parts = [str(item) for item in value]
    else:
        parts = re.split(r"[,\s]+", str(value or ""))
    return _dedupe([part.strip().lstrip(marker).strip() for part in parts if part.strip().lstrip(marker).strip()])


def resolve_capture(
    raw: str,
    target_type: str,
    fields: dict[str, Any] | None,
    *,
    local_date: date,
    options: CaptureOptions | None = None,
) -> Result:
    """Merge explicit fields over parsed tokens over heuristics over defaults."""

    options = options or CaptureOptions()
    fields = dict(fields or {})
    tokens = parse_capture(raw)
    heuristics = infer_heuristics(raw, local_date, options)

    token_kind = tokens.target_type if tokens.target_type in TARGET_TYPES else ""
    kind = (target_type or "").strip().lower() or token_kind or heuristics.target_type or "task"
    collection = TARGET_TYPES.get(kind)
    if collection is None:
        return fail(
            "VALIDATION_STATUS_INVALID",
            "targetType must be one of the allowed values.",
            {"field": "targetType", "value": kind, "allowed": sorted(TARGET_TYPES)},
        )

    title = normalize_required_text(_field(fields, "title", "name") or tokens.title, "title", fallback=raw)
    if not title.ok:
        return title

    people_field = _field(fields, "people")
    projects_field = _field(fields, "projects", "project")
    people = _split_names(people_field, "@") if people_field else tokens.people
    projects = _split_names(projects_field, "#") if projects_field else tokens.projects

    due = normalize_iso_date(_field(fields, "dueDate", "due") or tokens.due, "dueDate")
    if not due.ok:
        return due
    scheduled = normalize_iso_date(
        _field(fields, "scheduleDate", "scheduled") or tokens.scheduled or heuristics.scheduled,
        "scheduleDate",
    )
    if not scheduled.ok:
        return scheduled

    priority_raw = _field(fields, "priority") or (str(tokens.priority) if tokens.priority else "")
    priority = normalize_priority(priority_raw)
    if not priority.ok:
        return priority

    context = validate_status(
        _field(fields, "context") or tokens.context or options.default_context,
        CONTEXTS,
        "context",
    )
    if not context.ok:
        return context

    extra = {
        name: _field(fields, name)
        for name in ("time", "meetingType", "agenda", "notes", "email", "phone", "body")
        if _field(fields, name)
    }
    return ok(
        ResolvedCapture(
            collection=collection,
            title=title.value,
            people=people,
            projects=projects,
            priority=priority.value,
            due=due.value,
            scheduled=scheduled.value,
            context=context.value,
            extra=extra,
        )
    )
