from __future__ import annotations

import copy
from dataclasses import dataclass
from datetime import date
from typing import Any

from .model import DAILY_LOGS, INBOX, TODAY, new_record_id


BLOCKER_MISSING_NOTES = "missing_today_notes"
BLOCKER_UNPROCESSED_INBOX = "unprocessed_inbox"
BLOCKER_SNOOZED_INBOX = "snoozed_inbox"


def today_status(item: dict[str, Any]) -> str:
    execution = item.get("execution") if isinstance(item.get("execution"), dict) else {}
    return str(execution.get("status") or item.get("status") or "not started")


def is_complete(item: dict[str, Any]) -> bool:
    return today_status(item) == "complete"


def has_trailing_note(item: dict[str, Any]) -> bool:
    execution = item.get("execution") if isinstance(item.get("execution"), dict) else {}
    notes = execution.get("notes")
    if not isinstance(notes, list) or not notes:
        return False
    last = notes[-1]
    text = last.get("text") if isinstance(last, dict) else last
    return bool(str(text or "").strip())


def plan_items(doc: dict[str, Any]) -> list[dict[str, Any]]:
    return [item for item in doc.get(TODAY) or [] if isinstance(item, dict) and not item.get("deleted")]


@dataclass(frozen=True)
class CloseReadiness:
    missing_today_notes: tuple[str, ...] = ()
    unprocessed_inbox: tuple[str, ...] = ()
    snoozed_inbox: tuple[str, ...] = ()

    @property
    def blockers(self) -> tuple[str, ...]:
        out: list[str] = []
        if self.missing_today_notes:
            out.append(BLOCKER_MISSING_NOTES)
        if self.unprocessed_inbox:
            out.append(BLOCKER_UNPROCESSED_INBOX)
        if self.snoozed_inbox:
            out.append(BLOCKER_SNOOZED_INBOX)
        return tuple(out)

    @property
    def ready(self) -> bool:
        return not self.blockers

    def to_dict(self) -> dict[str, Any]:
        return {
            "ready": self.ready,
            "blockers": list(self.blockers),
            "missingTodayNotes": list(self.missing_today_notes),
            "unprocessedInbox": list(self.unprocessed_inbox),
            "snoozedInbox": list(self.snoozed_inbox),
        }


def close_readiness(doc: dict[str, Any]) -> CloseReadiness:
    missing = [
        str(item.get("id"))
        for item in plan_items(doc)
        if not is_complete(item) and not has_trailing_note(item)
    ]
    unprocessed: list[str] = []
    snoozed: list[str] = []
    for item in doc.get(INBOX) or []:
        if not isinstance(item, dict):
            continue
        if item.get("deleted") or item.get("archived") or item.get("processed"):
            continue
        if item.get("snoozed"):
            snoozed.append(str(item.get("id")))
        else:
            unprocessed.append(str(item.get("id")))
    return CloseReadiness(
        missing_today_notes=tuple(missing),
        unprocessed_inbox=tuple(unprocessed),
        snoozed_inbox=tuple(snoozed),
    )


def build_daily_log(
    items: list[dict[str, Any]],
    *,
    kind: str,
    log_date: str,
    created_at: str,
    note: str = "",
) -> dict[str, Any]:
    planned = copy.deepcopy(items)
    completed = [item for item in planned if is_complete(item)]
    incomplete = [item for item in planned if not is_complete(item)]
    return {
        "id": new_record_id(DAILY_LOGS),
        "kind": kind,
        "date": log_date,
        "createdAt": created_at,
        "planned": planned,
        "completed": completed,
        "incomplete": incomplete,
        "summary": {"planned": len(planned), "completed": len(completed), "incomplete": len(incomplete)},
        "note": note,
        "archived": False,
        "deleted": False,
        "deletedAt": None,
        "stamps": {},
    }


def preview_daily_log(doc: dict[str, Any]) -> dict[str, int]:
    items = plan_items(doc)
    done = sum(1 for item in items if is_complete(item))
    return {"planned": len(items), "completed": done, "incomplete": len(items) - done}


@dataclass(frozen=True)
class RolloverNotice:
    previous_date: str
    current_date: str
    recovered_item_count: int
    daily_log_id: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "previousDate": self.previous_date,
            "currentDate": self.current_date,
            "recoveredItemCount": self.recovered_item_count,
            "dailyLogId": self.daily_log_id,
        }


def apply_rollover(
    doc: dict[str, Any],
    local_date: date,
    *,
    now_iso: str,
) -> tuple[dict[str, Any], RolloverNotice | None]:
    """Archive an unclosed prior day's plan. Returns a new document; `doc` is untouched."""

    current = local_date.isoformat()
    previous = str(doc.get("lastActiveDate") or "")
    updated = dict(doc)
    updated["lastActiveDate"] = current
    if not previous or previous == current:
        return updated, None

    carried = copy.deepcopy(plan_items(doc))
    log_id = ""
    if carried:
        log = build_daily_log(
            carried,
            kind="rollover",
            log_date=previous,
            created_at=now_iso,
            note=f"Recovered {len(carried)} Today item(s) from {previous}.",
        )
        log_id = log["id"]
        updated[DAILY_LOGS] = [log, *(doc.get(DAILY_LOGS) or [])]
    updated[TODAY] = []
    return updated, RolloverNotice(
        previous_date=previous,
        current_date=current,
        recovered_item_count=len(carried),
        daily_log_id=log_id,
    )
