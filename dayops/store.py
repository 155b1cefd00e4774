from __future__ import annotations

import asyncio
import copy
from dataclasses import dataclass
from datetime import date, datetime, timezone
from pathlib import Path
from typing import Any, Callable

from .capture import ResolvedCapture, resolve_capture
from .config import DayopsConfig, load_config
from .daily import (
    CloseReadiness,
    RolloverNotice,
    apply_rollover,
    build_daily_log,
    close_readiness,
    plan_items,
    preview_daily_log,
)
from .device import load_or_create_device_id
from .events import (
    COMMAND_FAILED,
    COMMAND_OK,
    IMPORT_MERGED,
    IMPORT_REJECTED,
    INIT_DEGRADED,
    INIT_READY,
    MIGRATION_WARNING,
    PERSIST_FAILED,
    PERSIST_RETRY,
    ROLLOVER_APPLIED,
    STORAGE_RECOVERED,
    EventBus,
)
from .gateway import JsonFileGateway, PermanentStorageError, PersistenceGateway, StorageError, TransientStorageError
from .migrate import MigrationContext, migrate_collections, migrate_document
from .model import (
    BUCKETS,
    CURRENT_SCHEMA_VERSION,
    DAILY_LOGS,
    ENTITY_COLLECTIONS,
    EXECUTION_NOTE,
    FOLLOW_UPS,
    INBOX,
    MEETING_TYPES,
    MEETINGS,
    NOTES,
    PEOPLE,
    PROJECTS,
    RECORD_KIND,
    REMINDERS,
    STAMPED_FIELDS,
    STATE_RECORD_ID,
    SUGGESTIONS,
    TASKS,
    TODAY,
    apply_lifecycle_defaults,
    empty_document,
    find_record,
    is_active,
    new_record_id,
    record_label,
    sample_collections_v1,
    slugify,
)
from .paths import ensure_runtime_dirs, runtime_paths
from .snapshot import build_snapshot, import_snapshot as merge_snapshot
from .stamps import ensure_stamps, write_stamped
from .suggestions import rebuild_suggestions
from .validation import (
    TODAY_STATUSES,
    Result,
    fail,
    normalize_follow_up_recipients,
    normalize_iso_date,
    normalize_priority,
    normalize_required_text,
    ok,
    validate_id,
    validate_status,
)


Clock = Callable[[], datetime]
Listener = Callable[[dict[str, Any]], Any]

DELETE_CONFIRMATION_PHRASE = "DELETE"
REORDER_DIRECTIONS = ("up", "down")
RESTORABLE_COLLECTIONS = (*ENTITY_COLLECTIONS, INBOX)
LIBRARY_EDIT_COLLECTIONS = (TASKS, PROJECTS, PEOPLE, REMINDERS, NOTES)

# Form field name -> record field, per editable collection.
_LIBRARY_FIELDS: dict[str, dict[str, str]] = {
    TASKS: {
        "title": "title",
        "status": "status",
        "dueDate": "due",
        "scheduleDate": "scheduled",
        "priority": "priority",
        "context": "context",
    },
    REMINDERS: {
        "title": "title",
        "status": "status",
        "dueDate": "due",
        "scheduleDate": "scheduled",
        "priority": "priority",
        "context": "context",
    },
    PROJECTS: {"name": "name", "status": "status"},
    PEOPLE: {"name": "name", "email": "email", "phone": "phone"},
    NOTES: {"title": "title", "body": "body"},
}

_MEETING_FIELDS = {
    "title": "title",
    "scheduleDate": "scheduled",
    "time": "time",
    "meetingType": "meetingType",
    "agenda": "agenda",
    "notes": "notes",
}


def system_clock() -> datetime:
    return datetime.now().astimezone()


def _not_found(collection: str, record_id: str) -> Result:
    return fail("NOT_FOUND", f"No {collection} record with id {record_id}.", {"collection": collection, "id": record_id})


def _invalid_collection(collection: Any, allowed: tuple[str, ...]) -> Result:
    return fail(
        "VALIDATION_COLLECTION_INVALID",
        "collection must be one of the allowed values.",
        {"field": "collection", "value": collection, "allowed": list(allowed)},
    )


@dataclass(frozen=True)
class DeleteRequest:
    collection: str
    id: str
    label: str
    hard: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {"collection": self.collection, "id": self.id, "label": self.label, "hard": self.hard}


class _Draft:
    """Copy-on-write view of the document for a single command.

    Collections are shallow-copied on first write access and records are deep
    copied the first time they are opened for writing, so the committed
    document is never touched until the draft is swapped in.
    """

    def __init__(self, base: dict[str, Any], *, now_iso: str, local_date: date) -> None:
        self.base = base
        self.doc = dict(base)
        self.now_iso = now_iso
        self.local_date = local_date
        self._copied: set[str] = set()
        self._opened: set[tuple[str, str]] = set()

    def read(self, name: str) -> list[dict[str, Any]]:
        return list(self.doc.get(name) or [])

    def collection(self, name: str) -> list[dict[str, Any]]:
        if name not in self._copied:
            self.doc[name] = list(self.doc.get(name) or [])
            self._copied.add(name)
        return self.doc[name]

    def record(self, name: str, record_id: str) -> dict[str, Any] | None:
        records = self.collection(name)
        for index, record in enumerate(records):
            if record.get("id") != record_id:
                continue
            if (name, record_id) not in self._opened:
                records[index] = copy.deepcopy(record)
                self._opened.add((name, record_id))
            return records[index]
        return None

    def replace(self, document: dict[str, Any]) -> None:
        self.doc = document
        self._copied = set(document)
        self._opened = set()


class Store:
    """Owns the single in-memory document and serializes every command.

    Each command validates, edits a copy-on-write draft, persists the draft
    through the gateway and only then swaps it in and notifies subscribers.
    """

    def __init__(
        self,
        gateway: PersistenceGateway,
        *,
        device_id: str,
        config: DayopsConfig | None = None,
        events: EventBus | None = None,
        clock: Clock | None = None,
    ) -> None:
        self._gateway = gateway
        self.device_id = device_id
        self.config = config or DayopsConfig()
        self.events = events or EventBus()
        self._clock = clock or system_clock
        self._doc = empty_document()
        self._lock = asyncio.Lock()
        self._listeners: list[Listener] = []
        self._last_error = ""
        self._rollover_notice: RolloverNotice | None = None
        self.migration_warnings: tuple[str, ...] = ()

    # -- time -------------------------------------------------------------

    def _now(self) -> datetime:
        return self._clock()

    def _now_iso(self, moment: datetime | None = None) -> str:
        moment = moment or self._now()
        return moment.astimezone(timezone.utc).isoformat(timespec="milliseconds")

    def local_date(self) -> date:
        return self._now().date()

    def _new_draft(self) -> _Draft:
        moment = self._now()
        return _Draft(self._doc, now_iso=self._now_iso(moment), local_date=moment.date())

    # -- queries ----------------------------------------------------------

    @property
    def storage_status(self) -> str:
        return str(self._doc.get("storageStatus") or "loading")

    def get_state(self) -> dict[str, Any]:
        return copy.deepcopy(self._doc)

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    def persistence_status(self) -> dict[str, Any]:
        return {
            "status": self.storage_status,
            "degraded": self.storage_status == "degraded",
            "lastError": self._last_error,
        }

    def startup_rollover_notice(self) -> RolloverNotice | None:
        return self._rollover_notice

    def dismiss_rollover_notice(self) -> None:
        self._rollover_notice = None

    def rebuild_suggestions(self, local_date: date | None = None) -> dict[str, list[dict[str, Any]]]:
        """Recompute the buckets and refresh them in memory without persisting."""

        buckets = rebuild_suggestions(
            self._doc,
            local_date or self.local_date(),
            now_iso=self._now_iso(),
            rules=self.config.suggestions.rules(),
        )
        self._doc = {**self._doc, SUGGESTIONS: buckets}
        self._notify()
        return copy.deepcopy(buckets)

    def validate_incomplete_today_notes(self) -> Result:
        missing = list(close_readiness(self._doc).missing_today_notes)
        return ok({"valid": not missing, "missing": missing})

    def close_day_readiness(self) -> CloseReadiness:
        return close_readiness(self._doc)

    def preview_daily_log(self) -> dict[str, int]:
        return preview_daily_log(self._doc)

    def export_snapshot(self) -> dict[str, Any]:
        return build_snapshot(self._doc, device_id=self.device_id, exported_at=self._now_iso())

    def request_delete(self, collection: str, record_id: str, *, hard: bool = False) -> Result:
        if collection not in RESTORABLE_COLLECTIONS:
            return _invalid_collection(collection, RESTORABLE_COLLECTIONS)
        checked = validate_id(record_id)
        if not checked.ok:
            return checked
        record = find_record(self._doc.get(collection) or [], checked.value)
        if record is None:
            return _not_found(collection, checked.value)
        return ok(DeleteRequest(collection=collection, id=checked.value, label=record_label(record), hard=bool(hard)))

    # -- lifecycle --------------------------------------------------------

    async def init(self) -> Result:
        """Probe storage, load and migrate the persisted record, roll over, rebuild."""

        async with self._lock:
            return await self._initialize()

    async def _initialize(self) -> Result:
        if not await self._probe():
            self._degrade("storage backend unavailable")
            self.events.publish_event(INIT_DEGRADED, "storage backend unavailable", severity="warn")
            self._notify()
            return fail("STORAGE_DEGRADED", "Storage is unavailable; working in memory only.", self.persistence_status())

        try:
            stored = await self._with_retry("load", lambda: self._gateway.get(STATE_RECORD_ID))
        except Exception as exc:  # noqa: BLE001
            self._degrade(f"load failed: {exc}")
            self.events.publish_event(INIT_DEGRADED, f"load failed: {exc}", severity="warn")
            self._notify()
            return fail("STORAGE_DEGRADED", "Stored data could not be read.", self.persistence_status())

        moment = self._now()
        now_iso = self._now_iso(moment)
        outcome = migrate_document(stored, device_id=self.device_id, now_iso=now_iso)
        self.migration_warnings = outcome.warnings
        for warning in outcome.warnings:
            self.events.publish_event(MIGRATION_WARNING, warning, severity="warn")

        document, notice = apply_rollover(outcome.document, moment.date(), now_iso=now_iso)
        self._rollover_notice = notice
        if notice is not None:
            self.events.publish_event(
                ROLLOVER_APPLIED,
                f"rolled over {notice.recovered_item_count} Today item(s) from {notice.previous_date}",
                metadata=notice.to_dict(),
            )
        document[SUGGESTIONS] = rebuild_suggestions(
            document,
            moment.date(),
            now_iso=now_iso,
            rules=self.config.suggestions.rules(),
        )
        document["storageStatus"] = "ready"
        self._doc = document

        # Fallback documents are not written back; the unreadable record stays until the next command.
        if not outcome.fell_back:
            persisted = await self._persist(document)
            if not persisted.ok:
                self.events.publish_event(INIT_DEGRADED, persisted.message, severity="warn")
                self._notify()
                return persisted
        self._last_error = ""
        self.events.publish_event(
            INIT_READY,
            "store ready",
            metadata={"sourceVersion": outcome.source_version, "migrated": outcome.migrated},
        )
        self._notify()
        return ok(self.persistence_status())

    async def retry_storage_initialization(self) -> Result:
        """Re-probe storage and write the in-memory document back; never discards it."""

        async with self._lock:
            if not await self._probe():
                self._degrade("storage backend unavailable")
                self._notify()
                return fail("STORAGE_DEGRADED", "Storage is still unavailable.", self.persistence_status())
            document = {**self._doc, "storageStatus": "ready"}
            persisted = await self._persist(document)
            if not persisted.ok:
                self._notify()
                return persisted
            self._doc = document
            self._last_error = ""
            self.events.publish_event(STORAGE_RECOVERED, "storage recovered")
            self._notify()
            return ok(self.persistence_status())

    async def _probe(self) -> bool:
        try:
            return bool(await self._gateway.init())
        except Exception as exc:  # noqa: BLE001
            self._last_error = f"init failed: {exc}"
            return False

    # -- persistence ------------------------------------------------------

    def _persisted_record(self, document: dict[str, Any]) -> dict[str, Any]:
        return {
            "id": STATE_RECORD_ID,
            "schemaVersion": CURRENT_SCHEMA_VERSION,
            "deviceId": self.device_id,
            "payload": {"schemaVersion": CURRENT_SCHEMA_VERSION, "collections": document},
            "updatedAt": int(self._now().timestamp() * 1000),
        }

    async def _with_retry(self, action: str, operation: Callable[[], Any]) -> Any:
        attempts = max(1, self.config.storage.retry_attempts)
        backoff = max(0.0, self.config.storage.retry_backoff_s)
        for attempt in range(1, attempts + 1):
            try:
                return await operation()
            except TransientStorageError as exc:
                if attempt >= attempts:
                    raise
                self.events.publish_event(
                    PERSIST_RETRY,
                    f"{action} attempt {attempt} failed: {exc}",
                    severity="warn",
                    metadata={"attempt": attempt, "action": action},
                )
                await asyncio.sleep(backoff * attempt)
        raise TransientStorageError(f"{action} retries exhausted")

    async def _persist(self, document: dict[str, Any]) -> Result:
        record = self._persisted_record(document)
        try:
            stored = await self._with_retry("write", lambda: self._gateway.put(record))
            if not stored:
                raise PermanentStorageError("gateway rejected the write")
        except StorageError as exc:
            kind = "transient" if exc.transient else "permanent"
            return self._persist_failed(str(exc), kind)
        except Exception as exc:  # noqa: BLE001
            return self._persist_failed(str(exc) or type(exc).__name__, "permanent")
        return ok(record)

    def _persist_failed(self, message: str, kind: str) -> Result:
        self._degrade(f"write failed: {message}")
        self.events.publish_event(
            PERSIST_FAILED,
            f"write failed: {message}",
            severity="error",
            metadata={"kind": kind},
        )
        return fail(
            "PERSISTENCE_FAILED",
            f"Changes were not saved: {message}",
            {"retryable": kind == "transient", "kind": kind},
        )

    def _degrade(self, message: str) -> None:
        self._last_error = message
        self._doc = {**self._doc, "storageStatus": "degraded"}

    def _notify(self) -> None:
        for listener in list(self._listeners):
            try:
                listener(copy.deepcopy(self._doc))
            except Exception:  # noqa: BLE001
                continue

    async def _commit(self, command: str, mutate: Callable[[_Draft], Result]) -> Result:
        async with self._lock:
            draft = self._new_draft()
            result = mutate(draft)
            if not result.ok:
                self.events.publish_event(
                    COMMAND_FAILED,
                    f"{command}: {result.message}",
                    severity="warn",
                    metadata={"command": command, "code": result.code},
                )
                return result
            if draft.doc.get("storageStatus") == "loading":
                draft.doc["storageStatus"] = "ready"
            persisted = await self._persist(draft.doc)
            if not persisted.ok:
                self._notify()
                return persisted
            self._doc = draft.doc
            self.events.publish_event(COMMAND_OK, command, metadata={"command": command})
            self._notify()
            return result

    # -- draft helpers ----------------------------------------------------

    def _rebuild(self, draft: _Draft) -> None:
        draft.doc[SUGGESTIONS] = rebuild_suggestions(
            draft.doc,
            draft.local_date,
            now_iso=draft.now_iso,
            rules=self.config.suggestions.rules(),
        )

    def _new_record(self, collection: str, now_iso: str, **fields: Any) -> dict[str, Any]:
        record = {"id": new_record_id(collection), **fields, "createdAt": now_iso, "updatedAt": now_iso}
        apply_lifecycle_defaults(record)
        ensure_stamps(record, STAMPED_FIELDS[collection], device_id=self.device_id, timestamp=now_iso)
        return record

    def _write(self, record: dict[str, Any], field: str, value: Any, now_iso: str) -> bool:
        if field in record and record[field] == value:
            return False
        write_stamped(record, field, value, self.device_id, now_iso)
        record["updatedAt"] = now_iso
        return True

    def _match_by_name(
        self, records: list[dict[str, Any]], name: str, *, first_name: bool = False
    ) -> dict[str, Any] | None:
        wanted = slugify(name)
        if not wanted:
            return None
        live = [record for record in records if not record.get("deleted")]
        for record in live:
            if slugify(str(record.get("name") or "")) == wanted:
                return record
        if not first_name:
            return None
        for record in live:
            first = slugify(str(record.get("name") or "")).split("-", 1)[0]
            if first and first == wanted:
                return record
        return None

    def _ensure_named(self, draft: _Draft, collection: str, name: str, **defaults: Any) -> dict[str, Any]:
        existing = self._match_by_name(draft.read(collection), name, first_name=collection == PEOPLE)
        if existing is not None:
            return existing
        record = self._new_record(collection, draft.now_iso, name=name, **defaults)
        draft.collection(collection).append(record)
        return record

    # -- inbox ------------------------------------------------------------

    async def add_inbox_item(self, raw: str) -> Result:
        def mutate(draft: _Draft) -> Result:
            text = normalize_required_text(raw, "raw")
            if not text.ok:
                return text
            record = self._new_record(
                INBOX,
                draft.now_iso,
                raw=text.value,
                type="",
                processed=False,
                snoozed=False,
            )
            draft.collection(INBOX).insert(0, record)
            return ok(copy.deepcopy(record))

        return await self._commit("add_inbox_item", mutate)

    async def _toggle_inbox_flag(self, command: str, inbox_id: str, flag: str) -> Result:
        def mutate(draft: _Draft) -> Result:
            checked = validate_id(inbox_id, "inboxId")
            if not checked.ok:
                return checked
            item = draft.record(INBOX, checked.value)
            if item is None:
                return _not_found(INBOX, checked.value)
            self._write(item, flag, not bool(item.get(flag)), draft.now_iso)
            return ok(copy.deepcopy(item))

        return await self._commit(command, mutate)

    async def toggle_archive_inbox(self, inbox_id: str) -> Result:
        return await self._toggle_inbox_flag("toggle_archive_inbox", inbox_id, "archived")

    async def toggle_snooze_inbox(self, inbox_id: str) -> Result:
        return await self._toggle_inbox_flag("toggle_snooze_inbox", inbox_id, "snoozed")

    async def process_inbox_item(
        self,
        inbox_id: str,
        target_type: str = "",
        fields: dict[str, Any] | None = None,
    ) -> Result:
        """Turn an inbox capture into an entity; the capture is marked processed, never removed."""

        def mutate(draft: _Draft) -> Result:
            checked = validate_id(inbox_id, "inboxId")
            if not checked.ok:
                return checked
            item = draft.record(INBOX, checked.value)
            if item is None or item.get("deleted"):
                return _not_found(INBOX, checked.value)
            resolved = resolve_capture(
                str(item.get("raw") or ""),
                target_type,
                fields,
                local_date=draft.local_date,
                options=self.config.capture.options(),
            )
            if not resolved.ok:
                return resolved
            capture: ResolvedCapture = resolved.value

            people = [self._ensure_named(draft, PEOPLE, name, email="", phone="")["id"] for name in capture.people]
            projects = [self._ensure_named(draft, PROJECTS, name, status="active")["id"] for name in capture.projects]
            built = self._build_entity(draft, capture, people, projects, source_inbox_id=checked.value, raw=str(item.get("raw") or ""))
            if not built.ok:
                return built
            entity = built.value

            self._write(item, "processed", True, draft.now_iso)
            self._write(item, "type", RECORD_KIND[capture.collection], draft.now_iso)
            item["processedAt"] = draft.now_iso
            item["processedInto"] = {"collection": capture.collection, "id": entity["id"]}
            self._rebuild(draft)
            return ok({"collection": capture.collection, "record": copy.deepcopy(entity)})

        return await self._commit("process_inbox_item", mutate)

    def _build_entity(
        self,
        draft: _Draft,
        capture: ResolvedCapture,
        people: list[str],
        projects: list[str],
        *,
        source_inbox_id: str,
        raw: str,
    ) -> Result:
        now = draft.now_iso
        extra = capture.extra
        collection = capture.collection

        if collection == PEOPLE:
            person = self._ensure_named(draft, PEOPLE, capture.title, email="", phone="")
            person = draft.record(PEOPLE, person["id"]) or person
            for field in ("email", "phone"):
                if extra.get(field):
                    self._write(person, field, extra[field], now)
            return ok(person)
        if collection == PROJECTS:
            return ok(self._ensure_named(draft, PROJECTS, capture.title, status="active"))

        links = {"linkedPeople": people, "linkedProjects": projects, "sourceInboxId": source_inbox_id}
        if collection in (TASKS, REMINDERS):
            record = self._new_record(
                collection,
                now,
                title=capture.title,
                status="backlog" if collection == TASKS else "pending",
                priority=capture.priority,
                due=capture.due,
                scheduled=capture.scheduled,
                context=capture.context,
                **links,
            )
        elif collection == MEETINGS:
            meeting_type = validate_status(
                extra.get("meetingType") or ("one_to_one" if len(people) == 1 else "group"),
                MEETING_TYPES,
                "meetingType",
            )
            if not meeting_type.ok:
                return meeting_type
            record = self._new_record(
                MEETINGS,
                now,
                title=capture.title,
                scheduled=capture.scheduled,
                time=extra.get("time", ""),
                meetingType=meeting_type.value,
                agenda=extra.get("agenda", ""),
                notes=extra.get("notes", ""),
                **links,
            )
        elif collection == NOTES:
            record = self._new_record(NOTES, now, title=capture.title, body=extra.get("body") or raw, **links)
        else:
            record = self._new_record(
                FOLLOW_UPS,
                now,
                title=capture.title,
                source="inbox",
                sourceInboxId=source_inbox_id,
                recipients=[{"personId": person_id, "status": "pending"} for person_id in people],
                linkedProjects=projects,
            )
        draft.collection(collection).append(record)
        return ok(record)

    # -- planning ---------------------------------------------------------

    async def refresh_suggestions(self) -> Result:
        def mutate(draft: _Draft) -> Result:
            self._rebuild(draft)
            return ok(copy.deepcopy(draft.doc[SUGGESTIONS]))

        return await self._commit("refresh_suggestions", mutate)

    async def set_suggestion_bucket(self, suggestion_id: str, bucket: str) -> Result:
        """Move a suggestion to another bucket until the next rebuild recomputes it."""

        def mutate(draft: _Draft) -> Result:
            checked = validate_id(suggestion_id, "suggestionId")
            if not checked.ok:
                return checked
            target = validate_status(bucket, BUCKETS, "bucket")
            if not target.ok:
                return target
            buckets = {name: list(items) for name, items in (draft.doc.get(SUGGESTIONS) or {}).items()}
            for name in BUCKETS:
                for index, item in enumerate(buckets.get(name) or []):
                    if item.get("id") != checked.value:
                        continue
                    moved = {**item, "bucket": target.value}
                    del buckets[name][index]
                    buckets.setdefault(target.value, []).append(moved)
                    draft.doc[SUGGESTIONS] = buckets
                    return ok(copy.deepcopy(moved))
            return _not_found(SUGGESTIONS, checked.value)

        return await self._commit("set_suggestion_bucket", mutate)

    async def add_to_today(self, bucket: str, suggestion_id: str) -> Result:
        def mutate(draft: _Draft) -> Result:
            target = validate_status(bucket, BUCKETS, "bucket")
            if not target.ok:
                return target
            checked = validate_id(suggestion_id, "suggestionId")
            if not checked.ok:
                return checked
            suggestion = find_record((draft.doc.get(SUGGESTIONS) or {}).get(target.value) or [], checked.value)
            if suggestion is None:
                return _not_found(SUGGESTIONS, checked.value)
            for item in plan_items(draft.doc):
                if not is_active(item):
                    continue
                same_source = (
                    item.get("sourceType") == suggestion.get("sourceType")
                    and item.get("sourceId") == suggestion.get("sourceId")
                )
                if item.get("suggestionId") == checked.value or same_source:
                    return fail(
                        "TODAY_DUPLICATE",
                        "This item is already on the Today plan.",
                        {"suggestionId": checked.value, "todayId": item.get("id")},
                    )
            record = self._new_record(
                TODAY,
                draft.now_iso,
                title=str(suggestion.get("title") or ""),
                bucket=target.value,
                status="not started",
                suggestionId=checked.value,
                sourceType=suggestion.get("sourceType", ""),
                sourceId=suggestion.get("sourceId", ""),
                execution={"status": "not started", "updatedAt": draft.now_iso, "notes": []},
            )
            draft.collection(TODAY).append(record)
            return ok(copy.deepcopy(record))

        return await self._commit("add_to_today", mutate)

    async def reorder_today(self, today_id: str, direction: str) -> Result:
        def mutate(draft: _Draft) -> Result:
            checked = validate_id(today_id)
            if not checked.ok:
                return checked
            step = validate_status(direction, REORDER_DIRECTIONS, "direction")
            if not step.ok:
                return step
            items = draft.collection(TODAY)
            index = next((i for i, item in enumerate(items) if item.get("id") == checked.value), None)
            if index is None:
                return _not_found(TODAY, checked.value)
            other = index - 1 if step.value == "up" else index + 1
            if 0 <= other < len(items):
                items[index], items[other] = items[other], items[index]
            return ok([item.get("id") for item in items])

        return await self._commit("reorder_today", mutate)

    # -- execution --------------------------------------------------------

    async def set_today_status(self, today_id: str, status: str) -> Result:
        def mutate(draft: _Draft) -> Result:
            checked = validate_id(today_id)
            if not checked.ok:
                return checked
            new_status = validate_status(status, TODAY_STATUSES)
            if not new_status.ok:
                return new_status
            item = draft.record(TODAY, checked.value)
            if item is None:
                return _not_found(TODAY, checked.value)
            execution = item.get("execution") if isinstance(item.get("execution"), dict) else {}
            item["execution"] = {
                "status": new_status.value,
                "updatedAt": draft.now_iso,
                "notes": list(execution.get("notes") or []),
            }
            self._write(item, "status", new_status.value, draft.now_iso)
            self._write(item, "archived", new_status.value == "archived", draft.now_iso)
            item["updatedAt"] = draft.now_iso
            return ok(copy.deepcopy(item))

        return await self._commit("set_today_status", mutate)

    async def defer_today_item(self, today_id: str) -> Result:
        return await self.set_today_status(today_id, "deferred")

    async def archive_today_item(self, today_id: str) -> Result:
        return await self.set_today_status(today_id, "archived")

    async def add_today_update_note(self, today_id: str, text: str) -> Result:
        def mutate(draft: _Draft) -> Result:
            checked = validate_id(today_id)
            if not checked.ok:
                return checked
            body = normalize_required_text(text, "note")
            if not body.ok:
                return body
            item = draft.record(TODAY, checked.value)
            if item is None:
                return _not_found(TODAY, checked.value)
            note = {"id": new_record_id(EXECUTION_NOTE), "text": body.value, "createdAt": draft.now_iso}
            execution = item.get("execution") if isinstance(item.get("execution"), dict) else {}
            item["execution"] = {
                "status": execution.get("status") or item.get("status") or "not started",
                "updatedAt": draft.now_iso,
                "notes": [*(execution.get("notes") or []), note],
            }
            item["updatedAt"] = draft.now_iso
            return ok(dict(note))

        return await self._commit("add_today_update_note", mutate)

    # -- close ------------------------------------------------------------

    async def generate_daily_log_snapshot(self) -> Result:
        """Log the current plan without closing the day."""

        def mutate(draft: _Draft) -> Result:
            log = build_daily_log(
                plan_items(draft.doc),
                kind="snapshot",
                log_date=draft.local_date.isoformat(),
                created_at=draft.now_iso,
            )
            draft.collection(DAILY_LOGS).insert(0, log)
            return ok(copy.deepcopy(log))

        return await self._commit("generate_daily_log_snapshot", mutate)

    async def close_day(self, note: str = "") -> Result:
        def mutate(draft: _Draft) -> Result:
            if draft.doc.get("storageStatus") == "degraded":
                return fail(
                    "STORAGE_DEGRADED",
                    "Close blocked: storage is degraded. Retry storage initialization first.",
                    {"reason": "storage_degraded"},
                )
            readiness = close_readiness(draft.doc)
            if not readiness.ready:
                return fail(
                    "CLOSE_BLOCKED",
                    "Close blocked: " + ", ".join(readiness.blockers) + ".",
                    {"blockers": list(readiness.blockers), "readiness": readiness.to_dict()},
                )
            log = build_daily_log(
                plan_items(draft.doc),
                kind="close",
                log_date=draft.local_date.isoformat(),
                created_at=draft.now_iso,
                note=" ".join((note or "").split()),
            )
            draft.collection(DAILY_LOGS).insert(0, log)
            draft.doc[TODAY] = []
            self._rebuild(draft)
            return ok(copy.deepcopy(log))

        return await self._commit("close_day", mutate)

    # -- library ----------------------------------------------------------

    def _apply_form(
        self,
        record: dict[str, Any],
        fields: dict[str, Any],
        mapping: dict[str, str],
        now_iso: str,
    ) -> Result:
        changes: dict[str, Any] = {}
        for form_name, field in mapping.items():
            if form_name not in fields:
                continue
            raw = fields[form_name]
            if field in ("title", "name"):
                value = normalize_required_text(raw, form_name, fallback=str(record.get(field) or ""))
            elif field in ("due", "scheduled"):
                value = normalize_iso_date(raw, form_name)
            elif field == "priority":
                value = normalize_priority(raw, default=record.get("priority") or 3)
            elif field == "context":
                value = validate_status(str(raw or "").strip() or record.get("context") or "work", ("work", "personal"), "context")
            elif field == "meetingType":
                value = validate_status(str(raw or "").strip() or "group", MEETING_TYPES, "meetingType")
            elif field == "status":
                value = ok(" ".join(str(raw or "").split()) or record.get("status") or "")
            else:
                value = ok(str(raw or "").strip())
            if not value.ok:
                return value
            changes[field] = value.value
        for field, value in changes.items():
            self._write(record, field, value, now_iso)
        return ok(copy.deepcopy(record))

    async def update_library_entity(self, collection: str, record_id: str, fields: dict[str, Any]) -> Result:
        def mutate(draft: _Draft) -> Result:
            if collection not in LIBRARY_EDIT_COLLECTIONS:
                return _invalid_collection(collection, LIBRARY_EDIT_COLLECTIONS)
            checked = validate_id(record_id)
            if not checked.ok:
                return checked
            record = draft.record(collection, checked.value)
            if record is None:
                return _not_found(collection, checked.value)
            result = self._apply_form(record, dict(fields or {}), _LIBRARY_FIELDS[collection], draft.now_iso)
            if result.ok:
                self._rebuild(draft)
            return result

        return await self._commit("update_library_entity", mutate)

    async def update_meeting(self, meeting_id: str, fields: dict[str, Any]) -> Result:
        def mutate(draft: _Draft) -> Result:
            checked = validate_id(meeting_id, "meetingId")
            if not checked.ok:
                return checked
            record = draft.record(MEETINGS, checked.value)
            if record is None:
                return _not_found(MEETINGS, checked.value)
            result = self._apply_form(record, dict(fields or {}), _MEETING_FIELDS, draft.now_iso)
            if result.ok:
                self._rebuild(draft)
            return result

        return await self._commit("update_meeting", mutate)

    def _open_entity(self, draft: _Draft, collection: str, record_id: str) -> Result:
        if collection not in RESTORABLE_COLLECTIONS:
            return _invalid_collection(collection, RESTORABLE_COLLECTIONS)
        checked = validate_id(record_id)
        if not checked.ok:
            return checked
        record = draft.record(collection, checked.value)
        if record is None:
            return _not_found(collection, checked.value)
        return ok(record)

    async def toggle_archive_entity(self, collection: str, record_id: str) -> Result:
        def mutate(draft: _Draft) -> Result:
            opened = self._open_entity(draft, collection, record_id)
            if not opened.ok:
                return opened
            record = opened.value
            self._write(record, "archived", not bool(record.get("archived")), draft.now_iso)
            self._rebuild(draft)
            return ok(copy.deepcopy(record))

        return await self._commit("toggle_archive_entity", mutate)

    async def restore_entity(self, collection: str, record_id: str) -> Result:
        def mutate(draft: _Draft) -> Result:
            opened = self._open_entity(draft, collection, record_id)
            if not opened.ok:
                return opened
            record = opened.value
            self._write(record, "deleted", False, draft.now_iso)
            self._write(record, "archived", False, draft.now_iso)
            record["deletedAt"] = None
            self._rebuild(draft)
            return ok(copy.deepcopy(record))

        return await self._commit("restore_entity", mutate)

    async def confirm_delete(self, request: DeleteRequest, typed_phrase: str | None = None) -> Result:
        """Soft delete tombstones the record; hard delete needs the typed phrase DELETE."""

        def mutate(draft: _Draft) -> Result:
            if request.hard and typed_phrase != DELETE_CONFIRMATION_PHRASE:
                return fail(
                    "DELETE_CONFIRMATION_MISMATCH",
                    f"Hard delete cancelled: confirmation phrase did not match {DELETE_CONFIRMATION_PHRASE}.",
                    {"collection": request.collection, "id": request.id},
                )
            opened = self._open_entity(draft, request.collection, request.id)
            if not opened.ok:
                return opened
            record = opened.value
            if request.hard:
                records = draft.collection(request.collection)
                records[:] = [item for item in records if item.get("id") != request.id]
                outcome = {"collection": request.collection, "id": request.id, "hard": True}
            else:
                self._write(record, "deleted", True, draft.now_iso)
                record["deletedAt"] = draft.now_iso
                outcome = {"collection": request.collection, "id": request.id, "hard": False, "deletedAt": draft.now_iso}
            self._rebuild(draft)
            return ok(outcome)

        return await self._commit("confirm_delete", mutate)

    async def toggle_follow_up_recipient(self, group_id: str, person_id: str) -> Result:
        def mutate(draft: _Draft) -> Result:
            group_checked = validate_id(group_id, "groupId")
            if not group_checked.ok:
                return group_checked
            person_checked = validate_id(person_id, "personId")
            if not person_checked.ok:
                return person_checked
            group = draft.record(FOLLOW_UPS, group_checked.value)
            if group is None:
                return _not_found(FOLLOW_UPS, group_checked.value)
            recipients = normalize_follow_up_recipients(group.get("recipients") or [])
            if not recipients.ok:
                return recipients
            updated = []
            found = False
            for recipient in recipients.value:
                if recipient["personId"] == person_checked.value:
                    found = True
                    recipient = {
                        "personId": recipient["personId"],
                        "status": "pending" if recipient["status"] == "complete" else "complete",
                    }
                updated.append(recipient)
            if not found:
                return _not_found("recipients", person_checked.value)
            self._write(group, "recipients", updated, draft.now_iso)
            self._rebuild(draft)
            return ok(copy.deepcopy(group))

        return await self._commit("toggle_follow_up_recipient", mutate)

    # -- whole document ---------------------------------------------------

    def _fresh_document(self, draft: _Draft, document: dict[str, Any], *, demo: bool) -> dict[str, Any]:
        document["isDemoMode"] = demo
        document["lastActiveDate"] = draft.local_date.isoformat()
        document["storageStatus"] = draft.base.get("storageStatus") or "loading"
        document[SUGGESTIONS] = rebuild_suggestions(
            document,
            draft.local_date,
            now_iso=draft.now_iso,
            rules=self.config.suggestions.rules(),
        )
        return document

    async def load_sample_data(self) -> Result:
        def mutate(draft: _Draft) -> Result:
            ctx = MigrationContext(device_id=self.device_id, now_iso=draft.now_iso)
            document = migrate_collections(sample_collections_v1(), 1, ctx)
            draft.replace(self._fresh_document(draft, document, demo=True))
            return ok({"isDemoMode": True})

        return await self._commit("load_sample_data", mutate)

    async def reset_all_local_data(self) -> Result:
        def mutate(draft: _Draft) -> Result:
            draft.replace(self._fresh_document(draft, empty_document(), demo=False))
            return ok({"isDemoMode": False})

        return await self._commit("reset_all_local_data", mutate)

    async def import_snapshot(self, payload: Any) -> Result:
        """Validate, migrate and field-merge an exported snapshot into the document."""

        def mutate(draft: _Draft) -> Result:
            merged = merge_snapshot(draft.base, payload, device_id=self.device_id, now_iso=draft.now_iso)
            if not merged.ok:
                self.events.publish_event(
                    IMPORT_REJECTED,
                    merged.message,
                    severity="warn",
                    metadata={"code": merged.code},
                )
                return merged
            outcome = merged.value
            document = outcome.document
            document["storageStatus"] = draft.base.get("storageStatus") or "loading"
            draft.replace(document)
            self._rebuild(draft)
            return ok({"merged": dict(outcome.merged), "total": outcome.total, "sourceVersion": outcome.source_version})

        result = await self._commit("import_snapshot", mutate)
        if result.ok:
            self.events.publish_event(IMPORT_MERGED, f"merged {result.value['total']} record(s)", metadata=result.value)
        return result


def build_store(workspace: Path, *, clock: Clock | None = None) -> tuple[Store, str]:
    """Wire a Store to the workspace's .dayops/ directory. Returns (store, config_warning)."""

    paths = ensure_runtime_dirs(runtime_paths(workspace))
    config, warning = load_config(paths.config_toml)
    events = EventBus(paths.events_log if config.logging.event_log else None)
    device_id = load_or_create_device_id(paths.device_json)
    store = Store(
        JsonFileGateway(paths.state_dir),
        device_id=device_id,
        config=config,
        events=events,
        clock=clock,
    )
    return store, warning
