from __future__ import annotations

import copy
from dataclasses import dataclass, field
from typing import Any, Callable

from .model import (
    BUCKETS,
    CURRENT_SCHEMA_VERSION,
    EPOCH_ISO,
    RECORD_COLLECTIONS,
    STAMPED_FIELDS,
    STORAGE_STATUSES,
    SUGGESTIONS,
    TODAY,
    apply_lifecycle_defaults,
    empty_document,
    new_record_id,
)
from .stamps import ensure_stamps
from .validation import TODAY_STATUSES, parse_datetime


class MigrationError(RuntimeError):
    pass


@dataclass(frozen=True)
class MigrationContext:
    device_id: str
    now_iso: str


@dataclass(frozen=True)
class MigrationOutcome:
    document: dict[str, Any]
    source_version: int | None
    migrated: bool = False
    fell_back: bool = False
    warnings: tuple[str, ...] = field(default_factory=tuple)


MigrationStep = Callable[[dict[str, Any], MigrationContext], dict[str, Any]]


def _record_timestamp(record: dict[str, Any], default: str) -> str:
    for key in ("updatedAt", "createdAt"):
        value = record.get(key)
        if parse_datetime(value) is not None:
            return str(value)
    return default


def _v1_to_v2(state: dict[str, Any], ctx: MigrationContext) -> dict[str, Any]:
    """Retrofit field stamps onto every record's declared mutable fields."""

    for name, fields in STAMPED_FIELDS.items():
        records = state.get(name)
        if not isinstance(records, list):
            continue
        for record in records:
            if not isinstance(record, dict):
                continue
            apply_lifecycle_defaults(record)
            ensure_stamps(
                record,
                fields,
                device_id=ctx.device_id,
                timestamp=_record_timestamp(record, ctx.now_iso),
            )
    state["schemaVersion"] = 2
    return state


def _v2_to_v3(state: dict[str, Any], ctx: MigrationContext) -> dict[str, Any]:
    state["isDemoMode"] = bool(state.get("isDemoMode", False))
    state["schemaVersion"] = 3
    return state


MIGRATIONS: dict[int, MigrationStep] = {
    1: _v1_to_v2,
    2: _v2_to_v3,
}


def _coerce_version(value: Any) -> int:
    if value is None:
        return 1
    if isinstance(value, bool) or not isinstance(value, int):
        raise MigrationError(f"schema version is not an integer: {value!r}")
    if value < 1:
        raise MigrationError(f"schema version must be >= 1 (got {value})")
    return value


def unwrap_envelope(envelope: Any) -> tuple[int, dict[str, Any]]:
    """Return (schema_version, collections) from a persisted record or snapshot.

    Accepted shapes:
    - `{schemaVersion, payload: {schemaVersion, collections}}` (persisted record)
    - `{payload: {...collections}}` (legacy unversioned record)
    - `{schemaVersion, collections}` (snapshot file)
    - a bare collections mapping (legacy)
    """

    if not isinstance(envelope, dict):
        raise MigrationError("persisted state is not an object")

    if "payload" in envelope:
        payload = envelope["payload"]
        if not isinstance(payload, dict):
            raise MigrationError("persisted payload is not an object")
        if isinstance(payload.get("collections"), dict):
            version = payload.get("schemaVersion", envelope.get("schemaVersion"))
            return _coerce_version(version), payload["collections"]
        return _coerce_version(payload.get("schemaVersion", envelope.get("schemaVersion"))), payload

    if "collections" in envelope:
        collections = envelope["collections"]
        if not isinstance(collections, dict):
            raise MigrationError("snapshot collections is not an object")
        return _coerce_version(envelope.get("schemaVersion")), collections

    if any(name in envelope for name in RECORD_COLLECTIONS):
        return _coerce_version(envelope.get("schemaVersion")), envelope

    raise MigrationError("unrecognized persisted state shape")


def migrate_collections(
    collections: dict[str, Any],
    version: int,
    ctx: MigrationContext,
    *,
    target: int = CURRENT_SCHEMA_VERSION,
) -> dict[str, Any]:
    """Walk the migration chain from `version` to `target`, then run the guard pass.

    Raises MigrationError; callers that must not raise use `migrate_document`.
    """

    if version > target:
        raise MigrationError(f"schema version {version} is newer than supported version {target}")
    state = copy.deepcopy(collections)
    while version < target:
        step = MIGRATIONS.get(version)
        if step is None:
            raise MigrationError(f"no migration registered for schema version {version}")
        state = step(state, ctx)
        version += 1
    return guard_document(state, device_id=ctx.device_id)


def migrate_document(
    envelope: Any,
    *,
    device_id: str,
    now_iso: str,
    fallback: Callable[[], dict[str, Any]] = empty_document,
) -> MigrationOutcome:
    if envelope is None:
        return MigrationOutcome(document=fallback(), source_version=None)

    ctx = MigrationContext(device_id=device_id, now_iso=now_iso)
    version: int | None = None
    try:
        version, collections = unwrap_envelope(envelope)
        document = migrate_collections(collections, version, ctx)
    except Exception as exc:  # noqa: BLE001
        return MigrationOutcome(
            document=fallback(),
            source_version=version,
            fell_back=True,
            warnings=(f"migration fell back to an empty document: {exc}",),
        )
    return MigrationOutcome(
        document=document,
        source_version=version,
        migrated=version < CURRENT_SCHEMA_VERSION,
    )


def _guard_today_item(record: dict[str, Any]) -> None:
    execution = record.get("execution")
    if not isinstance(execution, dict):
        execution = {}
    status = execution.get("status") or record.get("status") or "not started"
    if status not in TODAY_STATUSES:
        status = "not started"
    notes = execution.get("notes")
    execution = {
        "status": status,
        "updatedAt": execution.get("updatedAt") or record.get("updatedAt") or EPOCH_ISO,
        "notes": [note for note in notes if isinstance(note, dict)] if isinstance(notes, list) else [],
    }
    record["execution"] = execution
    record["status"] = status


def guard_document(state: dict[str, Any], *, device_id: str = "") -> dict[str, Any]:
    """Idempotent normalization run after every migration.

    Every collection becomes a list of dict records with lifecycle flags and
    stamps for its declared fields; suggestion buckets exist; scalar enums are
    clamped to known values.
    """

    doc: dict[str, Any] = {key: value for key, value in state.items() if key not in RECORD_COLLECTIONS}
    for name in RECORD_COLLECTIONS:
        raw = state.get(name)
        records: list[dict[str, Any]] = []
        for record in raw if isinstance(raw, list) else []:
            if not isinstance(record, dict):
                continue
            apply_lifecycle_defaults(record)
            if not isinstance(record.get("id"), str) or not record["id"].strip():
                record["id"] = new_record_id(name)
            if name == TODAY:
                _guard_today_item(record)
            ensure_stamps(
                record,
                STAMPED_FIELDS[name],
                device_id=device_id,
                timestamp=_record_timestamp(record, EPOCH_ISO),
            )
            records.append(record)
        doc[name] = records

    raw_buckets = state.get(SUGGESTIONS)
    buckets: dict[str, list[dict[str, Any]]] = {}
    for bucket in BUCKETS:
        items = raw_buckets.get(bucket) if isinstance(raw_buckets, dict) else None
        buckets[bucket] = [item for item in items if isinstance(item, dict)] if isinstance(items, list) else []
    doc[SUGGESTIONS] = buckets

    last_active = state.get("lastActiveDate")
    doc["lastActiveDate"] = last_active if isinstance(last_active, str) else ""
    storage_status = state.get("storageStatus")
    doc["storageStatus"] = storage_status if storage_status in STORAGE_STATUSES else "loading"
    doc["isDemoMode"] = bool(state.get("isDemoMode", False))
    doc["schemaVersion"] = CURRENT_SCHEMA_VERSION
    return doc
