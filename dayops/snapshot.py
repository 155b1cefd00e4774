from __future__ import annotations

import copy
from dataclasses import dataclass
from typing import Any

from .migrate import MigrationContext, MigrationError, migrate_collections
from .model import BUCKETS, CURRENT_SCHEMA_VERSION, RECORD_COLLECTIONS, STAMPED_FIELDS, SUGGESTIONS
from .stamps import STAMPS_KEY, latest_stamp
from .validation import Result, fail, ok, parse_datetime, validate_iso_datetime


@dataclass(frozen=True)
class ImportOutcome:
    document: dict[str, Any]
    merged: dict[str, int]
    source_version: int

    @property
    def total(self) -> int:
        return sum(self.merged.values())


def build_snapshot(doc: dict[str, Any], *, device_id: str, exported_at: str) -> dict[str, Any]:
    return {
        "schemaVersion": CURRENT_SCHEMA_VERSION,
        "exportedAt": exported_at,
        "deviceId": device_id,
        "collections": copy.deepcopy(doc),
    }


def _invalid(message: str, **details: Any) -> Result:
    return fail("IMPORT_INVALID", message, details)


def validate_snapshot(payload: Any) -> Result:
    """Structural checks only; value is (schema_version, collections)."""

    if not isinstance(payload, dict):
        return _invalid("Snapshot must be a JSON object.")

    version = payload.get("schemaVersion")
    if isinstance(version, bool) or not isinstance(version, int) or version < 1:
        return _invalid("Snapshot schemaVersion must be a positive integer.", schemaVersion=version)
    if version > CURRENT_SCHEMA_VERSION:
        return fail(
            "IMPORT_UNSUPPORTED_VERSION",
            f"Snapshot schema version {version} is newer than supported version {CURRENT_SCHEMA_VERSION}.",
            {"schemaVersion": version, "supported": CURRENT_SCHEMA_VERSION},
        )

    if "exportedAt" in payload:
        exported = validate_iso_datetime(payload.get("exportedAt"), "exportedAt")
        if not exported.ok:
            return _invalid(exported.message, field="exportedAt")

    collections = payload.get("collections")
    if not isinstance(collections, dict):
        return _invalid("Snapshot is missing its collections object.")

    for name in RECORD_COLLECTIONS:
        if name not in collections:
            continue
        records = collections[name]
        if not isinstance(records, list):
            return _invalid(f"Snapshot collection {name} must be a list.", collection=name)
        for index, record in enumerate(records):
            if not isinstance(record, dict) or not isinstance(record.get("id"), str) or not record["id"].strip():
                return _invalid(f"Snapshot collection {name} has a record without an id.", collection=name, index=index)

    if SUGGESTIONS in collections:
        buckets = collections[SUGGESTIONS]
        if not isinstance(buckets, dict):
            return _invalid("Snapshot suggestions must be an object of buckets.", collection=SUGGESTIONS)
        for bucket in BUCKETS:
            items = buckets.get(bucket, [])
            if not isinstance(items, list) or any(not isinstance(item, dict) or not item.get("id") for item in items):
                return _invalid(f"Snapshot suggestion bucket {bucket} is malformed.", collection=SUGGESTIONS, bucket=bucket)

    return ok((version, collections))


def merge_records(local: dict[str, Any], incoming: dict[str, Any], fields: tuple[str, ...]) -> dict[str, Any]:
    """Field-merge two versions of the same record.

    Incoming wins for plain fields; each declared field goes to the newer stamp.
    """

    merged = {**copy.deepcopy(local), **copy.deepcopy(incoming)}
    local_stamps = local.get(STAMPS_KEY) if isinstance(local.get(STAMPS_KEY), dict) else {}
    incoming_stamps = incoming.get(STAMPS_KEY) if isinstance(incoming.get(STAMPS_KEY), dict) else {}
    stamps = {**copy.deepcopy(local_stamps), **copy.deepcopy(incoming_stamps)}

    for field in fields:
        winner = latest_stamp(local_stamps.get(field), incoming_stamps.get(field))
        if winner is not None:
            stamps[field] = copy.deepcopy(winner)
            merged[field] = copy.deepcopy(winner["value"])
        elif field in incoming:
            merged[field] = copy.deepcopy(incoming[field])
        elif field in local:
            merged[field] = copy.deepcopy(local[field])
    merged[STAMPS_KEY] = stamps

    touched = [moment for moment in (parse_datetime(local.get("updatedAt")), parse_datetime(incoming.get("updatedAt"))) if moment]
    if touched:
        latest = max(touched)
        merged["updatedAt"] = local["updatedAt"] if parse_datetime(local.get("updatedAt")) == latest else incoming["updatedAt"]
    return merged


def merge_collection(
    local: list[dict[str, Any]],
    incoming: list[dict[str, Any]],
    fields: tuple[str, ...],
) -> tuple[list[dict[str, Any]], int]:
    by_id = {record["id"]: record for record in incoming}
    consumed: set[str] = set()
    merged: list[dict[str, Any]] = []
    for record in local:
        other = by_id.get(record.get("id"))
        if other is None:
            merged.append(record)
            continue
        merged.append(merge_records(record, other, fields))
        consumed.add(record["id"])
    for record in incoming:
        if record["id"] in consumed:
            continue
        merged.append(copy.deepcopy(record))
        consumed.add(record["id"])
    return merged, len(consumed)


def merge_documents(local: dict[str, Any], incoming: dict[str, Any]) -> tuple[dict[str, Any], dict[str, int]]:
    document = dict(local)
    counts: dict[str, int] = {}
    for name in RECORD_COLLECTIONS:
        document[name], counts[name] = merge_collection(
            list(local.get(name) or []),
            list(incoming.get(name) or []),
            STAMPED_FIELDS[name],
        )
    local_buckets = local.get(SUGGESTIONS) or {}
    incoming_buckets = incoming.get(SUGGESTIONS) or {}
    buckets: dict[str, list[dict[str, Any]]] = {}
    for bucket in BUCKETS:
        buckets[bucket], _count = merge_collection(
            list(local_buckets.get(bucket) or []),
            list(incoming_buckets.get(bucket) or []),
            (),
        )
    document[SUGGESTIONS] = buckets
    return document, counts


def import_snapshot(local: dict[str, Any], payload: Any, *, device_id: str, now_iso: str) -> Result:
    """Validate, migrate and merge `payload` into a copy of `local`. Never mutates `local`."""

    checked = validate_snapshot(payload)
    if not checked.ok:
        return checked
    version, collections = checked.value
    try:
        migrated = migrate_collections(collections, version, MigrationContext(device_id=device_id, now_iso=now_iso))
    except (MigrationError, TypeError, ValueError) as exc:
        return _invalid(f"Snapshot could not be migrated: {exc}", schemaVersion=version)
    document, counts = merge_documents(local, migrated)
    return ok(ImportOutcome(document=document, merged=counts, source_version=version))
