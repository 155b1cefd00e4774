from __future__ import annotations

import asyncio
import copy
import errno
import json
import os
from pathlib import Path
import secrets
from typing import Any, Protocol


_TRANSIENT_ERRNOS = frozenset(
    {
        errno.EAGAIN,
        errno.EBUSY,
        errno.EINTR,
        errno.ETIMEDOUT,
        errno.ENOSPC,
    }
)


class StorageError(RuntimeError):
    transient = False


class TransientStorageError(StorageError):
    transient = True


class PermanentStorageError(StorageError):
    transient = False


class PersistenceGateway(Protocol):
    """Opaque key-value backend holding the persisted document record.

    `init()` returns False when the backend is unavailable. `get`/`put` raise
    TransientStorageError for failures worth retrying and PermanentStorageError
    otherwise; `put` returning False also counts as a permanent failure.
    """

    async def init(self) -> bool:
        ...

    async def get(self, key: str) -> dict[str, Any] | None:
        ...

    async def put(self, record: dict[str, Any]) -> bool:
        ...


def classify_os_error(exc: OSError) -> StorageError:
    if isinstance(exc, (BlockingIOError, InterruptedError, TimeoutError)) or exc.errno in _TRANSIENT_ERRNOS:
        return TransientStorageError(str(exc))
    return PermanentStorageError(str(exc))


class JsonFileGateway:
    """One JSON file per key under `root`, replaced atomically on every put."""

    def __init__(self, root: Path) -> None:
        self.root = root
        self._ready = False

    def _path(self, key: str) -> Path:
        safe = "".join(ch if ch.isalnum() or ch in "-_" else "_" for ch in key) or "record"
        return self.root / f"{safe}.json"

    async def init(self) -> bool:
        self._ready = await asyncio.to_thread(self._probe)
        return self._ready

    def _probe(self) -> bool:
        try:
            self.root.mkdir(parents=True, exist_ok=True)
            probe = self.root / f".probe-{secrets.token_hex(4)}"
            probe.write_text("ok", encoding="utf-8")
            probe.unlink()
        except OSError:
            return False
        return True

    async def get(self, key: str) -> dict[str, Any] | None:
        if not self._ready:
            return None
        return await asyncio.to_thread(self._read, self._path(key))

    def _read(self, path: Path) -> dict[str, Any] | None:
        try:
            if not path.exists():
                return None
            text = path.read_text(encoding="utf-8")
        except OSError as exc:
            raise classify_os_error(exc) from exc
        except UnicodeDecodeError as exc:
            raise PermanentStorageError(f"stored record is not UTF-8 text: {path.name}") from exc
        try:
            data = json.loads(text)
        except ValueError as exc:
            raise PermanentStorageError(f"stored record is not valid JSON: {path.name}") from exc
        if not isinstance(data, dict):
            raise PermanentStorageError(f"stored record is not an object: {path.name}")
        return data

    async def put(self, record: dict[str, Any]) -> bool:
        if not self._ready:
            return False
        key = str(record.get("id") or "")
        if not key:
            raise PermanentStorageError("record has no id")
        await asyncio.to_thread(self._write, self._path(key), record)
        return True

    def _write(self, path: Path, record: dict[str, Any]) -> None:
        tmp = path.with_name(f".{path.name}.{secrets.token_hex(4)}.tmp")
        try:
            with tmp.open("w", encoding="utf-8") as handle:
                json.dump(record, handle, indent=2, sort_keys=True, ensure_ascii=True)
                handle.write("\n")
            os.replace(tmp, path)
        except OSError as exc:
            tmp.unlink(missing_ok=True)
            raise classify_os_error(exc) from exc


class MemoryGateway:
    """Process-local gateway; records are deep-copied in and out."""

    def __init__(self, *, available: bool = True) -> None:
        self.available = available
        self.records: dict[str, dict[str, Any]] = {}
        self.puts = 0

    async def init(self) -> bool:
        return self.available

    async def get(self, key: str) -> dict[str, Any] | None:
        if not self.available:
            return None
        record = self.records.get(key)
        return copy.deepcopy(record) if record is not None else None

    async def put(self, record: dict[str, Any]) -> bool:
        if not self.available:
            return False
        self.records[str(record["id"])] = copy.deepcopy(record)
        self.puts += 1
        return True
