from __future__ import annotations

import json
import re
import secrets
import time
from pathlib import Path

from .model import base36


_DEVICE_ID_RE = re.compile(r"^dev_[0-9a-z]+_[0-9a-f]{8}$")


def generate_device_id() -> str:
    return f"dev_{base36(int(time.time() * 1000))}_{secrets.token_hex(4)}"


def is_device_id(value: object) -> bool:
    return isinstance(value, str) and bool(_DEVICE_ID_RE.match(value))


def load_or_create_device_id(path: Path) -> str:
    """Return the device id stored at `path`, generating and saving one on first use.

    The id only tags field stamps for merge tie-breaks; it is not a credential.
    """

    if path.exists():
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError):
            data = {}
        existing = data.get("device_id") if isinstance(data, dict) else None
        if is_device_id(existing):
            return str(existing)

    device_id = generate_device_id()
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("w", encoding="utf-8") as handle:
        json.dump({"device_id": device_id}, handle, indent=2, sort_keys=True, ensure_ascii=True)
        handle.write("\n")
    return device_id
