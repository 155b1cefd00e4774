from __future__ import annotations

from contextlib import contextmanager
import fcntl
from pathlib import Path
from typing import IO, Iterator


class WorkspaceLockedError(RuntimeError):
    pass


@contextmanager
def workspace_lock(lock_path: Path) -> Iterator[IO[str]]:
    """Hold an exclusive, non-blocking lock on the workspace state directory.

    Raises WorkspaceLockedError when another dayops process holds it.
    """

    lock_path.parent.mkdir(parents=True, exist_ok=True)
    handle = lock_path.open("a+", encoding="utf-8")
    try:
        try:
            fcntl.flock(handle.fileno(), fcntl.LOCK_EX | fcntl.LOCK_NB)
        except OSError as exc:
            raise WorkspaceLockedError(f"another dayops process is using this workspace (lock: {lock_path})") from exc
        try:
            yield handle
        finally:
            fcntl.flock(handle.fileno(), fcntl.LOCK_UN)
    finally:
        handle.close()
