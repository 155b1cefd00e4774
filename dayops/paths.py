from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

from .config import CONFIG_FILENAME


RUNTIME_DIRNAME = ".dayops"


def find_workspace_root(start: Path | None = None) -> Path:
    """Walk up from `start` looking for a dayops.toml sentinel.

    Falls back to the start directory so a fresh directory works without setup.
    """

    probe = (start or Path.cwd()).resolve()
    for candidate in [probe, *probe.parents]:
        if (candidate / CONFIG_FILENAME).exists():
            return candidate
    return probe


@dataclass(frozen=True)
class RuntimePaths:
    workspace: Path
    root: Path
    config_toml: Path
    device_json: Path
    state_dir: Path
    logs_dir: Path
    locks_dir: Path

    @property
    def events_log(self) -> Path:
        return self.logs_dir / "events.jsonl"

    @property
    def lock_file(self) -> Path:
        return self.locks_dir / "dayops.lock"


def runtime_paths(workspace: Path) -> RuntimePaths:
    root = workspace / RUNTIME_DIRNAME
    return RuntimePaths(
        workspace=workspace,
        root=root,
        config_toml=workspace / CONFIG_FILENAME,
        device_json=root / "device.json",
        state_dir=root / "state",
        logs_dir=root / "logs",
        locks_dir=root / "locks",
    )


def ensure_runtime_dirs(paths: RuntimePaths) -> RuntimePaths:
    paths.root.mkdir(parents=True, exist_ok=True)
    paths.state_dir.mkdir(parents=True, exist_ok=True)
    paths.logs_dir.mkdir(parents=True, exist_ok=True)
    paths.locks_dir.mkdir(parents=True, exist_ok=True)
    return paths
