from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
import tomllib

from .capture import CaptureOptions
from .model import CONTEXTS
from .suggestions import SuggestionRules


CONFIG_FILENAME = "dayops.toml"


def _as_float(value, *, default: float) -> float:
    try:
        return float(value)
    except Exception:  # noqa: BLE001
        return float(default)


def _as_int(value, *, default: int) -> int:
    if isinstance(value, bool):
        return int(default)
    try:
        return int(value)
    except Exception:  # noqa: BLE001
        return int(default)


def _as_bool(value, *, default: bool) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return bool(value)
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in {"1", "true", "yes", "y", "on"}:
            return True
        if lowered in {"0", "false", "no", "n", "off"}:
            return False
    return bool(default)


def _as_choice(value, *, choices: tuple[str, ...], default: str) -> str:
    if isinstance(value, str) and value.strip().lower() in choices:
        return value.strip().lower()
    return default


@dataclass(frozen=True)
class WorkspaceConfig:
    name: str = "dayops"


@dataclass(frozen=True)
class StorageConfig:
    retry_attempts: int = 3
    retry_backoff_s: float = 0.05


@dataclass(frozen=True)
class CaptureConfig:
    relative_dates: bool = True
    meeting_heuristic: bool = True
    default_context: str = "work"

    def options(self) -> CaptureOptions:
        return CaptureOptions(
            relative_dates=self.relative_dates,
            meeting_heuristic=self.meeting_heuristic,
            default_context=self.default_context,
        )


@dataclass(frozen=True)
class SuggestionsConfig:
    could_limit: int = 8
    due_soon_days: int = 3
    stale_project_days: int = 7
    priority_threshold: int = 2

    def rules(self) -> SuggestionRules:
        return SuggestionRules(
            could_limit=self.could_limit,
            due_soon_days=self.due_soon_days,
            stale_project_days=self.stale_project_days,
            priority_threshold=self.priority_threshold,
        )


@dataclass(frozen=True)
class LoggingConfig:
    event_log: bool = True


@dataclass(frozen=True)
class DayopsConfig:
    workspace: WorkspaceConfig = field(default_factory=WorkspaceConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)
    capture: CaptureConfig = field(default_factory=CaptureConfig)
    suggestions: SuggestionsConfig = field(default_factory=SuggestionsConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)


def _table(data: dict, key: str) -> dict:
    value = data.get(key)
    return value if isinstance(value, dict) else {}


def load_config(path: Path) -> tuple[DayopsConfig, str]:
    """Load workspace config from dayops.toml.

    Returns (config, warning). Warning is empty on success; a missing file is
    not a warning.
    """

    if not path.exists():
        return DayopsConfig(), ""

    try:
        data = tomllib.loads(path.read_text(encoding="utf-8"))
    except Exception as exc:  # noqa: BLE001
        return DayopsConfig(), f"{CONFIG_FILENAME} parse failed: {exc}"

    workspace = _table(data, "workspace")
    storage = _table(data, "storage")
    capture = _table(data, "capture")
    suggestions = _table(data, "suggestions")
    logging = _table(data, "logging")

    cfg = DayopsConfig(
        workspace=WorkspaceConfig(
            name=" ".join(str(workspace.get("name") or WorkspaceConfig.name).split()) or WorkspaceConfig.name,
        ),
        storage=StorageConfig(
            retry_attempts=max(1, _as_int(storage.get("retry_attempts"), default=StorageConfig.retry_attempts)),
            retry_backoff_s=max(0.0, _as_float(storage.get("retry_backoff_s"), default=StorageConfig.retry_backoff_s)),
        ),
        capture=CaptureConfig(
            relative_dates=_as_bool(capture.get("relative_dates"), default=CaptureConfig.relative_dates),
            meeting_heuristic=_as_bool(capture.get("meeting_heuristic"), default=CaptureConfig.meeting_heuristic),
            default_context=_as_choice(
                capture.get("default_context"),
                choices=CONTEXTS,
                default=CaptureConfig.default_context,
            ),
        ),
        suggestions=SuggestionsConfig(
            could_limit=max(0, _as_int(suggestions.get("could_limit"), default=SuggestionsConfig.could_limit)),
            due_soon_days=max(1, _as_int(suggestions.get("due_soon_days"), default=SuggestionsConfig.due_soon_days)),
            stale_project_days=max(
                1,
                _as_int(suggestions.get("stale_project_days"), default=SuggestionsConfig.stale_project_days),
            ),
            priority_threshold=min(
                5,
                max(1, _as_int(suggestions.get("priority_threshold"), default=SuggestionsConfig.priority_threshold)),
            ),
        ),
        logging=LoggingConfig(
            event_log=_as_bool(logging.get("event_log"), default=LoggingConfig.event_log),
        ),
    )
    return cfg, ""


def _flag(value: bool) -> str:
    return "true" if value else "false"


def explain_config(config: DayopsConfig, *, path: Path | None = None) -> str:
    location = str(path) if path is not None else CONFIG_FILENAME
    lines = [
        f"{CONFIG_FILENAME} guide ({location})",
        "",
        "[workspace]",
        f"- name: label shown by `dayops status` (current: {config.workspace.name})",
        "",
        "[storage]",
        f"- retry_attempts: tries per write before storage degrades (current: {config.storage.retry_attempts})",
        f"- retry_backoff_s: linear backoff step between tries, seconds (current: {config.storage.retry_backoff_s})",
        "",
        "[capture]",
        f"- relative_dates: infer scheduled date from today/tomorrow (current: {_flag(config.capture.relative_dates)})",
        f"- meeting_heuristic: infer meetings from meeting words (current: {_flag(config.capture.meeting_heuristic)})",
        f"- default_context: work|personal when no context token is given (current: {config.capture.default_context})",
        "",
        "[suggestions]",
        f"- could_limit: max parked tasks in the could bucket (current: {config.suggestions.could_limit})",
        f"- due_soon_days: window for the due-soon should rule (current: {config.suggestions.due_soon_days})",
        f"- stale_project_days: days without activity before a project is stale (current: {config.suggestions.stale_project_days})",
        f"- priority_threshold: highest priority number counted as urgent (current: {config.suggestions.priority_threshold})",
        "",
        "[logging]",
        f"- event_log: append store events to .dayops/logs/events.jsonl (current: {_flag(config.logging.event_log)})",
    ]
    return "\n".join(lines)
