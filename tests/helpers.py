from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any

from dayops.config import DayopsConfig, StorageConfig
from dayops.gateway import MemoryGateway, PermanentStorageError, TransientStorageError
from dayops.store import Store


DEVICE_ID = "dev_test_0000abcd"


class FixedClock:
    """Callable clock pinned to a moment; `advance` moves it forward."""

    def __init__(self, moment: datetime) -> None:
        self.moment = moment

    def __call__(self) -> datetime:
        return self.moment

    def advance(self, **delta: float) -> None:
        self.moment = self.moment + timedelta(**delta)

    def set_date(self, year: int, month: int, day: int) -> None:
        self.moment = self.moment.replace(year=year, month=month, day=day)


def clock_at(iso_date: str, hour: int = 9) -> FixedClock:
    year, month, day = (int(part) for part in iso_date.split("-"))
    return FixedClock(datetime(year, month, day, hour, 0, tzinfo=timezone.utc))


class FlakyGateway(MemoryGateway):
    """Memory gateway whose next writes can be scripted to fail."""

    def __init__(self, *, available: bool = True) -> None:
        super().__init__(available=available)
        self.put_script: list[str] = []
        self.get_script: list[str] = []
        self.put_attempts = 0

    @staticmethod
    def _raise(step: str) -> bool | None:
        if step == "transient":
            raise TransientStorageError("backend busy")
        if step == "permanent":
            raise PermanentStorageError("quota exceeded")
        if step == "false":
            return False
        return None

    async def get(self, key: str) -> dict[str, Any] | None:
        if self.get_script:
            self._raise(self.get_script.pop(0))
        return await super().get(key)

    async def put(self, record: dict[str, Any]) -> bool:
        self.put_attempts += 1
        if self.put_script:
            outcome = self._raise(self.put_script.pop(0))
            if outcome is False:
                return False
        return await super().put(record)


def fast_config() -> DayopsConfig:
    return DayopsConfig(storage=StorageConfig(retry_attempts=3, retry_backoff_s=0.0))


def make_store(
    gateway: MemoryGateway | None = None,
    *,
    clock: FixedClock | None = None,
    config: DayopsConfig | None = None,
) -> Store:
    return Store(
        gateway if gateway is not None else FlakyGateway(),
        device_id=DEVICE_ID,
        config=config or fast_config(),
        clock=clock or clock_at("2026-02-17"),
    )


def stamped(value: Any, updated_at: str, device_id: str = "dev_other_11112222") -> dict[str, Any]:
    return {"value": value, "updatedAt": updated_at, "updatedByDeviceId": device_id}
