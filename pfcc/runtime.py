from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from threading import Lock


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class MetricsSnapshot:
    sync_count: int
    error_count: int
    container_syncs: int
    last_sync: datetime | None


class RuntimeState:
    """In-memory counters read by the operational endpoints.

    Created with the controller, never reset while the process lives.
    """

    def __init__(self) -> None:
        self.lock = Lock()
        self._sync_count = 0  # completed full sync cycles
        self._error_count = 0
        self._container_syncs = 0  # successful per-container syncs
        self._last_sync: datetime | None = None

    def record_sync(self, started_at: datetime | None = None) -> None:
        with self.lock:
            self._sync_count += 1
            self._last_sync = started_at or utc_now()

    def record_container_sync(self) -> None:
        with self.lock:
            self._container_syncs += 1

    def record_error(self) -> None:
        with self.lock:
            self._error_count += 1

    def snapshot(self) -> MetricsSnapshot:
        with self.lock:
            return MetricsSnapshot(
                sync_count=self._sync_count,
                error_count=self._error_count,
                container_syncs=self._container_syncs,
                last_sync=self._last_sync,
            )
