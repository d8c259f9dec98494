"""Owned dashboard state consumed by the rendering layer."""

from __future__ import annotations

from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Iterable, Optional

from enrollment_telemetry.domain.models import (
    DEFAULT_TODAY_STATS,
    SEVERITY_ICONS,
    Center,
    DataMode,
    FeedStatus,
    LiveUpdateEvent,
    Severity,
    ThroughputSample,
    TodayStats,
)
from enrollment_telemetry.domain.time_series import TimeSeriesStore


class LiveUpdateLog:
    """Newest-first display log that silently drops entries past its bound."""

    def __init__(self, max_size: int = 10) -> None:
        if max_size <= 0:
            raise ValueError("max_size must be > 0")
        self._events: deque[LiveUpdateEvent] = deque(maxlen=max_size)
        self._last_id = 0

    @property
    def max_size(self) -> int:
        return self._events.maxlen or 0

    def __len__(self) -> int:
        return len(self._events)

    def __iter__(self):
        return iter(self._events)

    def _next_id(self, timestamp: datetime) -> int:
        candidate = int(timestamp.timestamp() * 1000)
        self._last_id = max(candidate, self._last_id + 1)
        return self._last_id

    def record(
        self,
        severity: Severity,
        message: str,
        *,
        icon: Optional[str] = None,
        timestamp: Optional[datetime] = None,
    ) -> LiveUpdateEvent:
        moment = timestamp or datetime.now(timezone.utc)
        event = LiveUpdateEvent(
            id=self._next_id(moment),
            severity=severity,
            icon=icon or SEVERITY_ICONS[severity],
            message=message,
            timestamp=moment,
        )
        self._events.appendleft(event)
        return event

    def replace(self, events: Iterable[LiveUpdateEvent]) -> None:
        """Load a snapshot of events, keeping the newest ``max_size`` by id."""
        ordered = sorted(events, key=lambda event: event.id, reverse=True)
        self._events.clear()
        self._events.extend(ordered[: self.max_size])
        if ordered:
            self._last_id = max(self._last_id, ordered[0].id)

    def snapshot(self) -> list[LiveUpdateEvent]:
        return list(self._events)


@dataclass
class DashboardState:
    """Single in-memory structure all data sources write into.

    Only the arbitrator mutates it; readers take ``to_dict()`` views.
    """

    series: TimeSeriesStore = field(default_factory=TimeSeriesStore)
    centers: list[Center] = field(default_factory=list)
    today_stats: TodayStats = DEFAULT_TODAY_STATS
    live_updates: LiveUpdateLog = field(default_factory=LiveUpdateLog)
    throughput: deque[ThroughputSample] = field(default_factory=lambda: deque(maxlen=30))
    mode: DataMode = DataMode.SIMULATED
    is_live_connected: bool = False
    feed_status: FeedStatus = FeedStatus.OPERATOR_PAUSED
    notice: Optional[str] = None

    @property
    def has_snapshot(self) -> bool:
        return bool(self.centers) and len(self.series) > 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "historical": [point.to_dict() for point in self.series.history],
            "predictions": [prediction.to_dict() for prediction in self.series.predictions],
            "centers": [center.to_dict() for center in self.centers],
            "todayStats": self.today_stats.to_dict(),
            "liveUpdates": [event.to_dict() for event in self.live_updates],
            "throughput": [sample.to_dict() for sample in self.throughput],
            "status": self.status_dict(),
        }

    def status_dict(self) -> dict[str, Any]:
        return {
            "mode": self.mode.value,
            "isLiveConnected": self.is_live_connected,
            "feedStatus": self.feed_status.value,
            "notice": self.notice,
        }
