"""Domain models for enrollment-center demand telemetry."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime
from enum import Enum
from typing import Any, Optional


class DataMode(str, Enum):
    LIVE = "live"
    SIMULATED = "simulated"


class ConnectionState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    RECONNECTING = "reconnecting"


class FeedStatus(str, Enum):
    ACTIVE = "active"
    CONNECTING = "connecting"
    RECONNECTING = "reconnecting"
    OPERATOR_PAUSED = "operator_paused"
    CONNECTION_LOST = "connection_lost"


class Severity(str, Enum):
    SUCCESS = "success"
    INFO = "info"
    WARNING = "warning"


SEVERITY_ICONS: dict[Severity, str] = {
    Severity.SUCCESS: "✓",
    Severity.INFO: "ℹ",
    Severity.WARNING: "⚠",
}


@dataclass(frozen=True)
class DemandPoint:
    """One calendar day of enrollment demand.

    The four sub-counts are scaled independently from ``demand`` and are not
    required to sum to it.
    """

    date: date
    demand: int
    demographic: int = 0
    biometric: int = 0
    mobile: int = 0
    address: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "date": self.date.isoformat(),
            "demand": self.demand,
            "demographic": self.demographic,
            "biometric": self.biometric,
            "mobile": self.mobile,
            "address": self.address,
        }


@dataclass(frozen=True)
class Prediction:
    date: date
    predicted: int
    confidence: float

    @property
    def is_weekend(self) -> bool:
        return self.date.weekday() >= 5

    def to_dict(self) -> dict[str, Any]:
        return {
            "date": self.date.isoformat(),
            "predicted": self.predicted,
            "confidence": self.confidence,
            "isWeekend": self.is_weekend,
        }


@dataclass(frozen=True)
class CenterSeed:
    id: int
    name: str
    capacity: int
    location: str
    staff: int


@dataclass(frozen=True)
class Center:
    id: int
    name: str
    capacity: int
    location: str
    staff: int
    current_load: int
    avg_wait_time: int
    queue_length: int
    active_counters: int
    satisfaction: int
    last_updated: datetime
    forecast_load: Optional[int] = None

    @property
    def utilization(self) -> float:
        return self.current_load / self.capacity if self.capacity else 0.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "capacity": self.capacity,
            "location": self.location,
            "staff": self.staff,
            "currentLoad": self.current_load,
            "avgWaitTime": self.avg_wait_time,
            "queueLength": self.queue_length,
            "activeCounters": self.active_counters,
            "satisfaction": self.satisfaction,
            "lastUpdated": self.last_updated.isoformat(),
            "forecastLoad": self.forecast_load,
        }


# Wire (camelCase) name -> Center field for streamed center patches.
CENTER_PATCH_FIELDS: dict[str, str] = {
    "name": "name",
    "location": "location",
    "currentLoad": "current_load",
    "avgWaitTime": "avg_wait_time",
    "queueLength": "queue_length",
    "activeCounters": "active_counters",
    "satisfaction": "satisfaction",
    "forecastLoad": "forecast_load",
    "prediction": "forecast_load",
}


@dataclass(frozen=True)
class TodayStats:
    total_demand: int
    avg_wait_time: int
    active_centers: int
    utilization: int

    def to_dict(self) -> dict[str, int]:
        return {
            "totalDemand": self.total_demand,
            "avgWaitTime": self.avg_wait_time,
            "activeCenters": self.active_centers,
            "utilization": self.utilization,
        }


STATS_PATCH_FIELDS: dict[str, str] = {
    "totalDemand": "total_demand",
    "avgWaitTime": "avg_wait_time",
    "activeCenters": "active_centers",
    "utilization": "utilization",
}


@dataclass(frozen=True)
class LiveUpdateEvent:
    id: int
    severity: Severity
    icon: str
    message: str
    timestamp: datetime

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "type": self.severity.value,
            "icon": self.icon,
            "message": self.message,
            "timestamp": self.timestamp.isoformat(),
        }


@dataclass(frozen=True)
class ThroughputSample:
    time_label: str
    requests: int
    completed: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "time": self.time_label,
            "requests": self.requests,
            "completed": self.completed,
        }


DEFAULT_CENTER_SEEDS: tuple[CenterSeed, ...] = (
    CenterSeed(id=1, name="Ranchi Central Hub", capacity=200, location="Ranchi", staff=8),
    CenterSeed(id=2, name="Jamshedpur Tech Center", capacity=180, location="Jamshedpur", staff=7),
    CenterSeed(id=3, name="Patna Main Office", capacity=220, location="Patna", staff=9),
    CenterSeed(id=4, name="Kolkata Metro Center", capacity=250, location="Kolkata", staff=10),
    CenterSeed(id=5, name="Bhubaneswar Smart Hub", capacity=190, location="Bhubaneswar", staff=8),
)

DEFAULT_TODAY_STATS = TodayStats(
    total_demand=847,
    avg_wait_time=23,
    active_centers=5,
    utilization=78,
)
