"""Repository layer for REST snapshot reads from the enrollment API."""

from __future__ import annotations

from datetime import date, datetime, timezone
from typing import Any, Optional

import httpx

from enrollment_telemetry.domain.models import (
    SEVERITY_ICONS,
    Center,
    DemandPoint,
    LiveUpdateEvent,
    Prediction,
    Severity,
    TodayStats,
)
from enrollment_telemetry.utils.config import Settings, get_settings
from enrollment_telemetry.utils.logger import get_logger


logger = get_logger(__name__)

CENTERS_ENDPOINT = "/centers"
HISTORICAL_ENDPOINT = "/demand/historical"
PREDICTIONS_ENDPOINT = "/demand/predictions"
STATS_ENDPOINT = "/stats/today"
LIVE_UPDATES_ENDPOINT = "/updates/live"


class SnapshotError(Exception):
    """Base exception for snapshot read failures."""


class SnapshotFetchError(SnapshotError):
    """Raised when a snapshot endpoint cannot be reached or decoded."""


class SnapshotValidationError(SnapshotError):
    """Raised when a snapshot record is missing or has malformed fields."""


def unwrap_envelope(payload: Any, key: str) -> Any:
    """Accept either ``{key: value}`` envelopes or the bare value."""
    if isinstance(payload, dict) and key in payload:
        return payload[key]
    return payload


def _require(record: dict[str, Any], key: str) -> Any:
    if key not in record or record[key] is None:
        raise SnapshotValidationError(f"snapshot record missing '{key}'")
    return record[key]


def _as_int(record: dict[str, Any], key: str, default: Optional[int] = None) -> int:
    value = record.get(key, default)
    if value is None:
        raise SnapshotValidationError(f"snapshot record missing '{key}'")
    return _to_int(value, key)


def _to_int(value: Any, key: str) -> int:
    try:
        return int(value)
    except (TypeError, ValueError, OverflowError) as exc:
        raise SnapshotValidationError(f"snapshot field '{key}' must be numeric") from exc


def _as_date(value: Any) -> date:
    try:
        return date.fromisoformat(str(value)[:10])
    except ValueError as exc:
        raise SnapshotValidationError(f"invalid snapshot date '{value}'") from exc


def _as_datetime(value: Any) -> datetime:
    if value is None:
        return datetime.now(timezone.utc)
    try:
        return datetime.fromisoformat(str(value))
    except ValueError:
        # Display-only clock strings such as "10:42:07 AM" carry no date.
        return datetime.now(timezone.utc)


def _as_list(payload: Any, label: str) -> list[dict[str, Any]]:
    if not isinstance(payload, list) or not all(isinstance(item, dict) for item in payload):
        raise SnapshotValidationError(f"{label} snapshot must be a list of objects")
    return payload


def parse_centers(payload: Any) -> list[Center]:
    centers: list[Center] = []
    for record in _as_list(unwrap_envelope(payload, "centers"), "centers"):
        capacity = _as_int(record, "capacity")
        staff = _as_int(record, "staff")
        if capacity <= 0 or staff <= 0:
            raise SnapshotValidationError("center capacity and staff must be positive")
        forecast_load = record.get("forecastLoad", record.get("prediction"))
        if forecast_load is not None:
            forecast_load = max(0, _to_int(forecast_load, "forecastLoad"))
        centers.append(
            Center(
                id=_as_int(record, "id"),
                name=str(_require(record, "name")),
                capacity=capacity,
                location=str(record.get("location", "")),
                staff=staff,
                current_load=max(0, min(capacity, _as_int(record, "currentLoad", 0))),
                avg_wait_time=max(0, _as_int(record, "avgWaitTime", 0)),
                queue_length=max(0, _as_int(record, "queueLength", 0)),
                active_counters=max(0, min(staff, _as_int(record, "activeCounters", staff))),
                satisfaction=_as_int(record, "satisfaction", 0),
                last_updated=_as_datetime(record.get("lastUpdated")),
                forecast_load=forecast_load,
            )
        )
    if len({center.id for center in centers}) != len(centers):
        raise SnapshotValidationError("center ids must be unique")
    return centers


def parse_history(payload: Any) -> list[DemandPoint]:
    return [
        DemandPoint(
            date=_as_date(_require(record, "date")),
            demand=_as_int(record, "demand"),
            demographic=_as_int(record, "demographic", 0),
            biometric=_as_int(record, "biometric", 0),
            mobile=_as_int(record, "mobile", 0),
            address=_as_int(record, "address", 0),
        )
        for record in _as_list(unwrap_envelope(payload, "data"), "historical demand")
    ]


def parse_predictions(payload: Any) -> list[Prediction]:
    predictions: list[Prediction] = []
    for record in _as_list(unwrap_envelope(payload, "predictions"), "predictions"):
        try:
            confidence = float(record.get("confidence", 85.0))
        except (TypeError, ValueError, OverflowError) as exc:
            raise SnapshotValidationError("prediction confidence must be numeric") from exc
        predictions.append(
            Prediction(
                date=_as_date(_require(record, "date")),
                predicted=max(0, _as_int(record, "predicted")),
                confidence=confidence,
            )
        )
    return sorted(predictions, key=lambda prediction: prediction.date)


def parse_today_stats(payload: Any) -> TodayStats:
    record = unwrap_envelope(payload, "stats")
    if not isinstance(record, dict):
        raise SnapshotValidationError("stats snapshot must be an object")
    return TodayStats(
        total_demand=_as_int(record, "totalDemand"),
        avg_wait_time=_as_int(record, "avgWaitTime"),
        active_centers=_as_int(record, "activeCenters"),
        utilization=_as_int(record, "utilization"),
    )


def parse_live_updates(payload: Any) -> list[LiveUpdateEvent]:
    events: list[LiveUpdateEvent] = []
    for record in _as_list(unwrap_envelope(payload, "updates"), "live updates"):
        try:
            severity = Severity(str(record.get("type", "info")))
        except ValueError:
            severity = Severity.INFO
        events.append(
            LiveUpdateEvent(
                id=_as_int(record, "id"),
                severity=severity,
                icon=str(record.get("icon") or SEVERITY_ICONS[severity]),
                message=str(_require(record, "message")),
                timestamp=_as_datetime(record.get("timestamp")),
            )
        )
    return events


class SnapshotRepository:
    """Reads point-in-time snapshots from the enrollment REST API.

    Every call sends the API key both as a bearer token and as ``x-api-key``.
    Transport and HTTP status failures surface as ``SnapshotFetchError`` so the
    arbitrator can fall back without knowing about httpx.
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._client = client
        self._owns_client = client is None

    def _headers(self) -> dict[str, str]:
        api_key = self._settings.api_key or ""
        return {
            "Content-Type": "application/json",
            "Authorization": f"Bearer {api_key}",
            "x-api-key": api_key,
        }

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self._settings.api_base_url,
                timeout=self._settings.http_timeout_seconds,
                follow_redirects=True,
            )
        return self._client

    async def _get_json(self, endpoint: str, params: Optional[dict[str, Any]] = None) -> Any:
        client = self._get_client()
        try:
            response = await client.get(endpoint, params=params, headers=self._headers())
            response.raise_for_status()
            return response.json()
        except httpx.HTTPStatusError as exc:
            logger.warning(
                "Snapshot request rejected | endpoint=%s | status=%s",
                endpoint,
                exc.response.status_code,
            )
            raise SnapshotFetchError(
                f"API Error: {exc.response.status_code} - {exc.response.reason_phrase}"
            ) from exc
        except httpx.HTTPError as exc:
            logger.warning("Snapshot request failed | endpoint=%s | error=%s", endpoint, exc)
            raise SnapshotFetchError(f"request to {endpoint} failed: {exc}") from exc
        except ValueError as exc:
            raise SnapshotFetchError(f"response from {endpoint} is not JSON") from exc

    async def fetch_centers(self) -> list[Center]:
        return parse_centers(await self._get_json(CENTERS_ENDPOINT))

    async def fetch_historical_demand(self, days: int = 90) -> list[DemandPoint]:
        return parse_history(await self._get_json(HISTORICAL_ENDPOINT, {"days": days}))

    async def fetch_predictions(self, days: int = 7) -> list[Prediction]:
        return parse_predictions(await self._get_json(PREDICTIONS_ENDPOINT, {"days": days}))

    async def fetch_today_stats(self) -> TodayStats:
        return parse_today_stats(await self._get_json(STATS_ENDPOINT))

    async def fetch_live_updates(self, limit: int = 10) -> list[LiveUpdateEvent]:
        return parse_live_updates(await self._get_json(LIVE_UPDATES_ENDPOINT, {"limit": limit}))

    async def aclose(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None
