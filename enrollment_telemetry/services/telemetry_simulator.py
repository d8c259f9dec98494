"""Synthetic center telemetry used when no live source is available.

Every mutation here is a bounded random walk: add a small signed integer delta,
then clamp into the field's valid range. The simulator never produces a value
outside its documented bounds, whatever the number of ticks.
"""

from __future__ import annotations

import math
from dataclasses import replace
from datetime import date, datetime, timedelta, timezone
from typing import Iterable, Optional, Sequence

import numpy as np

from enrollment_telemetry.domain.constraints import (
    CenterBounds,
    StatsBounds,
    ThroughputBounds,
    validate_center_bounds,
    validate_stats_bounds,
    validate_throughput_bounds,
)
from enrollment_telemetry.domain.models import (
    SEVERITY_ICONS,
    Center,
    CenterSeed,
    DemandPoint,
    Severity,
    ThroughputSample,
    TodayStats,
)


THROUGHPUT_WINDOW_SIZE = 30

LIVE_UPDATE_CATALOG: tuple[tuple[Severity, str], ...] = (
    (Severity.SUCCESS, "Request completed at Ranchi Central Hub"),
    (Severity.INFO, "New appointment scheduled at Jamshedpur Tech Center"),
    (Severity.WARNING, "High load detected at Patna Main Office"),
    (Severity.SUCCESS, "Biometric update completed at Kolkata Metro Center"),
    (Severity.INFO, "Staff shift change at Bhubaneswar Smart Hub"),
)

# Share of daily demand attributed to each update type.
SUBCOUNT_SHARES = {
    "demographic": 0.4,
    "biometric": 0.3,
    "mobile": 0.2,
    "address": 0.1,
}


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _time_label(moment: datetime) -> str:
    return moment.strftime("%H:%M")


class CenterTelemetrySimulator:
    """Seeds and perturbs per-center metrics, stats and throughput samples."""

    def __init__(
        self,
        center_bounds: Optional[CenterBounds] = None,
        stats_bounds: Optional[StatsBounds] = None,
        throughput_bounds: Optional[ThroughputBounds] = None,
        rng: Optional[np.random.Generator] = None,
    ) -> None:
        self._center_bounds = center_bounds or CenterBounds()
        self._stats_bounds = stats_bounds or StatsBounds()
        self._throughput_bounds = throughput_bounds or ThroughputBounds()
        validate_center_bounds(self._center_bounds)
        validate_stats_bounds(self._stats_bounds)
        validate_throughput_bounds(self._throughput_bounds)
        self._rng = rng if rng is not None else np.random.default_rng()

    @property
    def stats_bounds(self) -> StatsBounds:
        return self._stats_bounds

    def _step(self, magnitude: int) -> int:
        # [-magnitude, magnitude - 1], the asymmetric walk the dashboard has always used
        return int(self._rng.integers(-magnitude, magnitude))

    def _uniform_int(self, low: float, high: float) -> int:
        return int(math.floor(low + self._rng.random() * (high - low)))

    def seed(
        self,
        base_centers: Iterable[CenterSeed],
        now: Optional[datetime] = None,
    ) -> list[Center]:
        timestamp = now or _utc_now()
        centers: list[Center] = []
        for base in base_centers:
            if base.capacity <= 0 or base.staff <= 0:
                raise ValueError(f"center {base.id} must have positive capacity and staff")
            centers.append(
                Center(
                    id=base.id,
                    name=base.name,
                    capacity=base.capacity,
                    location=base.location,
                    staff=base.staff,
                    current_load=self._uniform_int(0, base.capacity * 0.8),
                    avg_wait_time=self._uniform_int(10, 55),
                    queue_length=self._uniform_int(5, 55),
                    active_counters=int(math.floor(base.staff * 0.8)),
                    satisfaction=self._uniform_int(80, 100),
                    last_updated=timestamp,
                    forecast_load=int(math.floor(base.capacity * (0.6 + self._rng.random() * 0.3))),
                )
            )
        return centers

    def clamp_center(self, center: Center) -> Center:
        """Force every numeric field of ``center`` back into its valid range."""
        bounds = self._center_bounds
        load_floor = min(bounds.load_floor, center.capacity)
        return replace(
            center,
            current_load=max(load_floor, min(center.capacity, center.current_load)),
            avg_wait_time=bounds.wait_time.clamp(center.avg_wait_time),
            queue_length=max(bounds.queue_floor, center.queue_length),
            active_counters=max(0, min(center.staff, center.active_counters)),
            satisfaction=bounds.satisfaction.clamp(center.satisfaction),
            forecast_load=None if center.forecast_load is None else max(0, center.forecast_load),
        )

    def perturb(
        self,
        centers: Sequence[Center],
        now: Optional[datetime] = None,
    ) -> list[Center]:
        timestamp = now or _utc_now()
        bounds = self._center_bounds
        perturbed: list[Center] = []
        for center in centers:
            moved = replace(
                center,
                current_load=center.current_load + self._step(bounds.load_step),
                avg_wait_time=center.avg_wait_time + self._step(bounds.wait_step),
                queue_length=center.queue_length + self._step(bounds.queue_step),
                last_updated=timestamp,
            )
            perturbed.append(self.clamp_center(moved))
        return perturbed

    def clamp_stats(self, stats: TodayStats) -> TodayStats:
        bounds = self._stats_bounds
        return TodayStats(
            total_demand=bounds.total_demand.clamp(stats.total_demand),
            avg_wait_time=bounds.avg_wait_time.clamp(stats.avg_wait_time),
            active_centers=max(0, int(stats.active_centers)),
            utilization=bounds.utilization.clamp(stats.utilization),
        )

    def perturb_stats(self, stats: TodayStats) -> TodayStats:
        bounds = self._stats_bounds
        moved = TodayStats(
            total_demand=stats.total_demand + self._step(bounds.total_demand_step),
            avg_wait_time=stats.avg_wait_time + self._step(bounds.avg_wait_time_step),
            active_centers=bounds.active_centers,
            utilization=stats.utilization + self._step(bounds.utilization_step),
        )
        return self.clamp_stats(moved)

    def seed_throughput(self, now: Optional[datetime] = None) -> list[ThroughputSample]:
        timestamp = now or _utc_now()
        bounds = self._throughput_bounds
        samples: list[ThroughputSample] = []
        for minutes_back in range(THROUGHPUT_WINDOW_SIZE - 1, -1, -1):
            moment = timestamp - timedelta(minutes=minutes_back)
            samples.append(
                ThroughputSample(
                    time_label=_time_label(moment),
                    requests=int(self._rng.integers(bounds.requests.minimum, bounds.requests.maximum + 1)),
                    completed=int(self._rng.integers(bounds.completed.minimum, bounds.completed.maximum + 1)),
                )
            )
        return samples

    def next_throughput_sample(
        self,
        previous: Optional[ThroughputSample],
        now: Optional[datetime] = None,
    ) -> ThroughputSample:
        timestamp = now or _utc_now()
        bounds = self._throughput_bounds
        if previous is None:
            requests = bounds.requests.minimum
            completed = bounds.completed.minimum
        else:
            requests = previous.requests + int(self._rng.integers(-bounds.step, bounds.step + 1))
            completed = previous.completed + int(self._rng.integers(-bounds.step, bounds.step + 1))
        return ThroughputSample(
            time_label=_time_label(timestamp),
            requests=bounds.requests.clamp(requests),
            completed=bounds.completed.clamp(completed),
        )

    def generate_history(
        self,
        start: Optional[date] = None,
        days: int = 90,
    ) -> list[DemandPoint]:
        """Synthesize a daily series with a weekday/weekend pattern.

        Weekdays start at 150 and weekends at 50, both drifting up half a unit
        per day, with uniform noise in [-15, 15). Sub-counts are shares of the
        un-floored demand, so they need not sum to the floored total.
        """

        if days <= 0:
            raise ValueError("days must be > 0")
        first_day = start or (_utc_now().date() - timedelta(days=days))
        return [
            self.synthesize_day(first_day + timedelta(days=offset), offset)
            for offset in range(days)
        ]

    def synthesize_day(self, day: date, offset: int) -> DemandPoint:
        """Draw one day of demand ``offset`` days into the synthetic series."""
        base = 50.0 if day.weekday() >= 5 else 150.0
        base += offset * 0.5
        raw = int(math.floor(base + self._rng.random() * 30 - 15))
        return DemandPoint(
            date=day,
            demand=max(20, raw),
            **{
                name: max(0, int(math.floor(raw * share)))
                for name, share in SUBCOUNT_SHARES.items()
            },
        )

    def next_live_update(self) -> tuple[Severity, str, str]:
        severity, message = LIVE_UPDATE_CATALOG[int(self._rng.integers(0, len(LIVE_UPDATE_CATALOG)))]
        return severity, SEVERITY_ICONS[severity], message
