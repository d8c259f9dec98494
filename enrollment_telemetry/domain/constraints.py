"""Domain-level bounds for simulated and streamed telemetry values."""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class FieldBounds:
    minimum: int
    maximum: int

    def clamp(self, value: int) -> int:
        return max(self.minimum, min(self.maximum, int(value)))


@dataclass(frozen=True)
class CenterBounds:
    load_floor: int = 10
    wait_time: FieldBounds = FieldBounds(5, 60)
    queue_floor: int = 0
    satisfaction: FieldBounds = FieldBounds(0, 100)
    load_step: int = 5
    wait_step: int = 3
    queue_step: int = 3


@dataclass(frozen=True)
class StatsBounds:
    total_demand: FieldBounds = FieldBounds(700, 1000)
    avg_wait_time: FieldBounds = FieldBounds(15, 35)
    utilization: FieldBounds = FieldBounds(65, 90)
    active_centers: int = 5
    total_demand_step: int = 10
    avg_wait_time_step: int = 2
    utilization_step: int = 3


@dataclass(frozen=True)
class ThroughputBounds:
    requests: FieldBounds = FieldBounds(40, 69)
    completed: FieldBounds = FieldBounds(35, 59)
    step: int = 5


def _validate_field_bounds(name: str, bounds: FieldBounds) -> None:
    if bounds.minimum > bounds.maximum:
        raise ValueError(f"{name} minimum must be <= maximum")


def validate_center_bounds(bounds: CenterBounds) -> None:
    if bounds.load_floor < 0:
        raise ValueError("load_floor must be >= 0")
    if bounds.wait_time.minimum < 0:
        raise ValueError("wait_time minimum must be >= 0")
    _validate_field_bounds("wait_time", bounds.wait_time)
    _validate_field_bounds("satisfaction", bounds.satisfaction)
    if bounds.queue_floor < 0:
        raise ValueError("queue_floor must be >= 0")
    if min(bounds.load_step, bounds.wait_step, bounds.queue_step) <= 0:
        raise ValueError("random walk steps must be > 0")


def validate_stats_bounds(bounds: StatsBounds) -> None:
    _validate_field_bounds("total_demand", bounds.total_demand)
    _validate_field_bounds("avg_wait_time", bounds.avg_wait_time)
    _validate_field_bounds("utilization", bounds.utilization)
    if not 0 <= bounds.utilization.minimum <= bounds.utilization.maximum <= 100:
        raise ValueError("utilization bounds must lie within 0..100")
    if bounds.active_centers < 0:
        raise ValueError("active_centers must be >= 0")
    if min(bounds.total_demand_step, bounds.avg_wait_time_step, bounds.utilization_step) <= 0:
        raise ValueError("random walk steps must be > 0")


def validate_throughput_bounds(bounds: ThroughputBounds) -> None:
    _validate_field_bounds("requests", bounds.requests)
    _validate_field_bounds("completed", bounds.completed)
    if bounds.requests.minimum < 0 or bounds.completed.minimum < 0:
        raise ValueError("throughput minimums must be >= 0")
    if bounds.step <= 0:
        raise ValueError("step must be > 0")
