from __future__ import annotations

import asyncio
import json
from dataclasses import replace
from datetime import date, datetime, timedelta, timezone

import pytest

from enrollment_telemetry.domain.models import (
    Center,
    DataMode,
    DemandPoint,
    FeedStatus,
    LiveUpdateEvent,
    Prediction,
    Severity,
    TodayStats,
)
from enrollment_telemetry.repository.snapshot_repository import SnapshotFetchError
from enrollment_telemetry.services.arbitrator import (
    LIVE_FALLBACK_NOTICE,
    MISSING_CREDENTIALS_NOTICE,
    RECONNECT_EXHAUSTED_NOTICE,
    DataSourceArbitrator,
    InvalidModeError,
    LiveSource,
)
from enrollment_telemetry.services.connection_manager import ConnectionManager
from enrollment_telemetry.utils.config import get_settings


NOW = datetime(2025, 4, 1, 12, 0, tzinfo=timezone.utc)


def _build_test_settings(api_key: str | None = "test-key"):
    get_settings.cache_clear()
    return replace(
        get_settings(),
        data_mode="simulated",
        api_key=api_key,
        admin_token=None,
        simulation_tick_seconds=3.0,
        simulation_random_seed=42,
        forecast_horizon_days=7,
        history_days=90,
    )


class FakeSnapshotRepository:
    def __init__(self, fail: bool = False) -> None:
        self.fail = fail
        self.closed = False

    def _guard(self) -> None:
        if self.fail:
            raise SnapshotFetchError("API Error: 503 - Service Unavailable")

    async def fetch_centers(self):
        self._guard()
        return [
            Center(
                id=center_id,
                name=f"Live Center {center_id}",
                capacity=150,
                location="Ranchi",
                staff=6,
                current_load=90,
                avg_wait_time=20,
                queue_length=12,
                active_counters=5,
                satisfaction=88,
                last_updated=NOW,
                forecast_load=110,
            )
            for center_id in (1, 2, 3)
        ]

    async def fetch_historical_demand(self, days: int = 90):
        self._guard()
        start = NOW.date() - timedelta(days=days)
        return [DemandPoint(date=start + timedelta(days=offset), demand=300) for offset in range(days)]

    async def fetch_predictions(self, days: int = 7):
        self._guard()
        return [
            Prediction(date=NOW.date() + timedelta(days=offset), predicted=310, confidence=90.0)
            for offset in range(days)
        ]

    async def fetch_today_stats(self):
        self._guard()
        return TodayStats(total_demand=900, avg_wait_time=20, active_centers=3, utilization=70)

    async def fetch_live_updates(self, limit: int = 10):
        self._guard()
        return [
            LiveUpdateEvent(id=2, severity=Severity.SUCCESS, icon="✓", message="Synced", timestamp=NOW),
            LiveUpdateEvent(id=1, severity=Severity.INFO, icon="ℹ", message="Started", timestamp=NOW),
        ]

    async def aclose(self) -> None:
        self.closed = True


class FakeTransport:
    def __init__(self, frames=()) -> None:
        self.sent: list[dict] = []
        self.closed = False
        self._queue: asyncio.Queue = asyncio.Queue()
        for frame in frames:
            self._queue.put_nowait(frame)

    async def send(self, message: str) -> None:
        self.sent.append(json.loads(message))

    async def close(self) -> None:
        self.closed = True
        self._queue.put_nowait(None)

    def __aiter__(self):
        return self

    async def __anext__(self):
        frame = await self._queue.get()
        if frame is None:
            raise StopAsyncIteration
        return frame


class LiveHarness:
    def __init__(self, transports=(), *, fail: bool = False, block_sleep: bool = False) -> None:
        self.transports = list(transports)
        self.fail = fail
        self.block_sleep = block_sleep
        self.sleeps: list[float] = []

    async def _open(self, url: str):
        if self.fail or not self.transports:
            raise OSError("connection refused")
        return self.transports.pop(0)

    async def _sleep(self, delay: float) -> None:
        self.sleeps.append(delay)
        if self.block_sleep:
            await asyncio.Event().wait()
        await asyncio.sleep(0)

    def factory(self, on_message, on_status_change, on_exhausted, on_state_change) -> ConnectionManager:
        return ConnectionManager(
            "wss://stream.test/ws",
            "test-key",
            on_message,
            on_status_change,
            on_exhausted=on_exhausted,
            on_state_change=on_state_change,
            transport_factory=self._open,
            sleep=self._sleep,
        )


class Clock:
    def __init__(self, start: datetime = NOW) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now


async def _idle_tick_sleep(delay: float) -> None:
    await asyncio.Event().wait()


async def _settle(rounds: int = 200) -> None:
    for _ in range(rounds):
        await asyncio.sleep(0)


def _build_arbitrator(
    *,
    api_key: str | None = "test-key",
    repository: FakeSnapshotRepository | None = None,
    harness: LiveHarness | None = None,
    clock: Clock | None = None,
) -> DataSourceArbitrator:
    return DataSourceArbitrator(
        _build_test_settings(api_key),
        repository=repository or FakeSnapshotRepository(),
        connection_factory=(harness or LiveHarness()).factory,
        tick_sleep=_idle_tick_sleep,
        clock=clock or Clock(),
    )


def test_initialize_simulated_seeds_complete_snapshot():
    async def scenario():
        arbitrator = _build_arbitrator()
        await arbitrator.initialize()

        state = arbitrator.state
        assert state.mode is DataMode.SIMULATED
        assert state.is_live_connected is True
        assert state.feed_status is FeedStatus.ACTIVE
        assert [center.id for center in state.centers] == [1, 2, 3, 4, 5]
        assert len(state.series) == 90
        assert state.series.last_date == date(2025, 3, 31)
        assert [prediction.date for prediction in state.series.predictions] == [
            date(2025, 4, 1) + timedelta(days=offset) for offset in range(7)
        ]
        assert len(state.throughput) == 30
        assert state.notice is None
        await arbitrator.shutdown()

    asyncio.run(scenario())


def test_ticks_stay_within_bounds_and_log_is_capped():
    async def scenario():
        clock = Clock()
        arbitrator = _build_arbitrator(clock=clock)
        await arbitrator.initialize()

        for step in range(40):
            clock.now = NOW + timedelta(seconds=3 * (step + 1))
            arbitrator.tick()

        state = arbitrator.state
        assert len(state.live_updates) == 10
        assert len(state.throughput) == 30
        ids = [event.id for event in state.live_updates]
        assert ids == sorted(ids, reverse=True)
        assert len(set(ids)) == len(ids)
        for center in state.centers:
            assert 0 <= center.current_load <= center.capacity
            assert 5 <= center.avg_wait_time <= 60
            assert center.queue_length >= 0
        assert 700 <= state.today_stats.total_demand <= 1000
        assert 15 <= state.today_stats.avg_wait_time <= 35
        assert 65 <= state.today_stats.utilization <= 90
        await arbitrator.shutdown()

    asyncio.run(scenario())


def test_toggle_pauses_and_resumes_simulated_feed():
    async def scenario():
        arbitrator = _build_arbitrator()
        await arbitrator.initialize()

        assert await arbitrator.toggle_feed() is False
        assert arbitrator.state.feed_status is FeedStatus.OPERATOR_PAUSED
        assert not arbitrator.source.is_running

        assert await arbitrator.toggle_feed() is True
        assert arbitrator.state.feed_status is FeedStatus.ACTIVE
        assert arbitrator.source.is_running
        await arbitrator.shutdown()

    asyncio.run(scenario())


def test_failed_live_switch_keeps_last_known_good_state():
    async def scenario():
        arbitrator = _build_arbitrator(repository=FakeSnapshotRepository(fail=True))
        await arbitrator.initialize()
        centers_before = list(arbitrator.state.centers)
        stats_before = arbitrator.state.today_stats

        await arbitrator.set_mode("live")

        state = arbitrator.state
        assert state.mode is DataMode.SIMULATED
        assert state.notice == LIVE_FALLBACK_NOTICE
        assert state.centers == centers_before
        assert state.today_stats == stats_before
        assert state.feed_status is FeedStatus.ACTIVE
        await arbitrator.shutdown()

    asyncio.run(scenario())


def test_failed_live_start_seeds_simulation_when_empty():
    async def scenario():
        arbitrator = _build_arbitrator(repository=FakeSnapshotRepository(fail=True))
        await arbitrator.initialize("live")

        state = arbitrator.state
        assert state.mode is DataMode.SIMULATED
        assert state.notice == LIVE_FALLBACK_NOTICE
        assert len(state.centers) == 5
        assert len(state.series) == 90
        await arbitrator.shutdown()

    asyncio.run(scenario())


def test_live_mode_without_api_key_falls_back_with_notice():
    async def scenario():
        arbitrator = _build_arbitrator(api_key=None)
        await arbitrator.initialize("live")

        assert arbitrator.state.mode is DataMode.SIMULATED
        assert arbitrator.state.notice == MISSING_CREDENTIALS_NOTICE
        await arbitrator.shutdown()

    asyncio.run(scenario())


def test_live_mode_applies_snapshot_and_streamed_deltas():
    async def scenario():
        transport = FakeTransport(
            [
                json.dumps(
                    {
                        "type": "center_update",
                        "payload": {"centerId": 1, "data": {"currentLoad": 2, "avgWaitTime": 500}},
                    }
                ),
                json.dumps({"type": "center_update", "payload": {"centerId": 99, "data": {"queueLength": 1}}}),
                json.dumps({"type": "demand_update", "payload": {"totalDemand": 5000, "utilization": 72}}),
                json.dumps({"type": "alert", "payload": {"severity": "warning", "message": "Queue spike"}}),
            ]
        )
        arbitrator = _build_arbitrator(harness=LiveHarness([transport]))
        await arbitrator.initialize("live")
        await _settle()

        state = arbitrator.state
        assert state.mode is DataMode.LIVE
        assert state.is_live_connected is True
        assert state.feed_status is FeedStatus.ACTIVE
        assert transport.sent[0]["type"] == "subscribe"
        assert [center.id for center in state.centers] == [1, 2, 3]

        patched = state.centers[0]
        assert patched.current_load == 10
        assert patched.avg_wait_time == 60
        assert patched.queue_length == 12
        assert state.today_stats.total_demand == 1000
        assert state.today_stats.utilization == 72

        messages = [event.message for event in state.live_updates]
        assert messages == ["Queue spike", "Synced", "Started"]
        assert state.live_updates.snapshot()[0].severity is Severity.WARNING
        assert len(state.series) == 90
        assert len(state.series.predictions) == 7
        await arbitrator.shutdown()

    asyncio.run(scenario())


def test_switching_back_to_simulated_closes_live_transport():
    async def scenario():
        transport = FakeTransport()
        arbitrator = _build_arbitrator(harness=LiveHarness([transport]))
        await arbitrator.initialize("live")
        await _settle()
        assert isinstance(arbitrator.source, LiveSource)

        await arbitrator.set_mode(DataMode.SIMULATED)

        assert transport.closed
        assert arbitrator.state.mode is DataMode.SIMULATED
        assert [center.id for center in arbitrator.state.centers] == [1, 2, 3, 4, 5]
        assert arbitrator.state.feed_status is FeedStatus.ACTIVE
        await arbitrator.shutdown()

    asyncio.run(scenario())


def test_reconnect_exhaustion_pauses_feed_until_operator_resumes():
    async def scenario():
        harness = LiveHarness(fail=True)
        arbitrator = _build_arbitrator(harness=harness)
        await arbitrator.initialize("live")
        await _settle()

        state = arbitrator.state
        assert harness.sleeps == [3.0, 6.0, 9.0, 12.0, 15.0]
        assert state.mode is DataMode.LIVE
        assert state.feed_status is FeedStatus.CONNECTION_LOST
        assert state.notice == RECONNECT_EXHAUSTED_NOTICE
        assert state.is_live_connected is False

        harness.fail = False
        harness.transports.append(FakeTransport())
        await arbitrator.toggle_feed()
        await _settle()

        assert state.feed_status is FeedStatus.ACTIVE
        assert state.is_live_connected is True
        assert state.notice is None
        await arbitrator.shutdown()

    asyncio.run(scenario())


def test_simulated_history_rolls_forward_with_calendar():
    async def scenario():
        clock = Clock()
        arbitrator = _build_arbitrator(clock=clock)
        await arbitrator.initialize()

        clock.now = NOW + timedelta(days=3)
        arbitrator.tick()

        series = arbitrator.state.series
        assert len(series) == 93
        assert series.last_date == date(2025, 4, 3)
        assert series.predictions[0].date == date(2025, 4, 4)
        assert len(series.predictions) == 7
        await arbitrator.shutdown()

    asyncio.run(scenario())


def test_unknown_mode_is_rejected():
    async def scenario():
        arbitrator = _build_arbitrator()
        with pytest.raises(InvalidModeError):
            await arbitrator.set_mode("replay")

    asyncio.run(scenario())


def test_shutdown_stops_source_and_closes_repository():
    async def scenario():
        repository = FakeSnapshotRepository()
        arbitrator = _build_arbitrator(repository=repository)
        await arbitrator.initialize()

        await arbitrator.shutdown()

        assert arbitrator.source is None
        assert arbitrator.state.is_live_connected is False
        assert repository.closed

    asyncio.run(scenario())


def test_overflowing_stream_values_are_dropped_and_feed_keeps_flowing():
    async def scenario():
        transport = FakeTransport(
            [
                '{"type": "demand_update", "payload": {"totalDemand": Infinity, "utilization": 80}}',
                '{"type": "center_update", "payload": {"centerId": 2, "data": {"queueLength": -Infinity}}}',
                json.dumps({"type": "alert", "payload": {"severity": "info", "message": "Still streaming"}}),
            ]
        )
        arbitrator = _build_arbitrator(harness=LiveHarness([transport]))
        await arbitrator.initialize("live")
        await _settle()

        state = arbitrator.state
        assert state.is_live_connected is True
        assert state.today_stats.total_demand == 900
        assert state.today_stats.utilization == 80
        assert state.centers[1].queue_length == 12
        assert state.live_updates.snapshot()[0].message == "Still streaming"
        assert not transport.closed
        await arbitrator.shutdown()

    asyncio.run(scenario())


def test_failed_first_connect_reports_reconnecting():
    async def scenario():
        harness = LiveHarness(fail=True, block_sleep=True)
        arbitrator = _build_arbitrator(harness=harness)
        await arbitrator.initialize("live")
        await _settle()

        assert harness.sleeps == [3.0]
        assert arbitrator.state.mode is DataMode.LIVE
        assert arbitrator.state.feed_status is FeedStatus.RECONNECTING
        assert arbitrator.state.is_live_connected is False
        await arbitrator.shutdown()

    asyncio.run(scenario())


def test_streamed_center_patch_is_clamped_to_valid_ranges():
    async def scenario():
        transport = FakeTransport(
            [
                json.dumps(
                    {
                        "type": "center_update",
                        "payload": {"centerId": 3, "data": {"satisfaction": 500, "forecastLoad": -40}},
                    }
                ),
            ]
        )
        arbitrator = _build_arbitrator(harness=LiveHarness([transport]))
        await arbitrator.initialize("live")
        await _settle()

        center = arbitrator.state.centers[2]
        assert center.satisfaction == 100
        assert center.forecast_load == 0
        await arbitrator.shutdown()

    asyncio.run(scenario())
