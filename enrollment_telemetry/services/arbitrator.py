"""Top-level control loop choosing between the live feed and the simulator.

Exactly one data source drives ``DashboardState`` at a time. Switching mode
stops the active source before the next one starts, and every failure on the
live path falls back to simulation while keeping the last-known-good state.
"""

from __future__ import annotations

import asyncio
from collections import deque
from dataclasses import replace
from datetime import datetime, timedelta, timezone
from typing import Any, Awaitable, Callable, Optional, Protocol

import numpy as np

from enrollment_telemetry.domain.messages import Alert, CenterUpdate, DemandUpdate, InboundMessage
from enrollment_telemetry.domain.models import (
    CENTER_PATCH_FIELDS,
    DEFAULT_CENTER_SEEDS,
    DEFAULT_TODAY_STATS,
    STATS_PATCH_FIELDS,
    ConnectionState,
    DataMode,
    FeedStatus,
    Severity,
)
from enrollment_telemetry.domain.state import DashboardState, LiveUpdateLog
from enrollment_telemetry.domain.time_series import SeriesValidationError, TimeSeriesStore
from enrollment_telemetry.repository.snapshot_repository import SnapshotError, SnapshotRepository
from enrollment_telemetry.services.connection_manager import ConnectionManager
from enrollment_telemetry.services.forecast_service import DemandForecaster, ForecastError
from enrollment_telemetry.services.telemetry_simulator import CenterTelemetrySimulator
from enrollment_telemetry.utils.config import Settings, get_settings
from enrollment_telemetry.utils.logger import get_logger


logger = get_logger(__name__)

LIVE_FALLBACK_NOTICE = "Failed to load live data. Using simulated data."
MISSING_CREDENTIALS_NOTICE = "Live API credentials are not configured. Using simulated data."
RECONNECT_EXHAUSTED_NOTICE = "Live feed paused after 5 failed reconnect attempts."

_TEXT_CENTER_FIELDS = {"name", "location"}
_RUNNING_FEED_STATUSES = {FeedStatus.ACTIVE, FeedStatus.CONNECTING, FeedStatus.RECONNECTING}


class ArbitratorError(Exception):
    """Base exception for arbitrator control failures."""


class InvalidModeError(ArbitratorError):
    """Raised when an unknown data mode is requested."""


class DataSource(Protocol):
    @property
    def is_running(self) -> bool: ...

    async def start(self) -> None: ...

    async def stop(self) -> None: ...


class SimulatedSource:
    """Periodic tick driver for simulated mode."""

    def __init__(
        self,
        tick: Callable[[], None],
        interval_seconds: float,
        sleep: Optional[Callable[[float], Awaitable[Any]]] = None,
    ) -> None:
        self._tick = tick
        self._interval_seconds = interval_seconds
        self._sleep = sleep or asyncio.sleep
        self._task: Optional[asyncio.Task] = None

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def start(self) -> None:
        if self.is_running:
            return
        self._task = asyncio.create_task(self._run())

    async def _run(self) -> None:
        while True:
            await self._sleep(self._interval_seconds)
            self._tick()

    async def stop(self) -> None:
        task = self._task
        self._task = None
        if task is None or task.done():
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass


class LiveSource:
    """Streaming driver for live mode, backed by a ConnectionManager."""

    def __init__(self, manager: ConnectionManager) -> None:
        self._manager = manager
        self._running = False

    @property
    def manager(self) -> ConnectionManager:
        return self._manager

    @property
    def is_running(self) -> bool:
        return self._running

    async def start(self) -> None:
        self._running = True
        await self._manager.connect()

    async def stop(self) -> None:
        self._running = False
        await self._manager.disconnect()


ConnectionFactory = Callable[
    [
        Callable[[InboundMessage], None],
        Callable[[bool], None],
        Callable[[], None],
        Callable[[ConnectionState], None],
    ],
    ConnectionManager,
]


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class DataSourceArbitrator:
    """Owns the dashboard state and the single active data source."""

    def __init__(
        self,
        settings: Optional[Settings] = None,
        *,
        repository: Optional[SnapshotRepository] = None,
        simulator: Optional[CenterTelemetrySimulator] = None,
        forecaster: Optional[DemandForecaster] = None,
        connection_factory: Optional[ConnectionFactory] = None,
        state: Optional[DashboardState] = None,
        tick_sleep: Optional[Callable[[float], Awaitable[Any]]] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self._settings = settings or get_settings()
        rng = np.random.default_rng(self._settings.simulation_random_seed)
        self._repository = repository or SnapshotRepository(self._settings)
        self._simulator = simulator or CenterTelemetrySimulator(rng=rng)
        self._forecaster = forecaster or DemandForecaster(
            horizon=self._settings.forecast_horizon_days,
            rng=rng,
        )
        self._connection_factory = connection_factory or self._default_connection
        self._state = state or DashboardState(
            live_updates=LiveUpdateLog(self._settings.live_update_log_size),
            throughput=deque(maxlen=self._settings.throughput_window_size),
        )
        self._tick_sleep = tick_sleep
        self._clock = clock or _utc_now
        self._source: Optional[DataSource] = None
        self._control_lock = asyncio.Lock()

    @property
    def state(self) -> DashboardState:
        return self._state

    @property
    def source(self) -> Optional[DataSource]:
        return self._source

    @staticmethod
    def parse_mode(mode: DataMode | str) -> DataMode:
        try:
            return DataMode(mode)
        except ValueError as exc:
            raise InvalidModeError(f"unknown data mode '{mode}'") from exc

    def _default_connection(
        self,
        on_message: Callable[[InboundMessage], None],
        on_status_change: Callable[[bool], None],
        on_exhausted: Callable[[], None],
        on_state_change: Callable[[ConnectionState], None],
    ) -> ConnectionManager:
        return ConnectionManager(
            self._settings.websocket_url,
            self._settings.api_key,
            on_message,
            on_status_change,
            on_exhausted=on_exhausted,
            on_state_change=on_state_change,
        )

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def initialize(self, mode: DataMode | str | None = None) -> None:
        target = self.parse_mode(mode if mode is not None else self._settings.data_mode)
        async with self._control_lock:
            await self._stop_source()
            self._state.notice = None
            await self._activate(target, reseed=True)

    async def set_mode(self, mode: DataMode | str) -> None:
        """Tear down the active source, then bring up ``mode``."""
        target = self.parse_mode(mode)
        async with self._control_lock:
            if target is self._state.mode and self._source is not None:
                logger.info("Mode switch ignored | mode=%s | reason=already_active", target.value)
                return
            logger.info(
                "Mode switch requested | from=%s | to=%s",
                self._state.mode.value,
                target.value,
            )
            await self._stop_source()
            self._state.notice = None
            await self._activate(target, reseed=True)

    async def toggle_feed(self) -> bool:
        """Pause or resume the active feed; returns the new connected flag."""
        async with self._control_lock:
            if self._source is None:
                await self._activate(self._state.mode, reseed=not self._state.has_snapshot)
            elif self._state.feed_status in _RUNNING_FEED_STATUSES:
                await self._source.stop()
                self._state.is_live_connected = False
                self._state.feed_status = FeedStatus.OPERATOR_PAUSED
                logger.info("Feed paused by operator | mode=%s", self._state.mode.value)
            else:
                await self._resume_source()
            return self._state.is_live_connected

    async def shutdown(self) -> None:
        async with self._control_lock:
            await self._stop_source()
        await self._repository.aclose()

    async def _stop_source(self) -> None:
        source = self._source
        self._source = None
        if source is not None:
            await source.stop()
        self._state.is_live_connected = False
        self._state.feed_status = FeedStatus.OPERATOR_PAUSED

    async def _resume_source(self) -> None:
        assert self._source is not None
        if self._state.mode is DataMode.SIMULATED:
            await self._source.start()
            self._state.is_live_connected = True
            self._state.feed_status = FeedStatus.ACTIVE
        else:
            self._state.feed_status = FeedStatus.CONNECTING
            if self._state.notice == RECONNECT_EXHAUSTED_NOTICE:
                self._state.notice = None
            await self._source.start()
        logger.info("Feed resumed by operator | mode=%s", self._state.mode.value)

    async def _activate(self, mode: DataMode, *, reseed: bool) -> None:
        if mode is DataMode.LIVE:
            if await self._activate_live():
                return
            await self._activate_simulated(reseed=not self._state.has_snapshot)
            return
        await self._activate_simulated(reseed=reseed)

    async def _activate_live(self) -> bool:
        if not self._settings.live_credentials_configured:
            logger.warning("Live mode unavailable | reason=missing_api_key")
            self._state.notice = MISSING_CREDENTIALS_NOTICE
            return False
        try:
            await self._load_live_snapshot()
        except (SnapshotError, SeriesValidationError) as exc:
            logger.warning("Live snapshot failed; falling back to simulation | error=%s", exc)
            self._state.notice = LIVE_FALLBACK_NOTICE
            return False

        manager = self._connection_factory(
            self.handle_message,
            self._handle_status_change,
            self._handle_reconnect_exhausted,
            self._handle_connection_state,
        )
        source = LiveSource(manager)
        self._source = source
        self._state.mode = DataMode.LIVE
        self._state.is_live_connected = False
        self._state.feed_status = FeedStatus.CONNECTING
        await source.start()
        logger.info("Live mode active | centers=%s | history=%s", len(self._state.centers), len(self._state.series))
        return True

    async def _load_live_snapshot(self) -> None:
        repository = self._repository
        centers, history, predictions, stats = await asyncio.gather(
            repository.fetch_centers(),
            repository.fetch_historical_demand(self._settings.history_days),
            repository.fetch_predictions(self._settings.forecast_horizon_days),
            repository.fetch_today_stats(),
        )
        series = TimeSeriesStore()
        series.replace_history(history)
        series.set_predictions(predictions)

        # Build fully before publishing so a failure leaves the old state untouched.
        self._state.series = series
        self._state.centers = centers
        self._state.today_stats = stats
        self._state.throughput.clear()
        self._state.throughput.extend(self._simulator.seed_throughput(self._clock()))

        try:
            events = await repository.fetch_live_updates(self._settings.live_update_log_size)
        except SnapshotError as exc:
            logger.info("Live update log unavailable | error=%s", exc)
        else:
            self._state.live_updates.replace(events)

    async def _activate_simulated(self, *, reseed: bool) -> None:
        if reseed:
            self._seed_simulated_snapshot()
        source = SimulatedSource(
            self.tick,
            self._settings.simulation_tick_seconds,
            sleep=self._tick_sleep,
        )
        self._source = source
        self._state.mode = DataMode.SIMULATED
        await source.start()
        self._state.is_live_connected = True
        self._state.feed_status = FeedStatus.ACTIVE
        logger.info(
            "Simulated mode active | reseeded=%s | tick_seconds=%.1f",
            reseed,
            self._settings.simulation_tick_seconds,
        )

    def _seed_simulated_snapshot(self) -> None:
        now = self._clock()
        days = self._settings.history_days
        history = self._simulator.generate_history(
            start=now.date() - timedelta(days=days),
            days=days,
        )
        series = TimeSeriesStore()
        series.replace_history(history)
        series.set_predictions(self._forecaster.forecast(series.history))

        self._state.series = series
        self._state.centers = self._simulator.seed(DEFAULT_CENTER_SEEDS, now=now)
        self._state.today_stats = DEFAULT_TODAY_STATS
        self._state.throughput.clear()
        self._state.throughput.extend(self._simulator.seed_throughput(now))

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def tick(self) -> None:
        """Advance every simulated metric by one step."""
        now = self._clock()
        state = self._state
        state.centers = self._simulator.perturb(state.centers, now=now)
        state.today_stats = self._simulator.perturb_stats(state.today_stats)
        newest = state.throughput[-1] if state.throughput else None
        state.throughput.append(self._simulator.next_throughput_sample(newest, now))
        severity, icon, message = self._simulator.next_live_update()
        state.live_updates.record(severity, message, icon=icon, timestamp=now)
        self._roll_history(now)

    def _roll_history(self, now: datetime) -> None:
        series = self._state.series
        last_date = series.last_date
        if last_date is None:
            return
        yesterday = now.date() - timedelta(days=1)
        if last_date >= yesterday:
            return
        offset = len(series)
        while last_date < yesterday:
            last_date += timedelta(days=1)
            series.append(self._simulator.synthesize_day(last_date, offset))
            offset += 1
        try:
            series.set_predictions(self._forecaster.forecast(series.history))
        except ForecastError as exc:
            logger.warning("Forecast refresh skipped | error=%s", exc)
            series.set_predictions(())
        logger.info("Simulated history rolled forward | last_date=%s", last_date.isoformat())

    def handle_message(self, message: InboundMessage) -> None:
        if isinstance(message, CenterUpdate):
            self.apply_center_update(message.center_id, message.fields)
        elif isinstance(message, DemandUpdate):
            self.apply_stats_patch(message.patch)
        elif isinstance(message, Alert):
            self.record_alert(message.severity, message.message)

    def apply_center_update(self, center_id: int, fields: dict[str, Any]) -> bool:
        for index, center in enumerate(self._state.centers):
            if center.id != center_id:
                continue
            changes: dict[str, Any] = {}
            for wire_name, value in fields.items():
                attribute = CENTER_PATCH_FIELDS.get(wire_name)
                if attribute is None:
                    logger.debug("Ignored center patch field | center_id=%s | field=%s", center_id, wire_name)
                    continue
                if attribute in _TEXT_CENTER_FIELDS:
                    changes[attribute] = str(value)
                    continue
                try:
                    changes[attribute] = int(value)
                except (TypeError, ValueError, OverflowError):
                    logger.warning(
                        "Ignored non-numeric center patch value | center_id=%s | field=%s",
                        center_id,
                        wire_name,
                    )
            updated = replace(center, last_updated=self._clock(), **changes)
            self._state.centers[index] = self._simulator.clamp_center(updated)
            return True
        logger.warning("Center update for unknown center | center_id=%s", center_id)
        return False

    def apply_stats_patch(self, patch: dict[str, Any]) -> None:
        changes: dict[str, int] = {}
        for wire_name, value in patch.items():
            attribute = STATS_PATCH_FIELDS.get(wire_name)
            if attribute is None:
                continue
            try:
                changes[attribute] = int(value)
            except (TypeError, ValueError, OverflowError):
                logger.warning("Ignored non-numeric stats patch value | field=%s", wire_name)
        merged = replace(self._state.today_stats, **changes)
        self._state.today_stats = self._simulator.clamp_stats(merged)

    def record_alert(self, severity: str, message: str) -> None:
        try:
            level = Severity(severity)
        except ValueError:
            level = Severity.INFO
        self._state.live_updates.record(level, message, timestamp=self._clock())

    def _handle_status_change(self, connected: bool) -> None:
        self._state.is_live_connected = connected
        if connected:
            self._state.feed_status = FeedStatus.ACTIVE
            if self._state.notice == RECONNECT_EXHAUSTED_NOTICE:
                self._state.notice = None
        else:
            self._state.feed_status = FeedStatus.RECONNECTING
        logger.info("Live connection indicator changed | connected=%s", connected)

    def _handle_connection_state(self, state: ConnectionState) -> None:
        if state is ConnectionState.RECONNECTING:
            self._state.feed_status = FeedStatus.RECONNECTING

    def _handle_reconnect_exhausted(self) -> None:
        self._state.is_live_connected = False
        self._state.feed_status = FeedStatus.CONNECTION_LOST
        self._state.notice = RECONNECT_EXHAUSTED_NOTICE
        logger.warning("Live feed paused | reason=reconnect_exhausted")
