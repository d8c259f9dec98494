"""Short-horizon demand forecasting from a daily historical series."""

from __future__ import annotations

import math
from typing import Optional, Sequence

import numpy as np
import pandas as pd

from enrollment_telemetry.domain.models import DemandPoint, Prediction
from enrollment_telemetry.utils.logger import get_logger


logger = get_logger(__name__)

TREND_WINDOW_DAYS = 14
MIN_HISTORY_DAYS = TREND_WINDOW_DAYS * 2
WEEKEND_DAMPENING = 0.4
DEMAND_FLOOR = 20
CONFIDENCE_BASE = 85.0
CONFIDENCE_SPREAD = 10.0


class ForecastError(Exception):
    """Base exception for forecasting failures."""


class InsufficientHistoryError(ForecastError):
    """Raised when the series is too short for the two trend windows."""


class ForecastValidationError(ForecastError):
    """Raised when forecast inputs are invalid."""


def forecast_demand(
    series: Sequence[DemandPoint],
    horizon: int,
    *,
    rng: Optional[np.random.Generator] = None,
) -> list[Prediction]:
    """Project demand ``horizon`` days past the last historical date.

    The trend is the difference between the mean of the last 14 days and the
    14 days before, spread per day. Weekend days are dampened to 40% and every
    value is floored at 20. Confidence is a fixed 85-95% heuristic band with
    random jitter, not a derived interval.
    """

    if horizon < 1:
        raise ForecastValidationError("horizon must be >= 1")
    if len(series) < MIN_HISTORY_DAYS:
        raise InsufficientHistoryError(
            f"forecast needs at least {MIN_HISTORY_DAYS} historical days, got {len(series)}"
        )

    generator = rng if rng is not None else np.random.default_rng()
    demand = pd.Series([point.demand for point in series], dtype="float64")
    recent_avg = float(demand.iloc[-TREND_WINDOW_DAYS:].mean())
    prior_avg = float(demand.iloc[-MIN_HISTORY_DAYS:-TREND_WINDOW_DAYS].mean())
    daily_trend = (recent_avg - prior_avg) / TREND_WINDOW_DAYS

    last_date = pd.Timestamp(series[-1].date)
    future_dates = pd.date_range(
        start=last_date + pd.Timedelta(days=1),
        periods=horizon,
        freq="D",
    )

    predictions: list[Prediction] = []
    for offset, timestamp in enumerate(future_dates, start=1):
        raw = recent_avg + daily_trend * offset
        if timestamp.dayofweek >= 5:
            raw *= WEEKEND_DAMPENING
        predictions.append(
            Prediction(
                date=timestamp.date(),
                predicted=int(math.floor(max(DEMAND_FLOOR, raw))),
                confidence=CONFIDENCE_BASE + float(generator.random()) * CONFIDENCE_SPREAD,
            )
        )

    logger.debug(
        "Forecast computed | history=%s | horizon=%s | recent_avg=%.3f | prior_avg=%.3f | trend=%.4f",
        len(series),
        horizon,
        recent_avg,
        prior_avg,
        daily_trend,
    )
    return predictions


class DemandForecaster:
    """Carries a jitter source so callers can forecast without threading one through."""

    def __init__(
        self,
        horizon: int = 7,
        rng: Optional[np.random.Generator] = None,
    ) -> None:
        if horizon < 1:
            raise ForecastValidationError("horizon must be >= 1")
        self._horizon = horizon
        self._rng = rng if rng is not None else np.random.default_rng()

    @property
    def horizon(self) -> int:
        return self._horizon

    def forecast(
        self,
        series: Sequence[DemandPoint],
        horizon: Optional[int] = None,
    ) -> list[Prediction]:
        return forecast_demand(
            series,
            horizon if horizon is not None else self._horizon,
            rng=self._rng,
        )
