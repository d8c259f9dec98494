from __future__ import annotations

from datetime import date, timedelta

import numpy as np
import pytest

from enrollment_telemetry.domain.models import DemandPoint
from enrollment_telemetry.services.forecast_service import (
    DemandForecaster,
    ForecastValidationError,
    InsufficientHistoryError,
    forecast_demand,
)


def _flat_series(days: int, demand: int = 100, start: date = date(2025, 1, 1)) -> list[DemandPoint]:
    return [DemandPoint(date=start + timedelta(days=offset), demand=demand) for offset in range(days)]


def test_flat_series_yields_hundred_on_weekdays_and_forty_on_weekends():
    series = _flat_series(90)

    predictions = forecast_demand(series, 7, rng=np.random.default_rng(1))

    assert series[-1].date == date(2025, 3, 31)
    assert [prediction.date for prediction in predictions] == [
        date(2025, 4, 1) + timedelta(days=offset) for offset in range(7)
    ]
    for prediction in predictions:
        expected = 40 if prediction.is_weekend else 100
        assert prediction.predicted == expected
    assert [prediction.is_weekend for prediction in predictions] == [
        False, False, False, False, True, True, False,
    ]


@pytest.mark.parametrize("horizon", [1, 7, 30])
def test_forecast_returns_contiguous_run_after_last_date(horizon):
    series = _flat_series(40, start=date(2025, 6, 3))

    predictions = forecast_demand(series, horizon, rng=np.random.default_rng(3))

    assert len(predictions) == horizon
    expected_dates = [series[-1].date + timedelta(days=offset) for offset in range(1, horizon + 1)]
    assert [prediction.date for prediction in predictions] == expected_dates


def test_trend_is_difference_of_fourteen_day_means():
    start = date(2025, 1, 6)
    series = [
        DemandPoint(date=start + timedelta(days=offset), demand=100 if offset < 14 else 128)
        for offset in range(28)
    ]

    predictions = forecast_demand(series, 7, rng=np.random.default_rng(0))

    # recent_avg=128, prior_avg=100 -> daily trend 2.0
    for offset, prediction in enumerate(predictions, start=1):
        raw = 128 + 2.0 * offset
        expected = int(max(20, raw * 0.4)) if prediction.is_weekend else int(raw)
        assert prediction.predicted == expected


def test_predictions_are_floored_at_twenty():
    predictions = forecast_demand(_flat_series(28, demand=5), 14, rng=np.random.default_rng(5))

    assert all(prediction.predicted >= 20 for prediction in predictions)


def test_weekend_predictions_do_not_exceed_weekday_baseline():
    predictions = forecast_demand(_flat_series(60, demand=180), 14, rng=np.random.default_rng(8))

    weekday_values = {prediction.predicted for prediction in predictions if not prediction.is_weekend}
    weekend_values = {prediction.predicted for prediction in predictions if prediction.is_weekend}
    assert max(weekend_values) <= min(weekday_values)


def test_confidence_stays_in_heuristic_band():
    predictions = forecast_demand(_flat_series(30), 30, rng=np.random.default_rng(11))

    assert all(85.0 <= prediction.confidence < 95.0 for prediction in predictions)


def test_seeded_jitter_is_reproducible():
    series = _flat_series(45)

    first = forecast_demand(series, 7, rng=np.random.default_rng(42))
    second = forecast_demand(series, 7, rng=np.random.default_rng(42))

    assert first == second


def test_insufficient_history_is_raised():
    with pytest.raises(InsufficientHistoryError):
        forecast_demand(_flat_series(27), 7)


def test_non_positive_horizon_is_rejected():
    with pytest.raises(ForecastValidationError):
        forecast_demand(_flat_series(28), 0)


def test_forecaster_uses_configured_horizon():
    forecaster = DemandForecaster(horizon=5, rng=np.random.default_rng(2))

    assert len(forecaster.forecast(_flat_series(28))) == 5
    assert len(forecaster.forecast(_flat_series(28), horizon=2)) == 2
