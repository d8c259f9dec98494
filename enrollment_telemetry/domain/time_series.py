"""Ordered historical demand series and its derived forecast run."""

from __future__ import annotations

from datetime import date, timedelta
from typing import Iterable, Optional

from enrollment_telemetry.domain.models import DemandPoint, Prediction


class SeriesValidationError(Exception):
    """Raised when a series or forecast run would break ordering rules."""


class TimeSeriesStore:
    """Holds the date-sorted, duplicate-free history plus its prediction run.

    History grows only by appending newer days or by full replacement on a live
    resync. Predictions are always the contiguous run of days that follows the
    last historical date.
    """

    def __init__(self) -> None:
        self._history: tuple[DemandPoint, ...] = ()
        self._predictions: tuple[Prediction, ...] = ()

    @property
    def history(self) -> tuple[DemandPoint, ...]:
        return self._history

    @property
    def predictions(self) -> tuple[Prediction, ...]:
        return self._predictions

    @property
    def last_date(self) -> Optional[date]:
        if not self._history:
            return None
        return self._history[-1].date

    def __len__(self) -> int:
        return len(self._history)

    def replace_history(self, points: Iterable[DemandPoint]) -> None:
        ordered = sorted(points, key=lambda point: point.date)
        for previous, current in zip(ordered, ordered[1:]):
            if previous.date == current.date:
                raise SeriesValidationError(
                    f"duplicate historical date {current.date.isoformat()}"
                )
        for point in ordered:
            _validate_point(point)
        self._history = tuple(ordered)
        self._predictions = ()

    def append(self, point: DemandPoint) -> None:
        _validate_point(point)
        last_date = self.last_date
        if last_date is not None and point.date <= last_date:
            raise SeriesValidationError(
                f"appended date {point.date.isoformat()} must be after {last_date.isoformat()}"
            )
        self._history = self._history + (point,)

    def set_predictions(self, predictions: Iterable[Prediction]) -> None:
        run = tuple(predictions)
        last_date = self.last_date
        if run and last_date is None:
            raise SeriesValidationError("predictions require a historical series")
        for offset, prediction in enumerate(run, start=1):
            expected = last_date + timedelta(days=offset)
            if prediction.date != expected:
                raise SeriesValidationError(
                    f"prediction date {prediction.date.isoformat()} breaks the run; "
                    f"expected {expected.isoformat()}"
                )
            if prediction.predicted < 0:
                raise SeriesValidationError("predicted demand must be >= 0")
        self._predictions = run


def _validate_point(point: DemandPoint) -> None:
    counts = (
        point.demand,
        point.demographic,
        point.biometric,
        point.mobile,
        point.address,
    )
    if any(count < 0 for count in counts):
        raise SeriesValidationError(
            f"demand counts for {point.date.isoformat()} must be non-negative"
        )
