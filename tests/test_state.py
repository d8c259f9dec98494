from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from enrollment_telemetry.domain.models import DataMode, FeedStatus, LiveUpdateEvent, Severity
from enrollment_telemetry.domain.state import DashboardState, LiveUpdateLog


NOW = datetime(2025, 4, 1, 9, 30, tzinfo=timezone.utc)


def test_log_is_newest_first_and_bounded():
    log = LiveUpdateLog(max_size=10)

    for index in range(15):
        log.record(Severity.INFO, f"event {index}", timestamp=NOW + timedelta(seconds=index))

    messages = [event.message for event in log]
    assert len(log) == 10
    assert messages[0] == "event 14"
    assert messages[-1] == "event 5"


def test_ids_strictly_increase_for_same_timestamp():
    log = LiveUpdateLog()

    first = log.record(Severity.SUCCESS, "a", timestamp=NOW)
    second = log.record(Severity.SUCCESS, "b", timestamp=NOW)
    third = log.record(Severity.WARNING, "c", timestamp=NOW - timedelta(seconds=5))

    assert first.id < second.id < third.id
    assert first.icon == "✓"
    assert third.icon == "⚠"


def test_replace_keeps_newest_and_continues_ids():
    log = LiveUpdateLog(max_size=2)
    events = [
        LiveUpdateEvent(id=event_id, severity=Severity.INFO, icon="ℹ", message=str(event_id), timestamp=NOW)
        for event_id in (3, 9, 5)
    ]

    log.replace(events)
    appended = log.record(Severity.INFO, "next", timestamp=datetime(1970, 1, 1, tzinfo=timezone.utc))

    assert [event.id for event in log] == [appended.id, 9]
    assert appended.id == 10


def test_log_rejects_non_positive_size():
    with pytest.raises(ValueError):
        LiveUpdateLog(max_size=0)


def test_empty_state_renders_status_view():
    state = DashboardState()

    view = state.to_dict()

    assert not state.has_snapshot
    assert view["historical"] == []
    assert view["todayStats"]["totalDemand"] == 847
    assert view["status"] == {
        "mode": DataMode.SIMULATED.value,
        "isLiveConnected": False,
        "feedStatus": FeedStatus.OPERATOR_PAUSED.value,
        "notice": None,
    }
