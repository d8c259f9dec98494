from __future__ import annotations

from dataclasses import replace

from fastapi.testclient import TestClient

from app import create_app
from enrollment_telemetry.repository.snapshot_repository import SnapshotFetchError
from enrollment_telemetry.services.arbitrator import LIVE_FALLBACK_NOTICE, DataSourceArbitrator
from enrollment_telemetry.utils.config import get_settings


class FailingSnapshotRepository:
    async def _fail(self, *args, **kwargs):
        raise SnapshotFetchError("API Error: 502 - Bad Gateway")

    fetch_centers = _fail
    fetch_historical_demand = _fail
    fetch_predictions = _fail
    fetch_today_stats = _fail
    fetch_live_updates = _fail

    async def aclose(self) -> None:
        return None


def _build_test_settings(admin_token: str | None):
    get_settings.cache_clear()
    return replace(
        get_settings(),
        data_mode="simulated",
        api_key="test-key",
        admin_token=admin_token,
        simulation_tick_seconds=3600.0,
        simulation_random_seed=7,
    )


def _build_test_app(admin_token: str | None = None):
    settings = _build_test_settings(admin_token)
    arbitrator = DataSourceArbitrator(settings, repository=FailingSnapshotRepository())
    return create_app(settings=settings, arbitrator=arbitrator)


def test_state_surface_after_startup():
    with TestClient(_build_test_app()) as client:
        response = client.get("/state")
        assert response.status_code == 200
        body = response.json()

        assert len(body["historical"]) == 90
        assert len(body["predictions"]) == 7
        assert len(body["centers"]) == 5
        assert len(body["throughput"]) == 30
        assert body["liveUpdates"] == []
        assert body["todayStats"]["totalDemand"] == 847
        assert body["status"] == {
            "mode": "simulated",
            "isLiveConnected": True,
            "feedStatus": "active",
            "notice": None,
        }
        assert set(body["centers"][0]) >= {"currentLoad", "avgWaitTime", "queueLength", "forecastLoad"}
        assert "isWeekend" in body["predictions"][0]


def test_component_endpoints_mirror_state():
    with TestClient(_build_test_app()) as client:
        state = client.get("/state").json()

        assert client.get("/centers").json() == state["centers"]
        assert client.get("/historical").json() == state["historical"]
        assert client.get("/predictions").json() == state["predictions"]
        assert client.get("/stats").json() == state["todayStats"]
        assert client.get("/throughput").json() == state["throughput"]
        assert client.get("/updates").json() == []
        assert client.get("/status").json() == state["status"]


def test_feed_toggle_requires_operator_session():
    with TestClient(_build_test_app(admin_token="operator-secret")) as client:
        denied = client.post("/feed/toggle")
        assert denied.status_code == 401

        bad_login = client.post("/login", json={"admin_token": "wrong"})
        assert bad_login.status_code == 401

        login = client.post("/login", json={"admin_token": "operator-secret"})
        assert login.status_code == 200
        headers = {"Authorization": f"Bearer {login.json()['access_token']}"}

        paused = client.post("/feed/toggle", headers=headers)
        assert paused.status_code == 200
        assert paused.json()["feedStatus"] == "operator_paused"
        assert paused.json()["isLiveConnected"] is False

        resumed = client.post("/feed/toggle", headers=headers)
        assert resumed.json()["feedStatus"] == "active"
        assert resumed.json()["isLiveConnected"] is True


def test_live_mode_failure_reports_notice_and_keeps_simulating():
    with TestClient(_build_test_app()) as client:
        centers_before = client.get("/centers").json()

        response = client.post("/mode", json={"mode": "live"})

        assert response.status_code == 200
        assert response.json()["mode"] == "simulated"
        assert response.json()["notice"] == LIVE_FALLBACK_NOTICE
        assert client.get("/centers").json() == centers_before


def test_unknown_mode_is_rejected_by_validation():
    with TestClient(_build_test_app()) as client:
        response = client.post("/mode", json={"mode": "replay"})

        assert response.status_code == 422


def test_logout_revokes_operator_session():
    with TestClient(_build_test_app(admin_token="operator-secret")) as client:
        token = client.post("/login", json={"admin_token": "operator-secret"}).json()["access_token"]
        headers = {"Authorization": f"Bearer {token}"}

        logout = client.post("/logout", headers=headers)
        assert logout.status_code == 204

        after = client.post("/feed/toggle", headers=headers)
        assert after.status_code == 401
