"""Environment-driven runtime settings."""

from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache
from typing import Optional


def _env_str(name: str, default: str) -> str:
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    return value.strip()


def _env_optional_str(name: str) -> Optional[str]:
    value = os.getenv(name)
    if value is None or not value.strip():
        return None
    return value.strip()


def _env_float(name: str, default: float) -> float:
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    return float(value)


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    return int(value)


def _env_optional_int(name: str) -> Optional[int]:
    value = os.getenv(name)
    if value is None or not value.strip():
        return None
    return int(value)


@dataclass(frozen=True)
class Settings:
    app_name: str
    app_version: str
    log_level: str

    data_mode: str
    api_base_url: str
    api_key: Optional[str]
    websocket_url: str
    admin_token: Optional[str]
    http_timeout_seconds: float

    simulation_tick_seconds: float
    simulation_random_seed: Optional[int]
    forecast_horizon_days: int
    history_days: int

    live_update_log_size: int = 10
    throughput_window_size: int = 30

    @property
    def live_credentials_configured(self) -> bool:
        return bool(self.api_key)


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Build settings once per process from environment variables."""
    return Settings(
        app_name=_env_str("APP_NAME", "Enrollment Telemetry Core"),
        app_version=_env_str("APP_VERSION", "0.1.0"),
        log_level=_env_str("LOG_LEVEL", "INFO"),
        data_mode=_env_str("DATA_MODE", "simulated").lower(),
        api_base_url=_env_str("API_BASE_URL", "https://api.uidai.gov.in/v1"),
        api_key=_env_optional_str("API_KEY"),
        websocket_url=_env_str("WEBSOCKET_URL", "wss://api.uidai.gov.in/ws"),
        admin_token=_env_optional_str("ADMIN_TOKEN"),
        http_timeout_seconds=_env_float("HTTP_TIMEOUT_SECONDS", 10.0),
        simulation_tick_seconds=_env_float("SIMULATION_TICK_SECONDS", 3.0),
        simulation_random_seed=_env_optional_int("SIMULATION_RANDOM_SEED"),
        forecast_horizon_days=_env_int("FORECAST_HORIZON_DAYS", 7),
        history_days=_env_int("HISTORY_DAYS", 90),
    )
