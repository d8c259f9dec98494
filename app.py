"""
app.py: FastAPI application factory and startup lifecycle.

This is the ASGI application object imported by uvicorn.
It wires the snapshot repository, the data-source arbitrator and operator
auth, registers routers, and starts or stops the active data source with the
application lifespan.

Usage (via launcher):
    python main.py

Usage (direct uvicorn):
    uvicorn app:app --reload
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI

from enrollment_telemetry.controllers.dashboard_controller import router as dashboard_router
from enrollment_telemetry.repository.snapshot_repository import SnapshotRepository
from enrollment_telemetry.services.arbitrator import DataSourceArbitrator
from enrollment_telemetry.services.auth_service import OperatorAuthService
from enrollment_telemetry.utils.config import Settings, get_settings
from enrollment_telemetry.utils.logger import get_logger


logger = get_logger(__name__)


def create_app(
    settings: Optional[Settings] = None,
    arbitrator: Optional[DataSourceArbitrator] = None,
) -> FastAPI:
    """
    Build and wire the FastAPI application.

    Every dependency is attached to app.state so controllers resolve them
    explicitly; the arbitrator is the only writer of dashboard state.
    """
    settings = settings or get_settings()

    # --- Repository (REST snapshot reads) ---
    repository = SnapshotRepository(settings)

    # --- Services ---
    arbitrator = arbitrator or DataSourceArbitrator(settings, repository=repository)
    auth_service = OperatorAuthService(settings=settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Bring up the configured data source before accepting requests."""
        await _startup(app, settings)
        yield
        await _shutdown(app)

    app = FastAPI(
        title=settings.app_name,
        version=settings.app_version,
        lifespan=lifespan,
    )

    # --- Routers ---
    app.include_router(dashboard_router)

    # --- Inject services into app.state for dependency resolution ---
    app.state.repository = repository
    app.state.arbitrator = arbitrator
    app.state.auth_service = auth_service

    return app


async def _startup(app: FastAPI, settings: Settings) -> None:
    """
    Startup sequence.

    Live mode may fall back to simulation here; either way the dashboard has a
    full snapshot before the first request is served.
    """
    arbitrator: DataSourceArbitrator = app.state.arbitrator
    logger.info("Startup: initializing data source | mode=%s", settings.data_mode)
    await arbitrator.initialize(settings.data_mode)
    logger.info(
        "Startup complete | mode=%s | notice=%s",
        arbitrator.state.mode.value,
        arbitrator.state.notice,
    )


async def _shutdown(app: FastAPI) -> None:
    arbitrator: DataSourceArbitrator = app.state.arbitrator
    logger.info("Shutdown: stopping active data source")
    await arbitrator.shutdown()


# Module-level app object for uvicorn
app = create_app()
