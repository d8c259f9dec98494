"""Controller layer exposing the dashboard state surface and feed controls."""

from __future__ import annotations

from datetime import date, datetime
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Response, status
from fastapi.security import HTTPAuthorizationCredentials
from pydantic import BaseModel, Field

from enrollment_telemetry.controllers.dependencies import (
    bearer_scheme,
    get_arbitrator,
    get_auth_service,
    require_admin,
)
from enrollment_telemetry.domain.models import DataMode, FeedStatus, Severity
from enrollment_telemetry.services.arbitrator import DataSourceArbitrator, InvalidModeError
from enrollment_telemetry.services.auth_service import (
    AdminTokenNotConfiguredError,
    InvalidAdminTokenError,
    OperatorAuthService,
)
from enrollment_telemetry.services.forecast_service import ForecastError
from enrollment_telemetry.utils.logger import get_logger


logger = get_logger(__name__)

router = APIRouter(tags=["telemetry"])


class LoginRequest(BaseModel):
    admin_token: str = Field(min_length=1)


class LoginResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"


class DemandPointRow(BaseModel):
    date: date
    demand: int = Field(ge=0)
    demographic: int = Field(ge=0)
    biometric: int = Field(ge=0)
    mobile: int = Field(ge=0)
    address: int = Field(ge=0)


class PredictionRow(BaseModel):
    date: date
    predicted: int = Field(ge=0)
    confidence: float
    isWeekend: bool


class CenterRow(BaseModel):
    id: int
    name: str
    capacity: int = Field(gt=0)
    location: str
    staff: int = Field(gt=0)
    currentLoad: int = Field(ge=0)
    avgWaitTime: int = Field(ge=0)
    queueLength: int = Field(ge=0)
    activeCounters: int = Field(ge=0)
    satisfaction: int
    lastUpdated: datetime
    forecastLoad: Optional[int] = None


class TodayStatsResponse(BaseModel):
    totalDemand: int
    avgWaitTime: int
    activeCenters: int = Field(ge=0)
    utilization: int


class LiveUpdateRow(BaseModel):
    id: int
    type: Severity
    icon: str
    message: str
    timestamp: datetime


class ThroughputRow(BaseModel):
    time: str
    requests: int = Field(ge=0)
    completed: int = Field(ge=0)


class StatusResponse(BaseModel):
    mode: DataMode
    isLiveConnected: bool
    feedStatus: FeedStatus
    notice: Optional[str] = None


class DashboardStateResponse(BaseModel):
    historical: list[DemandPointRow]
    predictions: list[PredictionRow]
    centers: list[CenterRow]
    todayStats: TodayStatsResponse
    liveUpdates: list[LiveUpdateRow] = Field(max_length=10)
    throughput: list[ThroughputRow] = Field(max_length=30)
    status: StatusResponse


class ModeRequest(BaseModel):
    mode: DataMode


@router.post("/login", response_model=LoginResponse, status_code=status.HTTP_200_OK)
async def login(
    payload: LoginRequest,
    auth_service: OperatorAuthService = Depends(get_auth_service),
) -> LoginResponse:
    try:
        bearer = auth_service.login(payload.admin_token)
        return LoginResponse(access_token=bearer)
    except (AdminTokenNotConfiguredError, InvalidAdminTokenError) as exc:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=str(exc),
        ) from exc


@router.post(
    "/logout",
    status_code=status.HTTP_204_NO_CONTENT,
    dependencies=[Depends(require_admin)],
)
async def logout(
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
    auth_service: OperatorAuthService = Depends(get_auth_service),
) -> Response:
    if credentials is not None:
        auth_service.logout(credentials.credentials)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/state", response_model=DashboardStateResponse, status_code=status.HTTP_200_OK)
async def get_state(
    arbitrator: DataSourceArbitrator = Depends(get_arbitrator),
) -> DashboardStateResponse:
    return DashboardStateResponse(**arbitrator.state.to_dict())


@router.get("/historical", response_model=list[DemandPointRow])
async def get_historical(
    arbitrator: DataSourceArbitrator = Depends(get_arbitrator),
) -> list[DemandPointRow]:
    return [DemandPointRow(**point.to_dict()) for point in arbitrator.state.series.history]


@router.get("/predictions", response_model=list[PredictionRow])
async def get_predictions(
    arbitrator: DataSourceArbitrator = Depends(get_arbitrator),
) -> list[PredictionRow]:
    return [PredictionRow(**prediction.to_dict()) for prediction in arbitrator.state.series.predictions]


@router.get("/centers", response_model=list[CenterRow])
async def get_centers(
    arbitrator: DataSourceArbitrator = Depends(get_arbitrator),
) -> list[CenterRow]:
    return [CenterRow(**center.to_dict()) for center in arbitrator.state.centers]


@router.get("/stats", response_model=TodayStatsResponse)
async def get_today_stats(
    arbitrator: DataSourceArbitrator = Depends(get_arbitrator),
) -> TodayStatsResponse:
    return TodayStatsResponse(**arbitrator.state.today_stats.to_dict())


@router.get("/updates", response_model=list[LiveUpdateRow])
async def get_live_updates(
    arbitrator: DataSourceArbitrator = Depends(get_arbitrator),
) -> list[LiveUpdateRow]:
    return [LiveUpdateRow(**event.to_dict()) for event in arbitrator.state.live_updates]


@router.get("/throughput", response_model=list[ThroughputRow])
async def get_throughput(
    arbitrator: DataSourceArbitrator = Depends(get_arbitrator),
) -> list[ThroughputRow]:
    return [ThroughputRow(**sample.to_dict()) for sample in arbitrator.state.throughput]


@router.get("/status", response_model=StatusResponse)
async def get_status(
    arbitrator: DataSourceArbitrator = Depends(get_arbitrator),
) -> StatusResponse:
    return StatusResponse(**arbitrator.state.status_dict())


@router.post(
    "/feed/toggle",
    response_model=StatusResponse,
    status_code=status.HTTP_200_OK,
    dependencies=[Depends(require_admin)],
)
async def toggle_feed(
    arbitrator: DataSourceArbitrator = Depends(get_arbitrator),
) -> StatusResponse:
    connected = await arbitrator.toggle_feed()
    logger.info("Feed toggled via API | connected=%s", connected)
    return StatusResponse(**arbitrator.state.status_dict())


@router.post(
    "/mode",
    response_model=StatusResponse,
    status_code=status.HTTP_200_OK,
    dependencies=[Depends(require_admin)],
)
async def switch_mode(
    payload: ModeRequest,
    arbitrator: DataSourceArbitrator = Depends(get_arbitrator),
) -> StatusResponse:
    try:
        await arbitrator.set_mode(payload.mode)
        return StatusResponse(**arbitrator.state.status_dict())
    except InvalidModeError as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=str(exc),
        ) from exc
    except ForecastError as exc:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=str(exc),
        ) from exc
