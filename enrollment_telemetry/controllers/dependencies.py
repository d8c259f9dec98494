"""Shared FastAPI dependency providers for controller layer."""

from __future__ import annotations

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from enrollment_telemetry.services.arbitrator import DataSourceArbitrator
from enrollment_telemetry.services.auth_service import (
    AdminTokenNotConfiguredError,
    InvalidAdminTokenError,
    OperatorAuthService,
)
from enrollment_telemetry.utils.config import get_settings


bearer_scheme = HTTPBearer(auto_error=False)


def get_auth_service(request: Request) -> OperatorAuthService:
    service = getattr(request.app.state, "auth_service", None)
    if service is None:
        service = OperatorAuthService(settings=get_settings())
        request.app.state.auth_service = service
    return service


def get_arbitrator(request: Request) -> DataSourceArbitrator:
    arbitrator = getattr(request.app.state, "arbitrator", None)
    if arbitrator is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Telemetry arbitrator is not initialized",
        )
    return arbitrator


async def require_admin(
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
    auth_service: OperatorAuthService = Depends(get_auth_service),
) -> None:
    if not auth_service.auth_enabled:
        return
    if credentials is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authorization header with Bearer token is required",
        )
    try:
        auth_service.validate_bearer_token(credentials.credentials)
    except (AdminTokenNotConfiguredError, InvalidAdminTokenError) as exc:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=str(exc),
        ) from exc
