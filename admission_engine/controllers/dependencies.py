"""Shared FastAPI dependency providers for controller layer."""

from __future__ import annotations

from typing import Optional

from fastapi import Header, HTTPException, Request, status

from admission_engine.services.admission_service import AdmissionEstimationService
from admission_engine.services.calibration_service import CalibrationService
from admission_engine.utils.config import get_settings


USER_ID_MAX_LENGTH = 200


def get_calibration_service(request: Request) -> CalibrationService:
    service = getattr(request.app.state, "calibration_service", None)
    if service is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Calibration service is not initialized",
        )
    return service


def get_admission_service(request: Request) -> AdmissionEstimationService:
    service = getattr(request.app.state, "admission_service", None)
    if service is None:
        repository = getattr(request.app.state, "repository", None)
        calibration_service = getattr(request.app.state, "calibration_service", None)
        if repository is not None and calibration_service is not None:
            service = AdmissionEstimationService(
                repository=repository,
                settings=getattr(request.app.state, "settings", None) or get_settings(),
                calibration_service=calibration_service,
            )
            request.app.state.admission_service = service
    if service is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Admission service is not initialized",
        )
    return service


async def require_user_id(
    x_user_id: Optional[str] = Header(default=None, alias="x-user-id"),
) -> str:
    if x_user_id is None or not x_user_id.strip() or len(x_user_id) > USER_ID_MAX_LENGTH:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="x-user-id header required",
        )
    return x_user_id
