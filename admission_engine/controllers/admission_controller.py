"""HTTP controller layer for admission likelihood estimation."""

from __future__ import annotations

from datetime import date, datetime
from typing import Any, Optional

from fastapi import APIRouter, Depends, HTTPException, Request, status
from pydantic import AliasChoices, BaseModel, Field

from admission_engine.controllers.dependencies import (
    get_admission_service,
    get_calibration_service,
    require_user_id,
)
from admission_engine.domain.errors import AdmissionValidationError, NumericDomainError
from admission_engine.domain.models import FacilityTurnoverRecord, PriorityCategory
from admission_engine.services.admission_service import (
    AdmissionEstimationService,
    EstimateNotFoundError,
    FacilityNotFoundError,
    OutcomeAlreadyRecordedError,
    format_estimate_summary,
)
from admission_engine.services.calibration_service import CalibrationService
from admission_engine.utils.config import Settings, get_settings
from admission_engine.utils.logger import get_logger


logger = get_logger(__name__)

router = APIRouter(tags=["admission"])


def _check_request_bounds(
    settings: Settings,
    age_band: str,
    waiting_position: Optional[int] = None,
) -> None:
    """Bounds that depend on the running app's settings, reported as 422."""
    problems = []
    if age_band not in settings.age_bands:
        problems.append(f"age_band must be one of: {', '.join(settings.age_bands)}")
    if waiting_position is not None and waiting_position > settings.waiting_position_max:
        problems.append(f"waiting_position must be <= {settings.waiting_position_max}")
    if problems:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail="; ".join(problems),
        )


class AdmissionEstimateRequest(BaseModel):
    """Input DTO validated before entering service layer."""

    facility_id: str = Field(min_length=1, max_length=128)
    child_id: str = Field(min_length=1, max_length=128)
    age_band: str = Field(validation_alias=AliasChoices("age_band", "target_class"))
    priority_type: PriorityCategory = PriorityCategory.GENERAL
    additional_priorities: list[PriorityCategory] = Field(default_factory=list)
    waiting_position: int = Field(ge=1)
    target_date: Optional[date] = None
    reference_date: Optional[date] = None


class EvidenceCardResponse(BaseModel):
    type: str
    summary: str
    source_count: int = Field(ge=0)
    confidence: float = Field(ge=0.0, le=1.0)
    data_points: dict[str, Any]


class AdmissionEstimateResponse(BaseModel):
    """Output DTO constrained to probability bounds."""

    id: Optional[int] = None
    facility_id: str
    facility_name: str
    child_id: str
    age_band: str
    raw_waiting_position: int = Field(ge=1)
    probability: float = Field(ge=0.0, le=1.0)
    effective_position: float = Field(ge=1.0)
    posterior_alpha: float = Field(gt=0.0)
    posterior_beta: float = Field(gt=0.0)
    horizon_days: int = Field(ge=1)
    exposure_days: float = Field(gt=0.0)
    computed_at: datetime
    admission_score: int = Field(ge=1, le=99)
    grade: str
    confidence: float = Field(ge=0.0, le=1.0)
    low_confidence: bool
    estimated_wait_days_median: Optional[int] = None
    estimated_wait_days_80th: Optional[int] = None
    evidence: list[EvidenceCardResponse]


class SummaryResponse(BaseModel):
    message: str


class HistoryItemResponse(BaseModel):
    id: int
    facility_id: str
    child_id: str
    age_band: str
    priority_type: PriorityCategory
    additional_priorities: list[PriorityCategory]
    raw_waiting_position: int
    effective_position: float
    probability: float = Field(ge=0.0, le=1.0)
    admission_score: int
    grade: str
    confidence: float
    posterior_alpha: float
    posterior_beta: float
    horizon_days: int
    exposure_days: float
    estimated_wait_days_median: Optional[int] = None
    estimated_wait_days_80th: Optional[int] = None
    computed_at: datetime


class HistoryResponse(BaseModel):
    results: list[HistoryItemResponse]
    total: int = Field(ge=0)


class TurnoverRecordRequest(BaseModel):
    facility_id: str = Field(min_length=1, max_length=128)
    age_band: str
    observed_vacancies: int = Field(ge=0)
    observation_window_days: int = Field(gt=0)


class TurnoverRecordResponse(BaseModel):
    id: int
    facility_id: str
    age_band: str


class OutcomeRequest(BaseModel):
    estimate_id: int = Field(gt=0)
    admitted: bool


class OutcomeResponse(BaseModel):
    status: str
    estimate_id: int


class CalibrationMetadataResponse(BaseModel):
    method: str
    model_version: str
    fitted_at: str
    fitted_rows: int = Field(ge=0)


def _run_estimate(
    service: AdmissionEstimationService,
    payload: AdmissionEstimateRequest,
    user_id: str,
):
    _check_request_bounds(service.settings, payload.age_band, payload.waiting_position)
    try:
        return service.estimate(
            user_id=user_id,
            facility_id=payload.facility_id,
            child_id=payload.child_id,
            age_band=payload.age_band,
            waiting_position=payload.waiting_position,
            priority_type=payload.priority_type,
            additional_priorities=payload.additional_priorities,
            target_date=payload.target_date,
            reference_date=payload.reference_date,
        )
    except AdmissionValidationError as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=str(exc),
        ) from exc
    except FacilityNotFoundError as exc:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=str(exc),
        ) from exc
    except NumericDomainError as exc:
        logger.exception("Admission computation failed in numeric evaluation")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Admission computation failed",
        ) from exc
    except Exception as exc:  # pragma: no cover
        logger.exception("Unexpected admission estimation failure")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to estimate admission likelihood",
        ) from exc


@router.post(
    "/admission/estimate",
    response_model=AdmissionEstimateResponse,
    status_code=status.HTTP_200_OK,
)
async def estimate_admission(
    payload: AdmissionEstimateRequest,
    user_id: str = Depends(require_user_id),
    service: AdmissionEstimationService = Depends(get_admission_service),
) -> AdmissionEstimateResponse:
    """Estimate the admission probability and append it to the user's history."""
    result = _run_estimate(service, payload, user_id)
    return AdmissionEstimateResponse(**result.to_dict())


@router.post(
    "/admission/summary",
    response_model=SummaryResponse,
    status_code=status.HTTP_200_OK,
)
async def summarize_admission(
    payload: AdmissionEstimateRequest,
    user_id: str = Depends(require_user_id),
    service: AdmissionEstimationService = Depends(get_admission_service),
) -> SummaryResponse:
    result = _run_estimate(service, payload, user_id)
    return SummaryResponse(message=format_estimate_summary(result))


@router.get(
    "/admission/history",
    response_model=HistoryResponse,
    status_code=status.HTTP_200_OK,
)
async def admission_history(
    user_id: str = Depends(require_user_id),
    service: AdmissionEstimationService = Depends(get_admission_service),
) -> HistoryResponse:
    """Most recent estimates first."""
    return HistoryResponse(**service.fetch_history(user_id))


@router.post(
    "/turnover_records",
    response_model=TurnoverRecordResponse,
    status_code=status.HTTP_201_CREATED,
)
async def ingest_turnover_record(
    payload: TurnoverRecordRequest,
    service: AdmissionEstimationService = Depends(get_admission_service),
) -> TurnoverRecordResponse:
    _check_request_bounds(service.settings, payload.age_band)
    record = FacilityTurnoverRecord(
        facility_id=payload.facility_id,
        age_band=payload.age_band,
        observed_vacancies=payload.observed_vacancies,
        observation_window_days=payload.observation_window_days,
    )
    try:
        record_id = service.ingest_turnover_record(record)
    except AdmissionValidationError as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=str(exc),
        ) from exc
    except FacilityNotFoundError as exc:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=str(exc),
        ) from exc
    return TurnoverRecordResponse(
        id=record_id,
        facility_id=record.facility_id,
        age_band=record.age_band,
    )


@router.post(
    "/admission/outcomes",
    response_model=OutcomeResponse,
    status_code=status.HTTP_201_CREATED,
)
async def record_outcome(
    payload: OutcomeRequest,
    service: AdmissionEstimationService = Depends(get_admission_service),
) -> OutcomeResponse:
    try:
        service.record_outcome(payload.estimate_id, payload.admitted)
    except EstimateNotFoundError as exc:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=str(exc),
        ) from exc
    except OutcomeAlreadyRecordedError as exc:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=str(exc),
        ) from exc
    return OutcomeResponse(status="RECORDED", estimate_id=payload.estimate_id)


@router.get(
    "/calibration",
    response_model=CalibrationMetadataResponse,
    status_code=status.HTTP_200_OK,
)
async def calibration_metadata(
    service: CalibrationService = Depends(get_calibration_service),
) -> CalibrationMetadataResponse:
    return CalibrationMetadataResponse(**service.get_metadata())


@router.post(
    "/calibration/refit",
    response_model=CalibrationMetadataResponse,
    status_code=status.HTTP_200_OK,
)
async def refit_calibration(
    service: CalibrationService = Depends(get_calibration_service),
) -> CalibrationMetadataResponse:
    return CalibrationMetadataResponse(**service.refit().to_dict())


@router.get("/health", status_code=status.HTTP_200_OK)
async def health(request: Request) -> dict[str, str]:
    settings = getattr(request.app.state, "settings", None) or get_settings()
    return {"status": "ok", "version": settings.app_version}
