"""Admission likelihood estimation workflow and history recording."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, timezone
from typing import Any, Iterable, Optional

from admission_engine.domain.constraints import EngineConfig
from admission_engine.domain.errors import AdmissionError, AdmissionValidationError
from admission_engine.domain.models import (
    AdmissionEstimate,
    AdmissionQuery,
    EvidenceCard,
    FacilityTurnoverRecord,
    PriorityCategory,
    PriorityProfile,
)
from admission_engine.repository.data_repository import DataRepository
from admission_engine.services.calibration_service import CalibrationService
from admission_engine.services.horizon_service import HorizonEstimator
from admission_engine.services.prior_service import (
    PosteriorCache,
    PosteriorSnapshot,
    PriorAggregator,
    validate_turnover_record,
)
from admission_engine.services.priority_service import PriorityResolver
from admission_engine.services.scoring_service import (
    AdmissionScorer,
    posterior_confidence,
    probability_to_grade,
)
from admission_engine.utils.config import Settings, get_settings
from admission_engine.utils.logger import get_logger


logger = get_logger(__name__)


class FacilityNotFoundError(AdmissionError):
    """Raised when a facility id does not exist in persisted state."""


class EstimateNotFoundError(AdmissionError):
    """Raised when an outcome references an unknown estimate."""


class OutcomeAlreadyRecordedError(AdmissionError):
    """Raised when an estimate already has its observed outcome."""


MEDIAN_WAIT_THRESHOLD = 0.5
EIGHTIETH_WAIT_THRESHOLD = 0.8


@dataclass(frozen=True)
class EstimationResult:
    """Estimate plus the identifiers it was computed and stored under."""

    estimate_id: Optional[int]
    facility_id: str
    facility_name: str
    child_id: str
    age_band: str
    raw_waiting_position: int
    estimate: AdmissionEstimate

    def to_dict(self) -> dict[str, Any]:
        payload = {
            "id": self.estimate_id,
            "facility_id": self.facility_id,
            "facility_name": self.facility_name,
            "child_id": self.child_id,
            "age_band": self.age_band,
            "raw_waiting_position": self.raw_waiting_position,
        }
        payload.update(self.estimate.to_dict())
        return payload


def format_estimate_summary(result: EstimationResult) -> str:
    """Render a short plain-text summary for chat and notification channels."""
    estimate = result.estimate
    lines = [
        (
            f"Admission probability within {estimate.horizon_days} days: "
            f"{round(estimate.probability * 100)}% (grade {estimate.grade}, "
            f"score {estimate.admission_score}, confidence {round(estimate.confidence * 100)}%)"
        ),
        "",
        "Evidence:",
    ]
    lines.extend(f"- {card.summary}" for card in estimate.evidence)
    lines.append("")
    median = estimate.estimated_wait_days_median
    eightieth = estimate.estimated_wait_days_80th
    if median is None:
        lines.append("Expected wait: beyond the forecast window")
    elif eightieth is None:
        lines.append(f"Expected wait: about {median} days (80% beyond the forecast window)")
    else:
        lines.append(f"Expected wait: about {median} days (80% within {eightieth} days)")
    return "\n".join(lines)


class AdmissionEstimationService:
    """Runs priority -> posterior -> horizon -> score and records the result."""

    def __init__(
        self,
        repository: Optional[DataRepository] = None,
        settings: Optional[Settings] = None,
        calibration_service: Optional[CalibrationService] = None,
        config: Optional[EngineConfig] = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._repository = repository or DataRepository(self._settings)
        self._calibration_service = calibration_service or CalibrationService(
            repository=self._repository,
            settings=self._settings,
        )
        self._config = config or EngineConfig.from_settings(self._settings)
        self._aggregator = PriorAggregator(self._config)
        self._priority_resolver = PriorityResolver(self._config)
        self._horizon_estimator = HorizonEstimator(self._config)
        self._scorer = AdmissionScorer(self._config)
        self._posterior_cache: Optional[PosteriorCache] = (
            PosteriorCache() if self._settings.posterior_cache_enabled else None
        )

    @property
    def settings(self) -> Settings:
        return self._settings

    @property
    def config(self) -> EngineConfig:
        return self._config

    def _parse_category(self, value: str | PriorityCategory) -> PriorityCategory:
        try:
            return PriorityCategory(value)
        except ValueError as exc:
            allowed = ", ".join(category.value for category in PriorityCategory)
            raise AdmissionValidationError(
                f"unknown priority category '{value}'; expected one of: {allowed}"
            ) from exc

    def build_priority_profile(
        self,
        priority_type: str | PriorityCategory | None,
        additional_priorities: Optional[Iterable[str | PriorityCategory]] = None,
    ) -> PriorityProfile:
        primary = self._parse_category(priority_type or PriorityCategory.GENERAL)
        additional = frozenset(
            self._parse_category(value) for value in (additional_priorities or [])
        )
        return PriorityProfile(primary_category=primary, additional_categories=additional)

    def _validate_age_band(self, age_band: str) -> None:
        if age_band not in self._config.age_bands:
            allowed = ", ".join(self._config.age_bands)
            raise AdmissionValidationError(
                f"unknown age_band '{age_band}'; expected one of: {allowed}"
            )

    def build_query(
        self,
        *,
        facility_id: str,
        child_id: str,
        age_band: str,
        waiting_position: int,
        priority_type: str | PriorityCategory | None = None,
        additional_priorities: Optional[Iterable[str | PriorityCategory]] = None,
        target_date: Optional[date] = None,
        reference_date: Optional[date] = None,
    ) -> tuple[AdmissionQuery, date]:
        """Validate raw request fields and resolve the horizon."""
        if not facility_id or not facility_id.strip():
            raise AdmissionValidationError("facility_id must be a non-empty identifier")
        if not child_id or not child_id.strip():
            raise AdmissionValidationError("child_id must be a non-empty identifier")
        self._validate_age_band(age_band)
        if not 1 <= waiting_position <= self._settings.waiting_position_max:
            raise AdmissionValidationError(
                f"waiting_position must be between 1 and {self._settings.waiting_position_max}"
            )
        profile = self.build_priority_profile(priority_type, additional_priorities)

        resolved_reference = reference_date or datetime.now(timezone.utc).date()
        if target_date is None:
            horizon_days = self._settings.default_horizon_days
        else:
            horizon_days = self._horizon_estimator.compute_horizon_days(
                target_date=target_date,
                reference_date=resolved_reference,
            )
        if horizon_days > self._settings.max_horizon_days:
            raise AdmissionValidationError(
                f"horizon must not exceed {self._settings.max_horizon_days} days"
            )

        query = AdmissionQuery(
            facility_id=facility_id,
            child_id=child_id,
            age_band=age_band,
            raw_waiting_position=waiting_position,
            priority_profile=profile,
            target_horizon_days=horizon_days,
        )
        return query, resolved_reference

    def get_posterior_snapshot(self, facility_id: str, age_band: str) -> PosteriorSnapshot:
        cache = self._posterior_cache
        if cache is None:
            records = self._repository.list_turnover_records(facility_id, age_band)
            return self._aggregator.summarize(records)

        # Read the version first so a concurrent write can only cause a miss.
        version = self._repository.turnover_version(facility_id, age_band)
        cached = cache.get(facility_id, age_band, version)
        if cached is not None:
            return cached
        records = self._repository.list_turnover_records(facility_id, age_band)
        snapshot = self._aggregator.summarize(records)
        cache.put(facility_id, age_band, snapshot, version)
        return snapshot

    def ingest_turnover_record(self, record: FacilityTurnoverRecord) -> int:
        """Persist one turnover window and drop the stale cached posterior."""
        validate_turnover_record(record)
        self._validate_age_band(record.age_band)
        if self._repository.get_facility(record.facility_id) is None:
            raise FacilityNotFoundError(f"facility_id {record.facility_id} not found")

        record_id = self._repository.add_turnover_record(record)
        if self._posterior_cache is not None:
            self._posterior_cache.invalidate(record.facility_id, record.age_band)
        logger.info(
            "Turnover record ingested | facility_id=%s | age_band=%s | vacancies=%s | window_days=%s",
            record.facility_id,
            record.age_band,
            record.observed_vacancies,
            record.observation_window_days,
        )
        return record_id

    def _estimate_wait_days(
        self,
        snapshot: PosteriorSnapshot,
        effective_position: float,
        reference_date: date,
    ) -> tuple[Optional[int], Optional[int]]:
        median: Optional[int] = None
        eightieth: Optional[int] = None
        step = self._settings.wait_search_step_days
        for horizon_days in range(step, self._settings.wait_search_max_days + 1, step):
            exposure = self._horizon_estimator.effective_exposure_days(
                reference_date,
                horizon_days,
            )
            probability = self._scorer.score(snapshot.posterior, effective_position, exposure)
            if median is None and probability >= MEDIAN_WAIT_THRESHOLD:
                median = horizon_days
            if probability >= EIGHTIETH_WAIT_THRESHOLD:
                eightieth = horizon_days
                break
        return median, eightieth

    def _build_evidence(
        self,
        query: AdmissionQuery,
        snapshot: PosteriorSnapshot,
        effective_position: float,
        exposure_days: float,
        expected_vacancies: float,
    ) -> tuple[EvidenceCard, ...]:
        posterior = snapshot.posterior
        if snapshot.has_history:
            observed_rate = snapshot.total_vacancies / snapshot.total_window_days
            turnover_card = EvidenceCard(
                type="turnover_history",
                summary=(
                    f"{snapshot.total_vacancies} vacancies over {snapshot.total_window_days} "
                    f"observed days ({observed_rate:.4f}/day)"
                ),
                source_count=snapshot.record_count,
                confidence=0.85 if snapshot.record_count >= 6 else 0.55,
                data_points={
                    "records": snapshot.record_count,
                    "observed_vacancies": snapshot.total_vacancies,
                    "observation_window_days": snapshot.total_window_days,
                    "observed_rate": observed_rate,
                    "method": "gamma_posterior",
                    "alpha_post": posterior.alpha,
                    "beta_post": posterior.beta,
                },
            )
        else:
            turnover_card = EvidenceCard(
                type="turnover_history",
                summary=(
                    "No turnover history; prior-only estimate "
                    f"(alpha0={posterior.alpha:g}, beta0={posterior.beta:g})"
                ),
                source_count=0,
                confidence=0.3,
                data_points={
                    "records": 0,
                    "observed_vacancies": 0,
                    "observation_window_days": 0,
                    "observed_rate": 0.0,
                    "method": "gamma_prior",
                    "alpha_post": posterior.alpha,
                    "beta_post": posterior.beta,
                },
            )

        seasonal_card = EvidenceCard(
            type="seasonal_factor",
            summary=(
                f"{query.target_horizon_days}-day horizon weighted to "
                f"{exposure_days:.1f} exposure days"
            ),
            source_count=1,
            confidence=0.95,
            data_points={
                "horizon_days": query.target_horizon_days,
                "exposure_days": exposure_days,
            },
        )

        weight = self._priority_resolver.profile_weight(query.priority_profile)
        queue_card = EvidenceCard(
            type="queue_position",
            summary=(
                f"Waiting position {query.raw_waiting_position} "
                f"(effective {effective_position:g} after priority weight {weight}), "
                f"{expected_vacancies:.1f} openings expected"
            ),
            source_count=max(1, snapshot.record_count),
            confidence=0.75 if snapshot.record_count >= 3 else 0.4,
            data_points={
                "raw_position": query.raw_waiting_position,
                "effective_position": effective_position,
                "priority_weight": weight,
                "expected_vacancies": expected_vacancies,
            },
        )
        return turnover_card, seasonal_card, queue_card

    def estimate_query(self, query: AdmissionQuery, reference_date: date) -> AdmissionEstimate:
        """Compute an estimate without touching the history store."""
        effective_position = self._priority_resolver.resolve_effective_position(
            query.raw_waiting_position,
            query.priority_profile,
        )
        snapshot = self.get_posterior_snapshot(query.facility_id, query.age_band)
        exposure_days = self._horizon_estimator.effective_exposure_days(
            reference_date,
            query.target_horizon_days,
        )
        probability = self._scorer.score(snapshot.posterior, effective_position, exposure_days)
        expected_vacancies = self._scorer.expected_vacancies(snapshot.posterior, exposure_days)
        median, eightieth = self._estimate_wait_days(snapshot, effective_position, reference_date)

        estimate = AdmissionEstimate(
            probability=probability,
            effective_position=effective_position,
            posterior_alpha=snapshot.posterior.alpha,
            posterior_beta=snapshot.posterior.beta,
            horizon_days=query.target_horizon_days,
            exposure_days=exposure_days,
            computed_at=datetime.now(timezone.utc),
            admission_score=self._calibration_service.admission_score(probability),
            grade=probability_to_grade(probability),
            confidence=posterior_confidence(snapshot.posterior),
            low_confidence=not snapshot.has_history,
            estimated_wait_days_median=median,
            estimated_wait_days_80th=eightieth,
            evidence=self._build_evidence(
                query,
                snapshot,
                effective_position,
                exposure_days,
                expected_vacancies,
            ),
        )
        logger.info(
            (
                "Admission estimate completed | facility_id=%s | age_band=%s | "
                "effective_position=%s | alpha=%.4f | beta=%.4f | horizon_days=%s | "
                "probability=%.6f"
            ),
            query.facility_id,
            query.age_band,
            effective_position,
            snapshot.posterior.alpha,
            snapshot.posterior.beta,
            query.target_horizon_days,
            probability,
        )
        return estimate

    def estimate(
        self,
        *,
        user_id: str,
        facility_id: str,
        child_id: str,
        age_band: str,
        waiting_position: int,
        priority_type: str | PriorityCategory | None = None,
        additional_priorities: Optional[Iterable[str | PriorityCategory]] = None,
        target_date: Optional[date] = None,
        reference_date: Optional[date] = None,
        persist: bool = True,
    ) -> EstimationResult:
        """Run the full estimation flow with optional history recording."""
        query, resolved_reference = self.build_query(
            facility_id=facility_id,
            child_id=child_id,
            age_band=age_band,
            waiting_position=waiting_position,
            priority_type=priority_type,
            additional_priorities=additional_priorities,
            target_date=target_date,
            reference_date=reference_date,
        )
        facility = self._repository.get_facility(query.facility_id)
        if facility is None:
            raise FacilityNotFoundError(f"facility_id {query.facility_id} not found")

        estimate = self.estimate_query(query, resolved_reference)

        estimate_id: Optional[int] = None
        if persist:
            estimate_id = self._repository.save_estimate(
                user_id=user_id,
                facility_id=query.facility_id,
                child_id=query.child_id,
                age_band=query.age_band,
                priority_type=query.priority_profile.primary_category.value,
                additional_priorities=[
                    category.value
                    for category in query.priority_profile.additional_categories
                ],
                raw_waiting_position=query.raw_waiting_position,
                estimate=estimate,
            )

        return EstimationResult(
            estimate_id=estimate_id,
            facility_id=facility.facility_id,
            facility_name=facility.name,
            child_id=query.child_id,
            age_band=query.age_band,
            raw_waiting_position=query.raw_waiting_position,
            estimate=estimate,
        )

    def fetch_history(self, user_id: str) -> dict[str, Any]:
        """Return the user's stored estimates, most recent first."""
        records = self._repository.list_estimates_for_user(
            user_id=user_id,
            limit=self._settings.history_page_size,
        )
        return {
            "results": [record.to_dict() for record in records],
            "total": len(records),
        }

    def record_outcome(self, estimate_id: int, admitted: bool) -> None:
        if self._repository.get_estimate(estimate_id) is None:
            raise EstimateNotFoundError(f"estimate_id {estimate_id} not found")
        if not self._repository.save_outcome(estimate_id, admitted):
            raise OutcomeAlreadyRecordedError(
                f"estimate_id {estimate_id} already has a recorded outcome"
            )
        logger.info(
            "Admission outcome recorded | estimate_id=%s | admitted=%s",
            estimate_id,
            admitted,
        )
