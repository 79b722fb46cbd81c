"""Domain models for turnover history, posteriors and admission estimates."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Optional


class PriorityCategory(str, Enum):
    GENERAL = "general"
    LOW_INCOME = "low_income"
    SINGLE_PARENT = "single_parent"
    DISABILITY = "disability"
    MULTI_CHILD = "multi_child"
    SIBLING = "sibling"
    DUAL_INCOME = "dual_income"


@dataclass(frozen=True)
class Facility:
    facility_id: str
    name: str
    capacity: int


@dataclass(frozen=True)
class FacilityTurnoverRecord:
    facility_id: str
    age_band: str
    observed_vacancies: int
    observation_window_days: int


@dataclass(frozen=True)
class GammaPosterior:
    """Shape/rate parameters of the seat-opening rate."""

    alpha: float
    beta: float

    @property
    def mean_rate(self) -> float:
        return self.alpha / self.beta

    @property
    def variance(self) -> float:
        return self.alpha / (self.beta**2)


@dataclass(frozen=True)
class PriorityProfile:
    primary_category: PriorityCategory = PriorityCategory.GENERAL
    additional_categories: frozenset[PriorityCategory] = frozenset()


@dataclass(frozen=True)
class AdmissionQuery:
    facility_id: str
    child_id: str
    age_band: str
    raw_waiting_position: int
    priority_profile: PriorityProfile
    target_horizon_days: int


@dataclass(frozen=True)
class EvidenceCard:
    type: str
    summary: str
    source_count: int
    confidence: float
    data_points: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.type,
            "summary": self.summary,
            "source_count": self.source_count,
            "confidence": self.confidence,
            "data_points": dict(self.data_points),
        }


@dataclass(frozen=True)
class AdmissionEstimate:
    probability: float
    effective_position: float
    posterior_alpha: float
    posterior_beta: float
    horizon_days: int
    exposure_days: float
    computed_at: datetime
    admission_score: int = 1
    grade: str = "F"
    confidence: float = 0.0
    low_confidence: bool = True
    estimated_wait_days_median: Optional[int] = None
    estimated_wait_days_80th: Optional[int] = None
    evidence: tuple[EvidenceCard, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        return {
            "probability": self.probability,
            "effective_position": self.effective_position,
            "posterior_alpha": self.posterior_alpha,
            "posterior_beta": self.posterior_beta,
            "horizon_days": self.horizon_days,
            "exposure_days": self.exposure_days,
            "computed_at": self.computed_at.isoformat(),
            "admission_score": self.admission_score,
            "grade": self.grade,
            "confidence": self.confidence,
            "low_confidence": self.low_confidence,
            "estimated_wait_days_median": self.estimated_wait_days_median,
            "estimated_wait_days_80th": self.estimated_wait_days_80th,
            "evidence": [card.to_dict() for card in self.evidence],
        }


@dataclass(frozen=True)
class EstimateRecord:
    """Persisted history row for one computed estimate."""

    estimate_id: int
    user_id: str
    facility_id: str
    child_id: str
    age_band: str
    priority_type: str
    additional_priorities: list[str]
    raw_waiting_position: int
    effective_position: float
    probability: float
    admission_score: int
    grade: str
    confidence: float
    posterior_alpha: float
    posterior_beta: float
    horizon_days: int
    exposure_days: float
    estimated_wait_days_median: Optional[int]
    estimated_wait_days_80th: Optional[int]
    computed_at: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.estimate_id,
            "user_id": self.user_id,
            "facility_id": self.facility_id,
            "child_id": self.child_id,
            "age_band": self.age_band,
            "priority_type": self.priority_type,
            "additional_priorities": list(self.additional_priorities),
            "raw_waiting_position": self.raw_waiting_position,
            "effective_position": self.effective_position,
            "probability": self.probability,
            "admission_score": self.admission_score,
            "grade": self.grade,
            "confidence": self.confidence,
            "posterior_alpha": self.posterior_alpha,
            "posterior_beta": self.posterior_beta,
            "horizon_days": self.horizon_days,
            "exposure_days": self.exposure_days,
            "estimated_wait_days_median": self.estimated_wait_days_median,
            "estimated_wait_days_80th": self.estimated_wait_days_80th,
            "computed_at": self.computed_at,
        }


@dataclass(frozen=True)
class CalibrationRow:
    probability: float
    admitted: int
