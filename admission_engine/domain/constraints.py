"""Immutable engine configuration and its validation rules."""

from __future__ import annotations

from dataclasses import dataclass
from types import MappingProxyType
from typing import Mapping

from admission_engine.domain.models import PriorityCategory
from admission_engine.utils.config import Settings


@dataclass(frozen=True)
class EngineConfig:
    prior_alpha0: float
    prior_beta0: float
    priority_weights: Mapping[PriorityCategory, int]
    age_bands: tuple[str, ...]
    seasonal_multipliers: Mapping[int, float]
    numeric_epsilon: float

    @classmethod
    def from_settings(cls, settings: Settings) -> "EngineConfig":
        config = cls(
            prior_alpha0=settings.prior_alpha0,
            prior_beta0=settings.prior_beta0,
            priority_weights=MappingProxyType(
                {
                    PriorityCategory(name): int(weight)
                    for name, weight in settings.priority_weights.items()
                }
            ),
            age_bands=tuple(settings.age_bands),
            seasonal_multipliers=MappingProxyType(
                {int(month): float(value) for month, value in settings.seasonal_multipliers.items()}
            ),
            numeric_epsilon=settings.numeric_epsilon,
        )
        validate_engine_config(config)
        return config

    def weight_of(self, category: PriorityCategory) -> int:
        return self.priority_weights[category]


def validate_engine_config(config: EngineConfig) -> None:
    if config.prior_alpha0 <= 0.0:
        raise ValueError("prior_alpha0 must be > 0")
    if config.prior_beta0 <= 0.0:
        raise ValueError("prior_beta0 must be > 0")
    missing = set(PriorityCategory) - set(config.priority_weights)
    if missing:
        names = ", ".join(sorted(category.value for category in missing))
        raise ValueError(f"priority_weights is missing categories: {names}")
    if any(weight < 0 for weight in config.priority_weights.values()):
        raise ValueError("priority_weights values must be >= 0")
    if config.priority_weights[PriorityCategory.GENERAL] != 0:
        raise ValueError("general priority weight must be 0")
    if not config.age_bands:
        raise ValueError("age_bands must contain at least one band")
    if set(config.seasonal_multipliers) != set(range(1, 13)):
        raise ValueError("seasonal_multipliers must define months 1-12")
    if any(value <= 0.0 for value in config.seasonal_multipliers.values()):
        raise ValueError("seasonal_multipliers values must be > 0")
    if not 0.0 < config.numeric_epsilon < 1.0:
        raise ValueError("numeric_epsilon must be in (0, 1)")
