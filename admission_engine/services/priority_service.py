"""Translation of declared priority categories into an effective queue rank."""

from __future__ import annotations

from admission_engine.domain.constraints import EngineConfig
from admission_engine.domain.errors import AdmissionValidationError
from admission_engine.domain.models import PriorityProfile


class PriorityResolver:
    """Applies the strongest declared priority as a deterministic rank shift."""

    def __init__(self, config: EngineConfig) -> None:
        self._config = config

    def profile_weight(self, profile: PriorityProfile) -> int:
        categories = {profile.primary_category, *profile.additional_categories}
        return max(self._config.weight_of(category) for category in categories)

    def resolve_effective_position(self, raw_position: int, profile: PriorityProfile) -> float:
        if raw_position < 1:
            raise AdmissionValidationError("waiting_position must be >= 1")
        weight = self.profile_weight(profile)
        return float(max(1, raw_position - weight))
