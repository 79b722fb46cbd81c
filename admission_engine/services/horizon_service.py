"""Calendar arithmetic for the observation horizon."""

from __future__ import annotations

from datetime import date, timedelta

from admission_engine.domain.constraints import EngineConfig
from admission_engine.domain.errors import AdmissionValidationError


class InvalidHorizonError(AdmissionValidationError):
    """Raised when the target date does not lie after the reference date."""


class HorizonEstimator:
    def __init__(self, config: EngineConfig) -> None:
        self._config = config

    def compute_horizon_days(self, target_date: date, reference_date: date) -> int:
        if target_date <= reference_date:
            raise InvalidHorizonError(
                f"target_date {target_date.isoformat()} must be after "
                f"reference_date {reference_date.isoformat()}"
            )
        return max(1, (target_date - reference_date).days)

    def effective_exposure_days(self, reference_date: date, horizon_days: int) -> float:
        """Sum the seasonal multiplier of every day inside the horizon.

        Day ``i`` of the horizon is ``reference_date + i`` for ``i`` in
        ``[1, horizon_days]``. A flat profile returns ``horizon_days``.
        """
        if horizon_days <= 0:
            raise InvalidHorizonError("horizon_days must be > 0")
        multipliers = self._config.seasonal_multipliers
        if all(value == 1.0 for value in multipliers.values()):
            return float(horizon_days)
        return float(
            sum(
                multipliers[(reference_date + timedelta(days=offset)).month]
                for offset in range(1, horizon_days + 1)
            )
        )
