"""Gamma-Poisson conjugate aggregation of historical seat turnover."""

from __future__ import annotations

from dataclasses import dataclass
from threading import RLock
from typing import Iterable, Optional, Sequence, Tuple

from admission_engine.domain.constraints import EngineConfig
from admission_engine.domain.errors import AdmissionValidationError
from admission_engine.domain.models import FacilityTurnoverRecord, GammaPosterior
from admission_engine.utils.logger import get_logger


logger = get_logger(__name__)

# (record count, highest record id) for one facility and age band.
TurnoverVersion = Tuple[int, int]


class TurnoverRecordError(AdmissionValidationError):
    """Raised when a turnover record carries impossible counts or windows."""


def validate_turnover_record(record: FacilityTurnoverRecord) -> None:
    if record.observed_vacancies < 0:
        raise TurnoverRecordError("observed_vacancies must be >= 0")
    if record.observation_window_days <= 0:
        raise TurnoverRecordError("observation_window_days must be > 0")


@dataclass(frozen=True)
class PosteriorSnapshot:
    """Posterior together with the history totals it was derived from."""

    posterior: GammaPosterior
    record_count: int
    total_vacancies: int
    total_window_days: int

    @property
    def has_history(self) -> bool:
        return self.record_count > 0


class PriorAggregator:
    """Folds turnover windows into the posterior of the seat-opening rate.

    Each record is an independent Poisson observation over its own window, so
    the conjugate update only needs the summed vacancies and summed exposure:
    ``alpha = alpha0 + sum(vacancies)`` and ``beta = beta0 + sum(window_days)``.
    """

    def __init__(self, config: EngineConfig) -> None:
        self._config = config

    def aggregate(self, records: Iterable[FacilityTurnoverRecord]) -> GammaPosterior:
        total_vacancies = 0
        total_window_days = 0
        for record in records:
            validate_turnover_record(record)
            total_vacancies += record.observed_vacancies
            total_window_days += record.observation_window_days

        # Integer sums keep the result independent of fold order.
        return GammaPosterior(
            alpha=self._config.prior_alpha0 + total_vacancies,
            beta=self._config.prior_beta0 + total_window_days,
        )

    def summarize(self, records: Sequence[FacilityTurnoverRecord]) -> PosteriorSnapshot:
        return PosteriorSnapshot(
            posterior=self.aggregate(records),
            record_count=len(records),
            total_vacancies=sum(record.observed_vacancies for record in records),
            total_window_days=sum(record.observation_window_days for record in records),
        )


class PosteriorCache:
    """Thread-safe memo of posteriors keyed by facility and age band.

    Every entry is tagged with the store version of its turnover history
    (see ``DataRepository.turnover_version``). A lookup only hits when the
    caller's freshly read version matches, so records written by another
    process or worker turn the entry into a miss.
    """

    def __init__(self) -> None:
        self._entries: dict[tuple[str, str], tuple[TurnoverVersion, PosteriorSnapshot]] = {}
        self._lock = RLock()

    def get(
        self,
        facility_id: str,
        age_band: str,
        version: TurnoverVersion,
    ) -> Optional[PosteriorSnapshot]:
        with self._lock:
            entry = self._entries.get((facility_id, age_band))
        if entry is None or entry[0] != version:
            return None
        return entry[1]

    def put(
        self,
        facility_id: str,
        age_band: str,
        snapshot: PosteriorSnapshot,
        version: TurnoverVersion,
    ) -> None:
        """``version`` must be read before the records behind ``snapshot``."""
        with self._lock:
            self._entries[(facility_id, age_band)] = (version, snapshot)

    def invalidate(self, facility_id: str, age_band: str) -> None:
        with self._lock:
            removed = self._entries.pop((facility_id, age_band), None)
        if removed is not None:
            logger.info(
                "Posterior cache invalidated | facility_id=%s | age_band=%s",
                facility_id,
                age_band,
            )

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
