"""Isotonic calibration of raw admission probabilities against outcomes."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from threading import RLock
from typing import Any, Optional

import numpy as np
import pandas as pd
from sklearn.isotonic import IsotonicRegression

from admission_engine.domain.models import CalibrationRow
from admission_engine.repository.data_repository import DataRepository
from admission_engine.utils.config import Settings, get_settings
from admission_engine.utils.logger import get_logger


logger = get_logger(__name__)

IDENTITY_METHOD = "identity"
ISOTONIC_METHOD = "isotonic_regression"


@dataclass(frozen=True)
class CalibrationMetadata:
    method: str
    model_version: str
    fitted_at: str
    fitted_rows: int

    def to_dict(self) -> dict[str, str | int]:
        return {
            "method": self.method,
            "model_version": self.model_version,
            "fitted_at": self.fitted_at,
            "fitted_rows": self.fitted_rows,
        }


class CalibrationService:
    """Maps raw probabilities onto observed admission frequencies."""

    def __init__(
        self,
        repository: Optional[DataRepository] = None,
        settings: Optional[Settings] = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._repository = repository or DataRepository(self._settings)
        self._model: Optional[IsotonicRegression] = None
        self._model_lock = RLock()
        self._metadata: Optional[CalibrationMetadata] = None

    def _build_training_frame(self, rows: list[CalibrationRow]) -> pd.DataFrame:
        frame = pd.DataFrame(
            [{"probability": row.probability, "admitted": row.admitted} for row in rows],
            columns=["probability", "admitted"],
        )
        if frame.empty:
            return frame
        frame = frame.dropna(subset=["probability", "admitted"])
        frame = frame[(frame["probability"] >= 0.0) & (frame["probability"] <= 1.0)]
        return frame.sort_values(by="probability").reset_index(drop=True)

    def fit(self) -> CalibrationMetadata:
        """Fit the calibration map, falling back to identity on sparse outcomes."""
        with self._model_lock:
            logger.info("Calibration fitting started")
            frame = self._build_training_frame(self._repository.list_calibration_rows())
            fitted_rows = int(len(frame))

            if fitted_rows < self._settings.calibration_min_outcomes:
                self._model = None
                method = IDENTITY_METHOD
                logger.warning(
                    "Calibration has %s outcomes (< %s). Falling back to %s",
                    fitted_rows,
                    self._settings.calibration_min_outcomes,
                    method,
                )
            else:
                model = IsotonicRegression(
                    y_min=0.0,
                    y_max=1.0,
                    increasing=True,
                    out_of_bounds="clip",
                )
                model.fit(
                    frame["probability"].to_numpy(dtype=float),
                    frame["admitted"].to_numpy(dtype=float),
                )
                self._model = model
                method = ISOTONIC_METHOD

            self._metadata = CalibrationMetadata(
                method=method,
                model_version=self._settings.calibration_model_version,
                fitted_at=datetime.now(timezone.utc).isoformat(),
                fitted_rows=fitted_rows,
            )
            logger.info(
                "Calibration fitting completed | rows=%s | method=%s | version=%s",
                fitted_rows,
                method,
                self._settings.calibration_model_version,
            )
            return self._metadata

    def refit(self) -> CalibrationMetadata:
        logger.info("Manual calibration refit requested")
        return self.fit()

    def calibrate(self, probability: float) -> float:
        with self._model_lock:
            if self._model is None:
                return float(np.clip(probability, 0.0, 1.0))
            calibrated = self._model.predict(np.array([probability], dtype=float))[0]
            return float(np.clip(calibrated, 0.0, 1.0))

    def admission_score(self, probability: float) -> int:
        """Calibrated display score in the closed range 1-99."""
        raw = int(round(100.0 * self.calibrate(probability)))
        return int(np.clip(raw, 1, 99))

    def get_metadata(self) -> dict[str, Any]:
        with self._model_lock:
            if self._metadata is None:
                return CalibrationMetadata(
                    method=IDENTITY_METHOD,
                    model_version=self._settings.calibration_model_version,
                    fitted_at="",
                    fitted_rows=0,
                ).to_dict()
            return dict(self._metadata.to_dict())
