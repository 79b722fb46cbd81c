"""Negative-Binomial posterior-predictive admission scoring."""

from __future__ import annotations

import math

import numpy as np
from scipy import special

from admission_engine.domain.constraints import EngineConfig
from admission_engine.domain.errors import AdmissionValidationError, NumericDomainError
from admission_engine.domain.models import GammaPosterior
from admission_engine.utils.logger import get_logger


logger = get_logger(__name__)


GRADE_THRESHOLDS: tuple[tuple[float, str], ...] = (
    (0.8, "A"),
    (0.6, "B"),
    (0.4, "C"),
    (0.2, "D"),
)


def clamp(value: float, lower: float, upper: float) -> float:
    return max(lower, min(upper, value))


def sigmoid(value: float) -> float:
    return 1.0 / (1.0 + math.exp(-value))


def probability_to_grade(probability: float) -> str:
    for threshold, grade in GRADE_THRESHOLDS:
        if probability >= threshold:
            return grade
    return "F"


def posterior_confidence(posterior: GammaPosterior) -> float:
    """Map the posterior coefficient of variation onto (0, 1)."""
    mean = posterior.mean_rate
    cv = math.sqrt(posterior.variance) / mean if mean > 0 else 1.0
    return round(sigmoid(1.0 - 3.0 * cv), 2)


class AdmissionScorer:
    """Evaluates P(at least k vacancies within the horizon).

    Vacancies follow Poisson(lambda * H) with lambda ~ Gamma(alpha, beta), so
    the count is NegativeBinomial(r=alpha, p=beta / (beta + H)). The applicant
    at rank ``k`` is admitted iff the count reaches ``k``::

        P = 1 - F_NB(k - 1; r, p) = I_{1-p}(k, r)

    The right-hand side is the regularized incomplete beta function, which
    avoids cancellation in ``1 - F`` when the CDF is close to one.
    """

    def __init__(self, config: EngineConfig) -> None:
        self._config = config

    def _guarded_parameters(self, posterior: GammaPosterior) -> tuple[float, float]:
        epsilon = self._config.numeric_epsilon
        alpha = float(posterior.alpha)
        beta = float(posterior.beta)
        if not (math.isfinite(alpha) and math.isfinite(beta)):
            raise NumericDomainError(
                f"posterior parameters must be finite (alpha={alpha}, beta={beta})"
            )
        if alpha < epsilon or beta < epsilon:
            logger.warning(
                "Posterior parameters clamped to epsilon | alpha=%s | beta=%s | epsilon=%s",
                alpha,
                beta,
                epsilon,
            )
        return max(alpha, epsilon), max(beta, epsilon)

    def _predictive_parameters(
        self,
        posterior: GammaPosterior,
        horizon_days: float,
    ) -> tuple[float, float, float]:
        if horizon_days <= 0:
            raise AdmissionValidationError("horizon_days must be > 0")
        r, beta = self._guarded_parameters(posterior)
        horizon = float(horizon_days)
        p = beta / (beta + horizon)
        q = horizon / (beta + horizon)
        if not (math.isfinite(p) and math.isfinite(q)) or not 0.0 < q <= 1.0:
            raise NumericDomainError(
                f"negative binomial success probability out of range (r={r}, p={p})"
            )
        return r, p, q

    def negative_binomial_parameters(
        self,
        posterior: GammaPosterior,
        horizon_days: float,
    ) -> tuple[float, float]:
        """Return ``(r, p)`` of the vacancy-count predictive distribution."""
        r, p, _ = self._predictive_parameters(posterior, horizon_days)
        return r, p

    def expected_vacancies(self, posterior: GammaPosterior, horizon_days: float) -> float:
        alpha, beta = self._guarded_parameters(posterior)
        return alpha / beta * float(horizon_days)

    def score(
        self,
        posterior: GammaPosterior,
        effective_position: float,
        horizon_days: float,
    ) -> float:
        if not effective_position >= 1.0:
            raise AdmissionValidationError("effective_position must be >= 1")
        r, p, q = self._predictive_parameters(posterior, horizon_days)
        k = math.ceil(effective_position)

        probability = float(special.betainc(float(k), r, q))
        if np.isnan(probability):
            raise NumericDomainError(
                f"negative binomial tail evaluated to NaN (k={k}, r={r}, p={p})"
            )
        return clamp(probability, 0.0, 1.0)
