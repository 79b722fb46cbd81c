"""Exception roots shared by the admission services."""

from __future__ import annotations


class AdmissionError(Exception):
    """Base exception for admission estimation failures."""


class AdmissionValidationError(AdmissionError):
    """Raised when incoming estimation input violates its contract."""


class NumericDomainError(AdmissionError):
    """Raised when posterior parameters fall outside the evaluable range."""
