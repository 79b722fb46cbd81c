"""Environment-driven application settings."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from functools import lru_cache
from pathlib import Path


DEFAULT_PRIORITY_WEIGHTS: dict[str, int] = {
    "general": 0,
    "dual_income": 3,
    "sibling": 4,
    "multi_child": 5,
    "low_income": 6,
    "single_parent": 7,
    "disability": 8,
}

DEFAULT_AGE_BANDS: tuple[str, ...] = ("0", "1", "2", "3", "4", "5")

# Flat profile: exposure equals calendar days.
DEFAULT_SEASONAL_MULTIPLIERS: dict[int, float] = {month: 1.0 for month in range(1, 13)}


def _env_str(name: str, default: str) -> str:
    return os.getenv(name, default)


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    return int(raw)


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    return float(raw)


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


@dataclass(frozen=True)
class Settings:
    app_name: str = "Admission Likelihood Engine"
    app_version: str = "1.0.0"
    log_level: str = "INFO"
    database_path: Path = Path("data/admission_engine.db")
    api_host: str = "127.0.0.1"
    api_port: int = 8000
    api_reload: bool = False

    prior_alpha0: float = 1.0
    prior_beta0: float = 1.0
    priority_weights: dict[str, int] = field(
        default_factory=lambda: dict(DEFAULT_PRIORITY_WEIGHTS)
    )
    age_bands: tuple[str, ...] = DEFAULT_AGE_BANDS
    seasonal_multipliers: dict[int, float] = field(
        default_factory=lambda: dict(DEFAULT_SEASONAL_MULTIPLIERS)
    )
    numeric_epsilon: float = 1e-9

    waiting_position_max: int = 500
    default_horizon_days: int = 180
    max_horizon_days: int = 3650
    wait_search_step_days: int = 30
    wait_search_max_days: int = 720
    history_page_size: int = 20
    posterior_cache_enabled: bool = True

    calibration_min_outcomes: int = 20
    calibration_model_version: str = "v1"

    synthetic_random_seed: int = 42
    synthetic_facility_count: int = 8
    synthetic_windows_per_band: int = 6
    synthetic_window_days: int = 30


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Build settings once per process from environment overrides."""
    return Settings(
        app_name=_env_str("APP_NAME", Settings.app_name),
        app_version=_env_str("APP_VERSION", Settings.app_version),
        log_level=_env_str("LOG_LEVEL", Settings.log_level),
        database_path=Path(_env_str("DATABASE_PATH", str(Settings.database_path))),
        api_host=_env_str("API_HOST", Settings.api_host),
        api_port=_env_int("API_PORT", Settings.api_port),
        api_reload=_env_bool("API_RELOAD", Settings.api_reload),
        prior_alpha0=_env_float("PRIOR_ALPHA0", Settings.prior_alpha0),
        prior_beta0=_env_float("PRIOR_BETA0", Settings.prior_beta0),
        numeric_epsilon=_env_float("NUMERIC_EPSILON", Settings.numeric_epsilon),
        waiting_position_max=_env_int("WAITING_POSITION_MAX", Settings.waiting_position_max),
        default_horizon_days=_env_int("DEFAULT_HORIZON_DAYS", Settings.default_horizon_days),
        max_horizon_days=_env_int("MAX_HORIZON_DAYS", Settings.max_horizon_days),
        wait_search_step_days=_env_int("WAIT_SEARCH_STEP_DAYS", Settings.wait_search_step_days),
        wait_search_max_days=_env_int("WAIT_SEARCH_MAX_DAYS", Settings.wait_search_max_days),
        history_page_size=_env_int("HISTORY_PAGE_SIZE", Settings.history_page_size),
        posterior_cache_enabled=_env_bool(
            "POSTERIOR_CACHE_ENABLED",
            Settings.posterior_cache_enabled,
        ),
        calibration_min_outcomes=_env_int(
            "CALIBRATION_MIN_OUTCOMES",
            Settings.calibration_min_outcomes,
        ),
        calibration_model_version=_env_str(
            "CALIBRATION_MODEL_VERSION",
            Settings.calibration_model_version,
        ),
        synthetic_random_seed=_env_int("SYNTHETIC_RANDOM_SEED", Settings.synthetic_random_seed),
    )
