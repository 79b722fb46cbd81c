#!/usr/bin/env python3
"""Check that this machine can run the admission engine end to end."""

from __future__ import annotations

import importlib
import shutil
import sys
import tempfile
from dataclasses import replace
from datetime import date, timedelta
from importlib.metadata import PackageNotFoundError, version
from pathlib import Path
from typing import Callable

PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from admission_engine.repository.data_repository import DataRepository
from admission_engine.services.admission_service import AdmissionEstimationService
from admission_engine.services.calibration_service import CalibrationService
from admission_engine.utils.config import Settings, get_settings

RULE = "=" * 44
MIN_PYTHON = (3, 10)
REQUIRED_DISTRIBUTIONS = (
    ("fastapi", "fastapi"),
    ("uvicorn", "uvicorn"),
    ("pydantic", "pydantic"),
    ("numpy", "numpy"),
    ("pandas", "pandas"),
    ("scipy", "scipy"),
    ("sklearn", "scikit-learn"),
    ("httpx", "httpx"),
    ("pytest", "pytest"),
)


def check_interpreter(_: Settings) -> str:
    found = sys.version.split()[0]
    if sys.version_info < MIN_PYTHON:
        raise RuntimeError(f"Python >= {MIN_PYTHON[0]}.{MIN_PYTHON[1]} required, found {found}")
    return f"Python {found}"


def check_distributions(_: Settings) -> str:
    missing = []
    for module_name, dist_name in REQUIRED_DISTRIBUTIONS:
        try:
            importlib.import_module(module_name)
            version(dist_name)
        except (ImportError, PackageNotFoundError) as exc:
            missing.append(f"{dist_name} ({exc})")
    if missing:
        raise RuntimeError("unavailable: " + "; ".join(missing))
    return f"{len(REQUIRED_DISTRIBUTIONS)} distributions importable"


def check_schema_and_seed(settings: Settings) -> str:
    repository = DataRepository(settings)
    repository.initialize_database()
    repository.seed_synthetic_data()
    expected = (
        settings.synthetic_facility_count
        * len(settings.age_bands)
        * settings.synthetic_windows_per_band
    )
    seeded = repository.count_turnover_records()
    if seeded != expected:
        raise RuntimeError(f"expected {expected} turnover rows, found {seeded}")
    return f"{seeded} synthetic turnover rows"


def check_estimate(settings: Settings) -> str:
    repository = DataRepository(settings)
    calibration_service = CalibrationService(repository=repository, settings=settings)
    calibration_service.fit()
    service = AdmissionEstimationService(
        repository=repository,
        settings=settings,
        calibration_service=calibration_service,
    )
    today = date.today()
    result = service.estimate(
        user_id="env-check",
        facility_id="facility-001",
        child_id="child-env",
        age_band=settings.age_bands[0],
        waiting_position=5,
        target_date=today + timedelta(days=90),
        reference_date=today,
        persist=False,
    )
    probability = result.estimate.probability
    if not 0.0 <= probability <= 1.0:
        raise RuntimeError(f"probability {probability} outside [0, 1]")
    return f"probability={probability:.4f} grade={result.estimate.grade}"


CHECKS: tuple[tuple[str, Callable[[Settings], str]], ...] = (
    ("Interpreter", check_interpreter),
    ("Dependencies", check_distributions),
    ("Schema and seed", check_schema_and_seed),
    ("Admission estimate", check_estimate),
)


def main() -> int:
    workdir = Path(tempfile.mkdtemp(prefix="admission-env-"))
    settings = replace(get_settings(), database_path=workdir / "admission_validation.db")
    lines: list[str] = []
    failures = 0
    try:
        for label, check in CHECKS:
            try:
                lines.append(f"[PASS] {label}: {check(settings)}")
            except Exception as exc:
                failures += 1
                lines.append(f"[FAIL] {label}: {exc}")
    finally:
        shutil.rmtree(workdir, ignore_errors=True)

    print(RULE)
    print(" Admission Engine Environment Validation")
    print(RULE)
    for line in lines:
        print(f" {line}")
    print(RULE)
    print(" Ready." if not failures else f" {failures} check(s) failed.")
    print(RULE)
    return 0 if not failures else 1


if __name__ == "__main__":
    raise SystemExit(main())
