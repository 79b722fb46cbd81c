"""ASGI entry point for the admission likelihood engine.

``create_app`` builds the repository, the calibration service and the
estimation service, stores them on ``app.state`` and mounts the admission
router. Startup prepares the SQLite schema, seeds synthetic turnover when
the store is empty and fits the score calibration.

    python main.py
    uvicorn app:app --reload
"""

from __future__ import annotations

from contextlib import asynccontextmanager

from fastapi import FastAPI

from admission_engine.controllers.admission_controller import router as admission_router
from admission_engine.repository.data_repository import DataRepository
from admission_engine.services.admission_service import AdmissionEstimationService
from admission_engine.services.calibration_service import CalibrationService
from admission_engine.utils.config import Settings, get_settings
from admission_engine.utils.logger import get_logger


logger = get_logger(__name__)


def create_app(settings: Settings | None = None) -> FastAPI:
    """Return a wired application; pass ``settings`` to point at another database."""
    settings = settings or get_settings()

    repository = DataRepository(settings)
    calibration_service = CalibrationService(
        repository=repository,
        settings=settings,
    )
    admission_service = AdmissionEstimationService(
        repository=repository,
        settings=settings,
        calibration_service=calibration_service,
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        _prepare_state(app)
        yield

    app = FastAPI(
        title=settings.app_name,
        version=settings.app_version,
        lifespan=lifespan,
    )
    app.include_router(admission_router)

    app.state.settings = settings
    app.state.repository = repository
    app.state.calibration_service = calibration_service
    app.state.admission_service = admission_service
    return app


def _prepare_state(app: FastAPI) -> None:
    """Schema, then seed, then calibration (it reads stored outcomes)."""
    settings: Settings = app.state.settings
    repository: DataRepository = app.state.repository
    calibration_service: CalibrationService = app.state.calibration_service

    logger.info("Preparing admission store | database=%s", settings.database_path)
    repository.initialize_database()
    repository.seed_synthetic_data()
    logger.info(
        "Turnover history available | records=%s",
        repository.count_turnover_records(),
    )

    metadata = calibration_service.fit()
    logger.info(
        "Admission engine ready | calibration=%s | outcomes=%s",
        metadata.method,
        metadata.fitted_rows,
    )


app = create_app()
