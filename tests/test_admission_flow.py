from __future__ import annotations

from dataclasses import replace
from datetime import date

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from admission_engine.controllers.admission_controller import router
from admission_engine.domain.constraints import EngineConfig
from admission_engine.domain.errors import AdmissionValidationError
from admission_engine.domain.models import FacilityTurnoverRecord, GammaPosterior
from admission_engine.repository.data_repository import DataRepository
from admission_engine.services.admission_service import (
    AdmissionEstimationService,
    FacilityNotFoundError,
    OutcomeAlreadyRecordedError,
    format_estimate_summary,
)
from admission_engine.services.calibration_service import CalibrationService
from admission_engine.services.horizon_service import InvalidHorizonError
from admission_engine.services.scoring_service import AdmissionScorer
from admission_engine.utils.config import (
    DEFAULT_AGE_BANDS,
    DEFAULT_SEASONAL_MULTIPLIERS,
    get_settings,
)


REFERENCE_DATE = date(2026, 3, 1)
TARGET_DATE = date(2026, 3, 31)


def _build_test_settings(tmp_path, filename: str, **overrides):
    get_settings.cache_clear()
    base = get_settings()
    return replace(base, database_path=tmp_path / filename, **overrides)


def _service_for(settings) -> AdmissionEstimationService:
    repository = DataRepository(settings)
    calibration_service = CalibrationService(repository=repository, settings=settings)
    calibration_service.fit()
    return AdmissionEstimationService(
        repository=repository,
        settings=settings,
        calibration_service=calibration_service,
    )


def _build_service(
    tmp_path,
    filename: str,
    **overrides,
) -> tuple[AdmissionEstimationService, DataRepository]:
    settings = _build_test_settings(tmp_path, filename, **overrides)
    repository = DataRepository(settings)
    repository.initialize_database()
    repository.create_facility("facility-001", "Sunflower Daycare", 60)
    for vacancies in (10, 14):
        repository.add_turnover_record(
            FacilityTurnoverRecord(
                facility_id="facility-001",
                age_band="2",
                observed_vacancies=vacancies,
                observation_window_days=30,
            )
        )
    return _service_for(settings), repository


def _build_test_app(tmp_path, filename: str, **overrides) -> tuple[FastAPI, DataRepository]:
    service, repository = _build_service(tmp_path, filename, **overrides)
    app = FastAPI()
    app.include_router(router)
    app.state.repository = repository
    app.state.admission_service = service
    app.state.calibration_service = service._calibration_service
    return app, repository


def _payload(**overrides):
    payload = {
        "facility_id": "facility-001",
        "child_id": "child-7",
        "age_band": "2",
        "priority_type": "general",
        "additional_priorities": [],
        "waiting_position": 5,
        "target_date": TARGET_DATE.isoformat(),
        "reference_date": REFERENCE_DATE.isoformat(),
    }
    payload.update(overrides)
    return payload


def test_service_estimate_uses_posterior_and_persists(tmp_path):
    service, repository = _build_service(tmp_path, "service_estimate.db")

    result = service.estimate(
        user_id="user-1",
        facility_id="facility-001",
        child_id="child-7",
        age_band="2",
        waiting_position=5,
        target_date=TARGET_DATE,
        reference_date=REFERENCE_DATE,
    )
    estimate = result.estimate

    assert estimate.posterior_alpha == 25.0
    assert estimate.posterior_beta == 61.0
    assert estimate.horizon_days == 30
    assert estimate.effective_position == 5.0
    assert estimate.probability > 0.9
    assert estimate.grade == "A"
    assert 1 <= estimate.admission_score <= 99
    assert not estimate.low_confidence
    assert estimate.estimated_wait_days_median == 30
    assert {card.type for card in estimate.evidence} == {
        "turnover_history",
        "seasonal_factor",
        "queue_position",
    }
    assert result.estimate_id is not None
    assert repository.count_estimates() == 1


def test_service_estimate_without_persistence(tmp_path):
    service, repository = _build_service(tmp_path, "service_no_persist.db")

    result = service.estimate(
        user_id="user-1",
        facility_id="facility-001",
        child_id="child-7",
        age_band="2",
        waiting_position=50,
        target_date=TARGET_DATE,
        reference_date=REFERENCE_DATE,
        persist=False,
    )

    assert result.estimate_id is None
    assert result.estimate.probability < 0.01
    assert repository.count_estimates() == 0


def test_missing_history_falls_back_to_prior(tmp_path):
    service, _ = _build_service(tmp_path, "service_prior.db")

    result = service.estimate(
        user_id="user-1",
        facility_id="facility-001",
        child_id="child-7",
        age_band="0",
        waiting_position=3,
        reference_date=REFERENCE_DATE,
        persist=False,
    )
    estimate = result.estimate

    assert (estimate.posterior_alpha, estimate.posterior_beta) == (1.0, 1.0)
    assert estimate.low_confidence
    assert estimate.horizon_days == get_settings().default_horizon_days
    assert 0.0 <= estimate.probability <= 1.0
    assert estimate.evidence[0].data_points["method"] == "gamma_prior"


def test_ingestion_invalidates_cached_posterior(tmp_path):
    service, _ = _build_service(tmp_path, "service_ingest.db")
    assert service.get_posterior_snapshot("facility-001", "2").posterior.alpha == 25.0

    service.ingest_turnover_record(
        FacilityTurnoverRecord(
            facility_id="facility-001",
            age_band="2",
            observed_vacancies=6,
            observation_window_days=30,
        )
    )

    snapshot = service.get_posterior_snapshot("facility-001", "2")
    assert snapshot.posterior.alpha == 31.0
    assert snapshot.posterior.beta == 91.0
    assert snapshot.record_count == 3


def test_ingestion_rejects_unknown_facility_and_bad_counts(tmp_path):
    service, _ = _build_service(tmp_path, "service_ingest_invalid.db")

    with pytest.raises(FacilityNotFoundError):
        service.ingest_turnover_record(
            FacilityTurnoverRecord("facility-404", "2", 1, 30)
        )
    with pytest.raises(AdmissionValidationError):
        service.ingest_turnover_record(
            FacilityTurnoverRecord("facility-001", "2", -3, 30)
        )


def test_equal_target_and_reference_dates_rejected(tmp_path):
    service, _ = _build_service(tmp_path, "service_horizon.db")

    with pytest.raises(InvalidHorizonError):
        service.estimate(
            user_id="user-1",
            facility_id="facility-001",
            child_id="child-7",
            age_band="2",
            waiting_position=5,
            target_date=REFERENCE_DATE,
            reference_date=REFERENCE_DATE,
        )


def test_unknown_priority_category_rejected(tmp_path):
    service, _ = _build_service(tmp_path, "service_priority.db")

    with pytest.raises(AdmissionValidationError):
        service.build_priority_profile("vip", [])


def test_summary_mentions_probability_and_evidence(tmp_path):
    service, _ = _build_service(tmp_path, "service_summary.db")
    result = service.estimate(
        user_id="user-1",
        facility_id="facility-001",
        child_id="child-7",
        age_band="2",
        waiting_position=5,
        target_date=TARGET_DATE,
        reference_date=REFERENCE_DATE,
        persist=False,
    )

    message = format_estimate_summary(result)

    assert message.startswith("Admission probability within 30 days:")
    assert "grade A" in message
    assert "24 vacancies over 60 observed days" in message
    assert "Expected wait: about 30 days" in message


def test_estimate_endpoint_success(tmp_path):
    app, repository = _build_test_app(tmp_path, "api_estimate.db")
    client = TestClient(app)

    response = client.post(
        "/admission/estimate",
        json=_payload(),
        headers={"x-user-id": "user-1"},
    )

    assert response.status_code == 200
    body = response.json()
    assert body["facility_name"] == "Sunflower Daycare"
    assert body["posterior_alpha"] == 25.0
    assert body["posterior_beta"] == 61.0
    assert body["effective_position"] == 5.0
    assert body["probability"] > 0.9
    assert "computed_at" in body
    assert repository.count_estimates() == 1


def test_estimate_endpoint_accepts_target_class_alias(tmp_path):
    app, _ = _build_test_app(tmp_path, "api_alias.db")
    client = TestClient(app)
    payload = _payload()
    payload["target_class"] = payload.pop("age_band")

    response = client.post(
        "/admission/estimate",
        json=payload,
        headers={"x-user-id": "user-1"},
    )

    assert response.status_code == 200
    assert response.json()["age_band"] == "2"


def test_estimate_endpoint_requires_user_header(tmp_path):
    app, _ = _build_test_app(tmp_path, "api_no_user.db")
    client = TestClient(app)

    response = client.post("/admission/estimate", json=_payload())

    assert response.status_code == 401


@pytest.mark.parametrize(
    "overrides",
    [
        {"priority_type": "vip"},
        {"additional_priorities": ["general", "royalty"]},
        {"waiting_position": 0},
        {"waiting_position": 501},
        {"age_band": "9"},
        {"facility_id": ""},
    ],
)
def test_estimate_endpoint_rejects_invalid_payload(tmp_path, overrides):
    app, _ = _build_test_app(tmp_path, "api_invalid.db")
    client = TestClient(app)

    response = client.post(
        "/admission/estimate",
        json=_payload(**overrides),
        headers={"x-user-id": "user-1"},
    )

    assert response.status_code == 422


def test_estimate_endpoint_rejects_non_forward_horizon(tmp_path):
    app, _ = _build_test_app(tmp_path, "api_horizon.db")
    client = TestClient(app)

    response = client.post(
        "/admission/estimate",
        json=_payload(target_date=REFERENCE_DATE.isoformat()),
        headers={"x-user-id": "user-1"},
    )

    assert response.status_code == 400


def test_estimate_endpoint_facility_not_found(tmp_path):
    app, _ = _build_test_app(tmp_path, "api_404.db")
    client = TestClient(app)

    response = client.post(
        "/admission/estimate",
        json=_payload(facility_id="facility-999"),
        headers={"x-user-id": "user-1"},
    )

    assert response.status_code == 404


def test_history_is_most_recent_first_and_scoped_to_user(tmp_path):
    app, _ = _build_test_app(tmp_path, "api_history.db")
    client = TestClient(app)

    for position in (3, 8, 13):
        response = client.post(
            "/admission/estimate",
            json=_payload(waiting_position=position),
            headers={"x-user-id": "user-1"},
        )
        assert response.status_code == 200
    client.post(
        "/admission/estimate",
        json=_payload(waiting_position=2),
        headers={"x-user-id": "user-2"},
    )

    response = client.get("/admission/history", headers={"x-user-id": "user-1"})

    assert response.status_code == 200
    body = response.json()
    assert body["total"] == 3
    assert [item["raw_waiting_position"] for item in body["results"]] == [13, 8, 3]


def test_turnover_ingestion_endpoint_updates_next_estimate(tmp_path):
    app, _ = _build_test_app(tmp_path, "api_ingest.db")
    client = TestClient(app)
    headers = {"x-user-id": "user-1"}

    first = client.post("/admission/estimate", json=_payload(), headers=headers).json()
    ingest = client.post(
        "/turnover_records",
        json={
            "facility_id": "facility-001",
            "age_band": "2",
            "observed_vacancies": 0,
            "observation_window_days": 60,
        },
    )
    second = client.post("/admission/estimate", json=_payload(), headers=headers).json()

    assert ingest.status_code == 201
    assert first["posterior_beta"] == 61.0
    assert second["posterior_beta"] == 121.0
    assert second["probability"] < first["probability"]


def test_outcome_and_calibration_endpoints(tmp_path):
    app, _ = _build_test_app(tmp_path, "api_outcome.db")
    client = TestClient(app)

    estimate = client.post(
        "/admission/estimate",
        json=_payload(),
        headers={"x-user-id": "user-1"},
    ).json()
    recorded = client.post(
        "/admission/outcomes",
        json={"estimate_id": estimate["id"], "admitted": True},
    )
    missing = client.post(
        "/admission/outcomes",
        json={"estimate_id": 9999, "admitted": False},
    )
    refit = client.post("/calibration/refit")

    assert recorded.status_code == 201
    assert missing.status_code == 404
    assert refit.status_code == 200
    assert refit.json()["fitted_rows"] == 1
    assert refit.json()["method"] == "identity"


def test_summary_endpoint_returns_message(tmp_path):
    app, _ = _build_test_app(tmp_path, "api_summary.db")
    client = TestClient(app)

    response = client.post(
        "/admission/summary",
        json=_payload(),
        headers={"x-user-id": "user-1"},
    )

    assert response.status_code == 200
    assert "Admission probability" in response.json()["message"]


def test_app_startup_seeds_facilities_and_serves_estimates(tmp_path):
    from app import create_app

    settings = _build_test_settings(tmp_path, "api_startup.db")
    app = create_app(settings)

    with TestClient(app) as client:
        health = client.get("/health")
        response = client.post(
            "/admission/estimate",
            json=_payload(waiting_position=1),
            headers={"x-user-id": "user-1"},
        )
        calibration = client.get("/calibration")

    assert health.status_code == 200
    assert health.json()["status"] == "ok"
    assert response.status_code == 200
    assert response.json()["low_confidence"] is False
    assert calibration.json()["method"] == "identity"


def test_cached_posterior_follows_records_written_by_another_worker(tmp_path):
    worker_a, repository = _build_service(tmp_path, "service_two_workers.db")
    worker_b = _service_for(worker_a.settings)
    request = dict(
        user_id="user-1",
        facility_id="facility-001",
        child_id="child-7",
        age_band="2",
        waiting_position=5,
        target_date=TARGET_DATE,
        reference_date=REFERENCE_DATE,
        persist=False,
    )

    before = worker_a.estimate(**request).estimate
    worker_b.ingest_turnover_record(FacilityTurnoverRecord("facility-001", "2", 0, 600))
    after_worker_write = worker_a.estimate(**request).estimate
    repository.add_turnover_record(FacilityTurnoverRecord("facility-001", "2", 3, 30))
    after_direct_write = worker_a.estimate(**request).estimate

    assert before.posterior_beta == 61.0
    assert after_worker_write.posterior_beta == 661.0
    assert after_worker_write.probability < before.probability
    assert (after_direct_write.posterior_alpha, after_direct_write.posterior_beta) == (28.0, 691.0)


def test_second_outcome_for_same_estimate_rejected(tmp_path):
    service, repository = _build_service(tmp_path, "service_outcome_once.db")
    result = service.estimate(
        user_id="user-1",
        facility_id="facility-001",
        child_id="child-7",
        age_band="2",
        waiting_position=5,
        target_date=TARGET_DATE,
        reference_date=REFERENCE_DATE,
    )

    service.record_outcome(result.estimate_id, admitted=True)
    with pytest.raises(OutcomeAlreadyRecordedError):
        service.record_outcome(result.estimate_id, admitted=False)

    rows = repository.list_calibration_rows()
    assert len(rows) == 1
    assert rows[0].admitted == 1


def test_duplicate_outcome_endpoint_returns_conflict(tmp_path):
    app, repository = _build_test_app(tmp_path, "api_outcome_conflict.db")
    client = TestClient(app)
    estimate = client.post(
        "/admission/estimate",
        json=_payload(),
        headers={"x-user-id": "user-1"},
    ).json()

    first = client.post(
        "/admission/outcomes",
        json={"estimate_id": estimate["id"], "admitted": True},
    )
    second = client.post(
        "/admission/outcomes",
        json={"estimate_id": estimate["id"], "admitted": False},
    )

    assert first.status_code == 201
    assert second.status_code == 409
    assert len(repository.list_calibration_rows()) == 1


def test_history_row_reproduces_seasonal_probability(tmp_path):
    multipliers = dict(DEFAULT_SEASONAL_MULTIPLIERS)
    multipliers[3] = 2.0
    service, repository = _build_service(
        tmp_path,
        "service_seasonal.db",
        seasonal_multipliers=multipliers,
    )
    service.estimate(
        user_id="user-1",
        facility_id="facility-001",
        child_id="child-7",
        age_band="2",
        waiting_position=20,
        target_date=TARGET_DATE,
        reference_date=REFERENCE_DATE,
    )

    record = repository.list_estimates_for_user("user-1", limit=1)[0]
    scorer = AdmissionScorer(EngineConfig.from_settings(service.settings))
    replayed = scorer.score(
        GammaPosterior(alpha=record.posterior_alpha, beta=record.posterior_beta),
        record.effective_position,
        record.exposure_days,
    )

    assert record.horizon_days == 30
    assert record.exposure_days == 60.0
    assert replayed == pytest.approx(record.probability, abs=1e-12)


def test_request_bounds_follow_app_settings(tmp_path):
    from app import create_app

    settings = _build_test_settings(
        tmp_path,
        "api_custom_bounds.db",
        age_bands=DEFAULT_AGE_BANDS + ("6",),
        waiting_position_max=800,
    )
    app = create_app(settings)

    with TestClient(app) as client:
        accepted = client.post(
            "/admission/estimate",
            json=_payload(age_band="6", waiting_position=700),
            headers={"x-user-id": "user-1"},
        )
        rejected = client.post(
            "/admission/estimate",
            json=_payload(age_band="7", waiting_position=801),
            headers={"x-user-id": "user-1"},
        )

    assert accepted.status_code == 200
    assert accepted.json()["age_band"] == "6"
    assert rejected.status_code == 422


def test_non_finite_posterior_maps_to_server_error(tmp_path):
    app, repository = _build_test_app(
        tmp_path,
        "api_numeric.db",
        prior_alpha0=float("inf"),
    )
    client = TestClient(app)

    response = client.post(
        "/admission/estimate",
        json=_payload(),
        headers={"x-user-id": "user-1"},
    )

    assert response.status_code == 500
    assert response.json()["detail"] == "Admission computation failed"
    assert repository.count_estimates() == 0
