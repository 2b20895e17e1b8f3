"""
Tests for the matching API router.
"""

import sys
import os
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.dirname(os.path.abspath(__file__)))))

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from matching.config import Settings
from matching.logic import TrainingConfig
from matching.routes import router
from matching.services import build_services

from test_trainer import separable_samples


STUDENT = {
    "studentId": "stu-1",
    "studentProfile": {
        "gwa": 1.5,
        "classification": "Junior",
        "annualFamilyIncome": 100000,
        "profileCompleted": True,
    },
}

SCHOLARSHIPS = [
    {"id": "open", "name": "Open Grant", "eligibilityCriteria": {"maxGWA": 2.5}},
    {"id": "strict", "name": "Honors Grant", "eligibilityCriteria": {"maxGWA": 1.25}},
]


@pytest.fixture
def services():
    svc = build_services(Settings(training=TrainingConfig(min_samples=10)))
    yield svc
    svc.stop()


@pytest.fixture
def client(services):
    app = FastAPI()
    app.include_router(router)
    app.state.matching = services
    return TestClient(app)


def test_match_returns_ranked_results(client):
    response = client.post("/matching/match", json={"student": STUDENT, "scholarships": SCHOLARSHIPS})

    assert response.status_code == 200
    body = response.json()
    assert body["student_id"] == "stu-1"
    assert body["eligible_count"] == 1
    assert [r["scholarship_id"] for r in body["results"]] == ["open", "strict"]
    assert body["results"][1]["compatibility_score"] == 0
    assert body["results"][1]["failed_checks"] == ["Minimum GWA Requirement"]


def test_match_with_predictions(client):
    response = client.post("/matching/match", json={
        "student": STUDENT, "scholarships": SCHOLARSHIPS, "include_prediction": True,
    })
    results = response.json()["results"]
    assert "prediction" in results[0]
    assert "prediction" not in results[1]
    assert 0.05 <= results[0]["prediction"]["probability"] <= 0.95


def test_invalid_criteria_is_a_bad_request(client):
    response = client.post("/matching/match", json={
        "student": STUDENT,
        "scholarships": [{"id": "bad", "name": "Bad", "maxGWA": 9}],
    })
    assert response.status_code == 400


def test_predict_endpoint(client):
    response = client.post("/matching/predict", json={"student": STUDENT, "scholarship": SCHOLARSHIPS[0]})
    body = response.json()

    assert response.status_code == 200
    assert body["model_source"] == "default"
    assert body["predicted_outcome"] in ("likely_approved", "needs_improvement")
    assert len(body["factors"]) == 10


def test_train_endpoint_reports_insufficient_data(client):
    response = client.post("/matching/train", json={})
    body = response.json()

    assert response.status_code == 200
    assert body["success"] is False
    assert body["samples_available"] == 0
    assert body["samples_required"] == 10


def test_train_endpoint_trains_global_model(client, services):
    for sample in separable_samples():
        services.applications.record(sample)

    body = client.post("/matching/train", json={"triggered_by": "admin-1"}).json()
    health = client.get("/matching/health").json()

    assert body["success"] is True
    assert body["model"]["version"] == 1
    assert health["model_source"] == "global"


def test_decision_records_snapshot_and_schedules_training(client, services):
    response = client.post("/matching/decisions", json={
        "application_id": "app-1",
        "scholarship_id": "open",
        "status": "approved",
        "student": STUDENT,
        "scholarship": SCHOLARSHIPS[0],
    })

    assert response.status_code == 202
    assert response.json() == {"accepted": True, "training_scheduled": True}
    recorded = services.applications.labeled_applications("scholarship:open")
    assert [a.application_id for a in recorded] == ["app-1"]
    assert recorded[0].features["eligibility_ratio"] == 1.0


def test_pending_decision_is_not_scheduled(client):
    response = client.post("/matching/decisions", json={
        "application_id": "app-2", "scholarship_id": "open", "status": "pending",
    })
    assert response.json()["training_scheduled"] is False


def test_training_status_and_log(client, services):
    services.auto_training.on_decision("app-1", "open", "approved").result(timeout=30)

    status = client.get("/matching/training/status").json()
    log = client.get("/matching/training/log", params={"limit": 5}).json()

    assert status["global_decision_counter"] == 1
    assert status["last_event"]["reason"] == "insufficient_data"
    assert log["count"] == 1
    assert log["events"][0]["application_id"] == "app-1"
    assert client.get("/matching/training/log", params={"limit": 0}).status_code == 422


def test_train_all_endpoint_summarizes_results(client, services):
    for sample in separable_samples(scholarship_id="s1"):
        services.applications.record(sample)

    body = client.post("/matching/train-all", json={"scholarship_ids": ["s1", "s2"]}).json()

    assert body["summary"] == {"successful": 1, "failed": 1, "total": 2}
    assert [r["scope"] for r in body["results"]] == ["scholarship:s1", "scholarship:s2"]


def test_model_listing_and_activation(client, services):
    for sample in separable_samples(scholarship_id="s1"):
        services.applications.record(sample)
    first = client.post("/matching/train", json={"scholarship_id": "s1"}).json()["model"]
    client.post("/matching/train", json={"scholarship_id": "s1"})

    listed = client.get("/matching/models/scholarship/s1").json()
    assert listed["count"] == 2
    assert [m["version"] for m in listed["models"]] == [2, 1]
    assert client.get("/matching/models", params={"scope": "global"}).json()["count"] == 0

    activated = client.post(f"/matching/models/{first['id']}/activate")
    assert activated.status_code == 200
    assert activated.json()["version"] == 1
    prediction = client.post("/matching/predict", json={"student": STUDENT, "scholarship": {"id": "s1", "name": "S1"}})
    assert prediction.json()["model_version"] == 1

    assert client.post("/matching/models/missing/activate").status_code == 404


def test_training_stats_endpoint(client, services):
    for sample in separable_samples(scholarship_id="s1"):
        services.applications.record(sample)

    stats = client.get("/matching/training/stats").json()

    assert stats["total_applications"] == 40
    assert stats["scholarships_with_enough_data"] == 1
    assert stats["scholarship_breakdown"] == {"s1": 40}
