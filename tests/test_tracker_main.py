from datetime import datetime, timezone

import pytest
from pydantic import ValidationError
from fastapi.testclient import TestClient

from app.core.config import get_settings
from app.core.deps import get_clock
from app.db.session import session_scope
from app.db.store import SqlAlchemyStore
from services.tracker.main import app
from shared.contracts.enums import SessionType
from shared.contracts.models import DoseLogDTO

NOW = datetime(2026, 3, 10, 9, 0, tzinfo=timezone.utc)


@pytest.fixture
def client(settings):
    app.dependency_overrides[get_settings] = lambda: settings
    app.dependency_overrides[get_clock] = lambda: (lambda: NOW)
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def medicine_id(settings):
    with session_scope(settings) as session:
        store = SqlAlchemyStore(session)
        store.add_profile("patient-1", "Pat Doe")
        medicine = store.add_medicine(
            "patient-1",
            "Metformin",
            sessions=[SessionType.MORNING, SessionType.NIGHT],
            stock_quantity=4,
            low_stock_threshold=5,
        )
        store.add_medicine("patient-1", "Vitamin D", stock_quantity=0, low_stock_threshold=5)
        return medicine.id


def _dose(medicine_id, session_type="morning", status="taken"):
    return {
        "userId": "patient-1",
        "medicineId": medicine_id,
        "sessionType": session_type,
        "scheduledDate": "2026-03-10",
        "status": status,
    }


def test_mark_dose_taken(client, medicine_id):
    response = client.post("/doses", json=_dose(medicine_id))

    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "taken"
    assert body["sessionType"] == "morning"
    assert body["takenAt"] is not None


def test_mark_dose_rejects_missed_status(client, medicine_id):
    response = client.post("/doses", json=_dose(medicine_id, status="missed"))
    assert response.status_code == 422


def test_mark_dose_for_unknown_medicine_is_404(client, medicine_id):
    response = client.post("/doses", json=_dose("no-such-medicine"))
    assert response.status_code == 404


def test_adherence_summary(client, medicine_id):
    client.post("/doses", json=_dose(medicine_id, "morning", "taken"))
    client.post("/doses", json=_dose(medicine_id, "night", "skipped"))

    response = client.get("/patients/patient-1/adherence")

    assert response.json() == {
        "taken": 1,
        "pending": 0,
        "missed": 0,
        "skipped": 1,
        "adherenceRate": 0.5,
    }


def test_adherence_rejects_inverted_range(client):
    response = client.get("/patients/patient-1/adherence", params={"start": "2026-03-10", "end": "2026-03-01"})
    assert response.status_code == 400


def test_medicine_stock_levels(client, medicine_id):
    response = client.get("/patients/patient-1/medicines/stock")

    levels = {item["name"]: item["stockStatus"] for item in response.json()}
    assert levels == {"Metformin": "low", "Vitamin D": "critical"}


def test_invitation_flow(client):
    created = client.post("/caregiver-links/invitations", json={"patientId": "patient-1"})
    assert created.status_code == 201
    token = created.json()["invitationToken"]

    accepted = client.post("/caregiver-links/accept", json={"token": token, "caregiverId": "caregiver-1"})
    assert accepted.status_code == 200
    assert accepted.json()["status"] == "accepted"

    assert client.get("/patients/patient-1/caregivers").json() == ["caregiver-1"]
    assert client.get("/caregivers/caregiver-1/patients").json() == ["patient-1"]

    reused = client.post("/caregiver-links/accept", json={"token": token, "caregiverId": "caregiver-2"})
    assert reused.status_code == 404


def test_request_approve_and_remove(client):
    created = client.post(
        "/caregiver-links/requests", json={"patientId": "patient-1", "caregiverId": "caregiver-1"}
    )
    link_id = created.json()["id"]

    pending = client.get("/patients/patient-1/caregiver-requests").json()
    assert [link["id"] for link in pending] == [link_id]

    duplicate = client.post(
        "/caregiver-links/requests", json={"patientId": "patient-1", "caregiverId": "caregiver-1"}
    )
    assert duplicate.status_code == 409

    assert client.post(f"/caregiver-links/{link_id}/approve").status_code == 200
    assert client.post(f"/caregiver-links/{link_id}/approve").status_code == 409

    assert client.delete(f"/caregiver-links/{link_id}").status_code == 204
    assert client.get("/patients/patient-1/caregivers").json() == []
    assert client.delete(f"/caregiver-links/{link_id}").status_code == 404


def test_adherence_treats_naive_clock_as_utc(settings, medicine_id):
    kolkata = settings.model_copy(update={"timezone": "Asia/Kolkata"})
    app.dependency_overrides[get_settings] = lambda: kolkata
    app.dependency_overrides[get_clock] = lambda: (lambda: datetime(2026, 3, 10, 23, 30))
    client = TestClient(app)
    try:
        client.post("/doses", json={**_dose(medicine_id), "scheduledDate": "2026-03-11"})
        response = client.get("/patients/patient-1/adherence")
    finally:
        app.dependency_overrides.clear()

    assert response.json()["taken"] == 1


def test_response_validation_error_is_not_reported_as_conflict(client, medicine_id, monkeypatch):
    original = DoseLogDTO.model_validate

    def broken(obj, **kwargs):
        return original({})

    monkeypatch.setattr(DoseLogDTO, "model_validate", broken)

    with pytest.raises(ValidationError):
        client.post("/doses", json=_dose(medicine_id))
