import pytest
from fastapi.testclient import TestClient

from garagehub.auth.security import create_access_token
from garagehub.db import get_db
from garagehub.main import app

from .conftest import ADMIN_ID, MANAGER_ID, MECHANIC_ID, OWNER_ID, WORKSHOP_ID


@pytest.fixture
def client(db, session_factory):
    def _get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = _get_db
    yield TestClient(app)
    app.dependency_overrides.clear()


def _auth(user_id):
    return {"Authorization": f"Bearer {create_access_token(user_id)}"}


BOOKING = {
    "owner_id": OWNER_ID,
    "workshop_id": WORKSHOP_ID,
    "service_type": "Oil Change",
    "preferred_date": "2026-02-01",
    "preferred_time": "10:00",
}


def test_healthz_and_request_id(client):
    resp = client.get("/healthz")
    assert resp.status_code == 200
    assert resp.json()["status"] == "ok"
    assert resp.headers.get("X-Request-ID")


def test_requires_bearer_token(client):
    assert client.get("/api/notifications").status_code == 401
    resp = client.get("/api/notifications", headers={"Authorization": "Bearer not-a-jwt"})
    assert resp.status_code == 401


def test_booking_roundtrip_and_error_mapping(client):
    resp = client.post("/api/bookings", json=BOOKING, headers=_auth(OWNER_ID))
    assert resp.status_code == 201
    booking_id = resp.json()["booking_id"]

    # Owners hold no capability to move bookings
    resp = client.post("/api/bookings/status", json={"booking_id": booking_id, "status": "confirmed"}, headers=_auth(OWNER_ID))
    assert resp.status_code == 403
    assert resp.json()["code"] == "forbidden"

    resp = client.post("/api/bookings/status", json={"booking_id": booking_id, "status": "completed"}, headers=_auth(MANAGER_ID))
    assert resp.status_code == 409
    assert resp.json()["code"] == "invalid_transition"

    resp = client.post("/api/bookings/status", json={"booking_id": booking_id, "status": "confirmed"}, headers=_auth(MANAGER_ID))
    assert resp.status_code == 200
    assert resp.json()["status"] == "confirmed"

    resp = client.get("/api/bookings", params={"owner_id": OWNER_ID}, headers=_auth(OWNER_ID))
    assert [b["status"] for b in resp.json()] == ["confirmed"]

    resp = client.post("/api/bookings/status", json={"booking_id": 999, "status": "confirmed"}, headers=_auth(MANAGER_ID))
    assert resp.status_code == 404


def test_missing_booking_field_is_a_validation_error(client):
    body = {k: v for k, v in BOOKING.items() if k != "service_type"}
    resp = client.post("/api/bookings", json=body, headers=_auth(OWNER_ID))
    assert resp.status_code == 400
    assert resp.json()["code"] == "validation_error"


def test_job_to_invoice_over_http(client):
    booking_id = client.post("/api/bookings", json=BOOKING, headers=_auth(OWNER_ID)).json()["booking_id"]
    manager = _auth(MANAGER_ID)
    mechanic = _auth(MECHANIC_ID)

    resp = client.post("/api/jobs/from-booking", json={"booking_id": booking_id}, headers=manager)
    assert resp.status_code == 201
    job_id = resp.json()["job_id"]
    assert client.post("/api/jobs/from-booking", json={"booking_id": booking_id}, headers=manager).status_code == 409

    assert client.post("/api/jobs/assign", json={"job_id": job_id, "mechanic_id": MECHANIC_ID}, headers=manager).status_code == 200
    assert client.post("/api/jobs/status", json={"job_id": job_id, "status": "in-progress"}, headers=mechanic).status_code == 200
    resp = client.post("/api/jobs/parts", json={"job_id": job_id, "name": "Filter", "quantity": 1, "unit_cost": "15.00"}, headers=mechanic)
    assert resp.status_code == 201
    resp = client.post("/api/jobs/parts", json={"job_id": job_id, "name": "Oil", "quantity": 5, "unit_cost": "8.00"}, headers=mechanic)
    assert resp.json()["parts_total"] == "55.00"
    assert client.post("/api/jobs/status", json={"job_id": job_id, "status": "completed"}, headers=mechanic).status_code == 200

    resp = client.post("/api/invoices/generate", json={"job_id": job_id, "tax_rate": "0.1"}, headers=manager)
    assert resp.status_code == 201
    invoice = resp.json()
    assert (invoice["subtotal"], invoice["tax"], invoice["total"], invoice["status"]) == ("55.00", "5.50", "60.50", "draft")

    resp = client.post("/api/invoices/status", json={"invoice_id": invoice["id"], "status": "overdue"}, headers=manager)
    assert resp.status_code == 409

    resp = client.post(
        "/api/invoices/items",
        json={"invoice_id": invoice["id"], "items": [{"description": "Oil", "quantity": "5", "unit_price": "8.00"}], "total": "10.00"},
        headers=manager,
    )
    assert resp.status_code == 500
    assert resp.json()["code"] == "invariant_violation"

    resp = client.post("/api/ratings", json={"booking_id": booking_id, "owner_id": OWNER_ID, "rating": 4.5}, headers=_auth(OWNER_ID))
    assert resp.status_code == 422
    resp = client.post("/api/ratings", json={"booking_id": booking_id, "owner_id": OWNER_ID, "rating": 6}, headers=_auth(OWNER_ID))
    assert resp.status_code == 400
    assert resp.json()["code"] == "validation_error"

    resp = client.post("/api/ratings", json={"booking_id": booking_id, "owner_id": OWNER_ID, "rating": 5, "comment": "Great"}, headers=_auth(OWNER_ID))
    assert resp.status_code == 201
    assert resp.json()["status"] == "new"
    resp = client.post("/api/ratings", json={"booking_id": booking_id, "owner_id": OWNER_ID, "rating": 4}, headers=_auth(OWNER_ID))
    assert resp.status_code == 409

    history = client.get("/api/jobs/service-history", params={"owner_id": OWNER_ID}, headers=_auth(OWNER_ID)).json()
    assert history[0]["invoice"]["total"] == "60.50"


def test_notifications_over_http(client):
    client.post("/api/bookings", json=BOOKING, headers=_auth(OWNER_ID))
    manager = _auth(MANAGER_ID)

    events = client.get("/api/notifications", params={"unread_only": True}, headers=manager).json()
    assert [e["event_type"] for e in events] == ["booking_received"]

    resp = client.post("/api/notifications/read", json={"ids": [events[0]["id"]]}, headers=manager)
    assert resp.json() == {"status": "ok", "updated": 1}
    assert client.get("/api/notifications", params={"unread_only": True}, headers=manager).json() == []


def test_reports_over_http(client):
    manager = _auth(MANAGER_ID)
    resp = client.post("/api/reports/request", json={"workshop_id": WORKSHOP_ID, "month": 2, "year": 2026}, headers=manager)
    assert resp.status_code == 201
    request_id = resp.json()["id"]

    assert client.post("/api/reports/generate", json={"request_id": request_id}, headers=manager).status_code == 403

    resp = client.post("/api/reports/generate", json={"request_id": request_id}, headers=_auth(ADMIN_ID))
    assert resp.status_code == 200
    assert resp.json()["status"] == "generated"
    assert resp.json()["total_revenue"] == "0.00"

    resp = client.get("/api/reports/yearly", params={"workshop_id": WORKSHOP_ID, "year": 2026}, headers=manager)
    assert len(resp.json()["months"]) == 12


def test_audit_trail_over_http(client):
    booking_id = client.post("/api/bookings", json=BOOKING, headers=_auth(OWNER_ID)).json()["booking_id"]

    assert client.get("/api/audit", headers=_auth(MANAGER_ID)).status_code == 403

    resp = client.get("/api/audit", params={"entity_type": "booking", "entity_id": booking_id}, headers=_auth(ADMIN_ID))
    assert resp.status_code == 200
    logs = resp.json()
    assert [log["action"] for log in logs] == ["CREATE"]
    assert logs[0]["actor_id"] == OWNER_ID
    assert len(logs[0]["integrity_hash"]) == 64

    assert client.get("/api/audit", params={"entity_type": "invoice"}, headers=_auth(ADMIN_ID)).json() == []
