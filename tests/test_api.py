from datetime import datetime, timedelta

import pytest
from fastapi.testclient import TestClient

from app.core.security import create_access_token
from app.db.session import get_db
from app.main import app
from app.services import slot_ledger


@pytest.fixture
def client(session_factory, gateway):
    def _get_db():
        s = session_factory()
        try:
            yield s
        finally:
            s.close()

    app.dependency_overrides[get_db] = _get_db
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


@pytest.fixture
def auth(resident):
    return {"Authorization": f"Bearer {create_access_token(resident.id)}"}


def _tomorrow_noon() -> str:
    tomorrow = (datetime.now(slot_ledger.local_tz()) + timedelta(days=1)).date()
    return f"{tomorrow.isoformat()}T12:00:00"


def _first_slot(client, auth, item_type="furniture", **extra) -> str:
    body = {"itemType": item_type, "quantity": 1, "weightPerItem": 50, "preferredDateTime": _tomorrow_noon(), **extra}
    r = client.post("/api/v1/special/availability", json=body, headers=auth)
    assert r.status_code == 200, r.text
    return r.json()["slots"][0]["slotId"]


def _confirm(client, auth, slot_id, item_type="furniture", **extra):
    body = {
        "itemType": item_type, "quantity": 1, "weightPerItem": 50, "slotId": slot_id,
        "paymentChoice": "payNow", "residentName": "Nimal Perera", "address": "12 Lake Road",
        "district": "Colombo", "email": "nimal@example.lk", "phone": "+94771234567", **extra,
    }
    return client.post("/api/v1/special/confirm", json=body, headers=auth)


def test_health(client):
    assert client.get("/health").json() == {"status": "ok"}


def test_config_lists_item_policies(client):
    data = client.get("/api/v1/special/config").json()
    items = {i["id"]: i for i in data["items"]}
    assert items["construction"]["allow"] is False
    assert items["furniture"]["baseFee"] == 1000.0
    assert data["slotConfig"]["timezone"] == "Asia/Colombo"


def test_requires_bearer_token(client):
    r = client.post("/api/v1/special/availability", json={"itemType": "furniture"})
    assert r.status_code == 401
    r = client.get("/api/v1/special/my", headers={"Authorization": "Bearer not-a-jwt"})
    assert r.status_code == 401


def test_availability_quote_in_major_units(client, auth):
    body = {"itemType": "furniture", "quantity": 1, "weightPerItem": 50, "preferredDateTime": _tomorrow_noon()}
    data = client.post("/api/v1/special/availability", json=body, headers=auth).json()
    assert data["payment"]["amount"] == 1236.0
    assert data["payment"]["currency"] == "LKR"
    assert len(data["slots"]) == 5
    assert all(s["capacityLeft"] == 3 for s in data["slots"])


def test_disallowed_item_error_shape(client, auth):
    body = {"itemType": "construction", "quantity": 1, "weightPerItem": 5, "preferredDateTime": _tomorrow_noon()}
    r = client.post("/api/v1/special/availability", json=body, headers=auth)
    assert r.status_code == 400
    data = r.json()
    assert data["ok"] is False
    assert data["code"] == "ITEM_NOT_ALLOWED"
    assert "disposalInfo" in data["details"]


def test_validation_error_names_field(client, auth):
    slot_id = _first_slot(client, auth)
    r = _confirm(client, auth, slot_id, residentName="")
    assert r.status_code == 400
    assert r.json()["code"] == "VALIDATION_ERROR"
    assert r.json()["field"] == "residentName"


def test_pay_now_round_trip(client, auth, gateway):
    slot_id = _first_slot(client, auth)
    r = _confirm(client, auth, slot_id)
    assert r.status_code == 201, r.text
    data = r.json()
    assert data["request"]["status"] == "pending-payment"
    session_id = data["sessionId"]
    assert data["checkoutUrl"].endswith(session_id)

    r = client.get(f"/api/v1/special/payment/checkout/{session_id}", headers=auth)
    assert r.json()["status"] == "pending"

    gateway.set_outcome(session_id, "success")
    r = client.get(f"/api/v1/special/payment/checkout/{session_id}", params={"status": "success"}, headers=auth)
    data = r.json()
    assert data["status"] == "success"
    assert data["request"]["status"] == "scheduled"
    assert data["request"]["paymentStatus"] == "success"
    assert data["request"]["paymentAmount"] == 1236.0

    receipt = client.get(f"/api/v1/special/requests/{data['request']['id']}/receipt", headers=auth)
    assert receipt.status_code == 200
    assert receipt.headers["content-type"] == "application/pdf"
    assert receipt.content.startswith(b"%PDF")


def test_sync_unknown_session_is_404(client, auth):
    r = client.get("/api/v1/special/payment/checkout/cs_nope", headers=auth)
    assert r.status_code == 404
    assert r.json()["code"] == "SESSION_NOT_FOUND"


def test_sync_of_another_residents_session_is_403(client, auth, other_resident):
    slot_id = _first_slot(client, auth)
    session_id = _confirm(client, auth, slot_id).json()["sessionId"]
    other = {"Authorization": f"Bearer {create_access_token(other_resident.id)}"}
    r = client.get(f"/api/v1/special/payment/checkout/{session_id}", headers=other)
    assert r.status_code == 403


def test_full_slot_is_409(client, auth):
    slot_id = _first_slot(client, auth)
    for _ in range(3):
        assert _confirm(client, auth, slot_id, paymentChoice="payLater").status_code == 201
    r = _confirm(client, auth, slot_id, paymentChoice="payLater")
    assert r.status_code == 409
    assert r.json()["code"] == "SLOT_UNAVAILABLE"


def test_pay_later_bill_checkout_and_cancel(client, auth, gateway):
    slot_id = _first_slot(client, auth)
    req = _confirm(client, auth, slot_id, paymentChoice="payLater").json()["request"]
    assert (req["status"], req["paymentStatus"]) == ("scheduled", "pending")

    r = client.post(f"/api/v1/special/requests/{req['id']}/checkout", json={}, headers=auth)
    assert r.status_code == 200
    session_id = r.json()["sessionId"]

    r = client.post(f"/api/v1/special/requests/{req['id']}/cancel", json={"reason": "No longer needed"}, headers=auth)
    assert r.json()["status"] == "cancelled"
    assert gateway.sessions[session_id]["outcome"] == "cancelled"

    mine = client.get("/api/v1/special/my", headers=auth).json()["requests"]
    assert [m["status"] for m in mine] == ["cancelled"]


def test_receipt_not_available_before_payment(client, auth):
    slot_id = _first_slot(client, auth)
    req = _confirm(client, auth, slot_id).json()["request"]
    r = client.get(f"/api/v1/special/requests/{req['id']}/receipt", headers=auth)
    assert r.status_code == 409


def test_webhook_reconciles_checkout(client, auth, gateway):
    slot_id = _first_slot(client, auth)
    session_id = _confirm(client, auth, slot_id).json()["sessionId"]
    gateway.set_outcome(session_id, "failed")

    event = {"type": "checkout.session.async_payment_failed", "data": {"object": {"id": session_id}}}
    r = client.post("/api/v1/webhooks/stripe", json=event)
    assert r.json() == {"ok": True, "status": "failed", "changed": True}

    mine = client.get("/api/v1/special/my", headers=auth).json()["requests"]
    assert mine[0]["status"] == "payment-failed"


def test_webhook_ignores_foreign_sessions_and_events(client):
    r = client.post("/api/v1/webhooks/stripe", json={"type": "checkout.session.completed",
                                                    "data": {"object": {"id": "cs_elsewhere"}}})
    assert r.json()["ignored"] == "cs_elsewhere"
    r = client.post("/api/v1/webhooks/stripe", json={"type": "invoice.paid", "data": {"object": {}}})
    assert r.json()["ignored"] == "invoice.paid"
