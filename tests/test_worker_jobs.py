from datetime import timedelta

import pytest

from app.models.special_collection_request import SpecialCollectionRequest
from app.services import booking_service, email_service, payment_gateway
from app.tasks import worker_jobs

from conftest import NOW, SLOT_START, booking_body


@pytest.fixture
def worker_db(monkeypatch, session_factory):
    monkeypatch.setattr(worker_jobs, "SessionLocal", session_factory)
    return session_factory


def test_sweep_expires_deferred_and_abandoned_bookings(worker_db, db, resident, gateway):
    deferred = booking_service.confirm_booking(db, resident, booking_body(paymentChoice="payLater"), gateway,
                                               now=NOW).request
    abandoned = booking_service.confirm_booking(db, resident, booking_body(), gateway, now=NOW).request

    assert worker_jobs.expire_unpaid_bookings(now=NOW + timedelta(minutes=5)) == {"deferred": 0, "checkouts": 0}
    assert worker_jobs.expire_unpaid_bookings(now=SLOT_START + timedelta(minutes=1)) == {"deferred": 1, "checkouts": 1}

    db.expire_all()
    statuses = {r.id: r.status for r in db.query(SpecialCollectionRequest).all()}
    assert statuses == {deferred.id: "cancelled", abandoned.id: "cancelled"}


def test_sweep_without_payment_provider_still_expires_deferred(worker_db, db, resident, gateway, monkeypatch):
    booking_service.confirm_booking(db, resident, booking_body(paymentChoice="payLater"), gateway, now=NOW)
    monkeypatch.setattr(payment_gateway.settings, "PAYMENT_SANDBOX", False)
    monkeypatch.setattr(payment_gateway.settings, "STRIPE_SECRET_KEY", "")

    assert worker_jobs.expire_unpaid_bookings(now=SLOT_START + timedelta(minutes=1)) == {"deferred": 1, "checkouts": 0}


def test_email_queue_retries_pending_mail(worker_db, db, resident, gateway, monkeypatch):
    body = booking_body(itemType="yard", quantity=1, weightPerItem=5, slotId="yard:2030-01-08:1000",
                        paymentChoice="none")
    booking_service.confirm_booking(db, resident, body, gateway, now=NOW)
    sent = []
    monkeypatch.setattr(email_service, "send_email", lambda to, subject, body: sent.append(to))

    assert worker_jobs.process_email_queue(limit=10) == {"processed": 2, "sent": 2, "failed": 0}
    assert sorted(sent) == ["council@example.lk", "nimal@example.lk"]
