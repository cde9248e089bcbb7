import threading
from datetime import timedelta

import pytest

from app.models.bill import Bill
from app.models.checkout_session import CheckoutSession
from app.models.email_log import EmailLog
from app.models.slot_bucket import SlotBucket
from app.services import booking_service
from app.services.errors import AccessDenied, PaymentProviderError, SessionNotFound
from app.services.reconciliation_service import expire_stale_checkout_sessions, sync_checkout_session

from conftest import NOW, SLOT_ID, booking_body


def _reserved(db):
    bucket = db.get(SlotBucket, SLOT_ID)
    db.refresh(bucket)
    return bucket.capacity_reserved


@pytest.fixture
def pay_now(db, resident, gateway):
    return booking_service.confirm_booking(db, resident, booking_body(), gateway, now=NOW)


def test_success_schedules_the_booking(db, resident, gateway, pay_now):
    gateway.set_outcome(pay_now.session_id, "success")
    result = sync_checkout_session(db, pay_now.session_id, gateway, actor=resident, now=NOW + timedelta(minutes=5))
    assert (result.status, result.changed) == ("success", True)
    req = result.request
    assert (req.status, req.payment_status) == ("scheduled", "success")
    assert req.paid_at == NOW + timedelta(minutes=5)
    assert req.payment_reference.startswith("pi_sandbox_")
    assert req.receipt_url.endswith(pay_now.session_id)
    assert req.payment_due_at is None
    assert _reserved(db) == 1
    # Confirmation goes out once the payment has landed
    assert db.query(EmailLog).filter(EmailLog.to_email == "nimal@example.lk").count() == 1


def test_repeat_sync_returns_stored_result_without_calling_provider(db, resident, gateway, pay_now):
    gateway.set_outcome(pay_now.session_id, "success")
    sync_checkout_session(db, pay_now.session_id, gateway, actor=resident, now=NOW)
    calls = gateway.status_calls

    again = sync_checkout_session(db, pay_now.session_id, gateway, actor=resident, now=NOW)
    assert (again.status, again.changed) == ("success", False)
    assert gateway.status_calls == calls
    assert db.query(EmailLog).filter(EmailLog.to_email == "nimal@example.lk").count() == 1


def test_failed_payment_releases_the_slot(db, resident, gateway, pay_now):
    gateway.set_outcome(pay_now.session_id, "failed")
    result = sync_checkout_session(db, pay_now.session_id, gateway, actor=resident, now=NOW)
    assert result.status == "failed"
    assert (result.request.status, result.request.payment_status) == ("payment-failed", "failed")
    assert _reserved(db) == 0


def test_cancel_redirect_resolves_pending_checkout(db, resident, gateway, pay_now):
    result = sync_checkout_session(db, pay_now.session_id, gateway, actor=resident, redirect_status="cancelled",
                                   now=NOW)
    assert result.status == "cancelled"
    assert (result.request.status, result.request.payment_status) == ("cancelled", "failed")
    assert _reserved(db) == 0


def test_pending_checkout_stays_pending(db, resident, gateway, pay_now):
    result = sync_checkout_session(db, pay_now.session_id, gateway, actor=resident, now=NOW + timedelta(minutes=1))
    assert (result.status, result.changed) == ("pending", False)
    assert result.request.status == "pending-payment"
    assert db.query(CheckoutSession).one().status == "pending"
    assert _reserved(db) == 1


def test_expired_checkout_is_cancelled(db, resident, gateway, pay_now):
    result = sync_checkout_session(db, pay_now.session_id, gateway, actor=None, now=NOW + timedelta(minutes=36))
    assert result.status == "cancelled"
    assert result.request.status == "cancelled"
    assert _reserved(db) == 0


def test_unknown_session(db, resident, gateway):
    with pytest.raises(SessionNotFound):
        sync_checkout_session(db, "cs_missing", gateway, actor=resident, now=NOW)


def test_other_resident_cannot_sync(db, other_resident, gateway, pay_now):
    gateway.set_outcome(pay_now.session_id, "success")
    with pytest.raises(AccessDenied):
        sync_checkout_session(db, pay_now.session_id, gateway, actor=other_resident, now=NOW)
    assert gateway.status_calls == 0


def test_provider_error_leaves_state_untouched(db, resident, gateway, pay_now):
    gateway.sessions.clear()
    with pytest.raises(PaymentProviderError):
        sync_checkout_session(db, pay_now.session_id, gateway, actor=resident, now=NOW)
    assert db.query(CheckoutSession).one().status == "pending"
    assert _reserved(db) == 1


def test_amount_mismatch_is_not_accepted(db, resident, gateway, pay_now):
    gateway.set_outcome(pay_now.session_id, "success")
    gateway.sessions[pay_now.session_id]["amount"] = 1
    with pytest.raises(PaymentProviderError):
        sync_checkout_session(db, pay_now.session_id, gateway, actor=resident, now=NOW)
    assert pay_now.request.status == "pending-payment"


def test_concurrent_syncs_apply_once(session_factory, db, resident, gateway, pay_now):
    gateway.set_outcome(pay_now.session_id, "failed")
    barrier = threading.Barrier(2)
    changed = []

    def sync():
        s = session_factory()
        try:
            barrier.wait()
            changed.append(sync_checkout_session(s, pay_now.session_id, gateway, actor=None, now=NOW).changed)
        finally:
            s.close()

    threads = [threading.Thread(target=sync) for _ in range(2)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert sorted(changed) == [False, True]
    assert _reserved(db) == 0


def test_bill_payment_settles_deferred_booking(db, resident, gateway):
    req = booking_service.confirm_booking(db, resident, booking_body(paymentChoice="payLater"), gateway,
                                          now=NOW).request
    cs = booking_service.start_bill_checkout(db, resident, req.id, gateway, now=NOW)
    gateway.set_outcome(cs.provider_session_id, "success")

    result = sync_checkout_session(db, cs.provider_session_id, gateway, actor=resident, now=NOW)
    assert result.status == "success"
    assert (result.request.status, result.request.payment_status) == ("scheduled", "success")
    bill = db.get(Bill, req.billing_id)
    db.refresh(bill)
    assert bill.status == "paid"
    assert bill.payment_method == "sandbox"
    assert _reserved(db) == 1


def test_failed_bill_payment_keeps_booking(db, resident, gateway):
    req = booking_service.confirm_booking(db, resident, booking_body(paymentChoice="payLater"), gateway,
                                          now=NOW).request
    cs = booking_service.start_bill_checkout(db, resident, req.id, gateway, now=NOW)
    gateway.set_outcome(cs.provider_session_id, "failed")

    result = sync_checkout_session(db, cs.provider_session_id, gateway, actor=resident, now=NOW)
    assert result.status == "failed"
    assert (result.request.status, result.request.payment_status) == ("scheduled", "pending")
    assert db.get(Bill, req.billing_id).status == "unpaid"
    assert _reserved(db) == 1


def test_sweep_resolves_only_expired_checkouts(db, resident, gateway, pay_now):
    assert expire_stale_checkout_sessions(db, gateway, now=NOW + timedelta(minutes=10)) == 0
    assert expire_stale_checkout_sessions(db, gateway, now=NOW + timedelta(minutes=36)) == 1
    assert db.query(CheckoutSession).one().status == "cancelled"
    assert _reserved(db) == 0


def test_sweep_honours_a_late_success(db, resident, gateway, pay_now):
    gateway.set_outcome(pay_now.session_id, "success")
    assert expire_stale_checkout_sessions(db, gateway, now=NOW + timedelta(minutes=36)) == 1
    db.refresh(pay_now.request)
    assert pay_now.request.status == "scheduled"
    assert _reserved(db) == 1
