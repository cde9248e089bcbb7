"""Turns provider checkout outcomes into request, slot and bill state.

The same path serves the resident's return redirect, the provider webhook and
the expiry sweep. The pending -> resolved transition of a checkout record is a
single conditional UPDATE; whoever wins it applies the side effects, everyone
else gets the stored result back.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.db.types import utcnow
from app.models.checkout_session import CheckoutSession
from app.models.special_collection_request import SpecialCollectionRequest
from app.models.user import User
from app.services import billing_service, slot_ledger
from app.services.audit_service import log_audit
from app.services.errors import AccessDenied, PaymentProviderError, SessionNotFound
from app.services.notification_service import notify_booking_scheduled
from app.services.payment_gateway import PaymentGateway

logger = logging.getLogger(__name__)

REDIRECT_CANCELLED = "cancelled"


@dataclass
class ReconciliationResult:
    status: str  # success | pending | failed | cancelled
    request: SpecialCollectionRequest | None
    changed: bool


def _find_session(db: Session, session_id: str) -> CheckoutSession:
    cs = db.execute(
        select(CheckoutSession).where(CheckoutSession.provider_session_id == session_id)
    ).scalar_one_or_none()
    if not cs:
        raise SessionNotFound("Checkout session not found. Please retry your booking.")
    return cs


def _stored(db: Session, cs: CheckoutSession) -> ReconciliationResult:
    return ReconciliationResult(status=cs.status, request=db.get(SpecialCollectionRequest, cs.request_id),
                                changed=False)


def _apply_booking_outcome(db: Session, req: SpecialCollectionRequest, cs: CheckoutSession, outcome: str,
                           now: datetime) -> None:
    if outcome == "success":
        if req.status != "pending-payment":
            # Paid after the request left pending-payment; needs a manual refund.
            logger.error("Payment %s succeeded for request %s in status %s",
                         cs.provider_session_id, req.request_ref, req.status)
            log_audit(db, actor_user_id=None, action="payment_after_close", entity_type="special_collection_request",
                      entity_id=req.id, details={"sessionId": cs.provider_session_id, "status": req.status})
            return
        req.status = "scheduled"
        req.payment_status = "success"
        req.paid_at = now
        req.payment_reference = cs.payment_reference or cs.provider_session_id
        req.receipt_url = cs.receipt_url
        req.payment_due_at = None
        billing_service.mark_bill_paid(db, req.billing_id, payment_method=cs.provider,
                                       payment_reference=req.payment_reference, paid_at=now)
        return

    if req.status != "pending-payment":
        return
    req.status = "payment-failed" if outcome == "failed" else "cancelled"
    req.payment_status = "failed"
    if outcome == "cancelled":
        req.cancellation_reason = "Checkout cancelled or expired"
    slot_ledger.release(db, req.reservation_id)
    billing_service.cancel_bill(db, req.billing_id)


def _apply_bill_outcome(db: Session, req: SpecialCollectionRequest, cs: CheckoutSession, outcome: str,
                        now: datetime) -> None:
    # A failed bill checkout leaves the booking and the bill as they were.
    if outcome != "success":
        return
    billing_service.mark_bill_paid(db, cs.bill_id or req.billing_id, payment_method=cs.provider,
                                   payment_reference=cs.payment_reference, paid_at=now)
    if req.status == "scheduled" and req.payment_status == "pending":
        req.payment_status = "success"
        req.paid_at = now
        req.payment_reference = cs.payment_reference or cs.provider_session_id
        req.receipt_url = cs.receipt_url
        req.payment_due_at = None
    else:
        logger.error("Bill payment %s arrived for request %s in %s/%s",
                     cs.provider_session_id, req.request_ref, req.status, req.payment_status)
        log_audit(db, actor_user_id=None, action="payment_after_close", entity_type="special_collection_request",
                  entity_id=req.id, details={"sessionId": cs.provider_session_id, "status": req.status})


def sync_checkout_session(db: Session, session_id: str, gateway: PaymentGateway, actor: User | None = None,
                          redirect_status: str | None = None, now: datetime | None = None) -> ReconciliationResult:
    """Reconcile one checkout session. `actor` is None for the webhook and the sweep.

    A still-pending provider answer is final when the resident came back through
    the cancel URL or the session has expired.
    """
    now = now or utcnow()
    cs = _find_session(db, session_id)
    if actor is not None and cs.resident_id != actor.id:
        raise AccessDenied("This checkout session belongs to another resident.")
    if cs.status != "pending":
        return _stored(db, cs)

    provider = gateway.get_session_status(session_id)
    outcome = provider.payment_status
    if outcome == "pending":
        if redirect_status == REDIRECT_CANCELLED or cs.expires_at <= now:
            outcome = "cancelled"
        else:
            return ReconciliationResult(status="pending", request=db.get(SpecialCollectionRequest, cs.request_id),
                                        changed=False)
    if outcome == "success" and provider.amount_total is not None and provider.amount_total != cs.amount:
        logger.error("Amount mismatch on %s: expected %s, provider reported %s",
                     session_id, cs.amount, provider.amount_total)
        raise PaymentProviderError("Payment provider reported an unexpected amount.",
                                   details={"expected": cs.amount, "reported": provider.amount_total})

    won = db.execute(
        update(CheckoutSession)
        .where(CheckoutSession.id == cs.id, CheckoutSession.status == "pending")
        .values(status=outcome, resolved_at=now, payment_reference=provider.payment_reference,
                receipt_url=provider.receipt_url)
        .execution_options(synchronize_session=False)
    )
    if won.rowcount != 1:
        db.rollback()
        db.refresh(cs)
        return _stored(db, cs)
    db.refresh(cs)

    req = db.get(SpecialCollectionRequest, cs.request_id)
    if req is None:
        logger.error("Checkout %s points at missing request %s", session_id, cs.request_id)
    elif cs.purpose == "bill":
        _apply_bill_outcome(db, req, cs, outcome, now)
    else:
        _apply_booking_outcome(db, req, cs, outcome, now)
    log_audit(db, actor_user_id=actor.id if actor else None, action=f"checkout_{outcome}",
              entity_type="checkout_session", entity_id=cs.id,
              details={"sessionId": session_id, "purpose": cs.purpose, "requestId": cs.request_id,
                       "reference": provider.payment_reference})
    db.commit()
    logger.info("Checkout %s resolved as %s", session_id, outcome)

    if req is not None and cs.purpose == "booking" and outcome == "success" and req.status == "scheduled":
        try:
            notify_booking_scheduled(db, req)
        except SQLAlchemyError:
            db.rollback()
            logger.exception("Could not queue notices for %s", req.request_ref)
    return ReconciliationResult(status=outcome, request=req, changed=True)


def expire_stale_checkout_sessions(db: Session, gateway: PaymentGateway, now: datetime | None = None) -> int:
    """Reconcile pending checkouts past their expiry so their slots go back to the pool."""
    now = now or utcnow()
    stale = db.execute(
        select(CheckoutSession.provider_session_id).where(
            CheckoutSession.status == "pending",
            CheckoutSession.expires_at <= now,
        )
    ).scalars().all()
    resolved = 0
    for session_id in stale:
        try:
            result = sync_checkout_session(db, session_id, gateway, actor=None, now=now)
        except PaymentProviderError as e:
            db.rollback()
            logger.warning("Could not reconcile expired checkout %s: %s", session_id, e)
            continue
        if result.changed:
            resolved += 1
    if resolved:
        logger.info("Resolved %d expired checkout sessions", resolved)
    return resolved
