"""Booking state machine for special collections.

    Drafting -> (reserve slot) -> PendingDecision
        -> NotRequired       -> scheduled / not-required
        -> ImmediatePayment  -> pending-payment / pending   (slot held until reconciliation)
        -> Deferred          -> scheduled / pending          (bill due at slot start)

The slot is reserved before anything is persisted; every failure after the
reservation rolls back and releases it, so a reservation never outlives a
failed confirmation.
"""
from __future__ import annotations

import logging
import random
import string
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal

from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.core.config import settings
from app.db.types import utcnow
from app.models.checkout_session import CheckoutSession
from app.models.special_collection_request import SpecialCollectionRequest
from app.models.user import User
from app.schemas.special_collection import ConfirmBookingRequest
from app.services import billing_service, slot_ledger
from app.services.audit_service import log_audit
from app.services.availability_service import resolve_policy, validate_quantity, validate_weight
from app.services.errors import (
    AccessDenied, CapacityExceeded, InvalidRequestState, PaymentProviderError, PaymentsUnavailable, RequestNotFound,
    SlotUnavailable, ValidationError,
)
from app.services.notification_service import notify_booking_scheduled
from app.services.payment_gateway import PaymentGateway
from app.services.pricing_service import PaymentQuote, compute_payment
from app.services.reconciliation_service import sync_checkout_session

logger = logging.getLogger(__name__)

PAYMENT_CHOICES = ("none", "payNow", "payLater")

CONTACT_FIELDS = (
    ("residentName", "resident name"),
    ("address", "address"),
    ("district", "district"),
    ("email", "email"),
    ("phone", "phone number"),
)


@dataclass
class BookingOutcome:
    request: SpecialCollectionRequest
    checkout_url: str | None = None
    session_id: str | None = None


def make_request_ref() -> str:
    return "SC-" + "".join(random.choices(string.ascii_uppercase + string.digits, k=8))


def default_return_urls(success_url: str | None, cancel_url: str | None) -> tuple[str, str]:
    base = settings.CLIENT_BASE_URL.rstrip("/")
    return (success_url or base + settings.CHECKOUT_SUCCESS_PATH,
            cancel_url or base + settings.CHECKOUT_CANCEL_PATH)


def _validate_contact(body: ConfirmBookingRequest) -> None:
    for field, label in CONTACT_FIELDS:
        value = (getattr(body, field) or "").strip()
        if not value or (field == "email" and "@" not in value):
            raise ValidationError(field, f"Please provide a valid {label}.")


def _validate_slot(body: ConfirmBookingRequest, policy_id: str, now: datetime) -> slot_ledger.SlotDefinition:
    if not (body.slotId or "").strip():
        raise ValidationError("slotId", "Slot id is required.")
    slot = slot_ledger.parse_slot_id(body.slotId.strip())
    if slot.item_policy_id != policy_id:
        raise ValidationError("slotId", "Selected slot does not belong to the chosen item type.")
    if slot.starts_at <= now:
        raise ValidationError("slotId", "Selected slot is in the past. Please check availability again.")
    cfg = slot_ledger.get_slot_config()
    if slot.date_str not in {d.isoformat() for d in slot_ledger.look_ahead_dates(now, cfg)}:
        raise ValidationError("slotId", f"Pickups can only be booked within the next {cfg.days_ahead} days.")
    return slot


def _new_request(resident: User, body: ConfirmBookingRequest, policy, quantity: int, weight: float,
                 slot: slot_ledger.SlotDefinition, quote: PaymentQuote, choice: str,
                 token: slot_ledger.ReservationToken) -> SpecialCollectionRequest:
    return SpecialCollectionRequest(
        id=str(uuid.uuid4()),
        request_ref=make_request_ref(),
        resident_id=resident.id,
        resident_name=body.residentName.strip(),
        owner_name=(body.ownerName or "").strip(),
        address=body.address.strip(),
        district=body.district.strip(),
        contact_email=body.email.strip().lower(),
        contact_phone=body.phone.strip(),
        special_notes=(body.specialNotes or "").strip(),
        item_policy_id=policy.id,
        item_label=policy.label,
        quantity=quantity,
        weight_per_item_kg=Decimal(str(weight)),
        total_weight_kg=quote.total_weight_kg,
        slot_id=slot.slot_id,
        slot_starts_at=slot.starts_at,
        slot_ends_at=slot.ends_at,
        reservation_id=token.reservation_id,
        payment_choice=choice if quote.required else "none",
        payment_required=quote.required,
        currency=quote.currency,
        payment_base_charge=quote.base_charge,
        payment_weight_charge=quote.weight_charge,
        payment_tax_charge=quote.tax_charge,
        payment_amount=quote.amount,
    )


def _open_checkout(db: Session, gateway: PaymentGateway, req: SpecialCollectionRequest, purpose: str,
                   success_url: str | None, cancel_url: str | None, customer_email: str,
                   now: datetime) -> CheckoutSession:
    success_url, cancel_url = default_return_urls(success_url, cancel_url)
    expires_at = now + timedelta(minutes=settings.CHECKOUT_SESSION_EXPIRY_MINUTES)
    info = gateway.create_checkout_session(
        amount=req.payment_amount,
        currency=req.currency,
        success_url=success_url,
        cancel_url=cancel_url,
        description=f"Special waste collection - {req.item_label}",
        metadata={"request_id": req.id, "request_ref": req.request_ref, "slot_id": req.slot_id, "purpose": purpose},
        customer_email=customer_email,
        expires_at=expires_at,
    )
    cs = CheckoutSession(
        id=str(uuid.uuid4()),
        provider=info.provider,
        provider_session_id=info.session_id,
        purpose=purpose,
        request_id=req.id,
        resident_id=req.resident_id,
        bill_id=req.billing_id,
        amount=req.payment_amount,
        currency=req.currency,
        checkout_url=info.checkout_url,
        status="pending",
        expires_at=expires_at,
    )
    db.add(cs)
    return cs


def confirm_booking(db: Session, resident: User, body: ConfirmBookingRequest,
                    gateway: PaymentGateway | None, now: datetime | None = None) -> BookingOutcome:
    now = now or utcnow()

    # Drafting: re-validate everything the client sent; the first bad field wins.
    _validate_contact(body)
    policy = resolve_policy(body.itemType)
    quantity = validate_quantity(body.quantity)
    weight = validate_weight(body.weightPerItem)
    slot = _validate_slot(body, policy.id, now)
    choice = (body.paymentChoice or "none").strip()
    if choice not in PAYMENT_CHOICES:
        raise ValidationError("paymentChoice", "Payment choice must be one of none, payNow or payLater.")

    # Server-side price; nothing the client echoes is trusted.
    quote = compute_payment(policy, quantity, weight)
    if quote.required and choice == "none":
        raise ValidationError("paymentChoice", "Payment is required for this pickup. Choose to pay now or later.")
    if quote.required and choice == "payNow" and gateway is None:
        raise PaymentsUnavailable("Online payments are currently unavailable.")

    try:
        token = slot_ledger.reserve(db, slot)
    except CapacityExceeded:
        raise SlotUnavailable("This slot is no longer available. Please check availability again.")

    checkout = None
    try:
        req = _new_request(resident, body, policy, quantity, weight, slot, quote, choice, token)
        if not quote.required:
            req.status = "scheduled"
            req.payment_status = "not-required"
        elif choice == "payNow":
            req.status = "pending-payment"
            req.payment_status = "pending"
            checkout = _open_checkout(db, gateway, req, "booking", body.successUrl, body.cancelUrl,
                                      req.contact_email, now)
            req.payment_reference = checkout.provider_session_id
            req.payment_due_at = checkout.expires_at
        else:
            req.status = "scheduled"
            req.payment_status = "pending"
            req.payment_due_at = slot.starts_at
            req.billing_id = billing_service.create_outstanding_bill(
                db, resident.id, quote.amount, quote.currency,
                f"Special collection {req.request_ref} - {policy.label}",
                due_at=slot.starts_at, request_id=req.id,
            )
        db.add(req)
        log_audit(db, actor_user_id=resident.id, action="booking_created", entity_type="special_collection_request",
                  entity_id=req.id, details={"status": req.status, "paymentStatus": req.payment_status,
                                             "slotId": slot.slot_id, "amount": quote.amount})
        db.commit()
    except Exception:
        db.rollback()
        slot_ledger.release(db, token.reservation_id)
        db.commit()
        logger.warning("Booking on slot %s failed after reservation; reservation %s released",
                       slot.slot_id, token.reservation_id)
        raise

    logger.info("Booking %s created on %s: %s/%s", req.request_ref, slot.slot_id, req.status, req.payment_status)
    if req.status == "scheduled":
        _notify(db, req)
    return BookingOutcome(
        request=req,
        checkout_url=checkout.checkout_url if checkout else None,
        session_id=checkout.provider_session_id if checkout else None,
    )


def _notify(db: Session, req: SpecialCollectionRequest) -> None:
    try:
        notify_booking_scheduled(db, req)
    except SQLAlchemyError:
        db.rollback()
        logger.exception("Could not queue notices for %s", req.request_ref)


def get_owned_request(db: Session, resident: User, request_id: str) -> SpecialCollectionRequest:
    req = db.get(SpecialCollectionRequest, request_id)
    if not req:
        raise RequestNotFound("Special collection request not found.")
    if req.resident_id != resident.id:
        raise AccessDenied("This request belongs to another resident.")
    return req


def list_resident_requests(db: Session, resident: User) -> list[SpecialCollectionRequest]:
    return list(db.execute(
        select(SpecialCollectionRequest)
        .where(SpecialCollectionRequest.resident_id == resident.id)
        .order_by(SpecialCollectionRequest.created_at.desc())
    ).scalars())


def start_bill_checkout(db: Session, resident: User, request_id: str, gateway: PaymentGateway,
                        success_url: str | None = None, cancel_url: str | None = None,
                        now: datetime | None = None) -> CheckoutSession:
    """Pay a deferred booking online before its due date. Reuses a live checkout if one exists.

    A checkout must expire before the bill falls due, so online payment closes
    CHECKOUT_SESSION_EXPIRY_MINUTES before payment_due_at.
    """
    now = now or utcnow()
    req = get_owned_request(db, resident, request_id)
    if not (req.status == "scheduled" and req.payment_status == "pending" and req.billing_id):
        raise InvalidRequestState("This request has no outstanding bill to pay.")
    if req.payment_due_at:
        if req.payment_due_at <= now:
            raise InvalidRequestState("The payment due date for this request has passed.")
        window = timedelta(minutes=settings.CHECKOUT_SESSION_EXPIRY_MINUTES)
        if req.payment_due_at < now + window:
            raise InvalidRequestState(
                f"Online payment for this bill closes {settings.CHECKOUT_SESSION_EXPIRY_MINUTES} minutes "
                "before the collection slot."
            )

    live = db.execute(
        select(CheckoutSession).where(
            CheckoutSession.request_id == req.id,
            CheckoutSession.purpose == "bill",
            CheckoutSession.status == "pending",
            CheckoutSession.expires_at > now,
        )
    ).scalars().first()
    if live:
        return live

    cs = _open_checkout(db, gateway, req, "bill", success_url, cancel_url, req.contact_email, now)
    log_audit(db, actor_user_id=resident.id, action="bill_checkout_started", entity_type="special_collection_request",
              entity_id=req.id, details={"sessionId": cs.provider_session_id, "billId": req.billing_id})
    db.commit()
    return cs


def _close_bill_checkouts(db: Session, req: SpecialCollectionRequest, gateway: PaymentGateway | None,
                          actor: User | None, now: datetime) -> bool:
    """Expire every pending bill checkout of `req` at the provider and reconcile it.

    A checkout paid in the meantime settles the bill. Returns False while the
    provider still reports a checkout as in progress.
    """
    open_ids = db.execute(
        select(CheckoutSession.provider_session_id).where(
            CheckoutSession.request_id == req.id,
            CheckoutSession.purpose == "bill",
            CheckoutSession.status == "pending",
        )
    ).scalars().all()
    if open_ids and gateway is None:
        raise PaymentsUnavailable("Online payments are currently unavailable.")
    for session_id in open_ids:
        gateway.expire_session(session_id)
        result = sync_checkout_session(db, session_id, gateway, actor=actor, now=now)
        if result.status == "pending":
            return False
    return True


def cancel_booking(db: Session, resident: User, request_id: str, reason: str = "",
                   gateway: PaymentGateway | None = None, now: datetime | None = None) -> SpecialCollectionRequest:
    """Resident cancellation of an unpaid or free scheduled pickup; frees the slot."""
    now = now or utcnow()
    req = get_owned_request(db, resident, request_id)
    if req.status == "scheduled" and req.payment_status == "pending":
        if not _close_bill_checkouts(db, req, gateway, resident, now):
            raise InvalidRequestState("A payment for this bill is still being processed. Please try again shortly.")
    result = db.execute(
        update(SpecialCollectionRequest)
        .where(
            SpecialCollectionRequest.id == req.id,
            SpecialCollectionRequest.status == "scheduled",
            SpecialCollectionRequest.payment_status.in_(["not-required", "pending"]),
        )
        .values(status="cancelled", cancellation_reason=reason.strip() or "Cancelled by resident", updated_at=now)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        db.rollback()
        raise InvalidRequestState("Only scheduled pickups without a completed payment can be cancelled online.")
    slot_ledger.release(db, req.reservation_id)
    billing_service.cancel_bill(db, req.billing_id)
    log_audit(db, actor_user_id=resident.id, action="booking_cancelled", entity_type="special_collection_request",
              entity_id=req.id, details={"reason": reason})
    db.commit()
    db.refresh(req)
    logger.info("Booking %s cancelled by resident", req.request_ref)
    return req


def expire_overdue_deferred_bookings(db: Session, now: datetime | None = None,
                                     gateway: PaymentGateway | None = None) -> int:
    """Cancel deferred bookings whose payment_due_at passed without payment and free their slots.

    Open bill checkouts are closed first; a booking whose checkout turns out
    to be paid stays scheduled.
    """
    now = now or utcnow()
    overdue = db.execute(
        select(SpecialCollectionRequest).where(
            SpecialCollectionRequest.status == "scheduled",
            SpecialCollectionRequest.payment_status == "pending",
            SpecialCollectionRequest.payment_due_at.is_not(None),
            SpecialCollectionRequest.payment_due_at < now,
        )
    ).scalars().all()
    expired = 0
    for req in overdue:
        try:
            closed = _close_bill_checkouts(db, req, gateway, None, now)
        except PaymentProviderError as e:
            db.rollback()
            logger.warning("Could not close bill checkouts of %s: %s", req.request_ref, e)
            continue
        if not closed:
            logger.info("Bill payment for %s still in progress; expiry deferred", req.request_ref)
            continue
        result = db.execute(
            update(SpecialCollectionRequest)
            .where(
                SpecialCollectionRequest.id == req.id,
                SpecialCollectionRequest.status == "scheduled",
                SpecialCollectionRequest.payment_status == "pending",
            )
            .values(status="cancelled", payment_status="failed", cancellation_reason="Payment overdue",
                    updated_at=now)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            db.rollback()
            continue
        slot_ledger.release(db, req.reservation_id)
        billing_service.cancel_bill(db, req.billing_id)
        log_audit(db, actor_user_id=None, action="booking_expired", entity_type="special_collection_request",
                  entity_id=req.id, details={"paymentDueAt": req.payment_due_at})
        db.commit()
        expired += 1
    if expired:
        logger.info("Expired %d overdue deferred bookings", expired)
    return expired
