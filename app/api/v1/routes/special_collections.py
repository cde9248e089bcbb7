from __future__ import annotations

from fastapi import APIRouter, Depends
from fastapi.responses import Response
from sqlalchemy.orm import Session

from app.api.deps import get_current_user, get_optional_payment_gateway
from app.db.session import get_db
from app.models.special_collection_request import SpecialCollectionRequest
from app.models.user import User
from app.schemas.payments import CheckoutStartOut
from app.schemas.special_collection import (
    AvailabilityOut, AvailabilityRequest, BillCheckoutRequest, BookingOut, CancelRequestIn, ConfigOut,
    ConfirmBookingRequest, ItemPolicyOut, PaymentQuoteOut, RequestListOut, RequestOut, SlotConfigOut, SlotOut,
    SlotRefOut,
)
from app.core.config import settings
from app.services import booking_service
from app.services.availability_service import check_availability
from app.services.errors import InvalidRequestState
from app.services.item_policy_service import get_slot_config, list_item_policies
from app.services.payment_gateway import PaymentGateway, get_payment_gateway
from app.services.pricing_service import PaymentQuote, to_major
from app.services.receipt_service import render_receipt_pdf_bytes

router = APIRouter(prefix="/special", tags=["special-collections"])


def _iso(dt):
    return dt.isoformat() if dt else None


def quote_to_out(q: PaymentQuote) -> PaymentQuoteOut:
    return PaymentQuoteOut(
        required=q.required,
        baseCharge=to_major(q.base_charge),
        weightCharge=to_major(q.weight_charge),
        taxCharge=to_major(q.tax_charge),
        amount=to_major(q.amount),
        totalWeightKg=float(q.total_weight_kg),
        taxRatePercent=float(q.tax_rate_percent),
        currency=q.currency,
    )


def request_to_out(r: SpecialCollectionRequest) -> RequestOut:
    return RequestOut(
        id=r.id,
        requestRef=r.request_ref,
        itemType=r.item_policy_id,
        itemLabel=r.item_label,
        quantity=r.quantity,
        weightPerItemKg=float(r.weight_per_item_kg),
        totalWeightKg=float(r.total_weight_kg),
        slot=SlotRefOut(slotId=r.slot_id, start=_iso(r.slot_starts_at), end=_iso(r.slot_ends_at)),
        status=r.status,
        paymentChoice=r.payment_choice,
        paymentRequired=bool(r.payment_required),
        paymentStatus=r.payment_status,
        currency=r.currency,
        paymentBaseCharge=to_major(r.payment_base_charge),
        paymentWeightCharge=to_major(r.payment_weight_charge),
        paymentTaxCharge=to_major(r.payment_tax_charge),
        paymentAmount=to_major(r.payment_amount),
        paymentReference=r.payment_reference,
        receiptUrl=r.receipt_url,
        paymentDueAt=_iso(r.payment_due_at),
        paidAt=_iso(r.paid_at),
        billingId=r.billing_id,
        cancellationReason=r.cancellation_reason,
        createdAt=_iso(r.created_at),
    )


@router.get("/config", response_model=ConfigOut)
def get_config():
    """Item catalogue and slot grid for the booking form."""
    cfg = get_slot_config()
    items = [
        ItemPolicyOut(
            id=p.id,
            label=p.label,
            allow=p.allow,
            description=p.description,
            baseFee=to_major(p.base_fee),
            perKgRate=to_major(p.per_kg_rate),
            freeWeightKg=p.free_weight_kg,
            taxRatePercent=p.tax_rate_percent if p.tax_rate_percent is not None else settings.TAX_RATE_PERCENT,
        )
        for p in list_item_policies()
    ]
    return ConfigOut(
        items=items,
        slotConfig=SlotConfigOut(
            daysAhead=cfg.days_ahead,
            startHour=cfg.start_hour,
            endHour=cfg.end_hour,
            bucketMinutes=cfg.bucket_minutes,
            capacityPerSlot=cfg.capacity_per_slot,
            excludeWeekends=cfg.exclude_weekends,
            timezone=cfg.timezone,
        ),
    )


@router.post("/availability", response_model=AvailabilityOut)
def availability(body: AvailabilityRequest, db: Session = Depends(get_db),
                 user: User = Depends(get_current_user)):
    result = check_availability(db, body)
    return AvailabilityOut(
        itemType=result.policy.id,
        itemLabel=result.policy.label,
        payment=quote_to_out(result.payment),
        slots=[
            SlotOut(
                slotId=a.slot.slot_id,
                dateStr=a.slot.date_str,
                start=a.slot.start,
                end=a.slot.end,
                startsAt=a.slot.starts_at.isoformat(),
                endsAt=a.slot.ends_at.isoformat(),
                capacityTotal=a.capacity_total,
                capacityLeft=a.capacity_left,
            )
            for a in result.slots
        ],
    )


@router.post("/confirm", response_model=BookingOut, status_code=201)
def confirm(body: ConfirmBookingRequest, db: Session = Depends(get_db), user: User = Depends(get_current_user),
            gateway: PaymentGateway | None = Depends(get_optional_payment_gateway)):
    outcome = booking_service.confirm_booking(db, user, body, gateway)
    if outcome.checkout_url:
        message = "Slot held. Complete the payment to confirm your pickup."
    elif outcome.request.payment_status == "pending":
        message = "Pickup scheduled. Please settle the bill before the collection slot."
    else:
        message = "Pickup scheduled."
    return BookingOut(
        message=message,
        request=request_to_out(outcome.request),
        checkoutUrl=outcome.checkout_url,
        sessionId=outcome.session_id,
    )


@router.get("/my", response_model=RequestListOut)
def my_requests(db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    return RequestListOut(requests=[request_to_out(r) for r in booking_service.list_resident_requests(db, user)])


@router.post("/requests/{request_id}/cancel", response_model=RequestOut)
def cancel_request(request_id: str, body: CancelRequestIn, db: Session = Depends(get_db),
                   user: User = Depends(get_current_user),
                   gateway: PaymentGateway | None = Depends(get_optional_payment_gateway)):
    return request_to_out(booking_service.cancel_booking(db, user, request_id, body.reason, gateway=gateway))


@router.post("/requests/{request_id}/checkout", response_model=CheckoutStartOut)
def start_bill_checkout(request_id: str, body: BillCheckoutRequest, db: Session = Depends(get_db),
                        user: User = Depends(get_current_user), gateway: PaymentGateway = Depends(get_payment_gateway)):
    cs = booking_service.start_bill_checkout(db, user, request_id, gateway, body.successUrl, body.cancelUrl)
    return CheckoutStartOut(checkoutUrl=cs.checkout_url, sessionId=cs.provider_session_id)


@router.get("/requests/{request_id}/receipt")
def receipt(request_id: str, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    req = booking_service.get_owned_request(db, user, request_id)
    if req.status != "scheduled" or req.payment_status not in ("success", "not-required"):
        raise InvalidRequestState("A receipt is available once the pickup is scheduled and paid.")
    pdf = render_receipt_pdf_bytes(req)
    return Response(
        content=pdf,
        media_type="application/pdf",
        headers={"Content-Disposition": f'inline; filename="receipt-{req.request_ref}.pdf"'},
    )
