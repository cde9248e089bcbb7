import logging

from sqlalchemy.orm import Session

from app.core.config import settings
from app.db.types import utcnow
from app.models.special_collection_request import SpecialCollectionRequest
from app.services.email_service import queue_email
from app.services.pricing_service import to_major
from app.services.slot_ledger import local_tz

logger = logging.getLogger(__name__)


def _slot_text(req: SpecialCollectionRequest) -> str:
    tz = local_tz()
    start = req.slot_starts_at.astimezone(tz)
    end = req.slot_ends_at.astimezone(tz)
    return f"{start:%d %b %Y}, {start:%H:%M} - {end:%H:%M}"


def _payment_text(req: SpecialCollectionRequest) -> str:
    if req.payment_status == "not-required":
        return "No payment is required for this pickup."
    amount = f"{req.currency} {to_major(req.payment_amount):,.2f}"
    if req.payment_status == "success":
        return f"Payment received: {amount} (ref {req.payment_reference or '-'})."
    due = req.payment_due_at.astimezone(local_tz()) if req.payment_due_at else None
    return f"Amount due: {amount}" + (f", payable before {due:%d %b %Y %H:%M}." if due else ".")


def notify_booking_scheduled(db: Session, req: SpecialCollectionRequest) -> None:
    """Resident confirmation and authority notice. Never fails the booking."""
    slot = _slot_text(req)
    resident_body = (
        f"Dear {req.resident_name},\n\n"
        f"Your special collection {req.request_ref} is scheduled.\n\n"
        f"Item: {req.item_label} x {req.quantity}\n"
        f"Slot: {slot}\n"
        f"Address: {req.address}, {req.district}\n"
        f"{_payment_text(req)}\n\n"
        "Please keep the items accessible at the kerbside during the slot.\n"
    )
    queue_email(db, req.contact_email, f"Special collection {req.request_ref} scheduled", resident_body,
                related_request_ref=req.request_ref)
    req.resident_notified_at = utcnow()

    if settings.AUTHORITY_NOTIFY_EMAIL:
        authority_body = (
            f"New special pickup {req.request_ref}\n\n"
            f"Item: {req.item_label} x {req.quantity} (~{req.total_weight_kg} kg)\n"
            f"Slot: {slot}\n"
            f"Address: {req.address}, {req.district}\n"
            f"Contact: {req.resident_name} / {req.contact_phone}\n"
            f"Notes: {req.special_notes or '-'}\n"
        )
        queue_email(db, settings.AUTHORITY_NOTIFY_EMAIL, f"Special pickup {req.request_ref} ({req.district})",
                    authority_body, related_request_ref=req.request_ref)
        req.authority_notified_at = utcnow()
    db.commit()
    logger.info("Queued scheduling notices for %s", req.request_ref)
