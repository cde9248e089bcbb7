from __future__ import annotations

import io

from reportlab.lib.pagesizes import A4
from reportlab.pdfgen import canvas

from app.core.config import settings
from app.db.types import utcnow
from app.models.special_collection_request import SpecialCollectionRequest
from app.services.pricing_service import to_major
from app.services.slot_ledger import local_tz


def _money(req: SpecialCollectionRequest, minor: int) -> str:
    return f"{req.currency} {to_major(minor):,.2f}"


def render_receipt_pdf_bytes(req: SpecialCollectionRequest) -> bytes:
    """Return an A4 PDF receipt for a scheduled special collection. Pure function."""
    tz = local_tz()
    start = req.slot_starts_at.astimezone(tz)
    end = req.slot_ends_at.astimezone(tz)

    buf = io.BytesIO()
    c = canvas.Canvas(buf, pagesize=A4)
    _, h = A4

    # Header
    c.setFont("Helvetica-Bold", 18)
    c.drawString(40, h - 60, "Special Collection Receipt")
    c.setFont("Helvetica", 11)
    c.drawString(40, h - 80, f"Reference: {req.request_ref}")
    c.drawString(40, h - 96, settings.APP_NAME)

    # Resident block
    c.setFont("Helvetica-Bold", 12)
    c.drawString(40, h - 130, "Resident")
    c.setFont("Helvetica", 11)
    c.drawString(40, h - 148, req.resident_name)
    c.drawString(40, h - 164, f"{req.address}, {req.district}")
    c.drawString(40, h - 180, f"{req.contact_email} / {req.contact_phone}")

    # Pickup block
    c.setFont("Helvetica-Bold", 12)
    c.drawString(40, h - 215, "Pickup")
    c.setFont("Helvetica", 11)
    c.drawString(40, h - 233, f"Item:   {req.item_label} x {req.quantity}")
    c.drawString(40, h - 249, f"Weight: {req.total_weight_kg} kg (approx.)")
    c.drawString(40, h - 265, f"Date:   {start:%d %b %Y}")
    c.drawString(40, h - 281, f"Time:   {start:%H:%M} - {end:%H:%M}")

    # Payment
    c.setFont("Helvetica-Bold", 12)
    c.drawString(40, h - 318, "Payment")
    c.setFont("Helvetica", 11)
    y = h - 336
    if req.payment_status == "not-required":
        c.drawString(40, y, "No payment required")
    else:
        for label, minor in (("Base charge", req.payment_base_charge), ("Weight surcharge", req.payment_weight_charge),
                             ("Tax", req.payment_tax_charge), ("Total", req.payment_amount)):
            c.drawString(40, y, f"{label}:")
            c.drawRightString(300, y, _money(req, minor))
            y -= 16
        c.drawString(40, y, f"Status: {req.payment_status}   Ref: {req.payment_reference or '-'}")
        if req.paid_at:
            c.drawString(40, y - 16, f"Paid at: {req.paid_at.astimezone(tz):%d %b %Y %H:%M}")

    # Footer
    c.setFont("Helvetica", 9)
    c.drawString(40, 40, "This receipt is generated automatically for scheduled special collections.")
    c.drawString(40, 26, f"Generated: {utcnow().isoformat()}")

    c.showPage()
    c.save()
    return buf.getvalue()
