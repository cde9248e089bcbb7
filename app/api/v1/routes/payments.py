from __future__ import annotations
import json
import logging
from typing import Optional

import stripe
from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import HTMLResponse, RedirectResponse
from sqlalchemy.orm import Session

from app.api.deps import get_current_user
from app.api.v1.routes.special_collections import request_to_out
from app.core.config import settings
from app.db.session import get_db
from app.models.user import User
from app.schemas.payments import CheckoutSyncOut
from app.services.errors import SessionNotFound
from app.services.payment_gateway import PaymentGateway, SandboxPaymentGateway, get_payment_gateway
from app.services.reconciliation_service import sync_checkout_session

logger = logging.getLogger(__name__)

router = APIRouter(tags=["payments"])

# Checkout events that carry a session worth reconciling
STRIPE_CHECKOUT_EVENTS = {
    "checkout.session.completed",
    "checkout.session.async_payment_succeeded",
    "checkout.session.async_payment_failed",
    "checkout.session.expired",
}

SYNC_MESSAGES = {
    "success": "Payment received. Your pickup is scheduled.",
    "pending": "Payment is still being processed. Check back shortly.",
    "failed": "Payment failed. The slot has been released; please book again.",
    "cancelled": "Checkout was cancelled. The slot has been released.",
}


@router.get("/special/payment/checkout/{session_id}", response_model=CheckoutSyncOut)
def sync_checkout(session_id: str, status: Optional[str] = None, db: Session = Depends(get_db),
                  user: User = Depends(get_current_user), gateway: PaymentGateway = Depends(get_payment_gateway)):
    """Called by the portal when the resident lands back from checkout. Safe to repeat."""
    result = sync_checkout_session(db, session_id, gateway, actor=user, redirect_status=status)
    message = SYNC_MESSAGES[result.status]
    if result.status == "success" and result.request is not None and result.request.payment_choice == "payLater":
        message = "Payment received. Your bill is settled."
    return CheckoutSyncOut(
        status=result.status,
        message=message,
        request=request_to_out(result.request) if result.request is not None else None,
    )


def _parse_stripe_event(payload: bytes, sig_header: str | None) -> dict:
    if settings.STRIPE_WEBHOOK_SECRET:
        try:
            event = stripe.Webhook.construct_event(payload, sig_header or "", settings.STRIPE_WEBHOOK_SECRET)
        except ValueError:
            raise HTTPException(status_code=400, detail="Invalid payload")
        except stripe.SignatureVerificationError:
            raise HTTPException(status_code=401, detail="Invalid webhook signature")
        return event.to_dict() if hasattr(event, "to_dict") else dict(event)
    try:
        return json.loads(payload or b"{}")
    except ValueError:
        raise HTTPException(status_code=400, detail="Invalid payload")


@router.post("/webhooks/stripe")
async def stripe_webhook(req: Request, db: Session = Depends(get_db),
                         gateway: PaymentGateway = Depends(get_payment_gateway)):
    payload = await req.body()
    event = _parse_stripe_event(payload, req.headers.get("stripe-signature"))
    event_type = event.get("type", "")
    if event_type not in STRIPE_CHECKOUT_EVENTS:
        return {"ok": True, "ignored": event_type}

    session_id = ((event.get("data") or {}).get("object") or {}).get("id")
    if not session_id:
        raise HTTPException(status_code=400, detail="Missing checkout session id")
    try:
        result = sync_checkout_session(db, session_id, gateway, actor=None)
    except SessionNotFound:
        # Not one of ours (or created by another environment on the same account)
        logger.warning("Webhook %s for unknown checkout session %s", event_type, session_id)
        return {"ok": True, "ignored": session_id}
    return {"ok": True, "status": result.status, "changed": result.changed}


@router.get("/sandbox/checkout/{session_id}", response_class=HTMLResponse, include_in_schema=False)
def sandbox_checkout(session_id: str, outcome: Optional[str] = None,
                     gateway: PaymentGateway = Depends(get_payment_gateway)):
    """Stand-in for the hosted payment page while PAYMENT_SANDBOX is on."""
    if not isinstance(gateway, SandboxPaymentGateway) or session_id not in gateway.sessions:
        raise HTTPException(status_code=404, detail="Not found")
    session = gateway.sessions[session_id]
    if outcome in ("success", "failed", "cancelled"):
        gateway.set_outcome(session_id, outcome)
        target = session["cancel_url"] if outcome == "cancelled" else session["success_url"]
        target = target.replace("{CHECKOUT_SESSION_ID}", session_id)
        return RedirectResponse(target, status_code=303)
    links = " | ".join(f'<a href="?outcome={o}">{o}</a>' for o in ("success", "failed", "cancelled"))
    return HTMLResponse(
        f"<h1>Sandbox checkout</h1><p>{session['currency']} {session['amount'] / 100:.2f}</p><p>{links}</p>"
    )
