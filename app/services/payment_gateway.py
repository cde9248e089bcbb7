from __future__ import annotations

import logging
import threading
import uuid
from dataclasses import dataclass
from datetime import datetime

import stripe

from app.core.config import settings
from app.services.errors import PaymentProviderError, PaymentsUnavailable

logger = logging.getLogger(__name__)

PROVIDER_STATUSES = ("success", "pending", "failed", "cancelled")


@dataclass(frozen=True)
class CheckoutSessionInfo:
    session_id: str
    checkout_url: str
    provider: str


@dataclass(frozen=True)
class CheckoutStatus:
    payment_status: str  # success | pending | failed | cancelled
    amount_total: int | None = None
    receipt_url: str | None = None
    payment_reference: str | None = None


class PaymentGateway:
    """External checkout provider as seen by the booking and reconciliation services."""

    provider = "none"

    def create_checkout_session(self, *, amount: int, currency: str, success_url: str, cancel_url: str,
                                description: str, metadata: dict, customer_email: str | None = None,
                                expires_at: datetime | None = None) -> CheckoutSessionInfo:
        raise NotImplementedError

    def get_session_status(self, session_id: str) -> CheckoutStatus:
        raise NotImplementedError

    def expire_session(self, session_id: str) -> None:
        """Stop an open checkout from accepting payment. Sessions that are no longer open are left alone."""
        raise NotImplementedError


def _stripe_field(obj, name):
    if obj is None or isinstance(obj, str):
        return None
    return obj.get(name) if hasattr(obj, "get") else getattr(obj, name, None)


def map_stripe_session(session) -> CheckoutStatus:
    """Collapse a Checkout Session (+ expanded payment intent) into our four outcomes."""
    intent = _stripe_field(session, "payment_intent")
    intent_status = _stripe_field(intent, "status")
    charge = _stripe_field(intent, "latest_charge")

    if _stripe_field(session, "payment_status") == "paid" or intent_status == "succeeded":
        status = "success"
    elif _stripe_field(session, "status") == "expired" or intent_status == "canceled":
        status = "cancelled"
    elif intent_status == "requires_payment_method" and _stripe_field(intent, "last_payment_error"):
        status = "failed"
    else:
        status = "pending"

    reference = intent if isinstance(intent, str) else _stripe_field(intent, "id")
    return CheckoutStatus(
        payment_status=status,
        amount_total=_stripe_field(session, "amount_total"),
        receipt_url=_stripe_field(charge, "receipt_url"),
        payment_reference=reference or _stripe_field(session, "id"),
    )


class StripePaymentGateway(PaymentGateway):
    provider = "stripe"

    def __init__(self, api_key: str, max_network_retries: int = 2):
        stripe.api_key = api_key
        stripe.max_network_retries = max_network_retries

    def create_checkout_session(self, *, amount, currency, success_url, cancel_url, description, metadata,
                                customer_email=None, expires_at=None) -> CheckoutSessionInfo:
        params = {
            "mode": "payment",
            "payment_method_types": ["card"],
            "success_url": success_url,
            "cancel_url": cancel_url,
            "line_items": [{
                "price_data": {
                    "currency": currency.lower(),
                    "product_data": {"name": description[:100]},
                    "unit_amount": int(amount),
                },
                "quantity": 1,
            }],
            "metadata": {k: str(v) for k, v in metadata.items()},
        }
        if customer_email:
            params["customer_email"] = customer_email
        if expires_at:
            params["expires_at"] = int(expires_at.timestamp())
        try:
            session = stripe.checkout.Session.create(**params)
        except stripe.StripeError as e:
            logger.error("Stripe checkout session creation failed: %s", e)
            raise PaymentProviderError(f"Payment provider error: {e.user_message or str(e)}")
        return CheckoutSessionInfo(session_id=session.id, checkout_url=session.url, provider=self.provider)

    def get_session_status(self, session_id: str) -> CheckoutStatus:
        try:
            session = stripe.checkout.Session.retrieve(
                session_id, expand=["payment_intent", "payment_intent.latest_charge"],
            )
        except stripe.StripeError as e:
            logger.error("Stripe session %s lookup failed: %s", session_id, e)
            raise PaymentProviderError(f"Payment provider error: {e.user_message or str(e)}")
        return map_stripe_session(session)

    def expire_session(self, session_id: str) -> None:
        try:
            stripe.checkout.Session.expire(session_id)
        except stripe.InvalidRequestError as e:
            # Only open sessions can be expired
            logger.info("Stripe session %s not expired: %s", session_id, e)
        except stripe.StripeError as e:
            logger.error("Stripe session %s expiry failed: %s", session_id, e)
            raise PaymentProviderError(f"Payment provider error: {e.user_message or str(e)}")


class SandboxPaymentGateway(PaymentGateway):
    """In-memory checkout for local development: sessions resolve to `default_outcome`
    unless `set_outcome` says otherwise."""

    provider = "sandbox"

    def __init__(self, default_outcome: str = "success", base_url: str = "http://localhost:8000"):
        if default_outcome not in PROVIDER_STATUSES:
            raise ValueError(f"unknown sandbox outcome: {default_outcome}")
        self.default_outcome = default_outcome
        self.base_url = base_url.rstrip("/")
        self.sessions: dict[str, dict] = {}
        self.status_calls = 0
        self.fail_next_create = False
        self._lock = threading.Lock()

    def create_checkout_session(self, *, amount, currency, success_url, cancel_url, description, metadata,
                                customer_email=None, expires_at=None) -> CheckoutSessionInfo:
        with self._lock:
            if self.fail_next_create:
                self.fail_next_create = False
                raise PaymentProviderError("Payment provider error: sandbox outage")
            session_id = f"cs_sandbox_{uuid.uuid4().hex}"
            self.sessions[session_id] = {
                "amount": int(amount), "currency": currency, "metadata": dict(metadata),
                "outcome": None, "success_url": success_url, "cancel_url": cancel_url,
            }
        return CheckoutSessionInfo(
            session_id=session_id,
            checkout_url=f"{self.base_url}/api/v1/sandbox/checkout/{session_id}",
            provider=self.provider,
        )

    def set_outcome(self, session_id: str, outcome: str) -> None:
        if outcome not in PROVIDER_STATUSES:
            raise ValueError(f"unknown sandbox outcome: {outcome}")
        with self._lock:
            self.sessions[session_id]["outcome"] = outcome

    def get_session_status(self, session_id: str) -> CheckoutStatus:
        with self._lock:
            self.status_calls += 1
            s = self.sessions.get(session_id)
            if s is None:
                raise PaymentProviderError(f"Payment provider error: no such checkout session {session_id}")
            outcome = s["outcome"] or self.default_outcome
        return CheckoutStatus(
            payment_status=outcome,
            amount_total=s["amount"],
            receipt_url=f"{self.base_url}/sandbox/receipts/{session_id}" if outcome == "success" else None,
            payment_reference=f"pi_sandbox_{session_id[-12:]}",
        )

    def expire_session(self, session_id: str) -> None:
        with self._lock:
            s = self.sessions.get(session_id)
            if s is None:
                raise PaymentProviderError(f"Payment provider error: no such checkout session {session_id}")
            if (s["outcome"] or self.default_outcome) == "pending":
                s["outcome"] = "cancelled"


_sandbox: SandboxPaymentGateway | None = None


def get_payment_gateway() -> PaymentGateway:
    """FastAPI dependency: sandbox in dev, Stripe when configured."""
    global _sandbox
    if settings.PAYMENT_SANDBOX:
        if _sandbox is None:
            _sandbox = SandboxPaymentGateway(default_outcome=settings.PAYMENT_SANDBOX_OUTCOME)
        return _sandbox
    if not settings.STRIPE_SECRET_KEY:
        raise PaymentsUnavailable("Online payments are currently unavailable.")
    return StripePaymentGateway(settings.STRIPE_SECRET_KEY, settings.STRIPE_MAX_NETWORK_RETRIES)
