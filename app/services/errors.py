"""Typed failures of the special collection workflow.

Every error raised out of a service carries a stable ``code`` and the HTTP
status the API answers with, so the portal can pick the right recovery:
fix a field, re-run availability, or retry the payment.
"""


class SpecialCollectionError(Exception):
    code = "SPECIAL_COLLECTION_ERROR"
    http_status = 400

    def __init__(self, message: str, *, field: str | None = None, details: dict | None = None):
        super().__init__(message)
        self.message = message
        self.field = field
        self.details = details or {}

    def to_dict(self) -> dict:
        out = {"ok": False, "code": self.code, "message": self.message}
        if self.field:
            out["field"] = self.field
        if self.details:
            out["details"] = self.details
        return out


class ValidationError(SpecialCollectionError):
    code = "VALIDATION_ERROR"

    def __init__(self, field: str, message: str):
        super().__init__(message, field=field)


class PolicyDisallowed(SpecialCollectionError):
    code = "ITEM_NOT_ALLOWED"


class CapacityExceeded(SpecialCollectionError):
    """Raised by the slot ledger when a bucket has no capacity left."""
    code = "CAPACITY_EXCEEDED"
    http_status = 409


class SlotUnavailable(SpecialCollectionError):
    code = "SLOT_UNAVAILABLE"
    http_status = 409


class RequestNotFound(SpecialCollectionError):
    code = "REQUEST_NOT_FOUND"
    http_status = 404


class SessionNotFound(SpecialCollectionError):
    code = "SESSION_NOT_FOUND"
    http_status = 404


class AccessDenied(SpecialCollectionError):
    code = "ACCESS_DENIED"
    http_status = 403


class InvalidRequestState(SpecialCollectionError):
    code = "INVALID_REQUEST_STATE"
    http_status = 409


class PaymentProviderError(SpecialCollectionError):
    """Provider unreachable or answered with something we can't interpret. Retryable."""
    code = "PAYMENT_PROVIDER_ERROR"
    http_status = 502


class PaymentsUnavailable(PaymentProviderError):
    code = "PAYMENTS_UNAVAILABLE"
    http_status = 503
