import logging
from datetime import datetime

from sqlalchemy.orm import Session
from sqlalchemy.exc import ProgrammingError
from app.db.session import SessionLocal
from app.db.types import utcnow
from app.services.booking_service import expire_overdue_deferred_bookings
from app.services.email_service import process_pending_emails
from app.services.errors import PaymentsUnavailable
from app.services.payment_gateway import get_payment_gateway
from app.services.reconciliation_service import expire_stale_checkout_sessions

logger = logging.getLogger(__name__)


def expire_unpaid_bookings(now: datetime | None = None) -> dict:
    """Free slots held by bookings that were never paid: overdue deferred bills and expired checkouts."""
    now = now or utcnow()
    db: Session = SessionLocal()
    try:
        try:
            gateway = get_payment_gateway()
        except PaymentsUnavailable:
            gateway = None
        try:
            deferred = expire_overdue_deferred_bookings(db, now=now, gateway=gateway)
        except ProgrammingError:
            # DB not migrated yet; don't crash the worker.
            db.rollback()
            return {"skipped": True, "reason": "missing_tables"}
        if gateway is None:
            logger.warning("Payments not configured; expired checkouts left for the next run")
            return {"deferred": deferred, "checkouts": 0}
        checkouts = expire_stale_checkout_sessions(db, gateway, now=now)
        return {"deferred": deferred, "checkouts": checkouts}
    finally:
        db.close()


def process_email_queue(limit: int = 50) -> dict:
    """Process queued/failed emails (retry send). Run periodically via Celery beat."""
    db: Session = SessionLocal()
    try:
        try:
            return process_pending_emails(db, limit=limit)
        except ProgrammingError:
            db.rollback()
            return {"skipped": True, "reason": "missing_tables"}
    finally:
        db.close()
