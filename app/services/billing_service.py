import logging
import random
import string
import uuid
from datetime import datetime

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from app.db.types import utcnow
from app.models.bill import Bill

logger = logging.getLogger(__name__)


def make_invoice_number(now: datetime | None = None) -> str:
    now = now or utcnow()
    return f"SC-{now:%Y%m%d}-" + "".join(random.choices(string.ascii_uppercase + string.digits, k=6))


def create_outstanding_bill(db: Session, resident_id: str, amount: int, currency: str, description: str,
                            due_at: datetime, request_id: str | None = None) -> str:
    """Add an unpaid special-collection bill to the session and return its id. Caller commits."""
    # invoice_number must be unique
    for _ in range(10):
        number = make_invoice_number()
        exists = db.execute(select(Bill.id).where(Bill.invoice_number == number)).first()
        if not exists:
            break
    else:
        raise RuntimeError("could not allocate invoice number")

    bill = Bill(
        id=str(uuid.uuid4()),
        invoice_number=number,
        user_id=resident_id,
        description=description,
        amount=amount,
        currency=currency,
        category="special-collection",
        special_collection_request_id=request_id,
        status="unpaid",
        due_date=due_at,
    )
    db.add(bill)
    db.flush()
    logger.info("Created bill %s (%s %s) for resident %s", number, amount, currency, resident_id)
    return bill.id


def mark_bill_paid(db: Session, bill_id: str | None, payment_method: str = "stripe",
                   payment_reference: str | None = None, paid_at: datetime | None = None) -> bool:
    """Settle an unpaid bill. Returns False when the bill is unknown or no longer unpaid."""
    if not bill_id:
        return False
    result = db.execute(
        update(Bill)
        .where(Bill.id == bill_id, Bill.status == "unpaid")
        .values(status="paid", paid_at=paid_at or utcnow(), payment_method=payment_method,
                payment_reference=payment_reference)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


def cancel_bill(db: Session, bill_id: str | None) -> bool:
    if not bill_id:
        return False
    result = db.execute(
        update(Bill)
        .where(Bill.id == bill_id, Bill.status == "unpaid")
        .values(status="cancelled")
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1
