from sqlalchemy import String, Integer
from sqlalchemy.orm import Mapped, mapped_column
from datetime import datetime
from app.db.session import Base
from app.db.types import UTCDateTime, utcnow

class CheckoutSession(Base):
    """Local record of a checkout session opened at the payment provider."""
    __tablename__ = "checkout_sessions"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    provider: Mapped[str] = mapped_column(String(20), default="stripe")  # stripe, sandbox
    provider_session_id: Mapped[str] = mapped_column(String(255), unique=True, index=True)
    purpose: Mapped[str] = mapped_column(String(12), default="booking")  # booking, bill

    request_id: Mapped[str] = mapped_column(String(36), index=True)
    resident_id: Mapped[str] = mapped_column(String(36), index=True)
    bill_id: Mapped[str | None] = mapped_column(String(36), nullable=True)

    amount: Mapped[int] = mapped_column(Integer)  # minor units
    currency: Mapped[str] = mapped_column(String(3), default="LKR")
    checkout_url: Mapped[str] = mapped_column(String(1024), default="")

    status: Mapped[str] = mapped_column(String(20), default="pending", index=True)  # pending, success, failed, cancelled
    payment_reference: Mapped[str | None] = mapped_column(String(120), nullable=True)
    receipt_url: Mapped[str | None] = mapped_column(String(512), nullable=True)

    expires_at: Mapped[datetime] = mapped_column(UTCDateTime(), index=True)
    resolved_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime(), default=utcnow)
