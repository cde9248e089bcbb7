from decimal import Decimal
from sqlalchemy import String, Integer, Boolean, Numeric, Text
from sqlalchemy.orm import Mapped, mapped_column
from datetime import datetime
from app.db.session import Base
from app.db.types import UTCDateTime, utcnow

REQUEST_STATUSES = ("scheduled", "cancelled", "pending-payment", "payment-failed")
PAYMENT_STATUSES = ("success", "pending", "failed", "not-required")

class SpecialCollectionRequest(Base):
    __tablename__ = "special_collection_requests"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    request_ref: Mapped[str] = mapped_column(String(20), unique=True, index=True)
    resident_id: Mapped[str] = mapped_column(String(36), index=True)

    # Contact details as entered for this pickup
    resident_name: Mapped[str] = mapped_column(String(200))
    owner_name: Mapped[str] = mapped_column(String(200), default="")
    address: Mapped[str] = mapped_column(String(500))
    district: Mapped[str] = mapped_column(String(120))
    contact_email: Mapped[str] = mapped_column(String(320))
    contact_phone: Mapped[str] = mapped_column(String(40))
    special_notes: Mapped[str] = mapped_column(Text, default="")

    item_policy_id: Mapped[str] = mapped_column(String(40))
    item_label: Mapped[str] = mapped_column(String(120), default="")
    quantity: Mapped[int] = mapped_column(Integer)
    weight_per_item_kg: Mapped[Decimal] = mapped_column(Numeric(10, 2))
    total_weight_kg: Mapped[Decimal] = mapped_column(Numeric(12, 2))

    slot_id: Mapped[str] = mapped_column(String(80), index=True)
    slot_starts_at: Mapped[datetime] = mapped_column(UTCDateTime())
    slot_ends_at: Mapped[datetime] = mapped_column(UTCDateTime())
    reservation_id: Mapped[str | None] = mapped_column(String(36), nullable=True)

    status: Mapped[str] = mapped_column(String(20), default="scheduled", index=True)
    payment_choice: Mapped[str] = mapped_column(String(12), default="none")  # none, payNow, payLater
    payment_required: Mapped[bool] = mapped_column(Boolean, default=False)
    payment_status: Mapped[str] = mapped_column(String(20), default="not-required")

    # Minor currency units
    currency: Mapped[str] = mapped_column(String(3), default="LKR")
    payment_base_charge: Mapped[int] = mapped_column(Integer, default=0)
    payment_weight_charge: Mapped[int] = mapped_column(Integer, default=0)
    payment_tax_charge: Mapped[int] = mapped_column(Integer, default=0)
    payment_amount: Mapped[int] = mapped_column(Integer, default=0)

    payment_reference: Mapped[str | None] = mapped_column(String(120), nullable=True)
    receipt_url: Mapped[str | None] = mapped_column(String(512), nullable=True)
    payment_due_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True, index=True)
    paid_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    billing_id: Mapped[str | None] = mapped_column(String(36), nullable=True)

    cancellation_reason: Mapped[str | None] = mapped_column(String(500), nullable=True)
    resident_notified_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    authority_notified_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)

    created_at: Mapped[datetime] = mapped_column(UTCDateTime(), default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(UTCDateTime(), default=utcnow, onupdate=utcnow)
