from sqlalchemy import String, Integer, CheckConstraint, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column
from datetime import datetime
from app.db.session import Base
from app.db.types import UTCDateTime, utcnow

class SlotBucket(Base):
    __tablename__ = "slot_buckets"
    __table_args__ = (
        UniqueConstraint("item_policy_id", "date_str", "start", name="uq_slot_bucket_item_date_start"),
        CheckConstraint("capacity_reserved >= 0 AND capacity_reserved <= capacity_total", name="ck_slot_bucket_capacity"),
    )

    # "<item_policy_id>:<YYYY-MM-DD>:<HHMM>", see services.slot_ledger.slot_id_for
    id: Mapped[str] = mapped_column(String(80), primary_key=True)
    item_policy_id: Mapped[str] = mapped_column(String(40), index=True)

    date_str: Mapped[str] = mapped_column(String(10), index=True)  # YYYY-MM-DD, local
    start: Mapped[str] = mapped_column(String(5))  # HH:MM, local
    end: Mapped[str] = mapped_column(String(5))    # HH:MM, local
    starts_at: Mapped[datetime] = mapped_column(UTCDateTime())
    ends_at: Mapped[datetime] = mapped_column(UTCDateTime())

    capacity_total: Mapped[int] = mapped_column(Integer)
    capacity_reserved: Mapped[int] = mapped_column(Integer, default=0)

    created_at: Mapped[datetime] = mapped_column(UTCDateTime(), default=utcnow)
