"""Per-day, per-time-bucket collection capacity.

Buckets are described by the slot grid in settings and only materialised as
``slot_buckets`` rows when someone reserves them. Capacity is mutated
exclusively through :func:`reserve` and :func:`release`, each a single
conditional UPDATE, so two residents racing for the last unit can never both
win.
"""
from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone
from zoneinfo import ZoneInfo

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.db.types import utcnow
from app.models.slot_bucket import SlotBucket
from app.models.slot_reservation import SlotReservation
from app.services.errors import CapacityExceeded, ValidationError
from app.services.item_policy_service import SlotConfig, capacity_for, get_item_policy, get_slot_config

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SlotDefinition:
    slot_id: str
    item_policy_id: str
    date_str: str   # local YYYY-MM-DD
    start: str      # local HH:MM
    end: str        # local HH:MM
    starts_at: datetime  # UTC
    ends_at: datetime    # UTC


@dataclass(frozen=True)
class SlotAvailability:
    slot: SlotDefinition
    capacity_total: int
    capacity_reserved: int

    @property
    def capacity_left(self) -> int:
        return max(self.capacity_total - self.capacity_reserved, 0)


@dataclass(frozen=True)
class ReservationToken:
    reservation_id: str
    slot_id: str


def local_tz(cfg: SlotConfig | None = None) -> ZoneInfo:
    return ZoneInfo((cfg or get_slot_config()).timezone)


def slot_id_for(item_policy_id: str, local_date: date, start_minutes: int) -> str:
    hh, mm = divmod(start_minutes, 60)
    return f"{item_policy_id}:{local_date.isoformat()}:{hh:02d}{mm:02d}"


def bucket_start_minutes(cfg: SlotConfig) -> list[int]:
    return list(range(cfg.start_hour * 60, cfg.end_hour * 60, cfg.bucket_minutes))


def look_ahead_dates(now: datetime, cfg: SlotConfig) -> list[date]:
    today = now.astimezone(local_tz(cfg)).date()
    return [today + timedelta(days=i) for i in range(cfg.days_ahead)]


def is_bookable_day(d: date, cfg: SlotConfig) -> bool:
    return not (cfg.exclude_weekends and d.weekday() >= 5)


def build_slot(item_policy_id: str, local_date: date, start_minutes: int, cfg: SlotConfig) -> SlotDefinition:
    tz = local_tz(cfg)
    hh, mm = divmod(start_minutes, 60)
    start_local = datetime.combine(local_date, time(hh, mm), tzinfo=tz)
    end_local = start_local + timedelta(minutes=cfg.bucket_minutes)
    return SlotDefinition(
        slot_id=slot_id_for(item_policy_id, local_date, start_minutes),
        item_policy_id=item_policy_id,
        date_str=local_date.isoformat(),
        start=start_local.strftime("%H:%M"),
        end=end_local.strftime("%H:%M"),
        starts_at=start_local.astimezone(timezone.utc),
        ends_at=end_local.astimezone(timezone.utc),
    )


def parse_slot_id(slot_id: str, cfg: SlotConfig | None = None) -> SlotDefinition:
    """Rebuild a slot from its id; rejects ids that are not on the slot grid."""
    cfg = cfg or get_slot_config()
    try:
        item_policy_id, date_str, hhmm = (slot_id or "").rsplit(":", 2)
        local_date = date.fromisoformat(date_str)
        if len(hhmm) != 4 or not hhmm.isdigit():
            raise ValueError(hhmm)
        minutes = int(hhmm[:2]) * 60 + int(hhmm[2:])
    except ValueError:
        raise ValidationError("slotId", "Selected slot is not a valid collection slot.")
    if not item_policy_id or minutes not in bucket_start_minutes(cfg) or not is_bookable_day(local_date, cfg):
        raise ValidationError("slotId", "Selected slot is not a valid collection slot.")
    return build_slot(item_policy_id, local_date, minutes, cfg)


def generate_slots(item_policy_id: str, window_start: datetime, window_end: datetime,
                   now: datetime | None = None, cfg: SlotConfig | None = None) -> list[SlotDefinition]:
    """Slot definitions starting inside [window_start, window_end), in the future and the look-ahead window."""
    cfg = cfg or get_slot_config()
    now = now or utcnow()
    slots = []
    for d in look_ahead_dates(now, cfg):
        if not is_bookable_day(d, cfg):
            continue
        for minutes in bucket_start_minutes(cfg):
            s = build_slot(item_policy_id, d, minutes, cfg)
            if s.starts_at <= now:
                continue
            if window_start <= s.starts_at < window_end:
                slots.append(s)
    return slots


def list_candidate_slots(db: Session, item_policy_id: str, window_start: datetime, window_end: datetime,
                         now: datetime | None = None) -> list[SlotAvailability]:
    """Read-only view of capacity per bucket in the window. Never writes."""
    slots = generate_slots(item_policy_id, window_start, window_end, now=now)
    if not slots:
        return []
    rows = db.execute(
        select(SlotBucket).where(SlotBucket.id.in_([s.slot_id for s in slots]))
    ).scalars().all()
    by_id = {r.id: r for r in rows}

    policy = get_item_policy(item_policy_id)
    default_total = capacity_for(policy) if policy else get_slot_config().capacity_per_slot
    out = []
    for s in slots:
        row = by_id.get(s.slot_id)
        out.append(SlotAvailability(
            slot=s,
            capacity_total=row.capacity_total if row else default_total,
            capacity_reserved=row.capacity_reserved if row else 0,
        ))
    return out


def ensure_bucket(db: Session, slot: SlotDefinition) -> None:
    """Materialise the bucket row. Commits; safe against a concurrent insert of the same bucket."""
    if db.get(SlotBucket, slot.slot_id):
        return
    policy = get_item_policy(slot.item_policy_id)
    db.add(SlotBucket(
        id=slot.slot_id,
        item_policy_id=slot.item_policy_id,
        date_str=slot.date_str,
        start=slot.start,
        end=slot.end,
        starts_at=slot.starts_at,
        ends_at=slot.ends_at,
        capacity_total=capacity_for(policy) if policy else get_slot_config().capacity_per_slot,
        capacity_reserved=0,
    ))
    try:
        db.commit()
    except IntegrityError:
        # another request created it first
        db.rollback()


def reserve(db: Session, slot: SlotDefinition) -> ReservationToken:
    """Take one unit of capacity. Commits on success; raises CapacityExceeded when full."""
    ensure_bucket(db, slot)
    try:
        result = db.execute(
            update(SlotBucket)
            .where(SlotBucket.id == slot.slot_id, SlotBucket.capacity_reserved < SlotBucket.capacity_total)
            .values(capacity_reserved=SlotBucket.capacity_reserved + 1)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            db.rollback()
            logger.info("Slot %s is full", slot.slot_id)
            raise CapacityExceeded("This slot has just been booked. Please choose another slot.")
        token = ReservationToken(reservation_id=str(uuid.uuid4()), slot_id=slot.slot_id)
        db.add(SlotReservation(id=token.reservation_id, slot_id=slot.slot_id, status="held"))
        db.commit()
    except CapacityExceeded:
        raise
    except Exception:
        db.rollback()
        raise
    logger.info("Reserved slot %s (reservation %s)", slot.slot_id, token.reservation_id)
    return token


def release(db: Session, reservation_id: str | None) -> bool:
    """Give a held unit back. Idempotent: unknown or already released tokens are a no-op.

    Runs inside the caller's transaction; the caller commits.
    """
    if not reservation_id:
        return False
    slot_id = db.execute(
        select(SlotReservation.slot_id).where(SlotReservation.id == reservation_id)
    ).scalar_one_or_none()
    if slot_id is None:
        return False
    flipped = db.execute(
        update(SlotReservation)
        .where(SlotReservation.id == reservation_id, SlotReservation.status == "held")
        .values(status="released", released_at=utcnow())
        .execution_options(synchronize_session=False)
    )
    if flipped.rowcount != 1:
        return False
    db.execute(
        update(SlotBucket)
        .where(SlotBucket.id == slot_id, SlotBucket.capacity_reserved > 0)
        .values(capacity_reserved=SlotBucket.capacity_reserved - 1)
        .execution_options(synchronize_session=False)
    )
    logger.info("Released slot %s (reservation %s)", slot_id, reservation_id)
    return True
