from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import datetime, time, timedelta

from sqlalchemy.orm import Session

from app.db.types import utcnow
from app.schemas.special_collection import AvailabilityRequest
from app.services import slot_ledger
from app.services.errors import PolicyDisallowed, ValidationError
from app.services.item_policy_service import ItemPolicy, disallowed_message, get_item_policy, get_slot_config
from app.services.pricing_service import PaymentQuote, compute_payment


@dataclass(frozen=True)
class AvailabilityResult:
    policy: ItemPolicy
    payment: PaymentQuote
    slots: list[slot_ledger.SlotAvailability]


def resolve_policy(item_type: str | None) -> ItemPolicy:
    if not (item_type or "").strip():
        raise ValidationError("itemType", "Item type is required.")
    policy = get_item_policy(item_type.strip())
    if not policy:
        raise ValidationError("itemType", "Unknown item type requested.")
    if not policy.allow:
        raise PolicyDisallowed(disallowed_message(policy), details={"disposalInfo": policy.description})
    return policy


def validate_quantity(quantity) -> int:
    if isinstance(quantity, bool) or not isinstance(quantity, (int, float)):
        raise ValidationError("quantity", "Quantity must be a whole number of at least 1.")
    if isinstance(quantity, float) and (not math.isfinite(quantity) or not quantity.is_integer()):
        raise ValidationError("quantity", "Quantity must be a whole number of at least 1.")
    if quantity < 1:
        raise ValidationError("quantity", "Quantity must be at least 1.")
    return int(quantity)


def validate_weight(weight) -> float:
    if isinstance(weight, bool) or not isinstance(weight, (int, float)):
        raise ValidationError("weightPerItem", "Please provide a valid approximate weight (kg per item).")
    if not math.isfinite(weight) or weight <= 0:
        raise ValidationError("weightPerItem", "Approximate weight must be greater than 0 kg.")
    return float(weight)


def parse_preferred_datetime(value) -> datetime:
    """ISO-8601 string or datetime; naive values are read in the collection timezone."""
    if isinstance(value, datetime):
        dt = value
    else:
        raw = (value or "").strip()
        if not raw:
            raise ValidationError("preferredDateTime", "Preferred date/time is required.")
        try:
            dt = datetime.fromisoformat(raw.replace("Z", "+00:00"))
        except ValueError:
            raise ValidationError("preferredDateTime", "Preferred date/time is invalid.")
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=slot_ledger.local_tz())
    return dt


def preferred_day_window(preferred: datetime, now: datetime) -> tuple[datetime, datetime]:
    """UTC bounds of the preferred local day; the day must lie in the look-ahead window."""
    cfg = get_slot_config()
    tz = slot_ledger.local_tz(cfg)
    day = preferred.astimezone(tz).date()
    allowed = slot_ledger.look_ahead_dates(now, cfg)
    if day < allowed[0]:
        raise ValidationError("preferredDateTime", "Please choose a date and time in the future.")
    if day > allowed[-1]:
        raise ValidationError("preferredDateTime", f"Pickups can only be booked within the next {cfg.days_ahead} days.")
    start = datetime.combine(day, time(0, 0), tzinfo=tz)
    return start, start + timedelta(days=1)


def check_availability(db: Session, body: AvailabilityRequest, now: datetime | None = None) -> AvailabilityResult:
    now = now or utcnow()
    policy = resolve_policy(body.itemType)
    quantity = validate_quantity(body.quantity)
    weight = validate_weight(body.weightPerItem)
    preferred = parse_preferred_datetime(body.preferredDateTime)
    window_start, window_end = preferred_day_window(preferred, now)

    candidates = slot_ledger.list_candidate_slots(db, policy.id, window_start, window_end, now=now)
    return AvailabilityResult(
        policy=policy,
        payment=compute_payment(policy, quantity, weight),
        slots=[c for c in candidates if c.capacity_left > 0],
    )
