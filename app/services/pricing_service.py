from __future__ import annotations

import math
from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP

from app.core.config import settings
from app.services.errors import ValidationError
from app.services.item_policy_service import ItemPolicy

TWO_PLACES = Decimal("0.01")


@dataclass(frozen=True)
class PaymentQuote:
    required: bool
    base_charge: int      # minor units
    weight_charge: int
    tax_charge: int
    amount: int
    total_weight_kg: Decimal
    tax_rate_percent: Decimal
    currency: str


def _to_decimal(field: str, value) -> Decimal:
    if isinstance(value, bool) or not isinstance(value, (int, float, Decimal)):
        raise ValidationError(field, f"{field} must be a number")
    if isinstance(value, float) and not math.isfinite(value):
        raise ValidationError(field, f"{field} must be a finite number")
    d = Decimal(str(value))
    if not d.is_finite():
        raise ValidationError(field, f"{field} must be a finite number")
    if d < 0:
        raise ValidationError(field, f"{field} must not be negative")
    return d


def _round_minor(value: Decimal) -> int:
    return int(value.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def compute_payment(item_policy: ItemPolicy, quantity, weight_per_item) -> PaymentQuote:
    """Price a pickup from the item policy and the declared load. Pure."""
    qty = _to_decimal("quantity", quantity)
    weight = _to_decimal("weightPerItem", weight_per_item)

    total_weight = qty * weight
    base_charge = int(item_policy.base_fee or 0)

    billable_kg = max(Decimal(0), total_weight - Decimal(str(item_policy.free_weight_kg)))
    weight_charge = _round_minor(billable_kg * Decimal(item_policy.per_kg_rate or 0))

    rate = item_policy.tax_rate_percent
    if rate is None:
        rate = settings.TAX_RATE_PERCENT
    tax_rate = Decimal(str(rate))
    tax_charge = _round_minor(Decimal(base_charge + weight_charge) * tax_rate / Decimal(100))

    amount = base_charge + weight_charge + tax_charge
    return PaymentQuote(
        required=amount > 0,
        base_charge=base_charge,
        weight_charge=weight_charge,
        tax_charge=tax_charge,
        amount=amount,
        total_weight_kg=total_weight.quantize(TWO_PLACES, rounding=ROUND_HALF_UP),
        tax_rate_percent=tax_rate,
        currency=settings.CURRENCY,
    )


def to_major(amount_minor: int) -> float:
    """Minor currency units -> decimal major units for API payloads."""
    return float((Decimal(amount_minor) / Decimal(100)).quantize(TWO_PLACES))
