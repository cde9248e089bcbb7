from decimal import Decimal

import pytest

from app.services.errors import ValidationError
from app.services.item_policy_service import ItemPolicy, get_item_policy
from app.services.pricing_service import compute_payment, to_major


def test_weight_surcharge_and_tax():
    policy = ItemPolicy(id="bulk", label="Bulk", base_fee=1500, per_kg_rate=20, free_weight_kg=0, tax_rate_percent=3)
    q = compute_payment(policy, 2, 25)
    assert q.base_charge == 1500
    assert q.weight_charge == 1000
    assert q.tax_charge == 75
    assert q.amount == 2575
    assert q.required is True
    assert q.total_weight_kg == Decimal("50.00")


def test_free_weight_allowance_applies_to_total_weight():
    q = compute_payment(get_item_policy("furniture"), 1, 50)
    # 10 kg over the 40 kg allowance
    assert q.weight_charge == 20000
    assert q.tax_charge == 3600
    assert q.amount == 123600
    assert to_major(q.amount) == 1236.00


def test_zero_cost_item_needs_no_payment():
    q = compute_payment(get_item_policy("yard"), 2, 20)
    assert q.amount == 0
    assert q.required is False


def test_default_tax_rate_from_settings():
    policy = ItemPolicy(id="x", label="X", base_fee=1000)
    q = compute_payment(policy, 1, 1)
    assert q.tax_rate_percent == Decimal("3.0")
    assert q.tax_charge == 30


def test_half_up_rounding_of_minor_units():
    policy = ItemPolicy(id="x", label="X", base_fee=0, per_kg_rate=1, tax_rate_percent=0)
    # 0.5 kg * 1 = 0.5 -> 1
    assert compute_payment(policy, 1, 0.5).weight_charge == 1


@pytest.mark.parametrize("quantity,weight,field", [
    (-1, 10, "quantity"),
    (float("nan"), 10, "quantity"),
    (1, float("inf"), "weightPerItem"),
    (1, "heavy", "weightPerItem"),
    (True, 10, "quantity"),
])
def test_rejects_bad_numbers_naming_the_field(quantity, weight, field):
    with pytest.raises(ValidationError) as exc:
        compute_payment(get_item_policy("furniture"), quantity, weight)
    assert exc.value.field == field


def test_fractional_weight_is_priced_before_rounding():
    policy = ItemPolicy(id="x", label="X", base_fee=0, per_kg_rate=1000, tax_rate_percent=0)
    q = compute_payment(policy, 1, 0.004)
    # 0.004 kg * 1000 = 4 minor units, although the displayed weight rounds to 0.00 kg
    assert q.weight_charge == 4
    assert q.total_weight_kg == Decimal("0.00")


def test_free_allowance_compares_exact_total_weight():
    # 3 x 13.335 = 40.005 kg, 0.005 kg over the furniture allowance
    q = compute_payment(get_item_policy("furniture"), 3, 13.335)
    assert q.weight_charge == 10
    assert q.total_weight_kg == Decimal("40.01")


@pytest.mark.parametrize("policy", [
    get_item_policy("furniture"),
    get_item_policy("e-waste"),
    get_item_policy("yard"),
    ItemPolicy(id="odd", label="Odd", base_fee=333, per_kg_rate=7, free_weight_kg=2.5, tax_rate_percent=7.5),
], ids=lambda p: p.id)
@pytest.mark.parametrize("quantity", [1, 2, 7, 25])
@pytest.mark.parametrize("weight", [0, 0.1, 2.75, 13.333, 40, 99.99])
def test_quote_is_deterministic_and_adds_up(policy, quantity, weight):
    first = compute_payment(policy, quantity, weight)
    assert compute_payment(policy, quantity, weight) == first
    assert first.amount == first.base_charge + first.weight_charge + first.tax_charge
    assert first.required is (first.amount > 0)
