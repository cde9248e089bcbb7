from datetime import timedelta

import pytest

from app.schemas.special_collection import AvailabilityRequest
from app.services import slot_ledger
from app.services.availability_service import check_availability
from app.services.errors import PolicyDisallowed, ValidationError

from conftest import NOW, SLOT_ID


def _body(**overrides):
    body = dict(itemType="furniture", quantity=2, weightPerItem=30, preferredDateTime="2030-01-08T10:00:00")
    body.update(overrides)
    return AvailabilityRequest(**body)


def test_lists_open_slots_for_preferred_day_with_quote(db):
    result = check_availability(db, _body(), now=NOW)
    assert [a.slot.start for a in result.slots] == ["08:00", "10:00", "12:00", "14:00", "16:00"]
    assert all(a.capacity_left == 3 for a in result.slots)
    assert result.payment.required is True
    assert result.policy.id == "furniture"


def test_full_slots_are_hidden(db):
    slot = slot_ledger.parse_slot_id(SLOT_ID)
    for _ in range(3):
        slot_ledger.reserve(db, slot)
    result = check_availability(db, _body(), now=NOW)
    assert SLOT_ID not in [a.slot.slot_id for a in result.slots]
    assert len(result.slots) == 4


def test_approx_weight_alias_is_accepted(db):
    body = AvailabilityRequest(itemType="yard", quantity=1, approxWeight=10, preferredDateTime="2030-01-08T09:00:00+05:30")
    result = check_availability(db, body, now=NOW)
    assert result.payment.required is False


def test_disallowed_item_carries_disposal_guidance(db):
    with pytest.raises(PolicyDisallowed) as exc:
        check_availability(db, _body(itemType="construction"), now=NOW)
    assert exc.value.code == "ITEM_NOT_ALLOWED"
    assert "1919" in exc.value.details["disposalInfo"]


@pytest.mark.parametrize("overrides,field", [
    ({"itemType": ""}, "itemType"),
    ({"itemType": "asbestos"}, "itemType"),
    ({"quantity": 0}, "quantity"),
    ({"quantity": 1.5}, "quantity"),
    ({"quantity": None}, "quantity"),
    ({"weightPerItem": 0}, "weightPerItem"),
    ({"weightPerItem": None}, "weightPerItem"),
    ({"preferredDateTime": ""}, "preferredDateTime"),
    ({"preferredDateTime": "next tuesday"}, "preferredDateTime"),
    ({"preferredDateTime": "2030-01-06T10:00:00"}, "preferredDateTime"),
    ({"preferredDateTime": "2030-01-20T10:00:00"}, "preferredDateTime"),
])
def test_invalid_input_names_the_field(db, overrides, field):
    with pytest.raises(ValidationError) as exc:
        check_availability(db, _body(**overrides), now=NOW)
    assert exc.value.field == field


def test_today_only_offers_future_buckets(db):
    later = NOW + timedelta(hours=5)  # 10:30 local
    result = check_availability(db, _body(preferredDateTime="2030-01-07T15:00:00"), now=later)
    assert [a.slot.start for a in result.slots] == ["12:00", "14:00", "16:00"]
