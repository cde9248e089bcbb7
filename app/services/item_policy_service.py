import json
import logging
from functools import lru_cache
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field

from app.core.config import settings

logger = logging.getLogger(__name__)


class ItemPolicy(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    label: str
    allow: bool = True
    base_fee: int = Field(default=0, ge=0)          # minor units
    per_kg_rate: int = Field(default=0, ge=0)       # minor units per kg above the free weight
    free_weight_kg: float = Field(default=0, ge=0)
    tax_rate_percent: float | None = Field(default=None, ge=0)  # None -> settings.TAX_RATE_PERCENT
    slot_capacity: int | None = Field(default=None, ge=1)       # None -> settings.SLOT_CAPACITY
    description: str = ""


class SlotConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    days_ahead: int
    start_hour: int
    end_hour: int
    bucket_minutes: int
    capacity_per_slot: int
    exclude_weekends: bool
    timezone: str


DEFAULT_ITEM_POLICIES = [
    {
        "id": "furniture",
        "label": "Furniture & bulky items",
        "description": "Wardrobes, sofas, tables, mattresses and similar bulky household items.",
        "allow": True,
        "base_fee": 100000,
        "per_kg_rate": 2000,
        "free_weight_kg": 40,
    },
    {
        "id": "e-waste",
        "label": "Electronic waste",
        "description": "Televisions, refrigerators, computers, microwaves and other electrical items.",
        "allow": True,
        "base_fee": 150000,
        "per_kg_rate": 2000,
        "free_weight_kg": 0,
    },
    {
        "id": "yard",
        "label": "Garden trimmings",
        "description": "Branches, palm fronds, and bundled yard waste (max 25kg per bundle).",
        "allow": True,
        "base_fee": 0,
        "per_kg_rate": 1000,
        "free_weight_kg": 50,
    },
    {
        "id": "construction",
        "label": "Construction rubble",
        "description": "Bricks, concrete, tiles and other construction debris must be handled via licensed private haulers (hotline: 1919).",
        "allow": False,
    },
]


@lru_cache
def load_item_policies() -> dict[str, ItemPolicy]:
    raw = DEFAULT_ITEM_POLICIES
    if settings.ITEM_POLICIES_FILE:
        raw = json.loads(Path(settings.ITEM_POLICIES_FILE).read_text(encoding="utf-8"))
        logger.info("Loaded %d item policies from %s", len(raw), settings.ITEM_POLICIES_FILE)
    policies = [ItemPolicy.model_validate(p) for p in raw]
    return {p.id: p for p in policies}


def reload_item_policies() -> None:
    load_item_policies.cache_clear()


def list_item_policies() -> list[ItemPolicy]:
    return list(load_item_policies().values())


def get_item_policy(item_policy_id: str) -> ItemPolicy | None:
    return load_item_policies().get(item_policy_id)


def get_slot_config() -> SlotConfig:
    return SlotConfig(
        days_ahead=settings.SLOT_DAYS_AHEAD,
        start_hour=settings.SLOT_START_HOUR,
        end_hour=settings.SLOT_END_HOUR,
        bucket_minutes=settings.SLOT_BUCKET_MINUTES,
        capacity_per_slot=settings.SLOT_CAPACITY,
        exclude_weekends=settings.SLOT_EXCLUDE_WEEKENDS,
        timezone=settings.SLOT_TIMEZONE,
    )


def capacity_for(policy: ItemPolicy) -> int:
    return policy.slot_capacity or settings.SLOT_CAPACITY


def disallowed_message(policy: ItemPolicy) -> str:
    return f"{policy.label} cannot be collected via the municipal special pickup programme. {policy.description}"
