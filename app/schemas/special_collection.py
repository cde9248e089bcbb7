from pydantic import AliasChoices, BaseModel, Field
from typing import List, Optional


class AvailabilityRequest(BaseModel):
    # Loose types on purpose: the services validate and name the first offending field.
    itemType: str = ""
    quantity: Optional[int | float] = None
    weightPerItem: Optional[float] = Field(default=None, validation_alias=AliasChoices("weightPerItem", "approxWeight"))
    preferredDateTime: str = ""


class ConfirmBookingRequest(AvailabilityRequest):
    slotId: str = ""
    paymentChoice: str = "none"  # none | payNow | payLater
    residentName: str = ""
    ownerName: str = ""
    address: str = ""
    district: str = ""
    email: str = ""
    phone: str = ""
    specialNotes: str = ""
    # Return URLs for payNow; defaults are built from CLIENT_BASE_URL.
    successUrl: Optional[str] = None
    cancelUrl: Optional[str] = None


class BillCheckoutRequest(BaseModel):
    successUrl: Optional[str] = None
    cancelUrl: Optional[str] = None


class CancelRequestIn(BaseModel):
    reason: str = ""


class ItemPolicyOut(BaseModel):
    id: str
    label: str
    allow: bool
    description: str
    baseFee: float
    perKgRate: float
    freeWeightKg: float
    taxRatePercent: float


class SlotConfigOut(BaseModel):
    daysAhead: int
    startHour: int
    endHour: int
    bucketMinutes: int
    capacityPerSlot: int
    excludeWeekends: bool
    timezone: str


class ConfigOut(BaseModel):
    ok: bool = True
    items: List[ItemPolicyOut]
    slotConfig: SlotConfigOut


class PaymentQuoteOut(BaseModel):
    required: bool
    baseCharge: float
    weightCharge: float
    taxCharge: float
    amount: float
    totalWeightKg: float
    taxRatePercent: float
    currency: str


class SlotOut(BaseModel):
    slotId: str
    dateStr: str
    start: str
    end: str
    startsAt: str
    endsAt: str
    capacityTotal: int
    capacityLeft: int


class AvailabilityOut(BaseModel):
    ok: bool = True
    itemType: str
    itemLabel: str
    payment: PaymentQuoteOut
    slots: List[SlotOut]


class SlotRefOut(BaseModel):
    slotId: str
    start: str
    end: str


class RequestOut(BaseModel):
    id: str
    requestRef: str
    itemType: str
    itemLabel: str
    quantity: int
    weightPerItemKg: float
    totalWeightKg: float
    slot: SlotRefOut
    status: str
    paymentChoice: str
    paymentRequired: bool
    paymentStatus: str
    currency: str
    paymentBaseCharge: float
    paymentWeightCharge: float
    paymentTaxCharge: float
    paymentAmount: float
    paymentReference: Optional[str] = None
    receiptUrl: Optional[str] = None
    paymentDueAt: Optional[str] = None
    paidAt: Optional[str] = None
    billingId: Optional[str] = None
    cancellationReason: Optional[str] = None
    createdAt: str


class BookingOut(BaseModel):
    ok: bool = True
    message: str
    request: RequestOut
    checkoutUrl: Optional[str] = None
    sessionId: Optional[str] = None


class RequestListOut(BaseModel):
    ok: bool = True
    requests: List[RequestOut]
