from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Literal
from uuid import UUID

from pydantic import BaseModel, field_validator

from backend.app.models.billing import BillStatus, PaymentMethod
from backend.app.models.inventory import ReconciliationStatus


class PaymentMethodEnum(str, Enum):
    CASH = "cash"
    CARD = "card"
    UPI = "upi"


# ─── Request ──────────────────────────────────────────────────────────────────


class LineItem(BaseModel):
    item_id: UUID
    name: str
    unit_price: Decimal
    quantity: int

    @field_validator("quantity")
    @classmethod
    def quantity_positive(cls, v: int) -> int:
        if v < 1:
            raise ValueError("Quantity must be at least 1")
        return v

    @field_validator("unit_price")
    @classmethod
    def price_non_negative(cls, v: Decimal) -> Decimal:
        if v < 0:
            raise ValueError("Unit price must be non-negative")
        return v


class SettlementRequest(BaseModel):
    line_items: list[LineItem]
    prescription_id: UUID
    tax_percent: Decimal
    discount_amount: Decimal = Decimal("0")
    payment_method: PaymentMethodEnum = PaymentMethodEnum.CASH
    patient_name: str | None = None
    patient_phone: str | None = None
    idempotency_key: str | None = None

    @field_validator("line_items")
    @classmethod
    def at_least_one_item(cls, v: list[LineItem]) -> list[LineItem]:
        if not v:
            raise ValueError("Cart must contain at least one item")
        return v

    @field_validator("tax_percent")
    @classmethod
    def tax_in_range(cls, v: Decimal) -> Decimal:
        if v < 0 or v > 100:
            raise ValueError("Tax percent must be between 0 and 100")
        return v

    @field_validator("discount_amount")
    @classmethod
    def discount_non_negative(cls, v: Decimal) -> Decimal:
        if v < 0:
            raise ValueError("Discount must be non-negative")
        return v


class ReconciliationResolveRequest(BaseModel):
    apply_decrement: bool = True
    note: str | None = None


# ─── Pricing ─────────────────────────────────────────────────────────────────


class PricedLine(BaseModel):
    item_id: UUID
    name: str
    quantity: int
    unit_price: Decimal
    total_price: Decimal


class BillTotals(BaseModel):
    subtotal: Decimal
    tax_percent: Decimal
    tax_amount: Decimal
    discount_amount: Decimal
    total_amount: Decimal
    lines: list[PricedLine]


# ─── Store snapshots ─────────────────────────────────────────────────────────


class PatientOut(BaseModel):
    id: UUID
    owner_id: UUID
    name: str
    phone_number: str | None
    status: str

    class Config:
        from_attributes = True


class PrescriptionOut(BaseModel):
    id: UUID
    owner_id: UUID
    patient_id: UUID | None
    doctor_name: str | None
    prescription_number: str
    status: str
    created_at: datetime | None = None

    class Config:
        from_attributes = True


class BillItemOut(BaseModel):
    id: UUID
    bill_id: UUID
    inventory_item_id: UUID
    name: str
    quantity: int
    unit_price: Decimal
    total_price: Decimal

    class Config:
        from_attributes = True


class BillOut(BaseModel):
    id: UUID
    owner_id: UUID
    bill_number: str
    prescription_id: UUID
    patient_id: UUID | None
    subtotal: Decimal
    tax_percent: Decimal
    tax_amount: Decimal
    discount_amount: Decimal
    total_amount: Decimal
    payment_method: PaymentMethod
    status: BillStatus
    idempotency_key: str | None = None
    created_at: datetime | None = None
    items: list[BillItemOut] = []

    class Config:
        from_attributes = True


class ReconciliationFlagOut(BaseModel):
    id: UUID
    owner_id: UUID
    bill_id: UUID
    inventory_item_id: UUID
    quantity: int
    reason: str
    status: ReconciliationStatus
    resolution_note: str | None = None
    resolved_at: datetime | None = None
    created_at: datetime | None = None

    class Config:
        from_attributes = True


# ─── Result ──────────────────────────────────────────────────────────────────


class SettlementResult(BaseModel):
    status: Literal["committed", "failed"]
    bill_id: UUID | None = None
    bill_number: str | None = None
    bill_status: BillStatus | None = None
    total_amount: Decimal | None = None
    patient_id: UUID | None = None
    error_kind: str | None = None
    message: str | None = None
    compensation_applied: bool = False
    undecremented_items: list[UUID] = []
    details: dict[str, Any] = {}
    replayed: bool = False
    states: list[str] = []
