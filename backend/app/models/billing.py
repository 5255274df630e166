from __future__ import annotations

import enum
import uuid
from datetime import datetime
from decimal import Decimal

from sqlalchemy import (
    CheckConstraint,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Uuid,
    func,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from backend.app.core.database import Base


class BillStatus(str, enum.Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    VOID = "void"
    INVENTORY_RECONCILIATION_FAILED = "inventory-reconciliation-failed"


class PaymentMethod(str, enum.Enum):
    CASH = "cash"
    CARD = "card"
    UPI = "upi"


def _enum_values(enum_cls: type[enum.Enum]) -> list[str]:
    return [m.value for m in enum_cls]


class Bill(Base):
    """The durable financial record of one settlement.

    Append-only: after insertion only ``status`` ever changes.
    """

    __tablename__ = "bills"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    owner_id: Mapped[uuid.UUID] = mapped_column(ForeignKey("users.id"), nullable=False)
    bill_number: Mapped[str] = mapped_column(String(50), unique=True, nullable=False)
    prescription_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("prescriptions.id"), nullable=False
    )
    patient_id: Mapped[uuid.UUID | None] = mapped_column(
        ForeignKey("patients.id"), nullable=True
    )
    subtotal: Mapped[Decimal] = mapped_column(Numeric(precision=20, scale=4), nullable=False)
    tax_percent: Mapped[Decimal] = mapped_column(Numeric(precision=5, scale=2), nullable=False)
    tax_amount: Mapped[Decimal] = mapped_column(Numeric(precision=20, scale=4), nullable=False)
    discount_amount: Mapped[Decimal] = mapped_column(
        Numeric(precision=20, scale=4), nullable=False, default=Decimal("0")
    )
    total_amount: Mapped[Decimal] = mapped_column(
        Numeric(precision=20, scale=4), nullable=False
    )
    payment_method: Mapped[PaymentMethod] = mapped_column(
        Enum(PaymentMethod, name="paymentmethod", values_callable=_enum_values),
        nullable=False,
        default=PaymentMethod.CASH,
    )
    status: Mapped[BillStatus] = mapped_column(
        Enum(BillStatus, name="billstatus", values_callable=_enum_values),
        nullable=False,
        default=BillStatus.PENDING,
    )
    idempotency_key: Mapped[str | None] = mapped_column(String(100), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    items: Mapped[list[BillItem]] = relationship(
        back_populates="bill", order_by="BillItem.position"
    )

    __table_args__ = (
        CheckConstraint("total_amount > 0", name="ck_bill_total_positive"),
        CheckConstraint("discount_amount >= 0", name="ck_bill_discount_non_negative"),
        Index("ix_bills_owner_created", "owner_id", "created_at"),
        Index("ix_bills_prescription", "prescription_id"),
        Index(
            "uq_bills_owner_idempotency_key",
            "owner_id",
            "idempotency_key",
            unique=True,
            postgresql_where=text("status <> 'void'"),
            sqlite_where=text("status <> 'void'"),
        ),
    )


class BillItem(Base):
    __tablename__ = "bill_items"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    bill_id: Mapped[uuid.UUID] = mapped_column(ForeignKey("bills.id"), nullable=False)
    inventory_item_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("inventory_items.id"), nullable=False
    )
    position: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    unit_price: Mapped[Decimal] = mapped_column(Numeric(precision=20, scale=4), nullable=False)
    total_price: Mapped[Decimal] = mapped_column(Numeric(precision=20, scale=4), nullable=False)

    bill: Mapped[Bill] = relationship(back_populates="items")

    __table_args__ = (
        CheckConstraint("quantity >= 1", name="ck_bill_item_quantity_positive"),
        Index("ix_bill_items_bill", "bill_id"),
    )
