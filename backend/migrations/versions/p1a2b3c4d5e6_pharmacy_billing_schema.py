"""Pharmacy billing schema: patients, prescriptions, stock, bills.

Revision ID: p1a2b3c4d5e6
Revises:
Create Date: 2026-10-17 09:00:00.000000+00:00
"""

from __future__ import annotations

from typing import Union

import sqlalchemy as sa
from alembic import op

# revision identifiers
revision: str = "p1a2b3c4d5e6"
down_revision: Union[str, None] = None
branch_labels: Union[str, None] = None
depends_on: Union[str, None] = None


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("id", sa.Uuid(), nullable=False, primary_key=True),
        sa.Column("username", sa.String(150), unique=True, nullable=False),
        sa.Column("hashed_password", sa.String(255), nullable=False),
        sa.Column("pharmacy_name", sa.String(255), nullable=True),
        sa.Column("email", sa.String(255), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )

    op.create_table(
        "audit_logs",
        sa.Column("id", sa.Uuid(), nullable=False, primary_key=True),
        sa.Column("actor_id", sa.Uuid(), sa.ForeignKey("users.id"), nullable=True),
        sa.Column("action", sa.String(50), nullable=False),
        sa.Column("resource_type", sa.String(100), nullable=False),
        sa.Column("resource_id", sa.String(255), nullable=False),
        sa.Column("changes", sa.JSON(), nullable=True),
        sa.Column("ip_address", sa.String(45), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ix_audit_resource", "audit_logs", ["resource_type", "resource_id"])
    op.create_index("ix_audit_actor_created", "audit_logs", ["actor_id", "created_at"])
    op.create_index("ix_audit_action", "audit_logs", ["action"])

    op.create_table(
        "patients",
        sa.Column("id", sa.Uuid(), nullable=False, primary_key=True),
        sa.Column("owner_id", sa.Uuid(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("phone_number", sa.String(20), nullable=True),
        sa.Column("status", sa.String(20), nullable=False, server_default="active"),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.UniqueConstraint("owner_id", "phone_number", name="uq_patient_owner_phone"),
    )
    op.create_index("ix_patients_owner", "patients", ["owner_id"])

    op.create_table(
        "prescriptions",
        sa.Column("id", sa.Uuid(), nullable=False, primary_key=True),
        sa.Column("owner_id", sa.Uuid(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("patient_id", sa.Uuid(), sa.ForeignKey("patients.id"), nullable=True),
        sa.Column("doctor_name", sa.String(255), nullable=True),
        sa.Column("prescription_number", sa.String(50), nullable=False),
        sa.Column("status", sa.String(20), nullable=False, server_default="active"),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.UniqueConstraint(
            "owner_id", "prescription_number", name="uq_prescription_owner_number"
        ),
    )
    op.create_index("ix_prescriptions_owner", "prescriptions", ["owner_id"])

    op.create_table(
        "inventory_items",
        sa.Column("id", sa.Uuid(), nullable=False, primary_key=True),
        sa.Column("owner_id", sa.Uuid(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("quantity", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("unit_cost", sa.Numeric(precision=20, scale=4), nullable=False, server_default="0"),
        sa.Column(
            "selling_price", sa.Numeric(precision=20, scale=4), nullable=False, server_default="0"
        ),
        sa.Column("version", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.CheckConstraint("quantity >= 0", name="ck_inventory_quantity_non_negative"),
        sa.CheckConstraint("unit_cost >= 0", name="ck_inventory_unit_cost_non_negative"),
        sa.CheckConstraint("selling_price >= 0", name="ck_inventory_selling_price_non_negative"),
    )
    op.create_index("ix_inventory_owner", "inventory_items", ["owner_id"])

    op.create_table(
        "bills",
        sa.Column("id", sa.Uuid(), nullable=False, primary_key=True),
        sa.Column("owner_id", sa.Uuid(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("bill_number", sa.String(50), unique=True, nullable=False),
        sa.Column("prescription_id", sa.Uuid(), sa.ForeignKey("prescriptions.id"), nullable=False),
        sa.Column("patient_id", sa.Uuid(), sa.ForeignKey("patients.id"), nullable=True),
        sa.Column("subtotal", sa.Numeric(precision=20, scale=4), nullable=False),
        sa.Column("tax_percent", sa.Numeric(precision=5, scale=2), nullable=False),
        sa.Column("tax_amount", sa.Numeric(precision=20, scale=4), nullable=False),
        sa.Column("discount_amount", sa.Numeric(precision=20, scale=4), nullable=False),
        sa.Column("total_amount", sa.Numeric(precision=20, scale=4), nullable=False),
        sa.Column(
            "payment_method",
            sa.Enum("cash", "card", "upi", name="paymentmethod"),
            nullable=False,
        ),
        sa.Column(
            "status",
            sa.Enum(
                "pending", "completed", "void", "inventory-reconciliation-failed",
                name="billstatus",
            ),
            nullable=False,
        ),
        sa.Column("idempotency_key", sa.String(100), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.CheckConstraint("total_amount > 0", name="ck_bill_total_positive"),
        sa.CheckConstraint("discount_amount >= 0", name="ck_bill_discount_non_negative"),
    )
    op.create_index("ix_bills_owner_created", "bills", ["owner_id", "created_at"])
    op.create_index("ix_bills_prescription", "bills", ["prescription_id"])
    # Idempotency keys only bind live bills; a voided bill frees its key.
    op.create_index(
        "uq_bills_owner_idempotency_key",
        "bills",
        ["owner_id", "idempotency_key"],
        unique=True,
        postgresql_where=sa.text("status <> 'void'"),
    )

    op.create_table(
        "bill_items",
        sa.Column("id", sa.Uuid(), nullable=False, primary_key=True),
        sa.Column("bill_id", sa.Uuid(), sa.ForeignKey("bills.id"), nullable=False),
        sa.Column(
            "inventory_item_id", sa.Uuid(), sa.ForeignKey("inventory_items.id"), nullable=False
        ),
        sa.Column("position", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("quantity", sa.Integer(), nullable=False),
        sa.Column("unit_price", sa.Numeric(precision=20, scale=4), nullable=False),
        sa.Column("total_price", sa.Numeric(precision=20, scale=4), nullable=False),
        sa.CheckConstraint("quantity >= 1", name="ck_bill_item_quantity_positive"),
    )
    op.create_index("ix_bill_items_bill", "bill_items", ["bill_id"])

    op.create_table(
        "inventory_reconciliation_flags",
        sa.Column("id", sa.Uuid(), nullable=False, primary_key=True),
        sa.Column("owner_id", sa.Uuid(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("bill_id", sa.Uuid(), sa.ForeignKey("bills.id"), nullable=False),
        sa.Column(
            "inventory_item_id", sa.Uuid(), sa.ForeignKey("inventory_items.id"), nullable=False
        ),
        sa.Column("quantity", sa.Integer(), nullable=False),
        sa.Column("reason", sa.Text(), nullable=False),
        sa.Column(
            "status",
            sa.Enum("open", "resolving", "resolved", name="reconciliationstatus"),
            nullable=False,
        ),
        sa.Column("resolution_note", sa.Text(), nullable=True),
        sa.Column("resolved_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.CheckConstraint("quantity > 0", name="ck_recon_flag_quantity_positive"),
    )
    op.create_index(
        "ix_recon_flags_owner_status", "inventory_reconciliation_flags", ["owner_id", "status"]
    )
    op.create_index("ix_recon_flags_bill", "inventory_reconciliation_flags", ["bill_id"])


def downgrade() -> None:
    op.drop_index("ix_recon_flags_bill", table_name="inventory_reconciliation_flags")
    op.drop_index("ix_recon_flags_owner_status", table_name="inventory_reconciliation_flags")
    op.drop_table("inventory_reconciliation_flags")
    op.drop_index("ix_bill_items_bill", table_name="bill_items")
    op.drop_table("bill_items")
    op.drop_index("uq_bills_owner_idempotency_key", table_name="bills")
    op.drop_index("ix_bills_prescription", table_name="bills")
    op.drop_index("ix_bills_owner_created", table_name="bills")
    op.drop_table("bills")
    op.drop_index("ix_inventory_owner", table_name="inventory_items")
    op.drop_table("inventory_items")
    op.drop_index("ix_prescriptions_owner", table_name="prescriptions")
    op.drop_table("prescriptions")
    op.drop_index("ix_patients_owner", table_name="patients")
    op.drop_table("patients")
    op.drop_index("ix_audit_action", table_name="audit_logs")
    op.drop_index("ix_audit_actor_created", table_name="audit_logs")
    op.drop_index("ix_audit_resource", table_name="audit_logs")
    op.drop_table("audit_logs")
    op.drop_table("users")

    op.execute("DROP TYPE IF EXISTS reconciliationstatus")
    op.execute("DROP TYPE IF EXISTS billstatus")
    op.execute("DROP TYPE IF EXISTS paymentmethod")
