"""Seed the database with a demo pharmacist and a starter stock list.

Usage:
    python -m backend.scripts.seed
"""

from __future__ import annotations

from decimal import Decimal

from backend.app.core.database import SessionLocal
from backend.app.core.security import get_password_hash
from backend.app.models.accounting import InventoryItem, User

STOCK: list[tuple[str, int, Decimal, Decimal]] = [
    # name, quantity, unit cost, selling price
    ("Paracetamol 500mg (10 tabs)", 200, Decimal("12"), Decimal("20")),
    ("Amoxicillin 250mg (10 caps)", 80, Decimal("45"), Decimal("70")),
    ("Cetirizine 10mg (10 tabs)", 150, Decimal("8"), Decimal("15")),
    ("ORS Sachet", 300, Decimal("10"), Decimal("18")),
    ("Cough Syrup 100ml", 60, Decimal("55"), Decimal("85")),
]


def seed() -> None:
    db = SessionLocal()
    try:
        # ── Pharmacist ─────────────────────────────────────────────────
        owner = db.query(User).filter_by(username="pharmacist").first()
        if owner:
            owner.hashed_password = get_password_hash("Pharmacy@Demo2026!")
            print("Updated pharmacist password.")
        else:
            owner = User(
                username="pharmacist",
                hashed_password=get_password_hash("Pharmacy@Demo2026!"),
                pharmacy_name="Demo Pharmacy",
            )
            db.add(owner)
            db.flush()
            print("Created pharmacist user.")

        # ── Stock ──────────────────────────────────────────────────────
        for name, quantity, unit_cost, selling_price in STOCK:
            existing = db.query(InventoryItem).filter_by(owner_id=owner.id, name=name).first()
            if existing:
                continue
            db.add(
                InventoryItem(
                    owner_id=owner.id,
                    name=name,
                    quantity=quantity,
                    unit_cost=unit_cost,
                    selling_price=selling_price,
                )
            )
            print(f"Created stock item {name} ({quantity})")

        db.commit()
    finally:
        db.close()


if __name__ == "__main__":
    seed()
