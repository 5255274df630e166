"""Shared test fixtures.

Each test gets its own in-memory SQLite database. Services commit for
real, since the settlement workflow depends on every store call being
its own transaction; isolation comes from throwing the database away.
"""

from __future__ import annotations

import os

os.environ.setdefault("DATABASE_URL", "sqlite://")

from decimal import Decimal
from typing import Generator
from uuid import UUID

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

import backend.app.models.accounting  # noqa: F401
from backend.app.api.deps import get_bill_store
from backend.app.core.database import Base, get_db
from backend.app.core.security import create_access_token, get_password_hash
from backend.app.main import app
from backend.app.models.accounting import (
    Bill,
    InventoryItem,
    InventoryReconciliationFlag,
    Patient,
    Prescription,
    ReconciliationStatus,
    User,
)
from backend.app.schemas.billing import LineItem, SettlementRequest
from backend.app.services.bill_store import BillStore


# ─── Database ────────────────────────────────────────────────────────────────


@pytest.fixture()
def engine() -> Generator[Engine, None, None]:
    eng = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(eng)
    yield eng
    Base.metadata.drop_all(eng)
    eng.dispose()


@pytest.fixture()
def session_factory(engine: Engine) -> sessionmaker[Session]:
    return sessionmaker(bind=engine, autocommit=False, autoflush=False)


@pytest.fixture()
def store(session_factory: sessionmaker[Session]) -> BillStore:
    return BillStore(session_factory)


@pytest.fixture()
def client(
    session_factory: sessionmaker[Session], store: BillStore
) -> Generator[TestClient, None, None]:
    """FastAPI TestClient wired to the per-test database."""

    def _override_get_db() -> Generator[Session, None, None]:
        db = session_factory()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = _override_get_db
    app.dependency_overrides[get_bill_store] = lambda: store
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


# ─── Row helpers ─────────────────────────────────────────────────────────────


def add_row(session_factory: sessionmaker[Session], row):
    """Insert *row*, commit, and return its primary key."""
    with session_factory() as db:
        db.add(row)
        db.commit()
        return row.id


def stock_of(session_factory: sessionmaker[Session], item_id: UUID) -> int:
    with session_factory() as db:
        return db.get(InventoryItem, item_id).quantity


def count_rows(session_factory: sessionmaker[Session], model, **filters) -> int:
    with session_factory() as db:
        return db.query(model).filter_by(**filters).count()


def bill_status(session_factory: sessionmaker[Session], bill_id: UUID) -> str:
    with session_factory() as db:
        return db.get(Bill, bill_id).status.value


def open_flags(session_factory: sessionmaker[Session], bill_id: UUID) -> list[tuple[UUID, int]]:
    with session_factory() as db:
        rows = (
            db.query(InventoryReconciliationFlag)
            .filter_by(bill_id=bill_id, status=ReconciliationStatus.OPEN)
            .all()
        )
        return sorted(((r.inventory_item_id, r.quantity) for r in rows), key=str)


# ─── Owners & auth ───────────────────────────────────────────────────────────


@pytest.fixture()
def owner(session_factory: sessionmaker[Session]) -> UUID:
    return add_row(
        session_factory,
        User(
            username="pharmacist",
            hashed_password=get_password_hash("pass"),
            pharmacy_name="Test Pharmacy",
            email="owner@pharmacy.test",
        ),
    )


@pytest.fixture()
def other_owner(session_factory: sessionmaker[Session]) -> UUID:
    return add_row(
        session_factory,
        User(username="other", hashed_password=get_password_hash("pass")),
    )


@pytest.fixture()
def owner_token(owner: UUID) -> str:
    return create_access_token(subject=str(owner))


def auth(token: str) -> dict[str, str]:
    """Return Authorization header dict."""
    return {"Authorization": f"Bearer {token}"}


# ─── Patients & prescriptions ────────────────────────────────────────────────


@pytest.fixture()
def patient(session_factory: sessionmaker[Session], owner: UUID) -> UUID:
    return add_row(
        session_factory,
        Patient(owner_id=owner, name="Asha Rao", phone_number="9999999999"),
    )


@pytest.fixture()
def prescription(session_factory: sessionmaker[Session], owner: UUID, patient: UUID) -> UUID:
    return add_row(
        session_factory,
        Prescription(
            owner_id=owner,
            patient_id=patient,
            doctor_name="Dr. Mehta",
            prescription_number="PRE-1",
        ),
    )


@pytest.fixture()
def walk_in_prescription(session_factory: sessionmaker[Session], owner: UUID) -> UUID:
    """A prescription with no patient linked yet."""
    return add_row(
        session_factory,
        Prescription(owner_id=owner, doctor_name="Dr. Iyer", prescription_number="PRE-2"),
    )


# ─── Stock ───────────────────────────────────────────────────────────────────


def make_item(
    session_factory: sessionmaker[Session],
    owner_id: UUID,
    name: str,
    quantity: int,
    price: str = "10",
) -> UUID:
    return add_row(
        session_factory,
        InventoryItem(
            owner_id=owner_id,
            name=name,
            quantity=quantity,
            unit_cost=Decimal(price) / 2,
            selling_price=Decimal(price),
        ),
    )


@pytest.fixture()
def paracetamol(session_factory: sessionmaker[Session], owner: UUID) -> UUID:
    return make_item(session_factory, owner, "Paracetamol 500mg", 50, "10")


@pytest.fixture()
def cough_syrup(session_factory: sessionmaker[Session], owner: UUID) -> UUID:
    return make_item(session_factory, owner, "Cough Syrup 100ml", 20, "85")


# ─── Requests ────────────────────────────────────────────────────────────────


def line(item_id: UUID, quantity: int, price: str = "10", name: str = "Item") -> LineItem:
    return LineItem(item_id=item_id, name=name, unit_price=Decimal(price), quantity=quantity)


def settlement_request(
    prescription_id: UUID,
    items: list[LineItem],
    tax: str = "18",
    discount: str = "0",
    **kwargs,
) -> SettlementRequest:
    return SettlementRequest(
        line_items=items,
        prescription_id=prescription_id,
        tax_percent=Decimal(tax),
        discount_amount=Decimal(discount),
        **kwargs,
    )
