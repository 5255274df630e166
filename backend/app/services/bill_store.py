"""Data store gateway for bill settlement.

Every public method opens its own session and commits before returning:
one call is atomic, two calls never share a transaction. The settlement
saga is written against exactly that guarantee, so nothing here may widen
a transaction across calls.

Methods return detached pydantic snapshots, never live ORM rows.
"""

from __future__ import annotations

import logging
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any
from uuid import UUID

from sqlalchemy import func, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from backend.app.core.database import SessionLocal
from backend.app.models.accounting import (
    Bill,
    BillItem,
    BillStatus,
    InventoryItem,
    InventoryReconciliationFlag,
    Patient,
    PaymentMethod,
    Prescription,
    ReconciliationStatus,
    User,
)
from backend.app.schemas.billing import (
    BillItemOut,
    BillOut,
    BillTotals,
    PatientOut,
    PricedLine,
    PrescriptionOut,
    ReconciliationFlagOut,
)
from backend.app.services.audit import log_action
from backend.app.services.errors import ConstraintViolation, DataStoreError

logger = logging.getLogger(__name__)


class BillStore:
    def __init__(self, session_factory: sessionmaker[Session] | None = None) -> None:
        self._session_factory = session_factory or SessionLocal

    @contextmanager
    def _session(self) -> Iterator[Session]:
        db = self._session_factory()
        try:
            yield db
            db.commit()
        except IntegrityError as exc:
            db.rollback()
            raise ConstraintViolation(str(exc.orig)) from exc
        except SQLAlchemyError as exc:
            db.rollback()
            logger.warning("Data store call failed: %s", exc)
            raise DataStoreError(str(exc)) from exc
        finally:
            db.close()

    # ─── Prescriptions ───────────────────────────────────────────────────

    def get_prescription(self, prescription_id: UUID, owner_id: UUID) -> PrescriptionOut | None:
        with self._session() as db:
            row = (
                db.query(Prescription)
                .filter(Prescription.id == prescription_id, Prescription.owner_id == owner_id)
                .first()
            )
            return PrescriptionOut.model_validate(row) if row else None

    def insert_prescription(
        self,
        *,
        owner_id: UUID,
        patient_id: UUID | None,
        doctor_name: str | None,
        prescription_number: str,
        status: str = "active",
    ) -> PrescriptionOut:
        with self._session() as db:
            row = Prescription(
                owner_id=owner_id,
                patient_id=patient_id,
                doctor_name=doctor_name,
                prescription_number=prescription_number,
                status=status,
            )
            db.add(row)
            db.flush()
            db.refresh(row)
            return PrescriptionOut.model_validate(row)

    def list_prescription_numbers(self, owner_id: UUID) -> list[str]:
        with self._session() as db:
            rows = (
                db.query(Prescription.prescription_number)
                .filter(Prescription.owner_id == owner_id)
                .all()
            )
            return [r[0] for r in rows]

    def set_prescription_status(
        self, prescription_id: UUID, owner_id: UUID, status: str
    ) -> PrescriptionOut | None:
        with self._session() as db:
            row = (
                db.query(Prescription)
                .filter(Prescription.id == prescription_id, Prescription.owner_id == owner_id)
                .first()
            )
            if not row:
                return None
            row.status = status
            db.flush()
            return PrescriptionOut.model_validate(row)

    # ─── Patients ────────────────────────────────────────────────────────

    def get_patient(self, patient_id: UUID, owner_id: UUID) -> PatientOut | None:
        with self._session() as db:
            row = (
                db.query(Patient)
                .filter(Patient.id == patient_id, Patient.owner_id == owner_id)
                .first()
            )
            return PatientOut.model_validate(row) if row else None

    def find_patient_by_phone(self, owner_id: UUID, phone_number: str) -> PatientOut | None:
        with self._session() as db:
            row = (
                db.query(Patient)
                .filter(Patient.owner_id == owner_id, Patient.phone_number == phone_number)
                .first()
            )
            return PatientOut.model_validate(row) if row else None

    def upsert_patient(
        self,
        *,
        owner_id: UUID,
        name: str,
        phone_number: str | None,
        patient_id: UUID | None = None,
    ) -> PatientOut:
        """Update patient *patient_id* in place, or insert a new patient.

        Raises ``ConstraintViolation`` when the phone number is already taken
        by another patient of the same owner.
        """
        with self._session() as db:
            if patient_id is not None:
                row = (
                    db.query(Patient)
                    .filter(Patient.id == patient_id, Patient.owner_id == owner_id)
                    .first()
                )
                if not row:
                    raise DataStoreError(f"Patient {patient_id} not found")
                row.name = name
                row.phone_number = phone_number
            else:
                row = Patient(owner_id=owner_id, name=name, phone_number=phone_number)
                db.add(row)
            db.flush()
            db.refresh(row)
            return PatientOut.model_validate(row)

    # ─── Inventory ───────────────────────────────────────────────────────

    def get_inventory_quantity(self, item_id: UUID, owner_id: UUID) -> int | None:
        with self._session() as db:
            return (
                db.query(InventoryItem.quantity)
                .filter(InventoryItem.id == item_id, InventoryItem.owner_id == owner_id)
                .scalar()
            )

    def compare_and_swap_inventory_quantity(
        self, item_id: UUID, owner_id: UUID, expected_quantity: int, new_quantity: int
    ) -> bool:
        """Set quantity to *new_quantity* only if it still equals *expected_quantity*.

        Returns ``False`` when another writer changed the row first.
        """
        with self._session() as db:
            result = db.execute(
                update(InventoryItem)
                .where(
                    InventoryItem.id == item_id,
                    InventoryItem.owner_id == owner_id,
                    InventoryItem.quantity == expected_quantity,
                )
                .values(quantity=new_quantity, version=InventoryItem.version + 1)
            )
            return result.rowcount == 1

    # ─── Bills ───────────────────────────────────────────────────────────

    def find_bill_by_idempotency_key(self, owner_id: UUID, idempotency_key: str) -> BillOut | None:
        with self._session() as db:
            row = (
                db.query(Bill)
                .filter(
                    Bill.owner_id == owner_id,
                    Bill.idempotency_key == idempotency_key,
                    Bill.status != BillStatus.VOID,
                )
                .first()
            )
            return BillOut.model_validate(row) if row else None

    def insert_bill(
        self,
        *,
        owner_id: UUID,
        bill_number: str,
        prescription_id: UUID,
        patient_id: UUID | None,
        totals: BillTotals,
        payment_method: str,
        idempotency_key: str | None = None,
    ) -> BillOut:
        with self._session() as db:
            bill = Bill(
                owner_id=owner_id,
                bill_number=bill_number,
                prescription_id=prescription_id,
                patient_id=patient_id,
                subtotal=totals.subtotal,
                tax_percent=totals.tax_percent,
                tax_amount=totals.tax_amount,
                discount_amount=totals.discount_amount,
                total_amount=totals.total_amount,
                payment_method=PaymentMethod(payment_method),
                status=BillStatus.PENDING,
                idempotency_key=idempotency_key,
            )
            db.add(bill)
            db.flush()
            db.refresh(bill)
            return BillOut.model_validate(bill)

    def insert_bill_items(self, bill_id: UUID, lines: list[PricedLine]) -> list[BillItemOut]:
        """Insert every line of a bill in one write; all or nothing."""
        with self._session() as db:
            rows = [
                BillItem(
                    bill_id=bill_id,
                    inventory_item_id=line.item_id,
                    position=position,
                    name=line.name,
                    quantity=line.quantity,
                    unit_price=line.unit_price,
                    total_price=line.total_price,
                )
                for position, line in enumerate(lines)
            ]
            db.add_all(rows)
            db.flush()
            return [BillItemOut.model_validate(r) for r in rows]

    def mark_bill_status(
        self, bill_id: UUID, status: BillStatus, expected: BillStatus | None = None
    ) -> bool:
        """Move a bill to *status*.

        With *expected* the write only lands while the bill is still in that
        status; ``False`` means another writer moved it first.
        """
        with self._session() as db:
            query = update(Bill).where(Bill.id == bill_id)
            if expected is not None:
                query = query.where(Bill.status == expected)
            if db.execute(query.values(status=status)).rowcount == 1:
                return True
            if db.get(Bill, bill_id) is None:
                raise DataStoreError(f"Bill {bill_id} not found")
            return False

    def get_bill_status(self, bill_id: UUID) -> BillStatus | None:
        with self._session() as db:
            return db.query(Bill.status).filter(Bill.id == bill_id).scalar()

    def get_bill(self, bill_id: UUID, owner_id: UUID) -> BillOut | None:
        with self._session() as db:
            row = db.query(Bill).filter(Bill.id == bill_id, Bill.owner_id == owner_id).first()
            return BillOut.model_validate(row) if row else None

    def list_bills(
        self, owner_id: UUID, status: BillStatus | None = None, limit: int = 50
    ) -> list[BillOut]:
        with self._session() as db:
            query = db.query(Bill).filter(Bill.owner_id == owner_id)
            if status is not None:
                query = query.filter(Bill.status == status)
            rows = query.order_by(Bill.created_at.desc()).limit(limit).all()
            return [BillOut.model_validate(r) for r in rows]

    def list_pending_bills_before(self, cutoff: datetime) -> list[BillOut]:
        """Bills of every owner still ``pending`` and created before *cutoff*."""
        with self._session() as db:
            rows = (
                db.query(Bill)
                .filter(Bill.status == BillStatus.PENDING, Bill.created_at < cutoff)
                .order_by(Bill.created_at)
                .all()
            )
            return [BillOut.model_validate(r) for r in rows]

    # ─── Reconciliation flags ────────────────────────────────────────────

    def flag_bill_for_reconciliation(
        self,
        *,
        owner_id: UUID,
        bill_id: UUID,
        items: list[tuple[UUID, int]],
        reason: str,
        expected: BillStatus = BillStatus.PENDING,
    ) -> list[ReconciliationFlagOut] | None:
        """Mark the bill ``inventory-reconciliation-failed`` and open one flag
        per ``(item, quantity)`` in the same transaction.

        Returns ``None`` without flagging anything when the bill had already
        left *expected*.
        """
        with self._session() as db:
            moved = db.execute(
                update(Bill)
                .where(Bill.id == bill_id, Bill.status == expected)
                .values(status=BillStatus.INVENTORY_RECONCILIATION_FAILED)
            ).rowcount
            if moved != 1:
                if db.get(Bill, bill_id) is None:
                    raise DataStoreError(f"Bill {bill_id} not found")
                return None
            rows = [
                InventoryReconciliationFlag(
                    owner_id=owner_id,
                    bill_id=bill_id,
                    inventory_item_id=item_id,
                    quantity=quantity,
                    reason=reason,
                    status=ReconciliationStatus.OPEN,
                )
                for item_id, quantity in items
            ]
            db.add_all(rows)
            db.flush()
            for r in rows:
                db.refresh(r)
            return [ReconciliationFlagOut.model_validate(r) for r in rows]

    def list_reconciliation_flags(
        self,
        owner_id: UUID,
        status: ReconciliationStatus | None = ReconciliationStatus.OPEN,
        bill_id: UUID | None = None,
    ) -> list[ReconciliationFlagOut]:
        with self._session() as db:
            query = db.query(InventoryReconciliationFlag).filter(
                InventoryReconciliationFlag.owner_id == owner_id
            )
            if status is not None:
                query = query.filter(InventoryReconciliationFlag.status == status)
            if bill_id is not None:
                query = query.filter(InventoryReconciliationFlag.bill_id == bill_id)
            rows = query.order_by(InventoryReconciliationFlag.created_at).all()
            return [ReconciliationFlagOut.model_validate(r) for r in rows]

    def get_reconciliation_flag(
        self, flag_id: UUID, owner_id: UUID
    ) -> ReconciliationFlagOut | None:
        with self._session() as db:
            row = (
                db.query(InventoryReconciliationFlag)
                .filter(
                    InventoryReconciliationFlag.id == flag_id,
                    InventoryReconciliationFlag.owner_id == owner_id,
                )
                .first()
            )
            return ReconciliationFlagOut.model_validate(row) if row else None

    def _move_flag(
        self,
        flag_id: UUID,
        owner_id: UUID,
        expected: ReconciliationStatus,
        **values: Any,
    ) -> bool:
        with self._session() as db:
            result = db.execute(
                update(InventoryReconciliationFlag)
                .where(
                    InventoryReconciliationFlag.id == flag_id,
                    InventoryReconciliationFlag.owner_id == owner_id,
                    InventoryReconciliationFlag.status == expected,
                )
                .values(**values)
            )
            return result.rowcount == 1

    def claim_reconciliation_flag(self, flag_id: UUID, owner_id: UUID) -> bool:
        """Take an open flag for resolution. Only one caller can win."""
        return self._move_flag(
            flag_id, owner_id, ReconciliationStatus.OPEN,
            status=ReconciliationStatus.RESOLVING,
        )

    def release_reconciliation_flag(self, flag_id: UUID, owner_id: UUID) -> bool:
        """Hand a claimed flag back to the queue."""
        return self._move_flag(
            flag_id, owner_id, ReconciliationStatus.RESOLVING,
            status=ReconciliationStatus.OPEN,
        )

    def resolve_reconciliation_flag(
        self, flag_id: UUID, owner_id: UUID, note: str | None
    ) -> bool:
        """Close a claimed flag. Returns ``False`` if it was not claimed."""
        return self._move_flag(
            flag_id, owner_id, ReconciliationStatus.RESOLVING,
            status=ReconciliationStatus.RESOLVED,
            resolution_note=note,
            resolved_at=datetime.now(timezone.utc),
        )

    def close_open_flags(self, bill_id: UUID, item_ids: list[UUID], note: str) -> int:
        """Close the bill's still-open flags on *item_ids*; claimed ones are left."""
        if not item_ids:
            return 0
        with self._session() as db:
            return db.execute(
                update(InventoryReconciliationFlag)
                .where(
                    InventoryReconciliationFlag.bill_id == bill_id,
                    InventoryReconciliationFlag.inventory_item_id.in_(item_ids),
                    InventoryReconciliationFlag.status == ReconciliationStatus.OPEN,
                )
                .values(
                    status=ReconciliationStatus.RESOLVED,
                    resolution_note=note,
                    resolved_at=datetime.now(timezone.utc),
                )
            ).rowcount

    def count_open_flags(self, bill_id: UUID) -> int:
        """Flags of the bill not yet resolved, claimed ones included."""
        with self._session() as db:
            return (
                db.query(func.count(InventoryReconciliationFlag.id))
                .filter(
                    InventoryReconciliationFlag.bill_id == bill_id,
                    InventoryReconciliationFlag.status != ReconciliationStatus.RESOLVED,
                )
                .scalar()
            ) or 0

    # ─── Owners & audit ──────────────────────────────────────────────────

    def get_owner_email(self, owner_id: UUID) -> str | None:
        with self._session() as db:
            return db.query(User.email).filter(User.id == owner_id).scalar()

    def record_audit(
        self,
        *,
        owner_id: UUID | None,
        action: str,
        resource_type: str,
        resource_id: str,
        changes: dict[str, Any] | None = None,
    ) -> None:
        with self._session() as db:
            log_action(
                db,
                user_id=owner_id,
                action=action,
                resource_type=resource_type,
                resource_id=resource_id,
                changes=changes,
            )
