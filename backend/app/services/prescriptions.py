"""Prescription intake: register a patient's prescription so it can be billed."""

from __future__ import annotations

import logging
import re
from uuid import UUID

from backend.app.schemas.billing import PrescriptionOut
from backend.app.schemas.prescription import PrescriptionCreate
from backend.app.services.bill_store import BillStore
from backend.app.services.errors import ConstraintViolation
from backend.app.services.patients import PatientReconciler

logger = logging.getLogger(__name__)

MAX_NUMBER_ATTEMPTS = 3

_SUFFIX = re.compile(r"(\d+)$")


def next_prescription_number(store: BillStore, owner_id: UUID) -> str:
    """``PRE-<owner prefix>-<n>`` where *n* follows the highest number in use."""
    highest = 0
    for number in store.list_prescription_numbers(owner_id):
        match = _SUFFIX.search(number)
        if match:
            highest = max(highest, int(match.group(1)))
    return f"PRE-{owner_id.hex[:8]}-{highest + 1}"


def register_prescription(
    store: BillStore, owner_id: UUID, payload: PrescriptionCreate
) -> PrescriptionOut:
    """Reconcile the patient and insert an ``active`` prescription.

    Raises ``ValueError`` when a caller-supplied number is already taken.
    """
    patient_id = PatientReconciler(store).reconcile(
        owner_id, payload.patient_name, payload.phone_number
    )

    if payload.prescription_number:
        try:
            return store.insert_prescription(
                owner_id=owner_id,
                patient_id=patient_id,
                doctor_name=payload.doctor_name,
                prescription_number=payload.prescription_number,
            )
        except ConstraintViolation as exc:
            raise ValueError(
                f"Prescription number '{payload.prescription_number}' already exists"
            ) from exc

    for attempt in range(1, MAX_NUMBER_ATTEMPTS + 1):
        number = next_prescription_number(store, owner_id)
        try:
            return store.insert_prescription(
                owner_id=owner_id,
                patient_id=patient_id,
                doctor_name=payload.doctor_name,
                prescription_number=number,
            )
        except ConstraintViolation:
            logger.info(
                "Prescription number %s taken concurrently (attempt %d/%d)",
                number, attempt, MAX_NUMBER_ATTEMPTS,
            )
    raise ValueError("Could not allocate a prescription number, please retry")


def get_prescription(store: BillStore, owner_id: UUID, prescription_id: UUID) -> PrescriptionOut:
    prescription = store.get_prescription(prescription_id, owner_id)
    if prescription is None:
        raise ValueError("Prescription not found")
    return prescription


def set_prescription_status(
    store: BillStore, owner_id: UUID, prescription_id: UUID, status: str
) -> PrescriptionOut:
    prescription = store.set_prescription_status(prescription_id, owner_id, status)
    if prescription is None:
        raise ValueError("Prescription not found")
    store.record_audit(
        owner_id=owner_id,
        action="PRESCRIPTION_STATUS_CHANGED",
        resource_type="prescriptions",
        resource_id=prescription.prescription_number,
        changes={"status": status},
    )
    return prescription
