"""Patient reconciliation.

The phone number is the only natural dedup key for a patient. Entries
without one are always created fresh rather than merged by name.
"""

from __future__ import annotations

import logging
from uuid import UUID

from backend.app.schemas.billing import PatientOut
from backend.app.services.bill_store import BillStore
from backend.app.services.errors import (
    ConstraintViolation,
    DataStoreError,
    PatientReconciliationFailed,
)

logger = logging.getLogger(__name__)


def normalize_phone(phone: str | None) -> str | None:
    if phone is None:
        return None
    phone = phone.strip()
    return phone or None


class PatientReconciler:
    def __init__(self, store: BillStore) -> None:
        self._store = store

    def reconcile(
        self,
        owner_id: UUID,
        patient_name: str | None,
        patient_phone: str | None,
        known_patient_id: UUID | None = None,
    ) -> UUID:
        """Return the id of the single patient row these details belong to.

        1. A patient already linked by the prescription is updated in place.
        2. Otherwise a phone number is looked up and reused, or created.
        3. Without a phone number a new patient is always created.
        """
        name = (patient_name or "").strip() or None
        phone = normalize_phone(patient_phone)
        try:
            if known_patient_id is not None:
                existing = self._store.get_patient(known_patient_id, owner_id)
                if existing is not None:
                    return self._touch_up(existing, name, phone).id
                logger.warning(
                    "Linked patient %s not found for owner %s, resolving by phone",
                    known_patient_id, owner_id,
                )
            if phone:
                return self._reuse_or_create(owner_id, name, phone).id
            return self._create(owner_id, name, None).id
        except DataStoreError as exc:
            raise PatientReconciliationFailed(f"Could not save patient: {exc}") from exc

    def _touch_up(self, patient: PatientOut, name: str | None, phone: str | None) -> PatientOut:
        new_name = name or patient.name
        new_phone = phone or patient.phone_number
        if new_name == patient.name and new_phone == patient.phone_number:
            return patient
        return self._store.upsert_patient(
            owner_id=patient.owner_id,
            name=new_name,
            phone_number=new_phone,
            patient_id=patient.id,
        )

    def _reuse_or_create(self, owner_id: UUID, name: str | None, phone: str) -> PatientOut:
        found = self._store.find_patient_by_phone(owner_id, phone)
        if found is not None:
            return self._touch_up(found, name, None)
        try:
            return self._create(owner_id, name, phone)
        except ConstraintViolation:
            # Another settlement inserted this phone number after our lookup.
            found = self._store.find_patient_by_phone(owner_id, phone)
            if found is None:
                raise
            logger.info("Reusing patient %s created concurrently for the same phone", found.id)
            return found

    def _create(self, owner_id: UUID, name: str | None, phone: str | None) -> PatientOut:
        if not name:
            raise PatientReconciliationFailed("Patient name is required to register a new patient")
        return self._store.upsert_patient(owner_id=owner_id, name=name, phone_number=phone)
