"""Tests for prescription validation."""
from __future__ import annotations

import uuid
from uuid import UUID

import pytest

from backend.app.services.bill_store import BillStore
from backend.app.services.errors import (
    DataStoreError,
    PrescriptionLookupFailed,
    PrescriptionNotConsumable,
    PrescriptionNotFound,
)
from backend.app.services.prescription_validator import validate_prescription


class _BrokenStore(BillStore):
    def get_prescription(self, prescription_id, owner_id):
        raise DataStoreError("connection reset")


class TestValidatePrescription:
    def test_returns_fresh_snapshot(
        self, store: BillStore, owner: UUID, prescription: UUID, patient: UUID
    ) -> None:
        result = validate_prescription(store, prescription, owner)
        assert result.id == prescription
        assert result.patient_id == patient
        assert result.status == "active"

    def test_unknown_prescription(self, store: BillStore, owner: UUID) -> None:
        with pytest.raises(PrescriptionNotFound):
            validate_prescription(store, uuid.uuid4(), owner)

    def test_other_owners_prescription_is_not_found(
        self, store: BillStore, prescription: UUID, other_owner: UUID
    ) -> None:
        with pytest.raises(PrescriptionNotFound):
            validate_prescription(store, prescription, other_owner)

    def test_inactive_prescription_not_consumable(
        self, store: BillStore, owner: UUID, prescription: UUID
    ) -> None:
        store.set_prescription_status(prescription, owner, "inactive")
        with pytest.raises(PrescriptionNotConsumable) as exc:
            validate_prescription(store, prescription, owner)
        assert exc.value.details["prescription_status"] == "inactive"

    def test_consumable_statuses_are_configurable(
        self, store: BillStore, owner: UUID, prescription: UUID
    ) -> None:
        store.set_prescription_status(prescription, owner, "inactive")
        result = validate_prescription(
            store, prescription, owner, consumable_statuses=["active", "inactive"]
        )
        assert result.status == "inactive"

    def test_store_failure_is_lookup_failure(
        self, session_factory, owner: UUID, prescription: UUID
    ) -> None:
        with pytest.raises(PrescriptionLookupFailed) as exc:
            validate_prescription(_BrokenStore(session_factory), prescription, owner)
        assert exc.value.details["prescription_id"] == str(prescription)
        assert isinstance(exc.value.__cause__, DataStoreError)
