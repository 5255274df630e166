from __future__ import annotations

from collections.abc import Iterable
from uuid import UUID

from backend.app.core.config import settings
from backend.app.schemas.billing import PrescriptionOut
from backend.app.services.bill_store import BillStore
from backend.app.services.errors import (
    DataStoreError,
    PrescriptionLookupFailed,
    PrescriptionNotConsumable,
    PrescriptionNotFound,
)


def validate_prescription(
    store: BillStore,
    prescription_id: UUID,
    owner_id: UUID,
    consumable_statuses: Iterable[str] | None = None,
) -> PrescriptionOut:
    """Fetch a fresh snapshot of the prescription and check it can be billed.

    A prescription owned by someone else is reported exactly like a missing
    one. A failed read is a ``PrescriptionLookupFailed``.
    """
    try:
        prescription = store.get_prescription(prescription_id, owner_id)
    except DataStoreError as exc:
        raise PrescriptionLookupFailed(prescription_id, str(exc)) from exc
    if prescription is None or prescription.owner_id != owner_id:
        raise PrescriptionNotFound(prescription_id)

    allowed = set(
        consumable_statuses
        if consumable_statuses is not None
        else settings.CONSUMABLE_PRESCRIPTION_STATUSES
    )
    if prescription.status not in allowed:
        raise PrescriptionNotConsumable(prescription_id, prescription.status)
    return prescription
