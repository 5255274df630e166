from __future__ import annotations

import logging
import secrets
from collections.abc import Callable
from datetime import datetime, timezone
from uuid import UUID

from backend.app.core.config import settings
from backend.app.schemas.billing import BillOut, BillTotals
from backend.app.services.bill_store import BillStore
from backend.app.services.errors import (
    BillPersistenceFailed,
    ConstraintViolation,
    DataStoreError,
    DuplicateSettlement,
)

logger = logging.getLogger(__name__)


def generate_bill_number(now: datetime | None = None) -> str:
    """``BILL-<UTC timestamp>-<random hex>``: sortable by time, unique by suffix."""
    now = now or datetime.now(timezone.utc)
    return f"BILL-{now:%Y%m%d%H%M%S}-{secrets.token_hex(3).upper()}"


class BillCommitter:
    """Persist a bill header and then its items.

    If the items fail after the header landed, ``BillPersistenceFailed``
    carries the orphaned ``bill_id`` so the caller can compensate.
    """

    def __init__(
        self,
        store: BillStore,
        max_number_attempts: int | None = None,
        number_factory: Callable[[], str] = generate_bill_number,
    ) -> None:
        self._store = store
        self._max_number_attempts = (
            settings.BILL_NUMBER_MAX_ATTEMPTS
            if max_number_attempts is None
            else max_number_attempts
        )
        self._number_factory = number_factory

    def commit(
        self,
        *,
        owner_id: UUID,
        prescription_id: UUID,
        patient_id: UUID | None,
        totals: BillTotals,
        payment_method: str,
        idempotency_key: str | None = None,
    ) -> BillOut:
        bill = self._insert_header(
            owner_id=owner_id,
            prescription_id=prescription_id,
            patient_id=patient_id,
            totals=totals,
            payment_method=payment_method,
            idempotency_key=idempotency_key,
        )
        try:
            items = self._store.insert_bill_items(bill.id, totals.lines)
        except DataStoreError as exc:
            raise BillPersistenceFailed(
                f"Bill {bill.bill_number} was saved but its items were not: {exc}",
                bill_id=bill.id,
                bill_number=bill.bill_number,
            ) from exc
        return bill.model_copy(update={"items": items})

    def _insert_header(
        self,
        *,
        owner_id: UUID,
        prescription_id: UUID,
        patient_id: UUID | None,
        totals: BillTotals,
        payment_method: str,
        idempotency_key: str | None,
    ) -> BillOut:
        for attempt in range(1, self._max_number_attempts + 1):
            bill_number = self._number_factory()
            try:
                return self._store.insert_bill(
                    owner_id=owner_id,
                    bill_number=bill_number,
                    prescription_id=prescription_id,
                    patient_id=patient_id,
                    totals=totals,
                    payment_method=payment_method,
                    idempotency_key=idempotency_key,
                )
            except ConstraintViolation as exc:
                if idempotency_key and self._key_taken(owner_id, idempotency_key):
                    raise DuplicateSettlement(idempotency_key) from exc
                logger.warning(
                    "Bill number %s rejected (attempt %d/%d): %s",
                    bill_number, attempt, self._max_number_attempts, exc,
                )
            except DataStoreError as exc:
                raise BillPersistenceFailed(f"Could not save bill: {exc}") from exc
        raise BillPersistenceFailed(
            f"Could not allocate a unique bill number after {self._max_number_attempts} attempts"
        )

    def _key_taken(self, owner_id: UUID, idempotency_key: str) -> bool:
        try:
            return self._store.find_bill_by_idempotency_key(owner_id, idempotency_key) is not None
        except DataStoreError as exc:
            raise BillPersistenceFailed(f"Could not save bill: {exc}") from exc
