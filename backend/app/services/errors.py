"""Error taxonomy for the bill settlement workflow.

Every settlement error carries a stable ``kind`` (reported to callers as
``error_kind``) and a ``details`` dict naming the offending item or step.
Store-level failures are ``DataStoreError``; components translate them
into the settlement error for their step.
"""

from __future__ import annotations

from typing import Any
from uuid import UUID


class DataStoreError(Exception):
    """A single read or write against the data store failed."""

    kind = "DataStoreError"


class ConstraintViolation(DataStoreError):
    """A write violated an integrity constraint, usually a uniqueness one."""


class SettlementError(Exception):
    kind = "SettlementError"

    def __init__(self, message: str, **details: Any) -> None:
        self.details = details
        super().__init__(message)


class PrescriptionNotFound(SettlementError):
    kind = "PrescriptionNotFound"

    def __init__(self, prescription_id: UUID) -> None:
        super().__init__(
            f"Prescription {prescription_id} not found",
            prescription_id=str(prescription_id),
        )


class PrescriptionNotConsumable(SettlementError):
    kind = "PrescriptionNotConsumable"

    def __init__(self, prescription_id: UUID, status: str) -> None:
        super().__init__(
            f"Prescription {prescription_id} is '{status}' and cannot be billed",
            prescription_id=str(prescription_id),
            prescription_status=status,
        )


class InvalidBillAmount(SettlementError):
    kind = "InvalidBillAmount"


class InventoryLookupFailed(SettlementError):
    kind = "InventoryLookupFailed"

    def __init__(self, item_id: UUID, reason: str) -> None:
        super().__init__(
            f"Could not read stock for item {item_id}: {reason}",
            item_id=str(item_id),
        )


class InsufficientInventory(SettlementError):
    kind = "InsufficientInventory"

    def __init__(self, item_id: UUID, name: str, available: int, requested: int) -> None:
        self.item_id = item_id
        self.available = available
        self.requested = requested
        super().__init__(
            f"Insufficient stock for '{name}': {available} available, {requested} requested",
            item_id=str(item_id),
            available=available,
            requested=requested,
        )


class PatientReconciliationFailed(SettlementError):
    kind = "PatientReconciliationFailed"


class BillPersistenceFailed(SettlementError):
    """Raised by the bill committer.

    ``bill_id`` is set when the bill header was written but its items were
    not, i.e. when an orphaned header needs compensating.
    """

    kind = "BillPersistenceFailed"

    def __init__(
        self, message: str, bill_id: UUID | None = None, bill_number: str | None = None
    ) -> None:
        self.bill_id = bill_id
        self.bill_number = bill_number
        super().__init__(
            message, bill_id=str(bill_id) if bill_id else None, bill_number=bill_number
        )


class DuplicateSettlement(SettlementError):
    """Another settlement already holds this idempotency key."""

    kind = "DuplicateSettlement"

    def __init__(self, idempotency_key: str) -> None:
        self.idempotency_key = idempotency_key
        super().__init__(
            f"Settlement with idempotency key '{idempotency_key}' already exists",
            idempotency_key=idempotency_key,
        )


class SettlementInProgress(SettlementError):
    kind = "SettlementInProgress"


class InventoryUpdateConflict(SettlementError):
    kind = "InventoryUpdateConflict"

    def __init__(self, item_id: UUID, reason: str, **details: Any) -> None:
        self.item_id = item_id
        super().__init__(
            f"Could not decrement stock for item {item_id}: {reason}",
            item_id=str(item_id),
            **details,
        )


class SettlementTimeout(SettlementError):
    kind = "Timeout"

    def __init__(self, state: str, elapsed: float, deadline: float) -> None:
        super().__init__(
            f"Settlement exceeded its {deadline:g}s deadline while {state}",
            state=state,
            elapsed_seconds=round(elapsed, 3),
        )


class PrescriptionLookupFailed(SettlementError):
    kind = "PrescriptionLookupFailed"

    def __init__(self, prescription_id: UUID, reason: str) -> None:
        super().__init__(
            f"Could not read prescription {prescription_id}: {reason}",
            prescription_id=str(prescription_id),
        )


class BillLookupFailed(SettlementError):
    """The earlier outcome of an idempotency key could not be read."""

    kind = "BillLookupFailed"

    def __init__(self, idempotency_key: str, reason: str) -> None:
        super().__init__(
            f"Could not look up settlement '{idempotency_key}': {reason}",
            idempotency_key=idempotency_key,
        )


class StoreUnavailable(SettlementError):
    """A store failure no step translated into its own error."""

    kind = "StoreUnavailable"

    def __init__(self, state: str, reason: str) -> None:
        super().__init__(f"Data store failed while {state}: {reason}", state=state)
