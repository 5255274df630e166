"""Bill settlement saga.

Turns a cart plus a prescription into a committed bill while deducting the
sold stock. The store is only atomic per call, so the workflow is an
explicit state machine with one compensation rule per point of failure::

    Validating -> CheckingInventory -> ReconcilingPatient -> CommittingBill
        -> DecrementingInventory -> Committed

Any state may fall through to ``Failed``:

* before the bill header exists there is nothing to undo (a patient row
  created on the way is kept);
* a header whose items could not be written is voided;
* once the items exist the bill stands. A failed or timed-out decrement
  marks it ``inventory-reconciliation-failed`` and flags every item that
  was not yet deducted. Deductions already applied are real stock
  movements and are not reversed.
"""

from __future__ import annotations

import enum
import logging
import time
import uuid
from collections.abc import Callable, Iterable
from typing import Any
from uuid import UUID

from backend.app.core.config import settings
from backend.app.models.billing import BillStatus
from backend.app.schemas.billing import BillOut, SettlementRequest, SettlementResult
from backend.app.services.bill_committer import BillCommitter
from backend.app.services.bill_store import BillStore
from backend.app.services.errors import (
    BillLookupFailed,
    BillPersistenceFailed,
    DataStoreError,
    DuplicateSettlement,
    SettlementError,
    SettlementInProgress,
    SettlementTimeout,
    StoreUnavailable,
)
from backend.app.services.inventory import (
    InventoryDecrementer,
    aggregate_requests,
    check_availability,
)
from backend.app.services.patients import PatientReconciler
from backend.app.services.prescription_validator import validate_prescription
from backend.app.services.pricing import calculate_bill_totals
from backend.app.services.settlement_events import NotificationSink

logger = logging.getLogger(__name__)


class SettlementState(str, enum.Enum):
    VALIDATING = "Validating"
    CHECKING_INVENTORY = "CheckingInventory"
    RECONCILING_PATIENT = "ReconcilingPatient"
    COMMITTING_BILL = "CommittingBill"
    DECREMENTING_INVENTORY = "DecrementingInventory"
    COMMITTED = "Committed"
    COMPENSATING = "Compensating"
    FAILED = "Failed"


class SettlementSaga:
    """Run one settlement. Use a fresh instance per request."""

    def __init__(
        self,
        store: BillStore,
        sink: NotificationSink | None = None,
        *,
        max_cas_retries: int | None = None,
        deadline_seconds: float | None = None,
        consumable_statuses: Iterable[str] | None = None,
        committer: BillCommitter | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._store = store
        self._sink = sink or NotificationSink()
        self._reconciler = PatientReconciler(store)
        self._committer = committer or BillCommitter(store)
        self._decrementer = InventoryDecrementer(store, max_retries=max_cas_retries)
        self._deadline = (
            settings.SETTLEMENT_DEADLINE_SECONDS if deadline_seconds is None else deadline_seconds
        )
        self._consumable_statuses = consumable_statuses
        self._clock = clock

        self.state: SettlementState | None = None
        self.trail: list[str] = []
        self._started = 0.0
        self._ref = ""
        self._bill: BillOut | None = None
        self._patient_id: UUID | None = None
        self._pending: list[tuple[UUID, str, int]] = []
        self._decremented: list[UUID] = []

    # ─── Driver ──────────────────────────────────────────────────────────

    def run(self, request: SettlementRequest, owner_id: UUID) -> SettlementResult:
        self._started = self._clock()
        self._ref = request.idempotency_key or uuid.uuid4().hex[:12]

        try:
            self._enter(SettlementState.VALIDATING)
            if request.idempotency_key:
                replayed = self._replay(owner_id, request.idempotency_key)
                if replayed is not None:
                    return replayed
            prescription = validate_prescription(
                self._store, request.prescription_id, owner_id, self._consumable_statuses
            )
            totals = calculate_bill_totals(
                request.line_items, request.tax_percent, request.discount_amount
            )

            self._advance(SettlementState.CHECKING_INVENTORY)
            check_availability(self._store, request.line_items, owner_id)

            self._advance(SettlementState.RECONCILING_PATIENT)
            self._patient_id = self._reconciler.reconcile(
                owner_id,
                request.patient_name,
                request.patient_phone,
                known_patient_id=prescription.patient_id,
            )

            self._advance(SettlementState.COMMITTING_BILL)
            self._bill = self._committer.commit(
                owner_id=owner_id,
                prescription_id=prescription.id,
                patient_id=self._patient_id,
                totals=totals,
                payment_method=request.payment_method.value,
                idempotency_key=request.idempotency_key,
            )
            self._pending = aggregate_requests(request.line_items)

            self._advance(SettlementState.DECREMENTING_INVENTORY)
            while self._pending:
                self._check_deadline()
                item_id, _name, quantity = self._pending[0]
                self._decrementer.decrement(item_id, owner_id, quantity)
                self._pending.pop(0)
                self._decremented.append(item_id)
        except DuplicateSettlement as exc:
            logger.info("[%s] lost idempotency race, replaying existing bill", self._ref)
            try:
                replayed = self._replay(owner_id, exc.idempotency_key)
            except SettlementError as replay_exc:
                return self._fail(replay_exc, owner_id, request)
            if replayed is None:
                return self._fail(exc, owner_id, request)
            return replayed
        except SettlementError as exc:
            return self._fail(exc, owner_id, request)
        except DataStoreError as exc:
            return self._fail(StoreUnavailable(self.state.value, str(exc)), owner_id, request)

        return self._complete()

    # ─── State handling ──────────────────────────────────────────────────

    def _enter(self, state: SettlementState) -> None:
        logger.info(
            "[%s] settlement %s -> %s",
            self._ref, self.state.value if self.state else "start", state.value,
        )
        self.state = state
        self.trail.append(state.value)

    def _advance(self, state: SettlementState) -> None:
        self._check_deadline()
        self._enter(state)

    def _check_deadline(self) -> None:
        if not self._deadline:
            return
        elapsed = self._clock() - self._started
        if elapsed > self._deadline:
            raise SettlementTimeout(self.state.value, elapsed, self._deadline)

    # ─── Outcomes ────────────────────────────────────────────────────────

    def _complete(self) -> SettlementResult:
        bill = self._bill
        try:
            if self._store.mark_bill_status(
                bill.id, BillStatus.COMPLETED, expected=BillStatus.PENDING
            ):
                bill = bill.model_copy(update={"status": BillStatus.COMPLETED})
            else:
                bill = bill.model_copy(update={"status": self._take_back_flagged_bill(bill)})
        except DataStoreError:
            logger.exception(
                "[%s] bill %s settled but could not be marked completed",
                self._ref, bill.bill_number,
            )
        self._enter(SettlementState.COMMITTED)

        try:
            self._sink.on_settled(bill)
        except Exception:
            logger.exception("[%s] notification sink failed on settled event", self._ref)

        return SettlementResult(
            status="committed",
            bill_id=bill.id,
            bill_number=bill.bill_number,
            bill_status=bill.status,
            total_amount=bill.total_amount,
            patient_id=self._patient_id,
            states=list(self.trail),
        )

    def _take_back_flagged_bill(self, bill: BillOut) -> BillStatus:
        """The stale sweep flagged this bill while it was still settling.

        Every item was deducted here, so the sweep's open flags on them are
        closed and the bill completed once nothing else is outstanding. A
        flag an operator has already claimed is left to that operator.
        """
        closed = self._close_deducted_flags(bill)
        if self._store.count_open_flags(bill.id) == 0:
            self._store.mark_bill_status(
                bill.id,
                BillStatus.COMPLETED,
                expected=BillStatus.INVENTORY_RECONCILIATION_FAILED,
            )
        status = self._store.get_bill_status(bill.id) or bill.status
        logger.warning(
            "[%s] bill %s was flagged while settling; closed %d flag(s), bill is %s",
            self._ref, bill.bill_number, closed, status.value,
        )
        return status

    def _close_deducted_flags(self, bill: BillOut) -> int:
        return self._store.close_open_flags(
            bill.id,
            list(self._decremented),
            note=f"stock already deducted by settlement of {bill.bill_number}",
        )

    def _current_status(self, bill_id: UUID, fallback: BillStatus) -> BillStatus:
        try:
            return self._store.get_bill_status(bill_id) or fallback
        except DataStoreError:
            return fallback

    def _fail(
        self, exc: SettlementError, owner_id: UUID, request: SettlementRequest
    ) -> SettlementResult:
        failed_in = self.state
        logger.warning(
            "[%s] settlement failed in %s: %s", self._ref, failed_in.value, exc
        )

        bill_id: UUID | None = None
        bill_number: str | None = None
        bill_status: BillStatus | None = None
        compensation_applied = False
        undecremented: list[UUID] = []

        if isinstance(exc, BillPersistenceFailed) and exc.bill_id is not None:
            self._enter(SettlementState.COMPENSATING)
            bill_id, bill_number = exc.bill_id, exc.bill_number
            compensation_applied = self._void_orphan(exc.bill_id)
            bill_status = (
                BillStatus.VOID
                if compensation_applied
                else self._current_status(exc.bill_id, BillStatus.PENDING)
            )
        elif self._bill is not None:
            self._enter(SettlementState.COMPENSATING)
            bill_id, bill_number = self._bill.id, self._bill.bill_number
            undecremented = [item_id for item_id, _name, _qty in self._pending]
            compensation_applied = self._flag_for_reconciliation(owner_id, exc)
            bill_status = (
                BillStatus.INVENTORY_RECONCILIATION_FAILED
                if compensation_applied
                else self._current_status(bill_id, BillStatus.PENDING)
            )
        self._enter(SettlementState.FAILED)

        details: dict[str, Any] = dict(getattr(exc, "details", {}))
        details["failed_state"] = failed_in.value
        if self._decremented:
            details["decremented_items"] = [str(i) for i in self._decremented]

        self._notify_failed(
            exc,
            {
                "owner_id": owner_id,
                "prescription_id": request.prescription_id,
                "failed_state": failed_in.value,
                "patient_id": self._patient_id,
                "bill_id": bill_id,
                "bill_number": bill_number,
                "bill_status": bill_status.value if bill_status else None,
                "compensation_applied": compensation_applied,
                "undecremented_items": undecremented,
                "decremented_items": list(self._decremented),
            },
        )

        return SettlementResult(
            status="failed",
            bill_id=bill_id,
            bill_number=bill_number,
            bill_status=bill_status,
            total_amount=self._bill.total_amount if self._bill else None,
            patient_id=self._patient_id,
            error_kind=exc.kind,
            message=str(exc),
            compensation_applied=compensation_applied,
            undecremented_items=undecremented,
            details=details,
            states=list(self.trail),
        )

    def _notify_failed(self, exc: Exception, partial_state: dict[str, Any]) -> None:
        try:
            self._sink.on_failed(exc, partial_state)
        except Exception:
            logger.exception("[%s] notification sink failed on failed event", self._ref)

    # ─── Compensations ───────────────────────────────────────────────────

    def _void_orphan(self, bill_id: UUID) -> bool:
        try:
            voided = self._store.mark_bill_status(
                bill_id, BillStatus.VOID, expected=BillStatus.PENDING
            )
        except DataStoreError:
            logger.exception("[%s] could not void orphaned bill %s", self._ref, bill_id)
            return False
        if not voided:
            logger.warning(
                "[%s] orphaned bill %s left pending before it could be voided",
                self._ref, bill_id,
            )
            return False
        logger.info("[%s] voided orphaned bill %s", self._ref, bill_id)
        return True

    def _flag_for_reconciliation(self, owner_id: UUID, exc: Exception) -> bool:
        bill = self._bill
        try:
            flags = self._store.flag_bill_for_reconciliation(
                owner_id=owner_id,
                bill_id=bill.id,
                items=[(item_id, qty) for item_id, _name, qty in self._pending],
                reason=str(exc),
            )
            if flags is None:
                # The stale sweep got here first and flagged every item.
                closed = self._close_deducted_flags(bill)
                logger.warning(
                    "[%s] bill %s was already flagged; closed %d flag(s) for deducted items",
                    self._ref, bill.bill_number, closed,
                )
        except DataStoreError:
            logger.exception(
                "[%s] could not flag bill %s for stock reconciliation",
                self._ref, bill.bill_number,
            )
            return False
        logger.warning(
            "[%s] bill %s needs stock reconciliation for %d item(s)",
            self._ref, bill.bill_number, len(self._pending),
        )
        return True

    # ─── Idempotency ─────────────────────────────────────────────────────

    def _replay(self, owner_id: UUID, idempotency_key: str) -> SettlementResult | None:
        """Return the recorded outcome for *idempotency_key*, if there is one.

        Replays never write: a committed bill is not decremented twice.
        """
        try:
            existing = self._store.find_bill_by_idempotency_key(owner_id, idempotency_key)
        except DataStoreError as exc:
            raise BillLookupFailed(idempotency_key, str(exc)) from exc
        if existing is None:
            return None
        if existing.status == BillStatus.PENDING:
            raise SettlementInProgress(
                f"Settlement '{idempotency_key}' is still in progress",
                bill_id=str(existing.id),
            )

        logger.info("[%s] replaying bill %s", self._ref, existing.bill_number)
        if existing.status == BillStatus.COMPLETED:
            return SettlementResult(
                status="committed",
                bill_id=existing.id,
                bill_number=existing.bill_number,
                bill_status=existing.status,
                total_amount=existing.total_amount,
                patient_id=existing.patient_id,
                replayed=True,
                states=list(self.trail),
            )

        try:
            flags = self._store.list_reconciliation_flags(owner_id, bill_id=existing.id)
        except DataStoreError as exc:
            raise BillLookupFailed(idempotency_key, str(exc)) from exc
        return SettlementResult(
            status="failed",
            bill_id=existing.id,
            bill_number=existing.bill_number,
            bill_status=existing.status,
            total_amount=existing.total_amount,
            patient_id=existing.patient_id,
            error_kind="InventoryUpdateConflict",
            message=f"Bill {existing.bill_number} is awaiting stock reconciliation",
            compensation_applied=True,
            undecremented_items=[f.inventory_item_id for f in flags],
            replayed=True,
            states=list(self.trail),
        )


def settle_bill(
    store: BillStore,
    request: SettlementRequest,
    owner_id: UUID,
    sink: NotificationSink | None = None,
    **options: Any,
) -> SettlementResult:
    """Settle one cart. See ``SettlementSaga`` for the options."""
    return SettlementSaga(store, sink, **options).run(request, owner_id)
