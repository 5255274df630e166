"""Manual stock reconciliation queue.

Bills whose stock could not be fully deducted stay committed but carry one
open flag per item still owed. An operator either applies the deduction
now or closes the flag after adjusting stock by hand. The bill flips to
``completed`` once its last flag is closed.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from uuid import UUID

from backend.app.models.billing import BillStatus
from backend.app.schemas.billing import ReconciliationFlagOut
from backend.app.services.bill_store import BillStore
from backend.app.services.errors import InventoryUpdateConflict
from backend.app.services.inventory import InventoryDecrementer

logger = logging.getLogger(__name__)

STALE_BILL_REASON = "settlement interrupted; verify stock manually"


def list_open_flags(
    store: BillStore, owner_id: UUID, bill_id: UUID | None = None
) -> list[ReconciliationFlagOut]:
    return store.list_reconciliation_flags(owner_id, bill_id=bill_id)


def resolve_flag(
    store: BillStore,
    owner_id: UUID,
    flag_id: UUID,
    *,
    apply_decrement: bool = True,
    note: str | None = None,
    max_retries: int | None = None,
) -> ReconciliationFlagOut:
    """Close one reconciliation flag.

    The flag is claimed before any stock moves, so of two operators racing
    on the same flag only one deducts. With ``apply_decrement`` the owed
    quantity is deducted next; an ``InventoryUpdateConflict`` hands the
    flag back to the queue and propagates. Raises ``ValueError`` if the
    flag does not exist or is no longer open.
    """
    flag = store.get_reconciliation_flag(flag_id, owner_id)
    if flag is None:
        raise ValueError("Reconciliation flag not found")
    if not store.claim_reconciliation_flag(flag_id, owner_id):
        raise ValueError("Reconciliation flag is already resolved")

    if apply_decrement:
        try:
            InventoryDecrementer(store, max_retries=max_retries).decrement(
                flag.inventory_item_id, owner_id, flag.quantity
            )
        except InventoryUpdateConflict:
            store.release_reconciliation_flag(flag_id, owner_id)
            raise

    store.resolve_reconciliation_flag(flag_id, owner_id, note)
    store.record_audit(
        owner_id=owner_id,
        action="RECONCILIATION_RESOLVED",
        resource_type="inventory_reconciliation_flags",
        resource_id=str(flag_id),
        changes={
            "bill_id": str(flag.bill_id),
            "inventory_item_id": str(flag.inventory_item_id),
            "quantity": flag.quantity,
            "decrement_applied": apply_decrement,
            "note": note,
        },
    )

    if store.count_open_flags(flag.bill_id) == 0:
        if store.mark_bill_status(
            flag.bill_id,
            BillStatus.COMPLETED,
            expected=BillStatus.INVENTORY_RECONCILIATION_FAILED,
        ):
            logger.info("Bill %s fully reconciled", flag.bill_id)

    return store.get_reconciliation_flag(flag_id, owner_id)


def flag_stale_pending_bills(
    store: BillStore, older_than_minutes: int, now: datetime | None = None
) -> list[UUID]:
    """Queue every bill stuck in ``pending`` for manual stock review.

    A pending bill older than the settlement deadline belongs to a process
    that died mid-flight; which of its items were deducted is unknown, so
    every item is flagged. A bill that leaves ``pending`` between the scan
    and the flagging is skipped.
    """
    now = now or datetime.now(timezone.utc)
    cutoff = now - timedelta(minutes=older_than_minutes)

    flagged: list[UUID] = []
    for bill in store.list_pending_bills_before(cutoff):
        totals: dict[UUID, int] = {}
        for item in bill.items:
            totals[item.inventory_item_id] = totals.get(item.inventory_item_id, 0) + item.quantity
        flags = store.flag_bill_for_reconciliation(
            owner_id=bill.owner_id,
            bill_id=bill.id,
            items=list(totals.items()),
            reason=STALE_BILL_REASON,
        )
        if flags is None:
            logger.info("Bill %s settled before it could be flagged", bill.bill_number)
            continue
        logger.warning("Bill %s left pending since %s, flagged", bill.bill_number, bill.created_at)
        flagged.append(bill.id)
    return flagged
