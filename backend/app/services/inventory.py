"""Stock availability checks and optimistic stock decrements."""

from __future__ import annotations

import logging
from collections.abc import Sequence
from uuid import UUID

from backend.app.core.config import settings
from backend.app.schemas.billing import LineItem
from backend.app.services.bill_store import BillStore
from backend.app.services.errors import (
    DataStoreError,
    InsufficientInventory,
    InventoryLookupFailed,
    InventoryUpdateConflict,
)

logger = logging.getLogger(__name__)


def aggregate_requests(items: Sequence[LineItem]) -> list[tuple[UUID, str, int]]:
    """Sum requested quantities per stock item, keeping first-seen order."""
    totals: dict[UUID, int] = {}
    names: dict[UUID, str] = {}
    for item in items:
        totals[item.item_id] = totals.get(item.item_id, 0) + item.quantity
        names.setdefault(item.item_id, item.name)
    return [(item_id, names[item_id], qty) for item_id, qty in totals.items()]


def check_availability(
    store: BillStore, items: Sequence[LineItem], owner_id: UUID
) -> dict[UUID, int]:
    """Verify every requested quantity is on hand before anything is written.

    Advisory only: nothing is reserved, and the decrementer re-reads stock
    before each write. Returns the quantities that were observed.
    """
    observed: dict[UUID, int] = {}
    for item_id, name, requested in aggregate_requests(items):
        try:
            available = store.get_inventory_quantity(item_id, owner_id)
        except DataStoreError as exc:
            raise InventoryLookupFailed(item_id, str(exc)) from exc
        if available is None:
            raise InventoryLookupFailed(item_id, "item not found")
        if requested > available:
            raise InsufficientInventory(item_id, name, available, requested)
        observed[item_id] = available
    return observed


class InventoryDecrementer:
    """Read-decrement-swap loop for one stock item at a time.

    The write only lands if the quantity is unchanged since the read; on a
    lost race the cycle is repeated up to ``max_retries`` more times.
    """

    def __init__(self, store: BillStore, max_retries: int | None = None) -> None:
        self._store = store
        self._max_retries = (
            settings.INVENTORY_CAS_MAX_RETRIES if max_retries is None else max_retries
        )

    def decrement(self, item_id: UUID, owner_id: UUID, requested: int) -> int:
        """Take *requested* units off *item_id*; returns the new quantity."""
        attempts = self._max_retries + 1
        for attempt in range(1, attempts + 1):
            try:
                current = self._store.get_inventory_quantity(item_id, owner_id)
            except DataStoreError as exc:
                logger.warning(
                    "Stock read for item %s failed (attempt %d/%d): %s",
                    item_id, attempt, attempts, exc,
                )
                continue
            if current is None:
                raise InventoryUpdateConflict(item_id, "item no longer exists")
            if current < requested:
                raise InventoryUpdateConflict(
                    item_id,
                    f"only {current} left, {requested} requested",
                    available=current,
                    requested=requested,
                )

            new_quantity = max(0, current - requested)
            try:
                swapped = self._store.compare_and_swap_inventory_quantity(
                    item_id, owner_id, current, new_quantity
                )
            except DataStoreError as exc:
                logger.warning(
                    "Stock write for item %s failed (attempt %d/%d): %s",
                    item_id, attempt, attempts, exc,
                )
                continue
            if swapped:
                return new_quantity
            logger.info(
                "Stock for item %s changed since read (attempt %d/%d), retrying",
                item_id, attempt, attempts,
            )

        raise InventoryUpdateConflict(
            item_id, f"gave up after {attempts} attempts", attempts=attempts
        )
