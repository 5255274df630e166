"""Tests for stock availability checks and optimistic decrements."""
from __future__ import annotations

import uuid
from uuid import UUID

import pytest

from backend.app.services.bill_store import BillStore
from backend.app.services.errors import (
    DataStoreError,
    InsufficientInventory,
    InventoryLookupFailed,
    InventoryUpdateConflict,
)
from backend.app.services.inventory import (
    InventoryDecrementer,
    aggregate_requests,
    check_availability,
)
from backend.tests.conftest import line, make_item, stock_of


class _RacingStore(BillStore):
    """Lets another writer take ``steal`` units before each of the first
    ``races`` swaps."""

    def __init__(self, session_factory, steal: int, races: int) -> None:
        super().__init__(session_factory)
        self.steal = steal
        self.races = races
        self.swaps = 0

    def compare_and_swap_inventory_quantity(self, item_id, owner_id, expected, new):
        self.swaps += 1
        if self.races:
            self.races -= 1
            current = BillStore.get_inventory_quantity(self, item_id, owner_id)
            BillStore.compare_and_swap_inventory_quantity(
                self, item_id, owner_id, current, current - self.steal
            )
        return super().compare_and_swap_inventory_quantity(item_id, owner_id, expected, new)


class _FlakyReadStore(BillStore):
    def __init__(self, session_factory, failures: int) -> None:
        super().__init__(session_factory)
        self.failures = failures

    def get_inventory_quantity(self, item_id, owner_id):
        if self.failures:
            self.failures -= 1
            raise DataStoreError("database is locked")
        return super().get_inventory_quantity(item_id, owner_id)


# ─── TestAggregation ─────────────────────────────────────────────────────────


class TestAggregation:
    def test_same_item_lines_are_summed(self) -> None:
        a, b = uuid.uuid4(), uuid.uuid4()
        result = aggregate_requests(
            [line(a, 2, name="A"), line(b, 1, name="B"), line(a, 3, name="A again")]
        )
        assert result == [(a, "A", 5), (b, "B", 1)]


# ─── TestAvailability ────────────────────────────────────────────────────────


class TestAvailability:
    def test_enough_stock(
        self, store: BillStore, owner: UUID, paracetamol: UUID, cough_syrup: UUID
    ) -> None:
        observed = check_availability(
            store, [line(paracetamol, 5), line(cough_syrup, 20)], owner
        )
        assert observed == {paracetamol: 50, cough_syrup: 20}

    def test_insufficient_stock(self, store: BillStore, session_factory, owner: UUID) -> None:
        item = make_item(session_factory, owner, "Insulin pen", 2)
        with pytest.raises(InsufficientInventory) as exc:
            check_availability(store, [line(item, 3)], owner)
        assert exc.value.available == 2
        assert exc.value.requested == 3
        assert exc.value.details["item_id"] == str(item)

    def test_split_lines_checked_against_combined_quantity(
        self, store: BillStore, session_factory, owner: UUID
    ) -> None:
        item = make_item(session_factory, owner, "Insulin pen", 3)
        with pytest.raises(InsufficientInventory) as exc:
            check_availability(store, [line(item, 2), line(item, 2)], owner)
        assert exc.value.requested == 4

    def test_unknown_item(self, store: BillStore, owner: UUID) -> None:
        with pytest.raises(InventoryLookupFailed):
            check_availability(store, [line(uuid.uuid4(), 1)], owner)

    def test_other_owners_stock_is_invisible(
        self, store: BillStore, other_owner: UUID, paracetamol: UUID
    ) -> None:
        with pytest.raises(InventoryLookupFailed):
            check_availability(store, [line(paracetamol, 1)], other_owner)

    def test_read_failure(self, session_factory, owner: UUID, paracetamol: UUID) -> None:
        with pytest.raises(InventoryLookupFailed):
            check_availability(_FlakyReadStore(session_factory, 1), [line(paracetamol, 1)], owner)

    def test_check_writes_nothing(
        self, store: BillStore, session_factory, owner: UUID, paracetamol: UUID
    ) -> None:
        check_availability(store, [line(paracetamol, 5)], owner)
        assert stock_of(session_factory, paracetamol) == 50


# ─── TestDecrement ───────────────────────────────────────────────────────────


class TestDecrement:
    def test_decrements_stock(
        self, store: BillStore, session_factory, owner: UUID, paracetamol: UUID
    ) -> None:
        assert InventoryDecrementer(store).decrement(paracetamol, owner, 8) == 42
        assert stock_of(session_factory, paracetamol) == 42

    def test_swap_bumps_version(
        self, store: BillStore, session_factory, owner: UUID, paracetamol: UUID
    ) -> None:
        from backend.app.models.accounting import InventoryItem

        InventoryDecrementer(store).decrement(paracetamol, owner, 1)
        with session_factory() as db:
            assert db.get(InventoryItem, paracetamol).version == 1

    def test_lost_race_is_retried(
        self, session_factory, owner: UUID, paracetamol: UUID
    ) -> None:
        racing = _RacingStore(session_factory, steal=5, races=2)
        assert InventoryDecrementer(racing, max_retries=3).decrement(paracetamol, owner, 10) == 30
        assert racing.swaps == 3
        assert stock_of(session_factory, paracetamol) == 30

    def test_gives_up_after_retries(
        self, session_factory, owner: UUID, paracetamol: UUID
    ) -> None:
        racing = _RacingStore(session_factory, steal=1, races=10)
        with pytest.raises(InventoryUpdateConflict) as exc:
            InventoryDecrementer(racing, max_retries=2).decrement(paracetamol, owner, 1)
        assert exc.value.details["attempts"] == 3
        assert racing.swaps == 3
        # only the competing writer's units were taken
        assert stock_of(session_factory, paracetamol) == 47

    def test_stock_taken_by_competitor_is_a_conflict(
        self, session_factory, owner: UUID
    ) -> None:
        item = make_item(session_factory, owner, "Last strip", 1)
        racing = _RacingStore(session_factory, steal=1, races=1)
        with pytest.raises(InventoryUpdateConflict) as exc:
            InventoryDecrementer(racing, max_retries=3).decrement(item, owner, 1)
        assert exc.value.details["available"] == 0
        assert stock_of(session_factory, item) == 0

    def test_never_goes_negative(self, store: BillStore, session_factory, owner: UUID) -> None:
        item = make_item(session_factory, owner, "Eye drops", 2)
        with pytest.raises(InventoryUpdateConflict):
            InventoryDecrementer(store).decrement(item, owner, 3)
        assert stock_of(session_factory, item) == 2

    def test_read_failures_use_up_attempts(
        self, session_factory, owner: UUID, paracetamol: UUID
    ) -> None:
        flaky = _FlakyReadStore(session_factory, failures=1)
        assert InventoryDecrementer(flaky, max_retries=1).decrement(paracetamol, owner, 1) == 49

        flaky = _FlakyReadStore(session_factory, failures=5)
        with pytest.raises(InventoryUpdateConflict):
            InventoryDecrementer(flaky, max_retries=1).decrement(paracetamol, owner, 1)

    def test_missing_item(self, store: BillStore, owner: UUID) -> None:
        with pytest.raises(InventoryUpdateConflict):
            InventoryDecrementer(store).decrement(uuid.uuid4(), owner, 1)
