"""Tests for bill persistence."""
from __future__ import annotations

import itertools
import re
from datetime import datetime, timezone
from decimal import Decimal
from uuid import UUID

import pytest

from backend.app.models.accounting import Bill, BillItem, BillStatus
from backend.app.services.bill_committer import BillCommitter, generate_bill_number
from backend.app.services.bill_store import BillStore
from backend.app.services.errors import (
    BillPersistenceFailed,
    DataStoreError,
    DuplicateSettlement,
)
from backend.app.services.pricing import calculate_bill_totals
from backend.tests.conftest import count_rows, line


class _NoItemsStore(BillStore):
    def insert_bill_items(self, bill_id, lines):
        raise DataStoreError("connection dropped")


def _totals(paracetamol: UUID, cough_syrup: UUID):
    return calculate_bill_totals(
        [line(paracetamol, 3, "10", "Paracetamol"), line(cough_syrup, 1, "85", "Syrup")],
        Decimal("18"),
    )


def _commit(committer: BillCommitter, owner: UUID, prescription: UUID, patient: UUID, totals, **kw):
    return committer.commit(
        owner_id=owner,
        prescription_id=prescription,
        patient_id=patient,
        totals=totals,
        payment_method="cash",
        **kw,
    )


class TestBillNumber:
    def test_format(self) -> None:
        number = generate_bill_number(datetime(2026, 3, 1, 9, 30, 5, tzinfo=timezone.utc))
        assert re.fullmatch(r"BILL-20260301093005-[0-9A-F]{6}", number)

    def test_numbers_differ(self) -> None:
        assert len({generate_bill_number() for _ in range(20)}) == 20


class TestCommit:
    def test_writes_header_then_items(
        self, store: BillStore, session_factory, owner, prescription, patient, paracetamol, cough_syrup
    ) -> None:
        totals = _totals(paracetamol, cough_syrup)
        bill = _commit(BillCommitter(store), owner, prescription, patient, totals)

        assert bill.status == BillStatus.PENDING
        assert bill.total_amount == Decimal("136")
        assert [i.inventory_item_id for i in bill.items] == [paracetamol, cough_syrup]
        assert count_rows(session_factory, BillItem, bill_id=bill.id) == 2

    def test_item_failure_reports_orphaned_header(
        self, session_factory, owner, prescription, patient, paracetamol, cough_syrup
    ) -> None:
        committer = BillCommitter(_NoItemsStore(session_factory))
        with pytest.raises(BillPersistenceFailed) as exc:
            _commit(committer, owner, prescription, patient, _totals(paracetamol, cough_syrup))

        assert exc.value.bill_id is not None
        assert exc.value.bill_number.startswith("BILL-")
        assert count_rows(session_factory, Bill, id=exc.value.bill_id) == 1
        assert count_rows(session_factory, BillItem) == 0

    def test_number_collision_is_retried(
        self, store: BillStore, session_factory, owner, prescription, patient, paracetamol, cough_syrup
    ) -> None:
        numbers = itertools.chain(["BILL-FIXED"], ["BILL-FIXED", "BILL-OTHER"])
        committer = BillCommitter(store, number_factory=lambda: next(numbers))
        totals = _totals(paracetamol, cough_syrup)

        first = _commit(committer, owner, prescription, patient, totals)
        second = _commit(committer, owner, prescription, patient, totals)

        assert first.bill_number == "BILL-FIXED"
        assert second.bill_number == "BILL-OTHER"

    def test_number_collision_gives_up(
        self, store: BillStore, owner, prescription, patient, paracetamol, cough_syrup
    ) -> None:
        committer = BillCommitter(store, max_number_attempts=2, number_factory=lambda: "BILL-SAME")
        totals = _totals(paracetamol, cough_syrup)
        _commit(committer, owner, prescription, patient, totals)

        with pytest.raises(BillPersistenceFailed) as exc:
            _commit(committer, owner, prescription, patient, totals)
        assert exc.value.bill_id is None

    def test_taken_idempotency_key(
        self, store: BillStore, owner, prescription, patient, paracetamol, cough_syrup
    ) -> None:
        committer = BillCommitter(store)
        totals = _totals(paracetamol, cough_syrup)
        _commit(committer, owner, prescription, patient, totals, idempotency_key="till-1-0042")

        with pytest.raises(DuplicateSettlement) as exc:
            _commit(committer, owner, prescription, patient, totals, idempotency_key="till-1-0042")
        assert exc.value.idempotency_key == "till-1-0042"

    def test_voided_bill_frees_its_key(
        self, store: BillStore, owner, prescription, patient, paracetamol, cough_syrup
    ) -> None:
        committer = BillCommitter(store)
        totals = _totals(paracetamol, cough_syrup)
        first = _commit(committer, owner, prescription, patient, totals, idempotency_key="k-1")
        store.mark_bill_status(first.id, BillStatus.VOID)

        second = _commit(committer, owner, prescription, patient, totals, idempotency_key="k-1")
        assert second.id != first.id
