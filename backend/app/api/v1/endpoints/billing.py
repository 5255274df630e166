from __future__ import annotations

from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, Response, status

from backend.app.api.deps import get_bill_store, get_current_user
from backend.app.models.accounting import BillStatus, User
from backend.app.schemas.billing import (
    BillOut,
    ReconciliationFlagOut,
    ReconciliationResolveRequest,
    SettlementRequest,
    SettlementResult,
)
from backend.app.services.bill_store import BillStore
from backend.app.services.errors import InventoryUpdateConflict
from backend.app.services.reconciliation import list_open_flags, resolve_flag
from backend.app.services.settlement import settle_bill
from backend.app.services.settlement_events import AuditNotificationSink

router = APIRouter()

_STATUS_BY_KIND: dict[str, int] = {
    "PrescriptionNotFound": status.HTTP_404_NOT_FOUND,
    "InvalidBillAmount": status.HTTP_422_UNPROCESSABLE_ENTITY,
    "InsufficientInventory": status.HTTP_409_CONFLICT,
    "InventoryUpdateConflict": status.HTTP_409_CONFLICT,
    "PrescriptionNotConsumable": status.HTTP_409_CONFLICT,
    "SettlementInProgress": status.HTTP_409_CONFLICT,
    "InventoryLookupFailed": status.HTTP_502_BAD_GATEWAY,
    "PrescriptionLookupFailed": status.HTTP_502_BAD_GATEWAY,
    "BillLookupFailed": status.HTTP_502_BAD_GATEWAY,
    "StoreUnavailable": status.HTTP_503_SERVICE_UNAVAILABLE,
    "Timeout": status.HTTP_504_GATEWAY_TIMEOUT,
}


# ─── Settlement ──────────────────────────────────────────────────────────────


@router.post("/settle", response_model=SettlementResult)
def settle(
    payload: SettlementRequest,
    response: Response,
    store: BillStore = Depends(get_bill_store),
    current_user: User = Depends(get_current_user),
) -> SettlementResult:
    result = settle_bill(store, payload, current_user.id, AuditNotificationSink(store))
    if result.status == "committed":
        response.status_code = (
            status.HTTP_200_OK if result.replayed else status.HTTP_201_CREATED
        )
    else:
        response.status_code = _STATUS_BY_KIND.get(
            result.error_kind or "", status.HTTP_500_INTERNAL_SERVER_ERROR
        )
    return result


# ─── Bills ───────────────────────────────────────────────────────────────────


@router.get("/bills", response_model=list[BillOut])
def list_bills(
    bill_status: BillStatus | None = Query(None, alias="status"),
    limit: int = Query(50, ge=1, le=500),
    store: BillStore = Depends(get_bill_store),
    current_user: User = Depends(get_current_user),
) -> list[BillOut]:
    return store.list_bills(current_user.id, status=bill_status, limit=limit)


@router.get("/bills/{bill_id}", response_model=BillOut)
def get_bill(
    bill_id: UUID,
    store: BillStore = Depends(get_bill_store),
    current_user: User = Depends(get_current_user),
) -> BillOut:
    bill = store.get_bill(bill_id, current_user.id)
    if not bill:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Bill not found")
    return bill


# ─── Stock reconciliation ────────────────────────────────────────────────────


@router.get("/reconciliation", response_model=list[ReconciliationFlagOut])
def list_reconciliation_flags(
    bill_id: UUID | None = None,
    store: BillStore = Depends(get_bill_store),
    current_user: User = Depends(get_current_user),
) -> list[ReconciliationFlagOut]:
    return list_open_flags(store, current_user.id, bill_id=bill_id)


@router.post("/reconciliation/{flag_id}/resolve", response_model=ReconciliationFlagOut)
def resolve_reconciliation_flag(
    flag_id: UUID,
    payload: ReconciliationResolveRequest,
    store: BillStore = Depends(get_bill_store),
    current_user: User = Depends(get_current_user),
) -> ReconciliationFlagOut:
    try:
        return resolve_flag(
            store,
            current_user.id,
            flag_id,
            apply_decrement=payload.apply_decrement,
            note=payload.note,
        )
    except InventoryUpdateConflict as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))
    except ValueError as e:
        code = (
            status.HTTP_404_NOT_FOUND
            if "not found" in str(e)
            else status.HTTP_409_CONFLICT
        )
        raise HTTPException(status_code=code, detail=str(e))
