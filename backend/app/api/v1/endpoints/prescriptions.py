from __future__ import annotations

from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, status

from backend.app.api.deps import get_bill_store, get_current_user
from backend.app.models.accounting import User
from backend.app.schemas.billing import PrescriptionOut
from backend.app.schemas.prescription import PrescriptionCreate, PrescriptionStatusUpdate
from backend.app.services.bill_store import BillStore
from backend.app.services.errors import PatientReconciliationFailed
from backend.app.services.prescriptions import (
    get_prescription,
    register_prescription,
    set_prescription_status,
)

router = APIRouter()


@router.post("", response_model=PrescriptionOut, status_code=status.HTTP_201_CREATED)
def create_prescription(
    payload: PrescriptionCreate,
    store: BillStore = Depends(get_bill_store),
    current_user: User = Depends(get_current_user),
) -> PrescriptionOut:
    try:
        return register_prescription(store, current_user.id, payload)
    except PatientReconciliationFailed as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))


@router.get("/{prescription_id}", response_model=PrescriptionOut)
def read_prescription(
    prescription_id: UUID,
    store: BillStore = Depends(get_bill_store),
    current_user: User = Depends(get_current_user),
) -> PrescriptionOut:
    try:
        return get_prescription(store, current_user.id, prescription_id)
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))


@router.patch("/{prescription_id}/status", response_model=PrescriptionOut)
def update_prescription_status(
    prescription_id: UUID,
    payload: PrescriptionStatusUpdate,
    store: BillStore = Depends(get_bill_store),
    current_user: User = Depends(get_current_user),
) -> PrescriptionOut:
    try:
        return set_prescription_status(
            store, current_user.id, prescription_id, payload.status.value
        )
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
