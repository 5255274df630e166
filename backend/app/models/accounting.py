# backend/app/models/accounting.py: model registry
#
# Re-exports every mapped class so that importing this one module registers
# the full schema on ``Base.metadata`` (needed by create_all and by
# relationship resolution).

from backend.app.models.user import User
from backend.app.models.audit import AuditLog
from backend.app.models.patient import Patient
from backend.app.models.prescription import Prescription
from backend.app.models.inventory import (
    InventoryItem,
    InventoryReconciliationFlag,
    ReconciliationStatus,
)
from backend.app.models.billing import Bill, BillItem, BillStatus, PaymentMethod

__all__ = [
    "User",
    "AuditLog",
    "Patient",
    "Prescription",
    "InventoryItem",
    "InventoryReconciliationFlag",
    "ReconciliationStatus",
    "Bill",
    "BillItem",
    "BillStatus",
    "PaymentMethod",
]
