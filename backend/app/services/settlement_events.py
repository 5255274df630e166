"""Terminal settlement events: audit trail and operator alerts."""

from __future__ import annotations

import logging
from typing import Any

from backend.app.core.config import settings
from backend.app.models.billing import BillStatus
from backend.app.schemas.billing import BillOut
from backend.app.services.bill_store import BillStore
from backend.app.services.notification_service import NotificationType

logger = logging.getLogger(__name__)


class NotificationSink:
    """Receives exactly one terminal event per settlement. Does nothing."""

    def on_settled(self, bill: BillOut) -> None:
        pass

    def on_failed(self, reason: Exception, partial_state: dict[str, Any]) -> None:
        pass


class AuditNotificationSink(NotificationSink):
    """Record every outcome in the audit log and alert the operator when a
    committed bill needs manual follow-up."""

    def __init__(self, store: BillStore) -> None:
        self._store = store

    def on_settled(self, bill: BillOut) -> None:
        self._store.record_audit(
            owner_id=bill.owner_id,
            action="BILL_SETTLED",
            resource_type="bills",
            resource_id=bill.bill_number,
            changes={
                "bill_id": str(bill.id),
                "prescription_id": str(bill.prescription_id),
                "patient_id": str(bill.patient_id) if bill.patient_id else None,
                "subtotal": str(bill.subtotal),
                "tax_amount": str(bill.tax_amount),
                "discount_amount": str(bill.discount_amount),
                "total_amount": str(bill.total_amount),
                "item_count": len(bill.items),
                "payment_method": bill.payment_method.value,
            },
        )

    def on_failed(self, reason: Exception, partial_state: dict[str, Any]) -> None:
        self._store.record_audit(
            owner_id=partial_state.get("owner_id"),
            action="BILL_SETTLEMENT_FAILED",
            resource_type="bills",
            resource_id=partial_state.get("bill_number") or str(partial_state.get("prescription_id")),
            changes={
                "error_kind": getattr(reason, "kind", type(reason).__name__),
                "message": str(reason),
                **{k: _jsonable(v) for k, v in partial_state.items() if k != "owner_id"},
            },
        )

        bill_number = partial_state.get("bill_number")
        if not bill_number:
            return
        if partial_state.get("bill_status") == BillStatus.INVENTORY_RECONCILIATION_FAILED.value:
            self._alert(
                NotificationType.INVENTORY_RECONCILIATION_REQUIRED,
                partial_state,
                bill_number=bill_number,
                items=", ".join(str(i) for i in partial_state.get("undecremented_items", [])),
                reason=str(reason),
            )
        elif not partial_state.get("compensation_applied"):
            self._alert(
                NotificationType.ORPHANED_BILL,
                partial_state,
                bill_number=bill_number,
                reason=str(reason),
            )

    def _alert(
        self,
        notification_type: NotificationType,
        partial_state: dict[str, Any],
        **template_kwargs: str,
    ) -> None:
        if not settings.NOTIFICATION_ENABLED:
            return
        recipient = settings.OPERATOR_ALERT_EMAIL
        if not recipient and partial_state.get("owner_id"):
            recipient = self._store.get_owner_email(partial_state["owner_id"]) or ""
        if not recipient:
            logger.warning("No operator email configured for %s alert", notification_type.value)
            return

        from backend.app.workers.tasks.notifications import send_operator_alert

        send_operator_alert.delay(notification_type.value, recipient, template_kwargs)


def _jsonable(value: Any) -> Any:
    if isinstance(value, (list, tuple)):
        return [_jsonable(v) for v in value]
    if value is None or isinstance(value, (bool, int, float, str)):
        return value
    return str(value)
