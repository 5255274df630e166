"""Periodic housekeeping for interrupted settlements."""

from __future__ import annotations

from backend.app.workers.celery_app import celery


@celery.task(name="backend.app.workers.tasks.maintenance.flag_stale_pending_bills")
def flag_stale_pending_bills() -> dict:
    """Move bills stuck in ``pending`` onto the reconciliation queue."""
    from backend.app.core.config import settings
    from backend.app.services.bill_store import BillStore
    from backend.app.services.reconciliation import flag_stale_pending_bills as _flag

    flagged = _flag(BillStore(), older_than_minutes=settings.STALE_PENDING_BILL_MINUTES)
    return {"flagged": [str(b) for b in flagged]}
