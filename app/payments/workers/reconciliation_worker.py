"""
Reconciliation worker for periodic state consistency checks.

Tasks:
- run_scheduled_reconciliation: Periodic task that runs a full scanner pass

Usage:
    # Typically called via celery-beat schedule
    from payments.workers import run_scheduled_reconciliation

    # Or manually trigger reconciliation
    run_scheduled_reconciliation.delay(expiry_hours=48)

Celery Beat Schedule (config/settings.py):
    CELERY_BEAT_SCHEDULE = {
        "payments-reconciliation": {
            "task": "payments.workers.reconciliation_worker.run_scheduled_reconciliation",
            "schedule": timedelta(minutes=RECONCILIATION_INTERVAL_MINUTES),
        },
    }
"""

from __future__ import annotations

import logging

from celery import shared_task

from core.services import ServiceResult
from payments.exceptions import LockAcquisitionError

logger = logging.getLogger(__name__)


@shared_task(bind=True)
def run_scheduled_reconciliation(
    self,
    expiry_hours: int | None = None,
    max_records: int | None = None,
) -> dict:
    """
    Run a full reconciliation pass.

    Args:
        expiry_hours: Awaiting intents older than this are polled
            (default: PAYMENT_INTENT_EXPIRY_HOURS)
        max_records: Per-check record cap (default: RECONCILIATION_MAX_RECORDS)

    Returns:
        ServiceResult.to_response() dict. On success ``data`` holds the
        run summary plus ``status``: "completed" or "skipped" (another
        pass held the lock).

    Note:
        A held lock returns immediately instead of waiting, so runs
        longer than the beat interval do not queue up.
    """
    from payments.services import ReconciliationService

    try:
        run_result = ReconciliationService().run(expiry_hours=expiry_hours, max_records=max_records)
    except LockAcquisitionError:
        logger.info(
            "Reconciliation run skipped - another run in progress",
            extra={"task_id": self.request.id},
        )
        return ServiceResult.success({"status": "skipped"}).to_response()
    except Exception as e:
        logger.exception(
            f"Unexpected error during reconciliation: {e}",
            extra={"task_id": self.request.id},
        )
        return ServiceResult.from_exception(e, error_code="RECONCILIATION_FAILED").to_response()

    logger.info("Scheduled reconciliation completed", extra=run_result.to_dict())
    return ServiceResult.success({"status": "completed", **run_result.to_dict()}).to_response()
