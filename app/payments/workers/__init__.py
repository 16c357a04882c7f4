"""
Workers for background payment operations.

- ReconciliationWorker: Detects and heals payment state discrepancies

Usage:
    from payments.workers import run_scheduled_reconciliation

    run_scheduled_reconciliation.delay()
"""

from payments.workers.reconciliation_worker import run_scheduled_reconciliation

__all__ = [
    "run_scheduled_reconciliation",
]
