"""
Payment services.

Services are plain classes constructed with their collaborators (adapter
registry, settlement engine), so tests can inject fakes:

    from payments.services import CheckoutService, SettlementService

    checkout = CheckoutService(adapters=registry, settlement=SettlementService())
    result = checkout.initiate(...)
"""

from payments.services.audit_service import AuditService
from payments.services.checkout_service import CheckoutResult, CheckoutService
from payments.services.reconciliation_service import (
    ReconciliationRunResult,
    ReconciliationService,
)
from payments.services.refund_service import RefundService
from payments.services.settlement_service import SettlementService

__all__ = [
    "AuditService",
    "CheckoutResult",
    "CheckoutService",
    "ReconciliationRunResult",
    "ReconciliationService",
    "RefundService",
    "SettlementService",
]
