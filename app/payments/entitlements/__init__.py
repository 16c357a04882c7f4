"""
Entitlements - plan-based feature access and metered usage.

Public API:
    Service:
        EntitlementService - check_access, track_usage, reset_period

    Catalog:
        PlanTier - free / pro
        Feature - feature keys
        PLAN_CATALOG, get_plan - plan definitions

    Types:
        AccessDecision - result of check_access
        UsagePeriod - key and start of a usage period

    Exceptions:
        EntitlementError - Base exception
        UnknownFeatureError - Feature key not in the catalog
        SubscriptionNotFound - Subscription lookup failures
        LimitExceededError - Metered usage would pass the plan limit

Usage:
    from payments.entitlements import EntitlementService, Feature

    decision = EntitlementService.check_access(subscription.id, Feature.PRO_BADGE)
"""

from payments.entitlements.exceptions import (
    EntitlementError,
    LimitExceededError,
    SubscriptionNotFound,
    UnknownFeatureError,
)
from payments.entitlements.plans import PLAN_CATALOG, Feature, PlanTier, get_plan
from payments.entitlements.services import EntitlementService
from payments.entitlements.types import AccessDecision, UsagePeriod

__all__ = [
    "AccessDecision",
    "EntitlementError",
    "EntitlementService",
    "Feature",
    "LimitExceededError",
    "PLAN_CATALOG",
    "PlanTier",
    "SubscriptionNotFound",
    "UnknownFeatureError",
    "UsagePeriod",
    "get_plan",
]
