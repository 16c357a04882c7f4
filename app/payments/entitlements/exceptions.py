"""
Entitlement-specific exceptions.

Exception Hierarchy:
    EntitlementError (base)
    ├── UnknownFeatureError - Feature key not in the plan catalog (400)
    ├── SubscriptionNotFound - Subscription lookup failures (404)
    └── LimitExceededError - Metered usage would pass the plan limit (429)

Usage:
    from payments.entitlements.exceptions import LimitExceededError

    try:
        entitlements.track_usage(subscription_id, "job_applications")
    except LimitExceededError as e:
        return Response(e.to_dict(), status=e.http_status)
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from core.exceptions import BaseApplicationError, RateLimitError

if TYPE_CHECKING:
    import uuid


class EntitlementError(BaseApplicationError):
    """Base exception for entitlement and usage operations."""

    default_error_code: str = "ENTITLEMENT_ERROR"


class UnknownFeatureError(EntitlementError):
    """Raised when a feature key is not part of the plan catalog."""

    default_error_code: str = "UNKNOWN_FEATURE"
    http_status: int = 400

    def __init__(self, feature_key: str):
        super().__init__(
            f"Unknown feature '{feature_key}'",
            details={"feature_key": feature_key},
        )
        self.feature_key = feature_key


class SubscriptionNotFound(EntitlementError):
    default_error_code: str = "SUBSCRIPTION_NOT_FOUND"
    http_status: int = 404


class LimitExceededError(RateLimitError, EntitlementError):
    """
    Raised when tracking usage would push consumption past the limit.

    Attributes:
        feature_key: Metered feature being tracked
        limit: Limit for the subscription's effective plan
        consumed: Consumption before the rejected increment
        requested: Amount the caller tried to add
    """

    default_error_code: str = "USAGE_LIMIT_EXCEEDED"

    def __init__(
        self,
        subscription_id: uuid.UUID,
        feature_key: str,
        limit: int,
        consumed: int,
        requested: int,
    ):
        super().__init__(
            f"Usage limit reached for '{feature_key}' ({consumed}/{limit})",
            details={
                "subscription_id": str(subscription_id),
                "feature_key": feature_key,
                "limit": limit,
                "consumed": consumed,
                "requested": requested,
            },
        )
        self.feature_key = feature_key
        self.limit = limit
        self.consumed = consumed
        self.requested = requested
