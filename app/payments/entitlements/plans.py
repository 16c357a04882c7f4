"""
Plan catalog: tiers, prices, metered limits and boolean features.

The catalog is the authoritative source for subscription prices (checkout
re-validates the amount against it) and for feature limits (the usage
ledger derives every UsageRecord.limit from it).

Metered features:
    job_applications, services, bookings_per_month

Boolean features:
    featured_placement, priority_job_access, analytics_access,
    pro_badge, supplies_discount
"""

from __future__ import annotations

from dataclasses import dataclass, field

from django.db import models


class PlanTier(models.TextChoices):
    FREE = "free", "Free"
    PRO = "pro", "Pro"


class Feature:
    """Feature keys accepted by check_access/track_usage."""

    JOB_APPLICATIONS = "job_applications"
    SERVICES = "services"
    BOOKINGS_PER_MONTH = "bookings_per_month"

    FEATURED_PLACEMENT = "featured_placement"
    PRIORITY_JOB_ACCESS = "priority_job_access"
    ANALYTICS_ACCESS = "analytics_access"
    PRO_BADGE = "pro_badge"
    SUPPLIES_DISCOUNT = "supplies_discount"


METERED_FEATURES = frozenset(
    {
        Feature.JOB_APPLICATIONS,
        Feature.SERVICES,
        Feature.BOOKINGS_PER_MONTH,
    }
)

BOOLEAN_FEATURES = frozenset(
    {
        Feature.FEATURED_PLACEMENT,
        Feature.PRIORITY_JOB_ACCESS,
        Feature.ANALYTICS_ACCESS,
        Feature.PRO_BADGE,
        Feature.SUPPLIES_DISCOUNT,
    }
)


@dataclass(frozen=True)
class PlanDefinition:
    """
    One row of the plan catalog.

    Attributes:
        tier: Plan tier key
        name: Display name
        price_minor: Price per period in minor units (0 = not purchasable)
        currency: ISO 4217 currency code
        period_days: Length of a paid period
        limits: Metered feature -> limit (None means unlimited)
        features: Boolean features granted by the plan
    """

    tier: str
    name: str
    price_minor: int
    currency: str = "PHP"
    period_days: int = 30
    limits: dict[str, int | None] = field(default_factory=dict)
    features: frozenset[str] = frozenset()

    @property
    def is_purchasable(self) -> bool:
        return self.price_minor > 0

    def limit_for(self, feature_key: str) -> int | None:
        return self.limits.get(feature_key)


PLAN_CATALOG: dict[str, PlanDefinition] = {
    PlanTier.FREE: PlanDefinition(
        tier=PlanTier.FREE,
        name="Free",
        price_minor=0,
        limits={
            Feature.JOB_APPLICATIONS: 10,
            Feature.SERVICES: 5,
            Feature.BOOKINGS_PER_MONTH: 20,
        },
    ),
    PlanTier.PRO: PlanDefinition(
        tier=PlanTier.PRO,
        name="Pro",
        price_minor=39900,
        limits={
            Feature.JOB_APPLICATIONS: 50,
            Feature.SERVICES: 20,
            Feature.BOOKINGS_PER_MONTH: 100,
        },
        features=frozenset(
            {
                Feature.FEATURED_PLACEMENT,
                Feature.PRIORITY_JOB_ACCESS,
                Feature.ANALYTICS_ACCESS,
                Feature.PRO_BADGE,
                Feature.SUPPLIES_DISCOUNT,
            }
        ),
    ),
}


def get_plan(tier: str) -> PlanDefinition:
    """
    Look up a plan by tier.

    Raises:
        KeyError: If the tier is not in the catalog
    """
    return PLAN_CATALOG[tier]
