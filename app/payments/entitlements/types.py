"""
Data types returned by the entitlement service.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date


@dataclass(frozen=True)
class AccessDecision:
    """
    Result of a feature access check.

    Attributes:
        allowed: Whether the feature can be used right now
        remaining: Units left in the current period (None for boolean or
            unlimited features)
        limit: Period limit from the effective plan (None for boolean or
            unlimited features)
        tier: Effective plan tier the decision was based on
    """

    allowed: bool
    remaining: int | None = None
    limit: int | None = None
    tier: str = ""

    def to_dict(self) -> dict:
        return {
            "allowed": self.allowed,
            "remaining": self.remaining,
            "limit": self.limit,
            "tier": self.tier,
        }


@dataclass(frozen=True)
class UsagePeriod:
    """
    Identity of a usage period.

    Attributes:
        key: Unique period key per subscription. Calendar periods use
            ``YYYY-MM``; paid periods use ``intent:<settling intent id>`` so
            every settlement opens a fresh period.
        start: First day of the period, for display and ordering
    """

    key: str
    start: date

    @classmethod
    def calendar_month(cls, today: date) -> UsagePeriod:
        start = today.replace(day=1)
        return cls(key=start.strftime("%Y-%m"), start=start)
