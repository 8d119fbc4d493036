"""
Creator entitlements derived from the current subscription.

The profile columns (is_premium, subscription_tier, portfolio_limit, ...)
are a projection of the authoritative subscription record. They are always
rewritten in full from that record, never patched field by field, so the
optimistic client path and the webhook cannot leave stale values from a
previous plan behind.
"""

from __future__ import annotations
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Optional
from folio.services.plans import PLAN_FREE, PlanCatalog
from folio.services.subscription_store import SubscriptionRecord, SubscriptionStatus, parse_timestamp


@dataclass(frozen=True)
class ProfileEntitlement:
    is_premium: bool
    subscription_tier: str
    subscription_expires_at: Optional[datetime]
    portfolio_limit: int
    featured_requests_available: int

    def to_profile_update(self) -> Dict[str, Any]:
        """Full overwrite of every entitlement column on `profiles`."""
        return {
            "is_premium": self.is_premium,
            "subscription_tier": self.subscription_tier,
            "subscription_expires_at": self.subscription_expires_at.isoformat() if self.subscription_expires_at else None,
            "portfolio_limit": self.portfolio_limit,
            "featured_requests_available": self.featured_requests_available,
            "updated_at": datetime.now(timezone.utc).isoformat(),
        }

    def to_dict(self) -> Dict[str, Any]:
        data = self.to_profile_update()
        data.pop("updated_at")
        return data


def free_entitlement(catalog: PlanCatalog) -> ProfileEntitlement:
    return ProfileEntitlement(
        is_premium=False,
        subscription_tier=PLAN_FREE,
        subscription_expires_at=None,
        portfolio_limit=catalog.free().max_media,
        featured_requests_available=0,
    )


def derive_entitlement(record: Optional[SubscriptionRecord], catalog: PlanCatalog) -> ProfileEntitlement:
    """
    Compute the entitlement for a creator from their subscription record.

    Only an ACTIVE record grants plan limits. Pending, past-due, canceled
    or missing records all map to the free tier.
    """
    if record is None or record.status is not SubscriptionStatus.ACTIVE:
        return free_entitlement(catalog)

    plan = catalog.get(record.plan_type)
    return ProfileEntitlement(
        is_premium=plan.is_paid,
        subscription_tier=plan.plan_type,
        subscription_expires_at=record.expires_at,
        portfolio_limit=plan.max_media,
        featured_requests_available=max(0, record.featured_posts_included - record.featured_posts_used),
    )


def check_upload_limit(profile: Optional[Dict[str, Any]], current_count: int, default_limit: int = 5) -> Dict[str, Any]:
    """
    Check whether a creator may upload another portfolio item.

    Args:
        profile: Profile row (is_premium, portfolio_limit) or None
        current_count: Items the creator already has
        default_limit: Limit used when the profile carries none

    Returns:
        {"can_upload", "current_count", "max_limit", "reason"?}
    """
    profile = profile or {}
    max_limit = profile.get("portfolio_limit") or default_limit

    if current_count >= max_limit:
        tier = "Free tier" if not profile.get("is_premium") else "Plan"
        return {
            "can_upload": False,
            "current_count": current_count,
            "max_limit": max_limit,
            "reason": f"{tier} limit reached ({max_limit} items). Upgrade your plan for more uploads.",
        }

    return {
        "can_upload": True,
        "current_count": current_count,
        "max_limit": max_limit,
    }


def can_request_featured(profile: Optional[Dict[str, Any]], now: Optional[datetime] = None) -> tuple[bool, Optional[str]]:
    """
    Check featured-placement eligibility from the profile projection.

    Returns:
        (eligible, reason_if_not)
    """
    if not profile:
        return False, "Error checking subscription status"

    now = now or datetime.now(timezone.utc)
    tier = profile.get("subscription_tier")
    expires_at = parse_timestamp(profile.get("subscription_expires_at"))

    if not tier or tier == PLAN_FREE or (expires_at and expires_at <= now):
        return False, "Active premium subscription required. Upgrade to request featured placement."

    if (profile.get("featured_requests_available") or 0) <= 0:
        return False, "No featured requests available. Please upgrade your plan or wait for next billing cycle."

    return True, None
