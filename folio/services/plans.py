"""
Subscription plan catalog.

Plans live in the `subscription_plans` table and are editable by admins.
When the table is unreachable or a plan row is missing, the built-in
defaults below are used so checkout and entitlement derivation keep working.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Tuple
import logging
from flask import current_app, has_app_context
from folio.utils.cache import TTLStore

logger = logging.getLogger(__name__)

PLAN_FREE = "free"
PLAN_PREMIUM = "premium"
PLAN_PRO = "pro"
PLAN_TYPES = (PLAN_FREE, PLAN_PREMIUM, PLAN_PRO)

# Columns an admin may change from the plans screen
EDITABLE_FIELDS = {"name", "price_monthly", "max_posts", "max_media", "featured_requests", "features"}


def _safe_log_warning(message: str) -> None:
    if has_app_context():
        current_app.logger.warning(message)
    else:
        logger.warning(message)


@dataclass(frozen=True)
class Plan:
    plan_type: str
    name: str
    price_monthly: str
    max_posts: int
    max_media: int
    featured_requests: int = 0
    features: Tuple[str, ...] = field(default_factory=tuple)

    @property
    def is_paid(self) -> bool:
        return self.plan_type != PLAN_FREE

    @classmethod
    def from_row(cls, row: Dict[str, Any], fallback: Optional["Plan"] = None) -> "Plan":
        """Build a plan from a table row; missing columns come from `fallback`."""
        base = fallback or DEFAULT_PLANS[PLAN_FREE]
        features = row.get("features")
        return cls(
            plan_type=row.get("plan_type") or base.plan_type,
            name=row.get("name") or base.name,
            price_monthly=str(row.get("price_monthly") or base.price_monthly),
            max_posts=int(row.get("max_posts") if row.get("max_posts") is not None else base.max_posts),
            max_media=int(row.get("max_media") if row.get("max_media") is not None else base.max_media),
            featured_requests=int(
                row.get("featured_requests") if row.get("featured_requests") is not None else base.featured_requests
            ),
            features=tuple(features) if features else base.features,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "plan_type": self.plan_type,
            "name": self.name,
            "price_monthly": self.price_monthly,
            "max_posts": self.max_posts,
            "max_media": self.max_media,
            "featured_requests": self.featured_requests,
            "features": list(self.features),
        }


DEFAULT_PLANS: Dict[str, Plan] = {
    PLAN_FREE: Plan(
        plan_type=PLAN_FREE,
        name="Free",
        price_monthly="0.00",
        max_posts=3,
        max_media=5,
        featured_requests=0,
        features=("5 media uploads", "3 posts max", "Basic portfolio"),
    ),
    PLAN_PREMIUM: Plan(
        plan_type=PLAN_PREMIUM,
        name="Premium",
        price_monthly="5.99",
        max_posts=10,
        max_media=50,
        featured_requests=3,
        features=("50 media uploads", "10 posts max", "3 featured requests/month", "Priority support"),
    ),
    PLAN_PRO: Plan(
        plan_type=PLAN_PRO,
        name="Professional",
        price_monthly="9.99",
        max_posts=25,
        max_media=200,
        featured_requests=10,
        features=("200 media uploads", "25 posts max", "10 featured requests/month", "24/7 priority support"),
    ),
}


class PlanCatalog:
    """
    Read-mostly plan lookup with a TTL cache in front of the table.

    Args:
        client_getter: callable returning a Supabase client (or None)
        cache: injected TTLStore
    """

    TABLE = "subscription_plans"

    def __init__(self, client_getter: Callable[[], Any], cache: Optional[TTLStore] = None):
        self._client_getter = client_getter
        self._cache = cache if cache is not None else TTLStore()

    def get(self, plan_type: str) -> Plan:
        """Return the plan, falling back to built-in defaults (unknown types -> free)."""
        plan_type = (plan_type or PLAN_FREE).strip().lower()
        fallback = DEFAULT_PLANS.get(plan_type, DEFAULT_PLANS[PLAN_FREE])

        cached = self._cache.get(plan_type)
        if cached is not None:
            return cached

        client = self._client_getter()
        if not client:
            return fallback

        try:
            response = client.table(self.TABLE).select("*").eq("plan_type", plan_type).maybe_single().execute()
            row = response.data if response else None
        except Exception as e:
            _safe_log_warning(f"Falling back to default {plan_type} plan: {e}")
            return fallback

        plan = Plan.from_row(row, fallback) if row else fallback
        self._cache.set(plan_type, plan)
        return plan

    def free(self) -> Plan:
        return self.get(PLAN_FREE)

    def all(self) -> List[Plan]:
        return [self.get(plan_type) for plan_type in PLAN_TYPES]

    def update(self, plan_type: str, changes: Dict[str, Any]) -> Tuple[Optional[Plan], Optional[str]]:
        """
        Update a plan row (admin only).

        Returns:
            (updated_plan, error_message)
        """
        if plan_type not in PLAN_TYPES:
            return None, f"Unknown plan type: {plan_type}"

        payload = {k: v for k, v in changes.items() if k in EDITABLE_FIELDS}
        if not payload:
            return None, "No editable fields provided"

        client = self._client_getter()
        if not client:
            return None, "Database not configured"

        try:
            response = client.table(self.TABLE).update(payload).eq("plan_type", plan_type).execute()
        except Exception as e:
            return None, f"Error updating plan: {str(e)}"
        finally:
            self._cache.clear(plan_type)

        if response.data:
            return Plan.from_row(response.data[0], DEFAULT_PLANS[plan_type]), None
        return None, "Plan not found"


def _default_client():
    from folio.services.supabase_client import get_admin_client
    return get_admin_client()


_catalog: PlanCatalog = PlanCatalog(_default_client)


def init_plans(app) -> None:
    """Rebuild the shared catalog with the app's cache TTL. Call from the app factory."""
    global _catalog
    ttl = app.config.get("PLAN_CACHE_TTL_SECONDS", 300)
    _catalog = PlanCatalog(_default_client, TTLStore(ttl=ttl))


def get_catalog() -> PlanCatalog:
    return _catalog
