"""
Subscription records and the stores that persist them.

The reconciler only talks to the two small interfaces defined here:
- SubscriptionStore: find / insert-if-absent / update keyed by the checkout
  session id (the idempotency key), plus lookup by Stripe subscription id
- ProfileWriter: full overwrite of a creator's entitlement columns

Supabase-backed implementations use the admin client so they work from the
webhook (no user session) as well as from request handlers.
"""

from __future__ import annotations
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, TYPE_CHECKING
from folio.utils.errors import ConflictError, TransientStoreError
from folio.services.supabase_client import get_admin_client, is_duplicate_key_error

if TYPE_CHECKING:
    from folio.services.entitlements import ProfileEntitlement


class SubscriptionStatus(str, Enum):
    PENDING = "pending"
    ACTIVE = "active"
    PAST_DUE = "past_due"
    CANCELED = "canceled"

    @property
    def is_terminal(self) -> bool:
        """Polling stops once one of these is observed."""
        return self is not SubscriptionStatus.PENDING


def parse_timestamp(value: Any) -> Optional[datetime]:
    """Parse ISO strings / epoch seconds / datetimes into aware UTC datetimes."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    if isinstance(value, (int, float)):
        return datetime.fromtimestamp(value, tz=timezone.utc)
    parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


@dataclass(frozen=True)
class SubscriptionRecord:
    creator_id: str
    plan_type: str
    status: SubscriptionStatus
    idempotency_key: Optional[str] = None
    subscription_id: Optional[str] = None
    customer_id: Optional[str] = None
    expires_at: Optional[datetime] = None
    featured_posts_included: int = 0
    featured_posts_used: int = 0
    last_payment_at: Optional[datetime] = None
    last_event_at: Optional[int] = None
    metadata: Dict[str, Any] = field(default_factory=dict)
    updated_at: Optional[datetime] = None

    def evolve(self, **changes) -> "SubscriptionRecord":
        return replace(self, **changes)

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "SubscriptionRecord":
        return cls(
            creator_id=row["creator_id"],
            plan_type=row.get("plan_type") or "free",
            status=SubscriptionStatus(row.get("status") or SubscriptionStatus.PENDING.value),
            idempotency_key=row.get("stripe_session_id"),
            subscription_id=row.get("stripe_subscription_id"),
            customer_id=row.get("stripe_customer_id"),
            expires_at=parse_timestamp(row.get("expires_at")),
            featured_posts_included=int(row.get("featured_posts_included") or 0),
            featured_posts_used=int(row.get("featured_posts_used") or 0),
            last_payment_at=parse_timestamp(row.get("last_payment_at")),
            last_event_at=row.get("last_event_at"),
            metadata=dict(row.get("metadata") or {}),
            updated_at=parse_timestamp(row.get("updated_at")),
        )

    def to_row(self) -> Dict[str, Any]:
        return {
            "creator_id": self.creator_id,
            "plan_type": self.plan_type,
            "status": self.status.value,
            "stripe_session_id": self.idempotency_key,
            "stripe_subscription_id": self.subscription_id,
            "stripe_customer_id": self.customer_id,
            "expires_at": _iso(self.expires_at),
            "featured_posts_included": self.featured_posts_included,
            "featured_posts_used": self.featured_posts_used,
            "last_payment_at": _iso(self.last_payment_at),
            "last_event_at": self.last_event_at,
            "metadata": self.metadata,
            "updated_at": _iso(self.updated_at),
        }

    def to_dict(self) -> Dict[str, Any]:
        data = self.to_row()
        data["idempotency_key"] = data.pop("stripe_session_id")
        return data


class SubscriptionStore:
    """
    Record store keyed by idempotency key.

    Implementations provide insert(), which raises ConflictError on a
    duplicate key; insert_if_absent turns that into False so a lost race is
    never a failure. Every other failure raises TransientStoreError.
    """

    def find_by_key(self, key: str) -> Optional[SubscriptionRecord]:
        raise NotImplementedError

    def find_by_subscription_id(self, subscription_id: str) -> Optional[SubscriptionRecord]:
        raise NotImplementedError

    def list_active_for_creator(self, creator_id: str) -> List[SubscriptionRecord]:
        """ACTIVE records for a creator, most recently updated first."""
        raise NotImplementedError

    def insert(self, record: SubscriptionRecord) -> None:
        """Insert a new row. Raises ConflictError when the key already exists."""
        raise NotImplementedError

    def insert_if_absent(self, record: SubscriptionRecord) -> bool:
        try:
            self.insert(record)
            return True
        except ConflictError:
            return False

    def update(self, record: SubscriptionRecord) -> SubscriptionRecord:
        """Overwrite the stored row matching the record's key (or subscription id)."""
        raise NotImplementedError

    def count_active(self) -> int:
        raise NotImplementedError


class ProfileWriter:
    def write_entitlement(self, creator_id: str, entitlement: "ProfileEntitlement") -> None:
        raise NotImplementedError


class SupabaseSubscriptionStore(SubscriptionStore):
    """Store backed by the `subscriptions` table (unique on stripe_session_id)."""

    TABLE = "subscriptions"

    def __init__(self, client_getter: Callable[[], Any] = get_admin_client):
        self._client_getter = client_getter

    def _table(self):
        client = self._client_getter()
        if not client:
            raise TransientStoreError("Database not configured")
        return client.table(self.TABLE)

    def _first(self, column: str, value: str) -> Optional[SubscriptionRecord]:
        try:
            response = self._table().select("*").eq(column, value) \
                .order("updated_at", desc=True).limit(1).execute()
        except TransientStoreError:
            raise
        except Exception as e:
            raise TransientStoreError(f"Error reading subscription ({column}={value}): {e}") from e

        if response and response.data:
            return SubscriptionRecord.from_row(response.data[0])
        return None

    def find_by_key(self, key: str) -> Optional[SubscriptionRecord]:
        return self._first("stripe_session_id", key)

    def find_by_subscription_id(self, subscription_id: str) -> Optional[SubscriptionRecord]:
        return self._first("stripe_subscription_id", subscription_id)

    def list_active_for_creator(self, creator_id: str) -> List[SubscriptionRecord]:
        try:
            response = self._table().select("*").eq("creator_id", creator_id) \
                .eq("status", SubscriptionStatus.ACTIVE.value) \
                .order("updated_at", desc=True).execute()
        except TransientStoreError:
            raise
        except Exception as e:
            raise TransientStoreError(f"Error listing subscriptions for {creator_id}: {e}") from e

        rows = response.data if response and response.data else []
        return [SubscriptionRecord.from_row(row) for row in rows]

    def insert(self, record: SubscriptionRecord) -> None:
        try:
            self._table().insert(record.to_row()).execute()
        except TransientStoreError:
            raise
        except Exception as e:
            if is_duplicate_key_error(e):
                raise ConflictError(record.idempotency_key) from e
            raise TransientStoreError(f"Error inserting subscription: {e}") from e

    def update(self, record: SubscriptionRecord) -> SubscriptionRecord:
        if record.idempotency_key:
            column, value = "stripe_session_id", record.idempotency_key
        elif record.subscription_id:
            column, value = "stripe_subscription_id", record.subscription_id
        else:
            column, value = "creator_id", record.creator_id

        row = record.to_row()
        # Never rewrite the key columns through an update
        row.pop("stripe_session_id", None)

        try:
            response = self._table().update(row).eq(column, value).execute()
        except TransientStoreError:
            raise
        except Exception as e:
            raise TransientStoreError(f"Error updating subscription ({column}={value}): {e}") from e

        if not response or not response.data:
            # Nothing matched: report it so the event is retried rather than lost
            raise TransientStoreError(f"No subscription matched update ({column}={value})")
        return SubscriptionRecord.from_row(response.data[0])

    def count_active(self) -> int:
        try:
            response = self._table().select("id", count="exact") \
                .eq("status", SubscriptionStatus.ACTIVE.value).execute()
        except TransientStoreError:
            raise
        except Exception as e:
            raise TransientStoreError(f"Error counting subscriptions: {e}") from e
        return response.count or 0


class SupabaseProfileWriter(ProfileWriter):
    """Writes derived entitlement columns on `profiles`."""

    def __init__(self, client_getter: Callable[[], Any] = get_admin_client):
        self._client_getter = client_getter

    def write_entitlement(self, creator_id: str, entitlement: "ProfileEntitlement") -> None:
        client = self._client_getter()
        if not client:
            raise TransientStoreError("Database not configured")

        try:
            client.table("profiles").update(entitlement.to_profile_update()).eq("id", creator_id).execute()
        except Exception as e:
            raise TransientStoreError(f"Error writing entitlement for {creator_id}: {e}") from e
