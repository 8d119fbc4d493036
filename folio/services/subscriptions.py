"""
Subscription reconciliation.

Two writers describe the same purchase and may arrive in any order, any
number of times:
- the optimistic client path, run when the browser returns from Stripe
  Checkout (trusts the redirect and activates immediately)
- the Stripe webhook, which is authoritative

Both are keyed by the checkout session id. Mutual exclusion comes from the
store's insert-if-absent on that key, not from locks: whoever loses the
insert falls back to reading (client) or updating in place (webhook). The
webhook always overwrites the provider-sourced fields, so after both writers
have run there is exactly one record per session and it reflects Stripe's
view. Provider events older than the last one applied to a record do not
change its status.

The creator's profile entitlement is recomputed in full from the current
active record after every write.
"""

from __future__ import annotations
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple
import logging
import threading
import time
from flask import current_app, has_app_context
from folio.services import plans
from folio.services.entitlements import ProfileEntitlement, derive_entitlement
from folio.services.payment_events import (
    CHECKOUT_COMPLETED,
    PAYMENT_FAILED,
    PAYMENT_SUCCEEDED,
    SUBSCRIPTION_CREATED,
    SUBSCRIPTION_DELETED,
    SUBSCRIPTION_UPDATED,
    PaymentEvent,
    from_stripe_event,
)
from folio.services.plans import PLAN_FREE, PlanCatalog
from folio.services.subscription_store import (
    ProfileWriter,
    SubscriptionRecord,
    SubscriptionStatus,
    SubscriptionStore,
    SupabaseProfileWriter,
    SupabaseSubscriptionStore,
)
from folio.utils.errors import ConflictError, InvalidEventError, TransientStoreError

logger = logging.getLogger(__name__)

DEFAULT_PERIOD_DAYS = 30
FREE_PLAN_PERIOD_DAYS = 365

DEFAULT_POLL_INTERVAL_SECONDS = 10
DEFAULT_POLL_MAX_SECONDS = 300
DEFAULT_POLL_MAX_INTERVAL_SECONDS = 60
POLL_BACKOFF_FACTOR = 2.0

# Stripe subscription.status -> our status
PROVIDER_STATUS_MAP = {
    "active": SubscriptionStatus.ACTIVE,
    "trialing": SubscriptionStatus.ACTIVE,
    "past_due": SubscriptionStatus.PAST_DUE,
    "unpaid": SubscriptionStatus.PAST_DUE,
    "canceled": SubscriptionStatus.CANCELED,
    "incomplete_expired": SubscriptionStatus.CANCELED,
}

# ReconcileResult.action values
INSERTED = "inserted"
UPDATED = "updated"
ADOPTED = "adopted"
PENDING = "pending"
SKIPPED = "skipped"
DROPPED = "dropped"


def _log():
    return current_app.logger if has_app_context() else logger


@dataclass(frozen=True)
class ReconcileResult:
    record: Optional[SubscriptionRecord]
    entitlement: Optional[ProfileEntitlement]
    action: str

    @property
    def status(self) -> SubscriptionStatus:
        if self.record is None:
            return SubscriptionStatus.PENDING
        return self.record.status

    @property
    def is_pending(self) -> bool:
        return not self.status.is_terminal

    def to_dict(self) -> Dict[str, Any]:
        return {
            "action": self.action,
            "status": self.status.value,
            "pending": self.is_pending,
            "subscription": self.record.to_dict() if self.record else None,
            "entitlement": self.entitlement.to_dict() if self.entitlement else None,
        }


class SubscriptionReconciler:
    """
    Converges subscription records and profile entitlements.

    Args:
        store: SubscriptionStore keyed by checkout session id
        profiles: ProfileWriter for the entitlement projection
        catalog: PlanCatalog for plan limits
        period_days: billing period assumed when the provider gives none
        clock: returns the current aware datetime (injectable for tests)
    """

    def __init__(
        self,
        store: SubscriptionStore,
        profiles: ProfileWriter,
        catalog: PlanCatalog,
        period_days: int = DEFAULT_PERIOD_DAYS,
        free_period_days: int = FREE_PLAN_PERIOD_DAYS,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.store = store
        self.profiles = profiles
        self.catalog = catalog
        self.period_days = period_days
        self.free_period_days = free_period_days
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._handlers = {
            CHECKOUT_COMPLETED: self._checkout_completed,
            SUBSCRIPTION_CREATED: self._subscription_updated,
            SUBSCRIPTION_UPDATED: self._subscription_updated,
            SUBSCRIPTION_DELETED: self._subscription_deleted,
            PAYMENT_SUCCEEDED: self._payment_succeeded,
            PAYMENT_FAILED: self._payment_failed,
        }

    # ------------------------------------------------------------------
    # Shared helpers
    # ------------------------------------------------------------------

    def _now(self) -> datetime:
        return self._clock()

    def current_record(self, creator_id: str, fallback: Optional[SubscriptionRecord] = None) -> Optional[SubscriptionRecord]:
        """Most recently updated ACTIVE record for the creator, else `fallback`."""
        active = self.store.list_active_for_creator(creator_id)
        return active[0] if active else fallback

    def _finish(self, record: SubscriptionRecord, action: str) -> ReconcileResult:
        """Rewrite the creator's entitlement from their current record."""
        current = self.current_record(record.creator_id, fallback=record)
        entitlement = derive_entitlement(current, self.catalog)
        self.profiles.write_entitlement(record.creator_id, entitlement)
        return ReconcileResult(record=record, entitlement=entitlement, action=action)

    @staticmethod
    def _is_stale(record: SubscriptionRecord, event: PaymentEvent) -> bool:
        return (
            event.created is not None
            and record.last_event_at is not None
            and event.created < record.last_event_at
        )

    @staticmethod
    def _latest(record: SubscriptionRecord, event: PaymentEvent) -> Optional[int]:
        if event.created is None:
            return record.last_event_at
        return max(record.last_event_at or 0, event.created)

    @staticmethod
    def _is_superseded(record: SubscriptionRecord) -> bool:
        return bool(record.metadata.get("superseded_by"))

    def _event_time(self, event: PaymentEvent) -> datetime:
        if event.created is not None:
            return datetime.fromtimestamp(event.created, tz=timezone.utc)
        return self._now()

    def _supersede_others(self, record: SubscriptionRecord) -> None:
        """
        Cancel any other active record for the creator (plan change or a
        switch to free). The `superseded_by` marker is permanent: later
        provider events for those records never make them ACTIVE again.
        """
        now = self._now()
        for other in self.store.list_active_for_creator(record.creator_id):
            if other.idempotency_key == record.idempotency_key:
                continue
            _log().info(
                f"Superseding subscription {other.idempotency_key} with {record.idempotency_key} "
                f"for creator {record.creator_id}"
            )
            self.store.update(other.evolve(
                status=SubscriptionStatus.CANCELED,
                metadata={
                    **other.metadata,
                    "superseded_by": record.idempotency_key,
                    "superseded_at": now.isoformat(),
                },
                updated_at=now,
            ))

    # ------------------------------------------------------------------
    # Client optimistic path
    # ------------------------------------------------------------------

    def confirm_checkout(self, session_id: str, creator_id: str, plan_type: str) -> ReconcileResult:
        """
        Activate a subscription right after the browser returns from checkout.

        - Record already exists (webhook won): adopt it and re-derive the
          entitlement from it.
        - Otherwise insert an ACTIVE record optimistically. If that insert
          conflicts, re-read and adopt; if the winner is not yet readable the
          result is pending and the caller should poll.

        Raises:
            ValueError: missing session id, or the session belongs to
                another creator
        """
        if not session_id:
            raise ValueError("Missing checkout session id")

        existing = self.store.find_by_key(session_id)
        if existing:
            return self._adopt(existing, creator_id)

        now = self._now()
        plan = self.catalog.get(plan_type)
        record = SubscriptionRecord(
            creator_id=creator_id,
            plan_type=plan.plan_type,
            status=SubscriptionStatus.ACTIVE,
            idempotency_key=session_id,
            expires_at=now + timedelta(days=self.period_days),
            featured_posts_included=plan.featured_requests,
            metadata={
                "source": "client_immediate",
                "original_plan": plan_type,
                "client_confirmed_at": now.isoformat(),
            },
            updated_at=now,
        )

        if self.store.insert_if_absent(record):
            _log().info(f"Optimistic subscription inserted for session {session_id}")
            self._supersede_others(record)
            return self._finish(record, INSERTED)

        # Lost the insert race: the webhook already wrote this session
        existing = self.store.find_by_key(session_id)
        if existing:
            return self._adopt(existing, creator_id)

        _log().info(f"Subscription for session {session_id} not yet visible; client must poll")
        return ReconcileResult(record=None, entitlement=None, action=PENDING)

    def _adopt(self, existing: SubscriptionRecord, creator_id: str) -> ReconcileResult:
        if existing.creator_id != creator_id:
            raise ValueError("Checkout session belongs to another creator")
        _log().info(f"Adopting existing subscription for session {existing.idempotency_key}")
        return self._finish(existing, ADOPTED)

    def activate_free_plan(self, creator_id: str) -> ReconcileResult:
        """Switch a creator to the free plan (no payment involved)."""
        now = self._now()
        key = f"free:{creator_id}"
        record = SubscriptionRecord(
            creator_id=creator_id,
            plan_type=PLAN_FREE,
            status=SubscriptionStatus.ACTIVE,
            idempotency_key=key,
            expires_at=now + timedelta(days=self.free_period_days),
            metadata={"source": "free_plan"},
            updated_at=now,
        )

        if self.store.insert_if_absent(record):
            self._supersede_others(record)
            return self._finish(record, INSERTED)

        existing = self.store.find_by_key(key) or record
        metadata = {k: v for k, v in existing.metadata.items() if k not in ("superseded_by", "superseded_at")}
        stored = self.store.update(existing.evolve(
            plan_type=PLAN_FREE,
            status=SubscriptionStatus.ACTIVE,
            expires_at=record.expires_at,
            metadata=metadata,
            updated_at=now,
        ))
        self._supersede_others(stored)
        return self._finish(stored, UPDATED)

    # ------------------------------------------------------------------
    # Webhook path
    # ------------------------------------------------------------------

    def apply_event(self, event: PaymentEvent) -> ReconcileResult:
        """
        Apply one verified payment event. Safe to call repeatedly with the
        same event.

        Raises:
            InvalidEventError: event cannot be correlated or mapped
            TransientStoreError: store failure (retry the event)
        """
        handler = self._handlers.get(event.type)
        if handler is None:
            return ReconcileResult(record=None, entitlement=None, action=SKIPPED)
        return handler(event)

    def _checkout_completed(self, event: PaymentEvent) -> ReconcileResult:
        key = event.idempotency_key
        if not key or not event.creator_id or not event.plan_type:
            raise InvalidEventError("checkout.session.completed without session id, creator or plan")

        now = self._now()
        plan = self.catalog.get(event.plan_type)
        featured = event.featured_posts if event.featured_posts is not None else plan.featured_requests
        expires_at = self._event_time(event) + timedelta(days=self.period_days)
        provider_fields = {
            "stripe_customer_id": event.customer_id,
            "stripe_subscription_id": event.subscription_id,
            "stripe_payment_intent": event.data.get("payment_intent"),
            "plan_details": {
                "featured_posts": featured,
                "portfolio_limit": plan.max_media,
            },
            "webhook_event": CHECKOUT_COMPLETED,
            "webhook_event_id": event.event_id,
            "webhook_processed_at": now.isoformat(),
            "session_completed": True,
        }

        existing = self.store.find_by_key(key)
        if existing is None:
            record = SubscriptionRecord(
                creator_id=event.creator_id,
                plan_type=plan.plan_type,
                status=SubscriptionStatus.ACTIVE,
                idempotency_key=key,
                subscription_id=event.subscription_id,
                customer_id=event.customer_id,
                expires_at=expires_at,
                featured_posts_included=featured,
                last_event_at=event.created,
                metadata={**provider_fields, "webhook_created_at": now.isoformat()},
                updated_at=now,
            )
            if self.store.insert_if_absent(record):
                _log().info(f"Webhook created subscription for session {key}")
                self._supersede_others(record)
                return self._finish(record, INSERTED)

            # Client inserted between our read and our insert
            existing = self.store.find_by_key(key)
            if existing is None:
                raise TransientStoreError(f"Subscription for session {key} conflicted but is not readable")

        if self._is_stale(existing, event):
            _log().info(f"Skipping stale checkout event {event.event_id} for session {key}")
            return ReconcileResult(record=existing, entitlement=None, action=SKIPPED)

        superseded = self._is_superseded(existing)
        merged = existing.evolve(
            creator_id=event.creator_id,
            plan_type=plan.plan_type,
            status=SubscriptionStatus.CANCELED if superseded else SubscriptionStatus.ACTIVE,
            subscription_id=event.subscription_id or existing.subscription_id,
            customer_id=event.customer_id or existing.customer_id,
            expires_at=expires_at,
            featured_posts_included=featured,
            last_event_at=self._latest(existing, event),
            metadata={**existing.metadata, **provider_fields},
            updated_at=now,
        )
        stored = self.store.update(merged)
        _log().info(f"Webhook updated subscription for session {key} in place")
        if not superseded:
            self._supersede_others(stored)
        return self._finish(stored, UPDATED)

    def _find_for_event(self, event: PaymentEvent) -> Optional[SubscriptionRecord]:
        if not event.subscription_id:
            raise InvalidEventError(f"{event.type} without subscription id")
        record = self.store.find_by_subscription_id(event.subscription_id)
        if record is None:
            _log().warning(f"No subscription for {event.subscription_id}; dropping {event.type}")
        return record

    def _subscription_updated(self, event: PaymentEvent) -> ReconcileResult:
        record = self._find_for_event(event)
        if record is None:
            return ReconcileResult(record=None, entitlement=None, action=DROPPED)

        status = PROVIDER_STATUS_MAP.get(event.provider_status or "")
        if status is None:
            raise InvalidEventError(f"Unmapped subscription status: {event.provider_status}")

        if self._is_stale(record, event):
            _log().info(f"Skipping stale {event.type} {event.event_id} for {event.subscription_id}")
            return ReconcileResult(record=record, entitlement=None, action=SKIPPED)

        if self._is_superseded(record) and status is not SubscriptionStatus.CANCELED:
            # Replaced by a newer plan; the provider status is kept in metadata only
            _log().info(
                f"Subscription {event.subscription_id} was superseded by "
                f"{record.metadata['superseded_by']}; keeping it canceled"
            )
            status = SubscriptionStatus.CANCELED

        now = self._now()
        period_end = event.period_end
        stored = self.store.update(record.evolve(
            status=status,
            plan_type=event.plan_type or record.plan_type,
            customer_id=event.customer_id or record.customer_id,
            expires_at=datetime.fromtimestamp(period_end, tz=timezone.utc) if period_end else record.expires_at,
            last_event_at=self._latest(record, event),
            metadata={
                **record.metadata,
                "stripe_subscription_status": event.provider_status,
                "current_period_end": period_end,
                "cancel_at_period_end": event.data.get("cancel_at_period_end"),
                "webhook_event": event.type,
                "webhook_updated_at": now.isoformat(),
            },
            updated_at=now,
        ))
        return self._finish(stored, UPDATED)

    def _subscription_deleted(self, event: PaymentEvent) -> ReconcileResult:
        record = self._find_for_event(event)
        if record is None:
            return ReconcileResult(record=None, entitlement=None, action=DROPPED)

        # Deletion is final regardless of current state or event ordering
        now = self._now()
        stored = self.store.update(record.evolve(
            status=SubscriptionStatus.CANCELED,
            last_event_at=self._latest(record, event),
            metadata={
                **record.metadata,
                "webhook_event": SUBSCRIPTION_DELETED,
                "webhook_updated_at": now.isoformat(),
                "deleted_at": now.isoformat(),
            },
            updated_at=now,
        ))
        return self._finish(stored, UPDATED)

    def _payment_succeeded(self, event: PaymentEvent) -> ReconcileResult:
        record = self._find_for_event(event)
        if record is None:
            return ReconcileResult(record=None, entitlement=None, action=DROPPED)

        now = self._now()
        stored = self.store.update(record.evolve(
            last_payment_at=self._event_time(event),
            metadata={
                **record.metadata,
                "last_invoice_id": event.data.get("id"),
                "last_payment_amount": event.data.get("amount_paid"),
                "last_payment_currency": event.data.get("currency"),
                "webhook_event": PAYMENT_SUCCEEDED,
                "webhook_updated_at": now.isoformat(),
            },
            updated_at=now,
        ))
        return self._finish(stored, UPDATED)

    def _payment_failed(self, event: PaymentEvent) -> ReconcileResult:
        record = self._find_for_event(event)
        if record is None:
            return ReconcileResult(record=None, entitlement=None, action=DROPPED)

        if self._is_stale(record, event):
            return ReconcileResult(record=record, entitlement=None, action=SKIPPED)

        now = self._now()
        stored = self.store.update(record.evolve(
            status=SubscriptionStatus.CANCELED if self._is_superseded(record) else SubscriptionStatus.PAST_DUE,
            last_event_at=self._latest(record, event),
            metadata={
                **record.metadata,
                "failed_invoice_id": event.data.get("id"),
                "failed_payment_attempt": event.data.get("attempt_count"),
                "webhook_event": PAYMENT_FAILED,
                "webhook_updated_at": now.isoformat(),
            },
            updated_at=now,
        ))
        return self._finish(stored, UPDATED)

    def process_events(self, events: Iterable[Any]) -> List[Dict[str, Any]]:
        """
        Apply a batch of events, one outcome per event.

        Accepts PaymentEvent instances or decoded Stripe event dicts. A
        failure in one event never stops the others. Outcome status is one
        of processed / skipped / dropped / invalid / retry / failed.
        """
        outcomes = []
        for raw in events:
            outcome: Dict[str, Any] = {
                "event_id": getattr(raw, "event_id", None) or (raw.get("id") if isinstance(raw, dict) else None),
                "type": getattr(raw, "type", None) or (raw.get("type") if isinstance(raw, dict) else None),
            }
            try:
                event = raw if isinstance(raw, PaymentEvent) else from_stripe_event(raw)
                result = self.apply_event(event)
                outcome["status"] = "processed" if result.action in (INSERTED, UPDATED) else result.action
            except InvalidEventError as e:
                _log().warning(f"Dropping invalid payment event {outcome['event_id']}: {e}")
                outcome.update(status="invalid", error=str(e))
            except ConflictError as e:
                _log().info(f"Conflict while applying {outcome['event_id']}: {e}")
                outcome["status"] = SKIPPED
            except TransientStoreError as e:
                _log().error(f"Store failure applying {outcome['event_id']}: {e}")
                outcome.update(status="retry", error=str(e))
            except Exception as e:
                _log().error(f"Unexpected error applying {outcome['event_id']}: {e}", exc_info=True)
                outcome.update(status="failed", error=str(e))
            outcomes.append(outcome)
        return outcomes

    # ------------------------------------------------------------------
    # Reads, polling, repair
    # ------------------------------------------------------------------

    def read_status(self, session_id: str, creator_id: str) -> ReconcileResult:
        """Single read of the persisted state for a checkout session."""
        record = self.store.find_by_key(session_id)
        if record is None:
            return ReconcileResult(record=None, entitlement=None, action=PENDING)
        if record.creator_id != creator_id:
            raise ValueError("Checkout session belongs to another creator")
        current = self.current_record(creator_id, fallback=record)
        return ReconcileResult(record=record, entitlement=derive_entitlement(current, self.catalog), action=ADOPTED)

    def poll_until_settled(
        self,
        session_id: str,
        interval: float = DEFAULT_POLL_INTERVAL_SECONDS,
        max_wait: float = DEFAULT_POLL_MAX_SECONDS,
        max_interval: float = DEFAULT_POLL_MAX_INTERVAL_SECONDS,
        cancel_event: Optional[threading.Event] = None,
        sleep: Optional[Callable[[float], Any]] = None,
        monotonic: Callable[[], float] = time.monotonic,
    ) -> Optional[SubscriptionRecord]:
        """
        Re-read a session until it reaches a terminal status.

        Waits `interval` seconds between reads, doubling up to
        `max_interval`, and gives up after `max_wait` seconds. Setting
        `cancel_event` stops the loop early.

        Returns:
            The last record observed (terminal or not), or None
        """
        if sleep is None:
            sleep = cancel_event.wait if cancel_event is not None else time.sleep

        deadline = monotonic() + max_wait
        delay = interval
        last: Optional[SubscriptionRecord] = None

        while True:
            try:
                record = self.store.find_by_key(session_id)
            except TransientStoreError as e:
                _log().warning(f"Polling read failed for session {session_id}: {e}")
                record = None

            if record is not None:
                last = record
                if record.status.is_terminal:
                    return record

            if cancel_event is not None and cancel_event.is_set():
                return last

            remaining = deadline - monotonic()
            if remaining <= 0:
                _log().info(f"Gave up polling session {session_id} after {max_wait}s")
                return last

            sleep(min(delay, remaining))
            delay = min(delay * POLL_BACKOFF_FACTOR, max_interval)

    def refresh_entitlement(self, session_id: str) -> Optional[ReconcileResult]:
        """Rewrite the entitlement for the creator owning a session (repair)."""
        record = self.store.find_by_key(session_id)
        if record is None:
            return None
        return self._finish(record, ADOPTED)

    def consume_featured_request(self, creator_id: str) -> Tuple[Optional[ReconcileResult], Optional[str]]:
        """
        Use one featured-placement request from the active subscription.

        Returns:
            (result, error_message)
        """
        record = self.current_record(creator_id)
        if record is None or record.plan_type == PLAN_FREE:
            return None, "Active premium subscription required. Upgrade to request featured placement."

        if record.featured_posts_used >= record.featured_posts_included:
            return None, "No featured requests available. Please upgrade your plan or wait for next billing cycle."

        stored = self.store.update(record.evolve(
            featured_posts_used=record.featured_posts_used + 1,
            updated_at=self._now(),
        ))
        return self._finish(stored, UPDATED), None


def get_reconciler() -> SubscriptionReconciler:
    """Reconciler wired to Supabase and the app's billing settings."""
    config = current_app.config if has_app_context() else {}
    return SubscriptionReconciler(
        store=SupabaseSubscriptionStore(),
        profiles=SupabaseProfileWriter(),
        catalog=plans.get_catalog(),
        period_days=config.get("SUBSCRIPTION_PERIOD_DAYS", DEFAULT_PERIOD_DAYS),
        free_period_days=config.get("FREE_PLAN_PERIOD_DAYS", FREE_PLAN_PERIOD_DAYS),
    )
