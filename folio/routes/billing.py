"""
Billing routes: Stripe Checkout, the post-checkout confirmation, status
reads and the Stripe webhook.

Endpoints:
- POST /billing/checkout: Create a Checkout Session (or switch to free)
- POST /billing/success: Optimistic activation when the browser returns
- GET  /billing/status: Current persisted state of a checkout session
- POST /billing/webhook: Stripe events (signature verified, no auth)
- GET  /billing/webhook: Health check
"""

from __future__ import annotations
import stripe
from flask import Blueprint, request, jsonify, current_app
from folio.extensions import limiter
from folio.services import payment_events
from folio.services.plans import PLAN_FREE, PLAN_PREMIUM, PLAN_TYPES, get_catalog
from folio.services.subscriptions import get_reconciler
from folio.utils.auth import require_auth, get_current_user, get_current_user_id
from folio.utils.errors import (
    GENERIC_MESSAGES,
    SignatureError,
    TransientStoreError,
    log_info,
    log_warning,
    sanitize_error,
)
from folio.utils.validation import validate_checkout

billing_bp = Blueprint("billing", __name__, url_prefix="/billing")

# Outcomes that ask Stripe to redeliver the event
RETRY_OUTCOMES = {"retry", "failed"}


def _checkout_rate_limit() -> str:
    return current_app.config.get("CHECKOUT_RATE_LIMIT", "10 per minute")


@billing_bp.route("/checkout", methods=["POST"])
@require_auth
@limiter.limit(_checkout_rate_limit)
def create_checkout():
    """
    Start a subscription purchase.

    Request body (JSON):
        {"planType": "free"|"premium"|"pro", "billingInterval": "monthly"|"yearly"}

    Returns:
        200: {"success": true, "url": checkout_url, "session_id": ...}
             or, for the free plan, {"success": true, "redirect_url": ...}
        400: invalid plan / interval
        503: plan not purchasable (no price configured) or Stripe error
    """
    payload, error = validate_checkout(request.get_json(silent=True), PLAN_TYPES)
    if error:
        return jsonify({"success": False, "error": error}), 400

    user = get_current_user()
    user_id = user["id"]
    plan_type = payload["plan_type"]
    interval = payload["billing_interval"]
    public_url = current_app.config.get("PUBLIC_URL", "")

    if plan_type == PLAN_FREE:
        try:
            result = get_reconciler().activate_free_plan(user_id)
        except TransientStoreError as e:
            return jsonify({"success": False, "error": sanitize_error(e, "database", "Free plan activation failed")}), 503
        return jsonify({
            "success": True,
            "subscription": result.to_dict(),
            "redirect_url": f"{public_url}/dashboard?plan=free",
        }), 200

    price_id = current_app.config.get("STRIPE_PRICE_IDS", {}).get((plan_type, interval))
    if not price_id:
        log_warning("No Stripe price configured", plan_type=plan_type, interval=interval)
        return jsonify({"success": False, "error": "This plan is not available right now"}), 503

    plan = get_catalog().get(plan_type)
    metadata = {
        "creatorId": user_id,
        "planType": plan_type,
        "plan_name": plan.name,
        "billingInterval": interval,
        "featured_posts": str(plan.featured_requests),
        "portfolio_limit": str(plan.max_media),
        "max_posts": str(plan.max_posts),
    }
    subscription_data = {"metadata": {"creatorId": user_id, "planType": plan_type}}
    trial_days = current_app.config.get("STRIPE_TRIAL_DAYS", 0)
    if plan_type == PLAN_PREMIUM and interval == "monthly" and trial_days:
        subscription_data["trial_period_days"] = trial_days

    try:
        session = stripe.checkout.Session.create(
            mode="subscription",
            line_items=[{"price": price_id, "quantity": 1}],
            customer_email=user.get("email"),
            client_reference_id=user_id,
            metadata=metadata,
            subscription_data=subscription_data,
            allow_promotion_codes=True,
            success_url=f"{public_url}/subscription/success?session_id={{CHECKOUT_SESSION_ID}}&plan={plan_type}",
            cancel_url=f"{public_url}/pricing?canceled=true",
        )
    except stripe.StripeError as e:
        return jsonify({"success": False, "error": sanitize_error(e, "payment", "Checkout session failed")}), 503

    log_info("Checkout session created", session_id=session.id, creator_id=user_id, plan_type=plan_type)
    return jsonify({"success": True, "url": session.url, "session_id": session.id}), 200


@billing_bp.route("/success", methods=["POST"])
@require_auth
def confirm_checkout():
    """
    Called by the client after Stripe redirects back.

    Activates immediately unless the webhook already wrote the session, in
    which case the webhook's record is adopted.

    Request body (JSON):
        {"session_id": "cs_...", "plan": "premium"}

    Returns:
        200: settled (record and entitlement in the body)
        202: not yet visible; poll /billing/status
        400: missing session id
        403: session belongs to another creator
    """
    data = request.get_json(silent=True) or {}
    session_id = (data.get("session_id") or "").strip()
    plan_type = (data.get("plan") or PLAN_PREMIUM).strip().lower()

    if not session_id:
        return jsonify({"success": False, "error": "Missing session_id"}), 400

    try:
        result = get_reconciler().confirm_checkout(session_id, get_current_user_id(), plan_type)
    except ValueError as e:
        return jsonify({"success": False, "error": str(e)}), 403
    except TransientStoreError as e:
        return jsonify({"success": False, "error": sanitize_error(e, "database", "Checkout confirmation failed")}), 503

    return jsonify({"success": True, **result.to_dict()}), 202 if result.is_pending else 200


@billing_bp.route("/status", methods=["GET"])
@require_auth
def checkout_status():
    """
    Single read of a checkout session's state, for client-side polling.

    The client polls every SUBSCRIPTION_POLL_INTERVAL_SECONDS, backing off to
    SUBSCRIPTION_POLL_MAX_INTERVAL_SECONDS and stopping after
    SUBSCRIPTION_POLL_MAX_SECONDS or once `pending` is false.
    """
    session_id = (request.args.get("session_id") or "").strip()
    if not session_id:
        return jsonify({"success": False, "error": "Missing session_id"}), 400

    try:
        result = get_reconciler().read_status(session_id, get_current_user_id())
    except ValueError as e:
        return jsonify({"success": False, "error": str(e)}), 403
    except TransientStoreError as e:
        return jsonify({"success": False, "error": sanitize_error(e, "database", "Status read failed")}), 503

    cfg = current_app.config
    return jsonify({
        "success": True,
        **result.to_dict(),
        "poll": {
            "interval": cfg.get("SUBSCRIPTION_POLL_INTERVAL_SECONDS", 10),
            "max_interval": cfg.get("SUBSCRIPTION_POLL_MAX_INTERVAL_SECONDS", 60),
            "max_wait": cfg.get("SUBSCRIPTION_POLL_MAX_SECONDS", 300),
        },
    }), 200


@billing_bp.route("/webhook", methods=["POST"])
@limiter.exempt
def stripe_webhook():
    """
    Stripe webhook receiver.

    Unverified payloads are rejected before anything is read or written.
    Verified events are acknowledged with 200 even when they cannot be
    correlated, so Stripe stops redelivering them; store failures answer 503
    so Stripe retries.
    """
    payload = request.get_data()
    signature = request.headers.get("Stripe-Signature")

    try:
        event = payment_events.construct_event(
            payload, signature, current_app.config.get("STRIPE_WEBHOOK_SECRET", "")
        )
    except SignatureError as e:
        log_warning("Rejected webhook delivery", reason=str(e))
        return jsonify({"error": "Invalid signature"}), 400

    outcomes = get_reconciler().process_events([event])

    if any(outcome.get("status") in RETRY_OUTCOMES for outcome in outcomes):
        return jsonify({"received": False, "error": GENERIC_MESSAGES["database"], "outcomes": outcomes}), 503

    return jsonify({"received": True, "outcomes": outcomes}), 200


@billing_bp.route("/webhook", methods=["GET"])
def webhook_health():
    return jsonify({
        "status": "ok",
        "webhook_configured": bool(current_app.config.get("STRIPE_WEBHOOK_SECRET")),
        "handled_events": list(payment_events.HANDLED_EVENT_TYPES),
    }), 200
