"""
Tests for the billing blueprint: checkout, confirmation, status and webhook.
"""

import hashlib
import hmac
import json
import time
import stripe
from unittest.mock import patch, MagicMock, Mock
from conftest import CREATOR_ID, checkout_event

WEBHOOK_SECRET = "whsec_test"


def _signed(event, secret=WEBHOOK_SECRET):
    payload = json.dumps(event)
    timestamp = int(time.time())
    signature = hmac.new(secret.encode(), f"{timestamp}.{payload}".encode(), hashlib.sha256).hexdigest()
    return payload, {"Stripe-Signature": f"t={timestamp},v1={signature}", "Content-Type": "application/json"}


class TestWebhook:

    @patch("folio.routes.billing.get_reconciler")
    def test_rejects_bad_signature_without_touching_store(self, mock_get_reconciler, client):
        payload, headers = _signed(checkout_event(), secret="whsec_wrong")

        response = client.post("/billing/webhook", data=payload, headers=headers)

        assert response.status_code == 400
        mock_get_reconciler.assert_not_called()

    @patch("folio.routes.billing.get_reconciler")
    def test_rejects_missing_signature(self, mock_get_reconciler, client):
        response = client.post("/billing/webhook", data=json.dumps(checkout_event()))

        assert response.status_code == 400
        mock_get_reconciler.assert_not_called()

    def test_applies_verified_checkout(self, client, routed_reconciler, store, profiles):
        payload, headers = _signed(checkout_event())

        response = client.post("/billing/webhook", data=payload, headers=headers)

        assert response.status_code == 200
        body = response.get_json()
        assert body["received"] is True
        assert body["outcomes"][0]["status"] == "processed"
        assert store.find_by_key("cs_1") is not None
        assert profiles.profiles[CREATOR_ID].is_premium is True

    def test_duplicate_delivery_acknowledged(self, client, routed_reconciler, store):
        payload, headers = _signed(checkout_event())

        client.post("/billing/webhook", data=payload, headers=headers)
        response = client.post("/billing/webhook", data=payload, headers=headers)

        assert response.status_code == 200
        assert len(store.records) == 1

    def test_uncorrelatable_event_acknowledged(self, client, routed_reconciler, store):
        event = checkout_event()
        event["data"]["object"]["metadata"] = {}
        payload, headers = _signed(event)

        response = client.post("/billing/webhook", data=payload, headers=headers)

        assert response.status_code == 200
        assert response.get_json()["outcomes"][0]["status"] == "invalid"
        assert store.records == {}

    @patch("folio.routes.billing.get_reconciler")
    def test_store_failure_asks_stripe_to_retry(self, mock_get_reconciler, client):
        mock_get_reconciler.return_value.process_events.return_value = [
            {"event_id": "evt_checkout", "status": "retry", "error": "timeout"}
        ]
        payload, headers = _signed(checkout_event())

        response = client.post("/billing/webhook", data=payload, headers=headers)

        assert response.status_code == 503

    def test_health_check(self, client):
        response = client.get("/billing/webhook")

        assert response.status_code == 200
        body = response.get_json()
        assert body["webhook_configured"] is True
        assert "checkout.session.completed" in body["handled_events"]


class TestCheckout:

    def test_requires_auth(self, client):
        response = client.post("/billing/checkout", json={"planType": "premium"})
        assert response.status_code == 401

    def test_invalid_plan(self, client, auth_headers, logged_in):
        response = client.post("/billing/checkout", json={"planType": "gold"}, headers=auth_headers)
        assert response.status_code == 400

    def test_free_plan_activates_without_stripe(self, client, auth_headers, logged_in, routed_reconciler, store):
        with patch("folio.routes.billing.stripe.checkout.Session.create") as mock_create:
            response = client.post("/billing/checkout", json={"planType": "free"}, headers=auth_headers)

        assert response.status_code == 200
        assert response.get_json()["redirect_url"].endswith("/dashboard?plan=free")
        assert f"free:{CREATOR_ID}" in store.records
        mock_create.assert_not_called()

    def test_creates_stripe_session(self, app, client, auth_headers, logged_in):
        app.config["STRIPE_PRICE_IDS"] = {("premium", "monthly"): "price_premium"}

        with patch("folio.routes.billing.stripe.checkout.Session.create") as mock_create:
            mock_create.return_value = Mock(id="cs_new", url="https://checkout.stripe.com/c/cs_new")
            response = client.post(
                "/billing/checkout",
                json={"planType": "premium", "billingInterval": "monthly"},
                headers=auth_headers,
            )

        assert response.status_code == 200
        assert response.get_json()["url"] == "https://checkout.stripe.com/c/cs_new"

        kwargs = mock_create.call_args.kwargs
        assert kwargs["mode"] == "subscription"
        assert kwargs["line_items"] == [{"price": "price_premium", "quantity": 1}]
        assert kwargs["metadata"]["creatorId"] == CREATOR_ID
        assert kwargs["metadata"]["planType"] == "premium"
        assert kwargs["subscription_data"]["metadata"] == {"creatorId": CREATOR_ID, "planType": "premium"}
        assert kwargs["subscription_data"]["trial_period_days"] == 7
        assert "{CHECKOUT_SESSION_ID}" in kwargs["success_url"]

    def test_no_trial_for_pro(self, app, client, auth_headers, logged_in):
        app.config["STRIPE_PRICE_IDS"] = {("pro", "yearly"): "price_pro_yearly"}

        with patch("folio.routes.billing.stripe.checkout.Session.create") as mock_create:
            mock_create.return_value = Mock(id="cs_new", url="https://checkout.stripe.com/c/cs_new")
            client.post("/billing/checkout", json={"planType": "pro", "billingInterval": "yearly"},
                        headers=auth_headers)

        assert "trial_period_days" not in mock_create.call_args.kwargs["subscription_data"]

    def test_missing_price_id(self, app, client, auth_headers, logged_in):
        app.config["STRIPE_PRICE_IDS"] = {}

        response = client.post("/billing/checkout", json={"planType": "pro"}, headers=auth_headers)

        assert response.status_code == 503

    def test_stripe_error(self, app, client, auth_headers, logged_in):
        app.config["STRIPE_PRICE_IDS"] = {("pro", "monthly"): "price_pro"}

        with patch("folio.routes.billing.stripe.checkout.Session.create") as mock_create:
            mock_create.side_effect = stripe.StripeError("card network down")
            response = client.post("/billing/checkout", json={"planType": "pro"}, headers=auth_headers)

        assert response.status_code == 503
        assert "card network" not in response.get_json()["error"]


class TestConfirmAndStatus:

    def test_confirm_activates_immediately(self, client, auth_headers, logged_in, routed_reconciler, profiles):
        response = client.post("/billing/success", json={"session_id": "cs_1", "plan": "premium"},
                               headers=auth_headers)

        assert response.status_code == 200
        body = response.get_json()
        assert body["action"] == "inserted"
        assert body["status"] == "active"
        assert body["entitlement"]["portfolio_limit"] == 50

    def test_confirm_requires_session(self, client, auth_headers, logged_in, routed_reconciler):
        response = client.post("/billing/success", json={}, headers=auth_headers)
        assert response.status_code == 400

    def test_confirm_other_creators_session(self, client, auth_headers, logged_in, routed_reconciler):
        routed_reconciler.process_events([checkout_event(creator_id="someone-else")])

        response = client.post("/billing/success", json={"session_id": "cs_1"}, headers=auth_headers)

        assert response.status_code == 403

    def test_status_pending_then_settled(self, client, auth_headers, logged_in, routed_reconciler):
        response = client.get("/billing/status?session_id=cs_1", headers=auth_headers)
        body = response.get_json()
        assert body["pending"] is True
        assert body["poll"] == {"interval": 10, "max_interval": 60, "max_wait": 300}

        routed_reconciler.process_events([checkout_event()])

        body = client.get("/billing/status?session_id=cs_1", headers=auth_headers).get_json()
        assert body["pending"] is False
        assert body["status"] == "active"

    def test_status_requires_session(self, client, auth_headers, logged_in):
        assert client.get("/billing/status", headers=auth_headers).status_code == 400

    def test_store_unavailable(self, client, auth_headers, logged_in):
        from folio.utils.errors import TransientStoreError

        reconciler = MagicMock()
        reconciler.confirm_checkout.side_effect = TransientStoreError("down")
        with patch("folio.routes.billing.get_reconciler", return_value=reconciler):
            response = client.post("/billing/success", json={"session_id": "cs_1"}, headers=auth_headers)

        assert response.status_code == 503
