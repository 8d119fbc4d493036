"""
Tests for Stripe webhook verification and event normalisation.
"""

import json
import pytest
import stripe
from unittest.mock import patch
from conftest import checkout_event, invoice_event, subscription_event
from folio.services import payment_events
from folio.services.payment_events import construct_event, from_stripe_event
from folio.utils.errors import InvalidEventError, SignatureError


class TestConstructEvent:

    def test_missing_signature(self):
        with pytest.raises(SignatureError):
            construct_event(b"{}", None, "whsec_test")

    def test_missing_secret(self):
        with pytest.raises(SignatureError):
            construct_event(b"{}", "t=1,v1=abc", "")

    @patch("folio.services.payment_events.stripe.Webhook.construct_event")
    def test_bad_signature(self, mock_construct):
        mock_construct.side_effect = stripe.SignatureVerificationError("bad", "t=1,v1=abc")

        with pytest.raises(SignatureError):
            construct_event(b"{}", "t=1,v1=abc", "whsec_test")

    @patch("folio.services.payment_events.stripe.Webhook.construct_event")
    def test_unparsable_payload(self, mock_construct):
        mock_construct.side_effect = ValueError("No JSON object could be decoded")

        with pytest.raises(SignatureError):
            construct_event(b"not json", "t=1,v1=abc", "whsec_test")

    @patch("folio.services.payment_events.stripe.Webhook.construct_event")
    def test_returns_decoded_payload(self, mock_construct):
        payload = json.dumps(checkout_event()).encode()

        event = construct_event(payload, "t=1,v1=abc", "whsec_test")

        mock_construct.assert_called_once_with(payload, "t=1,v1=abc", "whsec_test")
        assert event["type"] == "checkout.session.completed"
        assert event["data"]["object"]["id"] == "cs_1"


class TestFromStripeEvent:

    def test_checkout(self):
        event = from_stripe_event(checkout_event(featured_posts=3))

        assert event.type == payment_events.CHECKOUT_COMPLETED
        assert event.idempotency_key == "cs_1"
        assert event.creator_id == "creator-1"
        assert event.plan_type == "premium"
        assert event.featured_posts == 3
        assert event.subscription_id == "sub_1"
        assert event.created == 1_700_000_000
        assert event.is_handled is True

    def test_checkout_without_metadata(self):
        raw = checkout_event()
        raw["data"]["object"]["metadata"] = {"planType": "premium"}

        with pytest.raises(InvalidEventError):
            from_stripe_event(raw)

    def test_subscription_period_end_from_items(self):
        raw = subscription_event()
        obj = raw["data"]["object"]
        del obj["current_period_end"]
        obj["items"] = {"data": [{"current_period_end": 1_750_000_000}]}

        event = from_stripe_event(raw)

        assert event.period_end == 1_750_000_000
        assert event.provider_status == "active"
        assert event.subscription_id == "sub_1"

    def test_invoice_subscription_from_parent(self):
        raw = invoice_event()
        obj = raw["data"]["object"]
        obj["subscription"] = None
        obj["parent"] = {"subscription_details": {"subscription": "sub_9"}}

        assert from_stripe_event(raw).subscription_id == "sub_9"

    def test_invoice_without_subscription(self):
        raw = invoice_event()
        raw["data"]["object"]["subscription"] = None

        with pytest.raises(InvalidEventError):
            from_stripe_event(raw)

    def test_unhandled_type_passes_through(self):
        event = from_stripe_event({"id": "evt_1", "type": "customer.created", "data": {"object": {}}})

        assert event.type == "customer.created"
        assert event.is_handled is False

    def test_missing_type(self):
        with pytest.raises(InvalidEventError):
            from_stripe_event({"id": "evt_1"})
