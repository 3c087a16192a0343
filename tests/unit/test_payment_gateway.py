"""Stripe adapter: status mapping, SDK error handling and webhook verification."""

from __future__ import annotations

import json
import time
from decimal import Decimal

import pytest
import stripe

from tests.helpers import WEBHOOK_SECRET, make_intent_event, sign_payload
from workwise_escrow.clients.payment_gateway import (
    GatewayError,
    IntentStatus,
    InvalidWebhookSignature,
    StripeGateway,
    map_intent_status,
    parse_event_body,
)

pytestmark = pytest.mark.unit


@pytest.fixture
def stripe_gateway() -> StripeGateway:
    return StripeGateway(
        api_key="sk_test_dummy",
        webhook_secret=WEBHOOK_SECRET,
        webhook_tolerance_seconds=300,
    )


# ---------------------------------------------------------------------------
# map_intent_status
# ---------------------------------------------------------------------------


def test_succeeded_intent():
    lookup = map_intent_status({"status": "succeeded", "payment_method": "pm_1"})
    assert lookup.status is IntentStatus.SUCCEEDED
    assert lookup.payment_method == "pm_1"


def test_expanded_payment_method_is_reduced_to_id():
    lookup = map_intent_status({"status": "succeeded", "payment_method": {"id": "pm_2"}})
    assert lookup.payment_method == "pm_2"


def test_canceled_intent():
    lookup = map_intent_status({"status": "canceled", "cancellation_reason": "abandoned"})
    assert lookup.status is IntentStatus.CANCELED
    assert lookup.failure_message == "abandoned"


def test_declined_intent_is_failed():
    lookup = map_intent_status(
        {
            "status": "requires_payment_method",
            "last_payment_error": {"message": "Your card was declined."},
        }
    )
    assert lookup.status is IntentStatus.FAILED
    assert lookup.failure_message == "Your card was declined."


@pytest.mark.parametrize(
    "status",
    ["processing", "requires_action", "requires_confirmation", "requires_payment_method"],
)
def test_in_flight_intents_are_processing(status):
    assert map_intent_status({"status": status}).status is IntentStatus.PROCESSING


def test_missing_status_is_transient():
    lookup = map_intent_status({"id": "pi_1"})
    assert lookup.status is IntentStatus.TRANSIENT_ERROR
    assert lookup.error is not None


# ---------------------------------------------------------------------------
# SDK calls
# ---------------------------------------------------------------------------


def test_create_intent_sends_cents(stripe_gateway, monkeypatch):
    calls = []

    def fake_create(**kwargs):
        calls.append(kwargs)
        return {"id": "pi_123", "client_secret": "pi_123_secret_abc"}

    monkeypatch.setattr(stripe.PaymentIntent, "create", fake_create)

    reference = stripe_gateway.create_intent(Decimal("12.34"), "usd", {"purpose": "escrow_deposit"})

    assert reference.intent_id == "pi_123"
    assert reference.client_secret == "pi_123_secret_abc"
    assert calls[0]["amount"] == 1234
    assert calls[0]["currency"] == "usd"
    assert calls[0]["api_key"] == "sk_test_dummy"
    assert calls[0]["metadata"] == {"purpose": "escrow_deposit"}


def test_create_intent_stripe_error(stripe_gateway, monkeypatch):
    def fake_create(**kwargs):
        msg = "Your card was declined."
        raise stripe.CardError(msg, param=None, code="card_declined")

    monkeypatch.setattr(stripe.PaymentIntent, "create", fake_create)

    with pytest.raises(GatewayError):
        stripe_gateway.create_intent(Decimal("10.00"), "usd", {})


def test_create_intent_without_secret(stripe_gateway, monkeypatch):
    monkeypatch.setattr(stripe.PaymentIntent, "create", lambda **kwargs: {"id": "pi_1"})

    with pytest.raises(GatewayError):
        stripe_gateway.create_intent(Decimal("10.00"), "usd", {})


def test_lookup_maps_retrieved_intent(stripe_gateway, monkeypatch):
    def fake_retrieve(intent_id, **kwargs):
        assert kwargs["api_key"] == "sk_test_dummy"
        return {"id": intent_id, "status": "succeeded", "payment_method": "pm_9"}

    monkeypatch.setattr(stripe.PaymentIntent, "retrieve", fake_retrieve)

    lookup = stripe_gateway.get_intent_status("pi_9")

    assert lookup.status is IntentStatus.SUCCEEDED
    assert lookup.payment_method == "pm_9"


def test_lookup_connection_error_is_transient(stripe_gateway, monkeypatch):
    def fake_retrieve(intent_id, **kwargs):
        msg = "Network is unreachable"
        raise stripe.APIConnectionError(msg)

    monkeypatch.setattr(stripe.PaymentIntent, "retrieve", fake_retrieve)

    lookup = stripe_gateway.get_intent_status("pi_9")

    assert lookup.status is IntentStatus.TRANSIENT_ERROR
    assert "unreachable" in lookup.error


# ---------------------------------------------------------------------------
# Webhook verification
# ---------------------------------------------------------------------------


def test_valid_signature_is_accepted(stripe_gateway):
    payload = make_intent_event("payment_intent.succeeded", "pi_abc", event_id="evt_1")

    event = stripe_gateway.parse_webhook_event(payload, sign_payload(payload))

    assert event.event_id == "evt_1"
    assert event.event_type == "payment_intent.succeeded"
    assert event.intent_id == "pi_abc"
    assert event.metadata == {"purpose": "escrow_deposit"}
    assert event.payment_method == "pm_card_visa"


def test_wrong_secret_is_rejected(stripe_gateway):
    payload = make_intent_event("payment_intent.succeeded", "pi_abc")

    with pytest.raises(InvalidWebhookSignature):
        stripe_gateway.parse_webhook_event(payload, sign_payload(payload, secret="whsec_other"))


def test_tampered_payload_is_rejected(stripe_gateway):
    payload = make_intent_event("payment_intent.succeeded", "pi_abc")
    header = sign_payload(payload)
    tampered = payload.replace(b"pi_abc", b"pi_xyz")

    with pytest.raises(InvalidWebhookSignature):
        stripe_gateway.parse_webhook_event(tampered, header)


def test_stale_timestamp_is_rejected(stripe_gateway):
    payload = make_intent_event("payment_intent.succeeded", "pi_abc")
    header = sign_payload(payload, timestamp=int(time.time()) - 3600)

    with pytest.raises(InvalidWebhookSignature):
        stripe_gateway.parse_webhook_event(payload, header)


def test_missing_signature_is_rejected(stripe_gateway):
    payload = make_intent_event("payment_intent.succeeded", "pi_abc")

    with pytest.raises(InvalidWebhookSignature):
        stripe_gateway.parse_webhook_event(payload, None)


def test_signed_garbage_is_rejected(stripe_gateway):
    payload = b"not json"

    with pytest.raises(InvalidWebhookSignature):
        stripe_gateway.parse_webhook_event(payload, sign_payload(payload))


def test_event_without_intent_object():
    event = parse_event_body({"id": "evt_1", "type": "balance.available", "data": {}})

    assert event.intent_id is None
    assert event.metadata == {}


def test_event_missing_type_is_rejected():
    with pytest.raises(InvalidWebhookSignature):
        parse_event_body(json.loads('{"id": "evt_1"}'))
