"""Stripe webhook endpoint tests with real signature verification."""

from __future__ import annotations

import pytest

from tests.helpers import CLIENT_ID, make_intent_event, post_json, sign_payload

pytestmark = pytest.mark.unit


async def _post_event(client, payload: bytes, signature: str | None):
    headers = {"Content-Type": "application/json"}
    if signature is not None:
        headers["Stripe-Signature"] = signature
    return await client.post("/webhooks/stripe", content=payload, headers=headers)


@pytest.fixture
async def deposit(client):
    await post_json(client, "/accounts", {"user_id": CLIENT_ID})
    response = await post_json(client, "/deposits", {"user_id": CLIENT_ID, "amount": "30.00"})
    return response.json()


async def test_signed_success_event_credits_escrow(client, deposit):
    payload = make_intent_event(
        "payment_intent.succeeded", deposit["payment_intent_id"], event_id="evt_ok"
    )

    response = await _post_event(client, payload, sign_payload(payload))

    assert response.status_code == 200
    assert response.json() == {"received": True, "event_id": "evt_ok", "outcome": "confirmed"}
    wallet = (await client.get(f"/accounts/{CLIENT_ID}")).json()
    assert wallet["escrow_balance"] == "30.00"


async def test_redelivery_is_acknowledged_without_effect(client, deposit):
    payload = make_intent_event(
        "payment_intent.succeeded", deposit["payment_intent_id"], event_id="evt_dup"
    )

    await _post_event(client, payload, sign_payload(payload))
    response = await _post_event(client, payload, sign_payload(payload))

    assert response.status_code == 200
    assert response.json()["outcome"] == "duplicate"
    wallet = (await client.get(f"/accounts/{CLIENT_ID}")).json()
    assert wallet["escrow_balance"] == "30.00"


async def test_bad_signature_rejected(client, deposit):
    payload = make_intent_event("payment_intent.succeeded", deposit["payment_intent_id"])

    response = await _post_event(client, payload, sign_payload(payload, secret="whsec_wrong"))

    assert response.status_code == 400
    assert response.json()["error"] == "INVALID_SIGNATURE"
    stored = (await client.get(f"/deposits/{deposit['deposit_id']}")).json()
    assert stored["status"] == "pending"


async def test_missing_signature_rejected(client, deposit):
    payload = make_intent_event("payment_intent.succeeded", deposit["payment_intent_id"])

    response = await _post_event(client, payload, None)

    assert response.status_code == 400
    assert response.json()["error"] == "INVALID_SIGNATURE"


async def test_webhook_accepts_any_content_type(client, deposit):
    payload = make_intent_event("payment_intent.payment_failed", deposit["payment_intent_id"])

    response = await client.post(
        "/webhooks/stripe",
        content=payload,
        headers={"Content-Type": "text/plain", "Stripe-Signature": sign_payload(payload)},
    )

    assert response.status_code == 200
    assert response.json()["outcome"] == "failed"
