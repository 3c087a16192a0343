"""Stripe webhook receiver."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Request
from starlette.concurrency import run_in_threadpool

from workwise_escrow.clients.payment_gateway import InvalidWebhookSignature
from workwise_escrow.core.exceptions import ServiceError
from workwise_escrow.core.state import get_app_state
from workwise_escrow.logging import get_logger

router = APIRouter()


@router.post("/webhooks/stripe")
async def stripe_webhook(request: Request) -> dict[str, Any]:
    """
    Verify the Stripe signature over the raw body, then apply the event.

    Redelivered events are acknowledged without any effect.
    """
    payload = await request.body()
    signature = request.headers.get("stripe-signature")

    state = get_app_state()
    if state.gateway is None or state.webhooks is None:
        msg = "Webhook processing not initialized"
        raise RuntimeError(msg)

    try:
        event = state.gateway.parse_webhook_event(payload, signature)
    except InvalidWebhookSignature as exc:
        get_logger(__name__).warning(
            "Rejected webhook with invalid signature",
            extra={"error": str(exc)},
        )
        raise ServiceError(
            "INVALID_SIGNATURE",
            "Webhook signature verification failed",
            400,
            {},
        ) from exc

    outcome = await run_in_threadpool(state.webhooks.process, event)
    return {"received": True, "event_id": event.event_id, "outcome": outcome}
