"""Stripe PaymentIntent adapter with explicit result variants."""

from __future__ import annotations

import json
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any

import stripe

from workwise_escrow.logging import get_logger
from workwise_escrow.money import to_cents

if TYPE_CHECKING:
    from decimal import Decimal


class IntentStatus(Enum):
    """Gateway-independent view of a payment intent."""

    SUCCEEDED = "succeeded"
    PROCESSING = "processing"
    CANCELED = "canceled"
    FAILED = "failed"
    TRANSIENT_ERROR = "transient_error"


@dataclass(frozen=True)
class IntentReference:
    """A freshly created intent the client still has to pay."""

    intent_id: str
    client_secret: str


@dataclass(frozen=True)
class IntentLookup:
    """Result of asking the gateway about an intent. Never raised, always returned."""

    status: IntentStatus
    payment_method: str | None = None
    failure_message: str | None = None
    error: str | None = None


@dataclass(frozen=True)
class WebhookEvent:
    """A verified webhook delivery."""

    event_id: str
    event_type: str
    intent_id: str | None
    metadata: dict[str, str] = field(default_factory=dict)
    payment_method: str | None = None
    failure_message: str | None = None


class GatewayError(Exception):
    """The gateway refused or could not complete an intent creation."""


class InvalidWebhookSignature(Exception):
    """Webhook signature did not verify or the payload was malformed."""


class BasePaymentGateway(ABC):
    """Operations the escrow service needs from a payment provider."""

    @abstractmethod
    def create_intent(
        self,
        amount: Decimal,
        currency: str,
        metadata: dict[str, str],
    ) -> IntentReference:
        """Create a payment intent. Raises GatewayError on failure."""

    @abstractmethod
    def get_intent_status(self, intent_id: str) -> IntentLookup:
        """Look up an intent. SDK and network errors come back as TRANSIENT_ERROR."""

    @abstractmethod
    def parse_webhook_event(self, raw_payload: bytes, signature: str | None) -> WebhookEvent:
        """Verify and decode a webhook delivery. Raises InvalidWebhookSignature."""


def map_intent_status(intent: Any) -> IntentLookup:
    """Translate a Stripe PaymentIntent object into an IntentLookup."""
    status = _field(intent, "status")
    payment_method = _payment_method(intent)
    last_error = _field(intent, "last_payment_error")
    failure_message = _field(last_error, "message") if last_error else None

    if status == "succeeded":
        return IntentLookup(IntentStatus.SUCCEEDED, payment_method=payment_method)
    if status == "canceled":
        return IntentLookup(
            IntentStatus.CANCELED,
            payment_method=payment_method,
            failure_message=_field(intent, "cancellation_reason"),
        )
    if status == "requires_payment_method" and last_error:
        return IntentLookup(
            IntentStatus.FAILED,
            payment_method=payment_method,
            failure_message=failure_message or "Payment failed",
        )
    if not isinstance(status, str):
        return IntentLookup(IntentStatus.TRANSIENT_ERROR, error="Malformed intent: missing status")
    return IntentLookup(IntentStatus.PROCESSING, payment_method=payment_method)


def _field(obj: Any, name: str) -> Any:
    if obj is None:
        return None
    if isinstance(obj, dict):
        return obj.get(name)
    return getattr(obj, name, None)


def _payment_method(intent: Any) -> str | None:
    method = _field(intent, "payment_method")
    if method is None:
        return None
    if isinstance(method, str):
        return method
    return _field(method, "id")


class StripeGateway(BasePaymentGateway):
    """
    Stripe-backed gateway.

    Uses per-request API keys so several gateways (and tests) can coexist
    without touching the module-global ``stripe.api_key``.
    """

    def __init__(self, api_key: str, webhook_secret: str, webhook_tolerance_seconds: int) -> None:
        self._api_key = api_key
        self._webhook_secret = webhook_secret
        self._tolerance = webhook_tolerance_seconds
        self._logger = get_logger(__name__)

    def create_intent(
        self,
        amount: Decimal,
        currency: str,
        metadata: dict[str, str],
    ) -> IntentReference:
        try:
            intent = stripe.PaymentIntent.create(
                api_key=self._api_key,
                amount=to_cents(amount),
                currency=currency,
                metadata=metadata,
                automatic_payment_methods={"enabled": True},
            )
        except stripe.StripeError as exc:
            self._logger.warning(
                "Stripe intent creation failed",
                extra={"error": str(exc), "currency": currency},
            )
            raise GatewayError(str(exc)) from exc

        intent_id = _field(intent, "id")
        client_secret = _field(intent, "client_secret")
        if not isinstance(intent_id, str) or not isinstance(client_secret, str):
            msg = "Stripe returned an intent without id or client_secret"
            raise GatewayError(msg)
        return IntentReference(intent_id=intent_id, client_secret=client_secret)

    def get_intent_status(self, intent_id: str) -> IntentLookup:
        try:
            intent = stripe.PaymentIntent.retrieve(intent_id, api_key=self._api_key)
        except stripe.StripeError as exc:
            self._logger.warning(
                "Stripe intent lookup failed",
                extra={"payment_intent_id": intent_id, "error": str(exc)},
            )
            return IntentLookup(IntentStatus.TRANSIENT_ERROR, error=str(exc))
        return map_intent_status(intent)

    def parse_webhook_event(self, raw_payload: bytes, signature: str | None) -> WebhookEvent:
        if not signature:
            msg = "Missing Stripe-Signature header"
            raise InvalidWebhookSignature(msg)

        try:
            payload = raw_payload.decode("utf-8")
            stripe.WebhookSignature.verify_header(
                payload, signature, self._webhook_secret, self._tolerance
            )
            event = json.loads(payload)
        except stripe.SignatureVerificationError as exc:
            raise InvalidWebhookSignature(str(exc)) from exc
        except (UnicodeDecodeError, json.JSONDecodeError) as exc:
            msg = "Webhook payload is not valid JSON"
            raise InvalidWebhookSignature(msg) from exc

        return parse_event_body(event)


def parse_event_body(event: Any) -> WebhookEvent:
    """Extract the fields the service acts on from a decoded Stripe event."""
    if not isinstance(event, dict):
        msg = "Webhook payload must be a JSON object"
        raise InvalidWebhookSignature(msg)

    event_id = event.get("id")
    event_type = event.get("type")
    if not isinstance(event_id, str) or not isinstance(event_type, str):
        msg = "Webhook payload is missing id or type"
        raise InvalidWebhookSignature(msg)

    data = event.get("data")
    obj = data.get("object") if isinstance(data, dict) else None
    if not isinstance(obj, dict):
        return WebhookEvent(event_id=event_id, event_type=event_type, intent_id=None)

    metadata = obj.get("metadata")
    last_error = obj.get("last_payment_error")
    failure_message = last_error.get("message") if isinstance(last_error, dict) else None
    intent_id = obj.get("id") if obj.get("object", "payment_intent") == "payment_intent" else None
    if not isinstance(metadata, dict):
        metadata = {}

    return WebhookEvent(
        event_id=event_id,
        event_type=event_type,
        intent_id=intent_id if isinstance(intent_id, str) else None,
        metadata={str(k): str(v) for k, v in metadata.items()},
        payment_method=_payment_method(obj),
        failure_message=failure_message,
    )
