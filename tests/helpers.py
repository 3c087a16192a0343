"""Shared test helpers: config builder, fake gateway, Stripe signatures."""

from __future__ import annotations

import hashlib
import hmac
import json
import time
import uuid
from decimal import Decimal
from typing import Any

from workwise_escrow.clients.payment_gateway import (
    BasePaymentGateway,
    GatewayError,
    IntentLookup,
    IntentReference,
    IntentStatus,
    WebhookEvent,
    parse_event_body,
)

WEBHOOK_SECRET = "whsec_test_secret"


def make_config_yaml(
    db_path: str,
    log_directory: str,
    *,
    reconciliation_enabled: bool = False,
    platform_fee_percent: str = "5",
) -> str:
    """Build a complete config.yaml for a test run."""
    return f"""\
service:
  name: "workwise-escrow"
  version: "0.1.0"
server:
  host: "127.0.0.1"
  port: 8010
  log_level: "info"
logging:
  level: "WARNING"
  directory: "{log_directory}"
database:
  path: "{db_path}"
request:
  max_body_size: 1048576
payments:
  provider: "stripe"
  api_key: "sk_test_dummy"
  webhook_secret: "{WEBHOOK_SECRET}"
  currency: "usd"
  timeout_seconds: 5
  webhook_tolerance_seconds: 300
escrow:
  platform_fee_percent: "{platform_fee_percent}"
  minimum_deposit: "1.00"
reconciliation:
  enabled: {"true" if reconciliation_enabled else "false"}
  interval_seconds: 3600
  lookback_days: 7
  intent_timeout_seconds: 2
  lease_seconds: 60
"""


def sign_payload(payload: bytes, secret: str = WEBHOOK_SECRET, timestamp: int | None = None) -> str:
    """Build a Stripe-Signature header value for payload."""
    ts = int(time.time()) if timestamp is None else timestamp
    signed = f"{ts}.".encode() + payload
    digest = hmac.new(secret.encode(), signed, hashlib.sha256).hexdigest()
    return f"t={ts},v1={digest}"


def make_intent_event(
    event_type: str,
    intent_id: str,
    *,
    event_id: str | None = None,
    failure_message: str | None = None,
    purpose: str = "escrow_deposit",
) -> bytes:
    """Serialize a minimal Stripe payment_intent event."""
    obj: dict[str, Any] = {
        "id": intent_id,
        "object": "payment_intent",
        "metadata": {"purpose": purpose},
        "payment_method": "pm_card_visa",
    }
    if failure_message is not None:
        obj["last_payment_error"] = {"message": failure_message}
    event = {
        "id": event_id or f"evt_{uuid.uuid4().hex}",
        "type": event_type,
        "data": {"object": obj},
    }
    return json.dumps(event).encode()


class FakeGateway(BasePaymentGateway):
    """
    In-memory gateway.

    Intent statuses are set by the test through ``statuses``; lookups for
    intents listed in ``errors`` return TRANSIENT_ERROR and lookups in
    ``slow`` sleep for ``delay`` seconds first.
    """

    def __init__(self) -> None:
        self.statuses: dict[str, IntentLookup] = {}
        self.errors: set[str] = set()
        self.slow: set[str] = set()
        self.delay = 0.0
        self.fail_create = False
        self.created: list[tuple[Decimal, str, dict[str, str]]] = []
        self.lookups: list[str] = []

    def create_intent(
        self,
        amount: Decimal,
        currency: str,
        metadata: dict[str, str],
    ) -> IntentReference:
        if self.fail_create:
            msg = "card_declined"
            raise GatewayError(msg)
        self.created.append((amount, currency, metadata))
        intent_id = f"pi_{uuid.uuid4().hex[:16]}"
        self.statuses[intent_id] = IntentLookup(IntentStatus.PROCESSING)
        return IntentReference(intent_id=intent_id, client_secret=f"{intent_id}_secret")

    def get_intent_status(self, intent_id: str) -> IntentLookup:
        self.lookups.append(intent_id)
        if intent_id in self.slow:
            time.sleep(self.delay)
        if intent_id in self.errors:
            return IntentLookup(IntentStatus.TRANSIENT_ERROR, error="api_connection_error")
        return self.statuses.get(intent_id, IntentLookup(IntentStatus.PROCESSING))

    def parse_webhook_event(self, raw_payload: bytes, signature: str | None) -> WebhookEvent:
        return parse_event_body(json.loads(raw_payload))

    def succeed(self, intent_id: str, payment_method: str = "pm_card_visa") -> None:
        self.statuses[intent_id] = IntentLookup(
            IntentStatus.SUCCEEDED, payment_method=payment_method
        )

    def fail(self, intent_id: str, message: str = "Your card was declined.") -> None:
        self.statuses[intent_id] = IntentLookup(IntentStatus.FAILED, failure_message=message)


def open_account(store: Any, user_id: str, escrow: str = "0.00") -> None:
    """Create an account on a LedgerStore and optionally seed its escrow balance."""
    store.create_account(user_id)
    amount = Decimal(escrow)
    if amount > 0:
        store.atomic_adjust_balance(user_id, amount)


CLIENT_ID = "u-client"
WORKER_ID = "u-worker"


async def post_json(client: Any, path: str, payload: dict[str, Any]) -> Any:
    """POST a JSON body with the content type the API requires."""
    return await client.post(
        path,
        content=json.dumps(payload),
        headers={"Content-Type": "application/json"},
    )


async def fund_client(client: Any, gateway: FakeGateway, amount: str) -> None:
    """Register both parties and top up the client's escrow through a confirmed deposit."""
    await post_json(client, "/accounts", {"user_id": CLIENT_ID})
    await post_json(client, "/accounts", {"user_id": WORKER_ID})
    created = await post_json(client, "/deposits", {"user_id": CLIENT_ID, "amount": amount})
    deposit = created.json()
    gateway.succeed(deposit["payment_intent_id"])
    await client.post(f"/deposits/{deposit['deposit_id']}/confirm")
