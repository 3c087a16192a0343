"""Applies verified gateway webhook events to deposits and ledger entries."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from workwise_escrow.domain import TransactionStatus
from workwise_escrow.logging import get_logger
from workwise_escrow.services.deposit_service import DEPOSIT_PURPOSE
from workwise_escrow.services.ledger_store import utc_now

if TYPE_CHECKING:
    from workwise_escrow.clients.payment_gateway import WebhookEvent
    from workwise_escrow.services.deposit_service import DepositService
    from workwise_escrow.services.ledger_store import LedgerStore

EVENT_SUCCEEDED = "payment_intent.succeeded"
EVENT_FAILED = "payment_intent.payment_failed"
EVENT_CANCELED = "payment_intent.canceled"


class WebhookProcessor:
    """
    Idempotent webhook application.

    The event ID is recorded in the same unit of work as the deposit or
    ledger-entry settlement it causes, so a redelivered event finds its ID already
    stored and does nothing.
    """

    def __init__(self, store: LedgerStore, deposits: DepositService) -> None:
        self._store = store
        self._deposits = deposits
        self._logger = get_logger(__name__)

    def process(self, event: WebhookEvent) -> str:
        """Apply an event once. Returns the outcome recorded for it."""
        with self._store.unit_of_work():
            previous = self._store.get_webhook_event(event.event_id)
            if previous is not None:
                self._logger.info(
                    "Duplicate webhook event ignored",
                    extra={"event_id": event.event_id, "event_type": event.event_type},
                )
                return "duplicate"

            outcome = self._apply(event)
            self._store.record_webhook_event(
                event.event_id, event.event_type, event.intent_id, outcome
            )

        self._logger.info(
            "Webhook event processed",
            extra={
                "event_id": event.event_id,
                "event_type": event.event_type,
                "payment_intent_id": event.intent_id,
                "outcome": outcome,
            },
        )
        return outcome

    def _apply(self, event: WebhookEvent) -> str:
        if event.event_type not in (EVENT_SUCCEEDED, EVENT_FAILED, EVENT_CANCELED):
            return "ignored"
        if event.intent_id is None:
            return "ignored"

        purpose = event.metadata.get("purpose")
        if purpose is None or purpose == DEPOSIT_PURPOSE:
            deposit = self._store.get_deposit_by_intent(event.intent_id)
            if deposit is not None:
                return self._apply_to_deposit(event, deposit)

        transaction = self._store.get_transaction_by_reference(event.intent_id)
        if transaction is not None:
            return self._apply_to_transaction(event, transaction)

        if purpose is not None and purpose != DEPOSIT_PURPOSE:
            return "ignored"
        self._logger.warning(
            "Webhook for unknown payment intent",
            extra={"event_id": event.event_id, "payment_intent_id": event.intent_id},
        )
        return "unknown_intent"

    def _apply_to_deposit(self, event: WebhookEvent, deposit: dict[str, Any]) -> str:
        if event.event_type == EVENT_SUCCEEDED:
            if self._deposits.settle_succeeded(deposit["deposit_id"], event.payment_method):
                return "confirmed"
            return "already_settled"

        if self._deposits.settle_failed(deposit["deposit_id"], _failure_message(event)):
            return "failed"
        return "already_settled"

    def _apply_to_transaction(self, event: WebhookEvent, transaction: dict[str, Any]) -> str:
        """Settle a pending ledger entry paid directly through the gateway."""
        if event.event_type == EVENT_SUCCEEDED:
            updates: dict[str, Any] = {
                "status": TransactionStatus.COMPLETED.value,
                "processed_at": utc_now(),
            }
            outcome = "transaction_completed"
        else:
            updates = {
                "status": TransactionStatus.FAILED.value,
                "processed_at": utc_now(),
                "failure_message": _failure_message(event),
            }
            outcome = "transaction_failed"

        rows = self._store.update_transaction(
            transaction["transaction_id"],
            updates,
            expected_status=TransactionStatus.PENDING.value,
        )
        if rows == 0:
            return "already_settled"

        self._logger.info(
            "Transaction settled by webhook",
            extra={
                "transaction_id": transaction["transaction_id"],
                "payment_intent_id": event.intent_id,
                "status": updates["status"],
            },
        )
        return outcome


def _failure_message(event: WebhookEvent) -> str:
    if event.failure_message is not None:
        return event.failure_message
    if event.event_type == EVENT_CANCELED:
        return "Payment was canceled"
    return "Payment failed"
