"""Escrow wallet top-ups: intent creation, confirmation and settlement."""

from __future__ import annotations

import asyncio
import uuid
from enum import Enum
from typing import TYPE_CHECKING, Any

from workwise_escrow.clients.payment_gateway import (
    GatewayError,
    IntentLookup,
    IntentStatus,
)
from workwise_escrow.core.exceptions import LedgerIntegrityError, ServiceError
from workwise_escrow.domain import AdjustResult, BalanceKind, DepositStatus
from workwise_escrow.logging import get_logger
from workwise_escrow.money import MAX_AMOUNT, format_amount
from workwise_escrow.services.ledger_store import utc_now

if TYPE_CHECKING:
    from decimal import Decimal

    from workwise_escrow.clients.payment_gateway import BasePaymentGateway
    from workwise_escrow.services.ledger_store import LedgerStore

DEPOSIT_PURPOSE = "escrow_deposit"


class SettlementOutcome(Enum):
    """What applying a gateway result to a deposit did."""

    CONFIRMED = "confirmed"
    FAILED = "failed"
    PENDING = "pending"
    ALREADY_SETTLED = "already_settled"
    ERRORED = "errored"


class DepositService:
    """
    Owns the deposit lifecycle.

    settle_succeeded() and settle_failed() are the only code paths that
    move a deposit out of pending. The webhook processor, the
    reconciliation sweep and the confirm endpoint all go through them, and
    both are guarded on ``status = 'pending'``, so whichever caller commits
    first wins and the others see zero affected rows.
    """

    def __init__(
        self,
        store: LedgerStore,
        gateway: BasePaymentGateway,
        currency: str,
        minimum_deposit: Decimal,
        gateway_timeout_seconds: float,
    ) -> None:
        self._store = store
        self._gateway = gateway
        self._currency = currency
        self._minimum_deposit = minimum_deposit
        self._gateway_timeout = gateway_timeout_seconds
        self._logger = get_logger(__name__)

    def _load_deposit(self, deposit_id: str) -> dict[str, Any]:
        deposit = self._store.get_deposit(deposit_id)
        if deposit is None:
            raise ServiceError(
                "DEPOSIT_NOT_FOUND",
                "Deposit not found",
                404,
                {"deposit_id": deposit_id},
            )
        return deposit

    def get_deposit(self, deposit_id: str) -> dict[str, Any]:
        return self._load_deposit(deposit_id)

    async def create_deposit(self, user_id: str, amount: Decimal) -> dict[str, Any]:
        """
        Start a top-up of the user's escrow balance.

        Creates a gateway intent tagged ``purpose=escrow_deposit`` and records
        a pending deposit. The balance only moves once the gateway confirms.

        Returns:
            The deposit record plus the intent's client_secret.

        Raises:
            ServiceError: INVALID_AMOUNT, ACCOUNT_NOT_FOUND,
                PAYMENT_GATEWAY_UNAVAILABLE.
        """
        if amount < self._minimum_deposit:
            raise ServiceError(
                "INVALID_AMOUNT",
                f"Minimum deposit is {format_amount(self._minimum_deposit)}",
                400,
                {"minimum": format_amount(self._minimum_deposit)},
            )
        if amount > MAX_AMOUNT:
            raise ServiceError(
                "INVALID_AMOUNT",
                f"Maximum deposit is {format_amount(MAX_AMOUNT)}",
                400,
                {"maximum": format_amount(MAX_AMOUNT)},
            )

        account = await asyncio.to_thread(self._store.get_account, user_id)
        if account is None:
            raise ServiceError("ACCOUNT_NOT_FOUND", "Account not found", 404, {"user_id": user_id})

        metadata = {"purpose": DEPOSIT_PURPOSE, "user_id": user_id}
        try:
            reference = await asyncio.wait_for(
                asyncio.to_thread(
                    self._gateway.create_intent, amount, self._currency, metadata
                ),
                timeout=self._gateway_timeout,
            )
        except (GatewayError, TimeoutError) as exc:
            self._logger.warning(
                "Deposit intent creation failed",
                extra={"user_id": user_id, "amount": format_amount(amount), "error": str(exc)},
            )
            raise ServiceError(
                "PAYMENT_GATEWAY_UNAVAILABLE",
                "Payment gateway could not create the deposit",
                502,
                {},
            ) from exc

        deposit_id = f"dep-{uuid.uuid4()}"
        deposit: dict[str, Any] = {
            "deposit_id": deposit_id,
            "user_id": user_id,
            "amount": amount,
            "currency": self._currency,
            "status": DepositStatus.PENDING.value,
            "payment_intent_id": reference.intent_id,
            "created_at": utc_now(),
        }
        await asyncio.to_thread(self._store.insert_deposit, deposit)

        self._logger.info(
            "Deposit intent created",
            extra={
                "deposit_id": deposit_id,
                "user_id": user_id,
                "amount": format_amount(amount),
                "payment_intent_id": reference.intent_id,
            },
        )
        result = self._load_deposit(deposit_id)
        result["client_secret"] = reference.client_secret
        return result

    async def confirm_deposit(self, deposit_id: str) -> tuple[dict[str, Any], SettlementOutcome]:
        """
        Ask the gateway about a pending deposit and settle it if it is final.

        A deposit that is not pending is returned untouched. An intent that is
        still processing leaves the deposit pending.

        Raises:
            ServiceError: DEPOSIT_NOT_FOUND, PAYMENT_GATEWAY_UNAVAILABLE.
        """
        deposit = await asyncio.to_thread(self._load_deposit, deposit_id)
        if deposit["status"] != DepositStatus.PENDING.value:
            return deposit, SettlementOutcome.ALREADY_SETTLED

        lookup = await self.lookup_intent(deposit["payment_intent_id"])
        if lookup.status is IntentStatus.TRANSIENT_ERROR:
            raise ServiceError(
                "PAYMENT_GATEWAY_UNAVAILABLE",
                "Payment gateway could not be reached",
                502,
                {"error": lookup.error},
            )

        outcome = await asyncio.to_thread(self.apply_lookup, deposit, lookup)
        return await asyncio.to_thread(self._load_deposit, deposit_id), outcome

    async def lookup_intent(self, intent_id: str, timeout: float | None = None) -> IntentLookup:
        """Gateway status lookup bounded by a timeout. A timeout is a transient error."""
        try:
            return await asyncio.wait_for(
                asyncio.to_thread(self._gateway.get_intent_status, intent_id),
                timeout=timeout if timeout is not None else self._gateway_timeout,
            )
        except TimeoutError:
            self._logger.warning(
                "Payment intent lookup timed out",
                extra={"payment_intent_id": intent_id},
            )
            return IntentLookup(IntentStatus.TRANSIENT_ERROR, error="timeout")

    def apply_lookup(self, deposit: dict[str, Any], lookup: IntentLookup) -> SettlementOutcome:
        """Settle a deposit according to a gateway lookup result."""
        if lookup.status is IntentStatus.SUCCEEDED:
            if self.settle_succeeded(deposit["deposit_id"], lookup.payment_method):
                return SettlementOutcome.CONFIRMED
            return SettlementOutcome.ALREADY_SETTLED
        if lookup.status in (IntentStatus.CANCELED, IntentStatus.FAILED):
            message = lookup.failure_message
            if message is None and lookup.status is IntentStatus.CANCELED:
                message = "Payment was canceled"
            if self.settle_failed(deposit["deposit_id"], message):
                return SettlementOutcome.FAILED
            return SettlementOutcome.ALREADY_SETTLED
        if lookup.status is IntentStatus.PROCESSING:
            return SettlementOutcome.PENDING
        return SettlementOutcome.ERRORED

    def settle_succeeded(self, deposit_id: str, payment_method: str | None) -> bool:
        """
        Mark a pending deposit completed and credit the escrow balance.

        Returns False if the deposit had already left pending; nothing is
        credited in that case.
        """
        with self._store.unit_of_work():
            deposit = self._load_deposit(deposit_id)
            rows = self._store.update_deposit(
                deposit_id,
                {
                    "status": DepositStatus.COMPLETED.value,
                    "completed_at": utc_now(),
                    "payment_method": payment_method,
                },
                expected_status=DepositStatus.PENDING.value,
            )
            if rows == 0:
                return False

            credited = self._store.atomic_adjust_balance(
                deposit["user_id"], deposit["amount"], kind=BalanceKind.ESCROW
            )
            if credited is AdjustResult.CONFLICT:
                self._logger.critical(
                    "Deposit owner account missing during settlement",
                    extra={"deposit_id": deposit_id, "user_id": deposit["user_id"]},
                )
                raise LedgerIntegrityError(
                    "Deposit owner account missing during settlement",
                    {"deposit_id": deposit_id},
                )

        self._logger.info(
            "Deposit confirmed",
            extra={
                "deposit_id": deposit_id,
                "user_id": deposit["user_id"],
                "amount": format_amount(deposit["amount"]),
            },
        )
        return True

    def settle_failed(self, deposit_id: str, failure_message: str | None) -> bool:
        """Mark a pending deposit failed. No balance change. Returns False if not pending."""
        with self._store.unit_of_work():
            rows = self._store.update_deposit(
                deposit_id,
                {"status": DepositStatus.FAILED.value, "failure_message": failure_message},
                expected_status=DepositStatus.PENDING.value,
            )
        if rows == 0:
            return False

        self._logger.info(
            "Deposit failed",
            extra={"deposit_id": deposit_id, "failure_message": failure_message},
        )
        return True
