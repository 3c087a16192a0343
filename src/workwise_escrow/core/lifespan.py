"""Application lifecycle management."""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

from workwise_escrow.clients.payment_gateway import StripeGateway
from workwise_escrow.config import get_settings
from workwise_escrow.core.state import get_app_state, init_app_state
from workwise_escrow.logging import get_logger, setup_logging
from workwise_escrow.services.deposit_service import DepositService
from workwise_escrow.services.escrow_state_machine import EscrowStateMachine
from workwise_escrow.services.ledger_store import LedgerStore
from workwise_escrow.services.reconciliation import (
    ReconciliationScheduler,
    ReconciliationSweep,
)
from workwise_escrow.services.wallet import WalletService
from workwise_escrow.services.webhook_processor import WebhookProcessor

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from fastapi import FastAPI

    from workwise_escrow.config import Settings
    from workwise_escrow.core.state import AppState


def build_services(settings: Settings) -> AppState:
    """
    Construct the store, gateway and services into a fresh AppState.

    Shared by the HTTP lifespan and the reconciliation CLI.
    """
    state = init_app_state()

    store = LedgerStore(db_path=settings.database.path)
    state.store = store

    gateway = StripeGateway(
        api_key=settings.payments.api_key,
        webhook_secret=settings.payments.webhook_secret,
        webhook_tolerance_seconds=settings.payments.webhook_tolerance_seconds,
    )
    state.gateway = gateway

    state.escrow = EscrowStateMachine(
        store=store,
        platform_fee_percent=settings.escrow.platform_fee_percent,
    )
    deposits = DepositService(
        store=store,
        gateway=gateway,
        currency=settings.payments.currency,
        minimum_deposit=settings.escrow.minimum_deposit,
        gateway_timeout_seconds=settings.payments.timeout_seconds,
    )
    state.deposits = deposits
    state.webhooks = WebhookProcessor(store=store, deposits=deposits)
    state.wallet = WalletService(store=store)
    state.sweep = ReconciliationSweep(
        store=store,
        deposits=deposits,
        lookback_days=settings.reconciliation.lookback_days,
        intent_timeout_seconds=settings.reconciliation.intent_timeout_seconds,
        lease_seconds=settings.reconciliation.lease_seconds,
    )
    return state


@asynccontextmanager
async def lifespan(_app: FastAPI) -> AsyncIterator[None]:
    """Manage application lifecycle."""
    # === STARTUP ===
    settings = get_settings()

    setup_logging(settings.logging.level, settings.service.name, settings.logging.directory)
    logger = get_logger(__name__)

    build_services(settings)
    state = get_app_state()

    if settings.reconciliation.enabled and state.sweep is not None:
        scheduler = ReconciliationScheduler(
            sweep=state.sweep,
            interval_seconds=settings.reconciliation.interval_seconds,
        )
        scheduler.start()
        state.scheduler = scheduler

    logger.info(
        "Service starting",
        extra={
            "service": settings.service.name,
            "version": settings.service.version,
            "port": settings.server.port,
            "db_path": settings.database.path,
            "payment_provider": settings.payments.provider,
            "reconciliation_enabled": settings.reconciliation.enabled,
        },
    )

    yield  # Application runs here

    # === SHUTDOWN ===
    logger.info("Service shutting down", extra={"uptime_seconds": state.uptime_seconds})

    if state.scheduler is not None:
        await state.scheduler.stop()

    # Close ledger store (closes SQLite database)
    if state.store is not None:
        state.store.close()
