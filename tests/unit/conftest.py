"""Unit test fixtures: cache reset, ledger store, services wired to a fake gateway."""

from __future__ import annotations

import logging
from decimal import Decimal
from typing import TYPE_CHECKING

import pytest

from tests.helpers import FakeGateway
from workwise_escrow.config import clear_settings_cache
from workwise_escrow.core.state import reset_app_state
from workwise_escrow.logging import SERVICE_LOGGER_NAME
from workwise_escrow.services.deposit_service import DepositService
from workwise_escrow.services.escrow_state_machine import EscrowStateMachine
from workwise_escrow.services.ledger_store import LedgerStore
from workwise_escrow.services.webhook_processor import WebhookProcessor

if TYPE_CHECKING:
    from collections.abc import Iterator
    from pathlib import Path


@pytest.fixture(autouse=True)
def _clear_caches():
    """Clear settings cache and app state between tests."""
    clear_settings_cache()
    reset_app_state()
    yield
    clear_settings_cache()
    reset_app_state()


@pytest.fixture(autouse=True)
def _reset_service_logger():
    """Drop handlers installed by setup_logging so they do not outlive the test."""
    yield
    logger = logging.getLogger(SERVICE_LOGGER_NAME)
    for handler in list(logger.handlers):
        handler.close()
    logger.handlers.clear()
    logger.setLevel(logging.NOTSET)
    logger.propagate = True


@pytest.fixture
def db_path(tmp_path: Path) -> str:
    return str(tmp_path / "escrow.db")


@pytest.fixture
def store(db_path: str) -> Iterator[LedgerStore]:
    ledger = LedgerStore(db_path=db_path)
    yield ledger
    ledger.close()


@pytest.fixture
def escrow(store: LedgerStore) -> EscrowStateMachine:
    return EscrowStateMachine(store=store, platform_fee_percent=Decimal("5"))


@pytest.fixture
def gateway() -> FakeGateway:
    return FakeGateway()


@pytest.fixture
def deposits(store: LedgerStore, gateway: FakeGateway) -> DepositService:
    return DepositService(
        store=store,
        gateway=gateway,
        currency="usd",
        minimum_deposit=Decimal("1.00"),
        gateway_timeout_seconds=2,
    )


@pytest.fixture
def webhooks(store: LedgerStore, deposits: DepositService) -> WebhookProcessor:
    return WebhookProcessor(store=store, deposits=deposits)
