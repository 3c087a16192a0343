"""Service layer components."""

from workwise_escrow.services.deposit_service import DepositService
from workwise_escrow.services.escrow_state_machine import EscrowStateMachine
from workwise_escrow.services.ledger_store import LedgerStore
from workwise_escrow.services.reconciliation import ReconciliationScheduler, ReconciliationSweep
from workwise_escrow.services.wallet import WalletService
from workwise_escrow.services.webhook_processor import WebhookProcessor

__all__ = [
    "DepositService",
    "EscrowStateMachine",
    "LedgerStore",
    "ReconciliationScheduler",
    "ReconciliationSweep",
    "WalletService",
    "WebhookProcessor",
]
