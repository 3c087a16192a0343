"""Periodic re-synchronisation of pending deposits against the payment gateway."""

from __future__ import annotations

import asyncio
import uuid
from dataclasses import asdict, dataclass
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING, Any

from workwise_escrow.clients.payment_gateway import IntentStatus
from workwise_escrow.logging import get_logger
from workwise_escrow.services.deposit_service import SettlementOutcome
from workwise_escrow.services.ledger_store import utc_timestamp

if TYPE_CHECKING:
    from workwise_escrow.services.deposit_service import DepositService
    from workwise_escrow.services.ledger_store import LedgerStore

LEASE_NAME = "reconciliation"


@dataclass
class SweepSummary:
    """Counts from one sweep run."""

    scanned: int = 0
    confirmed: int = 0
    failed: int = 0
    errored: int = 0
    pending: int = 0
    already_settled: int = 0
    skipped: bool = False

    def record(self, outcome: SettlementOutcome) -> None:
        if outcome is SettlementOutcome.CONFIRMED:
            self.confirmed += 1
        elif outcome is SettlementOutcome.FAILED:
            self.failed += 1
        elif outcome is SettlementOutcome.PENDING:
            self.pending += 1
        elif outcome is SettlementOutcome.ALREADY_SETTLED:
            self.already_settled += 1
        else:
            self.errored += 1

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


class ReconciliationSweep:
    """
    Finds deposits still pending inside the lookback window and settles the
    ones the gateway reports as final.

    Deposits older than the window are left alone for manual review; they
    are never failed automatically. A problem with one deposit (timeout,
    SDK error, malformed response) is counted as errored and the batch goes
    on. Overlapping runs are prevented in-process by an asyncio lock and
    across processes by a lease row in the ledger.
    """

    def __init__(
        self,
        store: LedgerStore,
        deposits: DepositService,
        lookback_days: int,
        intent_timeout_seconds: float,
        lease_seconds: int,
    ) -> None:
        self._store = store
        self._deposits = deposits
        self._lookback = timedelta(days=lookback_days)
        self._intent_timeout = intent_timeout_seconds
        self._lease_seconds = lease_seconds
        self._holder = f"sweep-{uuid.uuid4()}"
        self._lock = asyncio.Lock()
        self._logger = get_logger(__name__)
        self.last_summary: SweepSummary | None = None

    async def run_once(self) -> SweepSummary:
        """Run one sweep, or report skipped if another run holds the lock or lease."""
        if self._lock.locked():
            self._logger.info("Reconciliation already running in this process, skipping")
            return SweepSummary(skipped=True)

        async with self._lock:
            acquiring = asyncio.ensure_future(
                asyncio.to_thread(
                    self._store.try_acquire_lease, LEASE_NAME, self._holder, self._lease_seconds
                )
            )
            try:
                acquired = await asyncio.shield(acquiring)
            except asyncio.CancelledError:
                # The worker thread may still take the lease after we were cancelled
                if await acquiring:
                    await asyncio.to_thread(self._store.release_lease, LEASE_NAME, self._holder)
                raise
            if not acquired:
                self._logger.info(
                    "Reconciliation lease held elsewhere, skipping",
                    extra={"lease": LEASE_NAME},
                )
                return SweepSummary(skipped=True)

            try:
                summary = await self._sweep()
            finally:
                await asyncio.to_thread(self._store.release_lease, LEASE_NAME, self._holder)

        self.last_summary = summary
        return summary

    async def _sweep(self) -> SweepSummary:
        summary = SweepSummary()
        cutoff = utc_timestamp(datetime.now(UTC) - self._lookback)
        pending = await asyncio.to_thread(self._store.list_pending_deposits, cutoff)
        summary.scanned = len(pending)

        for deposit in pending:
            summary.record(await self._reconcile_one(deposit))

        self._logger.info(
            "Reconciliation sweep finished",
            extra={**summary.to_dict(), "cutoff": cutoff},
        )
        return summary

    async def _reconcile_one(self, deposit: dict[str, Any]) -> SettlementOutcome:
        deposit_id = deposit["deposit_id"]
        try:
            lookup = await self._deposits.lookup_intent(
                deposit["payment_intent_id"], timeout=self._intent_timeout
            )
            if lookup.status is IntentStatus.TRANSIENT_ERROR:
                self._logger.warning(
                    "Gateway lookup failed during reconciliation",
                    extra={"deposit_id": deposit_id, "error": lookup.error},
                )
                return SettlementOutcome.ERRORED
            return await asyncio.to_thread(self._deposits.apply_lookup, deposit, lookup)
        except Exception:
            self._logger.exception(
                "Unhandled error reconciling deposit",
                extra={"deposit_id": deposit_id},
            )
            return SettlementOutcome.ERRORED


class ReconciliationScheduler:
    """Runs the sweep every interval_seconds until stopped."""

    def __init__(self, sweep: ReconciliationSweep, interval_seconds: int) -> None:
        self._sweep = sweep
        self._interval = interval_seconds
        self._running = False
        self._task: asyncio.Task[None] | None = None
        self._logger = get_logger(__name__)

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def run(self) -> None:
        """Run the sweep loop until stopped."""
        self._running = True
        self._logger.info(
            "Reconciliation scheduler starting",
            extra={"interval_seconds": self._interval},
        )
        while self._running:
            try:
                await self._sweep.run_once()
                await asyncio.sleep(self._interval)
            except asyncio.CancelledError:
                self._logger.info("Reconciliation scheduler cancelled, shutting down")
                self._running = False
            except Exception:
                self._logger.exception("Unhandled error in reconciliation cycle")
                await asyncio.sleep(self._interval)

        self._logger.info("Reconciliation scheduler stopped")

    def start(self) -> None:
        """Start the loop as a background task on the running event loop."""
        if self.running:
            return
        self._task = asyncio.create_task(self.run())

    async def stop(self) -> None:
        """Stop the loop and wait for the current cycle to end."""
        self._running = False
        if self._task is None:
            return
        self._task.cancel()
        await asyncio.gather(self._task, return_exceptions=True)
        self._task = None
