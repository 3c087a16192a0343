"""Project status transitions and the balance movements that go with them."""

from __future__ import annotations

import uuid
from decimal import Decimal
from typing import TYPE_CHECKING, Any

from workwise_escrow.core.exceptions import (
    CancellationNotAllowed,
    InsufficientEscrowBalance,
    InvalidTransition,
    LedgerIntegrityError,
    ServiceError,
)
from workwise_escrow.domain import (
    AdjustResult,
    BalanceKind,
    ProjectStatus,
    TransactionStatus,
    TransactionType,
    can_transition,
)
from workwise_escrow.logging import get_logger
from workwise_escrow.money import ZERO, compute_fee, format_amount
from workwise_escrow.services.ledger_store import DuplicateBidError, utc_now

if TYPE_CHECKING:
    from workwise_escrow.services.ledger_store import LedgerStore

_CLIENT = "client"
_WORKER = "worker"


class EscrowStateMachine:
    """
    Drives a project through its lifecycle.

    Every public operation runs as one unit of work on the ledger store:
    preconditions are re-read inside the transaction and any failure rolls
    back all of its writes. Balance-moving updates are conditional on the
    status observed when the unit began, so a concurrent writer makes the
    loser see zero affected rows instead of a double movement.
    """

    def __init__(self, store: LedgerStore, platform_fee_percent: Decimal) -> None:
        self._store = store
        self._fee_percent = platform_fee_percent
        self._logger = get_logger(__name__)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _load_project(self, project_id: str) -> dict[str, Any]:
        project = self._store.get_project(project_id)
        if project is None:
            raise ServiceError(
                "PROJECT_NOT_FOUND",
                "Project not found",
                404,
                {"project_id": project_id},
            )
        return project

    def _require_party(
        self,
        project: dict[str, Any],
        actor_id: str,
        parties: tuple[str, ...],
        action: str,
    ) -> None:
        if _CLIENT in parties and actor_id == project["client_id"]:
            return
        if _WORKER in parties and actor_id == project["worker_id"]:
            return
        raise ServiceError(
            "FORBIDDEN",
            f"Only the project's {' or '.join(parties)} can {action}",
            403,
            {"project_id": project["project_id"]},
        )

    def _require_transition(
        self,
        project: dict[str, Any],
        target: ProjectStatus,
        sources: tuple[ProjectStatus, ...],
    ) -> ProjectStatus:
        current = ProjectStatus(project["status"])
        if current not in sources or not can_transition(current, target):
            expected = " or ".join(source.value for source in sources)
            raise InvalidTransition(
                f"Project must be {expected} to become {target.value}",
                {"project_id": project["project_id"], "current_status": current.value},
            )
        return current

    def _integrity_violation(self, message: str, details: dict[str, Any]) -> LedgerIntegrityError:
        self._logger.critical(message, extra=details)
        return LedgerIntegrityError(message, details)

    def _escrow_transaction(self, project_id: str) -> dict[str, Any]:
        entries = self._store.get_project_transactions(project_id, TransactionType.ESCROW.value)
        if len(entries) != 1:
            raise self._integrity_violation(
                "Project does not have exactly one escrow entry",
                {"project_id": project_id, "escrow_entries": len(entries)},
            )
        return entries[0]

    def _single_entry(self, project_id: str, tx_type: TransactionType) -> dict[str, Any] | None:
        entries = self._store.get_project_transactions(project_id, tx_type.value)
        if len(entries) == 0:
            return None
        return entries[0]

    def _settled_gross(self, project_id: str, tx_type: TransactionType) -> Decimal:
        entries = self._store.get_project_transactions(project_id, tx_type.value)
        return sum(
            (entry["amount"] for entry in entries if entry["status"] == "completed"),
            ZERO,
        )

    # ------------------------------------------------------------------
    # accept_bid: open -> in_progress
    # ------------------------------------------------------------------

    def accept_bid(
        self,
        bid_id: str,
        client_id: str,
        worker_id: str,
        amount: Decimal,
    ) -> tuple[dict[str, Any], bool]:
        """
        Turn an accepted bid into an in-progress project and lock its funds.

        Returns (project, created). Re-submitting the same bid with the same
        terms returns the existing project with created=False and no second
        debit.

        Raises:
            ServiceError: INVALID_PAYLOAD, ACCOUNT_NOT_FOUND, BID_ALREADY_ACCEPTED.
            InsufficientEscrowBalance: the client cannot cover the amount.
        """
        if client_id == worker_id:
            raise ServiceError(
                "INVALID_PAYLOAD",
                "Client and worker must be different users",
                400,
                {},
            )
        if not can_transition(ProjectStatus.OPEN, ProjectStatus.IN_PROGRESS):
            msg = "Transition table does not allow open -> in_progress"
            raise RuntimeError(msg)

        fee, net = compute_fee(amount, self._fee_percent)

        try:
            with self._store.unit_of_work():
                existing = self._store.get_project_by_bid(bid_id)
                if existing is not None:
                    return self._replay_accept(existing, client_id, worker_id, amount), False

                for user_id in (client_id, worker_id):
                    if self._store.get_account(user_id) is None:
                        raise ServiceError(
                            "ACCOUNT_NOT_FOUND",
                            "Account not found",
                            404,
                            {"user_id": user_id},
                        )

                result = self._store.atomic_adjust_balance(
                    client_id, -amount, kind=BalanceKind.ESCROW
                )
                if result is AdjustResult.CONFLICT:
                    available = self._store.get_balance(client_id, BalanceKind.ESCROW)
                    raise InsufficientEscrowBalance(
                        "Insufficient escrow balance to accept this bid",
                        {
                            "required": format_amount(amount),
                            "available": format_amount(available),
                        },
                    )

                now = utc_now()
                project_id = f"prj-{uuid.uuid4()}"
                project: dict[str, Any] = {
                    "project_id": project_id,
                    "bid_id": bid_id,
                    "client_id": client_id,
                    "worker_id": worker_id,
                    "agreed_amount": amount,
                    "platform_fee": fee,
                    "net_amount": net,
                    "status": ProjectStatus.IN_PROGRESS.value,
                    "employer_approved": False,
                    "payment_released": False,
                    "started_at": now,
                    "completed_at": None,
                    "approved_at": None,
                    "payment_released_at": None,
                    "cancelled_at": None,
                    "disputed_at": None,
                    "completion_notes": None,
                    "revision_notes": None,
                    "dispute_reason": None,
                    "cancellation_reason": None,
                    "revision_count": 0,
                    "created_at": now,
                }
                self._store.insert_project(project)
                self._store.append_transaction(
                    {
                        "project_id": project_id,
                        "type": TransactionType.ESCROW.value,
                        "status": TransactionStatus.PENDING.value,
                        "amount": amount,
                        "platform_fee": fee,
                        "net_amount": net,
                        "payer_id": client_id,
                        "payee_id": worker_id,
                        "external_reference": bid_id,
                        "description": f"Escrow for bid {bid_id}",
                        "created_at": now,
                    }
                )
        except DuplicateBidError:
            # Another writer created the project between our read and insert
            existing = self._store.get_project_by_bid(bid_id)
            if existing is None:
                raise
            return self._replay_accept(existing, client_id, worker_id, amount), False

        self._logger.info(
            "Bid accepted, escrow locked",
            extra={
                "project_id": project_id,
                "bid_id": bid_id,
                "client_id": client_id,
                "worker_id": worker_id,
                "amount": format_amount(amount),
                "platform_fee": format_amount(fee),
            },
        )
        return self._load_project(project_id), True

    def _replay_accept(
        self,
        existing: dict[str, Any],
        client_id: str,
        worker_id: str,
        amount: Decimal,
    ) -> dict[str, Any]:
        same_terms = (
            existing["client_id"] == client_id
            and existing["worker_id"] == worker_id
            and existing["agreed_amount"] == amount
        )
        if not same_terms:
            raise ServiceError(
                "BID_ALREADY_ACCEPTED",
                "This bid was already accepted with different terms",
                409,
                {"bid_id": existing["bid_id"], "project_id": existing["project_id"]},
            )
        return existing

    # ------------------------------------------------------------------
    # Non-monetary transitions
    # ------------------------------------------------------------------

    def mark_complete(self, project_id: str, actor_id: str, notes: str | None) -> dict[str, Any]:
        """Worker submits the work: in_progress -> completed."""
        with self._store.unit_of_work():
            project = self._load_project(project_id)
            self._require_party(project, actor_id, (_WORKER,), "mark it complete")
            current = self._require_transition(
                project, ProjectStatus.COMPLETED, (ProjectStatus.IN_PROGRESS,)
            )
            rows = self._store.update_project(
                project_id,
                {
                    "status": ProjectStatus.COMPLETED.value,
                    "completed_at": utc_now(),
                    "completion_notes": notes,
                },
                expected={"status": current.value},
            )
            if rows == 0:
                raise self._stale(project_id)

        self._logger.info("Project marked complete", extra={"project_id": project_id})
        return self._load_project(project_id)

    def request_revision(
        self,
        project_id: str,
        actor_id: str,
        notes: str | None,
    ) -> dict[str, Any]:
        """Client sends the work back: completed or disputed -> in_progress."""
        with self._store.unit_of_work():
            project = self._load_project(project_id)
            self._require_party(project, actor_id, (_CLIENT,), "request a revision")
            current = self._require_transition(
                project,
                ProjectStatus.IN_PROGRESS,
                (ProjectStatus.COMPLETED, ProjectStatus.DISPUTED),
            )
            rows = self._store.update_project(
                project_id,
                {
                    "status": ProjectStatus.IN_PROGRESS.value,
                    "revision_notes": notes,
                    "revision_count": int(project["revision_count"]) + 1,
                    "employer_approved": False,
                },
                expected={"status": current.value, "revision_count": project["revision_count"]},
            )
            if rows == 0:
                raise self._stale(project_id)

        self._logger.info(
            "Revision requested",
            extra={"project_id": project_id, "revision_count": project["revision_count"] + 1},
        )
        return self._load_project(project_id)

    def dispute(self, project_id: str, actor_id: str, reason: str) -> dict[str, Any]:
        """Client contests submitted work: completed -> disputed."""
        with self._store.unit_of_work():
            project = self._load_project(project_id)
            self._require_party(project, actor_id, (_CLIENT,), "dispute it")
            current = self._require_transition(
                project, ProjectStatus.DISPUTED, (ProjectStatus.COMPLETED,)
            )
            rows = self._store.update_project(
                project_id,
                {
                    "status": ProjectStatus.DISPUTED.value,
                    "disputed_at": utc_now(),
                    "dispute_reason": reason,
                },
                expected={"status": current.value},
            )
            if rows == 0:
                raise self._stale(project_id)

        self._logger.info("Project disputed", extra={"project_id": project_id})
        return self._load_project(project_id)

    def _stale(self, project_id: str) -> InvalidTransition:
        project = self._load_project(project_id)
        return InvalidTransition(
            "Project changed concurrently; transition no longer allowed",
            {"project_id": project_id, "current_status": project["status"]},
        )

    # ------------------------------------------------------------------
    # approve / release
    # ------------------------------------------------------------------

    def approve(self, project_id: str, actor_id: str) -> tuple[dict[str, Any], dict[str, Any]]:
        """
        Client accepts the work and pays the worker.

        Returns (project, release_transaction). Approving an already released
        project returns the existing release entry.
        """
        with self._store.unit_of_work():
            project = self._load_project(project_id)
            self._require_party(project, actor_id, (_CLIENT,), "approve it")
            if not project["payment_released"]:
                self._require_transition(
                    project, ProjectStatus.APPROVED, (ProjectStatus.COMPLETED,)
                )
            release = self.release(project_id)
        return self._load_project(project_id), release

    def release(self, project_id: str) -> dict[str, Any]:
        """
        Move the escrowed amount to the worker's earnings, exactly once.

        Release is full-or-nothing: the whole agreed amount moves, the worker
        is credited the net and the platform keeps the fee. A caller that
        loses a concurrent race gets the winner's release entry back.
        """
        with self._store.unit_of_work():
            project = self._load_project(project_id)
            if project["payment_released"]:
                return self._existing_release(project)

            current = ProjectStatus(project["status"])
            if current not in (ProjectStatus.COMPLETED, ProjectStatus.APPROVED):
                raise InvalidTransition(
                    "Project must be completed before payment can be released",
                    {"project_id": project_id, "current_status": current.value},
                )

            now = utc_now()
            rows = self._store.update_project(
                project_id,
                {
                    "payment_released": True,
                    "status": ProjectStatus.APPROVED.value,
                    "employer_approved": True,
                    "approved_at": now,
                    "payment_released_at": now,
                },
                expected={
                    "payment_released": False,
                    "status": (ProjectStatus.COMPLETED.value, ProjectStatus.APPROVED.value),
                },
            )
            if rows == 0:
                reloaded = self._load_project(project_id)
                if reloaded["payment_released"]:
                    return self._existing_release(reloaded)
                raise self._stale(project_id)

            escrow = self._escrow_transaction(project_id)
            gross = project["agreed_amount"]
            fee = project["platform_fee"]
            net = project["net_amount"]
            refunded = self._settled_gross(project_id, TransactionType.REFUND)
            if escrow["status"] != TransactionStatus.PENDING.value:
                raise self._integrity_violation(
                    "Escrow entry already settled before release",
                    {"project_id": project_id, "escrow_status": escrow["status"]},
                )
            if fee + net != gross or refunded + gross > escrow["amount"]:
                raise self._integrity_violation(
                    "Release would exceed the escrowed amount",
                    {
                        "project_id": project_id,
                        "escrow_amount": format_amount(escrow["amount"]),
                        "release_amount": format_amount(gross),
                        "refunded_amount": format_amount(refunded),
                    },
                )

            credited = self._store.atomic_adjust_balance(
                project["worker_id"], net, kind=BalanceKind.EARNINGS
            )
            if credited is AdjustResult.CONFLICT:
                raise self._integrity_violation(
                    "Worker account missing during release",
                    {"project_id": project_id, "worker_id": project["worker_id"]},
                )

            transaction_id = self._store.append_transaction(
                {
                    "project_id": project_id,
                    "type": TransactionType.RELEASE.value,
                    "status": TransactionStatus.COMPLETED.value,
                    "amount": gross,
                    "platform_fee": fee,
                    "net_amount": net,
                    "payer_id": project["client_id"],
                    "payee_id": project["worker_id"],
                    "external_reference": escrow["transaction_id"],
                    "description": f"Payment released for project {project_id}",
                    "created_at": now,
                    "processed_at": now,
                }
            )
            settled = self._store.update_transaction(
                escrow["transaction_id"],
                {"status": TransactionStatus.COMPLETED.value, "processed_at": now},
                expected_status=TransactionStatus.PENDING.value,
            )
            if settled == 0:
                raise self._integrity_violation(
                    "Escrow entry settled concurrently during release",
                    {"project_id": project_id, "transaction_id": escrow["transaction_id"]},
                )

        self._logger.info(
            "Payment released",
            extra={
                "project_id": project_id,
                "transaction_id": transaction_id,
                "worker_id": project["worker_id"],
                "amount": format_amount(gross),
                "platform_fee": format_amount(fee),
                "net_amount": format_amount(net),
            },
        )
        return self._load_transaction(transaction_id)

    def _existing_release(self, project: dict[str, Any]) -> dict[str, Any]:
        release = self._single_entry(project["project_id"], TransactionType.RELEASE)
        if release is None or release["net_amount"] != project["net_amount"]:
            raise self._integrity_violation(
                "Released project has no matching release entry",
                {"project_id": project["project_id"]},
            )
        return release

    def _load_transaction(self, transaction_id: str) -> dict[str, Any]:
        transaction = self._store.get_transaction(transaction_id)
        if transaction is None:
            msg = f"Transaction {transaction_id} missing after insert"
            raise RuntimeError(msg)
        return transaction

    # ------------------------------------------------------------------
    # cancel / refund
    # ------------------------------------------------------------------

    def cancel(
        self,
        project_id: str,
        actor_id: str,
        reason: str | None,
    ) -> tuple[dict[str, Any], dict[str, Any]]:
        """
        Either party calls the project off and the client gets the escrow back.

        Returns (project, refund_transaction). Cancelling twice returns the
        first refund.
        """
        with self._store.unit_of_work():
            project = self._load_project(project_id)
            self._require_party(project, actor_id, (_CLIENT, _WORKER), "cancel it")
            refund = self.refund(project_id, reason=reason)
        return self._load_project(project_id), refund

    def refund(self, project_id: str, reason: str | None = None) -> dict[str, Any]:
        """
        Return whatever is still escrowed to the client and cancel the project.

        Raises:
            CancellationNotAllowed: payment was already released.
            LedgerIntegrityError: the ledger would go out of balance.
        """
        with self._store.unit_of_work():
            project = self._load_project(project_id)
            current = ProjectStatus(project["status"])
            if current is ProjectStatus.CANCELLED:
                return self._existing_refund(project_id)
            if project["payment_released"]:
                raise CancellationNotAllowed(
                    "Payment was already released; the project cannot be cancelled",
                    {"project_id": project_id, "current_status": current.value},
                )
            if not can_transition(current, ProjectStatus.CANCELLED):
                raise InvalidTransition(
                    f"Project cannot be cancelled from {current.value}",
                    {"project_id": project_id, "current_status": current.value},
                )

            escrow = self._escrow_transaction(project_id)
            released = self._settled_gross(project_id, TransactionType.RELEASE)
            remaining = escrow["amount"] - released
            if remaining < 0 or escrow["status"] != TransactionStatus.PENDING.value:
                raise self._integrity_violation(
                    "Refund would exceed the escrowed amount",
                    {
                        "project_id": project_id,
                        "escrow_amount": format_amount(escrow["amount"]),
                        "released_amount": format_amount(released),
                        "escrow_status": escrow["status"],
                    },
                )

            now = utc_now()
            rows = self._store.update_project(
                project_id,
                {
                    "status": ProjectStatus.CANCELLED.value,
                    "cancelled_at": now,
                    "cancellation_reason": reason,
                },
                expected={"status": current.value, "payment_released": False},
            )
            if rows == 0:
                reloaded = self._load_project(project_id)
                if reloaded["status"] == ProjectStatus.CANCELLED.value:
                    return self._existing_refund(project_id)
                if reloaded["payment_released"]:
                    raise CancellationNotAllowed(
                        "Payment was already released; the project cannot be cancelled",
                        {"project_id": project_id, "current_status": reloaded["status"]},
                    )
                raise self._stale(project_id)

            if remaining > 0:
                credited = self._store.atomic_adjust_balance(
                    project["client_id"], remaining, kind=BalanceKind.ESCROW
                )
                if credited is AdjustResult.CONFLICT:
                    raise self._integrity_violation(
                        "Client account missing during refund",
                        {"project_id": project_id, "client_id": project["client_id"]},
                    )

            transaction_id = self._store.append_transaction(
                {
                    "project_id": project_id,
                    "type": TransactionType.REFUND.value,
                    "status": TransactionStatus.COMPLETED.value,
                    "amount": remaining,
                    "platform_fee": ZERO,
                    "net_amount": remaining,
                    "payer_id": project["worker_id"],
                    "payee_id": project["client_id"],
                    "external_reference": escrow["transaction_id"],
                    "description": reason or f"Refund for cancelled project {project_id}",
                    "created_at": now,
                    "processed_at": now,
                }
            )
            settled = self._store.update_transaction(
                escrow["transaction_id"],
                {"status": TransactionStatus.CANCELLED.value, "processed_at": now},
                expected_status=TransactionStatus.PENDING.value,
            )
            if settled == 0:
                raise self._integrity_violation(
                    "Escrow entry settled concurrently during refund",
                    {"project_id": project_id, "transaction_id": escrow["transaction_id"]},
                )

        self._logger.info(
            "Project cancelled, escrow refunded",
            extra={
                "project_id": project_id,
                "transaction_id": transaction_id,
                "client_id": project["client_id"],
                "amount": format_amount(remaining),
                "previous_status": current.value,
            },
        )
        return self._load_transaction(transaction_id)

    def _existing_refund(self, project_id: str) -> dict[str, Any]:
        refund = self._single_entry(project_id, TransactionType.REFUND)
        if refund is None:
            raise self._integrity_violation(
                "Cancelled project has no refund entry",
                {"project_id": project_id},
            )
        return refund
