"""Read-side wallet queries: account registration, summaries and payment history."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from workwise_escrow.core.exceptions import ServiceError
from workwise_escrow.logging import get_logger
from workwise_escrow.services.ledger_store import DuplicateAccountError

if TYPE_CHECKING:
    from workwise_escrow.services.ledger_store import LedgerStore

DEFAULT_HISTORY_LIMIT = 50


class WalletService:
    """Account registration and balance reporting. Never mutates balances."""

    def __init__(self, store: LedgerStore) -> None:
        self._store = store
        self._logger = get_logger(__name__)

    def create_account(self, user_id: str) -> dict[str, Any]:
        """
        Register an account with zero balances.

        Raises:
            ServiceError: ACCOUNT_EXISTS if the user already has one.
        """
        try:
            account = self._store.create_account(user_id)
        except DuplicateAccountError as exc:
            raise ServiceError(
                "ACCOUNT_EXISTS",
                "Account already exists for this user",
                409,
                {"user_id": user_id},
            ) from exc
        self._logger.info("Account created", extra={"user_id": user_id})
        return account

    def _require_account(self, user_id: str) -> dict[str, Any]:
        account = self._store.get_account(user_id)
        if account is None:
            raise ServiceError("ACCOUNT_NOT_FOUND", "Account not found", 404, {"user_id": user_id})
        return account

    def get_summary(self, user_id: str) -> dict[str, Any]:
        """Balances plus what is released, pending and held for this user."""
        account = self._require_account(user_id)
        return {
            "user_id": user_id,
            "escrow_balance": account["escrow_balance"],
            "earnings_balance": account["earnings_balance"],
            "total_earnings": self._store.sum_completed_releases(user_id),
            "pending_earnings": self._store.sum_pending_earnings(user_id),
            "active_escrow": self._store.sum_active_escrow(user_id),
            "created_at": account["created_at"],
        }

    def get_history(self, user_id: str, limit: int = DEFAULT_HISTORY_LIMIT) -> list[dict[str, Any]]:
        """Transactions the user paid or received, newest first."""
        self._require_account(user_id)
        history = []
        for transaction in self._store.get_user_transactions(user_id, limit):
            entry = dict(transaction)
            entry["is_incoming"] = transaction["payee_id"] == user_id
            history.append(entry)
        return history

    def get_project_ledger(self, project_id: str) -> list[dict[str, Any]]:
        if self._store.get_project(project_id) is None:
            raise ServiceError(
                "PROJECT_NOT_FOUND",
                "Project not found",
                404,
                {"project_id": project_id},
            )
        return self._store.get_project_transactions(project_id)

    def get_project(self, project_id: str) -> dict[str, Any]:
        project = self._store.get_project(project_id)
        if project is None:
            raise ServiceError(
                "PROJECT_NOT_FOUND",
                "Project not found",
                404,
                {"project_id": project_id},
            )
        return project

    def get_stats(self) -> dict[str, Any]:
        """Counts reported by the health endpoint."""
        by_status = self._store.count_projects_by_status()
        return {
            "total_projects": sum(by_status.values()),
            "projects_by_status": by_status,
            "pending_deposits": self._store.count_pending_deposits(),
            "escrow_held": self._store.sum_pending_escrow(),
        }
