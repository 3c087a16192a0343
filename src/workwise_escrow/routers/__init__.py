"""API routers."""

from workwise_escrow.routers import accounts, deposits, health, projects, reconciliation, webhooks

__all__ = ["accounts", "deposits", "health", "projects", "reconciliation", "webhooks"]
