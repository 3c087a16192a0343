"""Pydantic response models for the API.

Money fields are ``Decimal``; pydantic serializes them as strings in JSON
mode, which keeps the two fraction digits intact ("950.00").
"""

from __future__ import annotations

from decimal import Decimal
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict


class HealthResponse(BaseModel):
    """Response model for GET /health."""

    model_config = ConfigDict(extra="forbid")
    status: Literal["ok"]
    uptime_seconds: float
    started_at: str
    total_projects: int
    projects_by_status: dict[str, int]
    pending_deposits: int
    escrow_held: Decimal
    reconciliation_running: bool


class ErrorResponse(BaseModel):
    """Standard error response model."""

    model_config = ConfigDict(extra="forbid")
    error: str
    message: str
    details: dict[str, object]


class AccountResponse(BaseModel):
    """A freshly registered account."""

    model_config = ConfigDict(extra="forbid")
    user_id: str
    escrow_balance: Decimal
    earnings_balance: Decimal
    created_at: str


class WalletSummaryResponse(BaseModel):
    """Response model for GET /accounts/{user_id}."""

    model_config = ConfigDict(extra="forbid")
    user_id: str
    escrow_balance: Decimal
    earnings_balance: Decimal
    total_earnings: Decimal
    pending_earnings: Decimal
    active_escrow: Decimal
    created_at: str


class ProjectResponse(BaseModel):
    """Full project detail."""

    model_config = ConfigDict(extra="forbid")
    project_id: str
    bid_id: str
    client_id: str
    worker_id: str
    agreed_amount: Decimal
    platform_fee: Decimal
    net_amount: Decimal
    status: str
    employer_approved: bool
    payment_released: bool
    started_at: str | None
    completed_at: str | None
    approved_at: str | None
    payment_released_at: str | None
    cancelled_at: str | None
    disputed_at: str | None
    completion_notes: str | None
    revision_notes: str | None
    dispute_reason: str | None
    cancellation_reason: str | None
    revision_count: int
    created_at: str


class TransactionResponse(BaseModel):
    """One ledger entry."""

    model_config = ConfigDict(extra="forbid")
    transaction_id: str
    project_id: str
    type: str
    status: str
    amount: Decimal
    platform_fee: Decimal
    net_amount: Decimal
    payer_id: str
    payee_id: str
    external_reference: str | None
    description: str | None
    failure_message: str | None
    created_at: str
    processed_at: str | None


class HistoryEntryResponse(TransactionResponse):
    """A ledger entry seen from one user's side."""

    is_incoming: bool


class DepositResponse(BaseModel):
    """Deposit detail."""

    model_config = ConfigDict(extra="forbid")
    deposit_id: str
    user_id: str
    amount: Decimal
    currency: str
    status: str
    payment_intent_id: str
    payment_method: str | None
    failure_message: str | None
    created_at: str
    completed_at: str | None


class DepositCreatedResponse(DepositResponse):
    """Deposit detail plus the secret the client needs to pay the intent."""

    client_secret: str


def dump(model: type[BaseModel], record: dict[str, Any]) -> dict[str, Any]:
    """Validate a store record against a response model and return JSON-ready data."""
    return model(**record).model_dump(mode="json")
