"""Account endpoints: registration, wallet summary, payment history."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse
from starlette.concurrency import run_in_threadpool

from workwise_escrow.core.exceptions import ServiceError
from workwise_escrow.core.state import get_app_state
from workwise_escrow.routers.helpers import parse_json_body, require_string
from workwise_escrow.schemas import (
    AccountResponse,
    HistoryEntryResponse,
    WalletSummaryResponse,
    dump,
)
from workwise_escrow.services.wallet import DEFAULT_HISTORY_LIMIT

router = APIRouter()

_MAX_HISTORY_LIMIT = 200


# === POST /accounts: Register Account ===


@router.post("/accounts", status_code=201)
async def create_account(request: Request) -> JSONResponse:
    """Register an account with zero balances."""
    body = await request.body()
    data = parse_json_body(body)
    user_id = require_string(data, "user_id")

    state = get_app_state()
    if state.wallet is None:
        msg = "WalletService not initialized"
        raise RuntimeError(msg)

    account = await run_in_threadpool(state.wallet.create_account, user_id)
    return JSONResponse(status_code=201, content=dump(AccountResponse, account))


# === GET /accounts/{user_id}: Wallet Summary ===


@router.get("/accounts/{user_id}")
async def get_account(user_id: str) -> dict[str, Any]:
    """Balances, released and pending earnings, and escrow held."""
    state = get_app_state()
    if state.wallet is None:
        msg = "WalletService not initialized"
        raise RuntimeError(msg)

    summary = await run_in_threadpool(state.wallet.get_summary, user_id)
    return dump(WalletSummaryResponse, summary)


# === GET /accounts/{user_id}/transactions: Payment History ===


@router.get("/accounts/{user_id}/transactions")
async def get_history(user_id: str, limit: int = DEFAULT_HISTORY_LIMIT) -> dict[str, Any]:
    """Transactions the user paid or received, newest first."""
    if limit < 1 or limit > _MAX_HISTORY_LIMIT:
        raise ServiceError(
            "INVALID_PAYLOAD",
            f"limit must be between 1 and {_MAX_HISTORY_LIMIT}",
            400,
            {"limit": limit},
        )

    state = get_app_state()
    if state.wallet is None:
        msg = "WalletService not initialized"
        raise RuntimeError(msg)

    history = await run_in_threadpool(state.wallet.get_history, user_id, limit)
    return {
        "user_id": user_id,
        "transactions": [dump(HistoryEntryResponse, entry) for entry in history],
    }
