"""Deposit endpoints: create intent, detail, gateway-checked confirm."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse
from starlette.concurrency import run_in_threadpool

from workwise_escrow.core.state import get_app_state
from workwise_escrow.money import parse_amount
from workwise_escrow.routers.helpers import parse_json_body, require_string
from workwise_escrow.schemas import DepositCreatedResponse, DepositResponse, dump

if TYPE_CHECKING:
    from workwise_escrow.services.deposit_service import DepositService

router = APIRouter()


def _deposits() -> DepositService:
    state = get_app_state()
    if state.deposits is None:
        msg = "DepositService not initialized"
        raise RuntimeError(msg)
    return state.deposits


@router.post("/deposits", status_code=201)
async def create_deposit(request: Request) -> JSONResponse:
    """Create a payment intent to top up the user's escrow balance."""
    data = parse_json_body(await request.body())
    user_id = require_string(data, "user_id")
    amount = parse_amount(data.get("amount"))

    deposit = await _deposits().create_deposit(user_id, amount)
    return JSONResponse(status_code=201, content=dump(DepositCreatedResponse, deposit))


@router.get("/deposits/{deposit_id}")
async def get_deposit(deposit_id: str) -> dict[str, Any]:
    """Deposit detail."""
    deposit = await run_in_threadpool(_deposits().get_deposit, deposit_id)
    return dump(DepositResponse, deposit)


@router.post("/deposits/{deposit_id}/confirm")
async def confirm_deposit(deposit_id: str) -> dict[str, Any]:
    """Ask the gateway about the intent and settle the deposit if it is final."""
    deposit, outcome = await _deposits().confirm_deposit(deposit_id)
    return {"deposit": dump(DepositResponse, deposit), "outcome": outcome.value}
