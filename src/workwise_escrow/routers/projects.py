"""Project endpoints: accept-bid and every lifecycle transition."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse
from starlette.concurrency import run_in_threadpool

from workwise_escrow.core.state import get_app_state
from workwise_escrow.money import parse_amount
from workwise_escrow.routers.helpers import optional_string, parse_json_body, require_string
from workwise_escrow.schemas import ProjectResponse, TransactionResponse, dump

if TYPE_CHECKING:
    from workwise_escrow.services.escrow_state_machine import EscrowStateMachine

router = APIRouter()


def _escrow() -> EscrowStateMachine:
    state = get_app_state()
    if state.escrow is None:
        msg = "EscrowStateMachine not initialized"
        raise RuntimeError(msg)
    return state.escrow


def _with_transaction(project: dict[str, Any], transaction: dict[str, Any]) -> dict[str, Any]:
    return {
        "project": dump(ProjectResponse, project),
        "transaction": dump(TransactionResponse, transaction),
    }


# ---------------------------------------------------------------------------
# POST /projects: accept a bid
# ---------------------------------------------------------------------------


@router.post("/projects", status_code=201)
async def accept_bid(request: Request) -> JSONResponse:
    """Create a project from an accepted bid and lock the client's escrow."""
    body = await request.body()
    data = parse_json_body(body)
    bid_id = require_string(data, "bid_id")
    client_id = require_string(data, "client_id")
    worker_id = require_string(data, "worker_id")
    amount = parse_amount(data.get("amount"))

    project, created = await run_in_threadpool(
        _escrow().accept_bid, bid_id, client_id, worker_id, amount
    )
    return JSONResponse(
        status_code=201 if created else 200,
        content=dump(ProjectResponse, project),
    )


# ---------------------------------------------------------------------------
# GET /projects/{project_id}
# ---------------------------------------------------------------------------


@router.get("/projects/{project_id}")
async def get_project(project_id: str) -> dict[str, Any]:
    """Project detail."""
    state = get_app_state()
    if state.wallet is None:
        msg = "WalletService not initialized"
        raise RuntimeError(msg)

    project = await run_in_threadpool(state.wallet.get_project, project_id)
    return dump(ProjectResponse, project)


@router.get("/projects/{project_id}/transactions")
async def get_project_transactions(project_id: str) -> dict[str, Any]:
    """All ledger entries of a project in the order they were written."""
    state = get_app_state()
    if state.wallet is None:
        msg = "WalletService not initialized"
        raise RuntimeError(msg)

    entries = await run_in_threadpool(state.wallet.get_project_ledger, project_id)
    return {
        "project_id": project_id,
        "transactions": [dump(TransactionResponse, entry) for entry in entries],
    }


# ---------------------------------------------------------------------------
# Lifecycle transitions
# ---------------------------------------------------------------------------


@router.post("/projects/{project_id}/complete")
async def mark_complete(project_id: str, request: Request) -> dict[str, Any]:
    """Worker submits the work."""
    data = parse_json_body(await request.body())
    actor_id = require_string(data, "actor_id")
    notes = optional_string(data, "notes")

    project = await run_in_threadpool(_escrow().mark_complete, project_id, actor_id, notes)
    return dump(ProjectResponse, project)


@router.post("/projects/{project_id}/approve")
async def approve(project_id: str, request: Request) -> dict[str, Any]:
    """Client approves the work; the payment is released to the worker."""
    data = parse_json_body(await request.body())
    actor_id = require_string(data, "actor_id")

    project, release = await run_in_threadpool(_escrow().approve, project_id, actor_id)
    return _with_transaction(project, release)


@router.post("/projects/{project_id}/revision")
async def request_revision(project_id: str, request: Request) -> dict[str, Any]:
    """Client sends the work back for another round."""
    data = parse_json_body(await request.body())
    actor_id = require_string(data, "actor_id")
    notes = optional_string(data, "notes")

    project = await run_in_threadpool(_escrow().request_revision, project_id, actor_id, notes)
    return dump(ProjectResponse, project)


@router.post("/projects/{project_id}/dispute")
async def dispute(project_id: str, request: Request) -> dict[str, Any]:
    """Client contests submitted work."""
    data = parse_json_body(await request.body())
    actor_id = require_string(data, "actor_id")
    reason = require_string(data, "reason")

    project = await run_in_threadpool(_escrow().dispute, project_id, actor_id, reason)
    return dump(ProjectResponse, project)


@router.post("/projects/{project_id}/cancel")
async def cancel(project_id: str, request: Request) -> dict[str, Any]:
    """Either party cancels; the escrow is refunded to the client."""
    data = parse_json_body(await request.body())
    actor_id = require_string(data, "actor_id")
    reason = optional_string(data, "reason")

    project, refund = await run_in_threadpool(_escrow().cancel, project_id, actor_id, reason)
    return _with_transaction(project, refund)
