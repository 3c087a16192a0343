"""Health check endpoint."""

from __future__ import annotations

from fastapi import APIRouter
from starlette.concurrency import run_in_threadpool

from workwise_escrow.core.state import get_app_state
from workwise_escrow.money import ZERO
from workwise_escrow.schemas import HealthResponse

router = APIRouter()


@router.get("/health", response_model=HealthResponse)
async def health_check() -> HealthResponse:
    """Check service health and return statistics."""
    state = get_app_state()
    total_projects = 0
    projects_by_status: dict[str, int] = {}
    pending_deposits = 0
    escrow_held = ZERO
    if state.wallet is not None:
        stats = await run_in_threadpool(state.wallet.get_stats)
        total_projects = stats["total_projects"]
        projects_by_status = stats["projects_by_status"]
        pending_deposits = stats["pending_deposits"]
        escrow_held = stats["escrow_held"]
    return HealthResponse(
        status="ok",
        uptime_seconds=state.uptime_seconds,
        started_at=state.started_at,
        total_projects=total_projects,
        projects_by_status=projects_by_status,
        pending_deposits=pending_deposits,
        escrow_held=escrow_held,
        reconciliation_running=state.scheduler is not None and state.scheduler.running,
    )
