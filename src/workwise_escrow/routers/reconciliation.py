"""Manual trigger for the pending-deposit reconciliation sweep."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter

from workwise_escrow.core.state import get_app_state

router = APIRouter()


@router.post("/reconciliation/run")
async def run_reconciliation() -> dict[str, Any]:
    """Run one sweep now and return its summary."""
    state = get_app_state()
    if state.sweep is None:
        msg = "ReconciliationSweep not initialized"
        raise RuntimeError(msg)

    summary = await state.sweep.run_once()
    return summary.to_dict()
