"""Run exactly one pending-deposit reconciliation sweep and exit.

Usage::

    workwise-reconcile
    workwise-reconcile --config /etc/workwise/config.yaml
"""

from __future__ import annotations

import argparse
import asyncio
import os
import sys

from workwise_escrow.config import clear_settings_cache, get_settings
from workwise_escrow.core.lifespan import build_services
from workwise_escrow.core.state import reset_app_state
from workwise_escrow.logging import get_logger, setup_logging
from workwise_escrow.services.reconciliation import SweepSummary


def _parse_args(argv: list[str] | None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="workwise-reconcile",
        description="Settle pending escrow deposits the payment gateway has finalised.",
    )
    parser.add_argument(
        "--config",
        default=None,
        help="Path to config.yaml (overrides CONFIG_PATH)",
    )
    return parser.parse_args(argv)


async def _run() -> SweepSummary:
    settings = get_settings()
    setup_logging(settings.logging.level, settings.service.name, settings.logging.directory)
    logger = get_logger(__name__)

    state = build_services(settings)
    if state.sweep is None or state.store is None:
        msg = "Reconciliation sweep not initialized"
        raise RuntimeError(msg)

    try:
        summary = await state.sweep.run_once()
    finally:
        state.store.close()
        reset_app_state()

    logger.info(
        "Pending deposits reconciled: %d confirmed, %d failed, %d errored",
        summary.confirmed,
        summary.failed,
        summary.errored,
        extra={"summary": summary.to_dict()},
    )
    return summary


def main(argv: list[str] | None = None) -> int:
    """Sync entry point. Per-deposit problems never change the exit code."""
    args = _parse_args(argv)
    if args.config is not None:
        os.environ["CONFIG_PATH"] = args.config
        clear_settings_cache()

    asyncio.run(_run())
    return 0


if __name__ == "__main__":
    sys.exit(main())
