"""Entry point for the escrow API.

Usage::

    python -m workwise_escrow
"""

from __future__ import annotations

import uvicorn

from workwise_escrow.app import create_app
from workwise_escrow.config import get_settings


def main() -> None:
    """Run the API under uvicorn using the server section of the config."""
    settings = get_settings()
    uvicorn.run(
        create_app(),
        host=settings.server.host,
        port=settings.server.port,
        log_level=settings.server.log_level,
    )


if __name__ == "__main__":
    main()
