"""Router test fixtures: app on a temp database with a fake gateway for intents."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

import pytest
from httpx import ASGITransport, AsyncClient

from tests.helpers import FakeGateway, make_config_yaml
from workwise_escrow.app import create_app
from workwise_escrow.config import clear_settings_cache
from workwise_escrow.core.lifespan import lifespan
from workwise_escrow.core.state import get_app_state, reset_app_state

if TYPE_CHECKING:
    from collections.abc import AsyncIterator
    from pathlib import Path


@pytest.fixture
def fake_gateway() -> FakeGateway:
    return FakeGateway()


@pytest.fixture
async def app(tmp_path: Path, monkeypatch, fake_gateway: FakeGateway) -> AsyncIterator[Any]:
    """
    Create a test app with a temp database.

    Intent creation and lookups go to the fake gateway. Webhook
    verification stays on the real Stripe adapter so signatures are checked.
    """
    config_path = tmp_path / "config.yaml"
    config_path.write_text(
        make_config_yaml(str(tmp_path / "escrow.db"), str(tmp_path / "logs"))
    )
    monkeypatch.setenv("CONFIG_PATH", str(config_path))

    clear_settings_cache()
    reset_app_state()

    test_app = create_app()
    async with lifespan(test_app):
        state = get_app_state()
        if state.deposits is not None:
            state.deposits._gateway = fake_gateway
        yield test_app

    reset_app_state()
    clear_settings_cache()


@pytest.fixture
async def client(app: Any) -> AsyncIterator[AsyncClient]:
    """Create an async HTTP client for the test app."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as c:
        yield c

