"""Project lifecycle endpoint tests."""

from __future__ import annotations

from typing import Any

import pytest

from tests.helpers import CLIENT_ID, WORKER_ID, fund_client, post_json

pytestmark = pytest.mark.unit


def _bid(amount: Any = "1000.00", bid_id: str = "bid-1") -> dict[str, Any]:
    return {"bid_id": bid_id, "client_id": CLIENT_ID, "worker_id": WORKER_ID, "amount": amount}


@pytest.fixture
async def funded(client, fake_gateway):
    await fund_client(client, fake_gateway, "1000.00")


@pytest.fixture
async def project_id(client, funded) -> str:
    response = await post_json(client, "/projects", _bid())
    return response.json()["project_id"]


async def _complete(client, project_id: str) -> None:
    response = await post_json(
        client, f"/projects/{project_id}/complete", {"actor_id": WORKER_ID, "notes": "done"}
    )
    assert response.status_code == 200


# ---------------------------------------------------------------------------
# POST /projects
# ---------------------------------------------------------------------------


async def test_accept_bid_creates_project(client, funded):
    response = await post_json(client, "/projects", _bid())

    assert response.status_code == 201
    data = response.json()
    assert data["status"] == "in_progress"
    assert data["agreed_amount"] == "1000.00"
    assert data["platform_fee"] == "50.00"
    assert data["net_amount"] == "950.00"

    wallet = (await client.get(f"/accounts/{CLIENT_ID}")).json()
    assert wallet["escrow_balance"] == "0.00"
    assert wallet["active_escrow"] == "1000.00"


async def test_accept_bid_replay_returns_200(client, funded):
    first = await post_json(client, "/projects", _bid())
    second = await post_json(client, "/projects", _bid())

    assert second.status_code == 200
    assert second.json()["project_id"] == first.json()["project_id"]


async def test_accept_bid_insufficient_balance(client, funded):
    response = await post_json(client, "/projects", _bid("1000.01"))

    assert response.status_code == 402
    body = response.json()
    assert body["error"] == "INSUFFICIENT_ESCROW_BALANCE"
    assert body["details"] == {"required": "1000.01", "available": "1000.00"}


@pytest.mark.parametrize(
    "amount", [10.5, "0", "-1.00", "1.005", "ten", None, "1e30", "99999999999999999999.00"]
)
async def test_accept_bid_invalid_amount(client, funded, amount):
    response = await post_json(client, "/projects", _bid(amount))

    assert response.status_code == 400
    assert response.json()["error"] == "INVALID_AMOUNT"


async def test_accept_bid_missing_field(client, funded):
    payload = _bid()
    del payload["worker_id"]

    response = await post_json(client, "/projects", payload)

    assert response.status_code == 400
    assert response.json()["error"] == "INVALID_PAYLOAD"


# ---------------------------------------------------------------------------
# Reads
# ---------------------------------------------------------------------------


async def test_get_project(client, project_id):
    response = await client.get(f"/projects/{project_id}")

    assert response.status_code == 200
    assert response.json()["project_id"] == project_id


async def test_get_unknown_project(client):
    response = await client.get("/projects/prj-missing")

    assert response.status_code == 404
    assert response.json()["error"] == "PROJECT_NOT_FOUND"


async def test_project_transactions(client, project_id):
    response = await client.get(f"/projects/{project_id}/transactions")

    assert response.status_code == 200
    entries = response.json()["transactions"]
    assert [entry["type"] for entry in entries] == ["escrow"]
    assert entries[0]["status"] == "pending"


# ---------------------------------------------------------------------------
# Transitions
# ---------------------------------------------------------------------------


async def test_full_release_flow(client, project_id):
    await _complete(client, project_id)

    response = await post_json(client, f"/projects/{project_id}/approve", {"actor_id": CLIENT_ID})

    assert response.status_code == 200
    data = response.json()
    assert data["project"]["status"] == "approved"
    assert data["project"]["payment_released"] is True
    assert data["transaction"]["type"] == "release"
    assert data["transaction"]["net_amount"] == "950.00"

    worker = (await client.get(f"/accounts/{WORKER_ID}")).json()
    assert worker["earnings_balance"] == "950.00"
    assert worker["total_earnings"] == "950.00"


async def test_second_approve_returns_same_transaction(client, project_id):
    await _complete(client, project_id)

    first = await post_json(client, f"/projects/{project_id}/approve", {"actor_id": CLIENT_ID})
    second = await post_json(client, f"/projects/{project_id}/approve", {"actor_id": CLIENT_ID})

    assert second.status_code == 200
    assert (
        second.json()["transaction"]["transaction_id"]
        == first.json()["transaction"]["transaction_id"]
    )
    worker = (await client.get(f"/accounts/{WORKER_ID}")).json()
    assert worker["earnings_balance"] == "950.00"


async def test_approve_before_completion(client, project_id):
    response = await post_json(client, f"/projects/{project_id}/approve", {"actor_id": CLIENT_ID})

    assert response.status_code == 409
    body = response.json()
    assert body["error"] == "INVALID_TRANSITION"
    assert body["details"]["current_status"] == "in_progress"


async def test_complete_by_client_forbidden(client, project_id):
    response = await post_json(client, f"/projects/{project_id}/complete", {"actor_id": CLIENT_ID})

    assert response.status_code == 403
    assert response.json()["error"] == "FORBIDDEN"


async def test_revision_and_dispute(client, project_id):
    await _complete(client, project_id)

    disputed = await post_json(
        client,
        f"/projects/{project_id}/dispute",
        {"actor_id": CLIENT_ID, "reason": "wrong format"},
    )
    assert disputed.status_code == 200
    assert disputed.json()["status"] == "disputed"

    revised = await post_json(
        client,
        f"/projects/{project_id}/revision",
        {"actor_id": CLIENT_ID, "notes": "use PDF"},
    )
    assert revised.status_code == 200
    assert revised.json()["status"] == "in_progress"
    assert revised.json()["revision_count"] == 1


async def test_dispute_requires_reason(client, project_id):
    await _complete(client, project_id)

    response = await post_json(client, f"/projects/{project_id}/dispute", {"actor_id": CLIENT_ID})

    assert response.status_code == 400
    assert response.json()["error"] == "INVALID_PAYLOAD"


async def test_cancel_refunds_client(client, project_id):
    response = await post_json(
        client,
        f"/projects/{project_id}/cancel",
        {"actor_id": WORKER_ID, "reason": "cannot deliver"},
    )

    assert response.status_code == 200
    data = response.json()
    assert data["project"]["status"] == "cancelled"
    assert data["transaction"]["type"] == "refund"
    assert data["transaction"]["amount"] == "1000.00"

    wallet = (await client.get(f"/accounts/{CLIENT_ID}")).json()
    assert wallet["escrow_balance"] == "1000.00"
    assert wallet["active_escrow"] == "0.00"


async def test_cancel_after_release(client, project_id):
    await _complete(client, project_id)
    await post_json(client, f"/projects/{project_id}/approve", {"actor_id": CLIENT_ID})

    response = await post_json(client, f"/projects/{project_id}/cancel", {"actor_id": CLIENT_ID})

    assert response.status_code == 409
    assert response.json()["error"] == "CANCELLATION_NOT_ALLOWED"
