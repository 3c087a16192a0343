"""Deposit endpoint tests."""

from __future__ import annotations

import pytest

from tests.helpers import CLIENT_ID, post_json

pytestmark = pytest.mark.unit


@pytest.fixture
async def account(client):
    await post_json(client, "/accounts", {"user_id": CLIENT_ID})


async def test_create_deposit(client, account, fake_gateway):
    response = await post_json(client, "/deposits", {"user_id": CLIENT_ID, "amount": "80.00"})

    assert response.status_code == 201
    data = response.json()
    assert data["status"] == "pending"
    assert data["amount"] == "80.00"
    assert data["client_secret"].startswith(data["payment_intent_id"])
    assert fake_gateway.created[0][2]["purpose"] == "escrow_deposit"


async def test_create_deposit_below_minimum(client, account):
    response = await post_json(client, "/deposits", {"user_id": CLIENT_ID, "amount": "0.50"})

    assert response.status_code == 400
    assert response.json()["error"] == "INVALID_AMOUNT"


async def test_create_deposit_gateway_down(client, account, fake_gateway):
    fake_gateway.fail_create = True

    response = await post_json(client, "/deposits", {"user_id": CLIENT_ID, "amount": "10.00"})

    assert response.status_code == 502
    assert response.json()["error"] == "PAYMENT_GATEWAY_UNAVAILABLE"


async def test_get_deposit(client, account):
    created = (
        await post_json(client, "/deposits", {"user_id": CLIENT_ID, "amount": "10.00"})
    ).json()

    response = await client.get(f"/deposits/{created['deposit_id']}")

    assert response.status_code == 200
    data = response.json()
    assert data["deposit_id"] == created["deposit_id"]
    assert "client_secret" not in data


async def test_get_unknown_deposit(client):
    response = await client.get("/deposits/dep-missing")

    assert response.status_code == 404
    assert response.json()["error"] == "DEPOSIT_NOT_FOUND"


async def test_confirm_deposit(client, account, fake_gateway):
    created = (
        await post_json(client, "/deposits", {"user_id": CLIENT_ID, "amount": "10.00"})
    ).json()
    fake_gateway.succeed(created["payment_intent_id"])

    response = await client.post(f"/deposits/{created['deposit_id']}/confirm")

    assert response.status_code == 200
    data = response.json()
    assert data["outcome"] == "confirmed"
    assert data["deposit"]["status"] == "completed"
    wallet = (await client.get(f"/accounts/{CLIENT_ID}")).json()
    assert wallet["escrow_balance"] == "10.00"


async def test_confirm_still_processing(client, account):
    created = (
        await post_json(client, "/deposits", {"user_id": CLIENT_ID, "amount": "10.00"})
    ).json()

    response = await client.post(f"/deposits/{created['deposit_id']}/confirm")

    assert response.status_code == 200
    assert response.json()["outcome"] == "pending"


@pytest.mark.parametrize("amount", ["1e30", "99999999999999999999.00"])
async def test_create_deposit_rejects_huge_amount(client, account, fake_gateway, amount):
    response = await post_json(client, "/deposits", {"user_id": CLIENT_ID, "amount": amount})

    assert response.status_code == 400
    assert response.json()["error"] == "INVALID_AMOUNT"
    assert fake_gateway.created == []
