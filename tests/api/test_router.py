from __future__ import annotations

import httpx
import pytest
import pytest_asyncio
from fastapi import FastAPI

from api.router import router
from api.triggers.polling.gmail import GMAIL_POLL_LOCK_KEY
from shared.config import config


@pytest_asyncio.fixture
async def client(db):
    app = FastAPI()
    app.include_router(router)
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://testserver") as http:
        yield http


@pytest.mark.asyncio
async def test_empty_and_malformed_bodies_are_rejected(client):
    empty = await client.post("/api/webhooks/trigger/orders", content=b"")
    assert empty.status_code == 400
    assert empty.text == "Empty request body"

    malformed = await client.post(
        "/api/webhooks/trigger/orders", content=b"{oops", headers={"content-type": "application/json"}
    )
    assert malformed.status_code == 400
    assert malformed.text == "Invalid JSON payload"


@pytest.mark.asyncio
async def test_trigger_round_trip(client, workflow, make_webhook, fake_engine):
    await make_webhook(workflow, provider="generic", path="team/orders")

    response = await client.post("/api/webhooks/trigger/team/orders", json={"order": 11})
    assert response.status_code == 200
    assert response.json() == {"message": "Webhook processed"}
    assert fake_engine.calls[0]["trigger_input"]["webhook"]["data"]["path"] == "team/orders"

    duplicate = await client.post("/api/webhooks/trigger/team/orders", json={"order": 11})
    assert duplicate.status_code == 200
    assert duplicate.text == "Duplicate request"

    missing = await client.post("/api/webhooks/trigger/unknown", json={"order": 11})
    assert missing.status_code == 404


@pytest.mark.asyncio
async def test_get_endpoint_check(client, workflow, make_webhook):
    await make_webhook(workflow, provider="generic", path="orders")
    response = await client.get("/api/webhooks/trigger/orders")
    assert response.json() == {"message": "Webhook endpoint verified"}


@pytest.mark.asyncio
async def test_gmail_poll_endpoint(client, memory_stores, monkeypatch):
    completed = await client.get("/api/webhooks/poll/gmail")
    assert completed.status_code == 200
    assert completed.json()["status"] == "completed"
    assert completed.json()["total"] == 0

    await memory_stores["lock"].acquire(GMAIL_POLL_LOCK_KEY, "someone-else", 60)
    skipped = await client.get("/api/webhooks/poll/gmail")
    assert skipped.status_code == 202
    assert skipped.json()["status"] == "skip"

    monkeypatch.setattr(config, "cron_secret", "cron-token")
    denied = await client.get("/api/webhooks/poll/gmail")
    assert denied.status_code == 401
    wrong = await client.get("/api/webhooks/poll/gmail", headers={"Authorization": "Bearer cron-tokeN"})
    assert wrong.status_code == 401
    allowed = await client.get("/api/webhooks/poll/gmail", headers={"Authorization": "Bearer cron-token"})
    assert allowed.status_code == 202
