from __future__ import annotations

from datetime import datetime, timedelta, timezone

import httpx
import pytest

from shared import oauth
from shared.database.models_oauth import OAuthConnection


@pytest.fixture(autouse=True)
def plaintext_tokens(monkeypatch):
    monkeypatch.setattr(oauth.config, "encryption_key", None)
    monkeypatch.setattr(oauth.config, "google_client_id", None)
    monkeypatch.setattr(oauth.config, "google_client_secret", None)


async def _connection(user, *, expires_at=None, refresh_token="refresh-1"):
    return await OAuthConnection.create(
        user=user,
        provider="google-email",
        provider_account_id="ada@example.com",
        access_token_enc="access-1",
        refresh_token_enc=refresh_token,
        expires_at=expires_at,
    )


@pytest.mark.asyncio
async def test_active_connection_returns_access_token(db_user):
    await _connection(db_user, expires_at=datetime.now(timezone.utc) + timedelta(hours=1))
    assert await oauth.get_oauth_token("user-1", "google-email") == "access-1"


@pytest.mark.asyncio
async def test_missing_user_connection_or_credentials_yield_none(db_user):
    assert await oauth.get_oauth_token("ghost", "google-email") is None
    assert await oauth.get_oauth_token("user-1", "airtable") is None

    await _connection(db_user, expires_at=datetime.now(timezone.utc) - timedelta(minutes=1))
    assert await oauth.get_oauth_token("user-1", "google-email") is None


@pytest.mark.asyncio
async def test_refresh_persists_new_token(db_user):
    connection = await _connection(db_user, expires_at=datetime.now(timezone.utc) - timedelta(minutes=1))
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["url"] = str(request.url)
        seen["body"] = request.content.decode()
        return httpx.Response(200, json={"access_token": "access-2", "expires_in": 600, "scope": "gmail.readonly"})

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        refreshed = await oauth.refresh_oauth_token(connection, "cid", "csecret", http_client=client)

    assert seen["url"] == "https://oauth2.googleapis.com/token"
    assert "grant_type=refresh_token" in seen["body"]
    stored = await OAuthConnection.get(id=connection.id)
    assert stored.access_token_enc == "access-2"
    assert stored.scopes == "gmail.readonly"
    assert not refreshed.is_expired


@pytest.mark.asyncio
async def test_refresh_without_refresh_token_fails(db_user):
    connection = await _connection(db_user, refresh_token=None)
    with pytest.raises(ValueError):
        await oauth.refresh_oauth_token(connection, "cid", "csecret")


@pytest.mark.asyncio
async def test_expired_connection_refreshes_with_configured_credentials(db_user, monkeypatch):
    monkeypatch.setattr(oauth.config, "google_client_id", "google-cid")
    monkeypatch.setattr(oauth.config, "google_client_secret", "google-secret")
    connection = await _connection(db_user, expires_at=datetime.now(timezone.utc) - timedelta(minutes=1))
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["body"] = request.content.decode()
        return httpx.Response(200, json={"access_token": "access-2", "expires_in": 600})

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        token = await oauth.get_oauth_token("user-1", "google-email", http_client=client)

    assert token == "access-2"
    assert "client_id=google-cid" in seen["body"]
    assert "client_secret=google-secret" in seen["body"]
    assert not (await OAuthConnection.get(id=connection.id)).is_expired


@pytest.mark.asyncio
async def test_failed_refresh_yields_none(db_user, monkeypatch):
    monkeypatch.setattr(oauth.config, "google_client_id", "google-cid")
    monkeypatch.setattr(oauth.config, "google_client_secret", "google-secret")
    await _connection(db_user, expires_at=datetime.now(timezone.utc) - timedelta(minutes=1))

    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(400, json={"error": "invalid_grant"})

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        assert await oauth.get_oauth_token("user-1", "google-email", http_client=client) is None
