"""
OAuth access tokens for poll-based providers.

Loads the user's active connection, refreshes it when expired and returns the
plaintext access token, or None when no usable token exists.
"""
from datetime import datetime, timedelta, timezone
from typing import Optional

import httpx

from shared.config import config
from shared.database.models import User
from shared.database.models_oauth import OAuthConnection
from shared.logger import get_logger
from shared.secrets import get_secret_cipher

logger = get_logger("shared.oauth")

# provider key -> token endpoint
TOKEN_ENDPOINTS = {
    "google-email": "https://oauth2.googleapis.com/token",
    "airtable": "https://airtable.com/oauth2/v1/token",
}


def _reveal(value: Optional[str]) -> Optional[str]:
    if not value:
        return value
    if not config.is_encryption_configured:
        return value
    return get_secret_cipher().decrypt(value)


def _conceal(value: str) -> str:
    if not config.is_encryption_configured:
        return value
    return get_secret_cipher().encrypt(value)


async def refresh_oauth_token(
    connection: OAuthConnection,
    client_id: str,
    client_secret: str,
    *,
    http_client: Optional[httpx.AsyncClient] = None,
) -> OAuthConnection:
    """Refresh an expired token with its refresh_token and persist the new one."""
    refresh_token = _reveal(connection.refresh_token_enc)
    if not refresh_token:
        raise ValueError(f"No refresh token available for connection {connection.id}")

    refresh_url = TOKEN_ENDPOINTS.get(connection.provider)
    if refresh_url is None:
        raise ValueError(f"Token refresh not supported for provider: {connection.provider}")

    logger.info(f"Refreshing OAuth token for connection {connection.id} (provider: {connection.provider})")
    payload = {
        "client_id": client_id,
        "client_secret": client_secret,
        "refresh_token": refresh_token,
        "grant_type": "refresh_token",
    }

    client = http_client or httpx.AsyncClient(timeout=config.provider_http_timeout_seconds)
    try:
        response = await client.post(refresh_url, data=payload)
        response.raise_for_status()
        token_data = response.json()
    finally:
        if http_client is None:
            await client.aclose()

    connection.access_token_enc = _conceal(token_data["access_token"])
    expires_in = token_data.get("expires_in", 3600)  # Default 1 hour
    connection.expires_at = datetime.now(timezone.utc) + timedelta(seconds=expires_in)
    if "scope" in token_data:
        connection.scopes = token_data["scope"]
    await connection.save()

    logger.info(f"Successfully refreshed token for connection {connection.id}")
    return connection


async def get_oauth_token(
    user_id: str,
    provider: str,
    *,
    client_id: Optional[str] = None,
    client_secret: Optional[str] = None,
    http_client: Optional[httpx.AsyncClient] = None,
) -> Optional[str]:
    """
    Return the access token of `user_id`'s active `provider` connection.

    Expired tokens are refreshed with the configured client credentials for
    `provider` unless `client_id` and `client_secret` are given explicitly.
    Missing users, missing connections and failed refreshes all yield None;
    callers treat that as fatal for their own poll cycle only.
    """
    user = await User.get_or_none(user_id=user_id)
    if user is None:
        logger.warning(f"No user {user_id} for OAuth lookup")
        return None

    connection = await OAuthConnection.filter(user=user, provider=provider, status="active").first()
    if connection is None:
        logger.warning(f"No active OAuth connection for user {user_id} and provider {provider}")
        return None

    if connection.is_expired:
        if not client_id or not client_secret:
            client_id, client_secret = config.oauth_client_credentials(provider)
        if not client_id or not client_secret:
            logger.error(f"Token expired for connection {connection.id} and no client credentials to refresh")
            return None
        try:
            connection = await refresh_oauth_token(connection, client_id, client_secret, http_client=http_client)
        except (httpx.HTTPError, ValueError, KeyError) as exc:
            logger.error(f"Token refresh failed for connection {connection.id}: {exc}")
            return None

    return _reveal(connection.access_token_enc)


__all__ = ["get_oauth_token", "refresh_oauth_token"]
