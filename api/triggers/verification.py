"""
Provider-specific authentication of inbound trigger requests.

Every check raises `VerificationFailed` (carrying the HTTP status to answer
with) and never touches workflow execution. Secrets are compared with
`hmac.compare_digest`.
"""
from __future__ import annotations

import base64
import binascii
import hashlib
import hmac
import time
from dataclasses import dataclass, field
from typing import Any, Dict, Mapping, Optional

from shared.config import config
from shared.logger import RequestLogger, get_logger
from workflow_core.errors import VerificationFailed

logger = get_logger(__name__)


@dataclass
class TriggerRequest:
    """Transport-neutral view of an inbound webhook request."""

    method: str
    path: str
    headers: Dict[str, str] = field(default_factory=dict)
    raw_body: str = ""
    body: Any = None
    query: Dict[str, str] = field(default_factory=dict)
    client_host: Optional[str] = None

    def __post_init__(self) -> None:
        self.headers = {key.lower(): value for key, value in self.headers.items()}

    def header(self, name: str) -> Optional[str]:
        return self.headers.get(name.lower())

    def bearer_token(self) -> Optional[str]:
        authorization = self.header("authorization")
        if authorization and authorization.startswith("Bearer "):
            return authorization[len("Bearer "):]
        return None

    def client_ip(self) -> Optional[str]:
        forwarded = self.header("x-forwarded-for")
        if forwarded:
            first = forwarded.split(",")[0].strip()
            if first:
                return first
        return self.header("x-real-ip") or self.client_host or None


def _secure_equals(left: Optional[str], right: Optional[str]) -> bool:
    if left is None or right is None:
        return False
    return hmac.compare_digest(left.encode("utf-8"), right.encode("utf-8"))


# ---------------------------------------------------------------------------
# Signatures
# ---------------------------------------------------------------------------

def compute_slack_signature(signing_secret: str, timestamp: str, body: str) -> str:
    base_string = f"v0:{timestamp}:{body}"
    digest = hmac.new(signing_secret.encode("utf-8"), base_string.encode("utf-8"), hashlib.sha256).hexdigest()
    return f"v0={digest}"


def validate_slack_signature(
    signing_secret: str,
    signature: Optional[str],
    timestamp: Optional[str],
    body: str,
    *,
    now: Optional[float] = None,
    max_age_seconds: Optional[int] = None,
) -> bool:
    """
    HMAC-SHA256 over `v0:{timestamp}:{body}`.

    Requests outside the freshness window are rejected even when the
    signature matches.
    """
    if not signing_secret or not signature or not timestamp or not body:
        return False
    try:
        sent_at = int(timestamp)
    except ValueError:
        return False

    current = int(now if now is not None else time.time())
    window = max_age_seconds if max_age_seconds is not None else config.signature_max_age_seconds
    if abs(current - sent_at) > window:
        return False

    return _secure_equals(compute_slack_signature(signing_secret, timestamp, body), signature)


def compute_teams_signature(hmac_secret: str, body: str) -> str:
    secret_bytes = base64.b64decode(hmac_secret)
    digest = hmac.new(secret_bytes, body.encode("utf-8"), hashlib.sha256).digest()
    return base64.b64encode(digest).decode("ascii")


def validate_teams_signature(hmac_secret: str, authorization: Optional[str], body: str) -> bool:
    """Outgoing-webhook HMAC: `Authorization: HMAC <base64 sha256>` keyed by the base64 secret."""
    if not hmac_secret or not authorization or not body:
        return False
    if not authorization.startswith("HMAC "):
        return False
    try:
        expected = compute_teams_signature(hmac_secret, body)
    except (binascii.Error, ValueError):
        return False
    return _secure_equals(expected, authorization[len("HMAC "):])


# ---------------------------------------------------------------------------
# Per-provider checks
# ---------------------------------------------------------------------------

def _verify_generic(request: TriggerRequest, provider_config: Mapping[str, Any], log: RequestLogger) -> None:
    token = provider_config.get("token")
    if provider_config.get("requireAuth") and token:
        authenticated = _secure_equals(request.bearer_token(), token)
        header_name = provider_config.get("secretHeaderName")
        if not authenticated and header_name:
            authenticated = _secure_equals(request.header(header_name), token)
        if not authenticated:
            log.warning("Unauthorized webhook access attempt - invalid token")
            raise VerificationFailed("Unauthorized", status_code=401)

    allowed_ips = provider_config.get("allowedIps")
    if isinstance(allowed_ips, list) and allowed_ips:
        client_ip = request.client_ip()
        if client_ip is None or client_ip not in allowed_ips:
            log.warning(f"Forbidden webhook access attempt - IP not allowed: {client_ip or 'unknown'}")
            raise VerificationFailed("Forbidden - IP not allowed", status_code=403)


def _verify_gmail(request: TriggerRequest, provider_config: Mapping[str, Any], log: RequestLogger) -> None:
    secret = provider_config.get("secret")
    if secret and not _secure_equals(request.header("X-Webhook-Secret"), secret):
        log.warning("Invalid Gmail webhook secret")
        raise VerificationFailed("Unauthorized", status_code=401)


def _verify_slack(request: TriggerRequest, provider_config: Mapping[str, Any], log: RequestLogger) -> None:
    signing_secret = provider_config.get("signingSecret")
    if not signing_secret:
        return
    valid = validate_slack_signature(
        signing_secret,
        request.header("X-Slack-Signature"),
        request.header("X-Slack-Request-Timestamp"),
        request.raw_body,
    )
    if not valid:
        log.warning("Invalid or stale Slack signature")
        raise VerificationFailed("Unauthorized - Invalid Slack signature", status_code=401)


def _verify_teams(request: TriggerRequest, provider_config: Mapping[str, Any], log: RequestLogger) -> None:
    hmac_secret = provider_config.get("hmacSecret")
    if not hmac_secret:
        return
    authorization = request.header("authorization")
    if not authorization or not authorization.startswith("HMAC "):
        log.warning("Microsoft Teams outgoing webhook missing HMAC authorization header")
        raise VerificationFailed("Unauthorized - Missing HMAC signature", status_code=401)
    if not validate_teams_signature(hmac_secret, authorization, request.raw_body):
        log.warning("Microsoft Teams HMAC signature verification failed")
        raise VerificationFailed("Unauthorized - Invalid HMAC signature", status_code=401)


def _verify_telegram(request: TriggerRequest, provider_config: Mapping[str, Any], log: RequestLogger) -> None:
    if not request.header("user-agent"):
        log.warning("Telegram webhook request has empty User-Agent header")
    log.debug(f"Telegram webhook request from IP: {request.client_ip() or 'unknown'}")


def _verify_default(request: TriggerRequest, provider_config: Mapping[str, Any], log: RequestLogger) -> None:
    token = provider_config.get("token")
    if token and not _secure_equals(request.bearer_token(), token):
        log.warning("Unauthorized webhook access attempt - invalid token")
        raise VerificationFailed("Unauthorized", status_code=401)


def _verify_none(request: TriggerRequest, provider_config: Mapping[str, Any], log: RequestLogger) -> None:
    return None


_VERIFIERS = {
    "generic": _verify_generic,
    "gmail": _verify_gmail,
    "slack": _verify_slack,
    "microsoftteams": _verify_teams,
    "telegram": _verify_telegram,
    "whatsapp": _verify_none,
    "airtable": _verify_none,
    "github": _verify_none,
    "stripe": _verify_none,
}


def verify_provider_request(
    provider: Optional[str],
    request: TriggerRequest,
    provider_config: Optional[Mapping[str, Any]],
    *,
    log: Optional[RequestLogger] = None,
) -> None:
    """Raise `VerificationFailed` when `request` is not authentic for `provider`."""
    log = log or RequestLogger(logger)
    verifier = _VERIFIERS.get(provider or "", _verify_default)
    verifier(request, provider_config or {}, log)


# ---------------------------------------------------------------------------
# Handshakes
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class HandshakeResponse:
    status_code: int
    body: Any
    media_type: str = "text/plain"


def slack_url_verification(body: Any) -> Optional[HandshakeResponse]:
    if isinstance(body, dict) and body.get("type") == "url_verification" and body.get("challenge"):
        return HandshakeResponse(200, {"challenge": body["challenge"]}, media_type="application/json")
    return None


def whatsapp_subscribe_handshake(
    query: Mapping[str, str],
    verification_tokens: Mapping[Any, Optional[str]],
    *,
    log: Optional[RequestLogger] = None,
) -> Optional[HandshakeResponse]:
    """
    Answer a `hub.mode=subscribe` verification request.

    `verification_tokens` maps active WhatsApp webhook ids to their configured
    token. Returns None when the query is not a handshake at all.
    """
    log = log or RequestLogger(logger)
    mode = query.get("hub.mode")
    token = query.get("hub.verify_token")
    challenge = query.get("hub.challenge")
    if not (mode and token and challenge):
        return None

    if mode != "subscribe":
        log.warning(f"Invalid WhatsApp verification mode: {mode}")
        return HandshakeResponse(400, "Invalid mode")

    for webhook_id, expected in verification_tokens.items():
        if not expected:
            log.debug(f"Webhook {webhook_id} has no verification token, skipping")
            continue
        if _secure_equals(token, expected):
            log.info(f"WhatsApp verification successful for webhook {webhook_id}")
            return HandshakeResponse(200, challenge)

    log.warning("No matching WhatsApp verification token found")
    return HandshakeResponse(403, "Verification failed")


__all__ = [
    "HandshakeResponse",
    "TriggerRequest",
    "compute_slack_signature",
    "compute_teams_signature",
    "slack_url_verification",
    "validate_slack_signature",
    "validate_teams_signature",
    "verify_provider_request",
    "whatsapp_subscribe_handshake",
]
