from __future__ import annotations

import hashlib
import json
from datetime import datetime
from typing import Any, Dict, Iterable, Optional

from redis.exceptions import RedisError

from shared.config import config
from shared.logger import RequestLogger, get_logger
from shared.stores import DedupeStore, get_dedupe_store
from workflow_core.errors import DuplicateTrigger

logger = get_logger(__name__)

JsonDict = Dict[str, Any]

# Compared case-insensitively; these differ between retries of one event.
VOLATILE_FIELDS = frozenset({"timestamp", "random", "nonce", "requestid", "event_id", "event_time"})


def _json_default(value: Any) -> Any:
    if isinstance(value, datetime):
        return value.isoformat()
    raise TypeError(f"Value of type {type(value)!r} is not JSON serializable")


def normalize_body(body: Any) -> Any:
    """Drop volatile fields at every depth so retries hash identically."""
    if isinstance(body, list):
        return [normalize_body(item) for item in body]
    if not isinstance(body, dict):
        return body
    return {
        key: normalize_body(value)
        for key, value in body.items()
        if str(key).lower() not in VOLATILE_FIELDS
    }


def compute_request_hash(path: str, body: Any) -> str:
    """Stable SHA256 digest over the path and the canonical (sorted-key) body."""
    canonical = json.dumps(
        {"path": path, "body": normalize_body(body)},
        sort_keys=True,
        separators=(",", ":"),
        default=_json_default,
    )
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


def message_key(provider: str, message_id: Any) -> str:
    return f"{provider}:msg:{message_id}"


def generic_key(path: str, body: Any) -> str:
    return f"generic:{compute_request_hash(path, body)}"


async def claim(
    key: str,
    *,
    store: Optional[DedupeStore] = None,
    ttl_seconds: Optional[int] = None,
    log: Optional[RequestLogger] = None,
) -> None:
    """
    Mark `key` as processed before execution starts.

    Raises `DuplicateTrigger` when the key was already marked. Store outages
    are logged and do not block processing.
    """
    log = log or RequestLogger(logger)
    store = store if store is not None else get_dedupe_store()
    ttl = ttl_seconds or config.dedupe_ttl_seconds
    try:
        is_new = await store.mark_if_new(key, ttl)
    except (RedisError, OSError) as exc:
        log.error(f"Dedupe store unavailable, continuing without dedupe: {exc}", extra={"key": key})
        return
    if not is_new:
        log.info(f"Duplicate trigger detected: {key}")
        raise DuplicateTrigger(key)


async def is_processed(
    key: str,
    *,
    store: Optional[DedupeStore] = None,
    log: Optional[RequestLogger] = None,
) -> bool:
    """Read-only check; a store outage reads as not processed."""
    store = store if store is not None else get_dedupe_store()
    try:
        return await store.has_processed(key)
    except (RedisError, OSError) as exc:
        (log or RequestLogger(logger)).error(f"Dedupe store unavailable: {exc}", extra={"key": key})
        return False

async def claim_whatsapp_messages(
    messages: Iterable[JsonDict],
    *,
    store: Optional[DedupeStore] = None,
    log: Optional[RequestLogger] = None,
) -> None:
    """WhatsApp delivers at-least-once; the first message id identifies the delivery."""
    first = next(iter(messages), None)
    if first and first.get("id"):
        await claim(message_key("whatsapp", first["id"]), store=store, log=log)


async def claim_generic(
    path: str,
    body: Any,
    *,
    store: Optional[DedupeStore] = None,
    log: Optional[RequestLogger] = None,
) -> None:
    await claim(generic_key(path, body), store=store, log=log)


__all__ = [
    "VOLATILE_FIELDS",
    "claim",
    "claim_generic",
    "claim_whatsapp_messages",
    "compute_request_hash",
    "generic_key",
    "is_processed",
    "message_key",
    "normalize_body",
]
