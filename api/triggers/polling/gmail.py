"""
Gmail poll sweep.

Gmail has no push delivery for our triggers, so active `gmail` webhooks are
swept on a schedule: list messages received since `lastCheckedTimestamp`,
run the workflow once per new email, then advance the timestamp. The sweep
runs under a distributed lock so only one instance polls at a time.
"""
from __future__ import annotations

import base64
import binascii
import email.utils
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, List, Optional
from uuid import uuid4

import httpx
from tortoise.exceptions import BaseORMException

from api.triggers import dedupe
from api.triggers.execution import execute_workflow_from_payload
from api.triggers.formatting import format_webhook_input
from api.triggers.polling.airtable import persist_provider_config
from shared.config import config
from shared.database.workflow_models import Webhook, WorkflowRecord
from shared.logger import RequestLogger, get_logger
from shared.oauth import get_oauth_token
from shared.stores import DedupeStore, LockStore, get_lock_store
from workflow_core.errors import DuplicateTrigger, WorkflowEngineError

logger = get_logger(__name__)

JsonDict = Dict[str, Any]

GMAIL_POLL_LOCK_KEY = "gmail-polling-lock"
GMAIL_OAUTH_PROVIDER = "google-email"

TokenGetter = Callable[[str, str], Awaitable[Optional[str]]]
Executor = Callable[..., Awaitable[Any]]


def _parse_int(value: Any, default: int) -> int:
    try:
        return int(value) or default
    except (TypeError, ValueError):
        return default


def _parse_address(value: Optional[str]) -> Dict[str, Optional[str]]:
    name, addr = email.utils.parseaddr(value or "")
    return {"name": name or None, "email": addr or None}


def _decode_part(data: Optional[str]) -> str:
    if not data:
        return ""
    padded = data + "=" * (-len(data) % 4)
    try:
        return base64.urlsafe_b64decode(padded).decode("utf-8", errors="replace")
    except (binascii.Error, ValueError):
        return ""


def _extract_bodies(part: JsonDict, found: Dict[str, str]) -> None:
    mime_type = part.get("mimeType") or ""
    body_data = (part.get("body") or {}).get("data")
    if mime_type == "text/plain" and "text" not in found and body_data:
        found["text"] = _decode_part(body_data)
    elif mime_type == "text/html" and "html" not in found and body_data:
        found["html"] = _decode_part(body_data)
    for child in part.get("parts") or []:
        _extract_bodies(child, found)


def normalize_gmail_message(message: JsonDict, *, include_raw: bool = False) -> JsonDict:
    payload = message.get("payload") or {}
    headers = {
        item["name"].lower(): item["value"]
        for item in (payload.get("headers") or [])
        if item.get("name") and item.get("value") is not None
    }
    bodies: Dict[str, str] = {}
    _extract_bodies(payload, bodies)

    normalized: JsonDict = {
        "id": message.get("id"),
        "threadId": message.get("threadId"),
        "subject": headers.get("subject", "[No Subject]"),
        "from": headers.get("from", ""),
        "sender": _parse_address(headers.get("from")),
        "to": headers.get("to", ""),
        "cc": headers.get("cc", ""),
        "date": headers.get("date"),
        "snippet": message.get("snippet"),
        "bodyText": bodies.get("text", ""),
        "bodyHtml": bodies.get("html", ""),
        "labels": message.get("labelIds") or [],
        "internalDate": message.get("internalDate"),
    }
    if include_raw:
        normalized["rawEmail"] = message
    return normalized


def build_gmail_query(provider_config: JsonDict, since: Optional[str]) -> str:
    parts: List[str] = []
    if since:
        try:
            checked_at = datetime.fromisoformat(since.replace("Z", "+00:00"))
            parts.append(f"after:{int(checked_at.timestamp())}")
        except ValueError:
            logger.warning(f"Ignoring invalid lastCheckedTimestamp: {since}")

    labels = [str(label) for label in provider_config.get("labelIds") or ["INBOX"] if str(label).strip()]
    if labels:
        if provider_config.get("labelFilterBehavior", "INCLUDE") == "EXCLUDE":
            parts.extend(f"-label:{label}" for label in labels)
        else:
            parts.append("(" + " OR ".join(f"label:{label}" for label in labels) + ")")
    return " ".join(parts)


@dataclass
class GmailPollSummary:
    total: int = 0
    successful: int = 0
    failed: int = 0
    details: List[JsonDict] = field(default_factory=list)

    def as_dict(self) -> JsonDict:
        return {
            "total": self.total,
            "successful": self.successful,
            "failed": self.failed,
            "details": self.details,
        }


class GmailPoller:
    def __init__(
        self,
        *,
        http_client: Optional[httpx.AsyncClient] = None,
        token_getter: Optional[TokenGetter] = None,
        dedupe_store: Optional[DedupeStore] = None,
        executor: Optional[Executor] = None,
        api_base: Optional[str] = None,
    ) -> None:
        self.http_client = http_client
        self.token_getter = token_getter or get_oauth_token
        self.dedupe_store = dedupe_store
        self.executor = executor or execute_workflow_from_payload
        self.api_base = (api_base or config.gmail_api_base).rstrip("/")

    async def poll_all(self, *, log: Optional[RequestLogger] = None) -> GmailPollSummary:
        log = log or RequestLogger(logger)
        summary = GmailPollSummary()
        webhooks = await Webhook.filter(provider="gmail", is_active=True).prefetch_related("workflow")

        client = self.http_client or httpx.AsyncClient(timeout=config.provider_http_timeout_seconds)
        try:
            for webhook in webhooks:
                summary.total += 1
                try:
                    processed = await self.poll_webhook(webhook, webhook.workflow, client=client, log=log)
                except (httpx.HTTPError, BaseORMException, WorkflowEngineError, ValueError) as exc:
                    summary.failed += 1
                    summary.details.append({"webhookId": webhook.id, "status": "error", "error": str(exc)})
                    log.error(f"Gmail polling failed for webhook {webhook.id}: {exc}")
                    continue
                summary.successful += 1
                summary.details.append({"webhookId": webhook.id, "status": "success", "emailsProcessed": processed})
        finally:
            if self.http_client is None:
                await client.aclose()
        return summary

    async def poll_webhook(
        self,
        webhook: Webhook,
        workflow: WorkflowRecord,
        *,
        client: httpx.AsyncClient,
        log: RequestLogger,
    ) -> int:
        provider_config = webhook.config_dict()
        user_id = provider_config.get("userId")
        if not user_id:
            raise ValueError("Gmail webhook has no userId; run configure_gmail_polling first")

        access_token = await self.token_getter(user_id, GMAIL_OAUTH_PROVIDER)
        if not access_token:
            raise ValueError(f"No Gmail access token for user {user_id}")

        checked_at = datetime.now(timezone.utc).isoformat()
        headers = {"Authorization": f"Bearer {access_token}", "Accept": "application/json"}
        max_results = _parse_int(provider_config.get("maxEmailsPerPoll"), config.gmail_max_emails_per_poll)
        params: JsonDict = {"maxResults": max_results}
        query = build_gmail_query(provider_config, provider_config.get("lastCheckedTimestamp"))
        if query:
            params["q"] = query

        list_resp = await client.get(f"{self.api_base}/messages", headers=headers, params=params)
        list_resp.raise_for_status()
        messages = list_resp.json().get("messages") or []

        processed = 0
        for message_ref in messages[:max_results]:
            message_id = message_ref.get("id")
            if not message_id:
                continue
            dedupe_key = dedupe.message_key("gmail", message_id)
            if await dedupe.is_processed(dedupe_key, store=self.dedupe_store, log=log):
                continue

            msg_resp = await client.get(
                f"{self.api_base}/messages/{message_id}", headers=headers, params={"format": "full"}
            )
            msg_resp.raise_for_status()
            normalized = normalize_gmail_message(
                msg_resp.json(), include_raw=bool(provider_config.get("includeRawEmail"))
            )
            body = {"email": normalized, "timestamp": checked_at}
            trigger_input = format_webhook_input(
                provider="gmail",
                path=webhook.path,
                provider_config=provider_config,
                workflow_id=workflow.id,
                body=body,
                headers={},
                method="POST",
            )
            # a message whose fetch failed stays unclaimed
            try:
                await dedupe.claim(dedupe_key, store=self.dedupe_store, log=log)
            except DuplicateTrigger:
                continue
            try:
                await self.executor(workflow, trigger_input, str(uuid4()), log=log)
            except WorkflowEngineError as exc:
                log.error(f"Gmail-triggered execution failed for message {message_id}: {exc}")
                continue
            processed += 1

            if provider_config.get("markAsRead"):
                mark_resp = await client.post(
                    f"{self.api_base}/messages/{message_id}/modify",
                    headers=headers,
                    json={"removeLabelIds": ["UNREAD"]},
                )
                if mark_resp.status_code >= 400:
                    log.warning(f"Failed to mark Gmail message {message_id} as read ({mark_resp.status_code})")

        await persist_provider_config(webhook, {**provider_config, "lastCheckedTimestamp": checked_at})
        log.info(f"Processed {processed} Gmail messages for webhook {webhook.id}")
        return processed


async def run_gmail_poll_sweep(
    *,
    poller: Optional[GmailPoller] = None,
    lock_store: Optional[LockStore] = None,
    request_id: Optional[str] = None,
) -> JsonDict:
    """
    Sweep all Gmail webhooks under the poll lock.

    Returns `status="skip"` when another instance holds the lock. The lock is
    released on every exit path once acquired.
    """
    log = RequestLogger(logger, request_id)
    lock_store = lock_store if lock_store is not None else get_lock_store()
    acquired = await lock_store.acquire(GMAIL_POLL_LOCK_KEY, log.request_id, config.poll_lock_ttl_seconds)
    if not acquired:
        log.info("Gmail polling already in progress, skipping")
        return {
            "success": True,
            "message": "Polling already in progress – skipped",
            "requestId": log.request_id,
            "status": "skip",
        }

    try:
        summary = await (poller if poller is not None else GmailPoller()).poll_all(log=log)
    finally:
        try:
            await lock_store.release(GMAIL_POLL_LOCK_KEY)
        except Exception as exc:
            log.error(f"Failed to release {GMAIL_POLL_LOCK_KEY}: {exc}")

    return {
        "success": True,
        "message": "Gmail polling completed",
        "requestId": log.request_id,
        "status": "completed",
        **summary.as_dict(),
    }


async def configure_gmail_polling(
    webhook: Webhook,
    user_id: str,
    *,
    token_getter: Optional[TokenGetter] = None,
    log: Optional[RequestLogger] = None,
) -> bool:
    """Normalize a Gmail webhook's config and stamp the starting timestamp."""
    log = log or RequestLogger(logger)
    log.info(f"Setting up Gmail polling for webhook {webhook.id}")

    access_token = await (token_getter or get_oauth_token)(user_id, GMAIL_OAUTH_PROVIDER)
    if not access_token:
        log.error(f"Failed to retrieve Gmail access token for user {user_id}")
        return False

    provider_config = webhook.config_dict()
    updated = {
        **provider_config,
        "userId": user_id,
        "maxEmailsPerPoll": _parse_int(provider_config.get("maxEmailsPerPoll"), config.gmail_max_emails_per_poll),
        "pollingInterval": _parse_int(
            provider_config.get("pollingInterval"), config.gmail_default_polling_interval_minutes
        ),
        "markAsRead": bool(provider_config.get("markAsRead", False)),
        "includeRawEmail": bool(provider_config.get("includeRawEmail", False)),
        "labelIds": provider_config.get("labelIds") or ["INBOX"],
        "labelFilterBehavior": provider_config.get("labelFilterBehavior") or "INCLUDE",
        "lastCheckedTimestamp": datetime.now(timezone.utc).isoformat(),
        "setupCompleted": True,
    }
    await persist_provider_config(webhook, updated)
    log.info(f"Successfully configured Gmail polling for webhook {webhook.id}")
    return True


__all__ = [
    "GMAIL_POLL_LOCK_KEY",
    "GmailPollSummary",
    "GmailPoller",
    "build_gmail_query",
    "configure_gmail_polling",
    "normalize_gmail_message",
    "run_gmail_poll_sweep",
]
