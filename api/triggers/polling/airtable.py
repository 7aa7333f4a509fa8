"""
Cursor-based incremental fetch of Airtable webhook payloads.

Airtable only pings our webhook; the changes themselves are pulled from
`/bases/{baseId}/webhooks/{webhookId}/payloads` page by page. The cursor
lives in the trigger's `providerConfig.externalWebhookCursor` and is written
back after every page that advances it, before the next page is requested.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional

import httpx

from api.triggers.polling.consolidate import AirtableChange, ChangeConsolidator
from shared.config import config
from shared.database.workflow_models import Webhook, WorkflowRecord
from shared.logger import RequestLogger, get_logger
from shared.oauth import get_oauth_token
from workflow_core.errors import CursorPersistenceFailed

logger = get_logger(__name__)

JsonDict = Dict[str, Any]
CURSOR_KEY = "externalWebhookCursor"

TokenGetter = Callable[[str, str], Awaitable[Optional[str]]]
CursorWriter = Callable[[Webhook, JsonDict], Awaitable[None]]


@dataclass
class AirtablePollOutcome:
    changes: List[AirtableChange] = field(default_factory=list)
    api_calls: int = 0
    payloads_fetched: int = 0
    cursor: Any = None
    error: Optional[str] = None

    @property
    def trigger_input(self) -> JsonDict:
        return {"airtableChanges": [change.to_payload() for change in self.changes]}


def _valid_cursor(value: Any) -> bool:
    if isinstance(value, bool):
        return False
    return isinstance(value, int) or (isinstance(value, str) and value != "")


async def persist_provider_config(webhook: Webhook, provider_config: JsonDict) -> None:
    await Webhook.filter(id=webhook.id).update(provider_config=provider_config)
    webhook.provider_config = provider_config


class AirtablePayloadPoller:
    def __init__(
        self,
        *,
        http_client: Optional[httpx.AsyncClient] = None,
        token_getter: Optional[TokenGetter] = None,
        cursor_writer: Optional[CursorWriter] = None,
        api_base: Optional[str] = None,
        max_calls: Optional[int] = None,
    ) -> None:
        self.http_client = http_client
        self.token_getter = token_getter or get_oauth_token
        self.cursor_writer = cursor_writer or persist_provider_config
        self.api_base = (api_base or config.airtable_api_base).rstrip("/")
        self.max_calls = max_calls or config.airtable_max_poll_calls

    async def fetch_changes(
        self,
        webhook: Webhook,
        workflow: WorkflowRecord,
        user_id: str,
        *,
        log: Optional[RequestLogger] = None,
    ) -> AirtablePollOutcome:
        """
        Fetch every available payload page (up to the call cap) and consolidate.

        Raises `CursorPersistenceFailed` when an advanced cursor cannot be
        stored; nothing fetched in that cycle should be executed.
        """
        log = log or RequestLogger(logger)
        provider_config = webhook.config_dict()
        outcome = AirtablePollOutcome()

        base_id = provider_config.get("baseId")
        airtable_webhook_id = provider_config.get("externalId")
        if not base_id or not airtable_webhook_id:
            outcome.error = "Missing baseId or externalId in providerConfig"
            log.error(f"{outcome.error} for webhook {webhook.id}. Cannot fetch payloads.")
            return outcome

        if CURSOR_KEY not in provider_config or provider_config[CURSOR_KEY] is None:
            log.info(f"No cursor found in providerConfig for webhook {webhook.id}, starting from beginning")
            provider_config[CURSOR_KEY] = None

        cursor = provider_config[CURSOR_KEY] if _valid_cursor(provider_config[CURSOR_KEY]) else None

        access_token = await self.token_getter(user_id, "airtable")
        if not access_token:
            outcome.error = "Airtable access token not found"
            log.error(f"Failed to obtain valid Airtable access token for user {user_id}. Cannot proceed.")
            return outcome

        url = f"{self.api_base}/bases/{base_id}/webhooks/{airtable_webhook_id}/payloads"
        headers = {"Authorization": f"Bearer {access_token}", "Content-Type": "application/json"}
        consolidator = ChangeConsolidator()

        client = self.http_client or httpx.AsyncClient(timeout=config.provider_http_timeout_seconds)
        try:
            might_have_more = True
            while might_have_more:
                if outcome.api_calls >= self.max_calls:
                    log.warning(
                        f"Reached maximum polling limit ({self.max_calls} calls)",
                        extra={"webhook_id": webhook.id, "consolidated_count": len(consolidator)},
                    )
                    break
                outcome.api_calls += 1

                params = {"cursor": str(cursor)} if cursor is not None else None
                try:
                    response = await client.get(url, headers=headers, params=params)
                    body = response.json()
                except (httpx.HTTPError, ValueError) as exc:
                    log.error(f"Network error calling Airtable GET /payloads (call {outcome.api_calls}): {exc}")
                    break

                if response.status_code >= 400 or body.get("error"):
                    error = body.get("error")
                    message = (error.get("message") if isinstance(error, dict) else error) or (
                        f"Airtable API error Status {response.status_code}"
                    )
                    log.error(
                        f"Airtable API request to /payloads failed (call {outcome.api_calls})",
                        extra={"webhook_id": webhook.id, "status": response.status_code, "error": message},
                    )
                    outcome.error = str(message)
                    break

                payloads = body.get("payloads") or []
                outcome.payloads_fetched += len(payloads)
                change_count = consolidator.add_payloads(payloads)
                log.debug(
                    f"Processed {change_count} changes in API call {outcome.api_calls}",
                    extra={"current_map_size": len(consolidator)},
                )

                next_cursor = body.get("cursor")
                might_have_more = bool(body.get("mightHaveMore"))

                if not _valid_cursor(next_cursor):
                    log.warning(
                        "Invalid or missing cursor received, stopping poll",
                        extra={"webhook_id": webhook.id, "received_cursor": next_cursor},
                    )
                    break
                if next_cursor == cursor:
                    log.debug(f"Cursor hasn't changed ({cursor}), stopping poll")
                    break

                log.debug(f"Updating cursor from {cursor} to {next_cursor}")
                updated_config = {**provider_config, CURSOR_KEY: next_cursor}
                try:
                    await self.cursor_writer(webhook, updated_config)
                except Exception as exc:
                    log.error(
                        "Failed to persist Airtable cursor",
                        extra={"webhook_id": webhook.id, "cursor": next_cursor, "error": str(exc)},
                    )
                    raise CursorPersistenceFailed(
                        "Failed to save Airtable cursor, stopping processing.", cursor=cursor
                    ) from exc
                provider_config = updated_config
                cursor = next_cursor
        finally:
            if self.http_client is None:
                await client.aclose()

        outcome.changes = consolidator.changes()
        outcome.cursor = cursor
        log.info(
            f"Consolidated {len(outcome.changes)} Airtable changes across {outcome.api_calls} API calls",
            extra={"workflow_id": workflow.id},
        )
        return outcome


__all__ = ["AirtablePayloadPoller", "AirtablePollOutcome", "CURSOR_KEY", "persist_provider_config"]
