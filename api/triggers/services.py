"""
Trigger orchestration: the single path from an inbound webhook to one
workflow execution (or none, when rejected or deduplicated).

Handlers never raise to the transport. Every outcome is a `WebhookResponse`
whose status and body follow what the delivering provider expects.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Optional
from uuid import uuid4

from fastapi import status

from api.triggers import dedupe
from api.triggers.dispatcher import BackgroundDispatcher, get_dispatcher
from api.triggers.execution import execute_workflow_from_payload
from api.triggers.formatting import format_webhook_input, whatsapp_messages
from api.triggers.polling.airtable import AirtablePayloadPoller
from api.triggers.verification import (
    TriggerRequest,
    slack_url_verification,
    verify_provider_request,
    whatsapp_subscribe_handshake,
)
from shared.config import config
from shared.database.workflow_models import Webhook, WorkflowRecord
from shared.logger import RequestLogger, get_logger
from shared.stores import DedupeStore, LockStore, get_lock_store
from workflow_core.engine import ExecutionEngine
from workflow_core.errors import (
    DuplicateTrigger,
    UnexpectedOrchestratorError,
    VerificationFailed,
    WorkflowEngineError,
)

logger = get_logger(__name__)

AIRTABLE_POLL_LOCK_PREFIX = "airtable-poll:"


@dataclass
class WebhookResponse:
    status_code: int
    body: Any
    media_type: str = "application/json"

    @classmethod
    def json(cls, body: Dict[str, Any], status_code: int = status.HTTP_200_OK) -> "WebhookResponse":
        return cls(status_code, body)

    @classmethod
    def text(cls, body: str, status_code: int = status.HTTP_200_OK) -> "WebhookResponse":
        return cls(status_code, body, media_type="text/plain")


@dataclass
class OrchestratorDeps:
    """Collaborators resolved per call; defaults come from the process-wide stores."""

    dedupe_store: Optional[DedupeStore] = None
    engine: Optional[ExecutionEngine] = None
    airtable_poller: Optional[AirtablePayloadPoller] = None
    lock_store: Optional[LockStore] = None
    dispatcher: Optional[BackgroundDispatcher] = None


async def _find_webhook(path: str) -> Optional[Webhook]:
    return await Webhook.filter(path=path, is_active=True).prefetch_related("workflow").first()


async def handle_webhook_get(
    path: str,
    query: Dict[str, str],
    *,
    request_id: Optional[str] = None,
) -> WebhookResponse:
    """Answer provider verification handshakes and plain endpoint checks."""
    log = RequestLogger(logger, request_id)

    if query.get("hub.mode"):
        webhooks = await Webhook.filter(provider="whatsapp", is_active=True)
        tokens = {hook.id: hook.config_dict().get("verificationToken") for hook in webhooks}
        handshake = whatsapp_subscribe_handshake(query, tokens, log=log)
        if handshake is not None:
            return WebhookResponse(handshake.status_code, handshake.body, handshake.media_type)

    webhook = await _find_webhook(path)
    if webhook is None:
        log.warning(f"Webhook not found for path: {path}")
        return WebhookResponse.text("Webhook not found", status.HTTP_404_NOT_FOUND)
    return WebhookResponse.json({"message": "Webhook endpoint verified"})


async def _claim(webhook: Webhook, request: TriggerRequest, deps: OrchestratorDeps, log: RequestLogger) -> None:
    if webhook.provider == "whatsapp":
        await dedupe.claim_whatsapp_messages(whatsapp_messages(request.body), store=deps.dedupe_store, log=log)
    elif webhook.provider != "airtable":
        await dedupe.claim_generic(request.path, request.body, store=deps.dedupe_store, log=log)


async def _process_airtable(
    webhook: Webhook,
    workflow: WorkflowRecord,
    execution_id: str,
    deps: OrchestratorDeps,
    log: RequestLogger,
) -> WebhookResponse:
    log.info("Routing Airtable webhook through dedicated processor")
    lock_store = deps.lock_store if deps.lock_store is not None else get_lock_store()
    lock_key = AIRTABLE_POLL_LOCK_PREFIX + str(webhook.id)
    if not await lock_store.acquire(lock_key, execution_id, config.poll_lock_ttl_seconds):
        log.info(f"Airtable poll for webhook {webhook.id} already in progress, skipping")
        return WebhookResponse.json({"message": "Airtable polling already in progress – skipped"})

    try:
        owner = await workflow.user
        poller = deps.airtable_poller if deps.airtable_poller is not None else AirtablePayloadPoller()
        outcome = await poller.fetch_changes(webhook, workflow, owner.user_id, log=log)

        if outcome.changes:
            try:
                await execute_workflow_from_payload(
                    workflow, outcome.trigger_input, execution_id, log=log, engine=deps.engine
                )
            except WorkflowEngineError as exc:
                log.error(f"Airtable-triggered execution failed: {exc}", extra={"execution_id": execution_id})
        else:
            log.info("No Airtable changes to process")
    finally:
        try:
            await lock_store.release(lock_key)
        except Exception as exc:
            log.error(f"Failed to release {lock_key}: {exc}")
    return WebhookResponse.json({"message": "Airtable webhook processed"})


def _error_response(webhook: Webhook, exc: Exception, execution_id: str, log: RequestLogger) -> WebhookResponse:
    log.error(
        f"Error in process_webhook for {webhook.id} (Execution: {execution_id}): {exc}",
        extra={"error_type": type(exc).__name__},
    )
    if webhook.provider == "microsoftteams":
        return WebhookResponse.json({"type": "message", "text": "Webhook processing failed"})
    return WebhookResponse.text(f"Internal Server Error: {exc}", status.HTTP_500_INTERNAL_SERVER_ERROR)


async def process_webhook(
    request: TriggerRequest,
    *,
    deps: Optional[OrchestratorDeps] = None,
    request_id: Optional[str] = None,
) -> WebhookResponse:
    """
    Run one inbound trigger through verify, dedupe, load, execute and respond.

    Verification failures answer 401/403 without executing. Duplicates
    answer 200. Microsoft Teams gets an immediate acknowledgement while the
    run continues in the background; every other provider waits for the run.
    """
    deps = deps or OrchestratorDeps()
    log = RequestLogger(logger, request_id)

    if request.body is None:
        log.warning("Rejecting webhook with unparseable body")
        return WebhookResponse.text("Invalid JSON payload", status.HTTP_400_BAD_REQUEST)

    challenge = slack_url_verification(request.body)
    if challenge is not None:
        log.info("Responding to Slack URL verification challenge")
        return WebhookResponse(challenge.status_code, challenge.body, challenge.media_type)

    webhook = await _find_webhook(request.path)
    if webhook is None:
        log.warning(f"Webhook not found for path: {request.path}")
        return WebhookResponse.text("Webhook not found", status.HTTP_404_NOT_FOUND)
    workflow: WorkflowRecord = webhook.workflow
    provider_config = webhook.config_dict()

    try:
        verify_provider_request(webhook.provider, request, provider_config, log=log)
    except VerificationFailed as exc:
        log.warning(f"Webhook verification failed for {webhook.id}: {exc}")
        return WebhookResponse.text(str(exc), exc.status_code)

    try:
        await _claim(webhook, request, deps, log)
    except DuplicateTrigger:
        text = "Duplicate message" if webhook.provider == "whatsapp" else "Duplicate request"
        return WebhookResponse.text(text)

    execution_id = str(uuid4())
    try:
        if webhook.provider == "airtable":
            return await _process_airtable(webhook, workflow, execution_id, deps, log)

        trigger_input = format_webhook_input(
            provider=webhook.provider,
            path=request.path,
            provider_config=provider_config,
            workflow_id=workflow.id,
            body=request.body,
            headers=request.headers,
            method=request.method,
        )
        if trigger_input is None:
            return WebhookResponse.text("No messages in WhatsApp payload")

        if webhook.provider == "microsoftteams":
            log.info(
                f"Acknowledging Microsoft Teams webhook {webhook.id} and executing workflow "
                f"{workflow.id} asynchronously (Execution: {execution_id})"
            )
            dispatcher = deps.dispatcher if deps.dispatcher is not None else get_dispatcher()
            dispatcher.submit(
                execute_workflow_from_payload(
                    workflow, trigger_input, execution_id, log=log, engine=deps.engine
                ),
                description=f"workflow execution for webhook {webhook.id} (Execution: {execution_id})",
                log=log,
            )
            return WebhookResponse.json({"type": "message", "text": config.teams_acknowledgement})

        log.info(f"Executing workflow {workflow.id} for webhook {webhook.id} (Execution: {execution_id})")
        await execute_workflow_from_payload(workflow, trigger_input, execution_id, log=log, engine=deps.engine)
        return WebhookResponse.json({"message": "Webhook processed"})
    except WorkflowEngineError as exc:
        return _error_response(webhook, exc, execution_id, log)
    except Exception as exc:
        wrapped = UnexpectedOrchestratorError(str(exc))
        wrapped.__cause__ = exc
        return _error_response(webhook, wrapped, execution_id, log)


__all__ = [
    "OrchestratorDeps",
    "WebhookResponse",
    "handle_webhook_get",
    "process_webhook",
]
