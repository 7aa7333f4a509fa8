from __future__ import annotations

import asyncio
import json

import pytest

from api.triggers.dispatcher import BackgroundDispatcher
from api.triggers.polling.airtable import AirtablePollOutcome
from api.triggers.polling.consolidate import AirtableChange
from api.triggers.services import AIRTABLE_POLL_LOCK_PREFIX, OrchestratorDeps, handle_webhook_get, process_webhook
from api.triggers.verification import TriggerRequest
from shared.config import config
from shared.database.workflow_models import ExecutionLog, WorkflowRecord
from workflow_core.engine import ExecutionResult


def _request(path, body, headers=None, raw_body=None) -> TriggerRequest:
    return TriggerRequest(
        method="POST",
        path=path,
        headers=headers or {"content-type": "application/json"},
        raw_body=raw_body if raw_body is not None else json.dumps(body),
        body=body,
    )


@pytest.mark.asyncio
async def test_generic_webhook_executes_and_duplicate_is_acknowledged(workflow, make_webhook, fake_engine):
    await make_webhook(workflow, provider="generic", path="orders")

    response = await process_webhook(_request("orders", {"order": 7, "timestamp": "t1"}))
    assert response.status_code == 200
    assert response.body == {"message": "Webhook processed"}
    assert fake_engine.calls[0]["trigger_input"]["input"] == {"order": 7, "timestamp": "t1"}

    retry = await process_webhook(_request("orders", {"order": 7, "timestamp": "t2"}))
    assert retry.status_code == 200
    assert retry.body == "Duplicate request"
    assert retry.media_type == "text/plain"
    assert len(fake_engine.calls) == 1


@pytest.mark.asyncio
async def test_unknown_path_and_invalid_body(db, fake_engine):
    missing = await process_webhook(_request("nope", {"a": 1}))
    assert missing.status_code == 404
    assert missing.body == "Webhook not found"

    invalid = await process_webhook(_request("nope", None, raw_body="{not json"))
    assert invalid.status_code == 400
    assert invalid.body == "Invalid JSON payload"


@pytest.mark.asyncio
async def test_slack_challenge_is_answered_before_lookup(db, fake_engine):
    response = await process_webhook(_request("slack-hook", {"type": "url_verification", "challenge": "c-1"}))
    assert response.status_code == 200
    assert response.body == {"challenge": "c-1"}
    assert fake_engine.calls == []


@pytest.mark.asyncio
async def test_failed_verification_does_not_execute(workflow, make_webhook, fake_engine):
    await make_webhook(workflow, provider="generic", path="secure", requireAuth=True, token="s3cret")
    await make_webhook(workflow, provider="generic", path="office", allowedIps=["10.0.0.1"])

    unauthorized = await process_webhook(_request("secure", {"a": 1}, headers={"Authorization": "Bearer bad"}))
    assert unauthorized.status_code == 401

    forbidden = await process_webhook(_request("office", {"a": 1}, headers={"X-Real-IP": "10.9.9.9"}))
    assert forbidden.status_code == 403
    assert fake_engine.calls == []


@pytest.mark.asyncio
async def test_whatsapp_status_update_and_duplicate_message(workflow, make_webhook, fake_engine):
    await make_webhook(workflow, provider="whatsapp", path="wa")

    statuses = {"entry": [{"changes": [{"value": {"statuses": [{"id": "s1"}]}}]}]}
    response = await process_webhook(_request("wa", statuses))
    assert response.body == "No messages in WhatsApp payload"

    message = {
        "entry": [
            {"changes": [{"value": {"messages": [{"id": "wamid.9", "from": "31", "text": {"body": "yo"}}]}}]}
        ]
    }
    first = await process_webhook(_request("wa", message))
    assert first.body == {"message": "Webhook processed"}
    again = await process_webhook(_request("wa", message))
    assert again.body == "Duplicate message"
    assert len(fake_engine.calls) == 1


@pytest.mark.asyncio
async def test_teams_is_acknowledged_then_executed_in_background(workflow, make_webhook, fake_engine):
    await make_webhook(workflow, provider="microsoftteams", path="teams")
    dispatcher = BackgroundDispatcher()

    response = await process_webhook(
        _request("teams", {"type": "message", "id": "1", "text": "deploy"}),
        deps=OrchestratorDeps(dispatcher=dispatcher),
    )
    assert response.status_code == 200
    assert response.body == {"type": "message", "text": config.teams_acknowledgement}
    assert len(dispatcher) == 1

    await dispatcher.drain()
    assert len(dispatcher) == 0
    assert fake_engine.calls[0]["trigger_input"]["input"] == "deploy"


@pytest.mark.asyncio
async def test_engine_failure_returns_500_and_leaves_counters(workflow, make_webhook, fake_engine):
    await make_webhook(workflow, provider="generic", path="orders")
    fake_engine.result = ExecutionResult(success=False, error="Agent block failed")

    response = await process_webhook(_request("orders", {"order": 1}))

    assert response.status_code == 500
    assert response.body.startswith("Internal Server Error: ")
    assert "Agent block failed" in response.body
    assert (await WorkflowRecord.get(id=workflow.id)).run_count == 0
    assert await ExecutionLog.filter(success=False).count() == 1


@pytest.mark.asyncio
async def test_unexpected_error_is_wrapped(workflow, make_webhook, fake_engine):
    await make_webhook(workflow, provider="generic", path="orders")
    fake_engine.error = KeyError("blocks")

    response = await process_webhook(_request("orders", {"order": 2}))

    assert response.status_code == 500
    assert "blocks" in response.body


class StubAirtablePoller:
    def __init__(self, changes, delay=0.0):
        self.changes = changes
        self.delay = delay
        self.calls = []

    async def fetch_changes(self, webhook, workflow, user_id, *, log=None):
        self.calls.append((webhook.id, user_id))
        await asyncio.sleep(self.delay)
        return AirtablePollOutcome(changes=list(self.changes), api_calls=1)


@pytest.mark.asyncio
async def test_airtable_ping_polls_and_executes_only_with_changes(workflow, make_webhook, fake_engine):
    webhook = await make_webhook(workflow, provider="airtable", path="at", baseId="app1", externalId="ach1")
    ping = {"base": {"id": "app1"}, "webhook": {"id": "ach1"}, "timestamp": "2024-01-01T00:00:00Z"}

    empty = StubAirtablePoller([])
    response = await process_webhook(_request("at", ping), deps=OrchestratorDeps(airtable_poller=empty))
    assert response.body == {"message": "Airtable webhook processed"}
    assert empty.calls == [(webhook.id, "user-1")]
    assert fake_engine.calls == []

    poller = StubAirtablePoller([AirtableChange("tbl1", "R1", "created", {"fldA": "a"})])
    response = await process_webhook(_request("at", ping), deps=OrchestratorDeps(airtable_poller=poller))
    assert response.body == {"message": "Airtable webhook processed"}
    assert fake_engine.calls[0]["trigger_input"]["airtableChanges"][0]["recordId"] == "R1"


@pytest.mark.asyncio
async def test_concurrent_airtable_pings_poll_once(workflow, make_webhook, fake_engine, memory_stores):
    webhook = await make_webhook(workflow, provider="airtable", path="at", baseId="app1", externalId="ach1")
    poller = StubAirtablePoller([AirtableChange("tbl1", "R1", "created", {"fldA": "a"})], delay=0.05)
    deps = OrchestratorDeps(airtable_poller=poller)
    ping = {"base": {"id": "app1"}, "webhook": {"id": "ach1"}}

    first, second = await asyncio.gather(
        process_webhook(_request("at", ping), deps=deps),
        process_webhook(_request("at", ping), deps=deps),
    )

    assert sorted([first.body["message"], second.body["message"]]) == [
        "Airtable polling already in progress – skipped",
        "Airtable webhook processed",
    ]
    assert len(poller.calls) == 1
    assert len(fake_engine.calls) == 1
    assert await memory_stores["lock"].owner(AIRTABLE_POLL_LOCK_PREFIX + str(webhook.id)) is None


@pytest.mark.asyncio
async def test_get_answers_whatsapp_handshake_and_endpoint_check(workflow, make_webhook):
    await make_webhook(workflow, provider="whatsapp", path="wa", verificationToken="tok")

    handshake = await handle_webhook_get(
        "wa", {"hub.mode": "subscribe", "hub.verify_token": "tok", "hub.challenge": "42"}
    )
    assert handshake.status_code == 200
    assert handshake.body == "42"

    rejected = await handle_webhook_get(
        "wa", {"hub.mode": "subscribe", "hub.verify_token": "wrong", "hub.challenge": "42"}
    )
    assert rejected.status_code == 403

    check = await handle_webhook_get("wa", {})
    assert check.body == {"message": "Webhook endpoint verified"}
    assert (await handle_webhook_get("missing", {})).status_code == 404
