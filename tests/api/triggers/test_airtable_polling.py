from __future__ import annotations

import httpx
import pytest
import pytest_asyncio

from api.triggers.polling.airtable import CURSOR_KEY, AirtablePayloadPoller
from api.triggers.polling.consolidate import ChangeConsolidator
from shared.database.workflow_models import Webhook
from workflow_core.errors import CursorPersistenceFailed


def _created(table, record, fields):
    return {"changedTablesById": {table: {"createdRecordsById": {record: {"cellValuesByFieldId": fields}}}}}


def _updated(table, record, current, previous=None):
    change = {"current": {"cellValuesByFieldId": current}}
    if previous is not None:
        change["previous"] = {"cellValuesByFieldId": previous}
    return {"changedTablesById": {table: {"changedRecordsById": {record: change}}}}


PAGES = {
    "1": {"payloads": [_created("tbl1", "R1", {"fldA": "a"})], "cursor": 2, "mightHaveMore": True},
    "2": {"payloads": [_updated("tbl1", "R1", {"fldB": "b"}, {"fldB": None})], "cursor": 3, "mightHaveMore": True},
    "3": {
        "payloads": [
            _updated("tbl1", "R2", {"fldA": "new"}, {"fldA": "old"}),
            _updated("tbl1", "R2", {"fldA": "newer"}, {"fldA": "new"}),
        ],
        "cursor": 4,
        "mightHaveMore": False,
    },
}


async def _token(user_id, provider):
    assert provider == "airtable"
    return "airtable-token"


async def _no_token(user_id, provider):
    return None


def _client(handler) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


def _paged_handler(seen):
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.headers["Authorization"] == "Bearer airtable-token"
        assert request.url.path == "/v0/bases/app123/webhooks/ach456/payloads"
        cursor = request.url.params.get("cursor")
        seen.append(cursor)
        return httpx.Response(200, json=PAGES[cursor])

    return handler


@pytest_asyncio.fixture
async def airtable_webhook(workflow, make_webhook):
    return await make_webhook(
        workflow, provider="airtable", path="airtable-hook", baseId="app123", externalId="ach456", **{CURSOR_KEY: 1}
    )


@pytest.mark.asyncio
async def test_three_pages_are_consolidated_and_cursor_advanced(airtable_webhook, workflow):
    seen = []
    async with _client(_paged_handler(seen)) as client:
        poller = AirtablePayloadPoller(http_client=client, token_getter=_token)
        outcome = await poller.fetch_changes(airtable_webhook, workflow, "user-1")

    assert seen == ["1", "2", "3"]
    assert outcome.api_calls == 3
    assert outcome.payloads_fetched == 4
    assert outcome.cursor == 4
    assert outcome.error is None

    changes = {change.record_id: change for change in outcome.changes}
    assert changes["R1"].change_type == "created"
    assert changes["R1"].changed_fields == {"fldA": "a", "fldB": "b"}
    assert changes["R1"].previous_fields is None
    assert changes["R2"].change_type == "updated"
    assert changes["R2"].changed_fields == {"fldA": "newer"}
    assert changes["R2"].previous_fields == {"fldA": "old"}

    stored = await Webhook.get(id=airtable_webhook.id)
    assert stored.provider_config[CURSOR_KEY] == 4
    assert stored.provider_config["baseId"] == "app123"
    assert outcome.trigger_input["airtableChanges"][0]["recordId"] == "R1"


@pytest.mark.asyncio
async def test_cursor_is_persisted_before_next_page(airtable_webhook, workflow):
    persisted = []

    async def writer(webhook, provider_config):
        persisted.append(provider_config[CURSOR_KEY])

    seen = []
    async with _client(_paged_handler(seen)) as client:
        poller = AirtablePayloadPoller(http_client=client, token_getter=_token, cursor_writer=writer)
        await poller.fetch_changes(airtable_webhook, workflow, "user-1")

    assert persisted == [2, 3, 4]


@pytest.mark.asyncio
async def test_cursor_persistence_failure_aborts_cycle(airtable_webhook, workflow):
    async def failing_writer(webhook, provider_config):
        raise RuntimeError("db unavailable")

    seen = []
    async with _client(_paged_handler(seen)) as client:
        poller = AirtablePayloadPoller(http_client=client, token_getter=_token, cursor_writer=failing_writer)
        with pytest.raises(CursorPersistenceFailed) as excinfo:
            await poller.fetch_changes(airtable_webhook, workflow, "user-1")

    assert seen == ["1"]
    assert excinfo.value.cursor == 1


@pytest.mark.asyncio
async def test_page_cap_stops_polling(airtable_webhook, workflow):
    counter = {"n": 0}

    def endless(request: httpx.Request) -> httpx.Response:
        counter["n"] += 1
        return httpx.Response(200, json={"payloads": [], "cursor": counter["n"] + 10, "mightHaveMore": True})

    async with _client(endless) as client:
        poller = AirtablePayloadPoller(http_client=client, token_getter=_token, max_calls=3)
        outcome = await poller.fetch_changes(airtable_webhook, workflow, "user-1")

    assert counter["n"] == 3
    assert outcome.api_calls == 3


@pytest.mark.asyncio
async def test_api_error_keeps_changes_from_earlier_pages(airtable_webhook, workflow):
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.params.get("cursor") == "1":
            return httpx.Response(200, json=PAGES["1"])
        return httpx.Response(429, json={"error": {"type": "TOO_MANY_REQUESTS", "message": "slow down"}})

    async with _client(handler) as client:
        poller = AirtablePayloadPoller(http_client=client, token_getter=_token)
        outcome = await poller.fetch_changes(airtable_webhook, workflow, "user-1")

    assert outcome.error == "slow down"
    assert [change.record_id for change in outcome.changes] == ["R1"]


@pytest.mark.asyncio
async def test_missing_token_or_config_returns_error(airtable_webhook, workflow, make_webhook):
    poller = AirtablePayloadPoller(token_getter=_no_token)
    outcome = await poller.fetch_changes(airtable_webhook, workflow, "user-1")
    assert outcome.error == "Airtable access token not found"
    assert outcome.api_calls == 0

    incomplete = await make_webhook(workflow, provider="airtable", path="incomplete", baseId="app123")
    outcome = await AirtablePayloadPoller(token_getter=_token).fetch_changes(incomplete, workflow, "user-1")
    assert "externalId" in outcome.error


def test_consolidator_merges_created_then_updated():
    consolidator = ChangeConsolidator()
    consolidator.add_payload(_created("t", "R1", {"a": 1}))
    consolidator.add_payload(_updated("t", "R1", {"b": 2}, {"b": 0}))

    change = consolidator.get("R1")
    assert change.change_type == "created"
    assert change.changed_fields == {"a": 1, "b": 2}
    assert consolidator.as_input()["airtableChanges"][0]["changeType"] == "created"
    assert len(consolidator) == 1
