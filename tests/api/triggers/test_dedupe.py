from __future__ import annotations

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from api.triggers import dedupe
from shared.stores import InMemoryDedupeStore
from workflow_core.errors import DuplicateTrigger


def test_normalize_body_strips_volatile_fields_at_every_depth():
    body = {
        "Timestamp": 1,
        "event": {"nonce": "x", "text": "hi", "items": [{"requestId": "r", "id": 1}]},
        "value": 3,
    }
    assert dedupe.normalize_body(body) == {"event": {"text": "hi", "items": [{"id": 1}]}, "value": 3}
    assert "Timestamp" in body


def test_request_hash_is_order_independent_and_ignores_volatile_fields():
    first = dedupe.compute_request_hash("hooks/a", {"b": 1, "a": 2, "timestamp": 100})
    second = dedupe.compute_request_hash("hooks/a", {"a": 2, "b": 1, "timestamp": 200})
    assert first == second
    assert len(first) == 64
    assert dedupe.compute_request_hash("hooks/b", {"a": 2, "b": 1}) != first
    assert dedupe.compute_request_hash("hooks/a", {"a": 3, "b": 1}) != first


def test_namespaced_keys():
    assert dedupe.message_key("whatsapp", "wamid.1") == "whatsapp:msg:wamid.1"
    assert dedupe.generic_key("p", {}).startswith("generic:")


@pytest.mark.asyncio
async def test_second_claim_of_same_message_is_duplicate():
    store = InMemoryDedupeStore()
    messages = [{"id": "wamid.42", "text": {"body": "hi"}}]

    await dedupe.claim_whatsapp_messages(messages, store=store)
    with pytest.raises(DuplicateTrigger) as excinfo:
        await dedupe.claim_whatsapp_messages(messages, store=store)
    assert excinfo.value.key == "whatsapp:msg:wamid.42"


@pytest.mark.asyncio
async def test_messages_without_id_are_not_claimed():
    store = InMemoryDedupeStore()
    await dedupe.claim_whatsapp_messages([], store=store)
    await dedupe.claim_whatsapp_messages([{"text": {"body": "hi"}}], store=store)
    await dedupe.claim_whatsapp_messages([{"text": {"body": "hi"}}], store=store)


@pytest.mark.asyncio
async def test_generic_retry_with_new_timestamp_is_duplicate():
    store = InMemoryDedupeStore()
    await dedupe.claim_generic("orders", {"order": 7, "timestamp": "t1"}, store=store)
    with pytest.raises(DuplicateTrigger):
        await dedupe.claim_generic("orders", {"order": 7, "timestamp": "t2"}, store=store)
    await dedupe.claim_generic("orders", {"order": 8}, store=store)


class _BrokenStore:
    async def mark_if_new(self, key, ttl_seconds):
        raise RedisConnectionError("redis down")


@pytest.mark.asyncio
async def test_store_outage_does_not_block_processing():
    await dedupe.claim("generic:abc", store=_BrokenStore())
