from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import pytest
import pytest_asyncio

from shared.database import close_db, init_db
from shared.database.models import User
from shared.database.workflow_models import Webhook, WorkflowRecord
from shared.stores import InMemoryDedupeStore, InMemoryLockStore, configure_stores
from workflow_core.engine import BlockLog, ExecutionResult, set_execution_engine


TEST_USER_ID = "user-1"

SIMPLE_GRAPH: Dict[str, Any] = {
    "blocks": {
        "start": {
            "id": "start",
            "type": "starter",
            "name": "Start",
            "subBlocks": {
                "startWorkflow": {"id": "startWorkflow", "type": "dropdown", "value": "webhook"},
            },
        },
        "agent": {
            "id": "agent",
            "type": "agent",
            "name": "Agent 1",
            "subBlocks": {
                "model": {"id": "model", "type": "combobox", "value": "gpt-4o"},
                "context": {"id": "context", "type": "long-input", "value": "<start.input>"},
                "responseFormat": {
                    "id": "responseFormat",
                    "type": "code",
                    "value": '{"type": "object", "properties": {"summary": {"type": "string"}}}',
                },
            },
        },
    },
    "edges": [{"id": "e1", "source": "start", "target": "agent"}],
    "loops": {},
    "parallels": {},
}


class FakeEngine:
    """Records every call and returns a canned result (or raises)."""

    def __init__(self, result: Optional[ExecutionResult] = None, error: Optional[Exception] = None) -> None:
        self.result = result or ExecutionResult(
            success=True,
            output={"content": "done"},
            logs=[
                BlockLog(
                    block_id="agent",
                    block_name="Agent 1",
                    block_type="agent",
                    started_at=datetime(2024, 1, 1, tzinfo=timezone.utc),
                    ended_at=datetime(2024, 1, 1, 0, 0, 1, tzinfo=timezone.utc),
                    duration_ms=1000,
                    output={"content": "done", "tokens": {"total": 12}},
                )
            ],
            metadata={"duration": 1000},
        )
        self.error = error
        self.calls: List[Dict[str, Any]] = []

    async def execute(
        self,
        workflow,
        *,
        block_states,
        env_vars,
        trigger_input,
        workflow_variables,
        workflow_id,
    ):
        self.calls.append(
            {
                "workflow": workflow,
                "block_states": block_states,
                "env_vars": env_vars,
                "trigger_input": trigger_input,
                "workflow_variables": workflow_variables,
                "workflow_id": workflow_id,
            }
        )
        if self.error is not None:
            raise self.error
        return self.result


@pytest_asyncio.fixture
async def db():
    await init_db("sqlite://:memory:", generate_schemas=True)
    try:
        yield
    finally:
        await close_db()


@pytest.fixture(autouse=True)
def memory_stores():
    dedupe_store = InMemoryDedupeStore()
    lock_store = InMemoryLockStore()
    configure_stores(dedupe=dedupe_store, lock=lock_store)
    yield {"dedupe": dedupe_store, "lock": lock_store}
    configure_stores()


@pytest.fixture
def fake_engine():
    engine = FakeEngine()
    set_execution_engine(engine)
    yield engine
    set_execution_engine(None)


@pytest_asyncio.fixture
async def db_user(db):
    return await User.create(user_id=TEST_USER_ID, email="owner@example.com", name="Owner")


@pytest_asyncio.fixture
async def workflow(db_user):
    return await WorkflowRecord.create(
        user=db_user,
        name="Triggered workflow",
        state=SIMPLE_GRAPH,
        variables={"region": "eu"},
    )


@pytest.fixture
def make_webhook(db):
    async def _make(workflow: WorkflowRecord, *, provider: Optional[str], path: str, **config: Any) -> Webhook:
        return await Webhook.create(
            workflow=workflow,
            block_id="start",
            path=path,
            provider=provider,
            provider_config=config,
            is_active=True,
        )

    return _make
