"""
Run a workflow once for a trigger payload and persist the outcome.
"""
from __future__ import annotations

import json
import time
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from tortoise.expressions import F

from shared.database.models import EnvironmentVariables, UserStats
from shared.database.workflow_models import ExecutionTrigger, WorkflowRecord, WorkflowSubBlockValue
from shared.logger import RequestLogger, get_logger
from shared.secrets import SecretDecryptor, decrypt_env_vars
from api.triggers.logging_session import ExecutionLoggingSession, build_trace_spans, format_exception
from workflow_core.change_feed import merge_sub_block_values
from workflow_core.engine import ExecutionEngine, ExecutionResult, get_execution_engine, unwrap_execution_result
from workflow_core.errors import ExecutionFailed, WorkflowNotFound
from workflow_core.schema import WorkflowGraph
from workflow_core.serializer import Serializer

logger = get_logger(__name__)

JsonDict = Dict[str, Any]

_STATS_COUNTER = {
    ExecutionTrigger.WEBHOOK: "total_webhook_triggers",
    ExecutionTrigger.SCHEDULE: "total_scheduled_executions",
    ExecutionTrigger.MANUAL: "total_manual_executions",
    ExecutionTrigger.API: "total_manual_executions",
}


async def load_workflow_graph(workflow: WorkflowRecord) -> WorkflowGraph:
    """Stored graph with live sub-block values merged in."""
    state = workflow.state or {}
    if not state.get("blocks"):
        raise WorkflowNotFound(f"Workflow {workflow.id} has no stored graph state")
    graph = WorkflowGraph.model_validate(state)

    overrides: Dict[str, Dict[str, Any]] = {}
    async for row in WorkflowSubBlockValue.filter(workflow_id=workflow.id):
        overrides.setdefault(row.block_id, {})[row.sub_block_id] = row.value
    return merge_sub_block_values(graph, overrides) if overrides else graph


async def load_environment(user_id: int, decryptor: Optional[SecretDecryptor] = None) -> Dict[str, str]:
    environment = await EnvironmentVariables.get_or_none(user_id=user_id)
    if environment is None:
        return {}
    return decrypt_env_vars(environment.variables or {}, decryptor)


def process_block_states(graph: WorkflowGraph, log: RequestLogger) -> Dict[str, JsonDict]:
    """
    Flatten each block to `{sub_block_id: value}` and normalize `responseFormat`
    into the `{name, schema, strict}` envelope the engine expects.
    """
    states: Dict[str, JsonDict] = {}
    for block_id, block in graph.blocks.items():
        state = block.sub_block_values()
        response_format = state.get("responseFormat")
        if response_format:
            try:
                if isinstance(response_format, str):
                    response_format = json.loads(response_format)
                if isinstance(response_format, dict) and not response_format.get("schema") and not response_format.get("name"):
                    response_format = {"name": "response_schema", "schema": response_format, "strict": True}
                state = {**state, "responseFormat": response_format}
            except json.JSONDecodeError as exc:
                log.warning(f"Failed to parse responseFormat for block {block_id}: {exc}")
        states[block_id] = state
    return states


def parse_workflow_variables(raw: Any, log: RequestLogger) -> JsonDict:
    if not raw:
        return {}
    if isinstance(raw, str):
        try:
            raw = json.loads(raw)
        except json.JSONDecodeError as exc:
            log.error(f"Failed to parse workflow variables: {exc}")
            return {}
    return raw if isinstance(raw, dict) else {}


async def record_successful_run(workflow: WorkflowRecord, trigger: ExecutionTrigger) -> None:
    now = datetime.now(timezone.utc)
    await WorkflowRecord.filter(id=workflow.id).update(run_count=F("run_count") + 1, last_run_at=now)

    counter = _STATS_COUNTER[trigger]
    stats, _ = await UserStats.get_or_create(user_id=workflow.user_id)
    await UserStats.filter(id=stats.id).update(**{counter: F(counter) + 1}, last_active=now)


async def execute_workflow_from_payload(
    workflow: WorkflowRecord,
    trigger_input: JsonDict,
    execution_id: str,
    *,
    log: Optional[RequestLogger] = None,
    engine: Optional[ExecutionEngine] = None,
    trigger: ExecutionTrigger = ExecutionTrigger.WEBHOOK,
    decryptor: Optional[SecretDecryptor] = None,
    serializer: Optional[Serializer] = None,
) -> ExecutionResult:
    """
    Load, normalize and execute `workflow` with `trigger_input`.

    Counters move only on success. A session log is persisted on every path;
    failures are recorded with their message and stack, then re-raised so the
    caller can choose the response.
    """
    log = log or RequestLogger(logger)
    session = ExecutionLoggingSession(workflow.id, execution_id, trigger, log=log)
    log.info(
        "Preparing to execute workflow",
        extra={"workflow_id": workflow.id, "execution_id": execution_id, "trigger": trigger.value},
    )

    try:
        graph = await load_workflow_graph(workflow)
        env_vars = await load_environment(workflow.user_id, decryptor)
        await session.safe_start(user_id=str(workflow.user_id), variables=env_vars)

        block_states = process_block_states(graph, log)
        serialized = (serializer or Serializer()).serialize_workflow(
            graph.blocks, graph.edges, graph.loops, graph.parallels
        )
        workflow_variables = parse_workflow_variables(workflow.variables, log)

        changes = trigger_input.get("airtableChanges") if isinstance(trigger_input, dict) else None
        if changes is not None and (not isinstance(changes, list) or not changes):
            log.warning("Invalid Airtable input format - airtableChanges should be a non-empty array")

        engine = engine if engine is not None else get_execution_engine()
        started = time.monotonic()
        raw_result = await engine.execute(
            serialized,
            block_states=block_states,
            env_vars=env_vars,
            trigger_input=trigger_input,
            workflow_variables=workflow_variables,
            workflow_id=str(workflow.id),
        )
        result = unwrap_execution_result(raw_result)
        # wall-clock time stands in when the engine reports no duration
        total_duration = result.duration_ms
        if total_duration is None:
            total_duration = int((time.monotonic() - started) * 1000)
    except Exception as exc:
        log.error(
            f"Error executing workflow: {exc}",
            extra={"workflow_id": workflow.id, "execution_id": execution_id, "error_type": type(exc).__name__},
        )
        await session.safe_complete_with_error(error=format_exception(exc))
        raise

    log.info(
        "Workflow execution finished",
        extra={
            "execution_id": execution_id,
            "success": result.success,
            "duration_ms": total_duration,
        },
    )
    trace_spans = build_trace_spans(result.logs)

    if not result.success:
        message = result.error or "Workflow execution failed"
        await session.safe_complete_with_error(
            error={"message": message},
            total_duration_ms=total_duration,
            trace_spans=trace_spans,
        )
        raise ExecutionFailed(message, detail={"execution_id": execution_id})

    try:
        await record_successful_run(workflow, trigger)
    except Exception as exc:
        log.error(f"Failed to update run counters: {exc}", extra={"workflow_id": workflow.id})
        await session.safe_complete_with_error(
            error=format_exception(exc),
            total_duration_ms=total_duration,
            trace_spans=trace_spans,
        )
        raise

    await session.safe_complete(
        total_duration_ms=total_duration,
        final_output=result.output if result.output is not None else {},
        trace_spans=trace_spans,
    )
    return result


__all__ = [
    "execute_workflow_from_payload",
    "load_environment",
    "load_workflow_graph",
    "parse_workflow_variables",
    "process_block_states",
    "record_successful_run",
]
