"""
Persisted execution log for one trigger-initiated run.

The `safe_*` methods never raise: a failure to write the log is itself logged
so the trigger response is never affected by log persistence.
"""
from __future__ import annotations

import traceback
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from tortoise.exceptions import BaseORMException

from shared.database.workflow_models import ExecutionLevel, ExecutionLog, ExecutionTrigger
from shared.logger import RequestLogger, get_logger
from workflow_core.engine import BlockLog

logger = get_logger(__name__)

JsonDict = Dict[str, Any]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value is not None else None


def build_trace_spans(logs: List[BlockLog]) -> List[JsonDict]:
    """One span per block log; failed blocks carry their error inside `output`."""
    spans: List[JsonDict] = []
    for index, block_log in enumerate(logs):
        output = block_log.output
        if not block_log.success and block_log.error:
            output = {
                "error": block_log.error,
                "success": False,
                **(block_log.output if isinstance(block_log.output, dict) else {}),
            }

        tokens = 0
        if isinstance(block_log.output, dict):
            token_info = block_log.output.get("tokens")
            if isinstance(token_info, dict):
                tokens = token_info.get("total") or 0

        block_type = block_log.block_type or "unknown"
        spans.append(
            {
                "id": block_log.block_id,
                "name": f"Block {block_log.block_name or block_log.block_type} ({block_type})",
                "type": block_type,
                "duration": block_log.duration_ms or 0,
                "startTime": _iso(block_log.started_at),
                "endTime": _iso(block_log.ended_at or block_log.started_at),
                "status": "success" if block_log.success else "error",
                "blockId": block_log.block_id,
                "input": block_log.input,
                "output": output,
                "tokens": tokens,
                "relativeStartMs": index * 100,
                "children": [],
                "toolCalls": block_log.tool_calls or [],
            }
        )
    return spans


def format_exception(exc: BaseException) -> JsonDict:
    return {
        "message": str(exc) or "Webhook workflow execution failed",
        "stackTrace": "".join(traceback.format_exception(type(exc), exc, exc.__traceback__)),
    }


class ExecutionLoggingSession:
    def __init__(
        self,
        workflow_id: int,
        execution_id: str,
        trigger: ExecutionTrigger = ExecutionTrigger.WEBHOOK,
        *,
        log: Optional[RequestLogger] = None,
    ) -> None:
        self.workflow_id = workflow_id
        self.execution_id = execution_id
        self.trigger = trigger
        self.log = log or RequestLogger(logger)
        self.started_at = _utcnow()
        self.record: Optional[ExecutionLog] = None

    async def _ensure_record(self) -> ExecutionLog:
        if self.record is None:
            self.record = await ExecutionLog.create(
                execution_id=self.execution_id,
                workflow_id=self.workflow_id,
                trigger=self.trigger,
                started_at=self.started_at,
                metadata={},
            )
        return self.record

    async def safe_start(self, *, user_id: Optional[str] = None, variables: Optional[Dict[str, str]] = None) -> bool:
        try:
            record = await self._ensure_record()
            record.metadata = {
                "userId": user_id,
                # Names only; values are decrypted secrets.
                "environmentVariables": sorted((variables or {}).keys()),
            }
            await record.save(update_fields=["metadata"])
            return True
        except BaseORMException as exc:
            self.log.error(f"Failed to start execution log {self.execution_id}: {exc}")
            return False

    async def safe_complete(
        self,
        *,
        total_duration_ms: int,
        final_output: Any,
        trace_spans: List[JsonDict],
        ended_at: Optional[datetime] = None,
    ) -> bool:
        try:
            record = await self._ensure_record()
            record.ended_at = ended_at or _utcnow()
            record.total_duration_ms = total_duration_ms
            record.output = final_output
            record.trace_spans = trace_spans
            record.success = True
            record.level = ExecutionLevel.INFO
            record.message = "Workflow execution completed"
            await record.save()
            return True
        except BaseORMException as exc:
            self.log.error(f"Failed to complete execution log {self.execution_id}: {exc}")
            return False

    async def safe_complete_with_error(
        self,
        *,
        error: JsonDict,
        total_duration_ms: int = 0,
        trace_spans: Optional[List[JsonDict]] = None,
        ended_at: Optional[datetime] = None,
    ) -> bool:
        try:
            record = await self._ensure_record()
            record.ended_at = ended_at or _utcnow()
            record.total_duration_ms = total_duration_ms
            record.error = error
            record.output = None
            record.trace_spans = trace_spans or []
            record.success = False
            record.level = ExecutionLevel.ERROR
            record.message = error.get("message")
            await record.save()
            return True
        except BaseORMException as exc:
            self.log.error(f"Failed to persist failed execution log {self.execution_id}: {exc}")
            return False


__all__ = ["ExecutionLoggingSession", "build_trace_spans", "format_exception"]
