"""
Contract between trigger orchestration and the workflow execution engine.

The engine itself is pluggable: it is resolved from the `execution_engine`
setting (a `module:attribute` path to a factory or instance) or installed at
runtime with `set_execution_engine`.
"""
from __future__ import annotations

import importlib
from datetime import datetime
from typing import Any, Dict, List, Optional, Protocol, Union, runtime_checkable

from pydantic import BaseModel, ConfigDict, Field

from workflow_core.errors import ExecutionFailed
from workflow_core.schema import SerializedWorkflow


class BlockLog(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    block_id: str = Field(alias="blockId")
    block_name: Optional[str] = Field(default=None, alias="blockName")
    block_type: Optional[str] = Field(default=None, alias="blockType")
    success: bool = True
    input: Any = None
    output: Any = None
    error: Optional[str] = None
    started_at: datetime = Field(alias="startedAt")
    ended_at: Optional[datetime] = Field(default=None, alias="endedAt")
    duration_ms: int = Field(default=0, alias="durationMs")
    tool_calls: Optional[List[Dict[str, Any]]] = Field(default=None, alias="toolCalls")


class ExecutionResult(BaseModel):
    success: bool
    output: Any = None
    error: Optional[str] = None
    logs: List[BlockLog] = Field(default_factory=list)
    metadata: Dict[str, Any] = Field(default_factory=dict)

    @property
    def duration_ms(self) -> Optional[int]:
        duration = self.metadata.get("duration")
        return int(duration) if duration is not None else None


class StreamingExecution(BaseModel):
    """Partial-results mode: a chunk stream plus the final result."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    stream: Any = None
    execution: ExecutionResult


@runtime_checkable
class ExecutionEngine(Protocol):
    async def execute(
        self,
        workflow: SerializedWorkflow,
        *,
        block_states: Dict[str, Dict[str, Any]],
        env_vars: Dict[str, str],
        trigger_input: Dict[str, Any],
        workflow_variables: Dict[str, Any],
        workflow_id: str,
    ) -> Union[ExecutionResult, StreamingExecution]:
        ...


def unwrap_execution_result(result: Union[ExecutionResult, StreamingExecution, Dict[str, Any]]) -> ExecutionResult:
    """Reduce any engine return value to a plain `ExecutionResult`."""
    if isinstance(result, StreamingExecution):
        return result.execution
    if isinstance(result, ExecutionResult):
        return result
    if isinstance(result, dict):
        if "execution" in result and isinstance(result["execution"], (dict, ExecutionResult)):
            execution = result["execution"]
            return execution if isinstance(execution, ExecutionResult) else ExecutionResult.model_validate(execution)
        return ExecutionResult.model_validate(result)
    raise ExecutionFailed(f"Unsupported execution result type: {type(result).__name__}")


_engine_override: Optional[ExecutionEngine] = None


def set_execution_engine(engine: Optional[ExecutionEngine]) -> None:
    global _engine_override
    _engine_override = engine


def load_execution_engine(path: str) -> ExecutionEngine:
    module_name, _, attribute = path.partition(":")
    if not module_name or not attribute:
        raise ExecutionFailed(f"Invalid execution engine path: {path!r} (expected 'module:attribute')")
    module = importlib.import_module(module_name)
    target = getattr(module, attribute)
    engine = target() if callable(target) and not isinstance(target, ExecutionEngine) else target
    if not isinstance(engine, ExecutionEngine):
        raise ExecutionFailed(f"{path} does not provide an execution engine")
    return engine


def get_execution_engine() -> ExecutionEngine:
    if _engine_override is not None:
        return _engine_override

    from shared.config import config

    if not config.execution_engine:
        raise ExecutionFailed("No execution engine configured (set EXECUTION_ENGINE)")
    return load_execution_engine(config.execution_engine)


__all__ = [
    "BlockLog",
    "ExecutionEngine",
    "ExecutionResult",
    "StreamingExecution",
    "get_execution_engine",
    "load_execution_engine",
    "set_execution_engine",
    "unwrap_execution_result",
]
