"""
Explicit change notifications for an in-memory workflow graph.

Editors publish `WorkflowChange` events on a `WorkflowChangeFeed`; derived
views such as `SerializedWorkflowView` subscribe and debounce their own
refreshes. Nothing here is module-level state: every feed and view is an
ordinary object owned by its caller.
"""
from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, List, Mapping, Optional, Tuple

from shared.logger import get_logger
from workflow_core.schema import SerializedWorkflow, WorkflowGraph
from workflow_core.serializer import Serializer

logger = get_logger(__name__)


class ChangeKind(str, Enum):
    STRUCTURE = "structure"
    SUB_BLOCK = "sub_block"


@dataclass(frozen=True)
class WorkflowChange:
    kind: ChangeKind
    block_count: int = 0
    edge_count: int = 0
    block_id: Optional[str] = None
    sub_block_id: Optional[str] = None


ChangeListener = Callable[[WorkflowChange], None]


class WorkflowChangeFeed:
    """Fan-out channel for graph and sub-block change notifications."""

    def __init__(self) -> None:
        self._listeners: List[ChangeListener] = []

    def subscribe(self, listener: ChangeListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def publish(self, change: WorkflowChange) -> None:
        for listener in list(self._listeners):
            try:
                listener(change)
            except Exception:
                logger.exception("Change listener failed", extra={"kind": change.kind.value})

    def structure_changed(self, graph: WorkflowGraph) -> None:
        self.publish(
            WorkflowChange(
                kind=ChangeKind.STRUCTURE,
                block_count=len(graph.blocks),
                edge_count=len(graph.edges),
            )
        )

    def sub_block_changed(self, block_id: str, sub_block_id: str) -> None:
        self.publish(WorkflowChange(kind=ChangeKind.SUB_BLOCK, block_id=block_id, sub_block_id=sub_block_id))


GraphSource = Callable[[], Tuple[WorkflowGraph, Mapping[str, Mapping[str, Any]]]]


def merge_sub_block_values(
    graph: WorkflowGraph, sub_block_values: Mapping[str, Mapping[str, Any]]
) -> WorkflowGraph:
    """Return a copy of `graph` with live sub-block values applied."""
    merged = graph.model_copy(deep=True)
    for block_id, values in sub_block_values.items():
        block = merged.blocks.get(block_id)
        if block is None:
            continue
        for sub_block_id, value in values.items():
            sub_block = block.sub_blocks.get(sub_block_id)
            if sub_block is not None:
                sub_block.value = value
    return merged


class SerializedWorkflowView:
    """
    Cached serialized form of a graph that refreshes after changes settle.

    Structural notifications only schedule a refresh when the block or edge
    count differs from the last one seen. Reads regenerate synchronously when
    the cache is older than `max_age_seconds`.
    """

    def __init__(
        self,
        source: GraphSource,
        feed: WorkflowChangeFeed,
        *,
        serializer: Optional[Serializer] = None,
        debounce_seconds: float = 0.1,
        max_age_seconds: float = 1.0,
    ) -> None:
        self._source = source
        self._serializer = serializer or Serializer()
        self._debounce_seconds = debounce_seconds
        self._max_age_seconds = max_age_seconds
        self._cached: Optional[SerializedWorkflow] = None
        self._generated_at: Optional[float] = None
        self._last_shape: Optional[Tuple[int, int]] = None
        self._pending: Optional[asyncio.TimerHandle] = None
        self._unsubscribe = feed.subscribe(self._on_change)

    @property
    def generated_at(self) -> Optional[float]:
        return self._generated_at

    def refresh(self) -> SerializedWorkflow:
        graph, sub_block_values = self._source()
        merged = merge_sub_block_values(graph, sub_block_values)
        self._cached = self._serializer.serialize_workflow(
            merged.blocks, merged.edges, merged.loops, merged.parallels
        )
        self._generated_at = time.monotonic()
        return self._cached

    def get(self) -> SerializedWorkflow:
        if (
            self._cached is None
            or self._generated_at is None
            or time.monotonic() - self._generated_at > self._max_age_seconds
        ):
            return self.refresh()
        return self._cached

    def close(self) -> None:
        self._cancel_pending()
        self._unsubscribe()

    def _on_change(self, change: WorkflowChange) -> None:
        if change.kind is ChangeKind.STRUCTURE:
            shape = (change.block_count, change.edge_count)
            if shape == self._last_shape:
                return
            self._last_shape = shape
        self._schedule_refresh()

    def _schedule_refresh(self) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            # No loop to debounce on; mark stale so the next read regenerates.
            self._generated_at = None
            return
        self._cancel_pending()
        self._pending = loop.call_later(self._debounce_seconds, self._run_pending)

    def _run_pending(self) -> None:
        self._pending = None
        try:
            self.refresh()
        except Exception:
            logger.exception("Failed to refresh serialized workflow view")

    def _cancel_pending(self) -> None:
        if self._pending is not None:
            self._pending.cancel()
            self._pending = None


__all__ = [
    "ChangeKind",
    "SerializedWorkflowView",
    "WorkflowChange",
    "WorkflowChangeFeed",
    "merge_sub_block_values",
]
