"""
Conversion between the authoring graph and the execution-ready
`SerializedWorkflow`.
"""
from __future__ import annotations

import json
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple, Union
from uuid import uuid4

from shared.logger import get_logger
from workflow_core.blocks import BlockDefinition, BlockRegistry, SubflowDefinition, block_registry
from workflow_core.errors import InvalidBlockType
from workflow_core.schema import (
    BlockMetadata,
    BlockState,
    Connection,
    Edge,
    LoopSpec,
    ParallelSpec,
    SerializedBlock,
    SerializedBlockConfig,
    SerializedWorkflow,
    SubBlockState,
    is_subflow_type,
)

logger = get_logger(__name__)

BlockInput = Union[BlockState, Mapping[str, Any]]
EdgeInput = Union[Edge, Connection, Mapping[str, Any]]


def parse_response_format(value: Any) -> Any:
    """
    Tolerantly parse a `responseFormat` parameter.

    Structured values pass through, `<block.field>` references are kept as-is
    for substitution at run time, JSON strings are parsed. Anything else
    yields None.
    """
    if not value:
        return None
    if isinstance(value, (dict, list)):
        return value
    if not isinstance(value, str):
        return None

    trimmed = value.strip()
    if trimmed.startswith("<") and ">" in trimmed:
        return trimmed
    if not trimmed:
        return None
    try:
        return json.loads(trimmed)
    except json.JSONDecodeError as exc:
        logger.warning(
            "Failed to parse response format, dropping it",
            extra={"value": trimmed, "error": str(exc)},
        )
        return None


def _coerce_block(block: BlockInput) -> BlockState:
    if isinstance(block, BlockState):
        return block
    return BlockState.model_validate(block)


def _coerce_edge(edge: EdgeInput) -> Connection:
    if isinstance(edge, (Edge, Connection)):
        return Connection(
            source=edge.source,
            target=edge.target,
            source_handle=edge.source_handle or None,
            target_handle=edge.target_handle or None,
        )
    return Connection(
        source=edge["source"],
        target=edge["target"],
        source_handle=edge.get("sourceHandle") or edge.get("source_handle") or None,
        target_handle=edge.get("targetHandle") or edge.get("target_handle") or None,
    )


def _has_custom_tools_only(tools: Any) -> bool:
    if isinstance(tools, str):
        tools = json.loads(tools)
    if not isinstance(tools, list):
        raise ValueError("Agent tools must be a list")
    return all(isinstance(tool, dict) and tool.get("type") == "custom-tool" for tool in tools)


class Serializer:
    """Serializes workflow graphs against a block registry."""

    def __init__(self, registry: BlockRegistry | None = None) -> None:
        self.registry = registry or block_registry

    # ------------------------------------------------------------------
    # Authoring -> execution form
    # ------------------------------------------------------------------
    def serialize_workflow(
        self,
        blocks: Mapping[str, BlockInput],
        edges: Iterable[EdgeInput],
        loops: Optional[Mapping[str, Any]] = None,
        parallels: Optional[Mapping[str, Any]] = None,
    ) -> SerializedWorkflow:
        serialized_blocks = [self.serialize_block(_coerce_block(block)) for block in blocks.values()]
        block_ids = {block.id for block in serialized_blocks}

        connections: List[Connection] = []
        for edge in edges:
            connection = _coerce_edge(edge)
            if connection.source not in block_ids or connection.target not in block_ids:
                logger.warning(
                    "Dropping connection that references a missing block",
                    extra={"source": connection.source, "target": connection.target},
                )
                continue
            connections.append(connection)

        return SerializedWorkflow(
            blocks=serialized_blocks,
            connections=connections,
            loops={key: LoopSpec.model_validate(value) for key, value in (loops or {}).items()},
            parallels={key: ParallelSpec.model_validate(value) for key, value in (parallels or {}).items()},
        )

    def serialize_block(self, block: BlockState) -> SerializedBlock:
        definition = self.registry.get(block.type)
        if isinstance(definition, SubflowDefinition):
            return SerializedBlock(
                id=block.id,
                position=block.position,
                config=SerializedBlockConfig(tool="", params=dict(block.data or {})),
                inputs={},
                outputs=dict(block.outputs),
                metadata=BlockMetadata(
                    id=definition.type,
                    name=block.name,
                    description=definition.description,
                    category=definition.category,
                    color=definition.color,
                ),
                enabled=block.enabled,
            )

        params = self.extract_params(block, definition)
        tool = self.resolve_tool(block, definition, params)

        outputs = dict(block.outputs or definition.outputs)
        response_format = parse_response_format(params.get("responseFormat"))
        if response_format is not None:
            outputs["responseFormat"] = response_format

        return SerializedBlock(
            id=block.id,
            position=block.position,
            config=SerializedBlockConfig(tool=tool, params=params),
            inputs=definition.declared_inputs(),
            outputs=outputs,
            metadata=BlockMetadata(
                id=definition.type,
                name=block.name,
                description=definition.description,
                category=definition.category,
                color=definition.bg_color,
            ),
            enabled=block.enabled,
        )

    def extract_params(self, block: BlockState, definition: BlockDefinition) -> Dict[str, Any]:
        params: Dict[str, Any] = {sub_block_id: None for sub_block_id in definition.sub_block_ids()}
        params.update(block.sub_block_values())

        for sub_block in definition.sub_blocks:
            if params.get(sub_block.id) is None and sub_block.default is not None:
                params[sub_block.id] = sub_block.default(params)
        return params

    def resolve_tool(self, block: BlockState, definition: BlockDefinition, params: Dict[str, Any]) -> str:
        if definition.supports_custom_tools and params.get("tools"):
            try:
                if _has_custom_tools_only(params["tools"]):
                    # Custom tools are resolved per call by the engine.
                    return ""
            except (ValueError, TypeError) as exc:
                logger.error(
                    "Failed to read agent tools, using default tool",
                    extra={"block_id": block.id, "error": str(exc)},
                )
                return definition.tools.default_tool

        try:
            return definition.resolve_tool(params)
        except Exception as exc:
            logger.warning(
                "Tool selection failed during serialization, using default",
                extra={"block_id": block.id, "block_type": block.type, "error": str(exc)},
            )
            return definition.tools.default_tool

    # ------------------------------------------------------------------
    # Execution form -> authoring
    # ------------------------------------------------------------------
    def deserialize_workflow(
        self, workflow: Union[SerializedWorkflow, Mapping[str, Any]]
    ) -> Tuple[Dict[str, BlockState], List[Edge]]:
        if not isinstance(workflow, SerializedWorkflow):
            workflow = SerializedWorkflow.model_validate(workflow)

        parents: Dict[str, str] = {}
        for container_id, loop in workflow.loops.items():
            for node_id in loop.nodes:
                parents[node_id] = container_id
        for container_id, parallel in workflow.parallels.items():
            for node_id in parallel.nodes:
                parents[node_id] = container_id

        blocks: Dict[str, BlockState] = {}
        for serialized in workflow.blocks:
            block = self.deserialize_block(serialized)
            block.parent_id = parents.get(block.id)
            blocks[block.id] = block

        edges = [
            Edge(
                id=str(uuid4()),
                source=connection.source,
                target=connection.target,
                source_handle=connection.source_handle,
                target_handle=connection.target_handle,
            )
            for connection in workflow.connections
        ]
        return blocks, edges

    def deserialize_block(self, serialized: SerializedBlock) -> BlockState:
        block_type = serialized.metadata.id if serialized.metadata else None
        if not block_type:
            raise InvalidBlockType(block_type)
        definition = self.registry.get(block_type)
        name = serialized.metadata.name if serialized.metadata else None

        if is_subflow_type(block_type):
            return BlockState(
                id=serialized.id,
                type=block_type,
                name=name or definition.name,
                position=serialized.position,
                sub_blocks={},
                outputs=dict(serialized.outputs),
                enabled=serialized.enabled,
                data=dict(serialized.config.params),
            )

        params = serialized.config.params
        sub_blocks: Dict[str, SubBlockState] = {}
        for sub_block in definition.sub_blocks:
            if sub_block.id in sub_blocks:
                continue
            sub_blocks[sub_block.id] = SubBlockState(
                id=sub_block.id,
                type=sub_block.type,
                value=params.get(sub_block.id),
            )

        return BlockState(
            id=serialized.id,
            type=block_type,
            name=name or definition.name,
            position=serialized.position,
            sub_blocks=sub_blocks,
            outputs=dict(serialized.outputs),
            enabled=serialized.enabled,
        )


__all__ = ["Serializer", "parse_response_format"]
