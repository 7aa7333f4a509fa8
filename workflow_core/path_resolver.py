"""
Upstream reachability over a workflow's connections.

A block may read outputs of any block on a directed path that ends at it, not
just its direct predecessors. `BlockPathCalculator` computes that set and
`get_block_connections` turns it into the per-block view the builder shows
as selectable variables.
"""
from __future__ import annotations

from collections import deque
from dataclasses import dataclass, field
from typing import Any, Deque, Dict, Iterable, List, Mapping, Optional, Sequence, Set, Tuple, Union

from workflow_core.schema import BlockState, Connection, Edge
from workflow_core.serializer import parse_response_format

EdgeLike = Union[Edge, Connection, Mapping[str, Any]]


def _endpoints(edge: EdgeLike) -> Tuple[str, str]:
    if isinstance(edge, Mapping):
        return edge["source"], edge["target"]
    return edge.source, edge.target


class PathIndex:
    """Reverse adjacency index built once per edge list."""

    def __init__(self, edges: Iterable[EdgeLike]) -> None:
        self._incoming: Dict[str, List[str]] = {}
        for edge in edges:
            source, target = _endpoints(edge)
            self._incoming.setdefault(target, []).append(source)

    def predecessors(self, block_id: str) -> Sequence[str]:
        return self._incoming.get(block_id, ())

    def upstream(self, block_id: str) -> List[str]:
        visited: Set[str] = {block_id}
        ordered: List[str] = []
        queue: Deque[str] = deque([block_id])

        while queue:
            current = queue.popleft()
            for source in self.predecessors(current):
                if source in visited:
                    continue
                visited.add(source)
                ordered.append(source)
                queue.append(source)
        return ordered


class BlockPathCalculator:
    @staticmethod
    def find_all_path_nodes(edges: Iterable[EdgeLike], block_id: str) -> List[str]:
        """
        Return every block id on a directed path ending at `block_id`.

        Breadth-first over reversed edges, nearest predecessors first and ties
        in edge-list order. The queried block is never part of the result,
        even when a loop body points back at it.
        """
        return PathIndex(edges).upstream(block_id)


@dataclass
class OutputField:
    name: str
    type: str = "string"
    description: Optional[str] = None


@dataclass
class ConnectedBlock:
    id: str
    type: str
    name: str
    output_type: List[str] = field(default_factory=list)
    response_format: Any = None


def extract_fields_from_schema(schema: Any) -> List[OutputField]:
    """Read output fields from a response format (legacy field list or JSON Schema)."""
    if not isinstance(schema, dict):
        return []

    if isinstance(schema.get("fields"), list):
        return [
            OutputField(
                name=item.get("name", ""),
                type=item.get("type", "string"),
                description=item.get("description"),
            )
            for item in schema["fields"]
            if isinstance(item, dict)
        ]

    schema_obj = schema.get("schema") or schema
    properties = schema_obj.get("properties") if isinstance(schema_obj, dict) else None
    if not isinstance(properties, dict):
        return []

    return [
        OutputField(
            name=name,
            type=(prop or {}).get("type", "string") if isinstance(prop, dict) else "string",
            description=prop.get("description") if isinstance(prop, dict) else None,
        )
        for name, prop in properties.items()
    ]


def _connected_block(block: BlockState, sub_block_values: Mapping[str, Any]) -> ConnectedBlock:
    response_format = parse_response_format(sub_block_values.get("responseFormat"))
    if isinstance(response_format, dict):
        fields = extract_fields_from_schema(response_format)
    else:
        fields = [OutputField(name=key) for key in (block.outputs or {})]
    return ConnectedBlock(
        id=block.id,
        type=block.type,
        name=block.name,
        output_type=[item.name for item in fields],
        response_format=response_format,
    )


def get_block_connections(
    blocks: Mapping[str, BlockState],
    edges: Sequence[EdgeLike],
    block_id: str,
    sub_block_values: Optional[Mapping[str, Mapping[str, Any]]] = None,
) -> Dict[str, Any]:
    """
    Build the upstream connections view for `block_id`.

    `sub_block_values` holds live per-block configuration keyed by block id;
    when omitted the values stored on each block are used.
    """
    def values_for(block: BlockState) -> Mapping[str, Any]:
        if sub_block_values is not None and block.id in sub_block_values:
            return sub_block_values[block.id]
        return block.sub_block_values()

    index = PathIndex(edges)

    incoming = [
        _connected_block(blocks[source_id], values_for(blocks[source_id]))
        for source_id in index.upstream(block_id)
        if source_id in blocks
    ]
    direct = [
        _connected_block(blocks[source_id], values_for(blocks[source_id]))
        for source_id in index.predecessors(block_id)
        if source_id in blocks
    ]
    return {
        "incoming_connections": incoming,
        "direct_incoming_connections": direct,
        "has_incoming_connections": bool(incoming),
    }


__all__ = [
    "BlockPathCalculator",
    "ConnectedBlock",
    "OutputField",
    "PathIndex",
    "extract_fields_from_schema",
    "get_block_connections",
]
