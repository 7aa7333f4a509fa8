"""
Workflow graph model, serializer and path resolution.

Typical usage:
    from workflow_core import Serializer, BlockPathCalculator

    serialized = Serializer().serialize_workflow(blocks, edges, loops, parallels)
    upstream = BlockPathCalculator.find_all_path_nodes(serialized.connections, block_id)
"""

from workflow_core.errors import InvalidBlockType, WorkflowEngineError
from workflow_core.path_resolver import BlockPathCalculator, get_block_connections
from workflow_core.schema import (
    BlockState,
    Connection,
    Edge,
    SerializedBlock,
    SerializedWorkflow,
    WorkflowGraph,
)
from workflow_core.serializer import Serializer

__all__ = [
    "BlockPathCalculator",
    "BlockState",
    "Connection",
    "Edge",
    "InvalidBlockType",
    "SerializedBlock",
    "SerializedWorkflow",
    "Serializer",
    "WorkflowEngineError",
    "WorkflowGraph",
    "get_block_connections",
]
