"""
Workflow graph schema: the authoring form edited by the builder and the
normalized execution form consumed by the engine.
"""
from enum import Enum
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class SubflowType(str, Enum):
    """Container block types that wrap a repeated sub-graph instead of a tool."""

    LOOP = "loop"
    PARALLEL = "parallel"


SUBFLOW_TYPES = frozenset(member.value for member in SubflowType)


def is_subflow_type(block_type: Optional[str]) -> bool:
    return block_type in SUBFLOW_TYPES


class _CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class Position(_CamelModel):
    x: float = 0
    y: float = 0


class SubBlockState(_CamelModel):
    """Stored value of one configuration field of a block."""

    id: str
    type: str = "short-input"
    value: Any = None


class BlockState(_CamelModel):
    """Authoring form of a block."""

    id: str = Field(..., description="Unique block ID within the workflow")
    type: str = Field(..., description="Block type (registered type or loop/parallel)")
    name: str = Field(default="", description="Display name")
    position: Position = Field(default_factory=Position)
    sub_blocks: Dict[str, SubBlockState] = Field(default_factory=dict, alias="subBlocks")
    outputs: Dict[str, Any] = Field(default_factory=dict)
    enabled: bool = True
    data: Optional[Dict[str, Any]] = Field(
        default=None,
        description="Container configuration, only used by loop/parallel blocks",
    )
    parent_id: Optional[str] = Field(default=None, alias="parentId")

    @property
    def is_subflow(self) -> bool:
        return is_subflow_type(self.type)

    def sub_block_values(self) -> Dict[str, Any]:
        return {key: sub_block.value for key, sub_block in self.sub_blocks.items()}


class Edge(_CamelModel):
    """Authoring form of a connection; carries an editor identity."""

    id: str
    source: str
    target: str
    source_handle: Optional[str] = Field(default=None, alias="sourceHandle")
    target_handle: Optional[str] = Field(default=None, alias="targetHandle")


class LoopSpec(_CamelModel):
    id: str
    nodes: List[str] = Field(default_factory=list)
    iterations: int = 5
    loop_type: Literal["for", "forEach"] = Field(default="for", alias="loopType")
    for_each_items: Any = Field(default=None, alias="forEachItems")


class ParallelSpec(_CamelModel):
    id: str
    nodes: List[str] = Field(default_factory=list)
    distribution: Any = None
    count: Optional[int] = None
    parallel_type: Optional[Literal["count", "collection"]] = Field(default=None, alias="parallelType")


class Connection(_CamelModel):
    """Execution form of an edge. Has no identity of its own."""

    source: str
    target: str
    source_handle: Optional[str] = Field(default=None, alias="sourceHandle")
    target_handle: Optional[str] = Field(default=None, alias="targetHandle")


class SerializedBlockConfig(_CamelModel):
    tool: str = ""
    params: Dict[str, Any] = Field(default_factory=dict)


class BlockMetadata(_CamelModel):
    """Presentation-only metadata; `id` carries the block type."""

    id: str
    name: Optional[str] = None
    description: Optional[str] = None
    category: Optional[str] = None
    color: Optional[str] = None


class SerializedBlock(_CamelModel):
    id: str
    position: Position = Field(default_factory=Position)
    config: SerializedBlockConfig = Field(default_factory=SerializedBlockConfig)
    inputs: Dict[str, str] = Field(default_factory=dict)
    outputs: Dict[str, Any] = Field(default_factory=dict)
    metadata: Optional[BlockMetadata] = None
    enabled: bool = True


class SerializedWorkflow(_CamelModel):
    """Normalized, execution-ready workflow."""

    version: str = Field(default="1.0", description="Serialization format version")
    blocks: List[SerializedBlock] = Field(default_factory=list)
    connections: List[Connection] = Field(default_factory=list)
    loops: Dict[str, LoopSpec] = Field(default_factory=dict)
    parallels: Dict[str, ParallelSpec] = Field(default_factory=dict)

    @field_validator("blocks")
    @classmethod
    def validate_blocks(cls, v: List[SerializedBlock]) -> List[SerializedBlock]:
        """Validate that blocks have unique IDs."""
        block_ids = [block.id for block in v]
        if len(block_ids) != len(set(block_ids)):
            raise ValueError("Block IDs must be unique")
        return v

    @field_validator("connections")
    @classmethod
    def validate_connections(cls, v: List[Connection], info) -> List[Connection]:
        """Validate that connections reference existing blocks."""
        blocks = info.data.get("blocks", [])
        block_ids = {block.id for block in blocks}

        for connection in v:
            if connection.source not in block_ids:
                raise ValueError(f"Connection source '{connection.source}' does not exist in blocks")
            if connection.target not in block_ids:
                raise ValueError(f"Connection target '{connection.target}' does not exist in blocks")

        return v

    def get_block(self, block_id: str) -> Optional[SerializedBlock]:
        for block in self.blocks:
            if block.id == block_id:
                return block
        return None


class WorkflowGraph(_CamelModel):
    """Complete authoring state of a workflow as stored."""

    blocks: Dict[str, BlockState] = Field(default_factory=dict)
    edges: List[Edge] = Field(default_factory=list)
    loops: Dict[str, LoopSpec] = Field(default_factory=dict)
    parallels: Dict[str, ParallelSpec] = Field(default_factory=dict)


__all__ = [
    "SubflowType",
    "SUBFLOW_TYPES",
    "is_subflow_type",
    "Position",
    "SubBlockState",
    "BlockState",
    "Edge",
    "LoopSpec",
    "ParallelSpec",
    "Connection",
    "SerializedBlockConfig",
    "BlockMetadata",
    "SerializedBlock",
    "SerializedWorkflow",
    "WorkflowGraph",
]
