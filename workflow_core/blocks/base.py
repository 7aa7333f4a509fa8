"""
Block-type descriptors and the registry that holds them.

Every block type is described statically: its configuration fields, the
inputs/outputs it declares, and a pure rule that picks the concrete tool from
its current parameters. Loop and parallel containers are a separate variant
because they never invoke a tool.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, List, MutableMapping, Optional, Union

from workflow_core.errors import InvalidBlockType


Params = Dict[str, Any]
ToolSelector = Callable[[Params], str]
DefaultValue = Callable[[Params], Any]


@dataclass(frozen=True)
class SubBlockDefinition:
    """One configuration field of a block type."""

    id: str
    type: str = "short-input"
    title: Optional[str] = None
    default: Optional[DefaultValue] = None
    condition: Optional[Dict[str, Any]] = None


@dataclass(frozen=True)
class InputDefinition:
    type: str
    required: bool = False


@dataclass(frozen=True)
class ToolAccess:
    """Tools a block may invoke plus an optional dynamic selector."""

    access: List[str] = field(default_factory=list)
    selector: Optional[ToolSelector] = None

    @property
    def default_tool(self) -> str:
        return self.access[0] if self.access else ""


@dataclass(frozen=True)
class BlockDefinition:
    type: str
    name: str
    description: str
    category: str
    bg_color: str
    sub_blocks: List[SubBlockDefinition] = field(default_factory=list)
    tools: ToolAccess = field(default_factory=ToolAccess)
    inputs: Dict[str, InputDefinition] = field(default_factory=dict)
    outputs: Dict[str, Any] = field(default_factory=dict)
    supports_custom_tools: bool = False

    def resolve_tool(self, params: Params) -> str:
        """Pick the concrete tool id; selector errors propagate to the caller."""
        if self.tools.selector is not None:
            return self.tools.selector(params)
        return self.tools.default_tool

    def declared_inputs(self) -> Dict[str, str]:
        return {name: definition.type for name, definition in self.inputs.items()}

    def sub_block_ids(self) -> List[str]:
        # Conditional variants of one field share an id; keep the first occurrence.
        seen: Dict[str, None] = {}
        for sub_block in self.sub_blocks:
            seen.setdefault(sub_block.id, None)
        return list(seen)

    def first_sub_block(self, sub_block_id: str) -> Optional[SubBlockDefinition]:
        for sub_block in self.sub_blocks:
            if sub_block.id == sub_block_id:
                return sub_block
        return None


@dataclass(frozen=True)
class SubflowDefinition:
    type: str
    name: str
    description: str
    color: str
    category: str = "subflow"
    config_keys: tuple = ()


AnyBlockDefinition = Union[BlockDefinition, SubflowDefinition]


class BlockRegistry:
    """Stores block-type descriptors keyed by type."""

    def __init__(self, initial: MutableMapping[str, AnyBlockDefinition] | None = None) -> None:
        self._blocks: Dict[str, AnyBlockDefinition] = dict(initial or {})

    def register(self, definition: AnyBlockDefinition) -> None:
        existing = self._blocks.get(definition.type)
        if existing is not None and existing is not definition:
            raise ValueError(f"Block type already registered: {definition.type}")
        self._blocks[definition.type] = definition

    def register_all(self, definitions: Iterable[AnyBlockDefinition]) -> None:
        for definition in definitions:
            self.register(definition)

    def get(self, block_type: Optional[str]) -> AnyBlockDefinition:
        definition = self._blocks.get(block_type) if block_type else None
        if definition is None:
            raise InvalidBlockType(block_type)
        return definition

    def maybe_get(self, block_type: str) -> Optional[AnyBlockDefinition]:
        return self._blocks.get(block_type)

    def all(self) -> List[AnyBlockDefinition]:
        return list(self._blocks.values())

    def __contains__(self, block_type: object) -> bool:
        return block_type in self._blocks


__all__ = [
    "Params",
    "SubBlockDefinition",
    "InputDefinition",
    "ToolAccess",
    "BlockDefinition",
    "SubflowDefinition",
    "AnyBlockDefinition",
    "BlockRegistry",
]
