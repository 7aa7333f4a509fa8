"""
Block-type registry.

`block_registry` holds every built-in block type. Serializers take a registry
argument so callers can swap in their own set.
"""

from workflow_core.blocks.base import (
    AnyBlockDefinition,
    BlockDefinition,
    BlockRegistry,
    InputDefinition,
    SubBlockDefinition,
    SubflowDefinition,
    ToolAccess,
)
from workflow_core.blocks.builtin import builtin_blocks


def create_default_registry() -> BlockRegistry:
    registry = BlockRegistry()
    registry.register_all(builtin_blocks())
    return registry


block_registry = create_default_registry()


__all__ = [
    "AnyBlockDefinition",
    "BlockDefinition",
    "BlockRegistry",
    "InputDefinition",
    "SubBlockDefinition",
    "SubflowDefinition",
    "ToolAccess",
    "block_registry",
    "create_default_registry",
]
