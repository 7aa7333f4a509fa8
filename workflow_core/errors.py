"""
Shared exception hierarchy for graph serialization and trigger orchestration.
"""

from typing import Any, Dict, Optional


class WorkflowEngineError(Exception):
    """Base class for all engine related errors."""


class InvalidBlockType(WorkflowEngineError):
    """Raised when a block type has no registered definition."""

    def __init__(self, block_type: Optional[str]) -> None:
        super().__init__(f"Invalid block type: {block_type}")
        self.block_type = block_type


class WorkflowNotFound(WorkflowEngineError):
    """Raised when the graph state for a workflow cannot be loaded."""


class VerificationFailed(WorkflowEngineError):
    """Raised when a trigger request fails provider verification."""

    def __init__(self, message: str, *, status_code: int = 401) -> None:
        super().__init__(message)
        self.status_code = status_code


class DuplicateTrigger(WorkflowEngineError):
    """Not a failure: the trigger was already processed."""

    def __init__(self, key: str) -> None:
        super().__init__(f"Trigger already processed: {key}")
        self.key = key


class LockNotAcquired(WorkflowEngineError):
    """Not a failure: another instance owns the lock."""

    def __init__(self, key: str) -> None:
        super().__init__(f"Lock already held: {key}")
        self.key = key


class CursorPersistenceFailed(WorkflowEngineError):
    """Raised when a poll cursor cannot be written back; aborts the poll cycle."""

    def __init__(self, message: str, *, cursor: Any = None) -> None:
        super().__init__(message)
        self.cursor = cursor


class SecretDecryptionFailed(WorkflowEngineError):
    """Raised when a stored secret cannot be decrypted; aborts the run."""

    def __init__(self, key: str, reason: str) -> None:
        super().__init__(f'Failed to decrypt environment variable "{key}": {reason}')
        self.key = key


class ExecutionFailed(WorkflowEngineError):
    """Raised when the engine ran but reported failure."""

    def __init__(self, message: str, *, detail: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(message)
        self.detail = detail or {}


class UnexpectedOrchestratorError(WorkflowEngineError):
    """Catch-all wrapper for failures anywhere in trigger handling."""


__all__ = [
    "WorkflowEngineError",
    "InvalidBlockType",
    "WorkflowNotFound",
    "VerificationFailed",
    "DuplicateTrigger",
    "LockNotAcquired",
    "CursorPersistenceFailed",
    "SecretDecryptionFailed",
    "ExecutionFailed",
    "UnexpectedOrchestratorError",
]
