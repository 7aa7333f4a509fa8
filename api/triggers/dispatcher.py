from __future__ import annotations

import asyncio
from typing import Any, Coroutine, Optional, Set

from shared.logger import RequestLogger, get_logger

logger = get_logger(__name__)


class BackgroundDispatcher:
    """
    Runs fire-and-acknowledge executions on the current event loop.

    Task references are held until completion so pending runs are not
    garbage collected; failures are logged when the task finishes.
    """

    def __init__(self) -> None:
        self._tasks: Set[asyncio.Task[Any]] = set()

    def __len__(self) -> int:
        return len(self._tasks)

    def submit(
        self,
        coro: Coroutine[Any, Any, Any],
        *,
        description: str,
        log: Optional[RequestLogger] = None,
    ) -> asyncio.Task[Any]:
        log = log or RequestLogger(logger)
        task = asyncio.create_task(coro, name=description)
        self._tasks.add(task)

        def _on_done(finished: asyncio.Task[Any]) -> None:
            self._tasks.discard(finished)
            if finished.cancelled():
                log.warning(f"Background execution cancelled: {description}")
                return
            exc = finished.exception()
            if exc is not None:
                log.error(f"Error during async {description}: {exc}", extra={"error_type": type(exc).__name__})

        task.add_done_callback(_on_done)
        return task

    async def drain(self) -> None:
        """Wait for every in-flight execution (used on shutdown and in tests)."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)


_dispatcher: Optional[BackgroundDispatcher] = None


def get_dispatcher() -> BackgroundDispatcher:
    global _dispatcher
    if _dispatcher is None:
        _dispatcher = BackgroundDispatcher()
    return _dispatcher


__all__ = ["BackgroundDispatcher", "get_dispatcher"]
