from __future__ import annotations

import asyncio
from typing import Awaitable, Callable, Optional

from shared.logger import get_logger, new_request_id
from api.triggers.polling.gmail import run_gmail_poll_sweep

logger = get_logger(__name__)

Sweep = Callable[..., Awaitable[dict]]


class TriggerPollScheduler:
    """Background loop that periodically runs the Gmail poll sweep."""

    def __init__(
        self,
        *,
        interval_seconds: int = 60,
        sweep: Optional[Sweep] = None,
    ) -> None:
        self.interval_seconds = interval_seconds
        self.sweep = sweep or run_gmail_poll_sweep
        self._task: Optional[asyncio.Task[None]] = None
        self._stop_event = asyncio.Event()

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def start(self) -> None:
        if self.running:
            return
        self._stop_event.clear()
        self._task = asyncio.create_task(self._run_loop())
        logger.info("Trigger poll scheduler started", extra={"interval_seconds": self.interval_seconds})

    async def stop(self) -> None:
        if not self._task:
            return
        self._stop_event.set()
        await self._task
        self._task = None
        logger.info("Trigger poll scheduler stopped")

    async def tick(self) -> dict:
        result = await self.sweep(request_id=new_request_id())
        logger.info(
            f"Poll sweep {result.get('status')}",
            extra={"request_id": result.get("requestId"), "total": result.get("total")},
        )
        return result

    async def _run_loop(self) -> None:
        while not self._stop_event.is_set():
            try:
                await self.tick()
            except Exception:
                logger.exception("Trigger poll sweep failed")
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=self.interval_seconds)
            except asyncio.TimeoutError:
                continue


__all__ = ["TriggerPollScheduler"]
