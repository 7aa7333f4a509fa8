from __future__ import annotations

from typing import Optional

from taskiq.events import TaskiqEvents
from taskiq.state import TaskiqState
from taskiq_redis import RedisAsyncResultBackend, RedisStreamBroker

from shared.config import config
from shared.database import close_db, init_db
from shared.logger import get_logger
from shared.stores import close_redis

logger = get_logger(__name__)


result_backend = RedisAsyncResultBackend(redis_url=config.redis_url)
broker = RedisStreamBroker(url=config.redis_url).with_result_backend(result_backend)

_poll_scheduler: Optional["TriggerPollScheduler"] = None  # noqa: F821


@broker.on_event(TaskiqEvents.WORKER_STARTUP)
async def _on_worker_startup(_: TaskiqState) -> None:
    """Initialize shared resources before processing tasks."""
    from api.triggers.polling import TriggerPollScheduler  # lazy import

    global _poll_scheduler

    logger.info("Initializing Taskiq worker")
    await init_db()

    if config.trigger_poller_enabled:
        logger.info("Starting trigger poll scheduler in worker")
        _poll_scheduler = TriggerPollScheduler(interval_seconds=config.trigger_poller_interval_seconds)
        await _poll_scheduler.start()
    else:
        logger.info("Trigger poller disabled via configuration")


@broker.on_event(TaskiqEvents.WORKER_SHUTDOWN)
async def _on_worker_shutdown(_: TaskiqState) -> None:
    """Clean up background services when worker exits."""
    global _poll_scheduler

    if _poll_scheduler:
        logger.info("Stopping trigger poll scheduler")
        await _poll_scheduler.stop()
        _poll_scheduler = None

    await close_redis()
    await close_db()
    logger.info("Taskiq worker shutdown complete")


__all__ = ["broker"]
