from __future__ import annotations

from worker.broker import broker
from shared.logger import get_logger, new_request_id

logger = get_logger(__name__)


@broker.task
async def poll_gmail_once() -> dict:
    """Run a single lock-guarded Gmail sweep. Useful for ad-hoc runs and cron."""
    from api.triggers.polling.gmail import run_gmail_poll_sweep  # local import

    logger.info("Running ad-hoc Gmail poll sweep")
    return await run_gmail_poll_sweep(request_id=new_request_id())


__all__ = ["poll_gmail_once"]
