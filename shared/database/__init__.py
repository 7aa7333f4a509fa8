"""
Tortoise ORM lifecycle for the trigger API and the poll worker.

Both processes share one model registry (`MODEL_MODULES`); only the
connection URL differs between deployments and tests.
"""
from __future__ import annotations

from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

from fastapi import FastAPI
from tortoise import Tortoise

from shared.logger import get_logger
from shared.database.config import DB_GENERATE_SCHEMAS, TORTOISE_ORM, build_tortoise_config

logger = get_logger("shared.database")


async def init_db(url: Optional[str] = None, *, generate_schemas: Optional[bool] = None) -> None:
    """
    Initialize Tortoise against `url` (defaults to the configured DATABASE_URL).

    Schemas are generated when `generate_schemas` is set, falling back to the
    DB_GENERATE_SCHEMAS setting.
    """
    orm_config = build_tortoise_config(url) if url else TORTOISE_ORM
    await Tortoise.init(config=orm_config)

    should_generate = DB_GENERATE_SCHEMAS if generate_schemas is None else generate_schemas
    if should_generate:
        if url is None:
            logger.warning("DB_GENERATE_SCHEMAS is enabled – generating trigger tables at startup")
        await Tortoise.generate_schemas()


async def close_db() -> None:
    await Tortoise.close_connections()


@asynccontextmanager
async def db_lifespan(_: FastAPI) -> AsyncIterator[None]:
    """FastAPI lifespan: webhooks, workflows and execution logs need the ORM."""
    logger.info("Initializing database connections")
    await init_db()
    try:
        yield
    finally:
        logger.info("Closing database connections")
        await close_db()


__all__ = ["db_lifespan", "init_db", "close_db"]
