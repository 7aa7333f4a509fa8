from __future__ import annotations

import logging
import os
from typing import Any, Dict, Union
from urllib.parse import urlparse

from dotenv import load_dotenv

logger = logging.getLogger(__name__)

# Ensure environment variables from .env are available when running locally.
try:
    load_dotenv()
except PermissionError:
    logger.warning(
        "Could not read .env file due to insufficient permissions. "
        "Continuing with existing environment variables.",
    )

from shared.config import config  # noqa: E402


MODEL_MODULES = [
    "shared.database.models",
    "shared.database.models_oauth",
    "shared.database.workflow_models",
]


def _parse_postgres_credentials(url: str) -> Dict[str, Any]:
    """Convert a postgres-style DSN into asyncpg credential kwargs."""
    parsed = urlparse(url)
    database = (parsed.path or "").lstrip("/") or "postgres"
    # Get schema from env var, default to 'public' (PostgreSQL default)
    schema = os.getenv("DB_SCHEMA", "public")

    credentials = {
        "host": parsed.hostname or "localhost",
        "port": parsed.port or 5432,
        "user": parsed.username,
        "password": parsed.password,
        "database": database,
        "minsize": DB_MIN_CONNECTIONS,
        "maxsize": DB_MAX_CONNECTIONS,
    }

    # asyncpg doesn't support "schema" parameter directly
    if schema != "public":
        credentials["server_settings"] = {"search_path": schema}

    return credentials


def build_connection(url: str) -> Union[str, Dict[str, Any]]:
    """Postgres URLs become asyncpg credentials; anything else (sqlite) is passed to Tortoise as-is."""
    scheme = urlparse(url).scheme
    if scheme in {"postgres", "postgresql"}:
        return {
            "engine": "tortoise.backends.asyncpg",
            "credentials": _parse_postgres_credentials(url),
        }
    if scheme != "sqlite":
        raise RuntimeError(f"Invalid DATABASE_URL: unsupported scheme {scheme!r}")
    return url


def build_tortoise_config(url: str) -> Dict[str, Any]:
    return {
        "connections": {"default": build_connection(url)},
        "apps": {
            "models": {
                "models": MODEL_MODULES,
                "default_connection": "default",
            },
        },
        "use_tz": True,
        "timezone": "UTC",
    }


DATABASE_URL = config.database_url
DB_MAX_CONNECTIONS = int(os.getenv("DB_MAX_CONNECTIONS", "10"))
DB_MIN_CONNECTIONS = int(os.getenv("DB_MIN_CONNECTIONS", "1"))
DB_GENERATE_SCHEMAS = config.db_generate_schemas

TORTOISE_ORM: Dict[str, Any] = build_tortoise_config(DATABASE_URL)


__all__ = [
    "DATABASE_URL",
    "DB_GENERATE_SCHEMAS",
    "DB_MAX_CONNECTIONS",
    "DB_MIN_CONNECTIONS",
    "MODEL_MODULES",
    "TORTOISE_ORM",
    "build_tortoise_config",
]
