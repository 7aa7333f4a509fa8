"""
FastAPI server for workflow triggers.

Provides REST API endpoints for:
- Inbound provider webhooks (verification, dedupe, execution)
- Cron-driven Gmail poll sweeps

Usage:
    uvicorn api.main:app --host 0.0.0.0 --port 8000 --reload
"""
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from shared.logger import get_logger
from shared.config import config
from shared.database import db_lifespan
from shared.stores import close_redis
from api.router import router
from api.triggers.dispatcher import get_dispatcher

logger = get_logger("api.main")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler for startup/shutdown."""
    logger.info("🚀 Starting workflow trigger server...")

    async with db_lifespan(app):
        logger.info("✅ Database initialized")
        yield
        pending = len(get_dispatcher())
        if pending:
            logger.info(f"Waiting for {pending} background executions to finish")
        await get_dispatcher().drain()
        await close_redis()

    logger.info("👋 Workflow trigger server shutting down...")


app = FastAPI(
    title=f"{config.app_name} Trigger API",
    description="Webhook and polling triggers for workflow execution",
    version="1.0.0",
    lifespan=lifespan,
)

app.include_router(router)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Last-resort handler so a trigger transport never sees a raw failure."""
    error_logger = get_logger("api.main.errors")
    error_logger.error(f"Unhandled exception on {request.url.path}: {exc}", exc_info=True)
    return JSONResponse(
        status_code=500,
        content={"detail": "Internal server error"},
    )


# =============================================================================
# Health & Info Endpoints
# =============================================================================

@app.get("/health", tags=["System"])
async def health_check():
    """
    Health check endpoint.
    Returns server information including status, server name, and version.
    """
    return {
        "status": "ok",
        "server": f"{config.app_name} Trigger API",
        "version": "1.0.0",
        "mode": config.engine_mode,
    }


# =============================================================================
# Entry point for running directly
# =============================================================================

if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "api.main:app",
        host="0.0.0.0",
        port=8000,
        reload=True,
    )
