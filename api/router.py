"""API router for the workflow trigger service."""
from fastapi import APIRouter
from .webhooks.router import router as webhooks_router

router = APIRouter(prefix="/api")
router.include_router(webhooks_router)
