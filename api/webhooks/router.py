from __future__ import annotations

import hmac
import json

from fastapi import APIRouter, Request, status
from fastapi.responses import JSONResponse, PlainTextResponse, Response

from api.triggers import services as trigger_services
from api.triggers.polling.gmail import run_gmail_poll_sweep
from api.triggers.verification import TriggerRequest
from shared.config import config
from shared.logger import RequestLogger, get_logger, new_request_id

logger = get_logger(__name__)

router = APIRouter(prefix="/webhooks", tags=["webhooks"])


def _to_response(result: trigger_services.WebhookResponse) -> Response:
    if result.media_type == "application/json":
        return JSONResponse(status_code=result.status_code, content=result.body)
    return PlainTextResponse(status_code=result.status_code, content=str(result.body))


@router.post("/trigger/{path:path}")
async def trigger_webhook(path: str, request: Request) -> Response:
    request_id = new_request_id()
    log = RequestLogger(logger, request_id)
    raw_body = (await request.body()).decode("utf-8", errors="replace")
    if not raw_body:
        log.warning(f"Rejecting empty webhook body for path: {path}")
        return PlainTextResponse("Empty request body", status_code=status.HTTP_400_BAD_REQUEST)
    try:
        body = json.loads(raw_body)
    except json.JSONDecodeError as exc:
        log.warning(f"Failed to parse webhook body as JSON: {exc}")
        return PlainTextResponse("Invalid JSON payload", status_code=status.HTTP_400_BAD_REQUEST)

    trigger_request = TriggerRequest(
        method=request.method,
        path=path,
        headers=dict(request.headers),
        raw_body=raw_body,
        body=body,
        query=dict(request.query_params),
        client_host=request.client.host if request.client else None,
    )
    result = await trigger_services.process_webhook(trigger_request, request_id=request_id)
    return _to_response(result)


@router.get("/trigger/{path:path}")
async def verify_webhook(path: str, request: Request) -> Response:
    result = await trigger_services.handle_webhook_get(
        path, dict(request.query_params), request_id=new_request_id()
    )
    return _to_response(result)


@router.get("/poll/gmail")
async def poll_gmail(request: Request) -> Response:
    request_id = new_request_id()
    log = RequestLogger(logger, request_id)

    if config.cron_secret:
        supplied = request.headers.get("authorization", "")
        if not hmac.compare_digest(supplied.encode("utf-8"), f"Bearer {config.cron_secret}".encode("utf-8")):
            log.warning("Unauthorized Gmail poll request")
            return PlainTextResponse("Unauthorized", status_code=status.HTTP_401_UNAUTHORIZED)

    try:
        result = await run_gmail_poll_sweep(request_id=request_id)
    except Exception as exc:
        log.error(f"Error during Gmail polling: {exc}", exc_info=True)
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={
                "success": False,
                "message": "Gmail polling failed",
                "error": str(exc),
                "requestId": request_id,
            },
        )

    status_code = status.HTTP_202_ACCEPTED if result.get("status") == "skip" else status.HTTP_200_OK
    return JSONResponse(status_code=status_code, content=result)


__all__ = ["router"]
