"""
Webhook Intake API

Receives events from source control and the deploy platform.

Endpoints:
- POST /webhooks/github - HMAC-signed GitHub events
- POST /webhooks/railway - Token-authenticated Railway deploy events

Authenticated events are always acknowledged with 200; validation runs in
the background. 401 on bad signature/token, 500 on missing configuration.
"""

from fastapi import APIRouter, Depends, Header, HTTPException, Query, Request
from pydantic import ValidationError
from typing import Optional, Dict, Any
import json
import logging

from app.api.auth import get_services
from app.config import get_settings
from app.services.webhook_auth import verify_signature, verify_token

router = APIRouter(prefix="/webhooks", tags=["webhooks"])

logger = logging.getLogger(__name__)


def _decode(body: bytes) -> Dict[str, Any]:
    try:
        payload = json.loads(body)
    except ValueError:
        raise HTTPException(status_code=400, detail="Body is not valid JSON")

    if not isinstance(payload, dict):
        raise HTTPException(status_code=400, detail="Body must be a JSON object")
    return payload


@router.post("/github")
async def github_webhook(
    request: Request,
    x_hub_signature_256: Optional[str] = Header(None),
    x_github_event: Optional[str] = Header(None),
    x_github_delivery: Optional[str] = Header(None),
    services=Depends(get_services)
):
    """
    Receive a GitHub webhook.

    The signature is verified over the raw body before it is decoded.

    Example response:
        {"ok": true, "event": "pull_request", "delivery": "...", "action": "opened", "handled": true}
    """
    settings = get_settings()

    body = await request.body()
    verify_signature(settings.GITHUB_WEBHOOK_SECRET, body, x_hub_signature_256)

    payload = _decode(body)
    event = x_github_event or "unknown"
    logger.info(f"GitHub webhook: event={event} action={payload.get('action')} delivery={x_github_delivery}")

    response = {"ok": True, "event": event, "delivery": x_github_delivery, "action": payload.get("action")}

    try:
        summary = await services.ingestion.handle_github(event, payload, x_github_delivery)
    except ValidationError as e:
        logger.warning(f"GitHub '{event}' payload did not match the expected shape: {e.error_count()} error(s)")
        response["handled"] = False
        return response

    response["handled"] = summary["handled"]
    return response


@router.post("/railway")
async def railway_webhook(
    request: Request,
    token: Optional[str] = Query(None),
    x_webhook_token: Optional[str] = Header(None),
    services=Depends(get_services)
):
    """
    Receive a Railway deploy webhook.

    Token is accepted from the `token` query parameter or X-Webhook-Token header.
    """
    settings = get_settings()

    verify_token(settings.RAILWAY_WEBHOOK_TOKEN, token or x_webhook_token)

    payload = _decode(await request.body())
    logger.info(f"Railway webhook: type={payload.get('type')}")

    try:
        summary = await services.ingestion.handle_railway(payload)
    except ValidationError as e:
        logger.warning(f"Railway payload did not match the expected shape: {e.error_count()} error(s)")
        return {"ok": True, "event": payload.get("type"), "handled": False}

    return {"ok": True, **summary}
