"""
HRMS Suite - GitHub Webhooks
============================

Receives GitHub deliveries and hands them to the event normalizer.

Setup:
1. GitHub repo → Settings → Webhooks → Add webhook
2. Payload URL: https://your-domain/api/v1/webhooks/github
3. Content type: application/json
4. Secret: the value of GITHUB_WEBHOOK_SECRET
5. Events: Pushes, Pull requests, Pull request reviews, Workflow runs

Every delivery must carry a valid `X-Hub-Signature-256`; with no secret
configured all deliveries are rejected.
"""

import hashlib
import hmac
import json
from datetime import datetime, timezone
from typing import Any, Optional

import structlog
from fastapi import APIRouter, Header, HTTPException, Request, status
from fastapi.responses import JSONResponse

from hrms.api.deps import DbSession
from hrms.core.config import settings
from hrms.core.devops.events import InvalidEventPayload, UnsupportedEvent, parse_event
from hrms.core.devops.normalizer import EventNormalizer

logger = structlog.get_logger()

router = APIRouter(prefix="/webhooks", tags=["Webhooks"])


def verify_signature(payload: bytes, signature: Optional[str], secret: Optional[str]) -> bool:
    """Check a GitHub `sha256=<hex>` HMAC over the raw body."""
    if not secret or not signature:
        return False

    expected = "sha256=" + hmac.new(
        secret.encode(),
        payload,
        hashlib.sha256,
    ).hexdigest()

    return hmac.compare_digest(expected, signature)


@router.post(
    "/github",
    summary="GitHub webhook receiver",
    responses={
        200: {"description": "Delivery processed"},
        202: {"description": "Event type not handled"},
        400: {"description": "Malformed payload"},
        401: {"description": "Missing or invalid signature"},
    },
)
async def github_webhook(
    request: Request,
    db: DbSession,
    x_hub_signature_256: Optional[str] = Header(None),
    x_github_event: Optional[str] = Header(None),
    x_github_delivery: Optional[str] = Header(None),
) -> Any:
    """
    Handle GitHub webhook events.

    Supported events:
    - push: new pipeline with pending jobs
    - pull_request: merge request mirror
    - workflow_run: pipeline and merge request CI status
    - pull_request_review: approvals
    - ping: answered with pong
    """
    payload = await request.body()
    log = logger.bind(event=x_github_event, delivery=x_github_delivery)

    if not verify_signature(payload, x_hub_signature_256, settings.GITHUB_WEBHOOK_SECRET):
        log.warning("webhook_signature_rejected", configured=bool(settings.GITHUB_WEBHOOK_SECRET))
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid signature",
        )

    if not x_github_event:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Missing X-GitHub-Event header",
        )

    if x_github_event == "ping":
        return {"status": "pong"}

    try:
        data = json.loads(payload)
    except ValueError as e:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Body is not valid JSON",
        ) from e

    try:
        event = parse_event(x_github_event, data)
    except UnsupportedEvent:
        log.info("webhook_event_ignored")
        return JSONResponse(
            status_code=status.HTTP_202_ACCEPTED,
            content={"status": "ignored", "event": x_github_event},
        )
    except InvalidEventPayload as e:
        log.warning("webhook_payload_invalid", error=str(e))
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=str(e),
        ) from e

    result = await EventNormalizer(db).apply(event)
    log.info("webhook_processed", processed=result.processed, action=result.action)

    return {
        "success": True,
        "event": result.event,
        "processed": result.processed,
        "action": result.action,
        "data": result.data,
    }


@router.get("/github", summary="Webhook heartbeat")
async def github_webhook_status() -> dict:
    return {
        "success": True,
        "message": "GitHub webhook endpoint is active",
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }
