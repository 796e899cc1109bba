"""
WhatsApp Webhook API Endpoints
Verification handshake, delivery acknowledgment and stored-event replay.
"""
import hashlib
import hmac
import json
import logging
import secrets
import uuid
from typing import Optional
from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Query, Request
from fastapi.responses import PlainTextResponse
from sqlalchemy.ext.asyncio import AsyncSession

from app.shared.core.config import settings
from app.shared.core.constants import DEFAULT_PAGE_SIZE, MAX_PAGE_SIZE, RECONCILE_BATCH_SIZE
from app.shared.db.session import get_db
from app.modules.whatsapp_connect.constants import (
    WEBHOOK_ACK_BODY,
    WEBHOOK_MODE_SUBSCRIBE,
    WEBHOOK_SIGNATURE_HEADER,
)
from app.modules.whatsapp_connect.services.webhook_router import WebhookRouter, process_webhook_payload
from app.modules.whatsapp_connect.schemas.whatsapp_schemas import (
    WebhookEventItem,
    WebhookEventsListResponse,
    ReprocessResponse,
    ReconcileResponse,
)

router = APIRouter()
logger = logging.getLogger("webhook_api")


# ============================================
# WEBHOOK SECURITY
# ============================================

def verify_signature(raw_body: bytes, signature_header: Optional[str]) -> bool:
    """
    Check X-Hub-Signature-256 ("sha256=<hex>") against HMAC-SHA256 of the
    raw body keyed with the app secret.
    """
    app_secret = settings.WHATSAPP_APP_SECRET
    if not app_secret:
        logger.warning("WHATSAPP_APP_SECRET not configured - cannot verify webhook signature")
        return False

    if not signature_header or not signature_header.startswith("sha256="):
        return False

    expected = hmac.new(app_secret.encode("utf-8"), raw_body, hashlib.sha256).hexdigest()
    # Constant-time comparison to prevent timing attacks
    return hmac.compare_digest(expected, signature_header[len("sha256="):])


# ============================================
# DELIVERY ENDPOINTS
# ============================================

@router.get("/webhook", response_class=PlainTextResponse, summary="Webhook verification handshake")
async def verify_webhook(
    mode: Optional[str] = Query(default=None, alias="hub.mode"),
    verify_token: Optional[str] = Query(default=None, alias="hub.verify_token"),
    challenge: Optional[str] = Query(default=None, alias="hub.challenge"),
):
    """
    Meta calls this once when the webhook URL is configured.

    Echoes hub.challenge when hub.mode is 'subscribe' and hub.verify_token
    matches WHATSAPP_WEBHOOK_VERIFY_TOKEN.
    """
    expected_token = settings.WHATSAPP_WEBHOOK_VERIFY_TOKEN

    if (
        mode == WEBHOOK_MODE_SUBSCRIBE
        and expected_token
        and verify_token
        and secrets.compare_digest(verify_token, expected_token)
    ):
        logger.info("Webhook verification succeeded")
        return PlainTextResponse(challenge or "")

    logger.warning(f"Webhook verification rejected (mode={mode})")
    raise HTTPException(status_code=401, detail="Webhook verification failed")


@router.post("/webhook", response_class=PlainTextResponse, summary="Receive webhook deliveries")
async def receive_webhook(request: Request, background_tasks: BackgroundTasks):
    """
    Acknowledge immediately and process in the background.

    Always answers 200 EVENT_RECEIVED; Meta retries anything else, and a
    payload we cannot read will not get better on retry.
    """
    raw_body = await request.body()

    if settings.WHATSAPP_VERIFY_WEBHOOK_SIGNATURE:
        if not verify_signature(raw_body, request.headers.get(WEBHOOK_SIGNATURE_HEADER)):
            logger.warning("Webhook dropped: invalid or missing signature")
            return PlainTextResponse(WEBHOOK_ACK_BODY)

    try:
        payload = json.loads(raw_body)
    except (ValueError, UnicodeDecodeError) as e:
        logger.error(f"Webhook dropped: invalid JSON ({str(e)})")
        return PlainTextResponse(WEBHOOK_ACK_BODY)

    background_tasks.add_task(process_webhook_payload, payload)
    return PlainTextResponse(WEBHOOK_ACK_BODY)


# ============================================
# STORED EVENTS
# ============================================

@router.get("/webhook/events", response_model=WebhookEventsListResponse, summary="List stored webhook events")
async def list_webhook_events(
    tenant_id: Optional[uuid.UUID] = Query(default=None),
    processed: Optional[bool] = Query(default=None),
    event_type: Optional[str] = Query(default=None, description="messages, account_update, ..."),
    skip: int = Query(default=0, ge=0),
    limit: int = Query(default=DEFAULT_PAGE_SIZE, ge=1, le=MAX_PAGE_SIZE),
    db: AsyncSession = Depends(get_db)
):
    events = await WebhookRouter(db).list_events(
        tenant_id=tenant_id,
        processed=processed,
        event_type=event_type,
        skip=skip,
        limit=limit
    )
    return WebhookEventsListResponse(
        events=[WebhookEventItem(**event) for event in events],
        skip=skip,
        limit=limit
    )


@router.post("/webhook/events/reconcile", response_model=ReconcileResponse, summary="Reconcile unattributed events")
async def reconcile_webhook_events(
    limit: int = Query(default=RECONCILE_BATCH_SIZE, ge=1, le=1000),
    db: AsyncSession = Depends(get_db)
):
    """
    Replay unprocessed events that arrived before their WABA was linked.

    Events whose WABA still resolves to no tenant are left as they are.
    """
    summary = await WebhookRouter(db).reconcile_unattributed(limit=limit)
    return ReconcileResponse(**summary)


@router.post("/webhook/events/{event_id}/reprocess", response_model=ReprocessResponse, summary="Replay a stored event")
async def reprocess_webhook_event(event_id: uuid.UUID, db: AsyncSession = Depends(get_db)):
    """Run a stored event through the handlers again. Safe to repeat."""
    result = await WebhookRouter(db).reprocess_event(event_id)
    return ReprocessResponse(**result)
