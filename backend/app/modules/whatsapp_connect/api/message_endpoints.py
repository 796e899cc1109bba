"""
WhatsApp Messaging API Endpoints
Outbound sends and conversation history for connected tenants.
"""
import logging
import uuid
from typing import Dict, Any
from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from app.shared.core.constants import DEFAULT_PAGE_SIZE, MAX_PAGE_SIZE
from app.shared.db.session import get_db
from app.modules.whatsapp_connect.constants import OutboundMediaType
from app.modules.whatsapp_connect.services.conversation_ledger import ConversationLedger
from app.modules.whatsapp_connect.services.messaging_service import WhatsAppMessagingService
from app.modules.whatsapp_connect.schemas.whatsapp_schemas import (
    SendTextRequest,
    SendTemplateRequest,
    SendMediaRequest,
    SendMessageResponse,
    MarkReadResponse,
    MessageItem,
    MessagesListResponse,
    ConversationItem,
    ConversationsListResponse,
)

router = APIRouter()
conversations_router = APIRouter()
logger = logging.getLogger("messages_api")


def _send_response(message: Dict[str, Any]) -> SendMessageResponse:
    return SendMessageResponse(
        success=True,
        whatsapp_message_id=message["whatsapp_message_id"],
        conversation_id=message["conversation_id"],
        message=MessageItem(**message)
    )


# ============================================
# SEND ENDPOINTS
# ============================================

@router.post("/{tenant_id}/text", response_model=SendMessageResponse, summary="Send a text message")
async def send_text(tenant_id: uuid.UUID, request: SendTextRequest, db: AsyncSession = Depends(get_db)):
    """Free-form text; only delivered inside the 24h customer service window."""
    message = await WhatsAppMessagingService(db).send_text(
        tenant_id,
        to=request.to,
        text=request.text,
        preview_url=request.preview_url
    )
    return _send_response(message)


@router.post("/{tenant_id}/template", response_model=SendMessageResponse, summary="Send a template message")
async def send_template(tenant_id: uuid.UUID, request: SendTemplateRequest, db: AsyncSession = Depends(get_db)):
    message = await WhatsAppMessagingService(db).send_template(
        tenant_id,
        to=request.to,
        template_name=request.template_name,
        language_code=request.language_code,
        components=request.components
    )
    return _send_response(message)


@router.post("/{tenant_id}/media/{media_type}", response_model=SendMessageResponse, summary="Send a media message")
async def send_media(
    tenant_id: uuid.UUID,
    media_type: OutboundMediaType,
    request: SendMediaRequest,
    db: AsyncSession = Depends(get_db)
):
    """media_type: image, document, audio or video."""
    message = await WhatsAppMessagingService(db).send_media(
        tenant_id,
        to=request.to,
        media_type=media_type,
        link=request.link,
        caption=request.caption,
        filename=request.filename
    )
    return _send_response(message)


@router.post("/{tenant_id}/read/{whatsapp_message_id}", response_model=MarkReadResponse, summary="Mark a message as read")
async def mark_as_read(tenant_id: uuid.UUID, whatsapp_message_id: str, db: AsyncSession = Depends(get_db)):
    result = await WhatsAppMessagingService(db).mark_as_read(tenant_id, whatsapp_message_id)
    return MarkReadResponse(**result)


# ============================================
# CONVERSATION ENDPOINTS
# ============================================

@conversations_router.get("/{tenant_id}", response_model=ConversationsListResponse, summary="List conversations")
async def list_conversations(
    tenant_id: uuid.UUID,
    skip: int = Query(default=0, ge=0),
    limit: int = Query(default=DEFAULT_PAGE_SIZE, ge=1, le=MAX_PAGE_SIZE),
    db: AsyncSession = Depends(get_db)
):
    """Most recently active first."""
    result = await ConversationLedger(db).list_conversations(tenant_id, skip=skip, limit=limit)
    return ConversationsListResponse(
        conversations=[ConversationItem(**c) for c in result["conversations"]],
        total_count=result["total"],
        skip=skip,
        limit=limit
    )


@conversations_router.get(
    "/{tenant_id}/{conversation_id}/messages",
    response_model=MessagesListResponse,
    summary="Get message history"
)
async def list_messages(
    tenant_id: uuid.UUID,
    conversation_id: uuid.UUID,
    skip: int = Query(default=0, ge=0),
    limit: int = Query(default=DEFAULT_PAGE_SIZE, ge=1, le=MAX_PAGE_SIZE),
    db: AsyncSession = Depends(get_db)
):
    """Newest first. 404 if the conversation belongs to another tenant."""
    result = await ConversationLedger(db).list_messages(tenant_id, conversation_id, skip=skip, limit=limit)
    return MessagesListResponse(
        messages=[MessageItem(**m) for m in result["messages"]],
        total_count=result["total"],
        conversation_id=conversation_id,
        skip=skip,
        limit=limit
    )
