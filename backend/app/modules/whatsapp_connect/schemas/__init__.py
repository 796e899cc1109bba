"""
WhatsApp Connect Schemas

Pydantic models for API request/response validation.
"""

from .whatsapp_schemas import (
    # Request schemas
    CompleteOnboardingRequest,
    RegisterPinRequest,
    SendTextRequest,
    SendTemplateRequest,
    SendMediaRequest,
    # Response schemas
    TenantResponse,
    ConnectionInitResponse,
    ConnectionStatusResponse,
    RefreshTokenResponse,
    ConversationItem,
    ConversationsListResponse,
    MessageItem,
    MessagesListResponse,
    SendMessageResponse,
    MarkReadResponse,
    WebhookEventItem,
    WebhookEventsListResponse,
    ReprocessResponse,
    ReconcileResponse,
)

__all__ = [
    # Request schemas
    "CompleteOnboardingRequest",
    "RegisterPinRequest",
    "SendTextRequest",
    "SendTemplateRequest",
    "SendMediaRequest",
    # Response schemas
    "TenantResponse",
    "ConnectionInitResponse",
    "ConnectionStatusResponse",
    "RefreshTokenResponse",
    "ConversationItem",
    "ConversationsListResponse",
    "MessageItem",
    "MessagesListResponse",
    "SendMessageResponse",
    "MarkReadResponse",
    "WebhookEventItem",
    "WebhookEventsListResponse",
    "ReprocessResponse",
    "ReconcileResponse",
]
