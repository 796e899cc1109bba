"""
WhatsApp Connect - Pydantic Schemas
Request and Response models for API endpoints.
"""
from typing import Optional, List, Dict, Any
from pydantic import BaseModel, ConfigDict, Field, field_validator
from datetime import datetime
import uuid
import re


# ============================================
# REQUEST MODELS
# ============================================

class CompleteOnboardingRequest(BaseModel):
    """Request to link a WABA and business phone number to a tenant"""
    waba_id: str = Field(
        ...,
        min_length=1,
        description="WhatsApp Business Account id from the embedded signup"
    )
    phone_number_id: str = Field(
        ...,
        min_length=1,
        description="Business phone number id from the embedded signup"
    )

    model_config = ConfigDict(json_schema_extra={
        "example": {
            "waba_id": "102290129340398",
            "phone_number_id": "106540352242922"
        }
    })

    @field_validator("waba_id", "phone_number_id")
    @classmethod
    def strip_ids(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("Id must not be blank")
        return v


class RegisterPinRequest(BaseModel):
    """Request to register the business phone number with its two-step PIN"""
    pin: str = Field(..., description="6-digit two-step verification PIN")

    model_config = ConfigDict(json_schema_extra={"example": {"pin": "123456"}})


def _clean_recipient(v: str) -> str:
    cleaned = re.sub(r"[\s\+\-\(\)]", "", v)
    if not cleaned.isdigit():
        raise ValueError("Recipient must contain only digits")
    if not (7 <= len(cleaned) <= 15):
        raise ValueError("Recipient must be between 7 and 15 digits")
    return cleaned


class SendTextRequest(BaseModel):
    """Request to send a free-form text message"""
    to: str = Field(..., description="Recipient phone number (international format)")
    text: str = Field(..., min_length=1, max_length=4096)
    preview_url: bool = False

    model_config = ConfigDict(json_schema_extra={
        "example": {"to": "+919876543210", "text": "Hello from our team!"}
    })

    @field_validator("to")
    @classmethod
    def validate_to(cls, v: str) -> str:
        return _clean_recipient(v)


class SendTemplateRequest(BaseModel):
    """Request to send an approved template message"""
    to: str = Field(..., description="Recipient phone number (international format)")
    template_name: str = Field(..., min_length=1)
    language_code: str = Field(default="en_US")
    components: Optional[List[Dict[str, Any]]] = Field(
        default=None,
        description="Template components (header/body/button parameters)"
    )

    model_config = ConfigDict(json_schema_extra={
        "example": {"to": "919876543210", "template_name": "hello_world", "language_code": "en_US"}
    })

    @field_validator("to")
    @classmethod
    def validate_to(cls, v: str) -> str:
        return _clean_recipient(v)


class SendMediaRequest(BaseModel):
    """Request to send an image, document, audio or video by link"""
    to: str = Field(..., description="Recipient phone number (international format)")
    link: str = Field(..., min_length=1, description="Public URL of the media")
    caption: Optional[str] = Field(default=None, max_length=1024)
    filename: Optional[str] = Field(default=None, description="Shown for documents")

    @field_validator("to")
    @classmethod
    def validate_to(cls, v: str) -> str:
        return _clean_recipient(v)

    @field_validator("link")
    @classmethod
    def validate_link(cls, v: str) -> str:
        v = v.strip()
        if not v.lower().startswith(("http://", "https://")):
            raise ValueError("Media link must be an http(s) URL")
        return v


# ============================================
# RESPONSE MODELS
# ============================================

class TenantResponse(BaseModel):
    """Tenant connection record. Credentials are never exposed."""
    tenant_id: uuid.UUID
    business_name: Optional[str] = None
    waba_id: Optional[str] = None
    business_phone_number_id: Optional[str] = None
    phone_number: Optional[str] = None
    connection_status: str
    has_access_token: bool = False
    token_expires_at: Optional[datetime] = None
    last_error: Optional[str] = None
    version: int
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @classmethod
    def from_record(cls, tenant: Dict[str, Any]) -> "TenantResponse":
        return cls(
            tenant_id=tenant["tenant_id"],
            business_name=tenant.get("business_name"),
            waba_id=tenant.get("waba_id"),
            business_phone_number_id=tenant.get("business_phone_number_id"),
            phone_number=tenant.get("phone_number"),
            connection_status=tenant["connection_status"],
            has_access_token=bool(tenant.get("access_token")),
            token_expires_at=tenant.get("token_expires_at"),
            last_error=tenant.get("last_error"),
            version=tenant["version"],
            created_at=tenant.get("created_at"),
            updated_at=tenant.get("updated_at"),
        )


class ConnectionInitResponse(BaseModel):
    """Response for connect / authorization-url"""
    tenant_id: uuid.UUID
    connection_status: str
    authorization_url: str
    state: str


class ConnectionStatusResponse(BaseModel):
    """Response for the lightweight status check"""
    tenant_id: uuid.UUID
    connection_status: str
    is_connected: bool


class RefreshTokenResponse(BaseModel):
    success: bool
    tenant_id: uuid.UUID


class ConversationItem(BaseModel):
    """Single conversation for list view"""
    id: uuid.UUID
    tenant_id: uuid.UUID
    customer_wa_id: str
    customer_phone: Optional[str] = None
    customer_name: Optional[str] = None
    customer_profile_pic_url: Optional[str] = None
    status: str
    last_message_at: Optional[datetime] = None
    created_at: Optional[datetime] = None


class ConversationsListResponse(BaseModel):
    """Response for conversations list endpoint"""
    conversations: List[ConversationItem]
    total_count: int
    skip: int
    limit: int


class MessageItem(BaseModel):
    """Single message item for conversation view"""
    id: uuid.UUID
    conversation_id: uuid.UUID
    whatsapp_message_id: str
    direction: str  # inbound/outbound
    message_type: str
    content: Optional[str] = None
    media_url: Optional[str] = None
    media_mime_type: Optional[str] = None
    media_filename: Optional[str] = None
    media_id: Optional[str] = None
    status: str
    failed_reason: Optional[str] = None
    sent_at: Optional[datetime] = None
    delivered_at: Optional[datetime] = None
    read_at: Optional[datetime] = None
    created_at: Optional[datetime] = None


class MessagesListResponse(BaseModel):
    """Response for message history"""
    messages: List[MessageItem]
    total_count: int
    conversation_id: uuid.UUID
    skip: int
    limit: int


class SendMessageResponse(BaseModel):
    """Response for send operations"""
    success: bool
    whatsapp_message_id: str
    conversation_id: uuid.UUID
    message: MessageItem


class MarkReadResponse(BaseModel):
    success: bool
    whatsapp_message_id: str


# ============================================
# WEBHOOK EVENT SCHEMAS
# ============================================

class WebhookEventItem(BaseModel):
    """Stored webhook entry"""
    id: uuid.UUID
    tenant_id: Optional[uuid.UUID] = None
    waba_id: Optional[str] = None
    event_type: str
    payload: Dict[str, Any]
    processed: bool
    processed_at: Optional[datetime] = None
    created_at: Optional[datetime] = None


class WebhookEventsListResponse(BaseModel):
    events: List[WebhookEventItem]
    skip: int
    limit: int


class ReprocessResponse(BaseModel):
    """Response for replaying a stored event"""
    event_id: uuid.UUID
    tenant_id: Optional[uuid.UUID] = None
    processed: bool
    failed_changes: int


class ReconcileResponse(BaseModel):
    """Response for reconciling unattributed events"""
    examined: int
    attributed: int
    still_unattributed: int
    failed: int
