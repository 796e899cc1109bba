"""
WhatsApp Connect Module - API Router
Combines all routes from this module for easy registration in main.py
"""
from fastapi import APIRouter
from app.modules.whatsapp_connect.api import webhook_endpoints
from app.modules.whatsapp_connect.api import tenant_endpoints
from app.modules.whatsapp_connect.api import message_endpoints

# Create module router
router = APIRouter()

# Webhook handshake, deliveries and stored-event replay
router.include_router(
    webhook_endpoints.router,
    tags=["WhatsApp Webhook"]
)

# Connection lifecycle
router.include_router(
    tenant_endpoints.router,
    prefix="/tenants",
    tags=["WhatsApp Tenants"]
)

# Outbound messages
router.include_router(
    message_endpoints.router,
    prefix="/messages",
    tags=["WhatsApp Messages"]
)

# Conversation history
router.include_router(
    message_endpoints.conversations_router,
    prefix="/conversations",
    tags=["WhatsApp Conversations"]
)
