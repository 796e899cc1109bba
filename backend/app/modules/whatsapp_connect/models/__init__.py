"""
WhatsApp Connect Models

Exports all ORM models for the WhatsApp connect module.
"""

from .tenant import WhatsAppTenant
from .conversation import WhatsAppConversation
from .message import WhatsAppMessage
from .webhook_event import WhatsAppWebhookEvent

__all__ = [
    "WhatsAppTenant",
    "WhatsAppConversation",
    "WhatsAppMessage",
    "WhatsAppWebhookEvent",
]
