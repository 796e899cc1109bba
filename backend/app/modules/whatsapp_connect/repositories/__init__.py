"""
WhatsApp Connect Repositories

Database access layer. Repositories flush but never commit; the service
layer owns transactions.
"""

from .tenant_repository import WhatsAppTenantRepository
from .conversation_repository import WhatsAppConversationRepository
from .message_repository import WhatsAppMessageRepository
from .webhook_event_repository import WhatsAppWebhookEventRepository

__all__ = [
    "WhatsAppTenantRepository",
    "WhatsAppConversationRepository",
    "WhatsAppMessageRepository",
    "WhatsAppWebhookEventRepository",
]
