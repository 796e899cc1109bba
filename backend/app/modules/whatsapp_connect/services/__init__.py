"""
WhatsApp Connect Services

Business logic layer for the WhatsApp connect module.
"""

from .graph_client import MetaGraphClient, graph_client
from .client_cache import WhatsAppClientCache, WhatsAppCloudClient, client_cache
from .connection_service import WhatsAppConnectionService
from .conversation_ledger import ConversationLedger
from .messaging_service import WhatsAppMessagingService
from .webhook_router import WebhookRouter, process_webhook_payload

__all__ = [
    "MetaGraphClient",
    "graph_client",
    "WhatsAppClientCache",
    "WhatsAppCloudClient",
    "client_cache",
    "WhatsAppConnectionService",
    "ConversationLedger",
    "WhatsAppMessagingService",
    "WebhookRouter",
    "process_webhook_payload",
]
