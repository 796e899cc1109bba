"""
WhatsApp Connect Constants
Centralized enums and wire-level names for the WhatsApp module.

Enums inherit from str so they can be stored in Text columns and returned
in JSON responses without .value conversion.
"""
from enum import Enum


class ConnectionStatus(str, Enum):
    """
    Tenant connection lifecycle.

    Flow:
    DISCONNECTED → CONNECTING → VERIFICATION_NEEDED → CONNECTED
                        ↘ ERROR ↙             (any) → DISCONNECTED
    """
    DISCONNECTED = "DISCONNECTED"
    CONNECTING = "CONNECTING"                    # OAuth started, waiting for callback
    VERIFICATION_NEEDED = "VERIFICATION_NEEDED"  # Token issued, WABA/phone not linked yet
    CONNECTED = "CONNECTED"
    ERROR = "ERROR"


class ConnectionEvent(str, Enum):
    """Events that drive ConnectionStatus transitions."""
    AUTHORIZATION_STARTED = "AUTHORIZATION_STARTED"
    TOKEN_ISSUED = "TOKEN_ISSUED"
    ONBOARDING_COMPLETED = "ONBOARDING_COMPLETED"
    PHONE_REGISTERED = "PHONE_REGISTERED"
    STEP_FAILED = "STEP_FAILED"
    DISCONNECTED = "DISCONNECTED"


class MessageStatus(str, Enum):
    """
    Message delivery status.

    Status Flow:
    SENT → DELIVERED → READ
       ↘       ↘
         FAILED
    """
    SENT = "SENT"
    DELIVERED = "DELIVERED"
    READ = "READ"
    FAILED = "FAILED"

    @classmethod
    def from_label(cls, label: str):
        """Map a webhook status label ('sent', 'delivered', ...) to the enum, or None."""
        if not label:
            return None
        try:
            return cls(label.upper())
        except ValueError:
            return None


class MessageDirection(str, Enum):
    INBOUND = "INBOUND"    # Customer sent it
    OUTBOUND = "OUTBOUND"  # Tenant sent it


class MessageType(str, Enum):
    TEXT = "TEXT"
    IMAGE = "IMAGE"
    AUDIO = "AUDIO"
    VIDEO = "VIDEO"
    DOCUMENT = "DOCUMENT"
    LOCATION = "LOCATION"
    CONTACT = "CONTACT"
    INTERACTIVE = "INTERACTIVE"
    TEMPLATE = "TEMPLATE"
    STICKER = "STICKER"
    REACTION = "REACTION"
    BUTTON = "BUTTON"
    MEDIA = "MEDIA"
    UNKNOWN = "UNKNOWN"


class ConversationStatus(str, Enum):
    ACTIVE = "ACTIVE"
    ARCHIVED = "ARCHIVED"
    BLOCKED = "BLOCKED"


class OutboundMediaType(str, Enum):
    """Media kinds that can be sent by link."""
    IMAGE = "image"
    DOCUMENT = "document"
    AUDIO = "audio"
    VIDEO = "video"


class WebhookField(str, Enum):
    """Values of changes[].field in a WhatsApp Business Account webhook."""
    ACCOUNT_UPDATE = "account_update"
    MESSAGES = "messages"
    MESSAGE_TEMPLATE_STATUS_UPDATE = "message_template_status_update"


class AccountUpdateEvent(str, Enum):
    """Values of value.event for account_update changes."""
    PARTNER_ADDED = "PARTNER_ADDED"
    ACCOUNT_UPDATE = "ACCOUNT_UPDATE"
    ACCOUNT_VERIFIED = "ACCOUNT_VERIFIED"
    VERIFIED_ACCOUNT = "VERIFIED_ACCOUNT"
    DISABLED_UPDATE = "DISABLED_UPDATE"


# ============================================
# GRAPH API / OAUTH
# ============================================
OAUTH_AUTHORIZE_URL = "https://www.facebook.com/dialog/oauth"
OAUTH_TOKEN_PATH = "/oauth/access_token"
OAUTH_SCOPES = "whatsapp_business_management,whatsapp_business_messaging"
OAUTH_GRANT_REFRESH = "refresh_token"

SUBSCRIBED_APPS_PATH = "/{waba_id}/subscribed_apps"
REGISTER_PHONE_PATH = "/{phone_number_id}/register"
PHONE_NUMBER_PATH = "/{phone_number_id}"
MESSAGES_PATH = "/{phone_number_id}/messages"

MESSAGING_PRODUCT = "whatsapp"
PIN_LENGTH = 6

# ============================================
# WEBHOOK
# ============================================
WEBHOOK_OBJECT = "whatsapp_business_account"
WEBHOOK_ACK_BODY = "EVENT_RECEIVED"
WEBHOOK_MODE_SUBSCRIBE = "subscribe"
WEBHOOK_SIGNATURE_HEADER = "X-Hub-Signature-256"
UNKNOWN_EVENT_TYPE = "UNKNOWN"
