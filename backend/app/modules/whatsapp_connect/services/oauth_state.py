"""
OAuth state tokens.

The `state` parameter sent to the Facebook login dialog carries the tenant
id back to the callback. It is signed with the app secret and stamped
with its issue time so the callback can reject forged or stale values.
Without WHATSAPP_APP_SECRET no state is issued or accepted.

Format (before base64url): "<tenant uuid>:<issued epoch>:<nonce>:<hex hmac>"
"""
import base64
import binascii
import hashlib
import hmac
import logging
import secrets
import time
import uuid
from typing import Optional

from app.shared.core.config import settings
from app.shared.utils.exceptions import InvalidOAuthStateError, MissingConfigurationError

logger = logging.getLogger("oauth_state")

# Tolerated clock drift for tokens issued by another instance
CLOCK_SKEW_SECONDS = 60


def _sign(message: str, secret: str) -> str:
    return hmac.new(secret.encode("utf-8"), message.encode("utf-8"), hashlib.sha256).hexdigest()


def _require_secret(secret: Optional[str]) -> str:
    secret = settings.WHATSAPP_APP_SECRET if secret is None else secret
    if not secret:
        raise MissingConfigurationError("WHATSAPP_APP_SECRET")
    return secret


def issue_state(tenant_id: uuid.UUID, secret: Optional[str] = None, issued_at: Optional[int] = None) -> str:
    secret = _require_secret(secret)
    issued_at = int(time.time()) if issued_at is None else issued_at
    message = f"{tenant_id}:{issued_at}:{secrets.token_hex(8)}"
    raw = f"{message}:{_sign(message, secret)}"
    return base64.urlsafe_b64encode(raw.encode("utf-8")).decode("ascii").rstrip("=")


def verify_state(
    state: str,
    secret: Optional[str] = None,
    ttl_seconds: Optional[int] = None,
    now: Optional[int] = None,
) -> uuid.UUID:
    """
    Return the tenant id carried by `state`.

    Raises InvalidOAuthStateError if the token cannot be decoded, the
    signature does not match, or it is older than ttl_seconds.
    """
    secret = _require_secret(secret)
    ttl_seconds = settings.WHATSAPP_OAUTH_STATE_TTL_SECONDS if ttl_seconds is None else ttl_seconds
    now = int(time.time()) if now is None else now

    if not state:
        raise InvalidOAuthStateError("Missing OAuth state.")

    try:
        padded = state + "=" * (-len(state) % 4)
        raw = base64.urlsafe_b64decode(padded.encode("ascii")).decode("utf-8")
        message, signature = raw.rsplit(":", 1)
        tenant_part, issued_part, _nonce = message.split(":")
        tenant_id = uuid.UUID(tenant_part)
        issued_at = int(issued_part)
    except (ValueError, UnicodeError, binascii.Error):
        logger.warning("Rejected undecodable OAuth state")
        raise InvalidOAuthStateError()

    if not hmac.compare_digest(signature, _sign(message, secret)):
        logger.warning(f"Rejected OAuth state with bad signature for tenant {tenant_id}")
        raise InvalidOAuthStateError()

    if issued_at > now + CLOCK_SKEW_SECONDS or now - issued_at > ttl_seconds:
        logger.warning(f"Rejected expired OAuth state for tenant {tenant_id}")
        raise InvalidOAuthStateError("OAuth state has expired. Start the connection again.")

    return tenant_id
