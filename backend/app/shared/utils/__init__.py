"""
Shared Utility Functions
"""
from app.shared.utils.exceptions import (
    ConcurrentModificationError,
    EntityNotFoundError,
    DuplicateTenantError,
    InvalidStateError,
    InvalidOAuthStateError,
    InvalidPinError,
    TenantNotConnectedError,
    TokenExpiredError,
    UpstreamFailureError,
    MalformedEventError,
)
from app.shared.utils.phone_utils import to_wa_id, is_valid_whatsapp_number
from app.shared.utils.time_utils import utcnow, as_utc, from_unix, is_expired

__all__ = [
    "ConcurrentModificationError",
    "EntityNotFoundError",
    "DuplicateTenantError",
    "InvalidStateError",
    "InvalidOAuthStateError",
    "InvalidPinError",
    "TenantNotConnectedError",
    "TokenExpiredError",
    "UpstreamFailureError",
    "MalformedEventError",
    # Phone utilities
    "to_wa_id",
    "is_valid_whatsapp_number",
    # Time utilities
    "utcnow",
    "as_utc",
    "from_unix",
    "is_expired",
]
