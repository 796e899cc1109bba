"""
Custom Exceptions for the WhatsApp Connect application.

These exceptions provide clear, specific error handling for business logic scenarios.
Each one is mapped to an HTTP status in app.main.
"""
from typing import Any, Optional


class ConcurrentModificationError(Exception):
    """
    Raised when an optimistic locking conflict is detected.

    Two processes read the same tenant row (version=3), the first one writes
    (version becomes 4) and the second write, still filtered on version=3,
    matches no row.

    Recovery:
        The caller should reload the tenant and retry the operation.
    """
    def __init__(self, entity_type: str, entity_id: Any, message: str = None):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.message = message or f"{entity_type} with ID {entity_id} was modified by another process. Please refresh and try again."
        super().__init__(self.message)


class EntityNotFoundError(Exception):
    """
    Raised when a requested entity does not exist in the database.
    """
    def __init__(self, entity_type: str, entity_id: Any):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.message = f"{entity_type} with ID {entity_id} not found."
        super().__init__(self.message)


class DuplicateTenantError(Exception):
    """Raised when initializing a tenant that already has a connection record."""
    def __init__(self, tenant_id: Any):
        self.tenant_id = tenant_id
        self.message = f"Tenant {tenant_id} already exists."
        super().__init__(self.message)


class InvalidStateError(Exception):
    """
    Raised when an operation is attempted from a lifecycle state that does
    not allow it (or its preconditions are not met).
    """
    def __init__(self, message: str, current_state: Optional[str] = None):
        self.current_state = current_state
        self.message = message
        super().__init__(self.message)


class InvalidOAuthStateError(Exception):
    """Raised when the OAuth callback state token is malformed, tampered with or expired."""
    def __init__(self, message: str = "Invalid or expired OAuth state."):
        self.message = message
        super().__init__(self.message)


class InvalidPinError(Exception):
    """Raised when a phone registration PIN is not exactly six digits."""
    def __init__(self, message: str = "PIN must be exactly 6 digits."):
        self.message = message
        super().__init__(self.message)


class TenantNotConnectedError(Exception):
    """Raised when an API handle is requested for a tenant that cannot send messages."""
    def __init__(self, tenant_id: Any, status: Optional[str] = None, message: str = None):
        self.tenant_id = tenant_id
        self.status = status
        self.message = message or f"Tenant {tenant_id} is not connected (status={status})."
        super().__init__(self.message)


class TokenExpiredError(TenantNotConnectedError):
    """The tenant is CONNECTED but its access token has expired."""
    def __init__(self, tenant_id: Any):
        super().__init__(
            tenant_id,
            status="CONNECTED",
            message=f"Access token for tenant {tenant_id} has expired. Refresh or reconnect.",
        )


class UpstreamFailureError(Exception):
    """
    Raised when a Graph API / OAuth call fails.

    transient=True means the failure was a timeout, connection error or 5xx
    and the same call may succeed later.
    """
    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        transient: bool = False,
        details: Optional[Any] = None,
    ):
        self.message = message
        self.status_code = status_code
        self.transient = transient
        self.details = details
        super().__init__(self.message)


class MalformedEventError(Exception):
    """Raised when a webhook change is missing fields it must carry."""
    def __init__(self, message: str):
        self.message = message
        super().__init__(self.message)


class MissingConfigurationError(Exception):
    """Raised when an operation needs a setting that is not configured."""
    def __init__(self, setting: str):
        self.setting = setting
        self.message = f"{setting} is not configured."
        super().__init__(self.message)
