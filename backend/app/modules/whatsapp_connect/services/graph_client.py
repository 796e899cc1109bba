"""
Meta Graph API Client
Low-level wrapper for the WhatsApp Cloud API and Facebook OAuth endpoints.

Handles:
- OAuth code exchange and token refresh
- Webhook subscription for a WhatsApp Business Account
- Phone number registration and lookup
- Message sends / read receipts (used by the per-tenant handle)

Retry Strategy:
- Max 3 attempts with exponential backoff (2s, 4s, 8s)
- Only retries on: Timeout, Connection errors, 429 and 5xx responses
- Does NOT retry on: other 4xx client errors
After the last attempt every failure surfaces as UpstreamFailureError.
"""
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Dict, Optional
from urllib.parse import urlencode

import httpx
from tenacity import (
    retry,
    stop_after_attempt,
    wait_exponential,
    retry_if_exception_type,
    before_sleep_log,
)

from app.shared.core.config import settings
from app.shared.core.constants import (
    MAX_RETRY_ATTEMPTS,
    RETRY_MIN_WAIT_SECONDS,
    RETRY_MAX_WAIT_SECONDS,
    TIMEOUT_GRAPH_OAUTH,
)
from app.shared.utils.exceptions import UpstreamFailureError
from app.shared.utils.http_client import http_client_manager
from app.shared.utils.time_utils import utcnow
from app.modules.whatsapp_connect.constants import (
    OAUTH_AUTHORIZE_URL,
    OAUTH_TOKEN_PATH,
    OAUTH_SCOPES,
    OAUTH_GRANT_REFRESH,
    SUBSCRIBED_APPS_PATH,
    REGISTER_PHONE_PATH,
    PHONE_NUMBER_PATH,
    MESSAGES_PATH,
    MESSAGING_PRODUCT,
)

logger = logging.getLogger("graph_client")


# ============================================
# CUSTOM EXCEPTIONS FOR RETRY LOGIC
# ============================================

class GraphRetryableError(Exception):
    """The request should be retried (server error, throttling)."""
    def __init__(self, message: str, status_code: Optional[int] = None, body: Any = None):
        self.status_code = status_code
        self.body = body
        super().__init__(message)


class GraphNonRetryableError(Exception):
    """The request should NOT be retried (client error)."""
    def __init__(self, message: str, status_code: Optional[int] = None, body: Any = None):
        self.status_code = status_code
        self.body = body
        super().__init__(message)


# ============================================
# RETRY DECORATOR
# ============================================

def graph_retry():
    """Retry decorator for Graph API calls."""
    return retry(
        stop=stop_after_attempt(MAX_RETRY_ATTEMPTS),
        wait=wait_exponential(
            multiplier=1,
            min=RETRY_MIN_WAIT_SECONDS,
            max=RETRY_MAX_WAIT_SECONDS
        ),
        retry=retry_if_exception_type((
            GraphRetryableError,
            httpx.TimeoutException,
            httpx.ConnectError,
            httpx.ConnectTimeout,
        )),
        before_sleep=before_sleep_log(logger, logging.WARNING),
        reraise=True
    )


@dataclass
class TokenGrant:
    """Result of an OAuth code exchange or refresh."""
    access_token: str
    refresh_token: Optional[str]
    expires_at: Optional[datetime]


def _error_message(body: Any, fallback: str) -> str:
    """Pull error.message out of a Graph error body."""
    if isinstance(body, dict):
        error = body.get("error")
        if isinstance(error, dict) and error.get("message"):
            return str(error["message"])
    return fallback


class MetaGraphClient:
    """
    Graph API client shared by all tenants.

    Tokens are passed per call; the client itself only knows the app
    credentials. Pass http_client to use a specific httpx.AsyncClient
    (tests use one built on httpx.MockTransport).
    """

    def __init__(
        self,
        http_client: Optional[httpx.AsyncClient] = None,
        base_url: Optional[str] = None,
        app_id: Optional[str] = None,
        app_secret: Optional[str] = None,
        redirect_uri: Optional[str] = None,
    ):
        self._http_client = http_client
        self.base_url = (base_url or settings.graph_api_url).rstrip('/')
        self.app_id = app_id if app_id is not None else settings.WHATSAPP_APP_ID
        self.app_secret = app_secret if app_secret is not None else settings.WHATSAPP_APP_SECRET
        self.redirect_uri = redirect_uri if redirect_uri is not None else settings.WHATSAPP_REDIRECT_URI

        if not self.app_id or not self.app_secret:
            logger.warning("WHATSAPP_APP_ID / WHATSAPP_APP_SECRET not configured")

    def _client(self) -> httpx.AsyncClient:
        return self._http_client or http_client_manager.get_client()

    def is_configured(self) -> bool:
        return bool(self.app_id and self.app_secret and self.redirect_uri)

    # ============================================
    # TRANSPORT
    # ============================================

    @graph_retry()
    async def _request_with_retry(
        self,
        method: str,
        path: str,
        access_token: Optional[str] = None,
        **kwargs
    ) -> Dict[str, Any]:
        headers = kwargs.pop("headers", {})
        if access_token:
            headers["Authorization"] = f"Bearer {access_token}"

        response = await self._client().request(
            method, f"{self.base_url}{path}", headers=headers, **kwargs
        )

        try:
            body = response.json()
        except ValueError:
            body = {"raw": response.text}

        if 200 <= response.status_code < 300:
            return body if isinstance(body, dict) else {"data": body}

        message = _error_message(body, f"HTTP {response.status_code}")

        if response.status_code == 429 or response.status_code >= 500:
            logger.warning(f"Graph {method} {path} failed with {response.status_code}: {message}")
            raise GraphRetryableError(message, response.status_code, body)

        logger.error(f"Graph {method} {path} rejected with {response.status_code}: {message}")
        raise GraphNonRetryableError(message, response.status_code, body)

    async def _call(
        self,
        method: str,
        path: str,
        access_token: Optional[str] = None,
        **kwargs
    ) -> Dict[str, Any]:
        """Run a request and translate every failure into UpstreamFailureError."""
        try:
            return await self._request_with_retry(method, path, access_token=access_token, **kwargs)
        except GraphNonRetryableError as e:
            raise UpstreamFailureError(str(e), status_code=e.status_code, transient=False, details=e.body) from e
        except GraphRetryableError as e:
            raise UpstreamFailureError(str(e), status_code=e.status_code, transient=True, details=e.body) from e
        except httpx.TimeoutException as e:
            logger.error(f"Graph {method} {path} timed out after {MAX_RETRY_ATTEMPTS} attempts")
            raise UpstreamFailureError(f"Graph API timeout: {method} {path}", transient=True) from e
        except httpx.HTTPError as e:
            logger.error(f"Graph {method} {path} transport error: {str(e)}")
            raise UpstreamFailureError(f"Graph API unreachable: {str(e)}", transient=True) from e

    # ============================================
    # OAUTH
    # ============================================

    def authorization_url(self, state: str, configuration_id: Optional[str] = None) -> str:
        """Facebook login dialog URL for the WhatsApp Business scopes."""
        params = {
            "client_id": self.app_id,
            "redirect_uri": self.redirect_uri,
            "state": state,
            "scope": OAUTH_SCOPES,
            "response_type": "code",
        }
        config_id = configuration_id if configuration_id is not None else settings.WHATSAPP_CONFIGURATION_ID
        if config_id:
            params["config_id"] = config_id
        return f"{OAUTH_AUTHORIZE_URL}?{urlencode(params)}"

    def _token_grant(self, body: Dict[str, Any]) -> TokenGrant:
        access_token = body.get("access_token")
        if not access_token:
            raise UpstreamFailureError("OAuth response did not contain an access token", details=body)

        expires_at = None
        expires_in = body.get("expires_in")
        if expires_in not in (None, ""):
            try:
                expires_at = utcnow() + timedelta(seconds=int(expires_in))
            except (TypeError, ValueError):
                logger.warning(f"Ignoring unparseable expires_in: {expires_in!r}")

        return TokenGrant(
            access_token=access_token,
            refresh_token=body.get("refresh_token"),
            expires_at=expires_at,
        )

    async def exchange_code(self, code: str) -> TokenGrant:
        """Exchange an authorization code for an access token."""
        body = await self._call(
            "POST",
            OAUTH_TOKEN_PATH,
            data={
                "client_id": self.app_id,
                "client_secret": self.app_secret,
                "redirect_uri": self.redirect_uri,
                "code": code,
            },
            timeout=TIMEOUT_GRAPH_OAUTH,
        )
        return self._token_grant(body)

    async def refresh_access_token(self, refresh_token: str) -> TokenGrant:
        body = await self._call(
            "POST",
            OAUTH_TOKEN_PATH,
            data={
                "client_id": self.app_id,
                "client_secret": self.app_secret,
                "grant_type": OAUTH_GRANT_REFRESH,
                "refresh_token": refresh_token,
            },
            timeout=TIMEOUT_GRAPH_OAUTH,
        )
        return self._token_grant(body)

    # ============================================
    # ACCOUNT SETUP
    # ============================================

    async def subscribe_webhooks(self, waba_id: str, access_token: str) -> Dict[str, Any]:
        """Subscribe this app to the WABA's webhooks."""
        return await self._call(
            "POST", SUBSCRIBED_APPS_PATH.format(waba_id=waba_id), access_token=access_token
        )

    async def unsubscribe_webhooks(self, waba_id: str, access_token: str) -> Dict[str, Any]:
        return await self._call(
            "DELETE", SUBSCRIBED_APPS_PATH.format(waba_id=waba_id), access_token=access_token
        )

    async def register_phone_number(self, phone_number_id: str, access_token: str, pin: str) -> Dict[str, Any]:
        return await self._call(
            "POST",
            REGISTER_PHONE_PATH.format(phone_number_id=phone_number_id),
            access_token=access_token,
            json={"messaging_product": MESSAGING_PRODUCT, "pin": pin},
        )

    async def get_phone_number(self, phone_number_id: str, access_token: str) -> Dict[str, Any]:
        """Phone number metadata (display_phone_number, verified_name)."""
        return await self._call(
            "GET",
            PHONE_NUMBER_PATH.format(phone_number_id=phone_number_id),
            access_token=access_token,
            params={"fields": "display_phone_number,verified_name"},
        )

    # ============================================
    # MESSAGING
    # ============================================

    async def send_message(self, phone_number_id: str, access_token: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        """POST a message object; returns {messages: [{id}], contacts: [{wa_id}]}."""
        return await self._call(
            "POST",
            MESSAGES_PATH.format(phone_number_id=phone_number_id),
            access_token=access_token,
            json=payload,
        )


# Singleton instance
graph_client = MetaGraphClient()
