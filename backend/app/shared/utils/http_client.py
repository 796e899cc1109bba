"""
Shared HTTP Client

One pooled httpx.AsyncClient per process for every Graph API call, whatever
the tenant. Tenants differ only in the bearer token each request carries,
so they can share connections to graph.facebook.com.

Usage:
    from app.shared.utils.http_client import http_client_manager

    client = http_client_manager.get_client()
    response = await client.post(url, json=data, headers=headers)
"""
import logging
from typing import Optional

import httpx

from app.shared.core.config import settings

logger = logging.getLogger("http_client")


MAX_CONNECTIONS = 100
MAX_KEEPALIVE_CONNECTIONS = 20
KEEPALIVE_EXPIRY = 30.0  # seconds


class HTTPClientManager:
    """
    Lazily creates the shared client; shutdown_http_client() closes it.

    Timeouts come from WHATSAPP_CONNECT_TIMEOUT / WHATSAPP_READ_TIMEOUT.
    """

    def __init__(self):
        self._client: Optional[httpx.AsyncClient] = None

    def get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                timeout=httpx.Timeout(
                    settings.WHATSAPP_READ_TIMEOUT,
                    connect=settings.WHATSAPP_CONNECT_TIMEOUT
                ),
                limits=httpx.Limits(
                    max_connections=MAX_CONNECTIONS,
                    max_keepalive_connections=MAX_KEEPALIVE_CONNECTIONS,
                    keepalive_expiry=KEEPALIVE_EXPIRY
                ),
            )
            logger.info("Graph API HTTP client created")
        return self._client

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None
            logger.info("Graph API HTTP client closed")


http_client_manager = HTTPClientManager()


async def shutdown_http_client():
    """FastAPI shutdown hook."""
    await http_client_manager.close()
