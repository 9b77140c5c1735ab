"""
HTTP Client Factory

Every outbound call gets a fresh httpx.AsyncClient with a bounded timeout.
The factory is injected into the API clients so tests can swap the transport.
"""

import httpx
from typing import Dict, Optional

from app.config import get_settings


class HttpClientFactory:
    """Builds httpx clients with the service-wide timeout."""

    def __init__(self, timeout: Optional[float] = None, transport: Optional[httpx.AsyncBaseTransport] = None):
        """
        Initialize factory.

        Args:
            timeout: Per-call timeout in seconds (default from settings)
            transport: Optional transport override (e.g. httpx.MockTransport in tests)
        """
        self.timeout = timeout or get_settings().HTTP_TIMEOUT_SECONDS
        self.transport = transport

    def client(self, base_url: str = "", headers: Optional[Dict[str, str]] = None) -> httpx.AsyncClient:
        """Create a client. Use as `async with factory.client(...) as client:`."""
        return httpx.AsyncClient(
            base_url=base_url,
            headers=headers,
            timeout=self.timeout,
            transport=self.transport,
        )


_factory: Optional[HttpClientFactory] = None


def get_http_factory() -> HttpClientFactory:
    """Get or create the HTTP client factory singleton."""
    global _factory

    if _factory is None:
        _factory = HttpClientFactory()

    return _factory
