"""Shared HTTP client pool for backend and collaborator connections.

Manages :class:`httpx.AsyncClient` instances keyed by provider name,
enabling TCP connection reuse across all requests in a worker.
Lifecycle is tied to the FastAPI application lifespan.
"""

import httpx


class HttpClientPool:
    """Manages shared ``httpx.AsyncClient`` instances per provider."""

    def __init__(self, transport: httpx.AsyncBaseTransport | None = None) -> None:
        self._clients: dict[str, httpx.AsyncClient] = {}
        # Tests pass an ``httpx.MockTransport`` here
        self._transport = transport

    def get(
        self,
        provider: str,
        *,
        timeout: float = 60.0,
        max_connections: int = 100,
        max_keepalive: int = 20,
        proxy_url: str | None = None,
    ) -> httpx.AsyncClient:
        """Get or create a shared HTTP client for *provider*.

        The client is created lazily on first access and reused thereafter.
        """
        if provider not in self._clients:
            self._clients[provider] = httpx.AsyncClient(
                timeout=httpx.Timeout(timeout),
                limits=httpx.Limits(
                    max_connections=max_connections,
                    max_keepalive_connections=max_keepalive,
                ),
                proxy=proxy_url,
                transport=self._transport,
            )
        return self._clients[provider]

    async def close_all(self) -> None:
        """Close all managed HTTP clients.  Call during app shutdown."""
        for client in self._clients.values():
            await client.aclose()
        self._clients.clear()
