"""Async HTTP client wrapper with timeout configuration."""

from typing import Any, Dict, Optional

import httpx


class AsyncHTTPClient:
    """
    Async HTTP client wrapper around httpx.AsyncClient.

    Provides:
    - Configurable connect and read timeouts
    - Optional base URL and default headers (e.g. bearer auth)
    - Connection pooling via httpx
    - Context manager for proper lifecycle management
    """

    def __init__(
        self,
        connect_timeout: float = 5.0,
        read_timeout: float = 60.0,
        write_timeout: float = 10.0,
        pool_timeout: float = 10.0,
        base_url: str = "",
        headers: Optional[Dict[str, str]] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None
    ):
        """
        Initialize HTTP client.

        Args:
            connect_timeout: Connection timeout in seconds
            read_timeout: Read timeout in seconds
            write_timeout: Write timeout in seconds
            pool_timeout: Pool timeout in seconds
            base_url: Prefix for relative request URLs
            headers: Headers sent with every request
            transport: Optional transport (mock or ASGI transports in tests)
        """
        self.connect_timeout = connect_timeout
        self.read_timeout = read_timeout
        self.write_timeout = write_timeout
        self.pool_timeout = pool_timeout
        self.base_url = base_url
        self.headers = headers or {}
        self.transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    async def __aenter__(self):
        """Enter async context manager."""
        timeout = httpx.Timeout(
            connect=self.connect_timeout,
            read=self.read_timeout,
            write=self.write_timeout,
            pool=self.pool_timeout
        )
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            headers=self.headers,
            timeout=timeout,
            transport=self.transport
        )
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        """Exit async context manager."""
        if self._client:
            await self._client.aclose()
            self._client = None

    def _require_client(self) -> httpx.AsyncClient:
        if not self._client:
            raise RuntimeError("Client not initialized. Use 'async with' context manager.")
        return self._client

    async def get(
        self,
        url: str,
        params: Optional[Dict[str, Any]] = None,
        **kwargs
    ) -> httpx.Response:
        """
        Perform GET request.

        Args:
            url: URL to request
            params: Query parameters
            **kwargs: Additional arguments for httpx

        Returns:
            HTTP response
        """
        return await self._require_client().get(url, params=params, **kwargs)

    async def post(
        self,
        url: str,
        json: Any = None,
        **kwargs
    ) -> httpx.Response:
        """
        Perform POST request with a JSON body.

        Args:
            url: URL to request
            json: JSON-serializable request body
            **kwargs: Additional arguments for httpx

        Returns:
            HTTP response
        """
        return await self._require_client().post(url, json=json, **kwargs)
