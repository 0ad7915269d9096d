"""HTTP transport to the DDI server."""

from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Optional
import logging

import httpx

from ddiclient.config import ClientConfig
from ddiclient.errors import ProtocolError, TransportError


class DDITransport:
    """Thin wrapper over ``httpx.AsyncClient`` carrying the device credential.

    httpx exceptions never leave this class: HTTP status and network errors
    become ``TransportError``, undecodable bodies become ``ProtocolError``.
    """

    def __init__(
        self,
        config: ClientConfig,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """Initialize transport.

        Args:
            config: Client configuration (credential, timeout)
            transport: Optional httpx transport (mock transports in tests)
        """
        self.logger = logging.getLogger("ddiclient.transport")
        self.config = config
        self.client = httpx.AsyncClient(
            headers={
                "Authorization": config.authorization_header,
                "Accept": "application/hal+json, application/json",
            },
            timeout=config.http_timeout,
            follow_redirects=True,
            transport=transport,
        )

    async def get_json(self, url: str) -> Any:
        """GET a JSON resource.

        Raises:
            TransportError: On network failure, timeout or non-2xx status
            ProtocolError: If the body is not JSON
        """
        self.logger.debug(f"GET {url}")
        try:
            response = await self.client.get(url)
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise TransportError(
                f"GET {url} returned HTTP {e.response.status_code}",
                status_code=e.response.status_code,
            ) from e
        except httpx.HTTPError as e:
            raise TransportError(f"GET {url} failed: {e!r}") from e

        try:
            return response.json()
        except ValueError as e:
            raise ProtocolError(f"Invalid JSON from {url}: {e}") from e

    @asynccontextmanager
    async def stream(self, url: str, chunk_size: int = 64 * 1024) -> AsyncIterator[AsyncIterator[bytes]]:
        """Open a streaming GET and yield an async iterator of byte chunks.

        Errors raised while the caller iterates are mapped as well.

        Raises:
            TransportError: On network failure, timeout or non-2xx status
        """
        self.logger.debug(f"GET (stream) {url}")
        try:
            async with self.client.stream("GET", url) as response:
                response.raise_for_status()
                yield response.aiter_bytes(chunk_size=chunk_size)
        except httpx.HTTPStatusError as e:
            raise TransportError(
                f"GET {url} returned HTTP {e.response.status_code}",
                status_code=e.response.status_code,
            ) from e
        except httpx.HTTPError as e:
            raise TransportError(f"Download from {url} failed: {e!r}") from e

    async def post_json(self, url: str, body: Any) -> None:
        await self._send("POST", url, body)

    async def put_json(self, url: str, body: Any) -> None:
        await self._send("PUT", url, body)

    async def _send(self, method: str, url: str, body: Any) -> None:
        self.logger.debug(f"{method} {url}")
        try:
            response = await self.client.request(method, url, json=body)
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise TransportError(
                f"{method} {url} returned HTTP {e.response.status_code}",
                status_code=e.response.status_code,
            ) from e
        except httpx.HTTPError as e:
            raise TransportError(f"{method} {url} failed: {e!r}") from e

    async def aclose(self) -> None:
        await self.client.aclose()
