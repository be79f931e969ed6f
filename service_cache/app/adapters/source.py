"""
Source collaborators: the authoritative store behind the cache.
"""

from typing import Any, Optional, Protocol, runtime_checkable
from urllib.parse import quote

import httpx

from shared.errors import NotFoundError, SourceError, TransientSourceError
from shared.logging import get_logger
from shared.retry import RetryConfig, call_with_retry


@runtime_checkable
class Source(Protocol):
    """Authoritative store.

    ``fetch`` returns the canonical value for ``key`` or raises
    ``NotFoundError`` (absence confirmed) or ``TransientSourceError``
    (unreachable, timed out).
    """

    name: str

    async def fetch(self, key: str) -> Any: ...


class HttpSource:
    """Source backed by a JSON HTTP API."""

    def __init__(
        self,
        base_url: str,
        path_template: str = "/users/{key}",
        *,
        timeout: float = 5.0,
        name: str = "http_source",
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.path_template = path_template
        self.timeout = timeout
        self.name = name
        self.logger = get_logger(f"source.{name}")
        self.client = client

    async def start(self):
        """Start the HTTP client."""
        if self.client is None:
            self.client = httpx.AsyncClient(base_url=self.base_url, timeout=self.timeout)
        self.logger.info("HTTP source started", base_url=self.base_url)

    async def stop(self):
        """Stop the HTTP client."""
        if self.client is not None:
            await self.client.aclose()
            self.client = None
            self.logger.info("HTTP source stopped")

    async def fetch(self, key: str) -> Any:
        if self.client is None:
            raise TransientSourceError(self.name, "HTTP source not started")

        path = self.path_template.format(key=quote(key, safe=""))
        try:
            response = await self.client.get(path)
        except httpx.TimeoutException as e:
            raise TransientSourceError(self.name, "Request timed out", {"key": key}) from e
        except httpx.TransportError as e:
            raise TransientSourceError(self.name, f"Transport error: {e}", {"key": key}) from e

        if response.status_code == 404:
            raise NotFoundError(key)
        if response.status_code >= 500 or response.status_code == 429:
            raise TransientSourceError(
                self.name,
                f"Upstream returned {response.status_code}",
                {"key": key, "status_code": response.status_code}
            )
        if response.status_code >= 400:
            raise SourceError(
                self.name,
                f"Upstream rejected request with {response.status_code}",
                {"key": key, "status_code": response.status_code}
            )

        try:
            return response.json()
        except ValueError as e:
            raise SourceError(self.name, "Upstream returned invalid JSON", {"key": key}) from e

    async def health_check(self) -> bool:
        return self.client is not None


class RetryingSource:
    """Wraps a source, retrying transient failures with backoff.

    ``NotFoundError`` and ``SourceError`` are never retried. Compose this
    around a source before handing it to the accessor; the accessor itself
    never retries.
    """

    def __init__(self, source: Source, config: Optional[RetryConfig] = None):
        self.source = source
        self.config = config or RetryConfig()
        self.name = getattr(source, "name", type(source).__name__)

    async def fetch(self, key: str) -> Any:
        return await call_with_retry(
            self.source.fetch,
            key,
            retry_on=(TransientSourceError,),
            config=self.config,
        )

    async def start(self):
        if hasattr(self.source, "start"):
            await self.source.start()

    async def stop(self):
        if hasattr(self.source, "stop"):
            await self.source.stop()

    async def health_check(self) -> bool:
        if hasattr(self.source, "health_check"):
            return await self.source.health_check()
        return True
