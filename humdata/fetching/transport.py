"""
HTTP transport layer.

Provides:
- APIKeyRotator: Round-robin rotation for comma-separated API keys
- Transport: Protocol for a single request/response exchange
- HttpTransport: httpx-backed transport classifying failures as
  transient (retryable) or permanent

Retries are not performed here. The fetch executor owns the retry state
machine so that rate limiting, caching and backoff stay in one place.
"""

import asyncio
import logging
import os
from dataclasses import dataclass, field
from typing import Any, Protocol, Sequence

import httpx

from humdata.errors import PermanentTransportError, TransientTransportError

logger = logging.getLogger(__name__)

RETRYABLE_STATUS_CODES = frozenset({429})


def is_retryable_status(status_code: int) -> bool:
    """
    Check if an HTTP status code should trigger a retry.

    Retryable: 429 Too Many Requests and every 5xx.
    """
    return status_code in RETRYABLE_STATUS_CODES or 500 <= status_code < 600


def is_retryable_exception(exc: Exception) -> bool:
    """
    Check if an httpx exception should trigger a retry.

    Timeouts and network-level failures are transient. Malformed URLs and
    unsupported schemes are not.
    """
    if isinstance(exc, (httpx.InvalidURL, httpx.UnsupportedProtocol)):
        return False
    return isinstance(
        exc,
        (
            httpx.TimeoutException,
            httpx.NetworkError,
            httpx.RemoteProtocolError,
        ),
    )


def build_url(base_address: str, endpoint_path: str) -> str:
    """Join a source base address and an endpoint path."""
    if endpoint_path.startswith(("http://", "https://")):
        return endpoint_path
    if not endpoint_path:
        return base_address
    return f"{base_address.rstrip('/')}/{endpoint_path.lstrip('/')}"


@dataclass
class APIKeyRotator:
    """
    Round-robin API key rotation from comma-separated environment variable.

    Example:
        rotator = APIKeyRotator.from_env_var("key1,key2,key3")
        key = await rotator.get_key()  # Returns keys in round-robin order
    """

    keys: list[str]
    _current_index: int = field(default=0, repr=False)
    _lock: asyncio.Lock = field(default_factory=asyncio.Lock, repr=False)

    @classmethod
    def from_env_var(cls, value: str | None) -> "APIKeyRotator | None":
        """
        Create rotator from comma-separated environment variable value.

        Returns:
            APIKeyRotator instance or None if no keys provided
        """
        if not value:
            return None

        keys = [k.strip() for k in value.split(",") if k.strip()]

        if not keys:
            return None

        return cls(keys=keys)

    @classmethod
    def from_environment(cls, env_name: str | None) -> "APIKeyRotator | None":
        """Create rotator from the named environment variable, if set."""
        if not env_name:
            return None
        return cls.from_env_var(os.environ.get(env_name))

    async def get_key(self) -> str:
        """Get the next API key in round-robin rotation."""
        async with self._lock:
            key = self.keys[self._current_index]
            self._current_index = (self._current_index + 1) % len(self.keys)
            return key

    @property
    def key_count(self) -> int:
        """Return the number of available keys."""
        return len(self.keys)


@dataclass(frozen=True)
class TransportResponse:
    """Successful response body, uninterpreted."""

    status_code: int
    content: bytes
    url: str
    content_type: str | None = None


class Transport(Protocol):
    """One request, one response. Raises Transient/PermanentTransportError."""

    async def fetch(
        self,
        url: str,
        params: Sequence[tuple[str, str]] | None = None,
        headers: dict[str, str] | None = None,
    ) -> TransportResponse: ...


class HttpTransport:
    """
    Async HTTP transport backed by httpx.

    The underlying client is created lazily on first use and closed by
    aclose() or when leaving the async context manager.

    Example:
        async with HttpTransport(timeout=10.0) as transport:
            response = await transport.fetch(
                "https://api.worldbank.org/v2/country/PSE/indicator/SP.POP.TOTL",
                params=[("format", "json")],
            )
    """

    def __init__(
        self,
        timeout: float = 30.0,
        user_agent: str | None = None,
        client: httpx.AsyncClient | None = None,
    ):
        """
        Initialize HTTP transport.

        Args:
            timeout: Per-request timeout in seconds
            user_agent: Optional User-Agent header
            client: Pre-built client (ownership stays with the caller)
        """
        self.timeout = timeout
        self.user_agent = user_agent
        self._client = client
        self._owns_client = client is None

    async def __aenter__(self) -> "HttpTransport":
        self._ensure_client()
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.aclose()

    def _ensure_client(self) -> httpx.AsyncClient:
        if self._client is None:
            headers = {"Accept": "application/json, text/csv, */*"}
            if self.user_agent:
                headers["User-Agent"] = self.user_agent
            self._client = httpx.AsyncClient(
                timeout=self.timeout,
                headers=headers,
                follow_redirects=True,
            )
            self._owns_client = True
        return self._client

    async def aclose(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    async def fetch(
        self,
        url: str,
        params: Sequence[tuple[str, str]] | None = None,
        headers: dict[str, str] | None = None,
    ) -> TransportResponse:
        """
        Perform a single GET request.

        Raises:
            TransientTransportError: Timeout, network failure, 429 or 5xx
            PermanentTransportError: Other 4xx, malformed URL or scheme
        """
        if not url.startswith(("http://", "https://")):
            raise PermanentTransportError(f"Unsupported URL: {url!r}")

        client = self._ensure_client()
        try:
            response = await client.get(
                url,
                params=list(params) if params else None,
                headers=headers or None,
            )
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            if is_retryable_exception(e):
                raise TransientTransportError(
                    f"{type(e).__name__} for {url}: {e}", cause=e
                ) from e
            raise PermanentTransportError(
                f"Request to {url} failed: {e}", cause=e
            ) from e

        if is_retryable_status(response.status_code):
            raise TransientTransportError(
                f"Request failed with status {response.status_code}",
                status_code=response.status_code,
            )
        if response.status_code >= 400:
            raise PermanentTransportError(
                f"Request failed with status {response.status_code}",
                status_code=response.status_code,
            )

        return TransportResponse(
            status_code=response.status_code,
            content=response.content,
            url=str(response.url),
            content_type=response.headers.get("content-type"),
        )
