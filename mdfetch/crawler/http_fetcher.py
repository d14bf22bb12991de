"""
Plain HTTP fetcher for mdfetch.

The first stage of the pipeline: a single GET with browser-like headers,
following redirects. Any transport error or non-2xx status is reported as
a failed result, never raised.
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Any
from urllib.parse import urlsplit

import httpx

from mdfetch.errors import InvalidURLError
from mdfetch.utils.config import get_settings
from mdfetch.utils.logging import get_logger

logger = get_logger(__name__)

ALLOWED_SCHEMES = ("http", "https")


def validate_url(url: str) -> str:
    """Validate a URL before any network call.

    Args:
        url: Candidate URL.

    Returns:
        The URL, unchanged.

    Raises:
        InvalidURLError: If the URL is unparsable, has no host, contains
            whitespace/control characters, or is not http/https.
    """
    if not isinstance(url, str) or not url:
        raise InvalidURLError(str(url), "empty URL")

    if any(ch.isspace() or ord(ch) < 0x20 for ch in url):
        raise InvalidURLError(url, "URL contains whitespace or control characters")

    try:
        parts = urlsplit(url)
        # Accessing port validates it
        parts.port
    except ValueError as e:
        raise InvalidURLError(url, str(e)) from e

    if parts.scheme.lower() not in ALLOWED_SCHEMES:
        scheme = parts.scheme or "(none)"
        raise InvalidURLError(url, f"unsupported scheme {scheme}, only http and https are allowed")

    if not parts.hostname:
        raise InvalidURLError(url, "missing host")

    # httpx IDNA-encodes the host on parse and decodes xn-- labels on access
    try:
        httpx.URL(url).host
    except (httpx.InvalidURL, UnicodeError) as e:
        raise InvalidURLError(url, str(e) or type(e).__name__) from e

    return url


@dataclass
class SimpleFetchResult:
    """Result of a plain HTTP fetch."""

    ok: bool
    url: str
    html: str = ""
    status: int | None = None
    error: str | None = None
    elapsed_ms: float = 0.0

    @classmethod
    def success(cls, url: str, html: str, status: int, elapsed_ms: float) -> SimpleFetchResult:
        return cls(ok=True, url=url, html=html, status=status, elapsed_ms=elapsed_ms)

    @classmethod
    def failure(
        cls,
        url: str,
        error: str,
        *,
        status: int | None = None,
        elapsed_ms: float = 0.0,
    ) -> SimpleFetchResult:
        return cls(ok=False, url=url, error=error, status=status, elapsed_ms=elapsed_ms)

    def to_dict(self) -> dict[str, Any]:
        return {
            "ok": self.ok,
            "url": self.url,
            "status": self.status,
            "html_length": len(self.html),
            "error": self.error,
            "elapsed_ms": self.elapsed_ms,
        }


class HTTPFetcher:
    """httpx-based fetcher for the simple path.

    Args:
        timeout: Request timeout in seconds. Defaults to crawler.request_timeout.
        transport: Optional httpx transport (tests use httpx.MockTransport).
    """

    def __init__(
        self,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        settings = get_settings()
        self._timeout = timeout if timeout is not None else settings.crawler.request_timeout
        self._headers = {
            "User-Agent": settings.browser.user_agent,
            "Accept": settings.crawler.accept,
            "Accept-Language": settings.crawler.accept_language,
        }
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                headers=self._headers,
                timeout=httpx.Timeout(self._timeout),
                follow_redirects=True,
                transport=self._transport,
            )
        return self._client

    async def fetch(self, url: str) -> SimpleFetchResult:
        """GET a URL.

        Args:
            url: Validated http(s) URL.

        Returns:
            SimpleFetchResult with the response body on 2xx, otherwise a failure.
        """
        client = await self._get_client()
        start = time.monotonic()

        try:
            response = await client.get(url)
        except (httpx.HTTPError, httpx.InvalidURL, UnicodeError) as e:
            # Hosts that fail IDNA encoding raise while the request is built
            elapsed_ms = (time.monotonic() - start) * 1000
            logger.info(
                "Simple fetch failed",
                url=url,
                error_type=type(e).__name__,
                error=str(e),
            )
            return SimpleFetchResult.failure(
                url,
                f"{type(e).__name__}: {e}" if str(e) else type(e).__name__,
                elapsed_ms=elapsed_ms,
            )

        elapsed_ms = (time.monotonic() - start) * 1000

        if not response.is_success:
            logger.info("Simple fetch HTTP error", url=url, status=response.status_code)
            return SimpleFetchResult.failure(
                url,
                f"HTTP {response.status_code}: {response.reason_phrase}",
                status=response.status_code,
                elapsed_ms=elapsed_ms,
            )

        html = response.text
        logger.debug(
            "Simple fetch success",
            url=url,
            final_url=str(response.url),
            status=response.status_code,
            html_length=len(html),
            elapsed_ms=round(elapsed_ms, 1),
        )
        return SimpleFetchResult.success(str(response.url), html, response.status_code, elapsed_ms)

    async def close(self) -> None:
        """Close HTTP client."""
        if self._client is not None and not self._client.is_closed:
            await self._client.aclose()
        self._client = None
