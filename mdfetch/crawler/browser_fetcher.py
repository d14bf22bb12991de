"""
Fallback renderer for mdfetch.

Renders a page in the shared browser engine through a lease and returns
the rendered HTML. The lease is released on every path.
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Any

from mdfetch.crawler.browser_lease import BrowserLeaseManager, get_browser_lease_manager
from mdfetch.errors import EngineUnavailableError
from mdfetch.utils.config import get_settings
from mdfetch.utils.logging import get_logger

logger = get_logger(__name__)


@dataclass
class RenderResult:
    """Result of a browser render."""

    ok: bool
    url: str
    html: str = ""
    status: int | None = None
    error: str | None = None
    elapsed_ms: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "ok": self.ok,
            "url": self.url,
            "status": self.status,
            "html_length": len(self.html),
            "error": self.error,
            "elapsed_ms": self.elapsed_ms,
        }


class BrowserFetcher:
    """Navigate and read rendered HTML via a BrowserLeaseManager lease.

    Args:
        lease_manager: Lease manager. Defaults to the global manager.
        timeout_ms: Navigation timeout. Defaults to browser.timeout_ms.
        wait_strategy: networkidle, domcontentloaded or load. Defaults to browser.wait_strategy.
    """

    def __init__(
        self,
        lease_manager: BrowserLeaseManager | None = None,
        timeout_ms: int | None = None,
        wait_strategy: str | None = None,
    ) -> None:
        browser_settings = get_settings().browser
        self._lease_manager = lease_manager
        self._timeout_ms = timeout_ms if timeout_ms is not None else browser_settings.timeout_ms
        self._wait_strategy = wait_strategy or browser_settings.wait_strategy

    @property
    def lease_manager(self) -> BrowserLeaseManager:
        if self._lease_manager is None:
            self._lease_manager = get_browser_lease_manager()
        return self._lease_manager

    async def fetch(self, url: str) -> RenderResult:
        """Render a URL.

        Args:
            url: Validated http(s) URL.

        Returns:
            RenderResult. Navigation, timeout and context errors are returned,
            not raised.

        Raises:
            EngineUnavailableError: If the browser engine cannot be started.
        """
        manager = self.lease_manager
        start = time.monotonic()

        try:
            lease = await manager.acquire()
        except EngineUnavailableError:
            raise
        except Exception as e:
            error = str(e).splitlines()[0] if str(e) else type(e).__name__
            logger.warning(
                "Browser lease unavailable",
                url=url,
                error_type=type(e).__name__,
                error=error,
            )
            return RenderResult(
                ok=False,
                url=url,
                error=error,
                elapsed_ms=(time.monotonic() - start) * 1000,
            )

        try:
            page = await lease.new_page()
            response = await page.goto(
                url,
                wait_until=self._wait_strategy,
                timeout=self._timeout_ms,
            )
            html = await page.content()
            elapsed_ms = (time.monotonic() - start) * 1000

            logger.info(
                "Browser render success",
                url=url,
                status=response.status if response else None,
                html_length=len(html),
                elapsed_ms=round(elapsed_ms, 1),
            )
            return RenderResult(
                ok=True,
                url=page.url or url,
                html=html,
                status=response.status if response else None,
                elapsed_ms=elapsed_ms,
            )

        except Exception as e:
            elapsed_ms = (time.monotonic() - start) * 1000
            logger.warning(
                "Browser render failed",
                url=url,
                error_type=type(e).__name__,
                error=str(e).splitlines()[0] if str(e) else "",
            )
            return RenderResult(
                ok=False,
                url=url,
                error=str(e).splitlines()[0] if str(e) else type(e).__name__,
                elapsed_ms=elapsed_ms,
            )

        finally:
            await manager.release(lease)
