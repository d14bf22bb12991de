"""
Browser lease manager for mdfetch.

Owns the single shared browser engine used by the fallback renderer and
hands out isolated browsing contexts (leases) to concurrent callers.

Design:
- The engine is launched lazily on the first acquire()
- Every lease gets its own context (own cookies/storage) on the shared engine
- release() closes only the lease's context and is idempotent
- request_shutdown() is deferred while leases are outstanding, so it is safe
  to call after every top-level operation even with parallel fetches in flight
- After a full shutdown the next acquire() relaunches the engine
- An engine that can no longer open contexts is replaced on the next
  acquire() that finds no other lease outstanding
- Counter and engine handle are only mutated while holding an asyncio.Lock
"""

from __future__ import annotations

import asyncio
import itertools
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Protocol

from mdfetch.errors import EngineUnavailableError
from mdfetch.utils.config import get_settings
from mdfetch.utils.logging import get_logger

if TYPE_CHECKING:
    from playwright.async_api import Browser, BrowserContext, Page, Playwright

logger = get_logger(__name__)


class BrowserEngine(Protocol):
    """A running browser engine process."""

    async def new_context(self, **kwargs: Any) -> Any: ...

    async def close(self) -> None: ...


class BrowserDriver(Protocol):
    """Launches browser engines."""

    async def launch(self) -> BrowserEngine: ...


class PlaywrightEngine:
    """Chromium browser plus the Playwright runtime that owns it."""

    def __init__(self, playwright: Playwright, browser: Browser) -> None:
        self._playwright = playwright
        self._browser = browser

    async def new_context(self, **kwargs: Any) -> BrowserContext:
        return await self._browser.new_context(**kwargs)

    async def close(self) -> None:
        try:
            await self._browser.close()
        finally:
            await self._playwright.stop()


class PlaywrightDriver:
    """Default driver: headless Chromium via playwright.async_api."""

    def __init__(self, headless: bool = True) -> None:
        self._headless = headless

    async def launch(self) -> PlaywrightEngine:
        """Start Playwright and launch Chromium.

        Raises:
            EngineUnavailableError: If Playwright or its Chromium build is missing.
        """
        try:
            from playwright.async_api import async_playwright
        except ImportError as e:
            raise EngineUnavailableError("playwright package not installed") from e

        playwright = await async_playwright().start()
        try:
            browser = await playwright.chromium.launch(headless=self._headless)
        except Exception as e:
            await playwright.stop()
            raise EngineUnavailableError(str(e).splitlines()[0] if str(e) else repr(e)) from e

        logger.info("Browser engine launched", headless=self._headless)
        return PlaywrightEngine(playwright, browser)


@dataclass
class BrowserLease:
    """A caller's isolated context on the shared engine."""

    lease_id: int
    context: Any
    released: bool = field(default=False)

    async def new_page(self) -> Page:
        """Open a page in this lease's context."""
        return await self.context.new_page()


class BrowserLeaseManager:
    """Lease-counted owner of the shared browser engine.

    Example:
        manager = BrowserLeaseManager()
        async with manager.lease() as lease:
            page = await lease.new_page()
            await page.goto(url)
        await manager.request_shutdown()

    Args:
        driver: Engine launcher. Defaults to PlaywrightDriver from settings.
        context_options: Keyword arguments for every new context.
    """

    def __init__(
        self,
        driver: BrowserDriver | None = None,
        context_options: dict[str, Any] | None = None,
    ) -> None:
        if driver is None or context_options is None:
            browser_settings = get_settings().browser
            if driver is None:
                driver = PlaywrightDriver(headless=browser_settings.headless)
            if context_options is None:
                context_options = {
                    "user_agent": browser_settings.user_agent,
                    "viewport": {
                        "width": browser_settings.viewport_width,
                        "height": browser_settings.viewport_height,
                    },
                }

        self._driver = driver
        self._context_options = context_options
        self._engine: BrowserEngine | None = None
        self._leases: dict[int, BrowserLease] = {}
        self._lease_ids = itertools.count(1)
        self._shutdown_pending = False
        self._launch_count = 0
        self._lock = asyncio.Lock()

    @property
    def active_leases(self) -> int:
        return len(self._leases)

    @property
    def is_running(self) -> bool:
        return self._engine is not None

    @property
    def shutdown_pending(self) -> bool:
        return self._shutdown_pending

    @property
    def launch_count(self) -> int:
        """Number of times the engine has been launched."""
        return self._launch_count

    async def acquire(self) -> BrowserLease:
        """Acquire a lease, launching the engine if needed.

        If the running engine cannot open a context and no other lease is
        outstanding, the engine is discarded and relaunched once.

        Returns:
            BrowserLease with a fresh context.

        Raises:
            EngineUnavailableError: If the engine cannot be launched, or a
                relaunched engine still cannot open a context.
            Exception: The context error itself, when other leases keep the
                engine in use.
        """
        async with self._lock:
            if self._engine is None:
                await self._launch_locked()

            try:
                context = await self._engine.new_context(**self._context_options)
            except Exception as e:
                logger.warning(
                    "Browser context creation failed",
                    error=str(e),
                    active_leases=len(self._leases),
                )
                if self._leases:
                    raise
                await self._close_engine_locked()
                await self._launch_locked()
                try:
                    context = await self._engine.new_context(**self._context_options)
                except Exception as retry_error:
                    await self._close_engine_locked()
                    raise EngineUnavailableError(str(retry_error)) from retry_error

            lease = BrowserLease(lease_id=next(self._lease_ids), context=context)
            self._leases[lease.lease_id] = lease

            logger.debug(
                "Browser lease acquired",
                lease_id=lease.lease_id,
                active_leases=len(self._leases),
            )
            return lease

    async def release(self, lease: BrowserLease) -> None:
        """Release a lease. Releasing twice is a no-op.

        Closes the lease's context, never the shared engine, unless a
        deferred shutdown is pending and this was the last lease.
        """
        async with self._lock:
            if lease.released or lease.lease_id not in self._leases:
                return

            lease.released = True
            del self._leases[lease.lease_id]

            try:
                await lease.context.close()
            except Exception as e:
                logger.debug("Browser context close error", lease_id=lease.lease_id, error=str(e))

            logger.debug(
                "Browser lease released",
                lease_id=lease.lease_id,
                active_leases=len(self._leases),
            )

            if self._shutdown_pending and not self._leases:
                await self._close_engine_locked()

    async def request_shutdown(self) -> None:
        """Close the engine now, or once the last outstanding lease is released."""
        async with self._lock:
            if self._engine is None:
                self._shutdown_pending = False
                return

            if self._leases:
                self._shutdown_pending = True
                logger.debug(
                    "Browser shutdown deferred",
                    active_leases=len(self._leases),
                )
                return

            await self._close_engine_locked()

    async def close(self) -> None:
        """Close all contexts and the engine immediately."""
        async with self._lock:
            for lease in list(self._leases.values()):
                lease.released = True
                try:
                    await lease.context.close()
                except Exception as e:
                    logger.debug("Browser context close error", lease_id=lease.lease_id, error=str(e))
            self._leases.clear()

            if self._engine is not None:
                await self._close_engine_locked()
            self._shutdown_pending = False

    @asynccontextmanager
    async def lease(self) -> AsyncIterator[BrowserLease]:
        """Acquire a lease for the duration of a block."""
        lease = await self.acquire()
        try:
            yield lease
        finally:
            await self.release(lease)

    def get_stats(self) -> dict[str, Any]:
        """Get lease manager statistics."""
        return {
            "running": self.is_running,
            "active_leases": self.active_leases,
            "shutdown_pending": self._shutdown_pending,
            "launch_count": self._launch_count,
        }

    async def _launch_locked(self) -> None:
        try:
            self._engine = await self._driver.launch()
        except EngineUnavailableError:
            logger.error("Browser engine unavailable")
            raise
        except Exception as e:
            logger.error("Browser engine launch failed", error=str(e))
            raise EngineUnavailableError(str(e)) from e
        self._launch_count += 1

    async def _close_engine_locked(self) -> None:
        engine = self._engine
        self._engine = None
        self._shutdown_pending = False
        if engine is None:
            return
        try:
            await engine.close()
        except Exception as e:
            logger.warning("Browser engine close error", error=str(e))
        logger.info("Browser engine closed")


# Global manager instance
_lease_manager: BrowserLeaseManager | None = None


def get_browser_lease_manager() -> BrowserLeaseManager:
    """
    Get or create the global BrowserLeaseManager instance.

    Returns:
        BrowserLeaseManager instance.
    """
    global _lease_manager

    if _lease_manager is None:
        _lease_manager = BrowserLeaseManager()

    return _lease_manager


async def close_browser_lease_manager() -> None:
    """Close the global BrowserLeaseManager instance."""
    global _lease_manager

    if _lease_manager is not None:
        await _lease_manager.close()
        _lease_manager = None


def reset_browser_lease_manager() -> None:
    """Reset the global manager without closing. For testing only."""
    global _lease_manager
    _lease_manager = None
