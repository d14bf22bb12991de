"""
Pytest fixtures and configuration for mdfetch tests.

Markers:
- @pytest.mark.unit: Single class/function, no external dependencies.
  DEFAULT: Tests without marker are auto-classified as unit.
- @pytest.mark.integration: Multiple components wired together, network and
  browser engine replaced by fakes.
- @pytest.mark.e2e: Real network and a real Chromium build.
  Run with: pytest -m e2e

No test in the default run touches the network or launches a browser.
"""

import os
from pathlib import Path
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import pytest

# Set test environment before importing anything else
os.environ["MDFETCH_CONFIG_DIR"] = str(Path(__file__).parent.parent / "config")
os.environ["MDFETCH_GENERAL__LOG_LEVEL"] = "DEBUG"


# =============================================================================
# Pytest Hooks for Test Classification
# =============================================================================


def pytest_configure(config):
    """Register custom markers for test classification."""
    config.addinivalue_line("markers", "unit: Unit tests with no external dependencies")
    config.addinivalue_line(
        "markers", "integration: Integration tests with faked network and browser"
    )
    config.addinivalue_line(
        "markers", "e2e: End-to-end tests requiring network and Chromium (excluded by default)"
    )


def pytest_collection_modifyitems(config, items):
    """Auto-apply the unit marker to unclassified tests and skip e2e unless selected."""
    markexpr = config.getoption("-m", default="") or ""
    skip_e2e = pytest.mark.skip(reason="E2E tests run only with: pytest -m e2e")

    for item in items:
        has_classification = any(
            marker.name in ("unit", "integration", "e2e") for marker in item.iter_markers()
        )
        if not has_classification:
            item.add_marker(pytest.mark.unit)

        if "e2e" not in markexpr and any(m.name == "e2e" for m in item.iter_markers()):
            item.add_marker(skip_e2e)


# =============================================================================
# Singleton Reset Fixtures
# =============================================================================


@pytest.fixture(autouse=True)
def reset_globals():
    """Reset module-level singletons between tests.

    Prevents asyncio.Lock() in the lease manager from being bound to a
    stale event loop, and settings cached with another test's env.
    """
    from mdfetch.crawler.browser_lease import reset_browser_lease_manager
    from mdfetch.crawler.pipeline import reset_fetch_pipeline
    from mdfetch.utils.config import get_settings

    get_settings.cache_clear()
    yield
    reset_browser_lease_manager()
    reset_fetch_pipeline()
    get_settings.cache_clear()


# =============================================================================
# Store Fixtures
# =============================================================================


@pytest.fixture
def temp_dir(tmp_path: Path) -> Path:
    """Temporary reference directory."""
    return tmp_path / "tmp-refs"


@pytest.fixture
def docs_dir(tmp_path: Path) -> Path:
    """Permanent reference directory."""
    return tmp_path / "docs-refs"


@pytest.fixture
def store(temp_dir: Path, docs_dir: Path):
    """ReferenceStore over temporary directories."""
    from mdfetch.storage.references import ReferenceStore

    return ReferenceStore(temp_dir, docs_dir)


# =============================================================================
# Browser Fakes
# =============================================================================


class FakeEngine:
    """Browser engine double that hands out mock contexts."""

    def __init__(self, page_factory=None) -> None:
        self.contexts: list[MagicMock] = []
        self.closed = False
        self.context_error: Exception | None = None
        self._page_factory = page_factory

    async def new_context(self, **kwargs: Any) -> MagicMock:
        if self.context_error is not None:
            raise self.context_error
        context = MagicMock()
        context.options = kwargs
        context.close = AsyncMock()
        page = self._page_factory() if self._page_factory else MagicMock()
        context.new_page = AsyncMock(return_value=page)
        self.contexts.append(context)
        return context

    async def close(self) -> None:
        self.closed = True


class FakeDriver:
    """Browser driver double counting launches.

    The first dead_launches engines fail every new_context() call, like a
    browser process that crashed after start-up.
    """

    def __init__(
        self,
        page_factory=None,
        error: Exception | None = None,
        dead_launches: int = 0,
    ) -> None:
        self.engines: list[FakeEngine] = []
        self._page_factory = page_factory
        self._error = error
        self._dead_launches = dead_launches

    async def launch(self) -> FakeEngine:
        if self._error is not None:
            raise self._error
        engine = FakeEngine(self._page_factory)
        if len(self.engines) < self._dead_launches:
            engine.context_error = RuntimeError("Target page, context or browser has been closed")
        self.engines.append(engine)
        return engine


@pytest.fixture
def make_driver():
    """Factory for FakeDriver instances."""
    return FakeDriver


@pytest.fixture
def fake_driver() -> FakeDriver:
    """Driver whose engines produce plain mock pages."""
    return FakeDriver()


@pytest.fixture
def lease_manager(fake_driver: FakeDriver):
    """BrowserLeaseManager backed by the fake driver."""
    from mdfetch.crawler.browser_lease import BrowserLeaseManager

    return BrowserLeaseManager(driver=fake_driver, context_options={})


# =============================================================================
# Sample Content
# =============================================================================


ARTICLE_PARAGRAPHS = [
    "Structured concurrency keeps every task inside a scope that outlives it, "
    "so no background work escapes the block that started it.",
    "In asyncio the TaskGroup class provides this guarantee: when one child fails, "
    "its siblings are cancelled and the error is reported once the group exits.",
    "Before TaskGroup existed, gather was the usual tool. It collects results in order "
    "but leaves the remaining awaitables running when one of them raises.",
    "Cancellation is cooperative. A task only notices it has been cancelled at the next "
    "await, which is why long CPU-bound loops should yield control from time to time.",
    "Timeouts compose with scopes as well. The timeout context manager cancels the "
    "enclosed work and converts the cancellation into a TimeoutError for the caller.",
    "Taken together these tools make concurrent code easier to reason about, because "
    "the lifetime of each task is visible in the structure of the program itself.",
]


@pytest.fixture
def article_paragraphs() -> list[str]:
    """Paragraphs of the sample article."""
    return list(ARTICLE_PARAGRAPHS)


@pytest.fixture
def article_html() -> str:
    """A realistic article page."""
    body = "\n".join(f"<p>{p}</p>" for p in ARTICLE_PARAGRAPHS)
    return f"""<!DOCTYPE html>
<html lang="en">
<head>
  <title>Structured Concurrency in Python</title>
  <meta name="author" content="Ada Example">
  <meta name="description" content="How TaskGroup scopes asyncio work.">
  <meta property="og:site_name" content="Example Engineering Blog">
</head>
<body>
  <nav><a href="/">Home</a> <a href="/about">About</a></nav>
  <article>
    <h1>Structured Concurrency in Python</h1>
    {body}
    <p>See the <a href="https://docs.python.org/3/library/asyncio-task.html">asyncio docs</a>.</p>
  </article>
  <footer>Copyright Example</footer>
</body>
</html>"""


@pytest.fixture
def article_markdown() -> str:
    """Clean article markdown that scores 100."""
    return "# Structured Concurrency in Python\n\n" + "\n\n".join(ARTICLE_PARAGRAPHS)
