"""
mdfetch crawler module.

Provides the quality-gated fetch pipeline, its HTTP and browser fetchers,
the shared browser lease manager, and the batch link fetcher.
"""

from mdfetch.crawler.browser_fetcher import BrowserFetcher, RenderResult
from mdfetch.crawler.browser_lease import (
    BrowserLease,
    BrowserLeaseManager,
    PlaywrightDriver,
    close_browser_lease_manager,
    get_browser_lease_manager,
    reset_browser_lease_manager,
)
from mdfetch.crawler.fetch_links import FetchLinksResult, LinkFetchResult, fetch_links
from mdfetch.crawler.fetch_result import FallbackReason, FetchOutcome
from mdfetch.crawler.http_fetcher import HTTPFetcher, SimpleFetchResult, validate_url
from mdfetch.crawler.pipeline import (
    FetchPipeline,
    InvalidThresholdsError,
    fetch_url,
    get_fetch_pipeline,
)

__all__ = [
    # Pipeline
    "FetchPipeline",
    "InvalidThresholdsError",
    "FetchOutcome",
    "FallbackReason",
    "fetch_url",
    "get_fetch_pipeline",
    # Fetchers
    "HTTPFetcher",
    "SimpleFetchResult",
    "BrowserFetcher",
    "RenderResult",
    "validate_url",
    # Browser leases
    "BrowserLease",
    "BrowserLeaseManager",
    "PlaywrightDriver",
    "get_browser_lease_manager",
    "close_browser_lease_manager",
    "reset_browser_lease_manager",
    # Batch
    "fetch_links",
    "FetchLinksResult",
    "LinkFetchResult",
]
