"""
Batch fetcher for the outbound links of a stored reference.

Links are fetched in fixed-size windows: every URL in a window runs the
full pipeline and is saved concurrently, and the next window starts only
after the previous one has settled. Per-link failures never abort the batch.
The browser engine shutdown is requested once, after the last window.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any, Literal

from mdfetch.crawler.browser_lease import BrowserLeaseManager, get_browser_lease_manager
from mdfetch.crawler.pipeline import FetchPipeline, get_fetch_pipeline
from mdfetch.storage.references import ReferenceStore
from mdfetch.utils.config import get_settings
from mdfetch.utils.logging import LogContext, get_logger

logger = get_logger(__name__)

LinkStatus = Literal["new", "cached", "failed"]


@dataclass
class LinkFetchResult:
    """Outcome for one link."""

    url: str
    status: LinkStatus
    ref_id: str | None = None
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {"url": self.url, "status": self.status}
        if self.ref_id is not None:
            result["ref_id"] = self.ref_id
        if self.error is not None:
            result["error"] = self.error
        return result


@dataclass
class FetchLinksResult:
    """Detailed results plus a new/cached/failed tally."""

    results: list[LinkFetchResult] = field(default_factory=list)

    @property
    def summary(self) -> dict[str, int]:
        summary = {"new": 0, "cached": 0, "failed": 0}
        for result in self.results:
            summary[result.status] += 1
        return summary

    def to_dict(self) -> dict[str, Any]:
        return {
            "results": [r.to_dict() for r in self.results],
            "summary": self.summary,
        }


async def _fetch_one(
    url: str,
    *,
    pipeline: FetchPipeline,
    store: ReferenceStore,
    refetch: bool,
) -> LinkFetchResult:
    with LogContext(link_url=url):
        try:
            outcome = await pipeline.fetch(url)
            if not outcome.success:
                return LinkFetchResult(url=url, status="failed", error=outcome.error)

            saved = store.save(
                outcome.title or url,
                url,
                outcome.markdown or "",
                refetch=refetch,
            )
        except Exception as e:
            logger.warning("Link fetch failed", error_type=type(e).__name__, error=str(e))
            return LinkFetchResult(url=url, status="failed", error=str(e) or type(e).__name__)

        if saved.already_exists:
            return LinkFetchResult(url=url, status="cached", ref_id=saved.ref_id)
        return LinkFetchResult(url=url, status="new", ref_id=saved.ref_id)


async def fetch_links(
    ref_id: str,
    *,
    refetch: bool = False,
    store: ReferenceStore | None = None,
    pipeline: FetchPipeline | None = None,
    lease_manager: BrowserLeaseManager | None = None,
    window_size: int | None = None,
    on_progress: Callable[[LinkFetchResult], None] | None = None,
) -> FetchLinksResult:
    """Fetch and store every outbound http(s) link of a reference.

    Args:
        ref_id: Source reference id.
        refetch: Overwrite references that already exist for a link URL.
        store: Reference store. Defaults to configured paths.
        pipeline: Fetch pipeline. Defaults to the global pipeline.
        lease_manager: Manager whose shutdown is requested at the end.
        window_size: Links fetched concurrently per window (crawler.batch_concurrency).
        on_progress: Called with each result once its window has settled.

    Returns:
        FetchLinksResult. Empty when the reference has no links.

    Raises:
        ReferenceNotFoundError: If ref_id does not exist.
    """
    store = store or ReferenceStore.from_settings()
    links = store.extract_links(ref_id)

    batch = FetchLinksResult()
    if not links:
        logger.info("No links to fetch", ref_id=ref_id)
        return batch

    pipeline = pipeline or get_fetch_pipeline()
    lease_manager = lease_manager or get_browser_lease_manager()
    window_size = window_size or get_settings().crawler.batch_concurrency
    urls = [link.href for link in links]

    logger.info("Fetching links", ref_id=ref_id, count=len(urls), window_size=window_size)

    try:
        for i in range(0, len(urls), window_size):
            window = urls[i : i + window_size]
            window_results = await asyncio.gather(
                *(
                    _fetch_one(url, pipeline=pipeline, store=store, refetch=refetch)
                    for url in window
                )
            )
            batch.results.extend(window_results)

            if on_progress is not None:
                for result in window_results:
                    on_progress(result)

            logger.debug(
                "Link window settled",
                ref_id=ref_id,
                window=i // window_size + 1,
                done=len(batch.results),
                total=len(urls),
            )
    finally:
        await lease_manager.request_shutdown()

    logger.info("Links fetched", ref_id=ref_id, **batch.summary)
    return batch
