"""
Quality-gated fetch pipeline for mdfetch.

Flow:
    validate URL
      -> (force_fallback) ----------------------------> FallbackFetch[forced]
      -> SimpleFetch --transport/HTTP error-----------> FallbackFetch[network_error]
      -> Extract ------no article---------------------> FallbackFetch[extraction_failed]
      -> Score
           score >= fallback_threshold  -> Accept simple
           min_score <= score < threshold -> FallbackFetch[quality_marginal], simple kept
           score < min_score            -> FallbackFetch[quality_too_low]

    FallbackFetch: lease a browser context, render, release, extract, score.
    Reconcile:
      quality_marginal: browser result wins only with a strictly higher score,
                        any browser-side failure returns the kept simple result
      other reasons:    accept if score >= min_score, else quality_rejected

The pipeline never raises for fetch failures; it returns a failed FetchOutcome.
"""

from __future__ import annotations

import dataclasses
import time

from mdfetch.crawler.browser_fetcher import BrowserFetcher
from mdfetch.crawler.fetch_result import FallbackReason, FetchOutcome
from mdfetch.crawler.http_fetcher import HTTPFetcher, validate_url
from mdfetch.errors import EngineUnavailableError, ErrorCode, InvalidURLError
from mdfetch.extractor.content import ContentExtractor, ExtractionResult, get_content_extractor
from mdfetch.extractor.quality import QualityScorer, QualityVerdict, get_quality_scorer
from mdfetch.utils.config import get_settings
from mdfetch.utils.logging import LogContext, get_logger

logger = get_logger(__name__)

QUALITY_REJECTED_SUGGESTION = (
    "This page may be a login wall, forum, or complex web app "
    "not suited to article extraction"
)
ENGINE_UNAVAILABLE_SUGGESTION = "Install the browser engine with `playwright install chromium`"


class FetchPipeline:
    """Fetch a URL as markdown, escalating to the browser when quality demands it.

    Example:
        pipeline = FetchPipeline()
        outcome = await pipeline.fetch("https://example.com/article")
        if outcome.success:
            print(outcome.markdown)

    Args:
        http_fetcher: Simple path fetcher.
        browser_fetcher: Fallback renderer.
        extractor: HTML to markdown extractor.
        scorer: Markdown quality scorer.
        min_score: Default minimum accepted score (quality.min_score).
        fallback_threshold: Default score that skips the browser (quality.fallback_threshold).
    """

    def __init__(
        self,
        http_fetcher: HTTPFetcher | None = None,
        browser_fetcher: BrowserFetcher | None = None,
        extractor: ContentExtractor | None = None,
        scorer: QualityScorer | None = None,
        min_score: int | None = None,
        fallback_threshold: int | None = None,
    ) -> None:
        quality = get_settings().quality
        self._http = http_fetcher or HTTPFetcher()
        self._browser = browser_fetcher or BrowserFetcher()
        self._extractor = extractor or get_content_extractor()
        self._scorer = scorer or get_quality_scorer()
        self._min_score = min_score if min_score is not None else quality.min_score
        self._fallback_threshold = (
            fallback_threshold if fallback_threshold is not None else quality.fallback_threshold
        )
        _check_thresholds(self._min_score, self._fallback_threshold)

    async def fetch(
        self,
        url: str,
        *,
        force_fallback: bool = False,
        min_score: int | None = None,
        fallback_threshold: int | None = None,
    ) -> FetchOutcome:
        """Run the pipeline for one URL.

        Args:
            url: Target URL.
            force_fallback: Skip the simple path and render in the browser.
            min_score: Override the minimum accepted score.
            fallback_threshold: Override the score that skips the browser.

        Returns:
            FetchOutcome (never raises for fetch failures).

        Raises:
            InvalidThresholdsError: If min_score is not lower than fallback_threshold.
        """
        min_score = self._min_score if min_score is None else min_score
        fallback_threshold = (
            self._fallback_threshold if fallback_threshold is None else fallback_threshold
        )
        _check_thresholds(min_score, fallback_threshold)

        start = time.monotonic()
        with LogContext(url=url):
            try:
                validate_url(url)
            except InvalidURLError as e:
                logger.info("URL rejected", error=e.message)
                outcome = FetchOutcome.failure(url, e.code, e.message)
            else:
                if force_fallback:
                    outcome = await self._fallback(url, FallbackReason.FORCED, min_score)
                else:
                    outcome = await self._simple(url, min_score, fallback_threshold)

            outcome.elapsed_ms = (time.monotonic() - start) * 1000
            logger.info(
                "Fetch finished",
                success=outcome.success,
                score=outcome.score,
                used_fallback_renderer=outcome.used_fallback_renderer,
                fallback_reason=outcome.fallback_reason.value if outcome.fallback_reason else None,
                error_code=outcome.error_code.value if outcome.error_code else None,
                elapsed_ms=round(outcome.elapsed_ms, 1),
            )
        return outcome

    async def _simple(self, url: str, min_score: int, fallback_threshold: int) -> FetchOutcome:
        fetched = await self._http.fetch(url)
        if not fetched.ok:
            logger.debug("Simple fetch unusable", error=fetched.error)
            return await self._fallback(url, FallbackReason.NETWORK_ERROR, min_score)

        extracted = self._extractor.extract(fetched.html, url)
        if not extracted.ok:
            logger.debug("Simple extraction failed", error=extracted.message)
            return await self._fallback(url, FallbackReason.EXTRACTION_FAILED, min_score)

        verdict = self._scorer.score(extracted.markdown or "", source_html_length=len(fetched.html))
        logger.debug("Simple fetch scored", score=verdict.score)

        if verdict.score >= fallback_threshold:
            return _accept(url, extracted, verdict)

        if verdict.score >= min_score:
            kept = _accept(url, extracted, verdict)
            return await self._fallback(url, FallbackReason.QUALITY_MARGINAL, min_score, kept=kept)

        return await self._fallback(url, FallbackReason.QUALITY_TOO_LOW, min_score)

    async def _fallback(
        self,
        url: str,
        reason: FallbackReason,
        min_score: int,
        kept: FetchOutcome | None = None,
    ) -> FetchOutcome:
        """Render in the browser and reconcile with the kept simple result, if any."""
        logger.info("Falling back to browser renderer", reason=reason.value)

        try:
            rendered = await self._browser.fetch(url)
        except EngineUnavailableError as e:
            if kept is not None:
                logger.warning("Browser unavailable, keeping simple result", error=e.message)
                return _keep(kept, reason)
            return FetchOutcome.failure(
                url,
                ErrorCode.ENGINE_UNAVAILABLE,
                e.message,
                suggestion=ENGINE_UNAVAILABLE_SUGGESTION,
                fallback_reason=reason,
            )

        if not rendered.ok:
            if kept is not None:
                return _keep(kept, reason)
            return FetchOutcome.failure(
                url,
                ErrorCode.FALLBACK_FETCH_FAILED,
                f"Browser fetch failed: {rendered.error}",
                fallback_reason=reason,
            )

        extracted = self._extractor.extract(rendered.html, url)
        if not extracted.ok:
            if kept is not None:
                return _keep(kept, reason)
            return FetchOutcome.failure(
                url,
                ErrorCode.EXTRACTION_FAILED,
                extracted.message or "Could not extract article content",
                used_fallback_renderer=True,
                fallback_reason=reason,
            )

        verdict = self._scorer.score(
            extracted.markdown or "", source_html_length=len(rendered.html)
        )
        logger.debug("Browser render scored", score=verdict.score, reason=reason.value)

        if kept is not None:
            if kept.verdict is None or verdict.score > kept.verdict.score:
                return _accept(url, extracted, verdict, reason=reason)
            return _keep(kept, reason)

        if verdict.score < min_score:
            return FetchOutcome.failure(
                url,
                ErrorCode.QUALITY_REJECTED,
                f"Content quality too low ({verdict.score}/100) even with browser rendering",
                verdict=verdict,
                suggestion=QUALITY_REJECTED_SUGGESTION,
                used_fallback_renderer=True,
                fallback_reason=reason,
            )

        return _accept(url, extracted, verdict, reason=reason)

    async def close(self) -> None:
        """Close the HTTP client. The browser engine is owned by the lease manager."""
        await self._http.close()


class InvalidThresholdsError(ValueError):
    """Raised when min_score and fallback_threshold are out of order or range."""


def _check_thresholds(min_score: int, fallback_threshold: int) -> None:
    if not 0 <= min_score < fallback_threshold <= 100:
        raise InvalidThresholdsError(
            f"Expected 0 <= min_score < fallback_threshold <= 100, "
            f"got min_score={min_score}, fallback_threshold={fallback_threshold}"
        )


def _accept(
    url: str,
    extracted: ExtractionResult,
    verdict: QualityVerdict,
    reason: FallbackReason | None = None,
) -> FetchOutcome:
    return FetchOutcome(
        success=True,
        url=url,
        markdown=extracted.markdown,
        title=extracted.title,
        byline=extracted.byline,
        excerpt=extracted.excerpt,
        site_name=extracted.site_name,
        verdict=verdict,
        used_fallback_renderer=reason is not None,
        fallback_reason=reason,
    )


def _keep(kept: FetchOutcome, reason: FallbackReason) -> FetchOutcome:
    """Return the kept simple result, recording that a fallback was attempted."""
    return dataclasses.replace(kept, used_fallback_renderer=False, fallback_reason=reason)


# Global pipeline instance
_pipeline: FetchPipeline | None = None


def get_fetch_pipeline() -> FetchPipeline:
    """Get or create the global FetchPipeline instance."""
    global _pipeline
    if _pipeline is None:
        _pipeline = FetchPipeline()
    return _pipeline


def reset_fetch_pipeline() -> None:
    """Reset the global pipeline. For testing only."""
    global _pipeline
    _pipeline = None


async def fetch_url(
    url: str,
    *,
    force_fallback: bool = False,
    min_score: int | None = None,
    fallback_threshold: int | None = None,
) -> FetchOutcome:
    """Fetch a URL with the global pipeline.

    The caller is responsible for BrowserLeaseManager.request_shutdown().
    """
    return await get_fetch_pipeline().fetch(
        url,
        force_fallback=force_fallback,
        min_score=min_score,
        fallback_threshold=fallback_threshold,
    )
