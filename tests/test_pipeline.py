"""
Tests for the quality-gated fetch pipeline.

Fetchers, extractor and scorer are fakes so each state transition can be
driven by a chosen score.

## Test Perspectives Table
| Case ID | Input / Precondition | Perspective (Equivalence / Boundary) | Expected Result | Notes |
|---------|----------------------|---------------------------------------|-----------------|-------|
| TC-PL-01 | simple score >= threshold | Equivalence – accept | simple result, no browser | - |
| TC-PL-02 | marginal, browser better | Equivalence – reconcile | browser result | - |
| TC-PL-03 | marginal, browser equal/worse | Boundary – strictly greater | simple kept | - |
| TC-PL-04 | marginal, browser fails | Abnormal – fallback error | simple kept | - |
| TC-PL-05 | too low, browser acceptable | Equivalence – recover | browser result | - |
| TC-PL-06 | too low, browser too low | Abnormal – reject | quality_rejected | - |
| TC-PL-07 | network error | Equivalence – recover | browser result | - |
| TC-PL-08 | no engine, nothing kept | Abnormal – engine | engine_unavailable | - |
| TC-PL-09 | force_fallback | Equivalence – skip simple | browser only | - |
| TC-PL-10 | invalid URL | Abnormal – validation | invalid_url, no I/O | - |
| TC-PL-11 | score == 85 / 60 / 59 | Boundary – thresholds | accept / marginal / too low | - |
| TC-PL-12 | min >= threshold | Abnormal – config | InvalidThresholdsError | - |
"""

from unittest.mock import AsyncMock, MagicMock

import pytest

pytestmark = pytest.mark.unit

from mdfetch.crawler.browser_fetcher import RenderResult
from mdfetch.crawler.fetch_result import FallbackReason
from mdfetch.crawler.http_fetcher import SimpleFetchResult
from mdfetch.crawler.pipeline import (
    QUALITY_REJECTED_SUGGESTION,
    FetchPipeline,
    InvalidThresholdsError,
)
from mdfetch.errors import EngineUnavailableError, ErrorCode
from mdfetch.extractor.content import ExtractionResult
from mdfetch.extractor.quality import QualityVerdict

URL = "https://example.com/article"
SIMPLE_HTML = "<html>simple</html>"
RENDERED_HTML = "<html>rendered page</html>"


class FakeScenario:
    """Wires fake fetchers, extractor and scorer into a FetchPipeline."""

    def __init__(self) -> None:
        self.http = MagicMock()
        self.http.fetch = AsyncMock(
            return_value=SimpleFetchResult.success(URL, SIMPLE_HTML, 200, 1.0)
        )
        self.http.close = AsyncMock()

        self.browser = MagicMock()
        self.browser.fetch = AsyncMock(
            return_value=RenderResult(ok=True, url=URL, html=RENDERED_HTML, status=200)
        )

        # html -> ExtractionResult, markdown -> score
        self.extractions = {
            SIMPLE_HTML: ExtractionResult.success(
                "# Simple\n\nsimple body", "simple body", "Simple", byline="Ada"
            ),
            RENDERED_HTML: ExtractionResult.success(
                "# Rendered\n\nrendered body", "rendered body", "Rendered"
            ),
        }
        self.scores = {"# Simple\n\nsimple body": 90, "# Rendered\n\nrendered body": 90}

        self.extractor = MagicMock()
        self.extractor.extract = MagicMock(side_effect=lambda html, url: self.extractions[html])

        self.scorer = MagicMock()
        self.scorer.score = MagicMock(
            side_effect=lambda markdown, source_html_length=None: QualityVerdict(
                score=self.scores[markdown]
            )
        )

    def set_scores(self, simple: int | None = None, rendered: int | None = None) -> None:
        if simple is not None:
            self.scores["# Simple\n\nsimple body"] = simple
        if rendered is not None:
            self.scores["# Rendered\n\nrendered body"] = rendered

    def pipeline(self, **kwargs) -> FetchPipeline:
        return FetchPipeline(
            http_fetcher=self.http,
            browser_fetcher=self.browser,
            extractor=self.extractor,
            scorer=self.scorer,
            **kwargs,
        )


@pytest.fixture
def scenario() -> FakeScenario:
    return FakeScenario()


class TestSimplePath:
    """Tests for outcomes decided on the simple path."""

    async def test_high_score_accepted_without_browser(self, scenario: FakeScenario):
        """TC-PL-01: A score at or above the threshold is accepted directly."""
        # Given
        scenario.set_scores(simple=90)

        # When
        outcome = await scenario.pipeline().fetch(URL)

        # Then
        assert outcome.success is True
        assert outcome.markdown == "# Simple\n\nsimple body"
        assert outcome.title == "Simple"
        assert outcome.byline == "Ada"
        assert outcome.score == 90
        assert outcome.used_fallback_renderer is False
        assert outcome.fallback_reason is None
        scenario.browser.fetch.assert_not_awaited()

    async def test_scorer_gets_source_length(self, scenario: FakeScenario):
        """The simple HTML size is passed to the scorer for the ratio check."""
        # When
        await scenario.pipeline().fetch(URL)

        # Then
        scenario.scorer.score.assert_called_once_with(
            "# Simple\n\nsimple body", source_html_length=len(SIMPLE_HTML)
        )


class TestMarginalQuality:
    """Tests for min_score <= score < fallback_threshold."""

    async def test_browser_wins_when_strictly_better(self, scenario: FakeScenario):
        """TC-PL-02: The browser result replaces a marginal simple result when it scores higher."""
        # Given
        scenario.set_scores(simple=70, rendered=80)

        # When
        outcome = await scenario.pipeline().fetch(URL)

        # Then
        assert outcome.success is True
        assert outcome.markdown == "# Rendered\n\nrendered body"
        assert outcome.score == 80
        assert outcome.used_fallback_renderer is True
        assert outcome.fallback_reason == FallbackReason.QUALITY_MARGINAL

    @pytest.mark.parametrize("rendered", [70, 65, 10])
    async def test_simple_kept_when_not_better(self, scenario: FakeScenario, rendered: int):
        """TC-PL-03: Equal or lower browser scores keep the simple result."""
        # Given
        scenario.set_scores(simple=70, rendered=rendered)

        # When
        outcome = await scenario.pipeline().fetch(URL)

        # Then
        assert outcome.success is True
        assert outcome.markdown == "# Simple\n\nsimple body"
        assert outcome.score == 70
        assert outcome.used_fallback_renderer is False
        assert outcome.fallback_reason == FallbackReason.QUALITY_MARGINAL
        scenario.browser.fetch.assert_awaited_once_with(URL)

    async def test_simple_kept_when_engine_unavailable(self, scenario: FakeScenario):
        """TC-PL-04: A missing engine does not lose an acceptable simple result."""
        # Given
        scenario.set_scores(simple=70)
        scenario.browser.fetch.side_effect = EngineUnavailableError("no chromium")

        # When
        outcome = await scenario.pipeline().fetch(URL)

        # Then
        assert outcome.success is True
        assert outcome.score == 70
        assert outcome.used_fallback_renderer is False

    async def test_simple_kept_when_render_fails(self, scenario: FakeScenario):
        """TC-PL-04: A failed navigation keeps the simple result."""
        # Given
        scenario.set_scores(simple=70)
        scenario.browser.fetch.return_value = RenderResult(ok=False, url=URL, error="Timeout")

        # When
        outcome = await scenario.pipeline().fetch(URL)

        # Then
        assert outcome.success is True
        assert outcome.markdown == "# Simple\n\nsimple body"

    async def test_simple_kept_when_render_has_no_article(self, scenario: FakeScenario):
        """TC-PL-04: A rendered page with no article keeps the simple result."""
        # Given
        scenario.set_scores(simple=70)
        scenario.extractions[RENDERED_HTML] = ExtractionResult.failure()

        # When
        outcome = await scenario.pipeline().fetch(URL)

        # Then
        assert outcome.success is True
        assert outcome.score == 70


class TestLowQuality:
    """Tests for score < min_score."""

    async def test_browser_recovers(self, scenario: FakeScenario):
        """TC-PL-05: An acceptable browser result is returned."""
        # Given
        scenario.set_scores(simple=40, rendered=65)

        # When
        outcome = await scenario.pipeline().fetch(URL)

        # Then
        assert outcome.success is True
        assert outcome.markdown == "# Rendered\n\nrendered body"
        assert outcome.used_fallback_renderer is True
        assert outcome.fallback_reason == FallbackReason.QUALITY_TOO_LOW

    async def test_rejected_when_browser_also_low(self, scenario: FakeScenario):
        """TC-PL-06: Both paths below min_score is quality_rejected with a suggestion."""
        # Given
        scenario.set_scores(simple=40, rendered=30)

        # When
        outcome = await scenario.pipeline().fetch(URL)

        # Then
        assert outcome.success is False
        assert outcome.error_code == ErrorCode.QUALITY_REJECTED
        assert outcome.error == "Content quality too low (30/100) even with browser rendering"
        assert outcome.suggestion == QUALITY_REJECTED_SUGGESTION
        assert outcome.score == 30
        assert outcome.markdown is None

    async def test_rejected_low_result_is_not_kept(self, scenario: FakeScenario):
        """A too-low simple result is never returned when the browser fails."""
        # Given
        scenario.set_scores(simple=40)
        scenario.browser.fetch.return_value = RenderResult(ok=False, url=URL, error="crash")

        # When
        outcome = await scenario.pipeline().fetch(URL)

        # Then
        assert outcome.success is False
        assert outcome.error_code == ErrorCode.FALLBACK_FETCH_FAILED


class TestSimpleFailures:
    """Tests for failures before scoring."""

    async def test_network_error_recovered_by_browser(self, scenario: FakeScenario):
        """TC-PL-07: HTTP failures fall back to the browser."""
        # Given
        scenario.http.fetch.return_value = SimpleFetchResult.failure(URL, "HTTP 403: Forbidden")

        # When
        outcome = await scenario.pipeline().fetch(URL)

        # Then
        assert outcome.success is True
        assert outcome.fallback_reason == FallbackReason.NETWORK_ERROR
        assert outcome.used_fallback_renderer is True
        scenario.scorer.score.assert_called_once_with(
            "# Rendered\n\nrendered body", source_html_length=len(RENDERED_HTML)
        )

    async def test_extraction_failure_falls_back(self, scenario: FakeScenario):
        """No article in the simple HTML falls back with extraction_failed."""
        # Given
        scenario.extractions[SIMPLE_HTML] = ExtractionResult.failure()

        # When
        outcome = await scenario.pipeline().fetch(URL)

        # Then
        assert outcome.success is True
        assert outcome.fallback_reason == FallbackReason.EXTRACTION_FAILED

    async def test_engine_unavailable_without_kept_result(self, scenario: FakeScenario):
        """TC-PL-08: No simple result and no engine is engine_unavailable."""
        # Given
        scenario.http.fetch.return_value = SimpleFetchResult.failure(URL, "ConnectError")
        scenario.browser.fetch.side_effect = EngineUnavailableError("no chromium")

        # When
        outcome = await scenario.pipeline().fetch(URL)

        # Then
        assert outcome.success is False
        assert outcome.error_code == ErrorCode.ENGINE_UNAVAILABLE
        assert "playwright install chromium" in outcome.suggestion
        assert outcome.fallback_reason == FallbackReason.NETWORK_ERROR

    async def test_render_failure_without_kept_result(self, scenario: FakeScenario):
        """A failed render after a network error is fallback_fetch_failed."""
        # Given
        scenario.http.fetch.return_value = SimpleFetchResult.failure(URL, "ConnectError")
        scenario.browser.fetch.return_value = RenderResult(ok=False, url=URL, error="Timeout")

        # When
        outcome = await scenario.pipeline().fetch(URL)

        # Then
        assert outcome.error_code == ErrorCode.FALLBACK_FETCH_FAILED
        assert outcome.error == "Browser fetch failed: Timeout"

    async def test_no_article_anywhere(self, scenario: FakeScenario):
        """Extraction failing on both paths is extraction_failed."""
        # Given
        scenario.extractions[SIMPLE_HTML] = ExtractionResult.failure()
        scenario.extractions[RENDERED_HTML] = ExtractionResult.failure()

        # When
        outcome = await scenario.pipeline().fetch(URL)

        # Then
        assert outcome.success is False
        assert outcome.error_code == ErrorCode.EXTRACTION_FAILED
        assert outcome.used_fallback_renderer is True


class TestEntryConditions:
    """Tests for force_fallback, validation and thresholds."""

    async def test_force_fallback_skips_simple(self, scenario: FakeScenario):
        """TC-PL-09: force_fallback goes straight to the browser."""
        # When
        outcome = await scenario.pipeline().fetch(URL, force_fallback=True)

        # Then
        assert outcome.success is True
        assert outcome.fallback_reason == FallbackReason.FORCED
        assert outcome.used_fallback_renderer is True
        scenario.http.fetch.assert_not_awaited()

    @pytest.mark.parametrize("url", ["ftp://example.com/x", "not a url", ""])
    async def test_invalid_url(self, scenario: FakeScenario, url: str):
        """TC-PL-10: Invalid URLs fail before any I/O."""
        # When
        outcome = await scenario.pipeline().fetch(url)

        # Then
        assert outcome.success is False
        assert outcome.error_code == ErrorCode.INVALID_URL
        scenario.http.fetch.assert_not_awaited()
        scenario.browser.fetch.assert_not_awaited()

    @pytest.mark.parametrize(
        ("simple", "expected_reason", "browser_called"),
        [
            (85, None, False),
            (84, FallbackReason.QUALITY_MARGINAL, True),
            (60, FallbackReason.QUALITY_MARGINAL, True),
            (59, FallbackReason.QUALITY_TOO_LOW, True),
        ],
    )
    async def test_threshold_boundaries(
        self, scenario: FakeScenario, simple: int, expected_reason, browser_called: bool
    ):
        """TC-PL-11: Threshold comparisons are inclusive at the lower bound."""
        # Given
        scenario.set_scores(simple=simple, rendered=90)

        # When
        outcome = await scenario.pipeline().fetch(URL)

        # Then
        assert outcome.fallback_reason == expected_reason
        assert scenario.browser.fetch.await_count == (1 if browser_called else 0)

    async def test_per_call_min_score(self, scenario: FakeScenario):
        """A per-call min_score changes which branch a score falls into."""
        # Given
        scenario.set_scores(simple=50, rendered=40)

        # When
        outcome = await scenario.pipeline().fetch(URL, min_score=30)

        # Then
        assert outcome.success is True
        assert outcome.score == 50
        assert outcome.fallback_reason == FallbackReason.QUALITY_MARGINAL

    @pytest.mark.parametrize(("min_score", "fallback_threshold"), [(85, 85), (90, 85), (-1, 50), (10, 101)])
    def test_invalid_thresholds_in_constructor(
        self, scenario: FakeScenario, min_score: int, fallback_threshold: int
    ):
        """TC-PL-12: Inconsistent thresholds are rejected."""
        with pytest.raises(InvalidThresholdsError):
            scenario.pipeline(min_score=min_score, fallback_threshold=fallback_threshold)

    async def test_invalid_thresholds_per_call(self, scenario: FakeScenario):
        """TC-PL-12: Per-call thresholds are checked too."""
        with pytest.raises(InvalidThresholdsError):
            await scenario.pipeline().fetch(URL, min_score=90)

    async def test_close_closes_http(self, scenario: FakeScenario):
        """close() closes the HTTP client."""
        await scenario.pipeline().close()

        scenario.http.close.assert_awaited_once()


def test_outcome_to_dict_on_failure():
    """Failed outcomes serialize their error code and reason values."""
    from mdfetch.crawler.fetch_result import FetchOutcome

    outcome = FetchOutcome.failure(
        URL,
        ErrorCode.ENGINE_UNAVAILABLE,
        "no engine",
        fallback_reason=FallbackReason.FORCED,
    )

    data = outcome.to_dict()

    assert data["success"] is False
    assert data["error_code"] == "engine_unavailable"
    assert data["fallback_reason"] == "forced"
    assert data["quality"] is None


class TestGlobalPipeline:
    """Tests for get_fetch_pipeline() and fetch_url()."""

    def test_singleton(self):
        from mdfetch.crawler.pipeline import get_fetch_pipeline

        assert get_fetch_pipeline() is get_fetch_pipeline()

    async def test_fetch_url_uses_global_pipeline(
        self, scenario: FakeScenario, monkeypatch: pytest.MonkeyPatch
    ):
        """fetch_url() forwards to the global pipeline."""
        from mdfetch.crawler import pipeline as pipeline_module

        # Given
        monkeypatch.setattr(pipeline_module, "_pipeline", scenario.pipeline())

        # When
        outcome = await pipeline_module.fetch_url(URL, force_fallback=True)

        # Then
        assert outcome.success is True
        assert outcome.fallback_reason == FallbackReason.FORCED
        scenario.http.fetch.assert_not_awaited()
