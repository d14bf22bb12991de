"""
Fetch result types for mdfetch.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from mdfetch.errors import ErrorCode
from mdfetch.extractor.quality import QualityVerdict


class FallbackReason(str, Enum):
    """Why the browser renderer was used."""

    FORCED = "forced"
    NETWORK_ERROR = "network_error"
    EXTRACTION_FAILED = "extraction_failed"
    QUALITY_MARGINAL = "quality_marginal"
    QUALITY_TOO_LOW = "quality_too_low"


@dataclass
class FetchOutcome:
    """
    Terminal result of one pipeline run.

    Attributes:
        success: Whether usable markdown was produced.
        url: Requested URL.
        markdown: Header plus article markdown.
        title: Article title.
        byline: Author line.
        excerpt: Short description.
        site_name: Publishing site.
        verdict: Quality verdict of the returned (or rejected) markdown.
        used_fallback_renderer: Whether the returned markdown came from the browser.
        fallback_reason: Why the browser renderer was attempted, if it was.
        error: Error message on failure.
        error_code: Error kind on failure.
        suggestion: Human hint on failure.
        elapsed_ms: Wall time of the whole run.
    """

    success: bool
    url: str
    markdown: str | None = None
    title: str | None = None
    byline: str | None = None
    excerpt: str | None = None
    site_name: str | None = None
    verdict: QualityVerdict | None = None
    used_fallback_renderer: bool = False
    fallback_reason: FallbackReason | None = None
    error: str | None = None
    error_code: ErrorCode | None = None
    suggestion: str | None = None
    elapsed_ms: float = field(default=0.0, compare=False)

    @property
    def score(self) -> int | None:
        return self.verdict.score if self.verdict else None

    @classmethod
    def failure(
        cls,
        url: str,
        error_code: ErrorCode,
        error: str,
        *,
        verdict: QualityVerdict | None = None,
        suggestion: str | None = None,
        used_fallback_renderer: bool = False,
        fallback_reason: FallbackReason | None = None,
    ) -> FetchOutcome:
        """Create a failed outcome."""
        return cls(
            success=False,
            url=url,
            verdict=verdict,
            error=error,
            error_code=error_code,
            suggestion=suggestion,
            used_fallback_renderer=used_fallback_renderer,
            fallback_reason=fallback_reason,
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "success": self.success,
            "url": self.url,
            "title": self.title,
            "byline": self.byline,
            "excerpt": self.excerpt,
            "site_name": self.site_name,
            "markdown": self.markdown,
            "quality": self.verdict.to_dict() if self.verdict else None,
            "used_fallback_renderer": self.used_fallback_renderer,
            "fallback_reason": self.fallback_reason.value if self.fallback_reason else None,
            "error": self.error,
            "error_code": self.error_code.value if self.error_code else None,
            "suggestion": self.suggestion,
            "elapsed_ms": self.elapsed_ms,
        }
