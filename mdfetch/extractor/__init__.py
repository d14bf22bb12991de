"""
Content extraction module for mdfetch.

Provides HTML to markdown article extraction, markdown cleanup,
and markdown quality scoring.
"""

from mdfetch.extractor.content import (
    ContentExtractor,
    ExtractionResult,
    get_content_extractor,
)
from mdfetch.extractor.markdown_cleaner import clean_markdown_complete
from mdfetch.extractor.quality import (
    QualityScorer,
    QualityVerdict,
    format_quality_report,
    get_quality_scorer,
    score_markdown,
)

__all__ = [
    # Content extraction
    "ContentExtractor",
    "ExtractionResult",
    "get_content_extractor",
    "clean_markdown_complete",
    # Quality scoring
    "QualityScorer",
    "QualityVerdict",
    "format_quality_report",
    "get_quality_scorer",
    "score_markdown",
]
