"""
Markdown quality scorer for mdfetch.

Scores extracted markdown from 0 to 100 using structural heuristics:
- Leftover HTML and unconverted table markup
- Very short or blank content
- Extraction ratio against the source HTML size
- Boilerplate pages (errors, 404s, login/paywalls, bot checks)

Issues are weighted failures. Warnings are informational.
The pipeline applies its own configured thresholds to the score;
QualityVerdict.is_valid is a fixed convenience flag.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any

# Fixed acceptability line used by QualityVerdict.is_valid only.
VALID_SCORE = 60

# Boilerplate detection is skipped above this many stripped characters.
BOILERPLATE_MAX_LENGTH = 2000

# Extraction ratio is only judged for source pages larger than this.
RATIO_MIN_SOURCE_LENGTH = 10_000

_TAG_PATTERN = re.compile(r"<[^>]*>")
_COUNTED_TAG_PATTERN = re.compile(r"<[^>]+>")
_TABLE_TAG_PATTERN = re.compile(r"<t[rd][\s>]", re.IGNORECASE)
_SCRIPT_PATTERN = re.compile(r"<script", re.IGNORECASE)
_STYLE_PATTERN = re.compile(r"<style", re.IGNORECASE)
_MARKDOWN_PUNCT_PATTERN = re.compile(r"[#*\-_`\[\]()]")
_NEWLINE_RUN_PATTERN = re.compile(r"\n{5,}")

# Label -> patterns. The first label with a matching pattern names the issue.
_BOILERPLATE_PATTERNS: dict[str, list[str]] = {
    "error page": [
        r"something went wrong",
        r"an (?:unexpected )?error (?:has )?occurred",
        r"oops[,!.]? (?:something|an error)",
    ],
    "404 page": [
        r"page not found",
        r"\b404\b",
        r"(?:page|content) you(?:'re| are) looking for (?:does not|doesn't|no longer) exist",
    ],
    "login wall": [
        r"(?:log ?in|sign ?in) to (?:continue|view|access|read|see)",
        r"to continue,? (?:please )?(?:log ?in|sign ?in)",
        r"you (?:must|need to) be (?:logged|signed) in",
    ],
    "signup wall": [
        r"sign ?up to (?:continue|read|view|see)",
        r"create (?:a|an|your) (?:free )?account to (?:continue|read|view)",
    ],
    "paywall": [
        r"subscribe to (?:continue|keep) reading",
        r"(?:article|content|story) is (?:only )?(?:for|available to) (?:paid )?(?:subscribers|members)",
        r"you(?:'ve| have) reached your (?:free )?(?:article|story) limit",
    ],
    "bot detection page": [
        r"are you a robot",
        r"verify (?:that )?you(?:'re| are) (?:a )?human",
        r"complete the security check",
        r"checking your browser",
        r"unusual traffic from your",
    ],
    "JS-required page": [
        r"(?:please )?enable javascript",
        r"javascript is (?:required|disabled)",
    ],
    "access denied": [
        r"access denied",
        r"you do(?: not|n't) have permission to (?:access|view)",
    ],
}


@dataclass
class QualityVerdict:
    """Result of scoring one markdown document."""

    score: int
    issues: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    @property
    def is_valid(self) -> bool:
        """Fixed 60-point acceptability flag. Not the pipeline's min_score."""
        return self.score >= VALID_SCORE

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "score": self.score,
            "is_valid": self.is_valid,
            "issues": list(self.issues),
            "warnings": list(self.warnings),
        }


class QualityScorer:
    """Rule-based markdown quality scorer.

    Example:
        scorer = QualityScorer()
        verdict = scorer.score(markdown, source_html_length=len(html))
    """

    def __init__(self) -> None:
        self._boilerplate = {
            label: re.compile("|".join(patterns), re.IGNORECASE)
            for label, patterns in _BOILERPLATE_PATTERNS.items()
        }

    def score(self, markdown: str, source_html_length: int | None = None) -> QualityVerdict:
        """Score markdown.

        Args:
            markdown: Extracted markdown text.
            source_html_length: Size of the HTML the markdown came from, if known.

        Returns:
            QualityVerdict with score clamped to [0, 100].
        """
        issues: list[str] = []
        warnings: list[str] = []
        score = 100

        tag_count = len(_COUNTED_TAG_PATTERN.findall(markdown))
        if tag_count > 100:
            score -= 40
            issues.append(
                f"{tag_count} leftover HTML tags found (likely forum/discussion thread)"
            )
        elif tag_count > 50:
            score -= 20
            warnings.append(f"{tag_count} HTML tags present")
        elif tag_count > 10:
            score -= 5
            warnings.append(f"{tag_count} minor HTML tags present")

        table_tag_count = len(_TABLE_TAG_PATTERN.findall(markdown))
        if table_tag_count > 50:
            score -= 30
            issues.append(
                f"{table_tag_count} unconverted table tags (complex layout not suitable)"
            )

        html_chars = sum(len(tag) for tag in _TAG_PATTERN.findall(markdown))
        html_ratio = html_chars / len(markdown) if markdown else 0.0
        if html_ratio > 0.30:
            score -= 25
            issues.append(f"{html_ratio * 100:.1f}% of content is HTML tags")
        elif html_ratio > 0.15:
            score -= 10
            warnings.append(f"{html_ratio * 100:.1f}% HTML tag ratio")

        script_count = len(_SCRIPT_PATTERN.findall(markdown))
        if script_count:
            score -= 15
            warnings.append(f"{script_count} script tags present")

        style_count = len(_STYLE_PATTERN.findall(markdown))
        if style_count:
            score -= 10
            warnings.append(f"{style_count} style tags present")

        stripped = _strip_markup(markdown)
        content_length = len(stripped)

        blank = content_length == 0
        if blank:
            issues.append("Blank content - no text extracted")
        elif content_length < 50:
            score -= 50
            issues.append(
                f"Extremely short content ({content_length} chars) - likely extraction failure"
            )
        elif content_length < 200 and (tag_count > 50 or table_tag_count > 20):
            score -= 30
            issues.append(
                f"Only {content_length} chars of actual content with excessive HTML "
                "(extraction likely failed)"
            )
        elif content_length < 300:
            score -= 15
            warnings.append(
                f"Short content ({content_length} chars) - may not be a full article"
            )

        if source_html_length is not None and source_html_length > RATIO_MIN_SOURCE_LENGTH:
            ratio = content_length / source_html_length
            if ratio < 0.005:
                score -= 35
                issues.append(
                    f"Extraction ratio extremely low ({ratio * 100:.2f}% of "
                    f"{source_html_length} bytes of HTML) - main content likely missed"
                )
            elif ratio < 0.02:
                score -= 20
                warnings.append(
                    f"Low extraction ratio ({ratio * 100:.2f}% of "
                    f"{source_html_length} bytes of HTML)"
                )

        if 0 < content_length < BOILERPLATE_MAX_LENGTH:
            label = self._match_boilerplate(stripped)
            if label is not None:
                score -= 40
                issues.append(
                    f"Boilerplate detected: {label} ({content_length} chars) - not a real article"
                )

        newline_runs = len(_NEWLINE_RUN_PATTERN.findall(markdown))
        if newline_runs > 10:
            score -= 5
            warnings.append(f"{newline_runs} sections with excessive newlines")

        if blank:
            score = 0

        return QualityVerdict(score=max(0, min(100, score)), issues=issues, warnings=warnings)

    def _match_boilerplate(self, text: str) -> str | None:
        """Return the first boilerplate label matching text, if any."""
        for label, pattern in self._boilerplate.items():
            if pattern.search(text):
                return label
        return None


def _strip_markup(markdown: str) -> str:
    """Remove HTML tags and markdown punctuation, then trim."""
    return _MARKDOWN_PUNCT_PATTERN.sub("", _TAG_PATTERN.sub("", markdown)).strip()


def format_quality_report(verdict: QualityVerdict) -> str:
    """Render a human-readable quality report in markdown.

    Args:
        verdict: Verdict to render.

    Returns:
        Markdown report with score, rating, issues and warnings.
    """
    if verdict.score >= 90:
        rating = "✅ Excellent"
    elif verdict.score >= 75:
        rating = "✅ Good"
    elif verdict.score >= VALID_SCORE:
        rating = "⚠️ Acceptable"
    else:
        rating = "❌ Poor"

    report = f"**Quality Score**: {verdict.score}/100 {rating}"

    if verdict.issues:
        report += "\n\n**Issues**:\n"
        report += "".join(f"- {issue}\n" for issue in verdict.issues)

    if verdict.warnings:
        report += "\n**Warnings**:\n"
        report += "".join(f"- {warning}\n" for warning in verdict.warnings)

    return report


# Global scorer instance
_scorer: QualityScorer | None = None


def get_quality_scorer() -> QualityScorer:
    """Get or create the global quality scorer."""
    global _scorer
    if _scorer is None:
        _scorer = QualityScorer()
    return _scorer


def score_markdown(markdown: str, source_html_length: int | None = None) -> QualityVerdict:
    """Score markdown with the global scorer.

    Args:
        markdown: Extracted markdown text.
        source_html_length: Size of the source HTML, if known.

    Returns:
        QualityVerdict.
    """
    return get_quality_scorer().score(markdown, source_html_length=source_html_length)
