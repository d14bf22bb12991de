"""
Article extraction for mdfetch.

Turns raw HTML into a readable article rendered as markdown:
- trafilatura extracts the main content and metadata
- BeautifulSoup is used as a fallback for <article>/<main> pages trafilatura skips
- The markdown is cleaned and prefixed with a title/byline/source header
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from mdfetch.extractor.markdown_cleaner import clean_markdown_complete
from mdfetch.utils.logging import get_logger

logger = get_logger(__name__)

NO_ARTICLE_ERROR = "no_article_found"
NO_ARTICLE_MESSAGE = (
    "Could not extract article content. Page may not contain article-like content."
)

# Fallback extraction requires at least this much paragraph text.
FALLBACK_MIN_CHARS = 500


@dataclass
class ExtractionResult:
    """Result of extracting an article from HTML.

    Attributes:
        ok: Whether an article was found.
        markdown: Header block plus cleaned article markdown.
        body_markdown: Cleaned article markdown without the header block.
        title: Article title.
        byline: Author line, if any.
        excerpt: Short description, if any.
        site_name: Publishing site name, if any.
        error: Error kind (no_article_found) on failure.
        message: Human-readable failure message.
    """

    ok: bool
    markdown: str | None = None
    body_markdown: str | None = None
    title: str | None = None
    byline: str | None = None
    excerpt: str | None = None
    site_name: str | None = None
    error: str | None = None
    message: str | None = None

    @classmethod
    def success(
        cls,
        markdown: str,
        body_markdown: str,
        title: str,
        *,
        byline: str | None = None,
        excerpt: str | None = None,
        site_name: str | None = None,
    ) -> ExtractionResult:
        """Create a successful result."""
        return cls(
            ok=True,
            markdown=markdown,
            body_markdown=body_markdown,
            title=title,
            byline=byline,
            excerpt=excerpt,
            site_name=site_name,
        )

    @classmethod
    def failure(cls, message: str = NO_ARTICLE_MESSAGE) -> ExtractionResult:
        """Create a no-article result."""
        return cls(ok=False, error=NO_ARTICLE_ERROR, message=message)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "ok": self.ok,
            "title": self.title,
            "byline": self.byline,
            "excerpt": self.excerpt,
            "site_name": self.site_name,
            "markdown_length": len(self.markdown) if self.markdown else 0,
            "error": self.error,
        }


def build_header(
    title: str,
    url: str,
    *,
    byline: str | None = None,
    site_name: str | None = None,
    excerpt: str | None = None,
) -> str:
    """Build the markdown header block placed above the article body."""
    header = f"# {title}\n\n"
    if byline:
        header += f"**By:** {byline}\n\n"
    if site_name:
        header += f"**Source:** {site_name}\n\n"
    if excerpt:
        header += f"**Summary:** {excerpt}\n\n"
    header += f"**URL:** {url}\n\n---\n\n"
    return header


class ContentExtractor:
    """HTML to markdown article extractor.

    Example:
        extractor = ContentExtractor()
        result = extractor.extract(html, "https://example.com/post")
        if result.ok:
            print(result.markdown)
    """

    def extract(self, html: str, base_url: str) -> ExtractionResult:
        """Extract an article from HTML.

        Args:
            html: Raw or rendered HTML.
            base_url: URL the HTML was fetched from.

        Returns:
            ExtractionResult. Never raises for unparsable input.
        """
        if not html or not html.strip():
            return ExtractionResult.failure()

        try:
            body = self._extract_with_trafilatura(html, base_url)
            if body is None:
                body = self._extract_with_soup(html)
        except Exception as e:
            logger.warning("Article extraction error", url=base_url, error=str(e))
            return ExtractionResult.failure(str(e))

        if body is None:
            logger.debug("No article found", url=base_url, html_length=len(html))
            return ExtractionResult.failure()

        metadata = self._extract_metadata(html, base_url)
        title = metadata.get("title") or _soup_title(html) or base_url

        body_markdown = clean_markdown_complete(body)
        header = build_header(
            title,
            base_url,
            byline=metadata.get("byline"),
            site_name=metadata.get("site_name"),
            excerpt=metadata.get("excerpt"),
        )

        logger.debug(
            "Article extracted",
            url=base_url,
            title=title[:80],
            body_length=len(body_markdown),
        )

        return ExtractionResult.success(
            header + body_markdown,
            body_markdown,
            title,
            byline=metadata.get("byline"),
            excerpt=metadata.get("excerpt"),
            site_name=metadata.get("site_name"),
        )

    def _extract_with_trafilatura(self, html: str, base_url: str) -> str | None:
        import trafilatura

        return trafilatura.extract(
            html,
            url=base_url,
            output_format="markdown",
            include_comments=False,
            include_tables=True,
            include_links=True,
            include_images=False,
            include_formatting=True,
        )

    def _extract_with_soup(self, html: str) -> str | None:
        """Fallback: paragraphs and headings inside <article> or <main>."""
        from bs4 import BeautifulSoup

        soup = BeautifulSoup(html, "html.parser")
        root = soup.find("article") or soup.find("main")
        if root is None:
            return None

        for tag in root.find_all(["script", "style", "nav", "aside", "footer", "form"]):
            tag.decompose()

        blocks: list[str] = []
        for element in root.find_all(["h1", "h2", "h3", "h4", "p", "li", "pre"]):
            text = element.get_text(" ", strip=True)
            if not text:
                continue
            if element.name in ("h1", "h2", "h3", "h4"):
                blocks.append(f"{'#' * int(element.name[1])} {text}")
            elif element.name == "li":
                blocks.append(f"- {text}")
            elif element.name == "pre":
                blocks.append(f"```\n{element.get_text()}\n```")
            else:
                blocks.append(text)

        body = "\n\n".join(blocks)
        if len(body) < FALLBACK_MIN_CHARS:
            return None
        return body

    def _extract_metadata(self, html: str, base_url: str) -> dict[str, str | None]:
        import trafilatura

        try:
            metadata = trafilatura.extract_metadata(html, default_url=base_url)
        except Exception as e:
            logger.debug("Metadata extraction failed", url=base_url, error=str(e))
            return {}

        if metadata is None:
            return {}

        return {
            "title": metadata.title,
            "byline": metadata.author,
            "site_name": metadata.sitename,
            "excerpt": metadata.description,
        }


def _soup_title(html: str) -> str | None:
    from bs4 import BeautifulSoup

    soup = BeautifulSoup(html, "html.parser")
    if soup.title and soup.title.string:
        return soup.title.string.strip() or None
    return None


# Global extractor instance
_extractor: ContentExtractor | None = None


def get_content_extractor() -> ContentExtractor:
    """Get or create the global content extractor."""
    global _extractor
    if _extractor is None:
        _extractor = ContentExtractor()
    return _extractor
