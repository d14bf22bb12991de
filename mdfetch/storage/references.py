"""
File-backed reference store for mdfetch.

Each reference is one markdown file with a frontmatter header:

    ---
    title: "<escaped title>"
    source_url: <url>
    fetched_date: YYYY-MM-DD
    type: web
    status: temporary|permanent
    query: "<escaped query>"
    ---

    <markdown body>

References live in a temporary directory until promoted into the
permanent docs directory. The file stem is the reference id (a title slug).
At most one reference per exact source URL exists in a directory.
"""

from __future__ import annotations

import os
import re
import tempfile
from dataclasses import dataclass
from datetime import date
from pathlib import Path
from typing import Any

from mdfetch.errors import ReferenceNotFoundError, StoreIOError
from mdfetch.utils.config import get_settings
from mdfetch.utils.logging import get_logger

logger = get_logger(__name__)

SLUG_MAX_LENGTH = 60
EMPTY_SLUG = "untitled"

_FRONTMATTER_PATTERN = re.compile(r"^---\n([\s\S]*?)\n---")
_SLUG_PATTERN = re.compile(r"[^a-z0-9]+")
_STATUS_TEMPORARY_PATTERN = re.compile(r"^status:\s*temporary$", re.MULTILINE)
_LINK_PATTERN = re.compile(r"(?<!!)\[([^\]]*)\]\(([^)\s]+)(?:\s+\"[^\"]*\")?\)")


@dataclass
class Reference:
    """A stored reference (header fields plus file facts)."""

    ref_id: str
    title: str
    url: str
    path: Path
    fetched_date: str
    status: str = "temporary"
    query: str | None = None
    size: int = 0

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "ref_id": self.ref_id,
            "title": self.title,
            "url": self.url,
            "path": str(self.path),
            "fetched_date": self.fetched_date,
            "status": self.status,
            "query": self.query,
            "size": self.size,
        }


@dataclass
class SaveResult:
    """Result of ReferenceStore.save."""

    ref_id: str
    path: Path
    already_exists: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "ref_id": self.ref_id,
            "path": str(self.path),
            "already_exists": self.already_exists,
        }


@dataclass
class PromoteResult:
    """Result of ReferenceStore.promote."""

    from_path: Path
    to_path: Path

    def to_dict(self) -> dict[str, Any]:
        return {"from_path": str(self.from_path), "to_path": str(self.to_path)}


@dataclass
class ExtractedLink:
    """An outbound http(s) link found in a reference body."""

    text: str
    href: str

    def to_dict(self) -> dict[str, str]:
        return {"text": self.text, "href": self.href}


def slugify(title: str) -> str:
    """Derive a reference id from a title.

    Lowercases, collapses non [a-z0-9] runs to "-", trims dashes and
    caps the result at 60 characters.
    """
    slug = _SLUG_PATTERN.sub("-", title.lower()).strip("-")[:SLUG_MAX_LENGTH]
    return slug or EMPTY_SLUG


def sanitize_url(url: str) -> str:
    """Remove CR/LF so a URL cannot inject extra header lines."""
    return url.replace("\r", "").replace("\n", "")


def _quote(value: str) -> str:
    return '"' + value.replace('"', '\\"') + '"'


def _unquote(value: str) -> str:
    value = value.strip()
    if len(value) >= 2 and value[0] == value[-1] and value[0] in "\"'":
        value = value[1:-1]
    return value.replace('\\"', '"').strip()


def render_reference(
    title: str,
    url: str,
    body: str,
    *,
    fetched_date: str,
    status: str = "temporary",
    query: str | None = None,
) -> str:
    """Render the file content for a reference."""
    lines = [
        "---",
        f"title: {_quote(title)}",
        f"source_url: {sanitize_url(url)}",
        f"fetched_date: {fetched_date}",
        "type: web",
        f"status: {status}",
    ]
    if query:
        lines.append(f"query: {_quote(query)}")
    lines.append("---")
    return "\n".join(lines) + "\n\n" + body


def parse_header(content: str) -> dict[str, str] | None:
    """Parse the frontmatter block.

    Returns:
        Header fields, or None if the block is missing.
    """
    match = _FRONTMATTER_PATTERN.match(content)
    if not match:
        return None

    fields: dict[str, str] = {}
    for line in match.group(1).split("\n"):
        key, sep, value = line.partition(":")
        if not sep or not key or key != key.strip():
            continue
        if value.strip():
            fields[key] = _unquote(value)
    return fields


def split_body(content: str) -> str:
    """Return the markdown body with the frontmatter block removed."""
    match = _FRONTMATTER_PATTERN.match(content)
    if not match:
        return content
    return content[match.end() :].lstrip("\n")


def _today() -> str:
    return date.today().isoformat()


class ReferenceStore:
    """Reference store over a temporary and a permanent directory.

    Example:
        store = ReferenceStore(".tmp/mdfetch", "docs/ai/references")
        saved = store.save("Title", "https://example.com", markdown)
        store.promote(saved.ref_id)
    """

    def __init__(self, temp_dir: str | Path, docs_dir: str | Path) -> None:
        self.temp_dir = Path(temp_dir)
        self.docs_dir = Path(docs_dir)

    @classmethod
    def from_settings(cls) -> ReferenceStore:
        """Create a store from configured paths."""
        paths = get_settings().paths
        return cls(paths.temp_dir, paths.docs_dir)

    # =========================================================================
    # Write operations
    # =========================================================================

    def save(
        self,
        title: str,
        url: str,
        body: str,
        query: str | None = None,
        refetch: bool = False,
    ) -> SaveResult:
        """Save a fetched page.

        Args:
            title: Page title (slugified into the reference id).
            url: Source URL. Dedup key, exact match.
            body: Markdown body.
            query: Optional free-text tag.
            refetch: Overwrite an existing reference for the same URL in place.

        Returns:
            SaveResult. already_exists is True when an existing reference
            was returned unchanged.
        """
        existing = self.find_by_url(url)

        if existing is not None and not refetch:
            logger.debug("Reference already cached", ref_id=existing.ref_id, url=url)
            return SaveResult(ref_id=existing.ref_id, path=existing.path, already_exists=True)

        if existing is not None:
            path = existing.path
            status = existing.status
            if query is None:
                query = existing.query
        else:
            path = self.temp_dir / f"{slugify(title)}.md"
            status = "temporary"

        content = render_reference(
            title,
            url,
            body,
            fetched_date=_today(),
            status=status,
            query=query,
        )
        self._write_atomic(path, content)

        logger.info(
            "Reference saved",
            ref_id=path.stem,
            url=url,
            refetch=existing is not None,
            size=len(content),
        )
        return SaveResult(ref_id=path.stem, path=path)

    def promote(self, ref_id: str) -> PromoteResult:
        """Move a reference into the permanent directory.

        The status field is rewritten to permanent before the temporary
        file is removed.

        Raises:
            ReferenceNotFoundError: If ref_id does not exist or vanishes mid-promote.
            StoreIOError: On other filesystem failures.
        """
        reference = self.get(ref_id)

        try:
            content = reference.path.read_text(encoding="utf-8")
        except FileNotFoundError as e:
            raise ReferenceNotFoundError(ref_id) from e
        except OSError as e:
            raise StoreIOError(str(reference.path), str(e)) from e

        content = _STATUS_TEMPORARY_PATTERN.sub("status: permanent", content, count=1)
        to_path = self.docs_dir / reference.path.name
        self._write_atomic(to_path, content)

        try:
            reference.path.unlink()
        except FileNotFoundError:
            pass
        except OSError as e:
            raise StoreIOError(str(reference.path), str(e)) from e

        logger.info("Reference promoted", ref_id=ref_id, to_path=str(to_path))
        return PromoteResult(from_path=reference.path, to_path=to_path)

    def delete(self, ref_id: str) -> Path:
        """Delete a temporary reference.

        Returns:
            Path of the removed file.

        Raises:
            ReferenceNotFoundError: If ref_id does not exist.
        """
        reference = self.get(ref_id)
        try:
            reference.path.unlink()
        except FileNotFoundError as e:
            raise ReferenceNotFoundError(ref_id) from e
        except OSError as e:
            raise StoreIOError(str(reference.path), str(e)) from e

        logger.info("Reference deleted", ref_id=ref_id)
        return reference.path

    # =========================================================================
    # Read operations
    # =========================================================================

    def list_references(self, permanent: bool = False) -> list[Reference]:
        """List references, newest fetched_date first.

        Files without a parsable header are skipped.

        Args:
            permanent: List the permanent directory instead of the temporary one.
        """
        directory = self.docs_dir if permanent else self.temp_dir
        if not directory.is_dir():
            return []

        references = []
        for path in sorted(directory.glob("*.md")):
            reference = self._load(path)
            if reference is not None:
                references.append(reference)

        references.sort(key=lambda r: r.fetched_date, reverse=True)
        return references

    def find(self, ref_id: str) -> Reference | None:
        """Find a temporary reference by id."""
        path = self.temp_dir / f"{ref_id}.md"
        if not path.is_file():
            return None
        return self._load(path)

    def find_by_url(self, url: str) -> Reference | None:
        """Find a temporary reference by exact source URL."""
        url = sanitize_url(url)
        for reference in self.list_references():
            if reference.url == url:
                return reference
        return None

    def get(self, ref_id: str) -> Reference:
        """Find a temporary reference by id or raise ReferenceNotFoundError."""
        reference = self.find(ref_id)
        if reference is None:
            raise ReferenceNotFoundError(ref_id)
        return reference

    def read_body(self, ref_id: str) -> str:
        """Read the markdown body of a temporary reference."""
        reference = self.get(ref_id)
        try:
            content = reference.path.read_text(encoding="utf-8")
        except FileNotFoundError as e:
            raise ReferenceNotFoundError(ref_id) from e
        except OSError as e:
            raise StoreIOError(str(reference.path), str(e)) from e
        return split_body(content)

    def extract_links(self, ref_id: str) -> list[ExtractedLink]:
        """Extract outbound http(s) links from a reference body.

        Links are deduplicated by href; the first text seen wins.
        Image links, anchors, mailto and relative links are ignored.

        Raises:
            ReferenceNotFoundError: If ref_id does not exist.
        """
        body = self.read_body(ref_id)

        links: list[ExtractedLink] = []
        seen: set[str] = set()
        for match in _LINK_PATTERN.finditer(body):
            text, href = match.group(1).strip(), match.group(2)
            if not href.startswith(("http://", "https://")):
                continue
            if href in seen:
                continue
            seen.add(href)
            links.append(ExtractedLink(text=text, href=href))

        logger.debug("Links extracted", ref_id=ref_id, count=len(links))
        return links

    # =========================================================================
    # Internals
    # =========================================================================

    def _load(self, path: Path) -> Reference | None:
        try:
            content = path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        except UnicodeDecodeError as e:
            logger.warning("Skipping non-UTF-8 reference file", path=str(path), error=str(e))
            return None
        except OSError as e:
            raise StoreIOError(str(path), str(e)) from e

        header = parse_header(content)
        if not header or "title" not in header or "source_url" not in header:
            return None

        return Reference(
            ref_id=path.stem,
            title=header["title"],
            url=header["source_url"],
            path=path,
            fetched_date=header.get("fetched_date", ""),
            status=header.get("status", "temporary"),
            query=header.get("query"),
            size=len(content),
        )

    def _write_atomic(self, path: Path, content: str) -> None:
        """Write to a sibling temporary file, then replace the target."""
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=".", suffix=".tmp")
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as f:
                    f.write(content)
                os.replace(tmp_name, path)
            except BaseException:
                if os.path.exists(tmp_name):
                    os.unlink(tmp_name)
                raise
        except OSError as e:
            raise StoreIOError(str(path), str(e)) from e
