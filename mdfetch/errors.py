"""
Error code definitions for mdfetch.

Error codes follow the pattern:
- INVALID_*: Input validation errors (caller must fix the input)
- *_UNAVAILABLE: Missing local capability (install or configure it)
- *_FAILED / *_ERROR: Processing errors on a specific fetch or file
- NOT_FOUND: Reference lookups

Pipeline failures are reported through FetchOutcome.error_code rather than
raised. Store and lease failures are raised as MdfetchError subclasses.
"""

from enum import Enum
from typing import Any


class ErrorCode(str, Enum):
    """Error kinds surfaced to callers."""

    INVALID_URL = "invalid_url"
    """URL scheme is not http/https, or the URL cannot be parsed."""

    NETWORK_ERROR = "network_error"
    """Plain HTTP fetch failed. Recovered by the fallback renderer."""

    EXTRACTION_FAILED = "extraction_failed"
    """No article-like content could be extracted from the HTML."""

    QUALITY_REJECTED = "quality_rejected"
    """Best available markdown scored below the minimum quality score."""

    ENGINE_UNAVAILABLE = "engine_unavailable"
    """The browser engine could not be started.
    Action: run `playwright install chromium`."""

    FALLBACK_FETCH_FAILED = "fallback_fetch_failed"
    """Browser navigation failed or timed out."""

    NOT_FOUND = "not_found"
    """No reference with the given id exists in the store."""

    IO_ERROR = "io_error"
    """Reading or writing a reference file failed."""


class MdfetchError(Exception):
    """
    Base exception for mdfetch errors.

    Carries an ErrorCode and optional details for structured output.
    """

    def __init__(
        self,
        code: ErrorCode,
        message: str,
        *,
        details: dict[str, Any] | None = None,
    ):
        super().__init__(message)
        self.code = code
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        """
        Convert error to a response dictionary.

        Returns:
            Dictionary with ok=False, error_code and error message.
        """
        result: dict[str, Any] = {
            "ok": False,
            "error_code": self.code.value,
            "error": self.message,
        }

        if self.details:
            result["details"] = self.details

        return result


class InvalidURLError(MdfetchError):
    """Raised when a URL is malformed or uses an unsupported scheme."""

    def __init__(self, url: str, reason: str):
        super().__init__(
            ErrorCode.INVALID_URL,
            f"Invalid URL {url!r}: {reason}",
            details={"url": url},
        )


class EngineUnavailableError(MdfetchError):
    """Raised when the shared browser engine cannot be launched."""

    def __init__(self, cause: str):
        super().__init__(
            ErrorCode.ENGINE_UNAVAILABLE,
            "Browser engine not installed or not available "
            f"({cause}). Run `playwright install chromium` and retry.",
            details={"cause": cause},
        )


class ReferenceNotFoundError(MdfetchError):
    """Raised when a reference id does not exist."""

    def __init__(self, ref_id: str):
        super().__init__(
            ErrorCode.NOT_FOUND,
            f"Reference not found: {ref_id}",
            details={"ref_id": ref_id},
        )


class StoreIOError(MdfetchError):
    """Raised when a reference file cannot be read or written."""

    def __init__(self, path: str, cause: str):
        super().__init__(
            ErrorCode.IO_ERROR,
            f"I/O error on {path}: {cause}",
            details={"path": path},
        )
