"""
Reference storage for mdfetch.
"""

from mdfetch.storage.references import (
    ExtractedLink,
    PromoteResult,
    Reference,
    ReferenceStore,
    SaveResult,
    slugify,
)

__all__ = [
    "ExtractedLink",
    "PromoteResult",
    "Reference",
    "ReferenceStore",
    "SaveResult",
    "slugify",
]
