"""
mdfetch utilities module.
"""

from mdfetch.utils.config import (
    Settings,
    get_settings,
    load_settings,
)
from mdfetch.utils.logging import (
    LogContext,
    bind_context,
    configure_logging,
    get_logger,
    unbind_context,
)

__all__ = [
    # Config
    "Settings",
    "get_settings",
    "load_settings",
    # Logging
    "get_logger",
    "configure_logging",
    "bind_context",
    "unbind_context",
    "LogContext",
]
