"""
Unified logging infrastructure module.

Every module obtains its logger through get_logger() from here so the
structured formatter and request context apply uniformly.
"""

from src.services.structured_logging import (
    configure_logging,
    init_logging,
    get_logger,
)

__all__ = ["configure_logging", "init_logging", "get_logger"]
