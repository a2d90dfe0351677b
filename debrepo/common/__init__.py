"""Common utilities for debrepo.

Configuration lives in ``debrepo.common.config`` and is imported from there
directly, since it depends on the source declarations.
"""

from .logger import setup_logger, get_logger

__all__ = ["get_logger", "setup_logger"]
