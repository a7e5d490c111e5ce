"""
Utilities package for chronostore.

Exports shared helpers for logging and other cross-cutting concerns.
Keep this package lightweight and free of persistence logic.
"""

from chronostore.utils.logging import configure_logging, get_logger

__all__ = [
    "configure_logging",
    "get_logger",
]
