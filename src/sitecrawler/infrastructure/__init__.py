"""
Infrastructure Package.

Provides overload detection and backoff for reliable crawling.
"""

from .backoff_governor import (
    BackoffGovernor,
    BackoffConfig,
    BackoffInfo,
)

__all__ = [
    # Backoff Governor
    "BackoffGovernor",
    "BackoffConfig",
    "BackoffInfo",
]
