"""
Rate limiting package for the fetch proxy.

Holds the fixed-window limiter, the in-process store it counts into, and
the background sweep that drops expired caller keys.
"""

from .fixed_window import (
    FixedWindowRateLimiter,
    RateLimitDecision,
    RateLimitEntry,
    RateLimitStore,
    get_caller_key,
)

__all__ = [
    "FixedWindowRateLimiter",
    "RateLimitDecision",
    "RateLimitEntry",
    "RateLimitStore",
    "get_caller_key",
]
