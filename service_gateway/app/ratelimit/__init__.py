"""
Rate limiting package for the Gateway.

Holds the in-process fixed-window limiter that sheds excess data provider
calls instead of queueing them.
"""

from .fixed_window import FixedWindowRateLimiter, RateWindow

__all__ = [
    "FixedWindowRateLimiter",
    "RateWindow",
]
