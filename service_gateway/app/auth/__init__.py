"""
Authentication helpers for upstream providers.
"""

from .token_cache import CachedToken, TokenCache

__all__ = [
    "CachedToken",
    "TokenCache",
]
