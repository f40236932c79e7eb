"""
Twitch API Layer.

This package handles GraphQL calls and HLS playlist resolution for VODs.
"""

from .client import TwitchAPIClient
from .rate_limiter import AdaptiveRateLimiter

__all__ = ["AdaptiveRateLimiter", "TwitchAPIClient"]
