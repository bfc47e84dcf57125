"""
Source discovery support: pacing, anti-detection, metrics and caching
"""

from .cache import BoundedCache, EvictionPolicy
from .metrics import CrawlMetricsCollector, SourceMetrics
from .rate_limiter import RateLimitConfig, RateLimiter, RateLimitState, USER_AGENTS

__all__ = [
    "BoundedCache",
    "EvictionPolicy",
    "CrawlMetricsCollector",
    "SourceMetrics",
    "RateLimitConfig",
    "RateLimiter",
    "RateLimitState",
    "USER_AGENTS",
]
