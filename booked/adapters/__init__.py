"""
Adapters layer - Storage, caching, queueing and rate limiting.
"""

from .cache import CacheProtocol, MemoryCache
from .job_queue import InMemoryJobQueue, JobQueueProtocol, QueuedJob
from .memory_store import InMemoryBookingStore
from .rate_limiter import RateLimiterProtocol, SlidingWindowRateLimiter
from .store import BookingStoreProtocol

__all__ = [
    "BookingStoreProtocol",
    "CacheProtocol",
    "InMemoryBookingStore",
    "InMemoryJobQueue",
    "JobQueueProtocol",
    "MemoryCache",
    "QueuedJob",
    "RateLimiterProtocol",
    "SlidingWindowRateLimiter",
]
