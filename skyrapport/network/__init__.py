"""Network package: rate-gated access to the Bluesky API.

Provides:
- RateLimiter: Sliding-window quota with minimum spacing, shared by all calls
- BlueskyClient: Paginated XRPC client with failure classification
- Deadline: Cancellation/expiry handle for every suspension point
"""

from skyrapport.network.client import BlueskyClient
from skyrapport.network.deadline import Deadline
from skyrapport.network.rate_limiter import RateLimiter, RateLimitStats

__all__ = [
    "BlueskyClient",
    "Deadline",
    "RateLimiter",
    "RateLimitStats",
]
