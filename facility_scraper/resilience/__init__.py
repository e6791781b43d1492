"""
Resilience components for the crawl core.
"""

from .progress_ledger import ProgressLedger
from .rate_limiter import RateLimiter
from .retry_handler import RetryHandler
from .work_queue import BoundedWorkQueue

__all__ = [
    'ProgressLedger',
    'RateLimiter',
    'RetryHandler',
    'BoundedWorkQueue'
]
