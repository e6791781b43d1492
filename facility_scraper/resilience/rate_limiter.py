"""
Adaptive rate limiting with jitter and cooldown.
Spaces out request starts across all workers and backs off when the
remote source starts failing.
"""

import asyncio
import logging
import random
import time
from typing import Optional

from ..config import RateLimitConfig

logger = logging.getLogger(__name__)


class RateLimiter:
    """Shared request pacer for one crawl run."""

    def __init__(self, config: Optional[RateLimitConfig] = None):
        """
        Initialize rate limiter with configuration.

        Args:
            config: RateLimitConfig instance, uses defaults if None
        """
        self.config = config or RateLimitConfig()
        self._current_delay = self.config.initial_delay
        self._consecutive_failures = 0
        self._last_request_time: Optional[float] = None
        self._cooldown_until: Optional[float] = None
        self._lock = asyncio.Lock()

    async def wait(self):
        """Wait until the next request may start."""
        async with self._lock:
            if self._cooldown_until is not None:
                remaining = self._cooldown_until - time.monotonic()
                if remaining > 0:
                    logger.info("In cooldown, waiting %.1fs...", remaining)
                    await asyncio.sleep(remaining)
                self._cooldown_until = None

            jitter_range = self._current_delay * self.config.jitter_percent
            jitter = random.uniform(-jitter_range, jitter_range) if jitter_range else 0.0
            delay = max(self.config.min_delay, self._current_delay + jitter)

            if self._last_request_time is not None and delay > 0:
                remaining = delay - (time.monotonic() - self._last_request_time)
                if remaining > 0:
                    await asyncio.sleep(remaining)

            self._last_request_time = time.monotonic()

    def record_success(self):
        """Record successful request, gradually decrease delay."""
        self._consecutive_failures = 0
        self._current_delay = max(self.config.min_delay, self._current_delay * 0.9)

    def record_failure(self):
        """Record failed request, increase delay with backoff."""
        self._consecutive_failures += 1
        base = max(self._current_delay, self.config.initial_delay)
        self._current_delay = min(self.config.max_delay, base * self.config.backoff_factor)

    def should_cooldown(self) -> bool:
        return self._consecutive_failures >= self.config.cooldown_threshold

    def cooldown(self):
        """Pause all request starts for the configured cooldown period."""
        self._cooldown_until = time.monotonic() + self.config.cooldown_duration
        logger.warning(
            "Entering cooldown for %.0fs due to %d consecutive failures",
            self.config.cooldown_duration, self._consecutive_failures,
        )
        # Delay stays elevated; successes bring it back down
        self._consecutive_failures = 0

    def get_current_delay(self) -> float:
        return self._current_delay

    def get_stats(self) -> dict:
        return {
            'current_delay': self._current_delay,
            'consecutive_failures': self._consecutive_failures,
            'in_cooldown': self._cooldown_until is not None,
            'min_delay': self.config.min_delay,
            'max_delay': self.config.max_delay,
        }
