"""
Configuration dataclasses for the facility scrapers.
"""

from dataclasses import dataclass, field
from typing import Optional, FrozenSet

from pydantic_settings import BaseSettings, SettingsConfigDict


DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
)

RETRYABLE_STATUSES: FrozenSet[int] = frozenset({408, 413, 429, 500, 502, 503, 504})


@dataclass
class RateLimitConfig:
    """Configuration for rate limiting behavior."""
    min_delay: float = 0.0
    max_delay: float = 30.0
    initial_delay: float = 0.5
    backoff_factor: float = 1.5
    jitter_percent: float = 0.2
    cooldown_threshold: int = 5
    cooldown_duration: float = 60.0


@dataclass
class RetryConfig:
    """Configuration for retry behavior."""
    max_retries: int = 3
    base_delay: float = 1.0
    max_delay: float = 30.0
    backoff_factor: float = 2.0
    strategy: str = "linear"
    attempt_timeout: float = 30.0
    retryable_statuses: FrozenSet[int] = RETRYABLE_STATUSES

    def delay_for(self, attempt: int) -> float:
        """
        Delay before retry number `attempt` (1-based).

        Linear: base * attempt. Exponential: base * factor^(attempt-1).
        Both are capped at max_delay.
        """
        if attempt < 1:
            return 0.0
        if self.strategy == "exponential":
            delay = self.base_delay * (self.backoff_factor ** (attempt - 1))
        else:
            delay = self.base_delay * attempt
        return min(delay, self.max_delay)


@dataclass
class HttpConfig:
    """Request settings shared by every jurisdiction client."""
    user_agent: str = DEFAULT_USER_AGENT
    timeout: float = 30.0
    accept_language: str = "en-US,en;q=0.9"


@dataclass
class ScraperConfig:
    """Main configuration for a crawl run."""
    concurrency: int = 5
    data_dir: str = "data"
    output_dir: str = "output"

    # Sink / ledger persistence
    flush_every: int = 1
    persist_retries: int = 3
    persist_retry_delay: float = 0.2

    # Logging cadence
    progress_every: int = 25

    # Mode-specific
    reuse_discovery: bool = False
    download_reports: bool = False
    max_pages: Optional[int] = None

    retry: RetryConfig = field(default_factory=RetryConfig)
    rate_limit: RateLimitConfig = field(default_factory=RateLimitConfig)
    http: HttpConfig = field(default_factory=HttpConfig)

    def __post_init__(self):
        if self.concurrency < 1:
            raise ValueError(f"concurrency must be >= 1, got {self.concurrency}")
        if self.flush_every < 1:
            raise ValueError(f"flush_every must be >= 1, got {self.flush_every}")
        if self.retry.max_retries < 0:
            raise ValueError(f"max_retries must be >= 0, got {self.retry.max_retries}")


class Settings(BaseSettings):
    """Environment-backed settings (SCRAPER_* variables)."""

    model_config = SettingsConfigDict(
        env_prefix="SCRAPER_",
        extra="ignore",
    )

    concurrency: int = 5
    data_dir: str = "data"
    output_dir: str = "output"
    flush_every: int = 1
    progress_every: int = 25
    download_reports: bool = False
    reuse_discovery: bool = False
    max_pages: Optional[int] = None

    max_retries: int = 3
    retry_delay: float = 1.0
    retry_max_delay: float = 30.0
    retry_strategy: str = "linear"
    attempt_timeout: float = 30.0

    min_delay: float = 0.0
    request_delay: float = 0.5
    cooldown_threshold: int = 5
    cooldown_duration: float = 60.0

    user_agent: str = DEFAULT_USER_AGENT
    log_level: str = "INFO"

    def to_config(self, **overrides) -> ScraperConfig:
        """
        Build a ScraperConfig from these settings.

        Args:
            **overrides: Non-None values replace the corresponding setting
                (used for CLI flags)

        Returns:
            ScraperConfig instance
        """
        values = self.model_dump()
        values.update({k: v for k, v in overrides.items() if v is not None})

        return ScraperConfig(
            concurrency=values["concurrency"],
            data_dir=values["data_dir"],
            output_dir=values["output_dir"],
            flush_every=values["flush_every"],
            progress_every=values["progress_every"],
            reuse_discovery=values["reuse_discovery"],
            download_reports=values["download_reports"],
            max_pages=values["max_pages"],
            retry=RetryConfig(
                max_retries=values["max_retries"],
                base_delay=values["retry_delay"],
                max_delay=values["retry_max_delay"],
                strategy=values["retry_strategy"],
                attempt_timeout=values["attempt_timeout"],
            ),
            rate_limit=RateLimitConfig(
                min_delay=values["min_delay"],
                initial_delay=values["request_delay"],
                cooldown_threshold=values["cooldown_threshold"],
                cooldown_duration=values["cooldown_duration"],
            ),
            http=HttpConfig(
                user_agent=values["user_agent"],
                timeout=values["attempt_timeout"],
            ),
        )
