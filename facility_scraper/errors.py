"""
Error taxonomy for the crawl core.

Fetch errors are contained per work item by the retry handler. Persistence
errors abort the owning item. Fatal errors abort the whole run.
"""

import errno
from typing import Optional


class ScraperError(Exception):
    """Base class for scraper errors."""


class FetchError(ScraperError):
    """A detail or discovery request failed."""


class TransientFetchError(FetchError):
    """Failure expected to clear up on retry."""


class PermanentFetchError(FetchError):
    """Failure that retrying will not fix."""


class ParseError(PermanentFetchError):
    """Response arrived but could not be understood."""


class HttpStatusError(FetchError):
    """Non-success HTTP status."""

    def __init__(self, status_code: int, url: str, retry_after: Optional[float] = None):
        self.status_code = status_code
        self.url = url
        self.retry_after = retry_after
        super().__init__(f"HTTP {status_code} for {url}")


class PersistenceError(ScraperError):
    """Ledger append or sink flush failed after local retries."""


class FatalCrawlError(ScraperError):
    """Stops the whole run."""


class StoreUnavailableError(PersistenceError, FatalCrawlError):
    """The backing store as a whole is unusable (disk full, read-only, no permission)."""


class DiscoveryError(FatalCrawlError):
    """Discovery failed, so there is nothing to crawl."""


STORE_FATAL_ERRNOS = frozenset(
    code for code in (
        errno.ENOSPC,
        getattr(errno, "EDQUOT", None),
        errno.EROFS,
        errno.EACCES,
        errno.EPERM,
    )
    if code is not None
)


def is_store_fatal(exc: BaseException) -> bool:
    """Whether an OS error means the whole store is gone rather than one write."""
    return isinstance(exc, OSError) and exc.errno in STORE_FATAL_ERRNOS
