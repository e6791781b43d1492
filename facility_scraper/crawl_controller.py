"""
Main orchestrator for a jurisdiction crawl.
Discovers facilities, skips the ones the ledger already has, and runs the
rest through a bounded worker pool into the CSV sink.
"""

import logging
from datetime import datetime
from pathlib import Path
from typing import Dict, List, Optional

import httpx

from .config import ScraperConfig
from .discovery_cache import DiscoveryCache
from .errors import DiscoveryError, FatalCrawlError, PersistenceError, StoreUnavailableError
from .http_client import create_client
from .jurisdictions.base import Jurisdiction
from .models import CrawlSummary, WorkItem
from .reports import ReportDownloader
from .resilience.progress_ledger import ProgressLedger
from .resilience.rate_limiter import RateLimiter
from .resilience.retry_handler import RetryHandler, describe_error
from .resilience.work_queue import BoundedWorkQueue
from .result_sink import ResultSink

logger = logging.getLogger(__name__)


class CrawlController:
    """Coordinates ledger, retry handler, work queue and sink for one jurisdiction."""

    VALID_MODES = ['resume', 'retry-failed', 'fresh']

    def __init__(
        self,
        jurisdiction: Jurisdiction,
        config: Optional[ScraperConfig] = None,
        client: Optional[httpx.AsyncClient] = None,
    ):
        """
        Initialize controller with configuration.

        Args:
            jurisdiction: Jurisdiction to crawl
            config: ScraperConfig instance, uses defaults if None
            client: HTTP client to use; when None, run() creates and closes its own
        """
        self.config = config or ScraperConfig()
        self.jurisdiction = jurisdiction
        self.client = client
        self._stopped = False
        self._started_at: Optional[str] = None

        data_dir = Path(self.config.data_dir) / jurisdiction.code
        self.output_dir = Path(self.config.output_dir) / jurisdiction.code

        self.ledger = ProgressLedger(
            str(data_dir / "ledger.csv"),
            persist_retries=self.config.persist_retries,
            retry_delay=self.config.persist_retry_delay,
        )
        self.sink = ResultSink(
            str(self.output_dir / "facilities.csv"),
            columns=jurisdiction.columns,
            flush_every=self.config.flush_every,
            persist_retries=self.config.persist_retries,
            retry_delay=self.config.persist_retry_delay,
        )
        self.discovery_cache = DiscoveryCache(str(data_dir / "facilities.raw.json"))
        self.rate_limiter = RateLimiter(config=self.config.rate_limit)
        self.retry_handler = RetryHandler(config=self.config.retry, rate_limiter=self.rate_limiter)

        self._reset_counters()

    def _reset_counters(self):
        self._completed = 0
        self._failed = 0
        self._processed = 0
        self._not_started = 0
        self._pending_total = 0
        self._failures: List[Dict[str, str]] = []

    async def run(self, mode: str = "resume") -> CrawlSummary:
        """
        Run the crawl.

        Args:
            mode: "resume", "retry-failed" or "fresh"

        Returns:
            CrawlSummary with counts and status
        """
        if mode not in self.VALID_MODES:
            raise ValueError(f"Invalid mode: {mode}. Must be one of {self.VALID_MODES}")

        self._stopped = False
        self._started_at = datetime.now().isoformat()
        self._reset_counters()

        logger.info("Starting %s crawl in '%s' mode...", self.jurisdiction.name, mode)

        if self.client is not None:
            return await self._run_with_client(self.client, mode)

        async with create_client(
            self.config.http,
            base_url=self.jurisdiction.base_url,
            headers=self.jurisdiction.default_headers(),
        ) as client:
            return await self._run_with_client(client, mode)

    async def _run_with_client(self, client: httpx.AsyncClient, mode: str) -> CrawlSummary:
        if self.config.download_reports:
            self.jurisdiction.reports = ReportDownloader(client, str(self.output_dir / "reports"))

        try:
            return await self._crawl(client, mode)
        except FatalCrawlError as e:
            logger.error("Crawl aborted: %s", e)
            return self._create_result(
                success=False,
                mode=mode,
                total_discovered=0,
                total_skipped=0,
                error=str(e),
            )

    async def _crawl(self, client: httpx.AsyncClient, mode: str) -> CrawlSummary:
        if mode == "fresh":
            self.ledger.reset()
        else:
            self.ledger.init()
        finished_ids = self.ledger.load_finished_ids()

        items = await self._discover(client)

        if mode != "fresh":
            self.sink.load_existing()

        if mode == "retry-failed":
            failed_ids = set(self.ledger.load_failed())
            pending = [item for item in items if item.id in failed_ids]
        else:
            pending = [item for item in items if item.id not in finished_ids]

        skipped = len(items) - len(pending)
        self._pending_total = len(pending)

        missing = finished_ids - set(self.sink.ids)
        if missing and mode != "fresh":
            logger.warning(
                "%d finished facilities are missing from %s; they will not be refetched",
                len(missing), self.sink.path,
            )

        logger.info("Total facilities: %d", len(items))
        logger.info("Already processed: %d", skipped)
        logger.info("Pending: %d", len(pending))

        if not pending:
            logger.info("Nothing to do: all facilities already processed")
            return self._create_result(
                success=True,
                mode=mode,
                total_discovered=len(items),
                total_skipped=skipped,
            )

        fatal: Optional[FatalCrawlError] = None
        queue = BoundedWorkQueue(self.config.concurrency, name=self.jurisdiction.code)
        try:
            for item in pending:
                queue.submit(self._make_task(client, item))
            await queue.join()
        except FatalCrawlError as e:
            fatal = e
        finally:
            await queue.close()

        # Final flush is unconditional
        try:
            await self.sink.flush()
        except PersistenceError as e:
            if fatal is None:
                fatal = e if isinstance(e, FatalCrawlError) else StoreUnavailableError(str(e))
        if fatal is not None:
            raise fatal

        logger.info(
            "Crawl complete: %d succeeded, %d failed, %d skipped",
            self._completed, self._failed, skipped,
        )
        return self._create_result(
            success=True,
            mode=mode,
            total_discovered=len(items),
            total_skipped=skipped,
        )

    async def _discover(self, client: httpx.AsyncClient) -> List[WorkItem]:
        """Discover facilities, from the snapshot when reuse is enabled."""
        if self.config.reuse_discovery:
            cached = self.discovery_cache.load()
            if cached is not None:
                return cached

        success, result = await self.retry_handler.execute_with_retry(
            self.jurisdiction.discover, client, label="discovery", timeout=None,
        )
        if not success:
            raise DiscoveryError(
                f"Discovery failed for {self.jurisdiction.code}: {describe_error(result)}"
            ) from result
        if not isinstance(result, list):
            raise DiscoveryError(f"Discovery returned {type(result).__name__}, expected list")

        try:
            self.discovery_cache.save(result)
        except OSError as e:
            logger.warning("Could not save discovery snapshot: %s", e)
        return result

    def _make_task(self, client: httpx.AsyncClient, item: WorkItem):
        async def task():
            await self._process_item(client, item)
        return task

    async def _process_item(self, client: httpx.AsyncClient, item: WorkItem):
        """
        One unit of work: in-progress, fetch, sink, finished.

        The sink append always happens before the finished mark.
        """
        if self._stopped:
            self._not_started += 1
            return

        failure_recorded = False
        try:
            await self.ledger.mark_in_progress(item)

            async def fetch_detail(work_item: WorkItem) -> dict:
                return await self.jurisdiction.fetch_detail(client, work_item)

            outcome = await self.retry_handler.fetch(item, fetch_detail)
            if not outcome.ok:
                self._record_failure(item, outcome.reason)
                failure_recorded = True
                await self.ledger.mark_failed(item, outcome.reason)
                return

            await self.sink.append(outcome.record)
            await self.ledger.mark_finished(item)
            self._completed += 1
            logger.debug("  ✓ %s", item.label)
        except StoreUnavailableError:
            raise
        except PersistenceError as e:
            if failure_recorded:
                # Counted already; only the ledger line is missing
                logger.error("Could not record failure for %s: %s", item.id, e)
                return
            reason = f"Persistence error: {e}"
            self._record_failure(item, reason)
            try:
                await self.ledger.mark_failed(item, reason)
            except StoreUnavailableError:
                raise
            except PersistenceError as inner:
                logger.error("Could not record failure for %s: %s", item.id, inner)
        finally:
            self._processed += 1
            if self._processed % self.config.progress_every == 0 or self._processed == self._pending_total:
                logger.info(
                    "Progress: %d/%d (%d succeeded, %d failed)",
                    self._processed, self._pending_total, self._completed, self._failed,
                )

    def _record_failure(self, item: WorkItem, reason: str):
        self._failed += 1
        self._failures.append({'id': item.id, 'name': str(item.attrs.get('name') or ''), 'reason': reason})
        logger.warning("  ✗ %s: %s", item.label, reason)

    def stop(self):
        """Gracefully stop: queued items are skipped, in-flight ones finish."""
        if not self._stopped:
            logger.warning("Stopping crawl gracefully; progress is saved")
        self._stopped = True

    @property
    def stopped(self) -> bool:
        return self._stopped

    def get_status(self) -> dict:
        """
        Get current crawl status and statistics.

        Returns:
            Dict with status info
        """
        return {
            'ledger': self.ledger.get_stats(),
            'rate_limiter': self.rate_limiter.get_stats(),
            'retry': self.retry_handler.get_stats(),
            'buffered_results': len(self.sink),
            'completed': self._completed,
            'failed': self._failed,
            'stopped': self._stopped,
            'not_started': self._not_started,
        }

    def _create_result(
        self,
        success: bool,
        mode: str,
        total_discovered: int,
        total_skipped: int,
        error: Optional[str] = None,
    ) -> CrawlSummary:
        """Create CrawlSummary with calculated fields."""
        completed_at = datetime.now().isoformat()

        duration = 0.0
        if self._started_at:
            start = datetime.fromisoformat(self._started_at)
            end = datetime.fromisoformat(completed_at)
            duration = (end - start).total_seconds()

        items_per_hour = 0.0
        if duration > 0:
            items_per_hour = self._completed / (duration / 3600)

        return CrawlSummary(
            success=success,
            jurisdiction=self.jurisdiction.code,
            mode=mode,
            started_at=self._started_at or completed_at,
            completed_at=completed_at,
            total_discovered=total_discovered,
            total_skipped=total_skipped,
            total_completed=self._completed,
            total_failed=self._failed,
            stopped=self._stopped,
            total_not_started=self._not_started,
            failures=list(self._failures),
            duration_seconds=duration,
            items_per_hour=items_per_hour,
            error=error,
        )
