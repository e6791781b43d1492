import asyncio
import csv
from pathlib import Path

import pytest

from facility_scraper.config import RateLimitConfig, RetryConfig, ScraperConfig
from facility_scraper.jurisdictions.base import Jurisdiction
from facility_scraper.models import WorkItem


class StubJurisdiction(Jurisdiction):
    """In-memory jurisdiction: no network, scripted failures."""

    code = "zz"
    name = "Stub Registry"
    base_url = "https://registry.example/"

    def __init__(self, ids, behaviours=None, hooks=None, delay=0.0, discover_errors=None):
        super().__init__()
        self.items = [WorkItem(id=item_id, attrs={"name": f"Facility {item_id}"}) for item_id in ids]
        # id -> exception (always raised) or list of exceptions (raised in turn, then success)
        self.behaviours = behaviours or {}
        self.hooks = hooks or {}
        self.delay = delay
        self.discover_errors = list(discover_errors or [])
        self.discover_calls = 0
        self.fetch_calls = []
        self.active = 0
        self.max_active = 0

    async def discover(self, client):
        self.discover_calls += 1
        if self.discover_errors:
            raise self.discover_errors.pop(0)
        return list(self.items)

    async def fetch_detail(self, client, item):
        self.fetch_calls.append(item.id)
        if item.id in self.hooks:
            self.hooks[item.id]()
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        try:
            await asyncio.sleep(self.delay)
            behaviour = self.behaviours.get(item.id)
            if isinstance(behaviour, list):
                behaviour = behaviour.pop(0) if behaviour else None
            if isinstance(behaviour, BaseException):
                raise behaviour
            return {"detail": f"detail-{item.id}"}
        finally:
            self.active -= 1


@pytest.fixture()
def stub_jurisdiction():
    return StubJurisdiction


@pytest.fixture()
def crawl_config(tmp_path):
    return ScraperConfig(
        concurrency=3,
        data_dir=str(tmp_path / "data"),
        output_dir=str(tmp_path / "output"),
        persist_retry_delay=0.0,
        retry=RetryConfig(max_retries=2, base_delay=0.0, attempt_timeout=2.0),
        rate_limit=RateLimitConfig(initial_delay=0.0, min_delay=0.0),
    )


@pytest.fixture()
def output_rows(crawl_config):
    def read(code="zz"):
        path = Path(crawl_config.output_dir) / code / "facilities.csv"
        with open(path, "r", encoding="utf-8", newline="") as f:
            return list(csv.DictReader(f))
    return read
