"""
Resumable healthcare facility scrapers.
"""

from .config import ScraperConfig, Settings
from .crawl_controller import CrawlController
from .models import CrawlSummary, WorkItem

__version__ = "0.3.0"

__all__ = ['CrawlController', 'CrawlSummary', 'ScraperConfig', 'Settings', 'WorkItem']
