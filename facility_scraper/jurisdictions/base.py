"""
Base class for per-jurisdiction scrapers.
"""

from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional, TYPE_CHECKING

import httpx

from ..models import WorkItem

if TYPE_CHECKING:
    from ..reports import ReportDownloader


class Jurisdiction(ABC):
    """
    Discovery and detail logic for one registry.

    Subclasses only parse; retries, progress and output are handled by
    the crawl controller.
    """

    code: str = ""
    name: str = ""
    base_url: str = ""
    # Ordered output columns; None means the union of record keys
    columns: Optional[List[str]] = None

    def __init__(
        self,
        max_pages: Optional[int] = None,
        reports: Optional["ReportDownloader"] = None,
    ):
        self.max_pages = max_pages
        self.reports = reports

    def default_headers(self) -> Dict[str, str]:
        return {}

    @abstractmethod
    async def discover(self, client: httpx.AsyncClient) -> List[WorkItem]:
        """Return every facility listed by the registry."""

    @abstractmethod
    async def fetch_detail(self, client: httpx.AsyncClient, item: WorkItem) -> Dict[str, Any]:
        """Return detail fields for one facility."""

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.code}>"
