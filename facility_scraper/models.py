"""
Data models for the facility scrapers.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Union


@dataclass
class WorkItem:
    """One discovered facility, plus whatever discovery learned about it."""
    id: str
    attrs: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        self.id = str(self.id)

    @property
    def label(self) -> str:
        """Human-readable name for log lines."""
        name = self.attrs.get("name")
        return f"{self.id} ({name})" if name else self.id

    def to_dict(self) -> Dict[str, Any]:
        return {"id": self.id, "attrs": dict(self.attrs)}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "WorkItem":
        return cls(id=data["id"], attrs=dict(data.get("attrs") or {}))


class LedgerState(str, Enum):
    IN_PROGRESS = "in_progress"
    FINISHED = "finished"
    FAILED = "failed"


@dataclass
class LedgerEntry:
    """One line of the progress ledger."""
    id: str
    state: LedgerState
    timestamp: str
    error: Optional[str] = None


@dataclass
class FetchResult:
    """Successful detail fetch for a work item."""
    item: WorkItem
    payload: Dict[str, Any]
    attempts: int = 1

    ok = True

    @property
    def record(self) -> Dict[str, Any]:
        """
        Flat output row: discovery attributes overlaid with detail fields.

        Detail fields win on key collisions; the id always comes from the
        work item.
        """
        merged: Dict[str, Any] = {"id": self.item.id}
        merged.update(self.item.attrs)
        merged.update(self.payload)
        merged["id"] = self.item.id
        return merged


@dataclass
class FetchFailure:
    """Detail fetch that did not produce a result."""
    item_id: str
    reason: str
    retries_exhausted: bool = False
    attempts: int = 1

    ok = False


FetchOutcome = Union[FetchResult, FetchFailure]


@dataclass
class CrawlSummary:
    """Result of a crawl run."""
    success: bool
    jurisdiction: str
    mode: str
    started_at: str
    completed_at: str
    total_discovered: int
    total_skipped: int
    total_completed: int
    total_failed: int
    stopped: bool = False
    total_not_started: int = 0
    failures: List[Dict[str, str]] = field(default_factory=list)
    duration_seconds: float = 0.0
    items_per_hour: float = 0.0
    error: Optional[str] = None

    @property
    def total_pending(self) -> int:
        return self.total_discovered - self.total_skipped
