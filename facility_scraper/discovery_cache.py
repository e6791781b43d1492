"""
Snapshot of the last successful discovery.
Lets a restarted run skip re-crawling listing pages.
"""

import json
import logging
import os
from datetime import datetime, timezone
from pathlib import Path
from typing import List, Optional

from .models import WorkItem

logger = logging.getLogger(__name__)


class DiscoveryCache:
    """Raw discovered facilities stored as JSON."""

    def __init__(self, path: str):
        self.path = Path(path)

    def exists(self) -> bool:
        return self.path.exists()

    def load(self) -> Optional[List[WorkItem]]:
        """
        Load cached work items.

        Returns:
            List of WorkItem, or None if missing or unreadable
        """
        if not self.path.exists():
            return None
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                data = json.load(f)
            items = [WorkItem.from_dict(entry) for entry in data["items"]]
        except (json.JSONDecodeError, KeyError, TypeError) as e:
            logger.warning("Discovery cache %s unreadable, ignoring it: %s", self.path, e)
            return None
        logger.info("Loaded %d facilities from %s", len(items), self.path)
        return items

    def save(self, items: List[WorkItem]):
        """Atomically write the discovered items."""
        self.path.parent.mkdir(parents=True, exist_ok=True)
        data = {
            "saved_at": datetime.now(timezone.utc).isoformat(),
            "count": len(items),
            "items": [item.to_dict() for item in items],
        }
        temp_file = self.path.with_name(f".{self.path.name}.tmp")
        with open(temp_file, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=2, ensure_ascii=False, default=str)
            f.flush()
            os.fsync(f.fileno())
        os.replace(temp_file, self.path)
        logger.info("Saved %d facilities to %s", len(items), self.path)
