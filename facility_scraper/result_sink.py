"""
Incremental CSV sink for crawl results.
Keeps every successful record in memory and rewrites the output file
atomically, so the file on disk is always complete as of the last flush.
"""

import asyncio
import csv
import logging
import os
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

from .errors import PersistenceError, StoreUnavailableError, is_store_fatal
from .utils import format_value

logger = logging.getLogger(__name__)


class ResultSink:
    """Sole writer of one jurisdiction's output CSV."""

    def __init__(
        self,
        path: str,
        columns: Optional[Sequence[str]] = None,
        flush_every: int = 1,
        persist_retries: int = 3,
        retry_delay: float = 0.2,
    ):
        """
        Initialize sink.

        Args:
            path: Output CSV path
            columns: Fixed column order, or None to use the union of record keys
            flush_every: Flush after this many appends
            persist_retries: Extra attempts for a failed flush
            retry_delay: Seconds between flush attempts
        """
        if flush_every < 1:
            raise ValueError(f"flush_every must be >= 1, got {flush_every}")
        self.path = Path(path)
        self.fixed_columns = self._with_id(columns) if columns else None
        self.flush_every = flush_every
        self.persist_retries = persist_retries
        self.retry_delay = retry_delay

        self._rows: Dict[str, Dict[str, str]] = {}
        self._seen_columns: List[str] = ["id"]
        self._unflushed = 0
        self._flush_count = 0
        self._lock = asyncio.Lock()

    @staticmethod
    def _with_id(columns: Sequence[str]) -> List[str]:
        return ["id"] + [c for c in columns if c != "id"]

    def __len__(self) -> int:
        return len(self._rows)

    @property
    def ids(self) -> List[str]:
        return list(self._rows)

    @property
    def columns(self) -> List[str]:
        return list(self.fixed_columns or self._seen_columns)

    @property
    def flush_count(self) -> int:
        return self._flush_count

    def _track_columns(self, keys):
        for key in keys:
            if key not in self._seen_columns:
                self._seen_columns.append(key)

    def load_existing(self) -> int:
        """
        Preload rows from an existing output file so later flushes keep them.

        Returns:
            Number of rows loaded
        """
        if not self.path.exists():
            return 0

        loaded = 0
        with open(self.path, "r", encoding="utf-8", newline="") as f:
            reader = csv.DictReader(f)
            if reader.fieldnames:
                self._track_columns(reader.fieldnames)
            for row in reader:
                row_id = (row.get("id") or "").strip()
                if not row_id:
                    continue
                self._rows[row_id] = {k: v for k, v in row.items() if k is not None}
                loaded += 1

        logger.info("Loaded %d existing rows from %s", loaded, self.path)
        return loaded

    async def append(self, record: Dict[str, Any]):
        """
        Add one result to the buffer, flushing when the batch is full.

        A record with an id already in the buffer replaces it. If the
        triggered flush fails, the buffer goes back to its previous row for
        that id, so a later flush never writes a result its caller was told
        had failed.

        Raises:
            PersistenceError: If a triggered flush failed
        """
        row_id = str(record.get("id", "")).strip()
        if not row_id:
            raise ValueError("Result record has no id")

        row = {key: format_value(value) for key, value in record.items()}
        row["id"] = row_id

        async with self._lock:
            self._track_columns(row.keys())
            previous = self._rows.get(row_id)
            self._rows[row_id] = row
            self._unflushed += 1
            if self._unflushed >= self.flush_every:
                try:
                    await self._flush_locked()
                except PersistenceError:
                    if previous is None:
                        del self._rows[row_id]
                    else:
                        self._rows[row_id] = previous
                    self._unflushed -= 1
                    raise

    async def flush(self):
        """
        Rewrite the output file from the whole buffer.

        Raises:
            PersistenceError: If the file could not be written
        """
        async with self._lock:
            await self._flush_locked()

    async def _flush_locked(self):
        columns = self.columns
        rows = list(self._rows.values())

        last_error: Optional[OSError] = None
        for attempt in range(1, self.persist_retries + 2):
            try:
                await asyncio.to_thread(self._write_atomic, columns, rows)
                self._unflushed = 0
                self._flush_count += 1
                return
            except OSError as e:
                last_error = e
                if is_store_fatal(e):
                    raise StoreUnavailableError(f"Output {self.path} unavailable: {e}") from e
                logger.warning(
                    "Flush of %s failed (attempt %d/%d): %s",
                    self.path, attempt, self.persist_retries + 1, e,
                )
                if attempt <= self.persist_retries:
                    await asyncio.sleep(self.retry_delay)

        raise PersistenceError(f"Could not write {self.path}: {last_error}") from last_error

    def _write_atomic(self, columns: List[str], rows: List[Dict[str, str]]):
        # Atomic write: write to temp file, then replace
        self.path.parent.mkdir(parents=True, exist_ok=True)
        temp_file = self.path.with_name(f".{self.path.name}.tmp")
        try:
            with open(temp_file, "w", encoding="utf-8", newline="") as f:
                writer = csv.DictWriter(f, fieldnames=columns, extrasaction="ignore", restval="")
                writer.writeheader()
                writer.writerows(rows)
                f.flush()
                os.fsync(f.fileno())
            os.replace(temp_file, self.path)
        except OSError:
            temp_file.unlink(missing_ok=True)
            raise
