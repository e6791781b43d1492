"""
Progress ledger for resumable crawls.
Append-only CSV log of per-facility state that survives restarts.
"""

import asyncio
import csv
import io
import logging
import os
import shutil
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Set

from ..errors import PersistenceError, StoreUnavailableError, is_store_fatal
from ..models import LedgerEntry, LedgerState, WorkItem

logger = logging.getLogger(__name__)

LEDGER_HEADER = ["timestamp", "id", "state", "error"]


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def parse_ledger(text: str) -> List[LedgerEntry]:
    """
    Parse ledger file contents into entries, in file order.

    A trailing line without a newline is a torn write from a killed
    process and is dropped. Header rows, rows without an id and rows with
    an unknown state are skipped.

    Args:
        text: Full ledger file contents

    Returns:
        List of LedgerEntry in file order
    """
    if not text:
        return []
    if not text.endswith("\n"):
        cut = text.rfind("\n")
        text = text[:cut + 1] if cut >= 0 else ""

    entries = []
    for row in csv.reader(io.StringIO(text)):
        if len(row) < 3 or row[:3] == LEDGER_HEADER[:3]:
            continue
        timestamp, item_id, state = row[0], row[1].strip(), row[2].strip()
        if not item_id:
            continue
        try:
            state = LedgerState(state)
        except ValueError:
            continue
        error = row[3] if len(row) > 3 and row[3] else None
        entries.append(LedgerEntry(id=item_id, state=state, timestamp=timestamp, error=error))
    return entries


def latest_entries(entries: Iterable[LedgerEntry]) -> Dict[str, LedgerEntry]:
    """Collapse entries to the last one per id (file order wins)."""
    latest: Dict[str, LedgerEntry] = {}
    for entry in entries:
        latest[entry.id] = entry
    return latest


class ProgressLedger:
    """Owns the append-only progress log for one jurisdiction."""

    def __init__(
        self,
        path: str,
        persist_retries: int = 3,
        retry_delay: float = 0.2,
    ):
        """
        Initialize ledger.

        Args:
            path: Ledger file path
            persist_retries: Extra attempts for a failed append
            retry_delay: Seconds between append attempts
        """
        self.path = Path(path)
        self.persist_retries = persist_retries
        self.retry_delay = retry_delay
        self._lock = asyncio.Lock()
        self._appended = 0

    def init(self):
        """
        Create the ledger with a header if it does not exist yet.

        An existing ledger ending in a torn line is truncated back to its
        last complete line, so the next entry starts on a line of its own.
        """
        self.path.parent.mkdir(parents=True, exist_ok=True)
        if not self.path.exists():
            self._write_header()
            return

        with open(self.path, "rb") as f:
            data = f.read()
        if not data or data.endswith(b"\n"):
            return

        cut = data.rfind(b"\n") + 1
        logger.warning("Ledger %s ends in a partial line; dropping it", self.path)
        if cut == 0:
            self._write_header()
            return
        with open(self.path, "r+b") as f:
            f.truncate(cut)
            f.flush()
            os.fsync(f.fileno())

    def _write_header(self):
        with open(self.path, "w", encoding="utf-8", newline="") as f:
            csv.writer(f).writerow(LEDGER_HEADER)

    def _read_entries(self) -> List[LedgerEntry]:
        if not self.path.exists():
            return []
        with open(self.path, "rb") as f:
            data = f.read()
        # Cut the torn tail before decoding; it may end inside a multi-byte character
        data = data[:data.rfind(b"\n") + 1]
        return parse_ledger(data.decode("utf-8", errors="replace"))

    def load_entries(self) -> Dict[str, LedgerEntry]:
        """
        Reconstruct the current state of every id in the ledger.

        Returns:
            Dict of id -> latest LedgerEntry
        """
        return latest_entries(self._read_entries())

    def load_finished_ids(self) -> Set[str]:
        """
        Ids whose latest state is finished.

        In-progress ids with no later finished entry belong to a run that
        died mid-fetch and are not included, so they get fetched again.
        """
        return {
            item_id for item_id, entry in self.load_entries().items()
            if entry.state is LedgerState.FINISHED
        }

    def load_failed(self) -> Dict[str, str]:
        """
        Ids whose latest state is failed, with the recorded cause.

        Returns:
            Dict of id -> error detail
        """
        return {
            item_id: entry.error or ""
            for item_id, entry in self.load_entries().items()
            if entry.state is LedgerState.FAILED
        }

    async def mark_in_progress(self, item: WorkItem):
        await self._append(item.id, LedgerState.IN_PROGRESS)

    async def mark_finished(self, item: WorkItem):
        """
        Record a finished item.

        Once this returns, later runs will not fetch the item again.

        Raises:
            PersistenceError: If the append could not be made durable
        """
        await self._append(item.id, LedgerState.FINISHED, durable=True)

    async def mark_failed(self, item: WorkItem, reason: str):
        await self._append(item.id, LedgerState.FAILED, error=reason, durable=True)

    async def _append(
        self,
        item_id: str,
        state: LedgerState,
        error: Optional[str] = None,
        durable: bool = False,
    ):
        buf = io.StringIO()
        detail = " ".join((error or "").split())
        csv.writer(buf).writerow([_now(), item_id, state.value, detail])
        line = buf.getvalue()

        async with self._lock:
            last_error: Optional[OSError] = None
            for attempt in range(1, self.persist_retries + 2):
                try:
                    await asyncio.to_thread(self._write_line, line, durable)
                    self._appended += 1
                    return
                except OSError as e:
                    last_error = e
                    if is_store_fatal(e):
                        raise StoreUnavailableError(f"Ledger {self.path} unavailable: {e}") from e
                    logger.warning(
                        "Ledger append failed for %s (attempt %d/%d): %s",
                        item_id, attempt, self.persist_retries + 1, e,
                    )
                    if attempt <= self.persist_retries:
                        await asyncio.sleep(self.retry_delay)

            raise PersistenceError(
                f"Could not record {state.value} for {item_id} in {self.path}: {last_error}"
            ) from last_error

    def _write_line(self, line: str, durable: bool):
        with open(self.path, "a", encoding="utf-8", newline="") as f:
            f.write(line)
            f.flush()
            if durable:
                os.fsync(f.fileno())

    def reset(self) -> Optional[Path]:
        """
        Start a fresh ledger, keeping the old one as a timestamped backup.

        Returns:
            Backup path, or None if there was no ledger
        """
        backup_path = None
        if self.path.exists():
            timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
            backup_path = self.path.with_name(f"{self.path.stem}.reset.{timestamp}{self.path.suffix}")
            shutil.move(str(self.path), str(backup_path))
            logger.info("Backed up ledger before reset to %s", backup_path)
        self.init()
        return backup_path

    def get_stats(self) -> dict:
        """
        Get ledger statistics.

        Returns:
            Dict with counts per state and appends made by this process
        """
        counts = {state.value: 0 for state in LedgerState}
        for entry in self.load_entries().values():
            counts[entry.state.value] += 1
        counts["appended"] = self._appended
        return counts
