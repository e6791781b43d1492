"""
Inspection report downloader.
Saves PDF documents next to the CSV output, one folder per facility.
"""

import logging
import os
from pathlib import Path
from typing import Optional

import httpx

from .errors import HttpStatusError
from .http_client import parse_retry_after
from .utils import filename_from_disposition, filename_from_url, sanitize_filename

logger = logging.getLogger(__name__)


class ReportDownloader:
    """Downloads report documents; an existing file is never fetched twice."""

    def __init__(self, client: httpx.AsyncClient, reports_dir: str):
        self.client = client
        self.reports_dir = Path(reports_dir)
        self.downloaded = 0
        self.existing = 0
        self.failed = 0

    def _target(self, subdir: str, name: str) -> Path:
        filename = sanitize_filename(name)
        if not Path(filename).suffix:
            filename = f"{filename}.pdf"
        return self.reports_dir / sanitize_filename(subdir) / filename

    async def download(self, url: str, subdir: str, fallback_name: str) -> Optional[Path]:
        """
        Download one document.

        Args:
            url: Document URL
            subdir: Folder under reports_dir (usually the facility id)
            fallback_name: Filename when the response does not name the file

        Returns:
            Path of the file on disk, or None if the download failed
        """
        url_name = filename_from_url(url)
        if url_name and Path(url_name).suffix.lower() == ".pdf":
            known = self._target(subdir, url_name)
            if known.exists():
                self.existing += 1
                return known

        try:
            async with self.client.stream("GET", url) as response:
                if not response.is_success:
                    raise HttpStatusError(
                        response.status_code, url,
                        retry_after=parse_retry_after(response.headers.get("Retry-After")),
                    )
                name = (
                    filename_from_disposition(response.headers.get("Content-Disposition"))
                    or url_name
                    or fallback_name
                )
                target = self._target(subdir, name)
                if target.exists():
                    self.existing += 1
                    return target

                target.parent.mkdir(parents=True, exist_ok=True)
                temp_file = target.with_name(f".{target.name}.part")
                try:
                    with open(temp_file, "wb") as f:
                        async for chunk in response.aiter_bytes():
                            f.write(chunk)
                    os.replace(temp_file, target)
                finally:
                    temp_file.unlink(missing_ok=True)
        except (HttpStatusError, httpx.HTTPError, OSError) as e:
            self.failed += 1
            logger.warning("Failed to download report %s: %s", url, e)
            return None

        self.downloaded += 1
        return target

    def get_stats(self) -> dict:
        return {
            'downloaded': self.downloaded,
            'existing': self.existing,
            'failed': self.failed,
        }
