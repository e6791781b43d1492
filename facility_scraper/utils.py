"""
Shared utility functions for the scrapers.
"""

import re
from typing import Any, Iterable, Optional
from urllib.parse import unquote, urlparse


def sanitize_filename(name: str, max_length: int = 150) -> str:
    """
    Sanitize string for use as filename.

    Args:
        name: Raw name (e.g., from Content-Disposition)
        max_length: Maximum length of the result

    Returns:
        Filesystem-safe name, "unknown" if nothing usable remains
    """
    if not name:
        return "unknown"
    # Remove invalid characters for Windows and Unix
    name = re.sub(r'[<>:"/\\|?*]', '_', name)
    # Remove control characters (0-31)
    name = ''.join(c for c in name if ord(c) > 31)
    name = re.sub(r'\s+', '_', name.strip())
    # Remove trailing dots and spaces (invalid on Windows)
    name = name.rstrip('. ')
    return name[:max_length] if name else "unknown"


def filename_from_url(url: str) -> Optional[str]:
    """Last path segment of a URL, or None if it has none."""
    path = unquote(urlparse(url).path)
    segment = path.rstrip('/').rsplit('/', 1)[-1]
    return segment or None


def filename_from_disposition(header: Optional[str]) -> Optional[str]:
    """Extract the filename from a Content-Disposition header."""
    if not header:
        return None
    match = re.search(r"filename\*=(?:UTF-8'')?([^;]+)", header, re.IGNORECASE)
    if match:
        return unquote(match.group(1).strip().strip('"\''))
    match = re.search(r'filename=["\']?([^"\';\n]+)', header, re.IGNORECASE)
    return match.group(1).strip() if match else None


def format_value(value: Any) -> str:
    """
    Render a record value as a CSV cell.

    None becomes "", booleans "Yes"/"No", lists are joined with "; ".
    """
    if value is None:
        return ""
    if isinstance(value, bool):
        return "Yes" if value else "No"
    if isinstance(value, (list, tuple)):
        return "; ".join(format_value(v) for v in value)
    return str(value)


def parse_int(text: Optional[str]) -> Optional[int]:
    """First integer in a string, or None."""
    if not text:
        return None
    match = re.search(r'(\d+)', text)
    return int(match.group(1)) if match else None


def clean_text(text: Optional[str]) -> str:
    """Collapse runs of whitespace."""
    return re.sub(r'\s+', ' ', text or '').strip()


def join_labels(labels: Iterable[str], sep: str = ", ") -> str:
    return sep.join(label for label in labels if label)
