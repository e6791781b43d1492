"""
HTTP helpers built on httpx.

Each run constructs its own AsyncClient through create_client(); nothing
here holds module-level connection state.
"""

import json
from email.utils import parsedate_to_datetime
from datetime import datetime, timezone
from typing import Any, Dict, Optional

import httpx

from .config import HttpConfig
from .errors import HttpStatusError, ParseError


def create_client(
    config: Optional[HttpConfig] = None,
    base_url: str = "",
    headers: Optional[Dict[str, str]] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> httpx.AsyncClient:
    """
    Create an async HTTP client for one crawl run.

    Args:
        config: HttpConfig instance, uses defaults if None
        base_url: Prefix for relative request URLs
        headers: Extra headers (jurisdiction specific)
        transport: Optional transport override (tests use httpx.MockTransport)

    Returns:
        Configured httpx.AsyncClient
    """
    config = config or HttpConfig()
    merged = {
        "User-Agent": config.user_agent,
        "Accept-Language": config.accept_language,
    }
    if headers:
        merged.update(headers)

    return httpx.AsyncClient(
        base_url=base_url,
        headers=merged,
        timeout=httpx.Timeout(config.timeout),
        follow_redirects=True,
        transport=transport,
    )


def parse_retry_after(value: Optional[str]) -> Optional[float]:
    """Parse a Retry-After header (seconds or HTTP date) into seconds."""
    if not value:
        return None
    value = value.strip()
    if value.isdigit():
        return float(value)
    try:
        when = parsedate_to_datetime(value)
    except (TypeError, ValueError):
        return None
    if when.tzinfo is None:
        when = when.replace(tzinfo=timezone.utc)
    return max(0.0, (when - datetime.now(timezone.utc)).total_seconds())


def check_status(response: httpx.Response) -> httpx.Response:
    """Raise HttpStatusError for any non-2xx response."""
    if response.is_success:
        return response
    raise HttpStatusError(
        response.status_code,
        str(response.request.url),
        retry_after=parse_retry_after(response.headers.get("Retry-After")),
    )


async def get_json(client: httpx.AsyncClient, url: str, **kwargs) -> Any:
    """GET a URL and decode its JSON body."""
    response = check_status(await client.get(url, **kwargs))
    try:
        return response.json()
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        raise ParseError(f"Invalid JSON from {url}: {e}") from e


async def get_text(client: httpx.AsyncClient, url: str, **kwargs) -> str:
    """GET a URL and return its decoded body."""
    response = check_status(await client.get(url, **kwargs))
    return response.text
