"""
Massachusetts assisted living residences.
HTML listing and profile pages on mass.gov.
"""

import json
import logging
import re
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import httpx
from bs4 import BeautifulSoup

from ..http_client import get_text
from ..models import WorkItem
from ..utils import clean_text, parse_int
from .base import Jurisdiction

logger = logging.getLogger(__name__)

LISTING_PATH = "/assisted-living-residences/locations"
DEFAULT_MAX_PAGES = 60

MA_COLUMNS = [
    "id", "node_id", "name", "address", "street_address", "city", "state",
    "postal_code", "phone", "fax", "email", "business_hours", "total_units",
    "traditional_units", "special_care_units", "low_income_options",
    "year_opened", "website", "nonprofit_ownership",
    "continuing_care_retirement_community", "co_located_with_nursing_home",
    "latitude", "longitude", "scraped_at",
]

LEAFLET_RE = re.compile(r"ma\.leafletMapData\.push\((\{.*?\})\);", re.DOTALL)
NODE_ID_RE = re.compile(r'"entityIdentifier"\s*:\s*"(\d+)"')
YEAR_OPENED_RE = re.compile(r"opened in (\d{4})", re.IGNORECASE)


def parse_yes_no(text: str) -> Optional[bool]:
    lowered = text.lower()
    if "yes" in lowered:
        return True
    if "no" in lowered:
        return False
    return None


def parse_flag(text: str, keyword: str) -> Optional[bool]:
    """Read "<keyword>: Yes|No" out of free text."""
    match = re.search(rf"{re.escape(keyword)}:\s*(yes|no)", text, re.IGNORECASE)
    if not match:
        return None
    return match.group(1).lower() == "yes"


def parse_listing_page(html: str, base_url: str) -> List[WorkItem]:
    """
    Parse one listing page into work items.

    The profile URL doubles as the item id.
    """
    soup = BeautifulSoup(html, "html.parser")
    items = []

    for entry in soup.select("li.ma__image-promo"):
        link = entry.select_one(".ma__image-promo__title a")
        if link is None or not link.get("href"):
            continue
        name = clean_text(link.get_text())
        href = link["href"]
        profile_url = f"{base_url}{href}" if href.startswith("/") else href

        location = entry.select_one(".ma__image-promo__location")
        if location is not None:
            for span in location.find_all("span"):
                span.decompose()
        phone = entry.select_one(".ma__image-promo__phone-link")
        hours = entry.select_one(".ma__image-promo__label--hours")

        attrs: Dict[str, Any] = {
            "name": name,
            "profile_url": profile_url,
            "address": clean_text(location.get_text()) if location else "",
            "phone": clean_text(phone.get_text()) if phone else "",
            "business_hours": clean_text(hours.get_text()) if hours else "",
            "total_units": None,
            "traditional_units": None,
            "special_care_units": None,
            "low_income_options": None,
        }

        description = entry.select_one(".ma__image-promo__description .ma__rich-text")
        if description is not None:
            for line in description.get_text("\n").split("\n"):
                lowered = line.lower()
                if "total number of units" in lowered:
                    attrs["total_units"] = parse_int(line)
                elif "number of traditional units" in lowered:
                    attrs["traditional_units"] = parse_int(line)
                elif "number of special care units" in lowered:
                    attrs["special_care_units"] = parse_int(line)
                elif "low income options" in lowered:
                    attrs["low_income_options"] = parse_yes_no(line)

        items.append(WorkItem(id=profile_url, attrs=attrs))

    return items


def extract_leaflet_marker(html: str) -> Dict[str, Any]:
    """First marker of the embedded leaflet map data, or {}."""
    match = LEAFLET_RE.search(html)
    if not match:
        return {}
    try:
        data = json.loads(match.group(1))
    except json.JSONDecodeError:
        return {}
    markers = data.get("markers") or []
    return markers[0] if markers else {}


def extract_place(soup: BeautifulSoup) -> Dict[str, Any]:
    """The schema.org Place from the page's JSON-LD, or {}."""
    for script in soup.find_all("script", type="application/ld+json"):
        try:
            data = json.loads(script.string or "")
        except json.JSONDecodeError:
            continue
        candidates = data.get("@graph", [data]) if isinstance(data, dict) else data
        for candidate in candidates:
            if isinstance(candidate, dict) and candidate.get("@type") == "Place":
                return candidate
    return {}


def parse_profile_page(html: str) -> Dict[str, Any]:
    soup = BeautifulSoup(html, "html.parser")

    marker = extract_leaflet_marker(html)
    info = marker.get("infoWindow") or {}
    position = marker.get("position") or {}

    place = extract_place(soup)
    addresses = place.get("address") or [{}]
    address = addresses[0] if isinstance(addresses, list) else addresses

    more_info_text = ""
    website = None
    heading = soup.find(id="more-info")
    if heading is not None:
        container = heading.find_parent(class_="ma__rich-text__container")
        if container is not None:
            more_info_text = container.get_text(" ")
            for link in container.find_all("a", href=True):
                href = link["href"]
                if href.startswith("http") and "mass.gov" not in href:
                    website = href
                    break

    node_match = NODE_ID_RE.search(html)
    year_match = YEAR_OPENED_RE.search(more_info_text)

    return {
        "node_id": node_match.group(1) if node_match else None,
        "fax": info.get("fax") or None,
        "email": info.get("email") or None,
        "latitude": position.get("lat"),
        "longitude": position.get("lng"),
        "year_opened": int(year_match.group(1)) if year_match else None,
        "website": website,
        "nonprofit_ownership": parse_flag(more_info_text, "Nonprofit Ownership"),
        "continuing_care_retirement_community": parse_flag(
            more_info_text, "Part of a Continuing Care Retirement Community"
        ),
        "co_located_with_nursing_home": parse_flag(more_info_text, "Co-Located with a Nursing Home"),
        "street_address": address.get("streetAddress"),
        "city": address.get("addressLocality"),
        "state": address.get("addressRegion"),
        "postal_code": address.get("postalCode"),
        "scraped_at": datetime.now(timezone.utc).isoformat(),
    }


class Massachusetts(Jurisdiction):
    code = "ma"
    name = "Massachusetts Assisted Living Residences"
    base_url = "https://www.mass.gov"
    columns = MA_COLUMNS

    def default_headers(self) -> Dict[str, str]:
        return {"Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8"}

    async def discover(self, client: httpx.AsyncClient) -> List[WorkItem]:
        max_pages = self.max_pages or DEFAULT_MAX_PAGES
        items: List[WorkItem] = []

        for page in range(max_pages):
            html = await get_text(client, LISTING_PATH, params={"page": page})
            page_items = parse_listing_page(html, self.base_url)
            if not page_items:
                logger.info("Listing page %d is empty, stopping discovery", page)
                break
            logger.info("  Found %d facilities on page %d", len(page_items), page)
            items.extend(page_items)

        logger.info("Total facilities discovered: %d", len(items))
        return items

    async def fetch_detail(self, client: httpx.AsyncClient, item: WorkItem) -> Dict[str, Any]:
        html = await get_text(client, item.id)
        return parse_profile_page(html)
