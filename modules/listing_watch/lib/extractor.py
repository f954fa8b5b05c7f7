# listing_watch/extractor.py
"""
Listing-page extractor.

Finds every feed item on a results page via a fixed structural marker and
maps it to an AdRecord. Missing sub-elements give empty strings; only the
absence of any item marker means "no listings on this page".

Structure lines look like "3 חדרים • קומה 2 • 85 מ"ר"; floor, rooms and area
are pulled out with the patterns below.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Sequence
from urllib.parse import urljoin, urlparse

from bs4 import BeautifulSoup, Tag

from .models import AdRecord
from .profiles import SITE_ORIGIN

log = logging.getLogger(__name__)

ITEM_SELECTORS: tuple[str, ...] = ("[data-testid='item-basic']",)

_FLOOR_RE = re.compile(r"קומה\s*(\d+)")
_ROOMS_RE = re.compile(r"(\d+(?:\.5)?)\s*חדרים")
_AREA_RE = re.compile(r'(\d+)\s*מ"ר')


def parse_structure(line: str) -> tuple[str, str, str]:
    """Return (floor, rooms, area) from a structure line; "" for each miss."""
    text = (line or "").lower()
    floor = m.group(1) if (m := _FLOOR_RE.search(text)) else ""
    rooms = m.group(1) if (m := _ROOMS_RE.search(text)) else ""
    area = m.group(1) if (m := _AREA_RE.search(text)) else ""
    return floor, rooms, area


def extract_listings(
    body: str,
    *,
    page_url: str | None = None,
    selectors: Sequence[str] = ITEM_SELECTORS,
) -> list[AdRecord]:
    """
    Parse one results page. Returns [] when no item marker is present, which
    the pagination walker treats as the end of the result set.
    """
    soup = BeautifulSoup(body, "html.parser")

    items: list[Tag] = []
    for selector in selectors:
        items = soup.select(selector)
        if items:
            break

    if not items:
        log.info("No more ads found - reached end of listings")
        return []

    origin = _origin(page_url)
    records = [_parse_item(item, origin) for item in items]
    log.debug("Extracted details for %d ads", len(records))
    return records


def _parse_item(item: Tag, origin: str) -> AdRecord:
    image = item.select_one("img[data-testid='image']")
    headings = item.select("[class^=item-data-content_heading]")
    info_lines = item.select("[class^=item-data-content_itemInfoLine]")
    price = item.select_one("span[data-testid='price']")
    link = item.select_one("a[class^=item-layout_itemLink]")

    structure = _text(info_lines[1]) if len(info_lines) > 1 else ""
    floor, rooms, area = parse_structure(structure)

    href = str(link.get("href") or "") if link else ""
    return AdRecord(
        identifier=str(image.get("src") or "") if image else "",
        link=urljoin(origin, href) if href else "",
        address=_text(headings[1]) if len(headings) > 1 else "",
        description=_text(info_lines[0]) if info_lines else "",
        floor=floor,
        rooms=rooms,
        area=area,
        price=_text(price),
        structure=structure,
    )


def _text(node: Tag | None) -> str:
    return node.get_text().strip() if node is not None else ""


def _origin(page_url: str | None) -> str:
    if page_url:
        parsed = urlparse(page_url)
        if parsed.scheme and parsed.netloc:
            return f"{parsed.scheme}://{parsed.netloc}"
    return SITE_ORIGIN
