from __future__ import annotations

import logging
from typing import Protocol

from .models import AdRecord

log = logging.getLogger(__name__)


class PageFetcher(Protocol):
    async def fetch(self, url: str) -> str: ...


class PageExtractor(Protocol):
    def __call__(self, body: str, *, page_url: str | None = None) -> list[AdRecord]: ...


def page_url(base_url: str, page: int) -> str:
    separator = "&" if "?" in base_url else "?"
    return f"{base_url}{separator}page={page}"


async def walk(
    base_url: str,
    fetcher: PageFetcher,
    extractor: PageExtractor,
    *,
    max_pages: int = 0,
) -> list[AdRecord]:
    """
    Fetch pages 1, 2, ... until one yields no records and return every record
    seen, in page order.

    An empty first page is a normal result (the topic has no ads right now).
    FetchFailure from any page propagates; nothing partial is returned.
    `max_pages` > 0 caps the number of non-empty pages walked.
    """
    records: list[AdRecord] = []
    page = 1

    while True:
        url = page_url(base_url, page)
        log.info("Scraping page %d from URL: %s", page, url)
        body = await fetcher.fetch(url)
        page_records = extractor(body, page_url=url)
        if not page_records:
            break

        records.extend(page_records)
        log.debug("page %d: %d ads", page, len(page_records))
        if max_pages and page >= max_pages:
            log.warning("Stopping at max_pages=%d for %s", max_pages, base_url)
            break
        page += 1

    log.info("Total ads scraped from %s: %d", base_url, len(records))
    return records
