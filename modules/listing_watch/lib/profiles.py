from __future__ import annotations

import random
from collections.abc import Mapping
from dataclasses import dataclass, field
from types import MappingProxyType

SITE_ORIGIN = "https://www.yad2.co.il"

USER_AGENTS: tuple[str, ...] = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) "
    "Chrome/91.0.4472.124 Safari/537.36",
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 (KHTML, like Gecko) "
    "Chrome/92.0.4515.107 Safari/537.36",
    "Mozilla/5.0 (iPhone; CPU iPhone OS 14_6 like Mac OS X) AppleWebKit/605.1.15 (KHTML, like Gecko) "
    "Version/14.0 Mobile/15E148 Safari/604.1",
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) "
    "Chrome/135.0.0.0 Safari/537.36",
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 (KHTML, like Gecko) "
    "Chrome/131.0.0.0 Safari/537.36",
)

_BASE_HEADERS = {
    "Referer": f"{SITE_ORIGIN}/",
    "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,image/avif,image/webp,image/apng,*/*;q=0.8",
    "Accept-Language": "en-US,en;q=0.9,he;q=0.8",
    "Cache-Control": "max-age=0",
    "Connection": "keep-alive",
    "DNT": "1",
    "Sec-Fetch-Dest": "document",
    "Sec-Fetch-Mode": "navigate",
}

_BASE_COOKIES = {
    "__ssds": "3",
    "y2018-2-cohort": "88",
    "use_elastic_search": "1",
    "abTestKey": "2",
    "cohortGroup": "D",
}


@dataclass(frozen=True)
class RequestProfile:
    """Outbound identity for a single fetch attempt. Discarded after use."""

    user_agent: str
    headers: Mapping[str, str] = field(default_factory=dict)
    cookies: Mapping[str, str] = field(default_factory=dict)

    def request_headers(self) -> dict[str, str]:
        """Headers as sent on the wire, cookies folded into a Cookie header."""
        out = dict(self.headers)
        if self.cookies:
            out["Cookie"] = "; ".join(f"{k}={v}" for k, v in self.cookies.items())
        return out


def build_profile(rng: random.Random | None = None) -> RequestProfile:
    """Pick a user agent at random; no state carries over between calls."""
    user_agent = (rng or random).choice(USER_AGENTS)
    headers = {"User-Agent": user_agent, **_BASE_HEADERS}
    return RequestProfile(
        user_agent=user_agent,
        headers=MappingProxyType(headers),
        cookies=MappingProxyType(dict(_BASE_COOKIES)),
    )
