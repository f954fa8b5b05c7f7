# listing_watch/http_client.py
from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable, Iterable

import httpx
from bs4 import BeautifulSoup

from . import logging_bridge
from .profiles import RequestProfile, build_profile

LOG = logging.getLogger(__name__)

BOT_CHALLENGE_TITLES = frozenset({"ShieldSquare Captcha"})


class FetchFailure(Exception):
    """A page could not be fetched within the retry/timeout budget."""

    def __init__(self, url: str, reason: str) -> None:
        super().__init__(f"Failed to fetch {url}: {reason}")
        self.url = url
        self.reason = reason


class BotChallenge(Exception):
    """The site answered with its bot-challenge interstitial instead of listings."""


def page_title(html: str) -> str:
    soup = BeautifulSoup(html, "html.parser")
    tag = soup.find("title")
    return tag.get_text(strip=True) if tag else ""


def backoff_delay(failures: int) -> float:
    """Seconds to wait after the k-th failed attempt (1-indexed): 2**k."""
    return float(2**failures)


class ResilientFetcher:
    """
    One logical page fetch with bounded retries, exponential backoff and a
    wall-clock budget. Each attempt uses a fresh RequestProfile.

    `sleep` and `clock` are injectable so tests can observe the backoff
    schedule without waiting.
    """

    def __init__(
        self,
        client: httpx.AsyncClient | None = None,
        *,
        max_retries: int = 4,
        max_timeout: float = 60.0,
        request_timeout: float = 20.0,
        profile_factory: Callable[[], RequestProfile] = build_profile,
        challenge_titles: Iterable[str] = BOT_CHALLENGE_TITLES,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.max_retries = int(max_retries)
        self.max_timeout = float(max_timeout)
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(follow_redirects=True, timeout=request_timeout)
        self._profile_factory = profile_factory
        self._challenge_titles = frozenset(challenge_titles)
        self._sleep = sleep
        self._clock = clock

    async def __aenter__(self) -> ResilientFetcher:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()

    async def close(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def fetch(self, url: str) -> str:
        """
        Return the page body or raise FetchFailure.

        Attempts fail on transport errors, non-2xx statuses and bot-challenge
        pages; all three are retried the same way. The timeout budget is
        checked before every attempt and wins over any remaining retries.
        """
        started = self._clock()
        retries_left = self.max_retries

        while retries_left > 0:
            elapsed = self._clock() - started
            if elapsed > self.max_timeout:
                LOG.error("Maximum timeout reached for %s after %.1fs; aborting retries", url, elapsed)
                raise FetchFailure(url, "timeout")

            profile = self._profile_factory()
            try:
                return await self._attempt(url, profile)
            except httpx.InvalidURL as exc:
                # Malformed URL: every retry would fail the same way.
                raise FetchFailure(url, f"InvalidURL: {exc}") from exc
            except BotChallenge as exc:
                last_error = str(exc)
                logging_bridge.activity({
                    "component": "listing_watch.http_client",
                    "op": "bot_challenge",
                    "url": url,
                    "user_agent": profile.user_agent,
                })
                LOG.warning("Bot detection encountered for %s (agent: %s)", url, profile.user_agent)
            except httpx.HTTPError as exc:
                last_error = f"{type(exc).__name__}: {exc}"
                LOG.warning("Fetch attempt failed for %s: %s", url, last_error)

            retries_left -= 1
            if retries_left == 0:
                raise FetchFailure(url, last_error)

            delay = backoff_delay(self.max_retries - retries_left)
            LOG.info("Retrying %s (%d attempts left, waiting %.0fs)", url, retries_left, delay)
            await self._sleep(delay)

        raise FetchFailure(url, "no attempts allowed")

    async def _attempt(self, url: str, profile: RequestProfile) -> str:
        resp = await self._client.get(url, headers=profile.request_headers())
        # httpx raises on any non-2xx, including an unfollowed 3xx.
        resp.raise_for_status()

        body = resp.text
        title = page_title(body)
        LOG.debug("Page title for %s: %r", url, title)
        if title in self._challenge_titles:
            raise BotChallenge(f"Bot detection encountered, agent used: {profile.user_agent}")
        return body
