"""
Engine for running listing scrapes per topic, detecting new ads and handing
them to the export sink.

Features:
  - Bounded concurrency across topics (asyncio.Semaphore admission gate)
  - Sequential pagination within a topic
  - Seen-set dedupe via `SeenSetStore.reconcile`
  - Per-topic failure isolation (outcomes, not exceptions, are joined)
  - Dependency injection for testability (fetcher_factory, extractor, store, ...)
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable, Sequence
from pathlib import Path
from typing import Any, Protocol

from . import logging_bridge
from .ci_flag import write_signal
from .config import ConfigurationError, Settings, WatchConfig, load_watch_config
from .export import write_workbook
from .extractor import extract_listings
from .http_client import ResilientFetcher
from .models import AdRecord, Topic, TopicOutcome
from .paginator import PageExtractor, walk
from .store import SeenSetStore

log = logging.getLogger(__name__)


class TopicFetcher(Protocol):
    async def fetch(self, url: str) -> str: ...

    async def close(self) -> None: ...


Exporter = Callable[[Sequence[AdRecord], str, str], Path]


# =============================================================================
# TOPIC SCHEDULER
# =============================================================================
class TopicScheduler:
    """
    Drives each selected topic through walk -> reconcile -> export -> signal.

    At most `settings.max_concurrency` topics are in flight at once; the rest
    wait for a slot. A topic that fails is logged and reported as a failed
    TopicOutcome; its siblings are not cancelled.
    """

    def __init__(
        self,
        config: WatchConfig | None,
        settings: Settings,
        *,
        fetcher_factory: Callable[[], TopicFetcher] | None = None,
        extractor: PageExtractor = extract_listings,
        store: SeenSetStore | None = None,
        exporter: Exporter = write_workbook,
        signal: Callable[[str], Any] = write_signal,
    ) -> None:
        if config is None:
            raise ConfigurationError("Configuration not found")
        self.config = config
        self.settings = settings
        self._fetcher_factory = fetcher_factory or self._default_fetcher
        self._extractor = extractor
        self._store = store or SeenSetStore(settings.data_dir, missing_id_policy=settings.missing_id_policy)
        self._exporter = exporter
        self._signal = signal

        self.in_flight = 0
        self.peak_in_flight = 0

    # -------------------------------------------------------------------------
    # Selection
    # -------------------------------------------------------------------------
    def resolve_topics(self, user_id: str, topic_filter: str | None = None) -> list[Topic]:
        user = self.config.user(user_id)
        if topic_filter:
            topic = user.find(topic_filter)
            if topic is None:
                raise ConfigurationError(f"Topic {topic_filter!r} not found for user {user_id!r}")
            if not topic.enabled:
                raise ConfigurationError(f"Topic {topic_filter!r} is disabled for user {user_id!r}")
            return [topic]
        return user.enabled_topics()

    # -------------------------------------------------------------------------
    # Run
    # -------------------------------------------------------------------------
    async def run(self, user_id: str, topic_filter: str | None = None) -> list[TopicOutcome]:
        topics = self.resolve_topics(user_id, topic_filter)
        gate = asyncio.Semaphore(self.settings.max_concurrency)

        for t in topics:
            log.info('Adding topic "%s" to scraping queue', t.name)

        outcomes = await asyncio.gather(*(self._run_topic(t, gate) for t in topics))
        log.info("Completed all scraping tasks for %s (%d topics)", user_id, len(outcomes))
        return list(outcomes)

    async def _run_topic(self, topic: Topic, gate: asyncio.Semaphore) -> TopicOutcome:
        async with gate:
            self.in_flight += 1
            self.peak_in_flight = max(self.peak_in_flight, self.in_flight)
            t0 = time.perf_counter_ns()
            try:
                outcome = await self._scrape(topic)
            except Exception as e:
                logging_bridge.error({
                    "component": "listing_watch.engine",
                    "op": "topic_failed",
                    "topic": topic.name,
                    "error": repr(e),
                })
                log.error("Error scraping topic %s: %s", topic.name, e)
                outcome = TopicOutcome(topic=topic.name, ok=False, error=str(e))
            finally:
                self.in_flight -= 1

        logging_bridge.activity({
            "component": "listing_watch.engine",
            "op": "topic_done",
            "topic": topic.name,
            "ok": outcome.ok,
            "scraped": outcome.scraped,
            "new": len(outcome.new_records),
            "duration_us": int((time.perf_counter_ns() - t0) // 1000),
        })
        return outcome

    async def _scrape(self, topic: Topic) -> TopicOutcome:
        log.info("Starting scrape for topic: %s", topic.name)
        fetcher = self._fetcher_factory()
        try:
            records = await walk(topic.source_url, fetcher, self._extractor, max_pages=self.settings.max_pages)
        finally:
            await fetcher.close()

        # Persisted before any export so a failed export never re-reports ads.
        new_items = self._store.reconcile(topic.name, records)
        if not new_items:
            log.info("No new items found for topic: %s", topic.name)
            return TopicOutcome(topic=topic.name, ok=True, scraped=len(records))

        log.info("Found %d new items for topic: %s", len(new_items), topic.name)
        path: Path | None = None
        if self.settings.export_enabled:
            path = self._exporter(new_items, topic.name, self.settings.export_dir)
        self._signal(self.settings.signal_path)
        logging_bridge.activity({
            "component": "listing_watch.engine",
            "op": "new_items",
            "topic": topic.name,
            "count": len(new_items),
            "export_path": str(path) if path else None,
            "signal_path": self.settings.signal_path,
        })

        return TopicOutcome(
            topic=topic.name,
            ok=True,
            new_records=tuple(new_items),
            scraped=len(records),
            export_path=str(path) if path else None,
        )

    def _default_fetcher(self) -> ResilientFetcher:
        s = self.settings
        return ResilientFetcher(
            max_retries=s.max_retries,
            max_timeout=s.max_timeout_sec,
            request_timeout=s.request_timeout_sec,
        )


# =============================================================================
# MAIN ORCHESTRATOR (sync entry for runner/CLI)
# =============================================================================
def run_once(settings: Settings, config: WatchConfig | None = None, **collaborators: Any) -> dict[str, Any]:
    """
    Run one complete cycle for settings.user (optionally a single topic).

    Args:
        settings: validated runtime settings.
        config: watch config; loaded from settings.watch_config_path if omitted.
        collaborators: forwarded to TopicScheduler (fetcher_factory, store, ...).

    Returns:
        meta dict with per-topic outcomes and totals.
    """
    start_ns = time.perf_counter_ns()
    if config is None:
        config = load_watch_config(settings.watch_config_path)

    scheduler = TopicScheduler(config, settings, **collaborators)
    outcomes = asyncio.run(scheduler.run(settings.user, settings.topic))

    by_topic = {o.topic: _outcome_meta(o) for o in outcomes}
    results = [o.as_result() for o in outcomes if o.ok]
    new_total = sum(len(r.new_records) for r in results)
    failed = sorted(o.topic for o in outcomes if not o.ok)
    total_us = int((time.perf_counter_ns() - start_ns) // 1000)

    logging_bridge.activity({
        "component": "listing_watch.engine",
        "op": "summary",
        "user": settings.user,
        "topic_filter": settings.topic,
        "new_by_topic": {r.topic: len(r.new_records) for r in results},
        "failed": failed,
        "peak_in_flight": scheduler.peak_in_flight,
        "total_us": total_us,
    })

    return {
        "message": _summary_message(outcomes, settings.user),
        "user": settings.user,
        "new_total": new_total,
        "failed": failed,
        "topics": by_topic,
        "signal_written": new_total > 0,
        "durations_us": {"_total_us": total_us},
    }


# =============================================================================
# HELPERS
# =============================================================================
def _outcome_meta(o: TopicOutcome) -> dict[str, Any]:
    if not o.ok:
        return {"status": "failed", "error": o.error}
    return {
        "status": "ok",
        "scraped": o.scraped,
        "new": len(o.new_records),
        "export_path": o.export_path,
    }


def _summary_message(outcomes: list[TopicOutcome], user: str) -> str:
    """e.g. "3 new ads across 2 topics for default_user (1 failed)" """
    total = sum(len(o.new_records) for o in outcomes)
    with_new = len([o for o in outcomes if o.new_records])
    failed = len([o for o in outcomes if not o.ok])
    msg = f"{total} new ads across {with_new} topics for {user}"
    return f"{msg} ({failed} failed)" if failed else msg
