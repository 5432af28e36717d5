"""Query-level pipeline: navigate, scroll, parse, enrich, validate, de-duplicate."""

from __future__ import annotations

import asyncio
import logging
import random
from typing import List, Optional, Sequence, Tuple
from urllib.parse import quote

from harvester.core.blocking import check_for_block
from harvester.core.config import ScrapeOptions, get_settings
from harvester.core.dedupe import Deduplicator
from harvester.core.enrichment import DEFAULT_JITTER, EnrichmentScheduler
from harvester.core.interceptor import ResponseInterceptor
from harvester.core.models import BatchResult, BusinessRecord, HarvestSession, ScrapeResult
from harvester.core.parser import RecordParser
from harvester.core.retry import with_retry
from harvester.core.scroll import ScrollHarvester
from harvester.core.surface import (
    BrowserSurfaceFactory,
    NavigationTimeout,
    SurfaceFactory,
    navigate_with_fallback,
)
from harvester.etl.transform import build_records

logger = logging.getLogger(__name__)

MAPS_SEARCH_PREFIX = "https://www.google.com/maps/search/"
FEED_SELECTOR = 'div[role="feed"], div[role="article"]'
FEED_TIMEOUT_MS = 15000
PAGE_TIMEOUT_MS = 45000
PAGE_HTML_JS = "() => document.documentElement.outerHTML"
SETTLE_RANGE = (1.0, 1.5)


def build_search_url(query: str) -> str:
    query = (query or "").strip()
    if not query:
        raise ValueError("Query must be provided")
    if query.startswith(MAPS_SEARCH_PREFIX):
        return query
    return f"{MAPS_SEARCH_PREFIX}{quote(query)}/"


class QueryPipeline:
    """Runs harvest attempts for single queries with the configured components."""

    def __init__(
        self,
        options: ScrapeOptions,
        *,
        scroller: Optional[ScrollHarvester] = None,
        parser: Optional[RecordParser] = None,
        settle: Tuple[float, float] = SETTLE_RANGE,
        enrichment_jitter: Tuple[float, float] = DEFAULT_JITTER,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.options = options
        self.logger = logger or logging.getLogger(__name__)
        self.scroller = scroller or ScrollHarvester(logger=self.logger)
        self.parser = parser or RecordParser(logger=self.logger)
        self.settle = settle
        self.enrichment_jitter = enrichment_jitter

    async def harvest_once(self, query: str, surface_factory: SurfaceFactory) -> List[BusinessRecord]:
        """One attempt: every surface it opens is closed before it returns or raises."""
        url = build_search_url(query)
        session = HarvestSession(query=query)
        self.logger.info("Scraping Google Maps: %s", url)

        surface = await surface_factory()
        try:
            interceptor = ResponseInterceptor(session, logger=self.logger)
            await interceptor.attach(surface)
            try:
                await navigate_with_fallback(surface, url, primary="load", timeout_ms=PAGE_TIMEOUT_MS, log=self.logger)
            except NavigationTimeout as exc:
                self.logger.warning("Navigation issue: %s. Continuing with partial load...", exc)
            if not await surface.wait_for(FEED_SELECTOR, FEED_TIMEOUT_MS):
                self.logger.warning("Feed selector not found, continuing anyway...")
            await check_for_block(surface, self.options.screenshot_dir, label="search_blocked")

            outcome = await self.scroller.harvest(surface, self.options.max_results, session)
            self.logger.info("Scroll finished with %s listings (%s)", outcome.count, outcome.reason)
            await asyncio.sleep(random.uniform(*self.settle))

            await interceptor.snapshot_shim(surface)
            html = await surface.evaluate(PAGE_HTML_JS) or ""
            session.listings = self.parser.parse(session.captures, html)[: self.options.max_results]
        finally:
            await surface.close()

        scheduler = EnrichmentScheduler(
            surface_factory,
            concurrency=self.options.enrichment_limit,
            include_photos=self.options.include_photos,
            jitter=self.enrichment_jitter,
            screenshot_dir=self.options.screenshot_dir,
            logger=self.logger,
        )
        listings = await scheduler.enrich(session.listings)
        records = build_records(listings)
        self.logger.info("Successfully scraped %s items for %s", len(records), query)
        return records

    async def _attempt(self, query: str, surface_factory: Optional[SurfaceFactory]) -> List[BusinessRecord]:
        if surface_factory is not None:
            return await self.harvest_once(query, surface_factory)
        async with BrowserSurfaceFactory(headless=self.options.headless) as factory:
            return await self.harvest_once(query, factory)

    async def run(self, query: str, surface_factory: Optional[SurfaceFactory] = None) -> ScrapeResult:
        initial_delay = random.uniform(self.options.delay_min_ms, self.options.delay_max_ms) / 1000
        try:
            records = await with_retry(
                lambda: self._attempt(query, surface_factory),
                self.options.retries,
                initial_delay,
                log=self.logger,
            )
        except Exception as exc:  # noqa: BLE001
            self.logger.error("Scraping error for %s: %s", query, exc)
            records = []

        deduped = Deduplicator(logger=self.logger).dedupe(records)
        self.logger.info(
            "Scraping complete for %s: %s new records, %s duplicates",
            query,
            len(deduped.kept),
            deduped.duplicate_count,
        )
        return ScrapeResult(
            records=deduped.kept,
            total_records=len(deduped.kept),
            new_records=len(deduped.kept),
            duplicates_skipped=deduped.duplicate_count,
        )


async def scrape_query(
    query: str,
    options: Optional[ScrapeOptions] = None,
    *,
    surface_factory: Optional[SurfaceFactory] = None,
    pipeline: Optional[QueryPipeline] = None,
) -> ScrapeResult:
    """Harvest one query. Never raises for harvest failures; an exhausted query yields no records."""
    build_search_url(query)
    pipeline = pipeline or QueryPipeline(options or ScrapeOptions.from_settings(get_settings()))
    return await pipeline.run(query, surface_factory)


async def scrape_many(
    queries: Sequence[str],
    options: Optional[ScrapeOptions] = None,
    *,
    surface_factory: Optional[SurfaceFactory] = None,
    pipeline: Optional[QueryPipeline] = None,
) -> BatchResult:
    """Harvest queries with bounded fan-out, then merge them into one master set.

    Repeated queries are harvested once; results are keyed by query.
    """
    options = options or ScrapeOptions.from_settings(get_settings())
    pipeline = pipeline or QueryPipeline(options)
    unique = list(dict.fromkeys(queries))
    if len(unique) < len(queries):
        logger.info("Ignoring %s repeated queries", len(queries) - len(unique))
    queries = unique
    semaphore = asyncio.Semaphore(max(1, options.parallel_limit))
    total = len(queries)

    async def _run(index: int, query: str) -> ScrapeResult:
        async with semaphore:
            logger.info("Processing query %s/%s: %s", index, total, query)
            return await pipeline.run(query, surface_factory)

    outcomes = await asyncio.gather(
        *(_run(index, query) for index, query in enumerate(queries, 1)),
        return_exceptions=True,
    )

    batch = BatchResult()
    for query, outcome in zip(queries, outcomes):
        if isinstance(outcome, BaseException):
            logger.error("Query %s failed: %s", query, outcome)
            outcome = ScrapeResult()
        batch.results[query] = outcome

    # Only after every session has finished.
    master = Deduplicator()
    kept: List[BusinessRecord] = []
    duplicates = 0
    for result in batch.results.values():
        merged = master.dedupe(result.records)
        kept.extend(merged.kept)
        duplicates += merged.duplicate_count

    batch.master = ScrapeResult(
        records=kept,
        total_records=len(kept),
        new_records=len(kept),
        duplicates_skipped=duplicates,
    )
    logger.info("Batch complete: %s unique records across %s queries", len(kept), total)
    return batch
