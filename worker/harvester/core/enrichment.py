"""Detail-page enrichment for listings the search pass left incomplete."""

from __future__ import annotations

import asyncio
import logging
import random
import re
from typing import Any, Dict, List, Optional, Sequence, Tuple
from urllib.parse import quote

from harvester.core.blocking import BlockingConditionError, check_for_block
from harvester.core.models import DAY_BUCKETS, Listing
from harvester.core.surface import SurfaceFactory, navigate_with_fallback

logger = logging.getLogger(__name__)

DETAIL_CONCURRENCY_CAP = 3
DEFAULT_JITTER = (0.3, 0.8)
DETAIL_TIMEOUT_MS = 30000
MAX_PHOTOS = 3
PLACE_ID_URL = "https://www.google.com/maps/place/?q=place_id:{place_id}"
SEARCH_URL = "https://www.google.com/maps/search/{name}"

DETAIL_EXTRACT_JS = """
(includePhotos) => {
  const text = (selector) => {
    const el = document.querySelector(selector);
    return el ? el.textContent.trim() : null;
  };
  const phoneLink = document.querySelector('a[href^="tel:"]');
  const websiteLink = document.querySelector('a[data-item-id="authority"]');
  const hours = Array.from(document.querySelectorAll('table[aria-label*="hour"] tr'))
    .map((row) => {
      const cells = row.querySelectorAll('th, td');
      if (cells.length < 2) return null;
      const day = cells[0].textContent.trim();
      const value = cells[1].textContent.trim();
      return day && value ? `${day}: ${value}` : null;
    })
    .filter(Boolean)
    .join('; ');
  const photos = includePhotos
    ? Array.from(document.querySelectorAll('img[src*="googleusercontent.com"]'))
        .map((img) => img.src)
        .filter((src) => src.includes('photo') || src.includes('/p/'))
    : [];
  return {
    phone: phoneLink ? phoneLink.getAttribute('href').replace('tel:', '') : null,
    website: websiteLink ? websiteLink.href : null,
    address: text('div[data-item-id="address"] span, button[data-item-id*="address"] span'),
    hours,
    photos,
  };
}
"""

_PHONE_NOISE = re.compile(r"[^\d+]")


def detail_url_for(listing: Listing) -> str:
    if listing.detail_url:
        return listing.detail_url
    if listing.place_id:
        return PLACE_ID_URL.format(place_id=listing.place_id)
    return SEARCH_URL.format(name=quote(listing.name))


def clean_phone(raw: Optional[str]) -> str:
    return _PHONE_NOISE.sub("", raw or "")


def parse_hours_text(text: str) -> Dict[str, str]:
    """Map 'Monday: 9 AM–5 PM; Tuesday: ...' onto the day buckets."""
    hours: Dict[str, str] = {}
    for line in (part.strip() for part in (text or "").split(";")):
        day, sep, value = line.partition(":")
        bucket = day.strip().lower()
        if sep and bucket in DAY_BUCKETS:
            hours[bucket] = value.strip()
    return hours


def apply_detail(listing: Listing, detail: Dict[str, Any], include_photos: bool = False) -> List[str]:
    """Fill only the fields the listing is missing; returns the names of filled fields."""
    filled: List[str] = []
    if not listing.phone:
        phone = clean_phone(detail.get("phone"))
        if phone:
            listing.phone = phone
            filled.append("phone")
    if not listing.website and detail.get("website"):
        listing.website = detail["website"]
        filled.append("website")
    if not listing.address and detail.get("address"):
        listing.address = detail["address"]
        filled.append("address")
    if not listing.hours and not listing.hours_text and detail.get("hours"):
        parsed = parse_hours_text(detail["hours"])
        if parsed:
            listing.hours = parsed
        else:
            listing.hours_text = detail["hours"]
        filled.append("hours")
    if include_photos and not listing.photos and not listing.image_url:
        photos = [src for src in detail.get("photos") or [] if src][:MAX_PHOTOS]
        if photos:
            listing.photos = photos
            filled.append("photos")
    return filled


class EnrichmentScheduler:
    """Visit detail pages for deficient listings under a small concurrency ceiling.

    The ceiling is capped at three no matter what fan-out the caller uses
    for queries. A block page aborts the whole harvest attempt; any other
    failure keeps the listing with whatever it already had.
    """

    def __init__(
        self,
        surface_factory: SurfaceFactory,
        *,
        concurrency: int = 2,
        include_photos: bool = False,
        jitter: Tuple[float, float] = DEFAULT_JITTER,
        screenshot_dir: str = ".",
        timeout_ms: int = DETAIL_TIMEOUT_MS,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.surface_factory = surface_factory
        self.concurrency = max(1, min(concurrency, DETAIL_CONCURRENCY_CAP))
        self.include_photos = include_photos
        self.jitter = jitter
        self.screenshot_dir = screenshot_dir
        self.timeout_ms = timeout_ms
        self.logger = logger or logging.getLogger(__name__)
        self.visits = 0
        self.failures = 0
        self._active = 0
        self.peak_active = 0

    async def enrich(self, listings: Sequence[Listing]) -> List[Listing]:
        listings = list(listings)
        deficient = [listing for listing in listings if not listing.is_complete()]
        self.logger.info(
            "Enriching %s of %s listings (%s already complete)",
            len(deficient),
            len(listings),
            len(listings) - len(deficient),
        )
        if not deficient:
            return listings

        semaphore = asyncio.Semaphore(self.concurrency)
        blocked = asyncio.Event()
        outcomes = await asyncio.gather(
            *(
                self._visit(semaphore, blocked, listing, position, len(deficient))
                for position, listing in enumerate(deficient, 1)
            ),
            return_exceptions=True,
        )
        for outcome in outcomes:
            if isinstance(outcome, BlockingConditionError):
                raise outcome
        return listings

    async def _visit(
        self,
        semaphore: asyncio.Semaphore,
        blocked: asyncio.Event,
        listing: Listing,
        position: int,
        total: int,
    ) -> None:
        async with semaphore:
            if blocked.is_set():
                return
            self._active += 1
            self.peak_active = max(self.peak_active, self._active)
            try:
                await asyncio.sleep(random.uniform(*self.jitter))
                if blocked.is_set():
                    return
                await self._visit_detail(listing, position, total)
            except BlockingConditionError:
                # No new visits once the site shows a block page.
                blocked.set()
                raise
            finally:
                self._active -= 1

    async def _visit_detail(self, listing: Listing, position: int, total: int) -> None:
        url = detail_url_for(listing)
        self.logger.info("Processing item %s/%s: %s", position, total, listing.name[:30])
        surface = None
        try:
            surface = await self.surface_factory()
            self.visits += 1
            await navigate_with_fallback(surface, url, timeout_ms=self.timeout_ms, log=self.logger)
            await check_for_block(surface, self.screenshot_dir, label="detail_blocked")
            detail = await surface.evaluate(DETAIL_EXTRACT_JS, self.include_photos) or {}
            filled = apply_detail(listing, detail, self.include_photos)
            self.logger.debug("Item %s filled %s", listing.name[:30], filled or "nothing")
        except BlockingConditionError:
            raise
        except Exception as exc:  # noqa: BLE001
            self.failures += 1
            self.logger.warning("Error processing item %s/%s (%s): %s", position, total, listing.name[:30], exc)
        finally:
            if surface is not None:
                try:
                    await surface.close()
                except Exception as exc:  # noqa: BLE001
                    self.logger.debug("Detail surface close error: %s", exc)


async def enrich(
    listings: Sequence[Listing],
    surface_factory: SurfaceFactory,
    concurrency: int = 2,
    **kwargs: Any,
) -> List[Listing]:
    """Convenience wrapper around EnrichmentScheduler for one batch."""
    return await EnrichmentScheduler(surface_factory, concurrency=concurrency, **kwargs).enrich(listings)
