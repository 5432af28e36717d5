import pytest

from harvester.core import enrichment
from harvester.core.blocking import BlockingConditionError
from harvester.core.models import Listing

from conftest import ScriptedSurface, SurfaceQueue

DETAIL = {
    "phone": "+44 (0)113 496-0999",
    "website": "https://detail.example/",
    "address": "5 Detail Street, Leeds",
    "hours": "Monday: 9 AM–5 PM; Tuesday: 9 AM–5 PM; Holiday: varies",
    "photos": ["https://lh5.googleusercontent.com/p/1", "", "https://lh5.googleusercontent.com/p/2"],
}


def _complete(name="Done Deli"):
    return Listing(name=name, phone="0113", website="https://done.example", address="1 Done Road")


def _scheduler(factory, **kwargs):
    kwargs.setdefault("jitter", (0, 0))
    return enrichment.EnrichmentScheduler(factory, **kwargs)


def test_detail_url_prefers_link_then_place_id_then_search():
    assert enrichment.detail_url_for(Listing(name="A", detail_url="https://x/y")) == "https://x/y"
    assert enrichment.detail_url_for(Listing(name="A", place_id="ChIJ1")) == (
        "https://www.google.com/maps/place/?q=place_id:ChIJ1"
    )
    assert enrichment.detail_url_for(Listing(name="Acme Cafe")) == "https://www.google.com/maps/search/Acme%20Cafe"


def test_parse_hours_text_keeps_known_days():
    assert enrichment.parse_hours_text(DETAIL["hours"]) == {"monday": "9 AM–5 PM", "tuesday": "9 AM–5 PM"}


def test_apply_detail_never_overwrites_existing_values():
    listing = Listing(name="Acme", phone="0113 000 0000", address="")

    filled = enrichment.apply_detail(listing, DETAIL, include_photos=True)

    assert listing.phone == "0113 000 0000"
    assert listing.website == "https://detail.example/"
    assert listing.address == "5 Detail Street, Leeds"
    assert listing.hours == {"monday": "9 AM–5 PM", "tuesday": "9 AM–5 PM"}
    assert listing.photos == ["https://lh5.googleusercontent.com/p/1", "https://lh5.googleusercontent.com/p/2"]
    assert filled == ["website", "address", "hours", "photos"]


def test_apply_detail_cleans_phone():
    listing = Listing(name="Acme")
    enrichment.apply_detail(listing, DETAIL)
    assert listing.phone == "+4401134960999"
    assert listing.photos == []


@pytest.mark.asyncio
async def test_complete_listings_are_never_visited():
    factory = SurfaceQueue()
    listings = [_complete("One"), _complete("Two")]

    result = await _scheduler(factory).enrich(listings)

    assert result == listings
    assert factory.created == []


@pytest.mark.asyncio
async def test_deficient_listing_is_filled_and_surface_closed():
    factory = SurfaceQueue(ScriptedSurface(detail=DETAIL))
    listing = Listing(name="Acme Cafe", place_id="ChIJ1")

    await _scheduler(factory).enrich([listing, _complete()])

    assert listing.phone == "+4401134960999"
    assert listing.website == "https://detail.example/"
    (surface,) = factory.created
    assert surface.closed
    assert surface.navigations[0][0] == "https://www.google.com/maps/place/?q=place_id:ChIJ1"


@pytest.mark.asyncio
async def test_failed_visit_keeps_listing_unchanged():
    factory = SurfaceQueue(ScriptedSurface(detail=RuntimeError("detached frame")))
    listing = Listing(name="Acme Cafe", address="1 Main Street")
    scheduler = _scheduler(factory)

    result = await scheduler.enrich([listing])

    assert result == [listing]
    assert listing.address == "1 Main Street"
    assert listing.phone == ""
    assert scheduler.failures == 1
    assert factory.created[0].closed


@pytest.mark.asyncio
async def test_navigation_timeout_retries_with_relaxed_wait():
    surface = ScriptedSurface(detail=DETAIL, timeout_waits={"networkidle"})
    factory = SurfaceQueue(surface)
    listing = Listing(name="Acme Cafe")

    await _scheduler(factory).enrich([listing])

    assert [wait for _, wait in surface.navigations] == ["networkidle", "domcontentloaded"]
    assert listing.website == "https://detail.example/"


@pytest.mark.asyncio
async def test_block_page_aborts_after_siblings_finish(tmp_path):
    blocked = ScriptedSurface(blocked=True)
    healthy = ScriptedSurface(detail=DETAIL)
    factory = SurfaceQueue(blocked, healthy)
    first, second = Listing(name="Blocked"), Listing(name="Healthy")

    with pytest.raises(BlockingConditionError):
        await _scheduler(factory, screenshot_dir=str(tmp_path)).enrich([first, second])

    assert blocked.closed and healthy.closed
    assert blocked.screenshots and blocked.screenshots[0].startswith(str(tmp_path))
    assert second.website == "https://detail.example/"


@pytest.mark.asyncio
async def test_concurrency_never_exceeds_cap():
    factory = SurfaceQueue(default=lambda: ScriptedSurface(detail=DETAIL))
    listings = [Listing(name=f"Shop {index}") for index in range(12)]
    scheduler = _scheduler(factory, concurrency=10)

    await scheduler.enrich(listings)

    assert scheduler.concurrency == enrichment.DETAIL_CONCURRENCY_CAP
    assert 1 <= scheduler.peak_active <= enrichment.DETAIL_CONCURRENCY_CAP
    assert scheduler.visits == 12
    assert all(surface.closed for surface in factory.created)


@pytest.mark.asyncio
async def test_block_page_stops_remaining_visits(tmp_path):
    factory = SurfaceQueue(default=lambda: ScriptedSurface(blocked=True))
    listings = [Listing(name=f"Shop {index}") for index in range(10)]
    scheduler = _scheduler(factory, concurrency=2, screenshot_dir=str(tmp_path))

    with pytest.raises(BlockingConditionError):
        await scheduler.enrich(listings)

    assert scheduler.visits <= 2
    assert len(factory.created) == scheduler.visits
    assert all(surface.closed for surface in factory.created)
