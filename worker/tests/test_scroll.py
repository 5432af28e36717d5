import pytest

from harvester.core import scroll
from harvester.core.models import HarvestSession

from conftest import ScriptedSurface, SimulatedFeed


def _harvester(**kwargs):
    return scroll.ScrollHarvester(cadence=0, scroll_pause=0, burst_pause=0, settle_delay=0, **kwargs)


@pytest.mark.asyncio
async def test_stops_when_target_reached():
    surface = ScriptedSurface(feed=SimulatedFeed(cap=200, step=20))

    outcome = await _harvester().harvest(surface, 50)

    assert outcome.reason == scroll.REASON_TARGET
    assert outcome.count == 60


@pytest.mark.asyncio
async def test_feed_that_stalls_below_target_is_exhausted():
    surface = ScriptedSurface(feed=SimulatedFeed(cap=40, step=10))
    session = HarvestSession(query="coffee shops in Leeds")

    outcome = await _harvester().harvest(surface, 136, session)

    assert outcome.reason == scroll.REASON_EXHAUSTED
    assert outcome.count == 40
    assert session.stagnant_cycles == scroll.STAGNATION_LIMIT
    assert session.scroll_attempts < scroll.MAX_CYCLES


@pytest.mark.asyncio
async def test_unresponsive_feed_ends_after_three_cycles():
    surface = ScriptedSurface(feed=SimulatedFeed(cap=100, step=5, moves=False))
    session = HarvestSession(query="q")

    outcome = await _harvester().harvest(surface, 100, session)

    assert outcome.reason == scroll.REASON_UNRESPONSIVE
    assert session.scroll_attempts == scroll.UNRESPONSIVE_LIMIT


@pytest.mark.asyncio
async def test_load_more_click_counts_as_progress():
    surface = ScriptedSurface(feed=SimulatedFeed(cap=30, step=10, moves=False), clicks=True)

    outcome = await _harvester().harvest(surface, 30)

    assert outcome.reason == scroll.REASON_TARGET


@pytest.mark.asyncio
async def test_cycle_ceiling_applies():
    surface = ScriptedSurface(feed=SimulatedFeed(cap=10_000, step=1))
    session = HarvestSession(query="q")

    outcome = await _harvester(max_cycles=5).harvest(surface, 10_000, session)

    assert outcome.reason == scroll.REASON_MAX_CYCLES
    assert session.scroll_attempts == 5
    assert outcome.count == 4


@pytest.mark.asyncio
async def test_missing_container_returns_zero():
    outcome = await _harvester().harvest(ScriptedSurface(feed=None), 10)

    assert outcome.count == 0
    assert outcome.reason == scroll.REASON_NO_CONTAINER


class _CrashingFeed(SimulatedFeed):
    def scroll(self, attempt):
        if self.count >= 20:
            raise RuntimeError("Target page, context or browser has been closed")
        return super().scroll(attempt)


@pytest.mark.asyncio
async def test_page_error_keeps_best_count():
    surface = ScriptedSurface(feed=_CrashingFeed(cap=100, step=10))

    outcome = await _harvester().harvest(surface, 100)

    assert outcome.reason == scroll.REASON_ERROR
    assert outcome.count == 10
