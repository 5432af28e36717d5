"""Scroll loop that coaxes the virtualized result feed into materializing listings."""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Optional

from harvester.core.models import HarvestOutcome, HarvestSession
from harvester.core.surface import RenderSurface

logger = logging.getLogger(__name__)

CYCLE_CADENCE_SECONDS = 0.8
SCROLLS_PER_CYCLE = 6
SCROLL_PAUSE_SECONDS = 0.1
UNRESPONSIVE_LIMIT = 3
STAGNATION_LIMIT = 12
BURST_ATTEMPTS = 10
BURST_PAUSE_SECONDS = 0.2
SETTLE_SECONDS = 3.0
MAX_CYCLES = 100

REASON_TARGET = "target_reached"
REASON_UNRESPONSIVE = "unresponsive"
REASON_EXHAUSTED = "exhausted"
REASON_MAX_CYCLES = "max_cycles"
REASON_NO_CONTAINER = "no_container"
REASON_ERROR = "error"

CONTAINER_SELECTORS = [
    'div[role="feed"]',
    'div[role="main"] div[aria-label*="Results for"]',
    'div[class*="section-layout"] div[class*="section-scrollbox"]',
    'div[class*="m6QErb"]',
    'div[class*="section-scrollbox"]',
    'div[data-value="search"]',
    ".section-scrollbox",
]

LISTING_SELECTORS = [
    'div[role="article"]',
    'div[class*="Nv2PK"]',
    'a[href*="maps/place"]',
    'div[class*="hfpxzc"]',
    'div[jsaction*="mouseover:pane"]',
    "div[data-result-index]",
    "div[data-value]",
    "div.section-result",
    'div[aria-label*="result"]',
    ".section-result-content",
    ".section-result",
]

LOAD_MORE_LABELS = [
    "show more",
    "load more",
    "next",
    "more results",
    "see more",
    "more",
    "continue",
    "load additional",
]

_FIND_CONTAINER = """
const findContainer = () => {
  for (const selector of %s) {
    const el = document.querySelector(selector);
    if (el) return el;
  }
  return null;
};
""" % json.dumps(CONTAINER_SELECTORS)

HAS_CONTAINER_JS = "() => {%s return findContainer() !== null; }" % _FIND_CONTAINER

# Different selectors can hit the same node; the Set keeps each element once.
COUNT_LISTINGS_JS = """
() => {
  const seen = new Set();
  for (const selector of %s) {
    document.querySelectorAll(selector).forEach((el) => seen.add(el));
  }
  return seen.size;
}
""" % json.dumps(LISTING_SELECTORS)

PERFORM_SCROLL_JS = """
(attempt) => {%s
  const pane = findContainer();
  if (!pane) return false;
  const before = pane.scrollTop;
  try {
    pane.scrollTop = pane.scrollHeight;
    pane.scrollBy(0, 1000);
    pane.dispatchEvent(new WheelEvent('wheel', { deltaY: 1000, bubbles: true, cancelable: true }));
    const legacy = new Event('mousewheel', { bubbles: true });
    legacy.wheelDelta = -1000;
    pane.dispatchEvent(legacy);
    pane.dispatchEvent(new KeyboardEvent('keydown', { key: 'PageDown', code: 'PageDown', bubbles: true }));
  } catch (err) {
    return false;
  }
  const moved = pane.scrollTop !== before;
  pane.scrollBy(0, 200 * (attempt + 1));
  return moved;
}
""" % _FIND_CONTAINER

CLICK_LOAD_MORE_JS = """
() => {
  const labels = %s;
  let clicked = false;
  document.querySelectorAll("button, div[role='button'], span[role='button']").forEach((btn) => {
    const text = (btn.textContent || '').toLowerCase();
    if (!labels.some((label) => text.includes(label))) return;
    if (btn.offsetParent === null) return;
    try {
      btn.click();
      clicked = true;
    } catch (err) {}
  });
  return clicked;
}
""" % json.dumps(LOAD_MORE_LABELS)

WAIT_FOR_LOADING_JS = """
() => new Promise((resolve) => {
  let checks = 0;
  const check = () => {
    checks += 1;
    const busy = document.querySelectorAll(
      '[data-value="loading"], .loading, [aria-label*="Loading"], [aria-label*="loading"]'
    ).length > 0;
    if (!busy || checks >= 10) resolve(true);
    else setTimeout(check, 200);
  };
  setTimeout(check, 100);
})
"""


class ScrollHarvester:
    """Drive a result feed until the target is met, growth stalls, or a ceiling is hit."""

    def __init__(
        self,
        *,
        cadence: float = CYCLE_CADENCE_SECONDS,
        scroll_pause: float = SCROLL_PAUSE_SECONDS,
        burst_pause: float = BURST_PAUSE_SECONDS,
        settle_delay: float = SETTLE_SECONDS,
        max_cycles: int = MAX_CYCLES,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.cadence = cadence
        self.scroll_pause = scroll_pause
        self.burst_pause = burst_pause
        self.settle_delay = settle_delay
        self.max_cycles = max_cycles
        self.logger = logger or logging.getLogger(__name__)

    async def harvest(
        self,
        surface: RenderSurface,
        target_count: int,
        session: Optional[HarvestSession] = None,
    ) -> HarvestOutcome:
        session = session or HarvestSession(query="")
        best = 0
        try:
            if not await surface.evaluate(HAS_CONTAINER_JS):
                self.logger.warning("Scroll container not found")
                return HarvestOutcome(0, REASON_NO_CONTAINER)

            previous = 0
            unresponsive = 0
            stagnant = 0
            for cycle in range(1, self.max_cycles + 1):
                count = int(await surface.evaluate(COUNT_LISTINGS_JS) or 0)
                best = max(best, count)
                self.logger.debug("Scroll cycle %s: %s listings (target %s)", cycle, count, target_count)

                moved = await self._scroll_round(surface)
                clicked = bool(await surface.evaluate(CLICK_LOAD_MORE_JS))
                if clicked:
                    await surface.evaluate(WAIT_FOR_LOADING_JS)
                session.scroll_attempts += 1

                if count >= target_count:
                    return self._finish(best, REASON_TARGET)

                if not moved and not clicked:
                    unresponsive += 1
                    if unresponsive >= UNRESPONSIVE_LIMIT:
                        return self._finish(best, REASON_UNRESPONSIVE)
                else:
                    unresponsive = 0

                if count == previous:
                    stagnant += 1
                    session.stagnant_cycles = stagnant
                    if stagnant >= STAGNATION_LIMIT:
                        final = await self._final_burst(surface)
                        return self._finish(max(best, final), REASON_EXHAUSTED)
                else:
                    stagnant = 0
                    session.stagnant_cycles = 0
                    previous = count

                await asyncio.sleep(self.cadence)

            return self._finish(best, REASON_MAX_CYCLES)
        except Exception as exc:  # noqa: BLE001
            self.logger.warning("Scrolling aborted after page error: %s", exc)
            return HarvestOutcome(best, REASON_ERROR)

    async def _scroll_round(self, surface: RenderSurface) -> bool:
        moved = False
        for attempt in range(SCROLLS_PER_CYCLE):
            if await surface.evaluate(PERFORM_SCROLL_JS, attempt):
                moved = True
                await asyncio.sleep(self.scroll_pause)
        return moved

    async def _final_burst(self, surface: RenderSurface) -> int:
        self.logger.info("Listing count stalled; performing final aggressive scroll")
        for attempt in range(BURST_ATTEMPTS):
            await surface.evaluate(PERFORM_SCROLL_JS, attempt)
            await surface.evaluate(CLICK_LOAD_MORE_JS)
            await asyncio.sleep(self.burst_pause)
        await asyncio.sleep(self.settle_delay)
        return int(await surface.evaluate(COUNT_LISTINGS_JS) or 0)

    def _finish(self, count: int, reason: str) -> HarvestOutcome:
        self.logger.info("Scrolling complete: %s listings (%s)", count, reason)
        return HarvestOutcome(count, reason)
