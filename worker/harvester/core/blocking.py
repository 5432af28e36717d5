"""Detection of interstitial block pages."""

import itertools
import logging
import os
import time
from typing import Optional

from harvester.core.surface import RenderSurface

logger = logging.getLogger(__name__)

BLOCK_SELECTORS = 'form[action*="/sorry/index"], div[class*="captcha"], img[src*="/sorry/image"]'
HAS_MATCH_JS = "(selector) => !!document.querySelector(selector)"

_SCREENSHOT_SEQUENCE = itertools.count(1)


class BlockingConditionError(RuntimeError):
    """Raised when the page shows an interstitial block; aborts the current attempt."""

    def __init__(self, message: str, screenshot_path: Optional[str] = None) -> None:
        super().__init__(message)
        self.screenshot_path = screenshot_path


async def check_for_block(surface: RenderSurface, screenshot_dir: str = ".", label: str = "blocked") -> None:
    """Raise BlockingConditionError (after saving a screenshot) when a block page is showing."""
    blocked = await surface.evaluate(HAS_MATCH_JS, BLOCK_SELECTORS)
    if not blocked:
        return

    path = os.path.join(screenshot_dir, f"{label}_{int(time.time())}_{next(_SCREENSHOT_SEQUENCE)}.png")
    try:
        await surface.screenshot(path)
        logger.error("Block page detected. Screenshot saved to %s", path)
    except Exception as exc:  # noqa: BLE001
        logger.error("Block page detected; screenshot failed: %s", exc)
        path = None
    raise BlockingConditionError("Block page detected", screenshot_path=path)
