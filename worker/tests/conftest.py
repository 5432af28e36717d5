import asyncio
import json
import sys
from pathlib import Path

# Ensure the `harvester` package is importable when running pytest from the worker directory.
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from harvester.core import blocking, enrichment, interceptor, scroll  # noqa: E402
from harvester.core.surface import NavigationTimeout, NetworkExchange  # noqa: E402
from harvester.jobs import pipeline  # noqa: E402

ENTITY_LENGTH = 179
DAYS = ["Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday", "Sunday"]


def make_entity(
    name,
    *,
    address="1 Main Street, Leeds LS1 1AA",
    phone="+44 113 496 0000",
    website="https://example.com/",
    domain="example.com",
    rating=4.5,
    reviews=120,
    category="Coffee shop",
    hours=None,
    place_id="",
    image="",
):
    entity = [None] * ENTITY_LENGTH
    entity[11] = name
    entity[39] = address
    if website:
        entity[7] = [website, domain]
    if phone:
        entity[178] = [[phone]]
    if image:
        entity[157] = image
    entity[4] = [None] * 7 + [rating, reviews]
    if category:
        entity[13] = [category]
    if hours is None:
        hours = {day: "8 AM–6 PM" for day in DAYS}
    if hours:
        entity[34] = [None, [[day, [text]] for day, text in hours.items()]]
    entity[9] = place_id
    return entity


def make_payload(entities, prefix=")]}'\n"):
    tree = [None] * 64 + [entities]
    return prefix + json.dumps(tree)


def make_exchange(body, url="https://www.google.com/maps/search/?tbm=map&pb=1", content_type="application/json"):
    async def read_body():
        if isinstance(body, Exception):
            raise body
        return body

    return NetworkExchange(url=url, content_type=content_type, read_body=read_body)


class SimulatedFeed:
    """Result feed that grows by `step` per scroll cycle until it reaches `cap`."""

    def __init__(self, cap, step=10, moves=True):
        self.cap = cap
        self.step = step
        self.moves = moves
        self.count = 0

    def scroll(self, attempt):
        if attempt == 0:
            self.count = min(self.cap, self.count + self.step)
        return self.moves


class ScriptedSurface:
    """RenderSurface double answering the page scripts the harvester sends."""

    def __init__(
        self,
        *,
        feed=None,
        exchanges=(),
        html="",
        shim=None,
        blocked=False,
        detail=None,
        timeout_waits=(),
        clicks=False,
    ):
        self.feed = feed
        self.exchanges = list(exchanges)
        self.html = html
        self.shim = shim
        self.blocked = blocked
        self.detail = detail if detail is not None else {}
        self.timeout_waits = set(timeout_waits)
        self.clicks = clicks
        self.navigations = []
        self.init_scripts = []
        self.handlers = []
        self.screenshots = []
        self.closed = False

    async def navigate(self, url, wait_until="domcontentloaded", timeout_ms=45000):
        self.navigations.append((url, wait_until))
        if wait_until in self.timeout_waits:
            raise NavigationTimeout(f"{wait_until} timed out")
        for exchange in self.exchanges:
            for predicate, handler in self.handlers:
                if predicate(exchange):
                    await handler(exchange)

    async def evaluate(self, script, arg=None):
        await asyncio.sleep(0)
        if script == scroll.HAS_CONTAINER_JS:
            return self.feed is not None
        if script == scroll.COUNT_LISTINGS_JS:
            return self.feed.count
        if script == scroll.PERFORM_SCROLL_JS:
            return self.feed.scroll(arg)
        if script == scroll.CLICK_LOAD_MORE_JS:
            return self.clicks
        if script == scroll.WAIT_FOR_LOADING_JS:
            return True
        if script == blocking.HAS_MATCH_JS:
            return self.blocked
        if script == interceptor.READ_SHIM_JS:
            return self.shim
        if script == pipeline.PAGE_HTML_JS:
            return self.html
        if script == enrichment.DETAIL_EXTRACT_JS:
            if isinstance(self.detail, Exception):
                raise self.detail
            return self.detail
        raise AssertionError(f"unexpected script: {script[:60]!r}")

    async def wait_for(self, selector, timeout_ms):
        return self.feed is not None

    def on_network_exchange(self, predicate, handler):
        self.handlers.append((predicate, handler))

    async def add_init_script(self, script):
        self.init_scripts.append(script)

    async def screenshot(self, path):
        self.screenshots.append(path)

    async def close(self):
        self.closed = True


class SurfaceQueue:
    """Surface factory handing out prepared surfaces, then a default one."""

    def __init__(self, *surfaces, default=None):
        self.pending = list(surfaces)
        self.default = default
        self.created = []

    async def __call__(self):
        if self.pending:
            surface = self.pending.pop(0)
        elif self.default is not None:
            surface = self.default()
        else:
            raise AssertionError("no surface left")
        self.created.append(surface)
        return surface
