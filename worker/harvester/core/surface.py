"""Render surfaces: the page capability the harvesting core drives.

The core only talks to the small `RenderSurface` protocol below. The
Playwright-backed implementation is what production uses; tests script
their own surfaces against the same protocol.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional, Protocol

from playwright.async_api import Browser, BrowserContext, Page, Playwright
from playwright.async_api import TimeoutError as PlaywrightTimeoutError
from playwright.async_api import async_playwright

logger = logging.getLogger(__name__)

USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
)
VIEWPORT = {"width": 1920, "height": 1080}
EXTRA_HEADERS = {
    "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,image/avif,image/webp,*/*;q=0.8",
    "Accept-Language": "en-US,en;q=0.9",
}
LAUNCH_ARGS = [
    "--no-sandbox",
    "--disable-setuid-sandbox",
    "--disable-blink-features=AutomationControlled",
    "--disable-dev-shm-usage",
    "--disable-web-security",
    "--disable-features=IsolateOrigins,site-per-process",
]
HARDENING_SCRIPT = """
Object.defineProperty(navigator, 'webdriver', { get: () => undefined });
window.chrome = { runtime: {} };
Object.defineProperty(navigator, 'languages', { get: () => ['en-US', 'en'] });
"""

PRIMARY_WAIT = "networkidle"
RELAXED_WAIT = "domcontentloaded"
DEFAULT_NAVIGATION_TIMEOUT_MS = 45000


class NavigationTimeout(RuntimeError):
    """Raised when a navigation does not reach its wait condition in time."""


@dataclass(frozen=True)
class NetworkExchange:
    """One observed response, with a lazily read body."""

    url: str
    content_type: str
    read_body: Callable[[], Awaitable[str]]


ExchangePredicate = Callable[[NetworkExchange], bool]
ExchangeHandler = Callable[[NetworkExchange], Awaitable[None]]


class RenderSurface(Protocol):
    async def navigate(self, url: str, wait_until: str = RELAXED_WAIT, timeout_ms: int = DEFAULT_NAVIGATION_TIMEOUT_MS) -> None:
        ...

    async def evaluate(self, script: str, arg: Any = None) -> Any:
        ...

    async def wait_for(self, selector: str, timeout_ms: int) -> bool:
        ...

    def on_network_exchange(self, predicate: ExchangePredicate, handler: ExchangeHandler) -> None:
        ...

    async def add_init_script(self, script: str) -> None:
        ...

    async def screenshot(self, path: str) -> None:
        ...

    async def close(self) -> None:
        ...


SurfaceFactory = Callable[[], Awaitable[RenderSurface]]


class PlaywrightSurface:
    """RenderSurface over one Playwright page living in its own browser context."""

    def __init__(self, context: BrowserContext, page: Page) -> None:
        self._context = context
        self._page = page

    async def navigate(self, url: str, wait_until: str = RELAXED_WAIT, timeout_ms: int = DEFAULT_NAVIGATION_TIMEOUT_MS) -> None:
        try:
            await self._page.goto(url, wait_until=wait_until, timeout=timeout_ms)
        except PlaywrightTimeoutError as exc:
            raise NavigationTimeout(f"{wait_until} not reached for {url} within {timeout_ms}ms") from exc

    async def evaluate(self, script: str, arg: Any = None) -> Any:
        if arg is None:
            return await self._page.evaluate(script)
        return await self._page.evaluate(script, arg)

    async def wait_for(self, selector: str, timeout_ms: int) -> bool:
        try:
            await self._page.wait_for_selector(selector, timeout=timeout_ms)
            return True
        except PlaywrightTimeoutError:
            return False

    def on_network_exchange(self, predicate: ExchangePredicate, handler: ExchangeHandler) -> None:
        async def _on_response(response) -> None:
            exchange = NetworkExchange(
                url=response.url,
                content_type=response.headers.get("content-type", ""),
                read_body=response.text,
            )
            if predicate(exchange):
                await handler(exchange)

        self._page.on("response", _on_response)

    async def add_init_script(self, script: str) -> None:
        await self._page.add_init_script(script)

    async def screenshot(self, path: str) -> None:
        await self._page.screenshot(path=path)

    async def close(self) -> None:
        try:
            await self._page.close()
        finally:
            await self._context.close()


class BrowserSurfaceFactory:
    """Launch one Chromium and hand out hardened, exclusively owned surfaces.

    Use as an async context manager; the browser is torn down on exit even
    when surfaces handed out earlier were never closed.
    """

    def __init__(self, *, headless: bool = True, navigation_timeout_ms: int = DEFAULT_NAVIGATION_TIMEOUT_MS) -> None:
        self.headless = headless
        self.navigation_timeout_ms = navigation_timeout_ms
        self._playwright: Optional[Playwright] = None
        self._browser: Optional[Browser] = None

    async def start(self) -> None:
        if self._browser is not None:
            return
        self._playwright = await async_playwright().start()
        self._browser = await self._playwright.chromium.launch(headless=self.headless, args=LAUNCH_ARGS)
        logger.debug("Launched Chromium (headless=%s)", self.headless)

    async def __call__(self) -> PlaywrightSurface:
        await self.start()
        context = await self._browser.new_context(
            user_agent=USER_AGENT,
            viewport=VIEWPORT,
            locale="en-US",
            extra_http_headers=EXTRA_HEADERS,
        )
        await context.add_init_script(HARDENING_SCRIPT)
        page = await context.new_page()
        page.set_default_navigation_timeout(self.navigation_timeout_ms)
        return PlaywrightSurface(context, page)

    async def close(self) -> None:
        if self._browser is not None:
            try:
                await self._browser.close()
            except Exception as exc:  # noqa: BLE001
                logger.warning("Browser close error: %s", exc)
            self._browser = None
        if self._playwright is not None:
            await self._playwright.stop()
            self._playwright = None

    async def __aenter__(self) -> "BrowserSurfaceFactory":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()


async def navigate_with_fallback(
    surface: RenderSurface,
    url: str,
    *,
    primary: str = PRIMARY_WAIT,
    timeout_ms: int = DEFAULT_NAVIGATION_TIMEOUT_MS,
    log: Optional[logging.Logger] = None,
) -> None:
    """Navigate with the primary wait condition, retrying once with the relaxed one."""
    log = log or logger
    try:
        await surface.navigate(url, wait_until=primary, timeout_ms=timeout_ms)
    except NavigationTimeout as exc:
        log.warning("Navigation issue for %s: %s. Retrying with %s.", url, exc, RELAXED_WAIT)
        await surface.navigate(url, wait_until=RELAXED_WAIT, timeout_ms=timeout_ms)
