from __future__ import annotations

from typing import Optional

from loguru import logger
from playwright.async_api import Browser as PwBrowser
from playwright.async_api import Error as PlaywrightError
from playwright.async_api import Page, Playwright, async_playwright
from playwright.async_api import TimeoutError as PlaywrightTimeout

from crawlbox.browser.base import NavigationResponse
from crawlbox.errors import NavigationTimeout, TransportError


LAUNCH_ARGS = [
    "--no-sandbox",
    "--disable-setuid-sandbox",
    "--disable-dev-shm-usage",
    "--disable-accelerated-2d-canvas",
    "--disable-gpu",
]

# puppeteer-style names used by callers -> playwright wait states
_WAIT_STATES = {
    "networkidle0": "networkidle",
    "networkidle2": "networkidle",
}


class PlaywrightPage:
    def __init__(self, page: Page):
        self._page = page

    async def set_viewport(self, width: int, height: int) -> None:
        await self._page.set_viewport_size({"width": width, "height": height})

    async def set_user_agent(self, user_agent: str) -> None:
        await self._page.set_extra_http_headers({"User-Agent": user_agent})

    async def goto(self, url: str, *, wait_until: str = "networkidle", timeout: float = 30.0) -> NavigationResponse:
        try:
            response = await self._page.goto(
                url,
                wait_until=_WAIT_STATES.get(wait_until, wait_until),
                timeout=timeout * 1000,
            )
        except PlaywrightTimeout as exc:
            raise NavigationTimeout(url, timeout) from exc
        except PlaywrightError as exc:
            raise TransportError(url, f"Failed to load {url}: {exc}") from exc

        if response is None:
            raise TransportError(url, f"No response from page: {url}")

        return NavigationResponse(
            status=response.status,
            headers=dict(response.headers),
            url=response.url,
        )

    async def content(self) -> str:
        return await self._page.content()

    async def close(self) -> None:
        await self._page.close()


class PlaywrightBrowser:
    """Headless Chromium driven through playwright's async API."""

    def __init__(self, *, proxy: Optional[str] = None, headless: bool = True):
        self.proxy = proxy
        self.headless = headless
        self._playwright: Optional[Playwright] = None
        self._browser: Optional[PwBrowser] = None

    @property
    def is_running(self) -> bool:
        return self._browser is not None

    async def start(self) -> None:
        if self._browser is not None:
            return

        self._playwright = await async_playwright().start()
        self._browser = await self._playwright.chromium.launch(
            headless=self.headless,
            args=LAUNCH_ARGS,
            proxy={"server": self.proxy} if self.proxy else None,
        )
        logger.info(f"Chromium launched (proxy={self.proxy or 'none'})")

    async def new_page(self) -> PlaywrightPage:
        if self._browser is None:
            raise RuntimeError("Browser is not started")
        return PlaywrightPage(await self._browser.new_page())

    async def close(self) -> None:
        if self._browser is not None:
            await self._browser.close()
            self._browser = None
        if self._playwright is not None:
            await self._playwright.stop()
            self._playwright = None
