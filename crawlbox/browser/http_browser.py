from __future__ import annotations

from typing import Optional

import httpx
from loguru import logger

from crawlbox.browser.base import NavigationResponse
from crawlbox.errors import NavigationTimeout, TransportError


ACCEPT_HEADER = "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8"
MAX_DOWNLOAD_BYTES = 5_000_000


class HttpPage:
    """A page backed by a single HTTP GET. No JavaScript, viewport is recorded only."""

    def __init__(self, client: httpx.AsyncClient):
        self.client = client
        self.user_agent: Optional[str] = None
        self.viewport: Optional[tuple[int, int]] = None
        self._html = ""

    async def set_viewport(self, width: int, height: int) -> None:
        self.viewport = (width, height)

    async def set_user_agent(self, user_agent: str) -> None:
        self.user_agent = user_agent

    async def goto(self, url: str, *, wait_until: str = "load", timeout: float = 30.0) -> NavigationResponse:
        headers = {"Accept": ACCEPT_HEADER}
        if self.user_agent:
            headers["User-Agent"] = self.user_agent

        try:
            resp = await self.client.get(url, headers=headers, timeout=timeout)
        except httpx.TimeoutException as exc:
            raise NavigationTimeout(url, timeout) from exc
        except httpx.HTTPError as exc:
            raise TransportError(url, f"Failed to load {url}: {exc}") from exc

        body = resp.content or b""
        if len(body) > MAX_DOWNLOAD_BYTES:
            logger.warning(f"Truncating {url}: {len(body)} bytes exceeds {MAX_DOWNLOAD_BYTES}")
            self._html = body[:MAX_DOWNLOAD_BYTES].decode(resp.encoding or "utf-8", errors="ignore")
        else:
            self._html = resp.text or ""

        return NavigationResponse(
            status=resp.status_code,
            headers={k.lower(): v for k, v in resp.headers.items()},
            url=str(resp.url),
        )

    async def content(self) -> str:
        return self._html

    async def close(self) -> None:
        self._html = ""


class HttpBrowser:
    def __init__(self, client: Optional[httpx.AsyncClient] = None, *, proxy: Optional[str] = None):
        self._client = client
        self._owns_client = client is None
        self.proxy = proxy

    @property
    def is_running(self) -> bool:
        return self._client is not None

    async def start(self) -> None:
        if self._client is None:
            self._client = httpx.AsyncClient(follow_redirects=True, proxy=self.proxy)
            self._owns_client = True

    async def new_page(self) -> HttpPage:
        if self._client is None:
            raise RuntimeError("HTTP client is not initialized")
        return HttpPage(self._client)

    async def close(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None
