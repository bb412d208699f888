import asyncio
import dataclasses
import time
from collections import deque
from typing import Callable, Deque, Dict, List, Optional, Set, Tuple

import httpx
from loguru import logger

from crawlbox.browser.base import Browser
from crawlbox.cache.result_cache import ResultCache
from crawlbox.compliance.legal_filter import LegalComplianceFilter
from crawlbox.errors import (
    AlreadyVisited,
    ComplianceBlocked,
    NavigationTimeout,
    RobotsDisallowed,
    TransportError,
)
from crawlbox.events import EventBus
from crawlbox.models import CrawlJob, CrawlProgress, CrawlResult, CrawlerOptions
from crawlbox.models.crawl_model import JOB_COMPLETED, JOB_FAILED, JOB_RUNNING
from crawlbox.monitoring.metrics_server import (
    CRAWL_FAILURES,
    CRAWLED_PAGES,
    FRONTIER_PENDING,
    REQUEST_LATENCY,
    ROBOTS_SKIPPED,
    STORAGE_FAILURES,
)
from crawlbox.parser import Parser
from crawlbox.session.session_manager import SessionManager
from crawlbox.storage.storage_adapter import StorageAdapter
from crawlbox.utils.robots import RobotsHandler


WAIT_UNTIL = "networkidle"

ProgressCallback = Callable[[CrawlProgress], None]


class CrawlOrchestrator:
    """Fetches pages through a browser and runs them through policy, cache and storage.

    The visited set and robots cache live for the lifetime of the instance.
    Not safe for concurrent callers: ``crawl_urls`` is strictly sequential.
    """

    def __init__(
        self,
        options: CrawlerOptions,
        browser: Browser,
        *,
        parser: Optional[Parser] = None,
        cache: Optional[ResultCache] = None,
        compliance: Optional[LegalComplianceFilter] = None,
        storage: Optional[StorageAdapter] = None,
        sessions: Optional[SessionManager] = None,
        events: Optional[EventBus] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self.options = options
        self.browser = browser
        self.parser = parser or Parser()
        self.cache = cache
        self.compliance = compliance
        self.storage = storage
        self.sessions = sessions
        self.events = events
        self.client = http_client
        self._owns_client = http_client is None
        self.robots_handler: Optional[RobotsHandler] = None
        self.jobs: Dict[str, CrawlJob] = {}
        self.visited: Set[str] = set()

    # --------------------------
    #  Lifecycle
    # --------------------------
    async def initialize(self) -> None:
        logger.info("Initializing crawler engine...")
        await self.browser.start()
        self._ensure_client()

        logger.info(
            f"Crawler engine initialized (user_agent={self.options.user_agent}, "
            f"proxy={self.options.proxy or 'none'})"
        )
        self._publish("crawler.initialized", {"config": self.options})

    async def shutdown(self) -> None:
        try:
            await self.browser.close()
        except Exception as e:
            logger.error(f"Browser shutdown failed: {e}")

        if self.client is not None and self._owns_client:
            await self.client.aclose()
            self.client = None
            self.robots_handler = None

        logger.info("Crawler engine shut down")

    def _ensure_client(self) -> httpx.AsyncClient:
        if self.client is None:
            self.client = httpx.AsyncClient(
                timeout=httpx.Timeout(timeout=self.options.timeout),
                follow_redirects=True,
                proxy=self.options.proxy,
            )
            self._owns_client = True
        if self.robots_handler is None:
            self.robots_handler = RobotsHandler(self.client, self.options.user_agent)
        return self.client

    # --------------------------
    #  Robots
    # --------------------------
    async def check_robots_txt(self, url: str) -> bool:
        if not self.options.respect_robots_txt:
            return True

        self._ensure_client()
        try:
            return await self.robots_handler.is_allowed(url)
        except Exception as e:
            logger.error(f"robots.txt check failed for {url}: {e}")
            return True

    # --------------------------
    #  Single URL
    # --------------------------
    async def crawl_url(
        self,
        url: str,
        *,
        depth: int = 0,
        session_id: Optional[str] = None,
    ) -> CrawlResult:
        start = time.perf_counter()
        normalized = self.parser.normalize_url(url)

        if self.cache is not None:
            cached = self.cache.get(normalized)
            if cached is not None:
                logger.info(f"Cache hit for {normalized}")
                return cached

        job = CrawlJob(url=normalized, depth=depth)
        self.jobs[job.id] = job
        job.transition(JOB_RUNNING)

        try:
            result = await self._crawl(normalized, start, session_id)
        except Exception as e:
            job.error = str(e)
            job.transition(JOB_FAILED)
            CRAWL_FAILURES.labels(category=self._categorize_error(e)).inc()
            logger.error(f"Crawl of {normalized} failed: {e}")
            raise

        job.result = result
        job.transition(JOB_COMPLETED)
        return result

    async def _crawl(self, url: str, start: float, session_id: Optional[str]) -> CrawlResult:
        # --------------------------
        # 1) Pre-checks
        # --------------------------
        if url in self.visited:
            raise AlreadyVisited(url)

        if not await self.check_robots_txt(url):
            ROBOTS_SKIPPED.inc()
            raise RobotsDisallowed(url)

        if not self.browser.is_running:
            await self.initialize()

        page = await self.browser.new_page()
        try:
            # --------------------------
            # 2) Fetch stage
            # --------------------------
            await page.set_viewport(self.options.viewport_width, self.options.viewport_height)
            await page.set_user_agent(self.options.user_agent)

            with REQUEST_LATENCY.time():
                response = await page.goto(url, wait_until=WAIT_UNTIL, timeout=self.options.timeout)
            html = await page.content()

            # --------------------------
            # 3) Parsing stage
            # --------------------------
            parsed = self.parser.parse_html(html, url) if html else None

            result = CrawlResult(
                url=url,
                status_code=response.status,
                title=parsed.title if parsed else None,
                content=parsed.content if parsed else None,
                html=html or None,
                headers=dict(response.headers),
                links=list(parsed.links) if parsed else [],
                images=list(parsed.images) if parsed else [],
                metadata=dict(parsed.metadata) if parsed else {},
                duration=time.perf_counter() - start,
            )

            # --------------------------
            # 4) Compliance stage
            # --------------------------
            if self.compliance is not None:
                compliance = self.compliance.check_compliance(result)
                if compliance.blocked:
                    raise ComplianceBlocked(url, compliance.reason, compliance)

            # --------------------------
            # 5) Cache & storage stage
            # --------------------------
            if self.cache is not None:
                self.cache.set(url, result)

            await self._persist(result, session_id)

            if session_id and self.sessions is not None:
                self.sessions.increment_crawled(session_id)

            self.visited.add(url)
        finally:
            await self._close_page(page, url)

        CRAWLED_PAGES.inc()
        logger.info(
            f"Crawled: {url} (status={result.status_code}, links={len(result.links)}, "
            f"images={len(result.images)}, {result.duration:.2f}s)"
        )
        self._publish("crawler.url.crawled", {"url": url, "result": result})
        return result

    async def _persist(self, result: CrawlResult, session_id: Optional[str]) -> None:
        if self.storage is None:
            return
        try:
            await self.storage.save_crawl_result(result, session_id)
        except Exception as e:
            STORAGE_FAILURES.inc()
            logger.warning(f"Could not persist crawl result for {result.url}: {e}")

    @staticmethod
    async def _close_page(page, url: str) -> None:
        try:
            await page.close()
        except Exception as e:
            logger.warning(f"Failed to close page for {url}: {e}")

    def _categorize_error(self, exc: Exception) -> str:
        if isinstance(exc, (NavigationTimeout, httpx.TimeoutException, asyncio.TimeoutError)):
            return "network_timeout"
        if isinstance(exc, (TransportError, httpx.TransportError)):
            return "connection_error"
        if isinstance(exc, RobotsDisallowed):
            return "robots"
        if isinstance(exc, ComplianceBlocked):
            return "compliance"
        if isinstance(exc, AlreadyVisited):
            return "duplicate"
        if isinstance(exc, (ValueError, UnicodeDecodeError, AttributeError)):
            return "parse_error"
        return "unexpected"

    # --------------------------
    #  Breadth-first traversal
    # --------------------------
    async def crawl_urls(
        self,
        start_url: str,
        *,
        max_depth: Optional[int] = None,
        max_pages: Optional[int] = None,
        on_progress: Optional[ProgressCallback] = None,
        session_id: Optional[str] = None,
    ) -> List[CrawlResult]:
        max_depth = self.options.max_depth if max_depth is None else max_depth
        max_pages = self.options.max_pages if max_pages is None else max_pages

        results: List[CrawlResult] = []
        queue: Deque[Tuple[str, int]] = deque([(start_url, 0)])
        visited: Set[str] = set()

        owns_session = False
        if session_id is None and self.sessions is not None:
            session_id = self.sessions.create_session(
                start_url, {"max_depth": max_depth, "max_pages": max_pages}
            )
            owns_session = True

        logger.info(f"Starting multi-URL crawl from {start_url} (max_depth={max_depth}, max_pages={max_pages})")

        while queue and len(results) < max_pages:
            url, depth = queue.popleft()
            FRONTIER_PENDING.set(len(queue))

            key = self.parser.normalize_url(url)
            if key in visited or depth > max_depth:
                continue
            visited.add(key)

            try:
                result = await self.crawl_url(url, depth=depth, session_id=session_id)
            except Exception as e:
                logger.warning(f"Crawl of {url} failed, skipping: {e}")
                if session_id and self.sessions is not None:
                    self.sessions.increment_failed(session_id)
                continue

            results.append(result)
            if on_progress is not None:
                on_progress(CrawlProgress(current=len(results), total=max_pages, url=url))

            if self.options.follow_links and depth < max_depth:
                for link in result.links:
                    resolved = self._resolve_link(url, link)
                    if resolved and self.parser.normalize_url(resolved) not in visited:
                        queue.append((resolved, depth + 1))

            if self.options.delay > 0:
                await asyncio.sleep(self.options.delay)

        FRONTIER_PENDING.set(0)
        if owns_session:
            self.sessions.complete_session(session_id)

        logger.info(f"Multi-URL crawl from {start_url} completed: {len(results)}/{max_pages} pages")
        self._publish("crawler.urls.crawled", {"start_url": start_url, "results": results})
        return results

    def _resolve_link(self, base_url: str, link: str) -> Optional[str]:
        resolved = self.parser.resolve_link(base_url, link)
        return resolved if resolved and self.parser.is_valid_url(resolved) else None

    # --------------------------
    #  Accessors
    # --------------------------
    def get_job(self, job_id: str) -> Optional[CrawlJob]:
        return self.jobs.get(job_id)

    def clear_jobs(self) -> None:
        self.jobs = {job_id: job for job_id, job in self.jobs.items() if not job.finished}

    def get_stats(self) -> dict:
        return {
            "active_jobs": sum(1 for job in self.jobs.values() if job.status == JOB_RUNNING),
            "total_jobs": len(self.jobs),
            "visited_urls": len(self.visited),
            "robots_cache": len(self.robots_handler) if self.robots_handler else 0,
            "config": dataclasses.asdict(self.options),
        }

    def update_config(self, **changes) -> None:
        self.options = dataclasses.replace(self.options, **changes)
        if self.robots_handler is not None:
            self.robots_handler.user_agent = self.options.user_agent
        logger.info(f"Crawler config updated: {changes}")

    def clear_cache(self) -> None:
        self.visited.clear()
        if self.robots_handler is not None:
            self.robots_handler.clear()
        logger.info("Crawler visited set and robots cache cleared")

    def _publish(self, topic: str, payload: dict) -> None:
        if self.events is not None:
            self.events.publish(topic, payload)
