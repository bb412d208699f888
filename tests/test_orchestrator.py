import httpx
import pytest

from crawlbox.browser.base import NavigationResponse
from crawlbox.cache.result_cache import ResultCache
from crawlbox.compliance.legal_filter import LegalComplianceFilter
from crawlbox.engine import CrawlOrchestrator
from crawlbox.errors import AlreadyVisited, ComplianceBlocked, NavigationTimeout, RobotsDisallowed
from crawlbox.events import EventBus
from crawlbox.models import CrawlerOptions
from crawlbox.monitoring.metrics_server import STORAGE_FAILURES
from crawlbox.session.session_manager import SessionManager


class FakePage:
    def __init__(self, browser):
        self.browser = browser
        self.html = ""
        self.closed = False
        self.user_agent = None

    async def set_viewport(self, width, height):
        self.viewport = (width, height)

    async def set_user_agent(self, user_agent):
        self.user_agent = user_agent

    async def goto(self, url, *, wait_until, timeout):
        self.browser.visits.append(url)
        page = self.browser.pages.get(url)
        if page is None:
            return NavigationResponse(status=404, headers={}, url=url)
        if isinstance(page, Exception):
            raise page
        self.html = page
        return NavigationResponse(status=200, headers={"content-type": "text/html"}, url=url)

    async def content(self):
        return self.html

    async def close(self):
        self.closed = True


class FakeBrowser:
    def __init__(self, pages):
        self.pages = pages
        self.visits = []
        self.opened = []
        self.running = False

    @property
    def is_running(self):
        return self.running

    async def start(self):
        self.running = True

    async def new_page(self):
        page = FakePage(self)
        self.opened.append(page)
        return page

    async def close(self):
        self.running = False


class FailingStorage:
    async def save_crawl_result(self, result, session_id=None):
        raise RuntimeError("database down")


def robots_client(robots_txt: str = "") -> httpx.AsyncClient:
    async def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path == "/robots.txt":
            return httpx.Response(200, text=robots_txt)
        return httpx.Response(404)

    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


def make_orchestrator(pages, *, robots_txt="", **kwargs) -> CrawlOrchestrator:
    options = CrawlerOptions(user_agent="TestBot/1.0", delay=0, max_depth=2, max_pages=50)
    return CrawlOrchestrator(
        options,
        FakeBrowser(pages),
        http_client=robots_client(robots_txt),
        **kwargs,
    )


def page_with_links(title, links):
    anchors = "".join(f"<a href='{link}'>{link}</a>" for link in links)
    return f"<html><head><title>{title}</title></head><body><p>{title}</p>{anchors}</body></html>"


@pytest.mark.asyncio
async def test_crawl_url_returns_parsed_result_and_closes_page():
    events = EventBus()
    crawled = []
    events.subscribe("crawler.url.crawled", lambda topic, payload: crawled.append(payload["url"]))
    orchestrator = make_orchestrator(
        {"https://site.test/": page_with_links("Home", ["/a", "/b"])}, events=events
    )

    result = await orchestrator.crawl_url("https://Site.test")

    assert result.url == "https://site.test/"
    assert result.status_code == 200
    assert result.title == "Home"
    assert result.links == ["https://site.test/a", "https://site.test/b"]
    assert result.headers == {"content-type": "text/html"}
    assert orchestrator.browser.opened[0].closed
    assert orchestrator.browser.opened[0].user_agent == "TestBot/1.0"
    assert crawled == ["https://site.test/"]
    assert orchestrator.get_stats()["visited_urls"] == 1


@pytest.mark.asyncio
async def test_cache_hit_bypasses_fetch():
    cache = ResultCache(max_size=10, ttl=60)
    orchestrator = make_orchestrator({"https://site.test/": page_with_links("Home", [])}, cache=cache)

    first = await orchestrator.crawl_url("https://site.test/")
    second = await orchestrator.crawl_url("https://site.test")

    assert second is first
    assert orchestrator.browser.visits == ["https://site.test/"]
    assert cache.get_stats()["hits"] == 1


@pytest.mark.asyncio
async def test_visited_url_without_cache_entry_is_rejected():
    cache = ResultCache(max_size=10, ttl=60)
    orchestrator = make_orchestrator({"https://site.test/": page_with_links("Home", [])}, cache=cache)

    await orchestrator.crawl_url("https://site.test/")
    cache.clear()

    with pytest.raises(AlreadyVisited):
        await orchestrator.crawl_url("https://site.test/")

    orchestrator.clear_cache()
    result = await orchestrator.crawl_url("https://site.test/")
    assert result.title == "Home"


@pytest.mark.asyncio
async def test_robots_disallowed_url_is_not_fetched():
    orchestrator = make_orchestrator(
        {"https://site.test/private/x": page_with_links("Secret", [])},
        robots_txt="User-agent: *\nDisallow: /private",
    )

    with pytest.raises(RobotsDisallowed):
        await orchestrator.crawl_url("https://site.test/private/x")

    assert orchestrator.browser.visits == []


@pytest.mark.asyncio
async def test_robots_ignored_when_disabled():
    orchestrator = make_orchestrator(
        {"https://site.test/private/x": page_with_links("Secret", [])},
        robots_txt="User-agent: *\nDisallow: /private",
    )
    orchestrator.update_config(respect_robots_txt=False)

    result = await orchestrator.crawl_url("https://site.test/private/x")

    assert result.title == "Secret"


@pytest.mark.asyncio
async def test_blocked_content_is_not_cached_or_marked_visited():
    cache = ResultCache(max_size=10, ttl=60)
    orchestrator = make_orchestrator(
        {"https://site.test/": page_with_links("explicit adult content", [])},
        cache=cache,
        compliance=LegalComplianceFilter(),
    )

    with pytest.raises(ComplianceBlocked) as exc_info:
        await orchestrator.crawl_url("https://site.test/")

    assert exc_info.value.compliance.blocked
    assert len(cache) == 0
    assert "https://site.test/" not in orchestrator.visited

    # a second attempt goes through the pipeline again
    with pytest.raises(ComplianceBlocked):
        await orchestrator.crawl_url("https://site.test/")
    assert orchestrator.browser.opened[0].closed


@pytest.mark.asyncio
async def test_filtered_content_is_cached_redacted():
    cache = ResultCache(max_size=10, ttl=60)
    orchestrator = make_orchestrator(
        {"https://site.test/": "<html><body>credit card 4111 1111 1111 1111</body></html>"},
        cache=cache,
        compliance=LegalComplianceFilter(),
    )

    result = await orchestrator.crawl_url("https://site.test/")

    assert "4111" not in result.content
    assert "[CARD]" in cache.get("https://site.test/").content


@pytest.mark.asyncio
async def test_storage_failure_is_not_fatal():
    orchestrator = make_orchestrator(
        {"https://site.test/": page_with_links("Home", [])}, storage=FailingStorage()
    )
    before = STORAGE_FAILURES._value.get()

    result = await orchestrator.crawl_url("https://site.test/")

    assert result.title == "Home"
    assert STORAGE_FAILURES._value.get() == before + 1


@pytest.mark.asyncio
async def test_navigation_timeout_fails_job():
    orchestrator = make_orchestrator(
        {"https://site.test/": NavigationTimeout("https://site.test/", 30.0)}
    )

    with pytest.raises(NavigationTimeout):
        await orchestrator.crawl_url("https://site.test/")

    job = next(iter(orchestrator.jobs.values()))
    assert job.status == "failed"
    assert job.error
    assert orchestrator.browser.opened[0].closed

    orchestrator.clear_jobs()
    assert orchestrator.jobs == {}


@pytest.mark.asyncio
async def test_crawl_urls_respects_max_pages_without_revisits():
    links = [f"/p{i}" for i in range(10)] + ["/p1", "/"]
    pages = {"https://site.test/": page_with_links("Home", links)}
    for i in range(10):
        pages[f"https://site.test/p{i}"] = page_with_links(f"Page {i}", ["/", f"/p{i}/deeper"])
    orchestrator = make_orchestrator(pages)
    progress = []

    results = await orchestrator.crawl_urls(
        "https://site.test/", max_depth=1, max_pages=5, on_progress=progress.append
    )

    assert len(results) == 5
    assert len(orchestrator.browser.visits) == len(set(orchestrator.browser.visits))
    assert [p.current for p in progress] == [1, 2, 3, 4, 5]
    assert all(p.total == 5 for p in progress)
    assert not any("deeper" in url for url in orchestrator.browser.visits)


@pytest.mark.asyncio
async def test_crawl_urls_stops_at_max_depth():
    pages = {
        "https://site.test/": page_with_links("Home", ["/a"]),
        "https://site.test/a": page_with_links("A", ["/b"]),
        "https://site.test/b": page_with_links("B", ["/c"]),
    }
    orchestrator = make_orchestrator(pages)

    results = await orchestrator.crawl_urls("https://site.test/", max_depth=1, max_pages=10)

    assert [r.title for r in results] == ["Home", "A"]


@pytest.mark.asyncio
async def test_crawl_urls_skips_failures_and_tracks_session():
    sessions = SessionManager()
    pages = {
        "https://site.test/": page_with_links("Home", ["/ok", "/slow"]),
        "https://site.test/ok": page_with_links("OK", []),
        "https://site.test/slow": NavigationTimeout("https://site.test/slow", 30.0),
    }
    orchestrator = make_orchestrator(pages, sessions=sessions)

    results = await orchestrator.crawl_urls("https://site.test/", max_depth=1, max_pages=10)

    assert [r.title for r in results] == ["Home", "OK"]
    session = sessions.get_all_sessions()[0]
    assert session.status == "completed"
    assert session.crawled_urls == 2
    assert session.failed_urls == 1
    assert session.total_urls == 3


@pytest.mark.asyncio
async def test_lifecycle_starts_and_closes_browser():
    orchestrator = make_orchestrator({})

    await orchestrator.initialize()
    assert orchestrator.browser.is_running

    await orchestrator.shutdown()
    assert not orchestrator.browser.is_running
