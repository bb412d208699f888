import httpx
import pytest

from crawlbox.utils.robots import RobotsHandler, parse_robots_txt


class MockResponse:
    def __init__(self, status_code: int, text: str = ""):
        self.status_code = status_code
        self.text = text


class MockClient:
    def __init__(self, responses):
        self.responses = responses
        self.calls = 0

    async def get(self, *_args, **_kwargs):
        response = self.responses[min(self.calls, len(self.responses) - 1)]
        self.calls += 1
        if isinstance(response, Exception):
            raise response
        return response


def test_parse_robots_txt_matches_wildcard_and_own_agent():
    robots_txt = (
        "User-agent: OtherBot\nDisallow: /other\n\n"
        "User-agent: *\nDisallow: /private\nDisallow:\n\n"
        "User-agent: TestBot\nDisallow: /Mine\n"
    )

    assert parse_robots_txt(robots_txt, "TestBot") == ["/private", "/Mine"]


@pytest.mark.anyio
async def test_robots_disallow_rules_enforced():
    robots_txt = """User-agent: *\nDisallow: /private"""
    client = MockClient([MockResponse(200, robots_txt)])
    handler = RobotsHandler(client, "TestBot")

    assert not await handler.is_allowed("https://example.com/private/secret")
    assert await handler.is_allowed("https://example.com/public")


@pytest.mark.anyio
async def test_robots_cache_used_for_multiple_urls():
    client = MockClient([MockResponse(200, "User-agent: *\nDisallow: /x")])
    handler = RobotsHandler(client, "TestBot")

    assert await handler.is_allowed("https://example.com/page1")
    assert not await handler.is_allowed("https://example.com/x/page2")

    # robots.txt fetched only once per host
    assert client.calls == 1
    assert len(handler) == 1


@pytest.mark.anyio
async def test_robots_missing_or_server_error_defaults_to_allow():
    client = MockClient([MockResponse(503, ""), MockResponse(404, "")])
    handler = RobotsHandler(client, "TestBot")

    assert await handler.is_allowed("https://example.com/page1")
    assert await handler.is_allowed("https://other.com/page2")


@pytest.mark.anyio
async def test_robots_network_error_fails_open():
    client = MockClient([httpx.ConnectError("refused")])
    handler = RobotsHandler(client, "TestBot")

    assert await handler.is_allowed("https://example.com/private")
    assert len(handler) == 0


@pytest.mark.anyio
async def test_robots_allowed_flag_reflects_host_restrictions():
    client = MockClient([MockResponse(200, "User-agent: *\nDisallow: /x"), MockResponse(200, "User-agent: *\nDisallow:")])
    handler = RobotsHandler(client, "TestBot")

    await handler.is_allowed("https://example.com/page1")
    await handler.is_allowed("https://open.com/page1")

    assert handler._cache["https://example.com"].allowed is False
    assert handler._cache["https://example.com"].disallowed == ["/x"]
    assert handler._cache["https://open.com"].allowed is True
    assert await handler.is_allowed("https://open.com/x/anything")
