import asyncio

import pytest

from crawlbox.events import EventBus


def test_publish_reaches_topic_and_wildcard_subscribers():
    bus = EventBus()
    received = []
    bus.subscribe("crawler.url.crawled", lambda topic, payload: received.append(("exact", payload["url"])))
    bus.subscribe("*", lambda topic, payload: received.append(("any", topic)))

    bus.publish("crawler.url.crawled", {"url": "https://a.test/"})
    bus.publish("crawler.other")

    assert received == [
        ("exact", "https://a.test/"),
        ("any", "crawler.url.crawled"),
        ("any", "crawler.other"),
    ]


def test_failing_handler_does_not_stop_delivery():
    bus = EventBus()
    received = []

    def broken(topic, payload):
        raise RuntimeError("subscriber bug")

    bus.subscribe("t", broken)
    bus.subscribe("t", lambda topic, payload: received.append(topic))

    bus.publish("t")

    assert received == ["t"]


def test_unsubscribe_stops_delivery():
    bus = EventBus()
    received = []

    def handler(topic, payload):
        received.append(topic)

    bus.subscribe("t", handler)
    bus.unsubscribe("t", handler)
    bus.unsubscribe("missing", handler)
    bus.publish("t")

    assert received == []


@pytest.mark.asyncio
async def test_async_handlers_are_scheduled_without_blocking():
    bus = EventBus()
    done = asyncio.Event()

    async def handler(topic, payload):
        done.set()

    bus.subscribe("t", handler)
    bus.publish("t")

    assert not done.is_set()
    await asyncio.wait_for(done.wait(), timeout=1)


def test_async_handler_without_loop_is_dropped():
    bus = EventBus()
    called = []

    async def handler(topic, payload):
        called.append(topic)

    bus.subscribe("t", handler)
    bus.publish("t")

    assert called == []
