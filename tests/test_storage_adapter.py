import json

import pytest

from crawlbox.models import CrawlResult
from crawlbox.storage.storage_adapter import StorageAdapter


class RecordingMongo:
    def __init__(self):
        self.saved = []
        self.connected = False

    async def connect(self):
        self.connected = True

    async def close(self):
        self.connected = False

    async def save_result(self, result, session_id=None):
        self.saved.append((result.url, session_id))


@pytest.mark.asyncio
async def test_file_backend_writes_json_per_session(tmp_path):
    storage = StorageAdapter(file_dir=str(tmp_path))
    result = CrawlResult(url="https://site.test/", status_code=200, title="Home", links=["https://site.test/a"])

    await storage.save_crawl_result(result, "session-1")
    await storage.save_crawl_result(result)

    written = list((tmp_path / "session-1").glob("*.json"))
    assert len(written) == 1
    data = json.loads(written[0].read_text(encoding="utf-8"))
    assert data["url"] == "https://site.test/"
    assert data["links"] == ["https://site.test/a"]
    assert len(list((tmp_path / "default").glob("*.json"))) == 1


@pytest.mark.asyncio
async def test_mongo_backend_is_used_when_configured():
    mongo = RecordingMongo()
    storage = StorageAdapter(mongo=mongo)

    await storage.connect()
    await storage.save_crawl_result(CrawlResult(url="https://site.test/", status_code=200), "s")
    await storage.close()

    assert mongo.saved == [("https://site.test/", "s")]
    assert mongo.connected is False
