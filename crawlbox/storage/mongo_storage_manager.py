import gzip
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from bson.binary import Binary
from loguru import logger
from motor.motor_asyncio import AsyncIOMotorClient
from pymongo.errors import ConfigurationError

from crawlbox.models import CrawlResult


DEFAULT_DB_NAME = "crawlbox"
COMPRESS_ABOVE_BYTES = 200_000


def result_document(result: CrawlResult, session_id: Optional[str], max_html_bytes: Optional[int]) -> Dict[str, Any]:
    """Mongo document for ``result``; HTML above 200 KB is stored gzip-compressed."""
    html_bytes = (result.html or "").encode("utf-8", errors="ignore")
    if max_html_bytes is not None and len(html_bytes) > max_html_bytes:
        html_bytes = html_bytes[:max_html_bytes]

    doc: Dict[str, Any] = {
        "url": result.url,
        "session_id": session_id,
        "status_code": result.status_code,
        "title": result.title,
        "content": result.content,
        "headers": result.headers,
        "links": result.links,
        "images": result.images,
        "metadata": result.metadata,
        "crawled_at": result.crawled_at,
        "duration": result.duration,
        "html_length": len(html_bytes),
        "saved_at": datetime.now(timezone.utc),
    }

    if len(html_bytes) > COMPRESS_ABOVE_BYTES:
        compressed = gzip.compress(html_bytes)
        doc["html"] = None
        doc["html_compressed"] = Binary(compressed)
        doc["compression"] = "gzip"
        doc["compressed_length"] = len(compressed)
    else:
        doc["html"] = html_bytes.decode("utf-8", errors="ignore")
    return doc


def document_html(doc: Dict[str, Any]) -> Optional[str]:
    if doc.get("compression") == "gzip" and doc.get("html_compressed") is not None:
        return gzip.decompress(bytes(doc["html_compressed"])).decode("utf-8", errors="ignore")
    return doc.get("html")


class MongoStorageManager:
    """One document per URL in ``collection_name``; re-crawls overwrite."""

    def __init__(
        self,
        uri: str,
        db_name: str | None = None,
        collection_name: str = "crawl_results",
        max_html_bytes: Optional[int] = 500_000,
    ):
        self.uri = uri
        self.db_name = db_name
        self.collection_name = collection_name
        self.max_html_bytes = max_html_bytes
        self.client: AsyncIOMotorClient | None = None
        self.collection = None

    async def connect(self) -> None:
        self.client = AsyncIOMotorClient(self.uri)

        if self.db_name:
            db = self.client[self.db_name]
        else:
            try:
                db = self.client.get_default_database()
            except ConfigurationError:
                # URI carries no database name
                db = self.client[DEFAULT_DB_NAME]

        self.db_name = db.name
        self.collection = db[self.collection_name]
        await self.collection.create_index("url", unique=True)
        await self.collection.create_index("session_id")
        logger.info(f"Connected to MongoDB: {self.uri} (db={self.db_name}, collection={self.collection_name})")

    async def close(self) -> None:
        if self.client is not None:
            self.client.close()
            logger.info("MongoDB client connection closed")
        self.client = None
        self.collection = None

    def _require_collection(self):
        if self.collection is None:
            raise RuntimeError("MongoStorageManager is not connected")
        return self.collection

    async def save_result(self, result: CrawlResult, session_id: str | None = None) -> None:
        collection = self._require_collection()
        doc = result_document(result, session_id, self.max_html_bytes)
        await collection.update_one({"url": result.url}, {"$set": doc}, upsert=True)

    async def load_result(self, url: str) -> Optional[CrawlResult]:
        """Read a stored result back, decompressing its HTML."""
        doc = await self._require_collection().find_one({"url": url})
        if doc is None:
            return None

        return CrawlResult(
            url=doc["url"],
            status_code=doc["status_code"],
            title=doc.get("title"),
            content=doc.get("content"),
            html=document_html(doc),
            headers=doc.get("headers") or {},
            links=doc.get("links") or [],
            images=doc.get("images") or [],
            metadata=doc.get("metadata") or {},
            crawled_at=doc["crawled_at"],
            duration=doc.get("duration", 0.0),
        )
