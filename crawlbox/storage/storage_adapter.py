from __future__ import annotations

import asyncio
import dataclasses
import json
import time
from pathlib import Path
from typing import Optional

from loguru import logger

from crawlbox.models import CrawlResult
from crawlbox.storage.mongo_storage_manager import MongoStorageManager


class StorageAdapter:
    """Persist crawl results to MongoDB and/or JSON files.

    Errors from a backend propagate; the orchestrator decides they are not
    fatal.
    """

    def __init__(self, mongo: Optional[MongoStorageManager] = None, file_dir: Optional[str] = None):
        self.mongo = mongo
        self.file_dir = Path(file_dir) if file_dir else None

    async def connect(self) -> None:
        if self.mongo is not None:
            await self.mongo.connect()

    async def close(self) -> None:
        if self.mongo is not None:
            await self.mongo.close()

    async def save_crawl_result(self, result: CrawlResult, session_id: Optional[str] = None) -> None:
        if self.mongo is not None:
            await self.mongo.save_result(result, session_id)

        if self.file_dir is not None:
            path = await asyncio.to_thread(self._write_file, result, session_id)
            logger.debug(f"Crawl result for {result.url} written to {path}")

    def _write_file(self, result: CrawlResult, session_id: Optional[str]) -> Path:
        directory = self.file_dir / (session_id or "default")
        directory.mkdir(parents=True, exist_ok=True)
        path = directory / f"{time.time_ns()}.json"
        path.write_text(
            json.dumps(dataclasses.asdict(result), default=str, ensure_ascii=False, indent=2),
            encoding="utf-8",
        )
        return path
