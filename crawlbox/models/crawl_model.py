from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional


JOB_PENDING = "pending"
JOB_RUNNING = "running"
JOB_COMPLETED = "completed"
JOB_FAILED = "failed"

_JOB_ORDER = {JOB_PENDING: 0, JOB_RUNNING: 1, JOB_COMPLETED: 2, JOB_FAILED: 2}


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class CrawlResult:
    url: str
    status_code: int
    title: Optional[str] = None
    content: Optional[str] = None
    html: Optional[str] = None
    headers: Dict[str, str] = field(default_factory=dict)
    links: List[str] = field(default_factory=list)
    images: List[str] = field(default_factory=list)
    metadata: Dict[str, Any] = field(default_factory=dict)
    crawled_at: datetime = field(default_factory=utcnow)
    duration: float = 0.0


@dataclass
class CrawlJob:
    url: str
    depth: int = 0
    id: str = field(default_factory=lambda: uuid.uuid4().hex)
    status: str = JOB_PENDING
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    result: Optional[CrawlResult] = None
    error: Optional[str] = None

    @property
    def finished(self) -> bool:
        return self.status in (JOB_COMPLETED, JOB_FAILED)

    def transition(self, status: str) -> None:
        if status not in _JOB_ORDER:
            raise ValueError(f"Unknown job status: {status}")
        if self.finished or _JOB_ORDER[status] <= _JOB_ORDER[self.status]:
            raise ValueError(f"Job {self.id} cannot move from {self.status} to {status}")

        self.status = status
        if status == JOB_RUNNING:
            self.started_at = utcnow()
        elif status in (JOB_COMPLETED, JOB_FAILED):
            self.completed_at = utcnow()


@dataclass
class CrawlProgress:
    current: int
    total: int
    url: str


@dataclass
class CrawlerOptions:
    user_agent: str
    viewport_width: int = 1920
    viewport_height: int = 1080
    timeout: float = 30.0
    respect_robots_txt: bool = True
    follow_links: bool = True
    max_depth: int = 3
    max_pages: int = 100
    delay: float = 1.0
    proxy: Optional[str] = None

    @classmethod
    def from_config(cls, config) -> "CrawlerOptions":
        return cls(
            user_agent=config.crawler_user_agent,
            viewport_width=config.viewport_width,
            viewport_height=config.viewport_height,
            timeout=config.request_timeout,
            respect_robots_txt=config.respect_robots_txt,
            follow_links=config.follow_links,
            max_depth=config.max_depth,
            max_pages=config.max_pages,
            delay=config.crawl_delay_default,
            proxy=config.proxy,
        )
