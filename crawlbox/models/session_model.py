from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Optional


SESSION_ACTIVE = "active"
SESSION_COMPLETED = "completed"
SESSION_FAILED = "failed"
SESSION_CANCELLED = "cancelled"


@dataclass
class CrawlSession:
    """Progress of one traversal, as reported by the orchestrator."""

    id: str
    start_url: str
    started_at: datetime
    status: str = SESSION_ACTIVE
    ended_at: Optional[datetime] = None
    total_urls: int = 0
    crawled_urls: int = 0
    failed_urls: int = 0
    metadata: Dict[str, Any] = field(default_factory=dict)
