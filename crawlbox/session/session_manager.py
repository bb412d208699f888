from __future__ import annotations

import uuid
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

from loguru import logger

from crawlbox.errors import SessionNotFound
from crawlbox.events import EventBus
from crawlbox.models import CrawlSession
from crawlbox.models.session_model import (
    SESSION_ACTIVE,
    SESSION_CANCELLED,
    SESSION_COMPLETED,
    SESSION_FAILED,
)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SessionManager:
    """In-memory crawl session tracker."""

    def __init__(self, events: Optional[EventBus] = None):
        self.events = events
        self._sessions: Dict[str, CrawlSession] = {}

    def create_session(self, start_url: str, metadata: Optional[Dict[str, Any]] = None) -> str:
        session = CrawlSession(
            id=uuid.uuid4().hex,
            start_url=start_url,
            started_at=_utcnow(),
            metadata=dict(metadata or {}),
        )
        self._sessions[session.id] = session

        logger.info(f"Crawl session {session.id} created for {start_url}")
        self._publish("crawler.session.created", session)
        return session.id

    def get_session(self, session_id: str) -> Optional[CrawlSession]:
        return self._sessions.get(session_id)

    def update_session(self, session_id: str, **updates: Any) -> None:
        session = self._sessions.get(session_id)
        if session is None:
            raise SessionNotFound(session_id)

        for key, value in updates.items():
            if not hasattr(session, key):
                raise AttributeError(f"CrawlSession has no field {key!r}")
            setattr(session, key, value)

        logger.debug(f"Crawl session {session_id} updated: {updates}")
        self._publish("crawler.session.updated", session)

    def increment_crawled(self, session_id: str) -> None:
        session = self._sessions.get(session_id)
        if session is not None:
            session.crawled_urls += 1
            session.total_urls += 1

    def increment_failed(self, session_id: str) -> None:
        session = self._sessions.get(session_id)
        if session is not None:
            session.failed_urls += 1
            session.total_urls += 1

    def _end(self, session_id: str, status: str) -> Optional[CrawlSession]:
        session = self._sessions.get(session_id)
        if session is not None:
            session.status = status
            session.ended_at = _utcnow()
        return session

    def complete_session(self, session_id: str) -> None:
        session = self._end(session_id, SESSION_COMPLETED)
        if session is None:
            return
        logger.info(
            f"Crawl session {session_id} completed: total={session.total_urls} "
            f"crawled={session.crawled_urls} failed={session.failed_urls}"
        )
        self._publish("crawler.session.completed", session)

    def fail_session(self, session_id: str, error: Optional[str] = None) -> None:
        session = self._end(session_id, SESSION_FAILED)
        if session is None:
            return
        if error:
            session.metadata["error"] = error
        logger.error(f"Crawl session {session_id} failed: {error}")
        self._publish("crawler.session.failed", session)

    def cancel_session(self, session_id: str) -> None:
        session = self._end(session_id, SESSION_CANCELLED)
        if session is None:
            return
        logger.info(f"Crawl session {session_id} cancelled")
        self._publish("crawler.session.cancelled", session)

    def get_all_sessions(self) -> List[CrawlSession]:
        return list(self._sessions.values())

    def get_active_sessions(self) -> List[CrawlSession]:
        return [s for s in self._sessions.values() if s.status == SESSION_ACTIVE]

    def clear_old_sessions(self, max_age: float = 24 * 60 * 60) -> int:
        """Drop ended sessions older than ``max_age`` seconds; returns how many."""
        cutoff = _utcnow() - timedelta(seconds=max_age)
        stale = [
            session_id
            for session_id, session in self._sessions.items()
            if session.ended_at is not None and session.ended_at < cutoff
        ]
        for session_id in stale:
            del self._sessions[session_id]

        if stale:
            logger.info(f"Cleared {len(stale)} old crawl sessions")
        return len(stale)

    def _publish(self, topic: str, session: CrawlSession) -> None:
        if self.events is not None:
            self.events.publish(topic, {"session_id": session.id, "session": session})
