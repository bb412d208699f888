"""Exceptions raised by the crawl orchestrator, the sandbox and the session tracker."""

from __future__ import annotations

from typing import TYPE_CHECKING, Optional

if TYPE_CHECKING:
    from crawlbox.models import ComplianceResult


class CrawlboxError(Exception):
    pass


# -------------------------------
# Crawling
# -------------------------------
class CrawlError(CrawlboxError):
    def __init__(self, url: str, message: str):
        super().__init__(message)
        self.url = url


class AlreadyVisited(CrawlError):
    def __init__(self, url: str):
        super().__init__(url, f"URL already visited: {url}")


class RobotsDisallowed(CrawlError):
    def __init__(self, url: str):
        super().__init__(url, f"URL disallowed by robots.txt: {url}")


class ComplianceBlocked(CrawlError):
    """The page was fetched but a compliance rule refused it."""

    def __init__(self, url: str, reason: Optional[str], compliance: "ComplianceResult | None" = None):
        super().__init__(url, f"Content blocked by compliance: {reason}")
        self.reason = reason
        self.compliance = compliance


class TransportError(CrawlError):
    pass


class NavigationTimeout(TransportError):
    def __init__(self, url: str, timeout: float):
        super().__init__(url, f"Navigation to {url} timed out after {timeout}s")
        self.timeout = timeout


# -------------------------------
# Sandbox
# -------------------------------
class SandboxError(CrawlboxError):
    def __init__(self, task_id: str, message: str):
        super().__init__(message)
        self.task_id = task_id


class TaskTimeout(SandboxError):
    def __init__(self, task_id: str, timeout: float):
        super().__init__(task_id, f"Task {task_id} timed out after {timeout}s")
        self.timeout = timeout


class TaskSpawnError(SandboxError):
    def __init__(self, task_id: str, command: str, cause: Exception):
        super().__init__(task_id, f"Could not start {command!r} for task {task_id}: {cause}")
        self.command = command


class TaskNotFound(SandboxError):
    def __init__(self, task_id: str):
        super().__init__(task_id, f"Task {task_id} not found")


# -------------------------------
# Sessions
# -------------------------------
class SessionNotFound(CrawlboxError):
    def __init__(self, session_id: str):
        super().__init__(f"Session {session_id} not found")
        self.session_id = session_id
