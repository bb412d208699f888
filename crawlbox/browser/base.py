from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, Protocol


@dataclass
class NavigationResponse:
    status: int
    headers: Dict[str, str] = field(default_factory=dict)
    url: str = ""


class BrowserPage(Protocol):
    async def set_viewport(self, width: int, height: int) -> None: ...

    async def set_user_agent(self, user_agent: str) -> None: ...

    async def goto(self, url: str, *, wait_until: str, timeout: float) -> NavigationResponse:
        """Navigate to ``url``; ``timeout`` is in seconds.

        Raises ``NavigationTimeout`` or ``TransportError`` from
        ``crawlbox.errors``.
        """
        ...

    async def content(self) -> str: ...

    async def close(self) -> None: ...


class Browser(Protocol):
    @property
    def is_running(self) -> bool: ...

    async def start(self) -> None: ...

    async def new_page(self) -> BrowserPage: ...

    async def close(self) -> None: ...
