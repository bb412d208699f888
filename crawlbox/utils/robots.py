from dataclasses import dataclass, field
from typing import Dict, List, Optional

from loguru import logger

from crawlbox.utils.url_utils import get_origin


@dataclass
class RobotsRules:
    # False once robots.txt restricts anything for our agent on this host
    allowed: bool = True
    disallowed: List[str] = field(default_factory=list)

    def permits(self, url: str) -> bool:
        if self.allowed:
            return True
        return not any(path in url for path in self.disallowed)


def parse_robots_txt(text: str, user_agent: str) -> List[str]:
    """Collect Disallow paths that apply to ``*`` or ``user_agent``."""
    agent = user_agent.lower()
    disallowed: List[str] = []
    current_agent: Optional[str] = None

    for line in text.splitlines():
        stripped = line.strip()
        lowered = stripped.lower()
        if lowered.startswith("user-agent:"):
            current_agent = lowered[len("user-agent:"):].strip()
        elif lowered.startswith("disallow:") and current_agent is not None:
            if current_agent in ("*", agent):
                path = stripped[len("disallow:"):].strip()
                # an empty Disallow means "allow everything"
                if path:
                    disallowed.append(path)

    return disallowed


class RobotsHandler:
    """Fetch robots.txt once per host and keep it for the handler's lifetime."""

    def __init__(self, client, user_agent: str):
        self.client = client
        self.user_agent = user_agent
        self._cache: Dict[str, RobotsRules] = {}

    def __len__(self) -> int:
        return len(self._cache)

    def clear(self) -> None:
        self._cache.clear()

    # -------------------------------------------------------
    async def is_allowed(self, url: str) -> bool:
        origin = get_origin(url)

        rules = self._cache.get(origin)
        if rules is None:
            fetched = await self._fetch_rules(f"{origin}/robots.txt")
            if fetched is None:
                return True
            rules = fetched
            self._cache[origin] = rules

        return rules.permits(url)

    # -------------------------------------------------------
    async def _fetch_rules(self, robots_url: str) -> Optional[RobotsRules]:
        try:
            response = await self.client.get(
                robots_url,
                headers={"User-Agent": self.user_agent},
            )
        except Exception as exc:
            # unreachable robots.txt -> fail open, retried on the next URL
            logger.warning(f"robots.txt not accessible at {robots_url}: {exc}")
            return None

        # 4xx/5xx -> no restrictions for this host
        if not 200 <= response.status_code < 300:
            return RobotsRules()

        text = getattr(response, "text", "") or ""
        disallowed = parse_robots_txt(text, self.user_agent)
        return RobotsRules(allowed=not disallowed, disallowed=disallowed)
