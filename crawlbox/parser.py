from crawlbox.parsing.html_extractor import ParsedPage, parse_html
from crawlbox.utils.url_utils import is_valid_url, normalize_url, resolve_link


class Parser:
    """Default HTML parser handed to the orchestrator."""

    def normalize_url(self, url: str) -> str:
        return normalize_url(url)

    def is_valid_url(self, url: str) -> bool:
        return is_valid_url(url)

    def resolve_link(self, base_url: str, link: str) -> str | None:
        return resolve_link(base_url, link)

    def parse_html(self, html: str, base_url: str) -> ParsedPage:
        return parse_html(html, base_url)
