from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, List

from bs4 import BeautifulSoup

from crawlbox.utils.url_utils import resolve_link


@dataclass
class ParsedPage:
    title: str | None = None
    content: str = ""
    links: List[str] = field(default_factory=list)
    images: List[str] = field(default_factory=list)
    metadata: Dict[str, str] = field(default_factory=dict)


def _soup(html: str) -> BeautifulSoup:
    return BeautifulSoup(html, "lxml")


def extract_title(soup: BeautifulSoup) -> str | None:
    if soup.title and soup.title.string:
        return soup.title.string.strip()
    return None


def extract_text(soup: BeautifulSoup) -> str:
    """Visible text with whitespace collapsed; used for compliance and hashing."""
    for tag in soup(["script", "style", "noscript"]):
        tag.decompose()
    text = soup.get_text(separator=" ", strip=True)
    return " ".join(text.split())


def _unique_resolved(base_url: str, values) -> List[str]:
    seen: Dict[str, None] = {}
    for value in values:
        resolved = resolve_link(base_url, value)
        if resolved and resolved not in seen:
            seen[resolved] = None
    return list(seen)


def extract_links(soup: BeautifulSoup, base_url: str) -> List[str]:
    """All http(s) anchors on the page, resolved and de-duplicated in page order."""
    return _unique_resolved(base_url, (tag["href"] for tag in soup.find_all("a", href=True)))


def extract_images(soup: BeautifulSoup, base_url: str) -> List[str]:
    return _unique_resolved(base_url, (tag["src"] for tag in soup.find_all("img", src=True)))


def extract_metadata(soup: BeautifulSoup) -> Dict[str, str]:
    metadata: Dict[str, str] = {}
    for tag in soup.find_all("meta"):
        key = tag.get("name") or tag.get("property") or tag.get("http-equiv")
        value = tag.get("content")
        if key and value is not None:
            metadata[key.strip().lower()] = value.strip()

    canonical = soup.find("link", rel="canonical", href=True)
    if canonical is not None:
        metadata["canonical"] = canonical["href"].strip()

    html_tag = soup.find("html")
    if html_tag is not None and html_tag.get("lang"):
        metadata["language"] = html_tag["lang"].strip()

    return metadata


def parse_html(html: str, base_url: str) -> ParsedPage:
    soup = _soup(html)
    page = ParsedPage(
        title=extract_title(soup),
        links=extract_links(soup, base_url),
        images=extract_images(soup, base_url),
        metadata=extract_metadata(soup),
    )
    # text extraction mutates the tree, so it runs last
    page.content = extract_text(soup)
    return page
