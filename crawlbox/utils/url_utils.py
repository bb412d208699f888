from urllib.parse import urlparse, urlunparse, urljoin
import re


def _clean_tracking_params(query: str) -> str:
    clean_query = re.sub(r"(utm_[^=&]+|sessionid|fbclid|ref|gclid)=[^&]*", "", query, flags=re.IGNORECASE)
    clean_query = re.sub(r"&&+", "&", clean_query).strip("&")
    return clean_query


def resolve_link(base_url: str, link: str) -> str | None:
    """Resolve a (possibly relative) link against ``base_url`` and normalize it.

    Returns None for non-http(s) schemes and links that cannot be parsed.
    """
    try:
        raw_link = link.strip()
        if not raw_link:
            return None
        if raw_link.startswith("//"):
            base_scheme = urlparse(base_url).scheme or "http"
            raw_link = f"{base_scheme}:{raw_link}"

        url = urljoin(base_url, raw_link)
        parsed = urlparse(url)

        if parsed.scheme not in ("http", "https") or not parsed.netloc:
            return None

        clean_query = _clean_tracking_params(parsed.query)
        parsed = parsed._replace(query=clean_query, fragment="")

        path = parsed.path or "/"
        path = re.sub(r"/{2,}", "/", path)
        if path != "/" and path.endswith("/"):
            path = path[:-1]

        parsed = parsed._replace(path=path, netloc=parsed.netloc.lower())
        return urlunparse(parsed)

    except (ValueError, AttributeError):
        return None


def normalize_url(url: str) -> str:
    """Canonical form used as the cache and visited-set key.

    Falls back to the stripped input when the URL cannot be normalized.
    """
    normalized = resolve_link(url, url)
    return normalized if normalized is not None else url.strip()


def is_valid_url(url: str) -> bool:
    try:
        parsed = urlparse(url)
    except ValueError:
        return False
    return parsed.scheme in ("http", "https") and bool(parsed.netloc)


def get_origin(url: str) -> str:
    parsed = urlparse(url)
    return f"{parsed.scheme or 'http'}://{parsed.netloc.lower()}"
