from __future__ import annotations

import re
from urllib.parse import parse_qsl, unquote, urlsplit, urlunsplit

PRODUCT_DETAIL = "product_detail"
SEARCH = "search"
CATEGORY = "category"
REDIRECT = "redirect"
UNKNOWN = "unknown"

URL_TYPES = (PRODUCT_DETAIL, SEARCH, CATEGORY, REDIRECT, UNKNOWN)

REDIRECT_QUERY_KEYS = {"url", "u", "target", "dest", "destination", "redirect", "redir", "r", "out"}
REDIRECT_PATH_FRAGMENTS = ("/redirect", "/goto", "/click", "/tracking", "/trk")

SEARCH_QUERY_KEYS = {"q", "query", "search", "s", "keyword", "keywords", "k", "term"}
SEARCH_PATH_FRAGMENTS = ("/search", "/buscar", "/results")

CATEGORY_PATH_FRAGMENTS = (
    "/category",
    "/categoria",
    "/collection",
    "/collections",
    "/department",
    "/departments",
    "/product-category",
    "/catalog",
    "/catalogo",
    "/tienda",
    "/productos",
    "/c/",
)

PRODUCT_PATH_FRAGMENTS = ("/product", "/producto", "/p/", "/item", "/items", "/dp/", "/gp/product")

SCHEME_PREFIX = re.compile(r"^[a-z][a-z0-9+.-]*://", re.IGNORECASE)


def normalize_url(url: str | None) -> str | None:
    """Return an absolute URL, assuming https for bare hostnames."""
    if not url:
        return None
    candidate = url.strip()
    if not candidate:
        return None
    if not SCHEME_PREFIX.match(candidate):
        candidate = f"https://{candidate.lstrip('/')}"
    try:
        parts = urlsplit(candidate)
    except ValueError:
        return None
    if parts.scheme not in {"http", "https"} or not parts.hostname:
        return None
    return urlunsplit((parts.scheme, parts.netloc, parts.path, parts.query, parts.fragment))


def hostname(url: str | None) -> str | None:
    normalized = normalize_url(url)
    if not normalized:
        return None
    try:
        host = urlsplit(normalized).hostname
    except ValueError:
        return None
    return host.lower() if host else None


def classify_url(url: str | None) -> str:
    normalized = normalize_url(url)
    if not normalized:
        return UNKNOWN

    parts = urlsplit(normalized)
    path = (parts.path or "/").lower()
    params = [(key.lower(), value) for key, value in parse_qsl(parts.query, keep_blank_values=True)]

    if _is_redirect(path, params):
        return REDIRECT
    if _is_search(path, params):
        return SEARCH
    if any(fragment in path for fragment in CATEGORY_PATH_FRAGMENTS):
        return CATEGORY
    if any(fragment in path for fragment in PRODUCT_PATH_FRAGMENTS):
        return PRODUCT_DETAIL
    return UNKNOWN


def is_canonical(url_type: str) -> bool:
    return url_type == PRODUCT_DETAIL


def belongs_to_marketplace_domain(url: str | None, marketplace_url: str | None) -> bool:
    product_host = hostname(url)
    marketplace_host = hostname(marketplace_url)
    if not product_host or not marketplace_host:
        return False
    return product_host == marketplace_host or product_host.endswith(f".{marketplace_host}")


def _is_redirect(path: str, params: list[tuple[str, str]]) -> bool:
    for key, value in params:
        if key in REDIRECT_QUERY_KEYS and _embeds_url(value):
            return True
    if path.startswith("/out"):
        return True
    return any(fragment in path for fragment in REDIRECT_PATH_FRAGMENTS)


def _is_search(path: str, params: list[tuple[str, str]]) -> bool:
    if any(key in SEARCH_QUERY_KEYS for key, _ in params):
        return True
    if path == "/s" or path.startswith("/s/"):
        return True
    return any(fragment in path for fragment in SEARCH_PATH_FRAGMENTS)


def _embeds_url(value: str) -> bool:
    decoded = unquote(value or "").strip().lower()
    return decoded.startswith(("http://", "https://")) or "http://" in decoded or "https://" in decoded
