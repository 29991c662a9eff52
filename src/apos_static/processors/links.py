"""Same-origin link extraction."""

from urllib.parse import urljoin

from apos_static.processors.markup import parse_document
from apos_static.urls import path_and_query, same_origin


def extract_internal_links(html: str, base_url: str) -> list[str]:
    """Extract links that stay on the preview server.

    Args:
        html: Rendered page HTML
        base_url: Preview server base URL used to resolve relative links

    Returns:
        Path plus query (no fragment) of every same-origin ``a[href]``,
        deduplicated in document order

    Examples:
        >>> html = '<a href="/about#team">About</a><a href="https://cdn.example.com/x">CDN</a>'
        >>> extract_internal_links(html, "http://127.0.0.1:4321")
        ['/about']
    """
    root = parse_document(html)
    if root is None:
        return []

    links: dict[str, None] = {}
    for anchor in root.iter("a"):
        href = (anchor.get("href") or "").strip()
        if not href:
            continue

        try:
            absolute_url = urljoin(base_url, href)
            if not same_origin(absolute_url, base_url):
                continue
            links.setdefault(path_and_query(absolute_url), None)
        except ValueError:
            # Malformed URL
            continue

    return list(links)
