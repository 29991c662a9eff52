"""Rewrite links so the static tree is browsable without the preview server."""

import logging
from urllib.parse import urlsplit

from apos_static.processors.markup import parse_document, serialize_document
from apos_static.urls import canonicalize, same_origin

logger = logging.getLogger(__name__)

# (tag, attribute) pairs carrying navigable URLs
REWRITTEN_ATTRIBUTES = (("a", "href"), ("form", "action"))


def _rewrite_url(url: str, preview_url: str) -> str:
    rewritten = url

    if urlsplit(url).scheme in ("http", "https"):
        if not same_origin(url, preview_url):
            return url
        parts = urlsplit(url)
        rewritten = parts.path or "/"
        if parts.query:
            rewritten += f"?{parts.query}"
        if parts.fragment:
            rewritten += f"#{parts.fragment}"

    if not rewritten.startswith("/") or rewritten.startswith("//"):
        return url

    if "?" in rewritten.split("#", 1)[0]:
        without_hash, _, fragment = rewritten.partition("#")
        rewritten = canonicalize(without_hash)
        if fragment:
            rewritten += f"#{fragment}"

    return rewritten


def make_urls_relative(html: str, preview_url: str) -> str:
    """Point links at their static location.

    - ``a[href]`` and ``form[action]`` on the preview origin become
      root-relative (path, query and fragment kept)
    - root-relative URLs with a query string are canonicalized, so
      ``/articles?page=2#top`` becomes ``/articles/page-2/#top``
    - external, document-relative and scheme URLs (mailto:, tel:) are untouched

    Args:
        html: Page HTML
        preview_url: Preview server base URL

    Returns:
        Rewritten HTML (unchanged input when there is nothing to parse)
    """
    root = parse_document(html)
    if root is None:
        return html

    for tag, attribute in REWRITTEN_ATTRIBUTES:
        for element in root.iter(tag):
            url = element.get(attribute)
            if not url:
                continue
            try:
                rewritten = _rewrite_url(url, preview_url)
            except ValueError:
                logger.debug(f"Leaving malformed URL untouched: {url}")
                continue
            if rewritten != url:
                element.set(attribute, rewritten)

    return serialize_document(root)
