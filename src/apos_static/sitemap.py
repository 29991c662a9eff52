"""Sitemap discovery from the ApostropheCMS REST API.

Builds the list of URLs to render with support for:
- The flat, published page tree (one request, fatal on failure)
- Piece types given explicitly or auto-detected by probing the API root
- A heuristic shortlist of common piece types
- Paginated piece listings
- Per-locale discovery with locale path prefixes
"""

import logging
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from typing import Any, Literal

import httpx

from apos_static.exceptions import DiscoveryError, FetchError
from apos_static.http_client import RetryPolicy, fetch_with_retry
from apos_static.urls import apply_locale_prefix, canonicalize

logger = logging.getLogger(__name__)

API_PREFIX = "/api/v1"
PAGE_ENDPOINT = "@apostrophecms/page"
SYSTEM_NAMESPACE = "@apostrophecms/"
EXCLUDED_ENDPOINTS = frozenset({"page", "search"})
PIECES_PER_PAGE = 100
MAX_PIECE_PAGES = 1000


@dataclass(frozen=True)
class SitemapEntry:
    """Single discovered URL and where it came from."""

    url: str
    source_kind: Literal["page", "piece"]


class SitemapDiscoverer:
    """Enumerates every page and piece URL a backend exposes.

    Example:
        >>> discoverer = SitemapDiscoverer(client, "http://localhost:3000", key, policy)
        >>> urls = await discoverer.discover()
        >>> es_urls = await discoverer.discover(locale="es", piece_types=["article"])
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        backend_url: str,
        api_key: str,
        policy: RetryPolicy,
        *,
        api_timeout: float = 30.0,
        probe_timeout: float = 15.0,
        heuristic_piece_types: Iterable[str] = ("article", "news", "product", "blog", "event"),
    ) -> None:
        """Initialize discoverer.

        Args:
            client: HTTP client for API requests
            backend_url: Backend base URL (e.g., "http://localhost:3000")
            api_key: Value of the APOS-EXTERNAL-FRONT-KEY header
            policy: Retry policy for listing requests (probes make one attempt)
            api_timeout: Per-attempt timeout for page and piece listings
            probe_timeout: Per-attempt timeout for piece-type probes
            heuristic_piece_types: Piece types always probed during auto-discovery
        """
        if not api_key:
            raise ValueError("api_key is required")

        self.client = client
        self.backend_url = backend_url.rstrip("/")
        self.headers = {"APOS-EXTERNAL-FRONT-KEY": api_key}
        self.policy = policy
        self.api_timeout = api_timeout
        self.probe_timeout = probe_timeout
        self.heuristic_piece_types = list(heuristic_piece_types)

    def _api_url(self, endpoint: str, locale: str | None = None, **params: Any) -> str:
        query = {key: str(value) for key, value in params.items()}
        if locale:
            query["aposLocale"] = locale
        url = httpx.URL(f"{self.backend_url}{API_PREFIX}/{endpoint}")
        return str(url.copy_merge_params(query)) if query else str(url)

    async def _get_json(self, url: str, *, timeout: float, policy: RetryPolicy) -> Any:
        response = await fetch_with_retry(
            self.client, url, policy=policy, headers=self.headers, timeout=timeout
        )
        return response.json()

    async def fetch_page_urls(self, locale: str | None = None) -> list[str]:
        """Fetch the canonical URL of every published page.

        The root path is added when the listing does not contain it (for a locale,
        only when neither ``/`` nor ``/<locale>/`` is present).

        Raises:
            DiscoveryError: If the page listing cannot be fetched or decoded
        """
        url = self._api_url(PAGE_ENDPOINT, locale, all=1, flat=1, published=1)

        try:
            data = await self._get_json(url, timeout=self.api_timeout, policy=self.policy)
        except FetchError as e:
            raise DiscoveryError(f"Failed to fetch pages: {e}") from e
        except ValueError as e:
            raise DiscoveryError(f"Invalid JSON in page listing from {url}: {e}") from e

        if isinstance(data, Mapping):
            pages = data.get("results", [])
        else:
            pages = data
        if not isinstance(pages, list):
            raise DiscoveryError(f"Unexpected page listing shape from {url}")

        urls = {
            canonicalize(page["_url"])
            for page in pages
            if isinstance(page, Mapping) and isinstance(page.get("_url"), str)
        }

        if locale:
            if f"/{locale}/" not in urls and "/" not in urls:
                urls.add("/")
        elif "/" not in urls:
            urls.add("/")

        logger.debug(f"Found {len(urls)} page URL(s){f' for locale {locale}' if locale else ''}")
        return sorted(urls)

    async def probe_candidates(self) -> list[str]:
        """List API endpoint names that might be piece types.

        Drops the ``@apostrophecms/`` namespace and the page/search endpoints.
        Returns an empty list when the API root cannot be read.
        """
        url = f"{self.backend_url}{API_PREFIX}/"
        try:
            data = await self._get_json(
                url, timeout=self.probe_timeout, policy=self.policy.single_attempt()
            )
        except (FetchError, ValueError) as e:
            logger.debug(f"Probing API root {url} failed: {e}")
            return []

        if not isinstance(data, Mapping):
            return []

        return [
            key
            for key in data
            if not key.startswith(SYSTEM_NAMESPACE) and key not in EXCLUDED_ENDPOINTS
        ]

    async def is_piece_endpoint(self, endpoint: str, locale: str | None = None) -> bool:
        """Check whether an endpoint lists renderable pieces.

        Qualifies when a one-item listing returns a ``results`` list that is
        either empty or whose first item exposes a ``_url``.
        """
        url = self._api_url(endpoint, locale, perPage=1)
        try:
            data = await self._get_json(
                url, timeout=self.probe_timeout, policy=self.policy.single_attempt()
            )
        except (FetchError, ValueError) as e:
            logger.debug(f"Endpoint {endpoint} is not a piece type: {e}")
            return False

        results = data.get("results") if isinstance(data, Mapping) else None
        if not isinstance(results, list):
            return False
        if not results:
            return True

        first = results[0]
        return isinstance(first, Mapping) and bool(first.get("_url"))

    async def discover_piece_types(self, locale: str | None = None) -> list[str]:
        """Auto-detect piece types from the API root plus the heuristic shortlist."""
        discovered: list[str] = []

        for candidate in await self.probe_candidates():
            if candidate not in discovered and await self.is_piece_endpoint(candidate, locale):
                discovered.append(candidate)

        for heuristic in self.heuristic_piece_types:
            if heuristic in discovered:
                continue
            if heuristic in EXCLUDED_ENDPOINTS or heuristic.startswith(SYSTEM_NAMESPACE):
                continue
            if await self.is_piece_endpoint(heuristic, locale):
                discovered.append(heuristic)

        logger.info(
            f"Discovered {len(discovered)} piece type(s): {', '.join(discovered) or 'none'}"
        )
        return discovered

    async def fetch_piece_urls(self, piece_type: str, locale: str | None = None) -> list[str]:
        """Collect the canonical URL of every item of a piece type.

        Pages through the listing 100 items at a time until a short page. Stops
        early when a page yields no URL not already seen (a backend ignoring
        ``page``) or after ``MAX_PIECE_PAGES`` pages.

        Raises:
            FetchError: If any listing page fails
            ValueError: If a listing page is not valid JSON
        """
        urls: dict[str, None] = {}

        for page in range(1, MAX_PIECE_PAGES + 1):
            url = self._api_url(piece_type, locale, page=page, perPage=PIECES_PER_PAGE)
            data = await self._get_json(url, timeout=self.api_timeout, policy=self.policy)
            results = data.get("results") if isinstance(data, Mapping) else None
            if not isinstance(results, list):
                raise ValueError(f"Listing for {piece_type} has no results array")

            known = len(urls)
            for piece in results:
                if isinstance(piece, Mapping) and isinstance(piece.get("_url"), str):
                    urls.setdefault(canonicalize(piece["_url"]), None)

            if len(results) < PIECES_PER_PAGE:
                break
            if len(urls) == known:
                logger.warning(
                    f"Page {page} of {piece_type} repeated earlier results, stopping pagination"
                )
                break
        else:
            logger.warning(f"Stopped paging {piece_type} after {MAX_PIECE_PAGES} pages")

        return list(urls)

    async def discover_entries(
        self,
        locale: str | None = None,
        piece_types: list[str] | None = None,
    ) -> list[SitemapEntry]:
        """Discover every page and piece URL with its source kind.

        A URL reachable both as page and piece is reported once, as a page.

        Raises:
            DiscoveryError: If the page listing cannot be obtained
        """
        page_urls = await self.fetch_page_urls(locale)

        types = piece_types if piece_types is not None else await self.discover_piece_types(locale)

        entries = {url: SitemapEntry(url=url, source_kind="page") for url in page_urls}
        for piece_type in types:
            try:
                piece_urls = await self.fetch_piece_urls(piece_type, locale)
            except (FetchError, ValueError) as e:
                logger.warning(f"Skipping piece type {piece_type}: {e}")
                continue

            logger.debug(f"Found {len(piece_urls)} URL(s) for piece type {piece_type}")
            for url in piece_urls:
                entries.setdefault(url, SitemapEntry(url=url, source_kind="piece"))

        return [entries[url] for url in sorted(entries)]

    async def discover(
        self,
        locale: str | None = None,
        piece_types: list[str] | None = None,
    ) -> list[str]:
        """Discover every URL to render, sorted and deduplicated.

        Raises:
            DiscoveryError: If the page listing cannot be obtained
        """
        entries = await self.discover_entries(locale, piece_types)
        return [entry.url for entry in entries]

    async def discover_locales(
        self,
        locales: Mapping[str, Any],
        piece_types: list[str] | None = None,
    ) -> list[str]:
        """Run discovery once per locale and merge the prefixed results.

        Args:
            locales: Locale code -> settings object exposing a ``prefix`` attribute
            piece_types: Explicit piece types (None auto-discovers per locale)

        Raises:
            DiscoveryError: If any locale's page listing cannot be obtained
        """
        merged: set[str] = set()
        for code, settings in locales.items():
            urls = await self.discover(locale=code, piece_types=piece_types)
            merged.update(apply_locale_prefix(urls, getattr(settings, "prefix", "")))
            logger.info(f"Locale {code}: {len(urls)} URL(s)")
        return sorted(merged)
