"""Pytest fixtures for apos-static tests."""

from collections.abc import AsyncGenerator, Callable
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import httpx
import pytest
from pytest_httpx import HTTPXMock

from apos_static.config import (
    CrawlingConfig,
    ExportConfig,
    OutputConfig,
    PreviewConfig,
    UploadsConfig,
)
from apos_static.http_client import RetryPolicy, create_http_client

BACKEND_URL = "http://backend.test"
PREVIEW_HOST = "127.0.0.1"
PREVIEW_PORT = 4321
PREVIEW_URL = f"http://{PREVIEW_HOST}:{PREVIEW_PORT}"
API_KEY = "test-key"


@pytest.fixture
def fast_policy() -> RetryPolicy:
    """Retry policy without backoff delays."""
    return RetryPolicy(retries=3, base_delay=0.0, max_delay=0.0)


@pytest.fixture
def make_config(tmp_path: Path) -> Callable[..., ExportConfig]:
    """Factory for ExportConfig instances wired to the fake site.

    Build and preview commands are disabled (externally managed server) and
    retries have no backoff delay.
    """

    def factory(
        *,
        concurrency: int = 2,
        retries: int = 1,
        piece_types: list[str] | None = None,
        uploads: str = "none",
        locales: dict[str, Any] | None = None,
        local_dirs: list[str] | None = None,
    ) -> ExportConfig:
        return ExportConfig(
            backend_url=BACKEND_URL,
            api_key=API_KEY,
            preview=PreviewConfig(
                host=PREVIEW_HOST,
                port=PREVIEW_PORT,
                build_command=[],
                serve_command=[],
                working_dir=str(tmp_path),
                ready_timeout_seconds=2.0,
                ready_interval_seconds=0.01,
            ),
            crawling=CrawlingConfig(
                concurrency=concurrency,
                retries=retries,
                retry_base_delay=0.0,
                retry_max_delay=0.0,
                piece_types=piece_types,
            ),
            output=OutputConfig(dir=str(tmp_path / "out"), build_dir="dist"),
            uploads=UploadsConfig(policy=uploads, local_dirs=local_dirs or []),
            locales=locales,
        )

    return factory


@dataclass
class FakeSite:
    """In-memory ApostropheCMS backend plus preview server.

    Serves:
    - preview pages from ``pages`` (keyed by path plus query)
    - the flat page listing from ``page_urls``
    - piece listings from ``pieces`` (type -> list of URLs), paginated
    - the API root from ``api_root``
    - oEmbed responses from ``oembed`` (video URL -> payload); unknown URLs get a 500
    """

    pages: dict[str, str] = field(default_factory=dict)
    page_urls: list[str] = field(default_factory=list)
    pieces: dict[str, list[str]] = field(default_factory=dict)
    api_root: dict[str, Any] = field(default_factory=dict)
    oembed: dict[str, dict[str, Any]] = field(default_factory=dict)
    uploads: dict[str, bytes] = field(default_factory=dict)
    not_found_html: str | None = None
    ready: bool = True
    page_listing_status: int = 200
    requests: list[httpx.Request] = field(default_factory=list)

    def requested_paths(self, host: str) -> list[str]:
        return [r.url.raw_path.decode() for r in self.requests if r.url.host == host]

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if request.url.host == PREVIEW_HOST:
            return self._preview(request)
        return self._backend(request)

    def _preview(self, request: httpx.Request) -> httpx.Response:
        target = request.url.raw_path.decode()
        if target == "/404":
            if self.not_found_html is None:
                return httpx.Response(404, text="missing")
            return httpx.Response(200, html=self.not_found_html)
        if not self.ready:
            return httpx.Response(503, text="starting")
        if target in self.pages:
            return httpx.Response(200, html=self.pages[target])
        if target == "/":
            return httpx.Response(200, html="<html><body>ready</body></html>")
        return httpx.Response(404, text="not found")

    def _backend(self, request: httpx.Request) -> httpx.Response:
        path = request.url.path
        params = request.url.params

        if path.startswith("/uploads/"):
            if path in self.uploads:
                return httpx.Response(200, content=self.uploads[path])
            return httpx.Response(404)

        if request.headers.get("APOS-EXTERNAL-FRONT-KEY") != API_KEY:
            return httpx.Response(401, json={"error": "missing key"})

        if path == "/api/v1/@apostrophecms/page":
            if self.page_listing_status != 200:
                return httpx.Response(self.page_listing_status, json={"error": "listing failed"})
            return httpx.Response(200, json={"results": [{"_url": u} for u in self.page_urls]})

        if path == "/api/v1/@apostrophecms/oembed/query":
            payload = self.oembed.get(params.get("url", ""))
            if payload is None:
                return httpx.Response(500, json={"error": "oembed failed"})
            return httpx.Response(200, json=payload)

        if path in ("/api/v1", "/api/v1/"):
            return httpx.Response(200, json=self.api_root)

        piece_type = path.removeprefix("/api/v1/")
        if piece_type in self.pieces:
            per_page = int(params.get("perPage", "100"))
            page = int(params.get("page", "1"))
            urls = self.pieces[piece_type][(page - 1) * per_page : page * per_page]
            return httpx.Response(200, json={"results": [{"_url": u} for u in urls]})

        return httpx.Response(404, json={"error": "not found"})


@pytest.fixture
def fake_site(httpx_mock: HTTPXMock) -> FakeSite:
    """Route every HTTP request through a FakeSite instance."""
    site = FakeSite()
    httpx_mock.add_callback(site, is_reusable=True)
    return site


@pytest.fixture
async def client() -> AsyncGenerator[httpx.AsyncClient]:
    """Shared export client (innermost transport mocked by pytest-httpx)."""
    async with create_http_client() as http:
        yield http
