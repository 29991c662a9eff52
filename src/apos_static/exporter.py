"""Static export orchestration.

export_static() runs the whole job: build, preview server, sitemap discovery,
render loop, uploads and the 404 page. Fatal errors propagate; per-page
failures are collected in the result.
"""

import logging
from dataclasses import dataclass, field
from pathlib import Path

import httpx

from apos_static.config import ExportConfig
from apos_static.crawler import SiteCrawler
from apos_static.exceptions import FetchError, NoUrlsError, PageRenderError
from apos_static.http_client import create_http_client, fetch_with_retry, wait_for_server
from apos_static.outputs import OutputWriter
from apos_static.preview import PreviewServer
from apos_static.processors.uploads import UploadHandler, UploadStats
from apos_static.processors.video import VideoWidgetProcessor
from apos_static.progress import ProgressChannel
from apos_static.sitemap import SitemapDiscoverer

logger = logging.getLogger(__name__)

NOT_FOUND_TIMEOUT = 30.0


@dataclass
class ExportResult:
    """Outcome of one export. ``success`` is False when any page failed."""

    success: bool
    pages_rendered: int
    video_widgets_processed: int
    output_dir: Path
    errors: list[PageRenderError] = field(default_factory=list)
    uploads: UploadStats = field(default_factory=UploadStats)


def _base_dir(config: ExportConfig) -> Path:
    return Path(config.preview.working_dir) if config.preview.working_dir else Path.cwd()


def _milestone(progress: ProgressChannel | None, current: int, message: str) -> None:
    logger.info(message)
    if progress is not None:
        progress.emit(current, message)


async def discover_urls(discoverer: SitemapDiscoverer, config: ExportConfig) -> list[str]:
    """Discover the seed URLs, once per locale when locales are configured.

    Raises:
        DiscoveryError: If a page listing cannot be obtained
        NoUrlsError: If nothing was found
    """
    piece_types = config.crawling.piece_types
    if config.locales:
        urls = await discoverer.discover_locales(config.locales, piece_types)
    else:
        urls = await discoverer.discover(piece_types=piece_types)

    if not urls:
        raise NoUrlsError("No URLs found to render")
    return urls


async def write_not_found_page(
    client: httpx.AsyncClient, writer: OutputWriter, config: ExportConfig
) -> None:
    """Write 404.html from the preview server's not-found route, or the fallback."""
    try:
        response = await fetch_with_retry(
            client,
            f"{config.preview.url}/404",
            policy=config.crawling.retry_policy(),
            timeout=NOT_FOUND_TIMEOUT,
        )
    except FetchError as e:
        logger.debug(f"No 404 route on preview server ({e}), using fallback")
        await writer.write_not_found(None)
    else:
        await writer.write_not_found(response.text)


async def export_static(
    config: ExportConfig,
    *,
    progress: ProgressChannel | None = None,
    client: httpx.AsyncClient | None = None,
    server: PreviewServer | None = None,
) -> ExportResult:
    """Export an ApostropheCMS site to static files.

    Args:
        config: Export configuration
        progress: Optional channel receiving milestone and per-page events
        client: HTTP client to use (one is created and closed otherwise)
        server: Preview server to manage (built from the config otherwise)

    Returns:
        ExportResult with page counts and per-page errors

    Raises:
        BuildError: If the frontend build fails
        ServerNotReadyError: If the preview server does not come up
        DiscoveryError: If the page listing cannot be obtained
        NoUrlsError: If discovery finds nothing to render
    """
    owns_client = client is None
    http = client if client is not None else create_http_client(config)
    server = server if server is not None else PreviewServer(config.preview)
    policy = config.crawling.retry_policy()
    base_dir = _base_dir(config)

    try:
        _milestone(progress, 0, "Building frontend...")
        await server.build()

        _milestone(progress, 10, "Starting preview server...")
        async with server:
            await wait_for_server(
                http,
                config.preview.url,
                timeout=config.preview.ready_timeout_seconds,
                interval=config.preview.ready_interval_seconds,
            )
            _milestone(progress, 20, "Preview server ready")

            _milestone(progress, 25, "Generating sitemap...")
            discoverer = SitemapDiscoverer(
                http,
                config.backend_url,
                config.api_key,
                policy,
                api_timeout=config.crawling.api_timeout_seconds,
                probe_timeout=config.crawling.probe_timeout_seconds,
                heuristic_piece_types=config.crawling.heuristic_piece_types,
            )
            urls = await discover_urls(discoverer, config)
            logger.info(f"Sitemap contains {len(urls)} URL(s)")

            _milestone(progress, 35, "Preparing output directory...")
            writer = OutputWriter(Path(config.output.dir))
            writer.prepare()
            if config.output.build_dir:
                await writer.copy_build_assets(base_dir / config.output.build_dir)

            _milestone(progress, 40, f"Rendering {len(urls)} pages...")
            crawler = SiteCrawler(
                http,
                config.preview.url,
                writer,
                VideoWidgetProcessor(
                    http,
                    config.backend_url,
                    config.api_key,
                    policy,
                    timeout=config.crawling.oembed_timeout_seconds,
                ),
                policy,
                concurrency=config.crawling.concurrency,
                page_timeout=config.crawling.page_timeout_seconds,
                progress=progress,
            )
            render = await crawler.run(urls)

            uploads = UploadStats()
            if config.uploads.policy != "none":
                _milestone(progress, 90, "Processing uploads...")
                handler = UploadHandler(
                    http,
                    config.uploads.policy,
                    writer.root,
                    config.backend_url,
                    policy,
                    local_dirs=[base_dir / candidate for candidate in config.uploads.local_dirs],
                )
                uploads = await handler.run()

            _milestone(progress, 95, "Creating 404 page...")
            await write_not_found_page(http, writer, config)

            _milestone(progress, 100, "Export complete!")
    finally:
        if owns_client:
            await http.aclose()

    return ExportResult(
        success=not render.errors,
        pages_rendered=render.pages_rendered,
        video_widgets_processed=render.video_widgets_processed,
        output_dir=writer.root,
        errors=render.errors,
        uploads=uploads,
    )
