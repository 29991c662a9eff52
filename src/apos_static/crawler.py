"""Render loop over the preview server.

SiteCrawler drains the frontier in rounds: take a batch of ``2 x concurrency``
paths, render them with the batch executor, repeat until no new same-origin
link turns up. Each page goes through fetch, link extraction, video widgets,
URL rewriting and write, in that order.
"""

import logging
from dataclasses import dataclass, field
import httpx

from apos_static.exceptions import AposStaticError, PageRenderError
from apos_static.frontier import Frontier
from apos_static.http_client import RetryPolicy, fetch_with_retry
from apos_static.outputs import OutputWriter
from apos_static.pipeline import BatchExecutor
from apos_static.processors.links import extract_internal_links
from apos_static.processors.rewriter import make_urls_relative
from apos_static.processors.video import VideoWidgetProcessor
from apos_static.progress import ProgressChannel, page_progress

logger = logging.getLogger(__name__)


@dataclass
class RenderResult:
    """Aggregate outcome of the render loop."""

    pages_rendered: int = 0
    video_widgets_processed: int = 0
    errors: list[PageRenderError] = field(default_factory=list)


class SiteCrawler:
    """Renders every page reachable from the seed paths.

    Example:
        >>> crawler = SiteCrawler(client, preview_url, writer, videos, policy, concurrency=4)
        >>> result = await crawler.run(["/", "/about/"])
        >>> result.pages_rendered
        12
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        preview_url: str,
        writer: OutputWriter,
        video_processor: VideoWidgetProcessor,
        policy: RetryPolicy,
        *,
        concurrency: int,
        page_timeout: float = 60.0,
        progress: ProgressChannel | None = None,
    ) -> None:
        """Initialize crawler.

        Args:
            client: Shared HTTP client
            preview_url: Base URL of the running preview server
            writer: Output writer for rendered pages
            video_processor: Video widget renderer
            policy: Retry policy for page fetches
            concurrency: Number of pages rendered in parallel
            page_timeout: Per-attempt timeout for a page fetch
            progress: Optional channel receiving one event per rendered page
        """
        self.client = client
        self.preview_url = preview_url.rstrip("/")
        self.writer = writer
        self.video_processor = video_processor
        self.policy = policy
        self.concurrency = concurrency
        self.page_timeout = page_timeout
        self.progress = progress

        self.executor = BatchExecutor(concurrency)
        self.frontier = Frontier()
        self.result = RenderResult()

    @property
    def batch_size(self) -> int:
        return self.concurrency * 2

    async def run(self, seeds: list[str]) -> RenderResult:
        """Render the seeds and everything they link to on the preview origin."""
        self.frontier = Frontier(seeds)
        self.result = RenderResult()
        rounds = 0

        while not self.frontier.is_empty:
            batch = await self.frontier.take_batch(self.batch_size)
            if not batch:
                continue

            rounds += 1
            outcome = await self.executor.run(batch, self.render_page)
            for failure in outcome.failures:
                self.result.errors.append(PageRenderError(failure.url, failure.error))
            logger.debug(
                f"Round {rounds}: {outcome.succeeded} rendered, {outcome.failed} failed, "
                f"{self.frontier.pending_count} pending"
            )

        self.result.pages_rendered = self.frontier.processed_count
        logger.info(
            f"Rendered {self.result.pages_rendered} page(s) with "
            f"{len(self.result.errors)} error(s)"
        )
        return self.result

    async def render_page(self, path: str) -> None:
        """Fetch, process and write one page.

        Raises:
            PageRenderError: If any step fails
        """
        # Plain join keeps every request on the preview origin
        page_url = f"{self.preview_url}/{path.lstrip('/')}"

        try:
            response = await fetch_with_retry(
                self.client, page_url, policy=self.policy, timeout=self.page_timeout
            )
            html = response.text

            await self.frontier.add(extract_internal_links(html, self.preview_url))

            html, widgets = await self.video_processor.process(html)

            html = make_urls_relative(html, self.preview_url)
            await self.writer.write(path, html)
            self.result.video_widgets_processed += widgets
        except (AposStaticError, OSError, ValueError) as e:
            logger.warning(f"Failed to render {path}: {e}")
            raise PageRenderError(path, str(e)) from e

        await self.frontier.mark_processed(path)

        if self.progress is not None:
            processed = self.frontier.processed_count
            self.progress.emit(
                page_progress(processed, self.frontier.pending_count),
                f"Rendered {processed} pages",
                url=path,
            )
