"""Static rendering of ApostropheCMS video widgets.

Each ``<video-widget url=".." title="..">`` element is replaced at export time
by the oEmbed markup of its video inside a responsive container. A widget whose
oEmbed lookup fails degrades to a visible placeholder; the page still renders.
"""

import logging
from collections.abc import Mapping
from typing import Any

import httpx
from lxml import etree
from lxml import html as lxml_html

from apos_static.exceptions import FetchError, WidgetFetchError
from apos_static.http_client import RetryPolicy, fetch_with_retry
from apos_static.processors.markup import parse_document, replace_element, serialize_document

logger = logging.getLogger(__name__)

OEMBED_ENDPOINT = "/api/v1/@apostrophecms/oembed/query"
DEFAULT_TITLE = "Video content"
DEFAULT_ASPECT_RATIO = 56.25

MISSING_URL_HTML = '<div class="video-error">No video URL provided</div>'

UNAVAILABLE_HTML = (
    '<div class="video-error" style="padding: 2rem; background: #f5f5f5; '
    "border: 1px solid #ddd; border-radius: 4px; text-align: center; "
    'color: #666;"><p>Video unavailable</p></div>'
)

WRAPPER_STYLE = "position: relative; width: 100%; margin-bottom: 1.5rem;"
CONTAINER_STYLE = (
    "position: relative; width: 100%; height: 0; padding-bottom: {ratio}%; overflow: hidden;"
)
IFRAME_CSS = (
    ".video-container iframe { position: absolute !important; top: 0 !important; "
    "left: 0 !important; width: 100% !important; height: 100% !important; "
    "border: 0 !important; }"
)


def aspect_ratio(oembed: Mapping[str, Any]) -> float:
    """Height as a percentage of width, 16:9 when dimensions are missing."""
    try:
        width = float(oembed.get("width") or 0)
        height = float(oembed.get("height") or 0)
    except (TypeError, ValueError):
        return DEFAULT_ASPECT_RATIO
    if width <= 0 or height <= 0:
        return DEFAULT_ASPECT_RATIO
    return height / width * 100


def _format_ratio(ratio: float) -> str:
    return f"{ratio:.4f}".rstrip("0").rstrip(".")


def render_embed(oembed: Mapping[str, Any] | None, title: str = DEFAULT_TITLE) -> list[Any]:
    """Build the replacement nodes for one widget.

    Returns the placeholder when there is no oEmbed data or no ``html`` in it.
    """
    embed_html = oembed.get("html") if oembed else None
    if not isinstance(embed_html, str) or not embed_html.strip():
        return [lxml_html.fragment_fromstring(UNAVAILABLE_HTML)]

    assert oembed is not None
    wrapper = lxml_html.Element("div", {"class": "video-wrapper", "style": WRAPPER_STYLE})
    container = etree.SubElement(
        wrapper,
        "div",
        {
            "class": "video-container",
            "style": CONTAINER_STYLE.format(ratio=_format_ratio(aspect_ratio(oembed))),
        },
    )

    fragments = lxml_html.fragments_fromstring(embed_html)
    if fragments and isinstance(fragments[0], str):
        container.text = fragments.pop(0)
    for node in fragments:
        container.append(node)

    for iframe in container.iter("iframe"):
        iframe.set("title", title)
        iframe.attrib.pop("width", None)
        iframe.attrib.pop("height", None)

    style = lxml_html.Element("style")
    style.text = IFRAME_CSS
    return [wrapper, style]


class VideoWidgetProcessor:
    """Replaces video widgets using oEmbed data from the backend.

    Example:
        >>> processor = VideoWidgetProcessor(client, "http://localhost:3000", key, policy)
        >>> html, count = await processor.process(html)
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        backend_url: str,
        api_key: str,
        policy: RetryPolicy,
        *,
        timeout: float = 15.0,
    ) -> None:
        self.client = client
        self.backend_url = backend_url.rstrip("/")
        self.headers = {"APOS-EXTERNAL-FRONT-KEY": api_key}
        self.policy = policy
        self.timeout = timeout

    def oembed_url(self, video_url: str) -> str:
        return str(
            httpx.URL(f"{self.backend_url}{OEMBED_ENDPOINT}").copy_merge_params({"url": video_url})
        )

    async def fetch_oembed(self, video_url: str) -> dict[str, Any]:
        """Fetch oEmbed metadata for a video.

        Raises:
            WidgetFetchError: If the lookup fails or does not return a JSON object
        """
        url = self.oembed_url(video_url)
        try:
            response = await fetch_with_retry(
                self.client, url, policy=self.policy, headers=self.headers, timeout=self.timeout
            )
            data = response.json()
        except FetchError as e:
            raise WidgetFetchError(f"oEmbed lookup failed for {video_url}: {e}") from e
        except ValueError as e:
            raise WidgetFetchError(f"Invalid oEmbed JSON for {video_url}: {e}") from e

        if not isinstance(data, dict):
            raise WidgetFetchError(f"Unexpected oEmbed response for {video_url}")
        return data

    async def process(self, html: str) -> tuple[str, int]:
        """Replace every video widget in a page.

        Returns:
            (html, count) where count is every widget encountered, including
            ones rendered as placeholders. HTML without widgets is returned as is.
        """
        root = parse_document(html)
        if root is None:
            return html, 0

        widgets = list(root.iter("video-widget"))
        if not widgets:
            return html, 0

        for widget in widgets:
            video_url = (widget.get("url") or "").strip()
            title = widget.get("title") or DEFAULT_TITLE

            if not video_url:
                replace_element(widget, [lxml_html.fragment_fromstring(MISSING_URL_HTML)])
                continue

            oembed: dict[str, Any] | None
            try:
                oembed = await self.fetch_oembed(video_url)
            except WidgetFetchError as e:
                logger.warning(str(e))
                oembed = None

            replace_element(widget, render_embed(oembed, title))

        return serialize_document(root), len(widgets)
