"""HTML processors applied to every rendered page.

Order matters: links are extracted before URLs are rewritten.
"""

from apos_static.processors.links import extract_internal_links
from apos_static.processors.rewriter import make_urls_relative
from apos_static.processors.uploads import UploadHandler, UploadStats
from apos_static.processors.video import VideoWidgetProcessor

__all__ = [
    "UploadHandler",
    "UploadStats",
    "VideoWidgetProcessor",
    "extract_internal_links",
    "make_urls_relative",
]
