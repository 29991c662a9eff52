"""Media library (uploads) handling.

Policies:
- ``none``: uploads stay on the backend/CDN, nothing is done
- ``copy-only``: copy a local uploads directory (monorepo layout) into the output
- ``download``: copy locally when possible, otherwise download every upload
  referenced by the exported HTML
"""

import asyncio
import logging
import shutil
from collections.abc import Iterable
from dataclasses import dataclass, field
from pathlib import Path
from urllib.parse import unquote, urlsplit

import aiofiles
import httpx
from lxml import etree

from apos_static.config import UploadPolicy
from apos_static.exceptions import FetchError, UploadError
from apos_static.http_client import RetryPolicy, fetch_with_retry
from apos_static.processors.markup import parse_document

logger = logging.getLogger(__name__)

DOWNLOAD_TIMEOUT = 60.0


@dataclass
class UploadStats:
    """Outcome of the uploads step."""

    copied_from: Path | None = None
    downloaded: int = 0
    failed: int = 0
    total_bytes: int = 0
    errors: list[UploadError] = field(default_factory=list)


def find_local_uploads(candidates: Iterable[Path]) -> Path | None:
    """Return the first candidate that is a non-empty directory."""
    for candidate in candidates:
        if candidate.is_dir() and any(candidate.iterdir()):
            return candidate
    return None


async def copy_local_uploads(output_dir: Path, candidates: Iterable[Path]) -> Path | None:
    """Copy the first non-empty local uploads directory to ``<output>/uploads``.

    Returns:
        The directory copied from, or None when no candidate exists
    """
    source = find_local_uploads(candidates)
    if source is None:
        return None

    logger.info(f"Copying uploads from {source}")
    await asyncio.to_thread(shutil.copytree, source, output_dir / "uploads", dirs_exist_ok=True)
    return source


UPLOAD_ATTRIBUTES = ("src", "href", "srcset")


def _srcset_urls(srcset: str) -> list[str]:
    """URL part of every ``url [descriptor]`` candidate in a srcset."""
    return [candidate.split()[0] for candidate in srcset.split(",") if candidate.strip()]


def upload_references(html: str, backend_url: str) -> list[str]:
    """List attribute values pointing at ``[backend]/uploads/...``, in document order.

    Only element attributes are read, so text inside scripts and comments
    never counts as a reference.
    """
    root = parse_document(html)
    if root is None:
        return []

    prefixes = ("/uploads/", f"{backend_url.rstrip('/')}/uploads/")
    found: dict[str, None] = {}

    for element in root.iter(etree.Element):
        for attribute in UPLOAD_ATTRIBUTES:
            value = (element.get(attribute) or "").strip()
            if not value:
                continue
            urls = _srcset_urls(value) if attribute == "srcset" else [value]
            for url in urls:
                if url.startswith(prefixes):
                    found.setdefault(url, None)

    return list(found)


async def find_upload_urls(output_dir: Path, backend_url: str) -> list[str]:
    """Collect upload references from every exported ``.html`` file, sorted."""
    found: set[str] = set()

    for html_file in sorted(output_dir.rglob("*.html")):
        async with aiofiles.open(html_file, encoding="utf-8", errors="replace") as f:
            content = await f.read()
        found.update(upload_references(content, backend_url))

    return sorted(found)


def upload_destination(output_dir: Path, upload_url: str) -> Path:
    """Map an upload URL to its file under the output directory.

    Raises:
        ValueError: If the path would land outside the output directory
    """
    relative = unquote(urlsplit(upload_url).path).lstrip("/")
    root = output_dir.resolve()
    destination = (root / relative).resolve()
    if destination == root or not destination.is_relative_to(root):
        raise ValueError(f"Upload path escapes output directory: {upload_url}")
    return destination


class UploadHandler:
    """Applies an upload policy after pages have been written.

    Example:
        >>> handler = UploadHandler(client, "download", output_dir, backend_url, policy)
        >>> stats = await handler.run()
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        upload_policy: UploadPolicy,
        output_dir: Path,
        backend_url: str,
        retry_policy: RetryPolicy,
        local_dirs: Iterable[Path] = (),
    ) -> None:
        self.client = client
        self.upload_policy = upload_policy
        self.output_dir = output_dir
        self.backend_url = backend_url.rstrip("/")
        self.retry_policy = retry_policy
        self.local_dirs = list(local_dirs)
        self.stats = UploadStats()

    async def run(self) -> UploadStats:
        """Execute the configured policy and return its statistics."""
        if self.upload_policy == "none":
            return self.stats

        self.stats.copied_from = await copy_local_uploads(self.output_dir, self.local_dirs)
        if self.stats.copied_from is not None:
            return self.stats

        if self.upload_policy == "copy-only":
            logger.info("No local uploads directory found, leaving upload URLs untouched")
            return self.stats

        await self.download_referenced()
        return self.stats

    async def download_referenced(self) -> None:
        """Download every upload referenced by the exported HTML."""
        urls = await find_upload_urls(self.output_dir, self.backend_url)
        if not urls:
            logger.info("No upload URLs found in HTML")
            return

        logger.info(f"Downloading {len(urls)} upload asset(s)")
        for upload_url in urls:
            try:
                await self.download(upload_url)
            except UploadError as e:
                self.stats.failed += 1
                self.stats.errors.append(e)
                logger.warning(str(e))

        summary = f"Downloaded {self.stats.downloaded} upload(s)"
        if self.stats.failed:
            summary += f", {self.stats.failed} failed"
        logger.info(summary)

    async def download(self, upload_url: str) -> Path:
        """Download one upload.

        Raises:
            UploadError: If the URL is unsafe or the download fails
        """
        full_url = upload_url if upload_url.startswith("http") else f"{self.backend_url}{upload_url}"

        try:
            destination = upload_destination(self.output_dir, full_url)
            response = await fetch_with_retry(
                self.client, full_url, policy=self.retry_policy, timeout=DOWNLOAD_TIMEOUT
            )
            destination.parent.mkdir(parents=True, exist_ok=True)
            async with aiofiles.open(destination, "wb") as f:
                await f.write(response.content)
        except (FetchError, ValueError, OSError) as e:
            raise UploadError(f"Failed to download {upload_url}: {e}") from e

        self.stats.downloaded += 1
        self.stats.total_bytes += len(response.content)
        return destination
