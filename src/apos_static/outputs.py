"""Output path mapping and file writing.

Maps crawled paths to files in the static tree using the same canonical form
as link discovery:

    /                   -> index.html
    /about              -> about/index.html
    /articles/?page=2   -> articles/page-2/index.html
    /robots.txt         -> robots.txt
"""

import asyncio
import logging
import shutil
from pathlib import Path

import aiofiles

from apos_static.urls import canonicalize, is_file_path

logger = logging.getLogger(__name__)

NOT_FOUND_PAGE = "404.html"
FALLBACK_NOT_FOUND_HTML = (
    "<!doctype html><meta charset='utf-8'><title>Not found</title><h1>404</h1>"
)


class OutputWriter:
    """Writes rendered pages into the static output directory.

    Examples:
        >>> writer = OutputWriter(Path("static-dist"))
        >>> writer.output_path_for("/articles?page=2")
        PosixPath('static-dist/articles/page-2/index.html')
        >>> await writer.write("/about/", html)
    """

    def __init__(self, root: Path) -> None:
        self.root = Path(root)

    def relative_path_for(self, raw_path: str) -> str:
        """Relative file path (POSIX form) for a raw path or URL."""
        canonical = canonicalize(raw_path)
        if canonical == "/":
            return "index.html"
        if is_file_path(canonical):
            return canonical.lstrip("/")
        return f"{canonical.strip('/')}/index.html"

    def output_path_for(self, raw_path: str) -> Path:
        """Output file under the root for a raw path.

        Raises:
            ValueError: If the path resolves outside the output directory
        """
        target = self.root / self.relative_path_for(raw_path)

        root = self.root.resolve()
        if not target.resolve().is_relative_to(root):
            raise ValueError(f"Path escapes output directory: {raw_path}")
        return target

    async def write(self, raw_path: str, html: str) -> Path:
        """Write a page, creating parent directories as needed."""
        target = self.output_path_for(raw_path)
        target.parent.mkdir(parents=True, exist_ok=True)
        async with aiofiles.open(target, "w", encoding="utf-8") as f:
            await f.write(html)
        logger.debug(f"Wrote {target}")
        return target

    def prepare(self) -> None:
        """Start from an empty output directory."""
        if self.root.exists():
            shutil.rmtree(self.root)
        self.root.mkdir(parents=True, exist_ok=True)

    async def copy_build_assets(self, build_dir: Path) -> Path | None:
        """Copy the frontend build (``<build>/client`` when present) into the output.

        Returns:
            The directory copied from, or None when the build directory is missing
        """
        client_dir = build_dir / "client"
        source = client_dir if client_dir.is_dir() else build_dir
        if not source.is_dir():
            logger.debug(f"No build output at {build_dir}, skipping asset copy")
            return None

        logger.info(f"Copying build assets from {source}")
        await asyncio.to_thread(shutil.copytree, source, self.root, dirs_exist_ok=True)
        return source

    async def write_not_found(self, html: str | None) -> Path:
        """Write ``404.html``.

        With ``html`` None the minimal fallback page is written, but only when no
        404 page exists yet (one may come from the build assets).
        """
        target = self.root / NOT_FOUND_PAGE
        if html is None:
            if target.exists():
                return target
            html = FALLBACK_NOT_FOUND_HTML

        self.root.mkdir(parents=True, exist_ok=True)
        async with aiofiles.open(target, "w", encoding="utf-8") as f:
            await f.write(html)
        return target
