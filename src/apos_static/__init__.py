"""apos-static - static export for ApostropheCMS sites."""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("apos-static")
except PackageNotFoundError:
    __version__ = "dev"
