"""URL canonicalization.

One canonical form is shared by link discovery, crawl deduplication and output
path generation, so a link found as ``/articles/?page=2`` and a file written for
``/articles?page=2`` always agree: both become ``/articles/page-2/``.
"""

import ipaddress
import re
from collections.abc import Iterable
from urllib.parse import parse_qsl, urlsplit

# A path names a file when its last segment ends in an extension
FILE_PATTERN = re.compile(r"\.[a-z0-9]+$", re.IGNORECASE)

_SCHEME_NETLOC = re.compile(r"^(?:[a-zA-Z][a-zA-Z0-9+.\-]*:)?//([^/?#]*)")

# Characters that would re-introduce a query or fragment once a value is
# flattened into a path segment
_SEGMENT_ESCAPES = str.maketrans({"?": "%3F", "#": "%23"})

DEFAULT_PORTS = {"http": 80, "https": 443}


def is_file_path(path: str) -> bool:
    """Return True if the path ends in a file extension.

    Examples:
        >>> is_file_path("/robots.txt")
        True
        >>> is_file_path("/about/")
        False
    """
    return bool(FILE_PATTERN.search(path))


def _is_ip_literal(text: str) -> bool:
    if text[:1] in ("v", "V"):
        return re.fullmatch(r"[vV][0-9a-fA-F]+\.[\w.~!$&'()*+,;=:-]+", text) is not None
    try:
        ipaddress.IPv6Address(text)
    except ValueError:
        return False
    return True


def _is_well_formed(raw: str) -> bool:
    """Check whether urlsplit() can take the input apart.

    urlsplit() rejects hosts with malformed IPv6 literals and non-ASCII hosts
    that change under NFKC normalization. Relative paths always split.
    """
    if any(char in raw for char in "\x00\r\n"):
        return False

    match = _SCHEME_NETLOC.match(raw)
    if match is None:
        return True

    netloc = match.group(1)
    if not netloc.isascii():
        return False
    if "[" not in netloc and "]" not in netloc:
        return True

    bracketed = re.search(r"\[([^\]]*)\]", netloc)
    if bracketed is None or netloc.count("[") != 1 or netloc.count("]") != 1:
        return False
    return _is_ip_literal(bracketed.group(1))


def _ensure_slashes(path: str) -> str:
    # A leading "//" would read as a network-path reference
    path = "/" + path.lstrip("/")
    if not is_file_path(path) and not path.endswith("/"):
        path += "/"
    return path


def _query_segment(query: str) -> str:
    """Flatten a query string into a single ``key-value-key-value`` segment.

    Parameters are sorted by key, empty values are dropped.
    """
    params = parse_qsl(query, keep_blank_values=True)
    parts = [
        f"{key}-{value}".translate(_SEGMENT_ESCAPES)
        for key, value in sorted(params, key=lambda item: item[0])
        if value
    ]
    return "-".join(parts)


def _canonicalize_structured(raw: str) -> str:
    parts = urlsplit(raw)
    path = _ensure_slashes(parts.path)

    if not parts.query:
        return path

    segment = _query_segment(parts.query)
    if not segment:
        return path

    return f"{path.rstrip('/')}/{segment}/"


def _canonicalize_fallback(raw: str) -> str:
    """Best-effort normalization for input urlsplit() cannot handle.

    Drops scheme, host, query and fragment with plain string matching.
    """
    path = re.split(r"[?#]", raw, maxsplit=1)[0]
    path = _SCHEME_NETLOC.sub("", path)
    return _ensure_slashes(path)


def canonicalize(raw: str) -> str:
    """Map a raw path or URL to its canonical static path.

    Steps:
    1. Strip the fragment
    2. Keep only path and query (scheme and host are dropped)
    3. Ensure a leading slash, and a trailing slash unless the path names a file
    4. Flatten a query string into a trailing ``/key-value-key-value/`` segment

    Never raises: malformed input goes through a regex fallback.

    Examples:
        >>> canonicalize("/articles?page=2")
        '/articles/page-2/'
        >>> canonicalize("/a?b=1&a=2")
        '/a/a-2-b-1/'
        >>> canonicalize("/a?x=&y=1")
        '/a/y-1/'
        >>> canonicalize("about#team")
        '/about/'
        >>> canonicalize("/sitemap.xml")
        '/sitemap.xml'
    """
    if _is_well_formed(raw):
        return _canonicalize_structured(raw)
    return _canonicalize_fallback(raw)


def origin_of(url: str) -> tuple[str, str, int | None]:
    """Return (scheme, host, port) with default ports filled in."""
    parts = urlsplit(url)
    scheme = parts.scheme.lower()
    port = parts.port or DEFAULT_PORTS.get(scheme)
    return scheme, (parts.hostname or "").lower(), port


def same_origin(url: str, other: str) -> bool:
    """Return True if both absolute URLs share scheme, host and port."""
    try:
        return origin_of(url) == origin_of(other)
    except ValueError:
        return False


def path_and_query(url: str) -> str:
    """Return the path plus query string of a URL, without the fragment."""
    parts = urlsplit(url)
    path = "/" + parts.path.lstrip("/")
    return f"{path}?{parts.query}" if parts.query else path


def apply_locale_prefix(paths: Iterable[str], prefix: str | None) -> list[str]:
    """Put every path under a locale prefix such as ``/es``.

    Paths already under the prefix are left alone and the root maps to
    ``<prefix>/``.

    Examples:
        >>> apply_locale_prefix(["/", "/about/", "/es/news/"], "/es")
        ['/es/', '/es/about/', '/es/news/']
    """
    if not prefix:
        return list(paths)

    prefix = prefix.rstrip("/")
    prefixed: list[str] = []
    for path in paths:
        if path == prefix or path.startswith(prefix + "/"):
            prefixed.append(path)
        elif path == "/":
            prefixed.append(prefix + "/")
        else:
            prefixed.append(prefix + path)
    return prefixed
