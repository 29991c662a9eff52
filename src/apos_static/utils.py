"""Utility functions."""

import logging

from rich.console import Console
from rich.logging import RichHandler

NOISY_LOGGERS = ("httpx", "httpcore")


def setup_logging(verbose: bool = False, console: Console | None = None) -> None:
    """Route logging through a RichHandler.

    Args:
        verbose: DEBUG level with file paths. Otherwise INFO, with the HTTP
            libraries limited to warnings.
        console: Console shared with progress bars so log lines do not break them
    """
    level = logging.DEBUG if verbose else logging.INFO

    handler = RichHandler(
        console=console,
        rich_tracebacks=True,
        markup=False,
        show_time=True,
        show_path=verbose,
    )
    handler.setFormatter(logging.Formatter("%(message)s", datefmt="[%X]"))

    logging.basicConfig(level=level, handlers=[handler], force=True)

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.DEBUG if verbose else logging.WARNING)


def split_csv(value: str | None) -> list[str] | None:
    """Split a comma-separated option, dropping blanks. None stays None.

    Examples:
        >>> split_csv("article, event,")
        ['article', 'event']
        >>> split_csv(None) is None
        True
    """
    if value is None:
        return None
    return [item.strip() for item in value.split(",") if item.strip()]
