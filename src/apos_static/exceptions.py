"""Custom exceptions for apos-static."""


class AposStaticError(Exception):
    """Base exception for all apos-static errors."""


class ConfigError(AposStaticError):
    """Raised when configuration is invalid or cannot be loaded."""


class BuildError(AposStaticError):
    """Raised when the frontend build step fails."""


class FetchError(AposStaticError):
    """Raised when a request still fails after the retry budget is spent.

    Carries the last HTTP status code when the failure was an HTTP response,
    None when it was a timeout or a transport error.
    """

    def __init__(self, url: str, message: str, status_code: int | None = None) -> None:
        self.url = url
        self.message = message
        self.status_code = status_code
        super().__init__(message)


class DiscoveryError(AposStaticError):
    """Raised when the page listing cannot be obtained from the backend."""


class NoUrlsError(AposStaticError):
    """Raised when discovery finished without a single URL to render."""


class ServerNotReadyError(AposStaticError):
    """Raised when the preview server does not answer within its timeout."""


class PageRenderError(AposStaticError):
    """Raised when one page could not be fetched, processed or written.

    Never fatal: the crawler records it and moves on.
    """

    def __init__(self, url: str, message: str) -> None:
        self.url = url
        self.message = message
        super().__init__(message)


class WidgetFetchError(AposStaticError):
    """Raised when oEmbed data for a single video widget is unavailable."""


class UploadError(AposStaticError):
    """Raised when a single upload could not be copied or downloaded."""
