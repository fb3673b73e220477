"""Exceptions raised by the crawler.

Network failures and HTTP error statuses are not exceptions here: they are
carried as FetchOutcome values. These classes cover the remaining cases.
"""

from typing import Optional


class CrawlerError(Exception):
    """Base class for crawler errors."""
    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class RootUrlError(CrawlerError, ValueError):
    """Raised when the crawl root cannot be normalized or has no domain."""
    def __init__(self, message: str, url: Optional[str] = None):
        self.url = url
        super().__init__(message)


class ExtractionError(CrawlerError):
    """Raised when a page body cannot be parsed."""
    def __init__(self, message: str, url: Optional[str] = None):
        self.url = url
        super().__init__(message)


class ServerOverloadedError(CrawlerError):
    """Reported when the backoff ladder is exhausted.

    The crawl stays paused until the operator continues it.
    """
    def __init__(self, message: str, attempt_count: int = 0):
        self.attempt_count = attempt_count
        self.requires_user_action = True
        super().__init__(message)
