"""Events emitted by the orchestrator to its persistence collaborator.

Every emission is awaited, so a slow store slows the crawl down instead of
letting unsaved events pile up in memory.
"""

from dataclasses import dataclass
from typing import Union

from sitecrawler.models import PageRecord


@dataclass(frozen=True)
class UrlDiscovered:
    """A URL was queued for the first time."""

    url: str
    depth: int
    is_external: bool
    is_resource: bool = False


@dataclass(frozen=True)
class InLinksBatch:
    """Every link found on from_url, internal and external."""

    from_url: str
    to_urls: tuple[str, ...]


@dataclass(frozen=True)
class PageProcessed:
    """A fetched (or failed) page is ready to be stored."""

    page: PageRecord


@dataclass(frozen=True)
class OrphanQuery:
    """Ask for internal URLs that are known but were never fetched.

    The store answers with a list of URLs.
    """


@dataclass(frozen=True)
class PendingQuery:
    """Ask for internal URLs that are not crawled yet.

    The store answers with a list of QueueEntry so they can be re-queued
    at their original depth.
    """


CrawlEvent = Union[UrlDiscovered, InLinksBatch, PageProcessed, OrphanQuery, PendingQuery]
