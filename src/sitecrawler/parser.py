"""Turns fetch outcomes into page records with classified links."""

import logging
from datetime import datetime
from typing import List, Optional, Tuple

from bs4 import BeautifulSoup

from sitecrawler.constants import SYSTEM_ERROR_STATUS
from sitecrawler.exceptions import ExtractionError
from sitecrawler.models import FetchOutcome, PageRecord
from sitecrawler.url_utils import (
    extract_domain,
    get_file_type,
    is_internal_url,
    normalize_url,
)

logger = logging.getLogger(__name__)

# Link targets that are not pages
SKIPPED_SCHEMES = ("mailto:", "tel:", "javascript:", "data:", "ftp:", "file:", "sms:")


class ContentLinkExtractor:
    """Extracts metadata, links and assets from fetched pages."""

    def parse_page(
        self,
        url: str,
        outcome: FetchOutcome,
        base_domain: str,
        depth: int,
    ) -> PageRecord:
        """Build the record for a fetched URL.

        Internal HTML is parsed whatever the status code, so custom 404
        pages still contribute links. External pages only get their status.

        Args:
            url: Canonical URL that was fetched
            outcome: Result of the fetch
            base_domain: Domain of the crawl root
            depth: BFS depth of the URL

        Returns:
            PageRecord for the URL
        """
        content_type = outcome.content_type
        is_external = not is_internal_url(url, base_domain)

        page = PageRecord(
            url=url,
            normalized_url=url,
            domain=extract_domain(url),
            status_code=outcome.status,
            error_message=outcome.error,
            file_type="error" if outcome.is_network_error else get_file_type(url, content_type),
            content_type=content_type or None,
            response_time=outcome.response_time,
            size=outcome.size or len(outcome.body.encode("utf-8")),
            is_crawled=True,
            is_external=is_external,
            depth=depth,
            crawled_at=datetime.now(),
        )

        if is_external or page.file_type != "html" or not outcome.body:
            return page

        try:
            self._extract_content(page, outcome.body, base_domain)
        except ExtractionError as e:
            logger.warning(f"Could not parse {url}: {e}")
            page.error_message = f"Parse error: {e}"

        return page

    def _extract_content(self, page: PageRecord, html: str, base_domain: str) -> None:
        """Fill title, description, h1, links and assets from the HTML."""
        try:
            soup = BeautifulSoup(html, "html.parser")
        except Exception as e:
            raise ExtractionError(str(e), url=page.url) from e

        title_tag = soup.find("title")
        if title_tag:
            page.title = title_tag.get_text(strip=True) or None

        meta_desc = soup.find("meta", attrs={"name": "description"})
        if meta_desc and meta_desc.get("content"):
            page.meta_description = meta_desc["content"].strip()

        h1_tag = soup.find("h1")
        if h1_tag:
            page.h1 = h1_tag.get_text(strip=True) or None

        hrefs = [a.get("href") for a in soup.find_all("a", href=True)]
        page.out_links, page.external_links = self.classify_links(hrefs, page.url, base_domain)
        page.assets = self._extract_assets(soup, page.url)

    def classify_links(
        self,
        hrefs: List[str],
        page_url: str,
        base_domain: str,
    ) -> Tuple[List[str], List[str]]:
        """Normalize raw hrefs and split them into internal and external.

        Returns:
            (internal_links, external_links), deduplicated, in document order
        """
        internal: List[str] = []
        external: List[str] = []
        seen = set()

        for href in hrefs:
            normalized = self._normalize_href(href, page_url)
            if not normalized or normalized in seen:
                continue
            seen.add(normalized)
            if is_internal_url(normalized, base_domain):
                internal.append(normalized)
            else:
                external.append(normalized)

        return internal, external

    def _normalize_href(self, href: Optional[str], page_url: str) -> Optional[str]:
        if not href:
            return None
        href = href.strip()
        if not href or href.startswith("#"):
            return None
        if href.lower().startswith(SKIPPED_SCHEMES):
            return None
        return normalize_url(href, page_url)

    def _extract_assets(self, soup: BeautifulSoup, page_url: str) -> List[str]:
        candidates = []
        candidates.extend(img.get("src") for img in soup.find_all("img", src=True))
        candidates.extend(
            link.get("href")
            for link in soup.find_all("link", href=True)
            if "stylesheet" in [rel.lower() for rel in (link.get("rel") or [])]
        )
        candidates.extend(script.get("src") for script in soup.find_all("script", src=True))

        assets: List[str] = []
        for candidate in candidates:
            normalized = self._normalize_href(candidate, page_url)
            if normalized and normalized not in assets:
                assets.append(normalized)
        return assets

    def failed_page(self, url: str, error: str, base_domain: str, depth: int) -> PageRecord:
        """Build the record for a URL whose processing raised."""
        return PageRecord(
            url=url,
            normalized_url=url,
            domain=extract_domain(url),
            status_code=SYSTEM_ERROR_STATUS,
            error_message=error,
            file_type="error",
            is_crawled=True,
            is_external=not is_internal_url(url, base_domain),
            depth=depth,
            crawled_at=datetime.now(),
        )


def is_error_page(page: PageRecord) -> bool:
    """4xx, 5xx or a failed fetch."""
    return page.status_code is not None and (page.status_code >= 400 or page.status_code < 0)


def is_success_page(page: PageRecord) -> bool:
    return page.status_code is not None and 200 <= page.status_code < 300


def is_redirect_page(page: PageRecord) -> bool:
    return page.status_code is not None and 300 <= page.status_code < 400


def get_all_urls_from_page(page: PageRecord) -> List[str]:
    """Every URL a page points at: internal, external and assets."""
    return [*page.out_links, *page.external_links, *page.assets]
