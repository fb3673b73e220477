"""Tests for ContentLinkExtractor."""

import pytest
from unittest.mock import patch

from sitecrawler.exceptions import ExtractionError
from sitecrawler.models import FetchOutcome
from sitecrawler.parser import (
    ContentLinkExtractor,
    get_all_urls_from_page,
    is_error_page,
    is_redirect_page,
    is_success_page,
)

BASE = "example.com"

SAMPLE_HTML = """
<html>
<head>
    <title> Example Home </title>
    <meta name="description" content="An example site">
    <link rel="stylesheet" href="/static/site.css">
    <link rel="icon" href="/favicon.ico">
    <script src="https://cdn.other.net/lib.js"></script>
</head>
<body>
    <h1>Welcome</h1>
    <h1>Second heading</h1>
    <a href="/about">About</a>
    <a href="/about#team">Team</a>
    <a href="https://www.example.com/contact?b=2&a=1">Contact</a>
    <a href="https://external.org/page">External</a>
    <a href="#top">Top</a>
    <a href="mailto:hi@example.com">Mail</a>
    <a href="tel:+1555">Call</a>
    <a href="javascript:void(0)">JS</a>
    <a href="//cdn.example.com/file">CDN</a>
    <a href="">Empty</a>
    <img src="/img/logo.png">
</body>
</html>
"""


def html_outcome(url: str, body: str = SAMPLE_HTML, status: int = 200) -> FetchOutcome:
    return FetchOutcome(
        url=url,
        status=status,
        headers={"content-type": "text/html; charset=utf-8"},
        body=body,
        response_time=0.12,
    )


class TestParsePage:
    """Test cases for ContentLinkExtractor.parse_page."""

    @pytest.fixture
    def extractor(self):
        return ContentLinkExtractor()

    def test_metadata(self, extractor):
        """Title, description and the first h1 are extracted."""
        page = extractor.parse_page("https://example.com/", html_outcome("https://example.com/"), BASE, 0)

        assert page.title == "Example Home"
        assert page.meta_description == "An example site"
        assert page.h1 == "Welcome"
        assert page.status_code == 200
        assert page.file_type == "html"
        assert page.is_crawled is True
        assert page.is_external is False
        assert page.crawled_at is not None

    def test_links_classified_and_deduplicated(self, extractor):
        """Links are normalized, deduplicated and split by domain."""
        page = extractor.parse_page("https://example.com/", html_outcome("https://example.com/"), BASE, 0)

        assert page.out_links == [
            "https://example.com/about",
            "https://www.example.com/contact?a=1&b=2",
        ]
        assert page.external_links == [
            "https://external.org/page",
            "https://cdn.example.com/file",
        ]

    def test_assets(self, extractor):
        """Stylesheets, scripts and images are assets; icons are not."""
        page = extractor.parse_page("https://example.com/", html_outcome("https://example.com/"), BASE, 0)

        assert set(page.assets) == {
            "https://example.com/static/site.css",
            "https://cdn.other.net/lib.js",
            "https://example.com/img/logo.png",
        }

    def test_error_status_still_parsed(self, extractor):
        """A custom 404 page still contributes links."""
        page = extractor.parse_page(
            "https://example.com/missing",
            html_outcome("https://example.com/missing", status=404),
            BASE,
            2,
        )

        assert page.status_code == 404
        assert "https://example.com/about" in page.out_links
        assert page.depth == 2

    def test_external_page_not_parsed(self, extractor):
        """External pages only record their status."""
        page = extractor.parse_page("https://external.org/page", html_outcome("https://external.org/page"), BASE, 1)

        assert page.is_external is True
        assert page.out_links == []
        assert page.external_links == []
        assert page.title is None

    def test_non_html_not_parsed(self, extractor):
        """Only HTML bodies are parsed."""
        outcome = FetchOutcome(
            url="https://example.com/doc.pdf",
            status=200,
            headers={"content-type": "application/pdf"},
            body="",
            size=1024,
        )
        page = extractor.parse_page("https://example.com/doc.pdf", outcome, BASE, 1)

        assert page.file_type == "pdf"
        assert page.size == 1024
        assert page.out_links == []

    def test_network_failure(self, extractor):
        """Failed fetches get the error file type and message."""
        outcome = FetchOutcome.failure("https://example.com/x", "Connection reset")
        page = extractor.parse_page("https://example.com/x", outcome, BASE, 1)

        assert page.status_code == -1
        assert page.file_type == "error"
        assert page.error_message == "Connection reset"

    def test_parse_error_recorded(self, extractor):
        """Extraction failures are caught and recorded on the page."""
        with patch.object(
            ContentLinkExtractor,
            "_extract_content",
            side_effect=ExtractionError("bad markup"),
        ):
            page = extractor.parse_page("https://example.com/", html_outcome("https://example.com/"), BASE, 0)

        assert page.error_message == "Parse error: bad markup"
        assert page.status_code == 200

    def test_failed_page(self, extractor):
        """Synthetic failure records carry status -1."""
        page = extractor.failed_page("https://example.com/x", "boom", BASE, 3)

        assert page.status_code == -1
        assert page.file_type == "error"
        assert page.error_message == "boom"
        assert page.is_crawled is True
        assert page.depth == 3


class TestPageHelpers:
    """Test cases for record classification helpers."""

    def test_status_helpers(self):
        """Helpers classify by status code."""
        extractor = ContentLinkExtractor()
        ok = extractor.parse_page("https://example.com/", html_outcome("https://example.com/"), BASE, 0)
        redirect = extractor.parse_page(
            "https://example.com/old", html_outcome("https://example.com/old", body="", status=301), BASE, 0
        )
        failed = extractor.failed_page("https://example.com/x", "boom", BASE, 0)

        assert is_success_page(ok) and not is_error_page(ok)
        assert is_redirect_page(redirect)
        assert is_error_page(failed)

    def test_all_urls(self):
        """All URLs combine links and assets."""
        extractor = ContentLinkExtractor()
        page = extractor.parse_page("https://example.com/", html_outcome("https://example.com/"), BASE, 0)

        assert len(get_all_urls_from_page(page)) == len(page.out_links) + len(page.external_links) + len(page.assets)
