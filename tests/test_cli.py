"""Tests for the command-line interface."""

import argparse
import json
import pytest
from unittest.mock import patch

from sitecrawler.cli import build_config, main
from sitecrawler.fetcher import HttpxFetcher
from sitecrawler.models import FetchOutcome

ROOT = "https://example.com/"

SITE = {
    ROOT: '<html><head><title>Home</title></head><body><a href="/about">About</a></body></html>',
    "https://example.com/about": "<html><head><title>About</title></head><body></body></html>",
}


async def fake_fetch(self, url, *, cookies=None, headers=None):
    body = SITE.get(url)
    return FetchOutcome(
        url=url,
        status=200 if body is not None else 404,
        headers={"content-type": "text/html"},
        body=body or "",
    )


async def overloaded_fetch(self, url, *, cookies=None, headers=None):
    if "/t" in url:
        return FetchOutcome.failure(url, "Request timeout after 30.0s")
    body = '<html><body><a href="/t0">t0</a><a href="/t1">t1</a></body></html>' if url == ROOT else ""
    return FetchOutcome(url=url, status=200, headers={"content-type": "text/html"}, body=body)


def crawl_args(**overrides):
    defaults = dict(
        config=None,
        max_concurrent=None,
        delay=None,
        timeout=None,
        retries=None,
        crawl_resources=False,
        no_backoff=False,
    )
    defaults.update(overrides)
    return argparse.Namespace(**defaults)


class TestBuildConfig:
    """Test cases for merging flags into the configuration."""

    def test_flags_override(self):
        """Command-line flags win over defaults."""
        config = build_config(crawl_args(max_concurrent=2, delay=0, retries=0, crawl_resources=True, no_backoff=True))

        assert config.max_concurrent == 2
        assert config.request_delay == 0
        assert config.retries == 0
        assert config.crawl_resources is True
        assert config.enable_backoff is False

    def test_config_file(self, tmp_path):
        """A config file is used as the base."""
        path = tmp_path / "config.json"
        path.write_text(json.dumps({"crawler": {"request_timeout": 7}}))

        config = build_config(crawl_args(config=str(path)))

        assert config.request_timeout == 7

    def test_invalid_flag(self):
        """Invalid flag values are rejected."""
        with pytest.raises(ValueError):
            build_config(crawl_args(max_concurrent=0))


class TestMain:
    """Test cases for the main entry point."""

    def test_no_command(self, capsys):
        """Without a command the help is printed."""
        assert main([]) == 0
        assert "crawl" in capsys.readouterr().out

    def test_crawl(self, tmp_path):
        """A crawl writes results into the output directory."""
        output_dir = tmp_path / "crawls"

        with patch.object(HttpxFetcher, "__call__", fake_fetch):
            code = main(["crawl", ROOT, "--output-dir", str(output_dir), "--delay", "0", "--format", "json"])

        assert code == 0
        crawl_dirs = [d for d in (output_dir / "example.com").iterdir() if d.is_dir() and not d.is_symlink()]
        assert len(crawl_dirs) == 1
        pages = json.loads((crawl_dirs[0] / "pages.json").read_text())["pages"]
        assert [p["url"] for p in pages] == [ROOT, "https://example.com/about"]
        state = json.loads((crawl_dirs[0] / "crawl_state.json").read_text())
        assert state["status"] == "completed"

    def test_crawl_invalid_root(self, tmp_path, capsys):
        """An unusable root URL exits with status 1."""
        code = main(["crawl", "not a url", "--output-dir", str(tmp_path)])

        assert code == 1
        assert "Invalid root URL" in capsys.readouterr().out

    def test_crawl_sqlite_then_export(self, tmp_path):
        """Records kept in SQLite can be exported afterwards."""
        db = tmp_path / "pages.db"
        export_file = tmp_path / "export" / "pages.csv"

        with patch.object(HttpxFetcher, "__call__", fake_fetch):
            code = main([
                "crawl", ROOT,
                "--store", "sqlite",
                "--db", str(db),
                "--output-dir", str(tmp_path / "crawls"),
                "--delay", "0",
            ])
        assert code == 0

        assert main(["export", str(export_file), "--db", str(db), "--format", "csv"]) == 0
        assert export_file.read_text(encoding="utf-8").count("\n") == 3

    def test_export_empty_store(self, tmp_path, capsys):
        """Exporting an empty store writes nothing."""
        export_file = tmp_path / "pages.json"

        assert main(["export", str(export_file), "--db", str(tmp_path / "empty.db")]) == 0
        assert not export_file.exists()
        assert "No page records found" in capsys.readouterr().out


class TestOverload:
    """Test cases for the crawl command when the backoff ladder runs out."""

    @pytest.fixture
    def config_file(self, tmp_path):
        path = tmp_path / "config.json"
        path.write_text(json.dumps({
            "crawler": {"backoff_timeout_threshold": 2, "backoff_levels": [0.01], "request_delay": 0}
        }))
        return str(path)

    def crawl_state(self, output_dir):
        crawl_dirs = [d for d in (output_dir / "example.com").iterdir() if d.is_dir() and not d.is_symlink()]
        return json.loads((crawl_dirs[0] / "crawl_state.json").read_text())

    def test_stops_without_auto_continue(self, tmp_path, config_file):
        """Max backoff stops the crawl with exit code 3."""
        output_dir = tmp_path / "crawls"

        with patch.object(HttpxFetcher, "__call__", overloaded_fetch):
            code = main(["crawl", ROOT, "--config", config_file, "--output-dir", str(output_dir)])

        assert code == 3
        assert self.crawl_state(output_dir)["status"] == "paused"

    def test_auto_continue(self, tmp_path, config_file):
        """With --auto-continue the crawl runs to completion."""
        output_dir = tmp_path / "crawls"

        with patch.object(HttpxFetcher, "__call__", overloaded_fetch):
            code = main([
                "crawl", ROOT,
                "--config", config_file,
                "--output-dir", str(output_dir),
                "--auto-continue",
            ])

        assert code == 0
        assert self.crawl_state(output_dir)["status"] == "completed"
