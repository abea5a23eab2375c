"""Tests for the breadth-first site crawler."""

import asyncio

import requests
import responses

from linkaudit.config import ValidationConfig
from linkaudit.crawler import PageFetch, crawl_site, fetch_page, should_crawl
from linkaudit.models import UrlKind

BASE = "https://site.example/"

PAGES = {
    "https://site.example/": '<a href="/about/">About</a><a href="/blog/">Blog</a><img src="/logo.png">',
    "https://site.example/about/": '<a href="/">Home</a><a href="/blog/">Blog</a>'
    '<a href="https://ext.example/">Ext</a>',
    "https://site.example/blog/": '<a href="/about/#team">Team</a><a href="/missing/">Missing</a>'
    '<a href="/files/report.pdf">Report</a>',
}


class FakeSite:
    def __init__(self, pages):
        self.pages = pages
        self.requested = []

    def __call__(self, url):
        self.requested.append(url)
        if url not in self.pages:
            return PageFetch(url=url, ok=False, status=404, error="HTTP 404")
        return PageFetch(url=url, ok=True, status=200, html=self.pages[url])


def _config(tmp_path, **overrides):
    return ValidationConfig.for_repo(tmp_path, **overrides)


class TestCrawlSite:
    def test_visits_each_page_once(self, tmp_path):
        site = FakeSite(PAGES)
        result = asyncio.run(crawl_site(BASE, _config(tmp_path), fetcher=site))

        assert site.requested == [
            "https://site.example/",
            "https://site.example/about/",
            "https://site.example/blog/",
            "https://site.example/missing/",
        ]
        assert result.pages_visited == 4
        assert not result.pages["https://site.example/missing/"].ok

    def test_collects_references_from_every_page(self, tmp_path):
        result = asyncio.run(crawl_site(BASE, _config(tmp_path), fetcher=FakeSite(PAGES)))
        urls = {ref.url for ref in result.references}

        assert "https://ext.example/" in urls
        assert "https://site.example/logo.png" in urls
        assert "https://site.example/files/report.pdf" in urls
        assert result.kind_totals[UrlKind.IMAGE] == 1
        assert result.kind_totals[UrlKind.RESOURCE] == 0
        assert result.kind_totals[UrlKind.LINK] == 8

    def test_external_and_asset_links_are_not_crawled(self, tmp_path):
        site = FakeSite(PAGES)
        asyncio.run(crawl_site(BASE, _config(tmp_path), fetcher=site))

        assert "https://ext.example/" not in site.requested
        assert "https://site.example/files/report.pdf" not in site.requested

    def test_links_resolve_against_redirected_url(self, tmp_path):
        pages = {
            "https://site.example/": '<a href="/about">About</a>',
            "https://site.example/about/": '<a href="team">Team</a>',
            "https://site.example/about/team": "<p>Team</p>",
        }

        def fetcher(url):
            if url == "https://site.example/about":
                return PageFetch(
                    url=url, ok=True, status=200, html=pages["https://site.example/about/"],
                    final_url="https://site.example/about/",
                )
            return FakeSite(pages)(url)

        result = asyncio.run(crawl_site(BASE, _config(tmp_path), fetcher=fetcher))
        urls = {ref.url for ref in result.references}

        assert "https://site.example/about/team" in urls
        assert "https://site.example/team" not in urls
        assert result.pages["https://site.example/about/team"].ok

    def test_offsite_redirect_is_not_followed(self, tmp_path):
        def fetcher(url):
            return PageFetch(
                url=url, ok=True, status=200, html='<a href="/elsewhere/">x</a>',
                final_url="https://other.example/",
            )

        result = asyncio.run(crawl_site(BASE, _config(tmp_path), fetcher=fetcher))

        assert result.pages_visited == 1
        assert result.references == []

    def test_max_pages(self, tmp_path):
        site = FakeSite(PAGES)
        result = asyncio.run(crawl_site(BASE, _config(tmp_path, max_pages=2), fetcher=site))

        assert result.pages_visited == 2
        assert len(site.requested) == 2

    def test_failed_root(self, tmp_path):
        result = asyncio.run(crawl_site(BASE, _config(tmp_path), fetcher=FakeSite({})))

        assert result.pages_visited == 1
        assert result.references == []


class TestFetchPage:
    @responses.activate
    def test_html_page(self, tmp_path):
        responses.add("GET", BASE, body="<a href='/x'>x</a>", content_type="text/html; charset=utf-8")
        with requests.Session() as session:
            page = fetch_page(session, BASE, _config(tmp_path))

        assert page.ok
        assert page.html == "<a href='/x'>x</a>"

    @responses.activate
    def test_redirect_records_final_url(self, tmp_path):
        responses.add("GET", BASE + "about", status=301, headers={"Location": BASE + "about/"})
        responses.add("GET", BASE + "about/", body="<p>About</p>", content_type="text/html")
        with requests.Session() as session:
            page = fetch_page(session, BASE + "about", _config(tmp_path))

        assert page.ok
        assert page.url == BASE + "about"
        assert page.final_url == BASE + "about/"

    @responses.activate
    def test_non_html_has_no_body(self, tmp_path):
        responses.add("GET", BASE + "feed.json", json={"a": 1})
        with requests.Session() as session:
            page = fetch_page(session, BASE + "feed.json", _config(tmp_path))

        assert page.ok
        assert page.html is None

    @responses.activate
    def test_error_status(self, tmp_path):
        responses.add("GET", BASE + "gone/", status=410)
        with requests.Session() as session:
            page = fetch_page(session, BASE + "gone/", _config(tmp_path))

        assert not page.ok
        assert page.status == 410
        assert page.error == "HTTP 410"


def test_should_crawl():
    assert should_crawl("https://site.example/blog/")
    assert should_crawl("https://site.example/post.html")
    assert not should_crawl("https://site.example/feed.xml")
    assert not should_crawl("https://site.example/logo.png")
