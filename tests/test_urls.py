"""Tests for URL normalization and classification."""

import pytest

from linkaudit.models import UrlKind
from linkaudit.urls import (
    classify_by_extension,
    host_matches,
    is_same_origin,
    is_skippable_url,
    normalize_url,
    parse_srcset,
    url_extension,
)


class TestSkippable:
    @pytest.mark.parametrize(
        "raw",
        ["", "   ", "#intro", "mailto:me@example.com", "tel:+123", "data:image/png;base64,AAA", "JavaScript:void(0)"],
    )
    def test_skipped(self, raw):
        assert is_skippable_url(raw)

    @pytest.mark.parametrize("raw", ["https://example.com", "./guide.md", "/about", "//cdn.example.com/x.js"])
    def test_not_skipped(self, raw):
        assert not is_skippable_url(raw)


class TestNormalize:
    def test_drops_fragment(self):
        assert normalize_url("https://example.com/page#section") == "https://example.com/page"

    def test_keeps_query(self):
        assert normalize_url("https://example.com/search?q=1") == "https://example.com/search?q=1"

    def test_protocol_relative_becomes_https(self):
        assert normalize_url("//cdn.example.com/lib.js") == "https://cdn.example.com/lib.js"

    def test_lowercases_scheme_and_host(self):
        assert normalize_url("HTTPS://Example.COM/Path") == "https://example.com/Path"

    def test_empty_path_becomes_root(self):
        assert normalize_url("https://example.com") == "https://example.com/"

    def test_idempotent(self):
        once = normalize_url("//Example.com/a?b=1#c")
        assert normalize_url(once) == once

    @pytest.mark.parametrize("raw", ["https://", "https://exa mple.com", "http://example.com:notaport/", "#only"])
    def test_malformed(self, raw):
        assert normalize_url(raw) is None

    def test_relative_path_passes_through(self):
        assert normalize_url("../docs/guide.md#setup") == "../docs/guide.md"


class TestClassification:
    @pytest.mark.parametrize(
        "url, expected",
        [
            ("https://example.com/logo.PNG", UrlKind.IMAGE),
            ("https://example.com/img/photo.webp?w=200", UrlKind.IMAGE),
            ("https://example.com/site.css", UrlKind.RESOURCE),
            ("https://example.com/paper.pdf#page=2", UrlKind.RESOURCE),
            ("https://example.com/about.html", UrlKind.LINK),
            ("https://example.com/about", UrlKind.LINK),
        ],
    )
    def test_by_extension(self, url, expected):
        assert classify_by_extension(url, UrlKind.LINK) is expected

    def test_unknown_extension_uses_fallback(self):
        assert classify_by_extension("https://example.com/archive.tar.gz", UrlKind.RESOURCE) is UrlKind.RESOURCE

    def test_extension_ignores_host(self):
        assert url_extension("https://example.com") is None
        assert url_extension("./images/cat.jpg") == "jpg"


class TestHosts:
    def test_subdomain_matches(self):
        assert host_matches("docs.example.com", ["example.com"])
        assert host_matches("EXAMPLE.com", ["example.com"])

    def test_suffix_is_not_subdomain(self):
        assert not host_matches("notexample.com", ["example.com"])
        assert not host_matches(None, ["example.com"])

    def test_same_origin(self):
        assert is_same_origin("https://example.com/a", "https://example.com")
        assert not is_same_origin("http://example.com/a", "https://example.com")
        assert not is_same_origin("https://cdn.example.com/a", "https://example.com")


def test_parse_srcset():
    value = "/img/a.png 1x, /img/b.png 2x,  , https://cdn.example.com/c.png 640w"
    assert parse_srcset(value) == ["/img/a.png", "/img/b.png", "https://cdn.example.com/c.png"]
