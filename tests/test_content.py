"""Tests for HTML reference extraction."""

from linkaudit.content import extract_html_references, resolve_reference, rewrite_production_url
from linkaudit.models import UrlKind

PAGE_URL = "https://site.example/blog/post/"


def _by_url(refs):
    return {ref.url: ref for ref in refs}


class TestExtractHtmlReferences:
    def test_collects_links_images_and_resources(self):
        html = """
        <html><head>
          <link rel="stylesheet" href="/assets/site.css">
          <link rel="preconnect" href="https://fonts.example.com">
          <script src="/assets/app.js"></script>
        </head><body>
          <a href="../other/">Other</a>
          <a href="https://external.example.org/page#frag">Ext</a>
          <img src="cover.png" srcset="cover-2x.png 2x, //cdn.example.net/cover-3x.png 3x">
          <video poster="/media/poster.jpg" src="/media/clip.mp4"></video>
          <div style="background: url('/assets/bg.webp')"></div>
          <a href="mailto:me@example.com">Mail</a>
          <a href="#top">Top</a>
        </body></html>
        """
        refs = _by_url(extract_html_references(html, PAGE_URL))

        assert refs["https://site.example/blog/other/"].kind is UrlKind.LINK
        assert not refs["https://site.example/blog/other/"].external
        assert refs["https://external.example.org/page"].external
        assert refs["https://site.example/blog/post/cover.png"].kind is UrlKind.IMAGE
        assert refs["https://site.example/blog/post/cover-2x.png"].context == "img.srcset"
        assert refs["https://cdn.example.net/cover-3x.png"].external
        assert refs["https://site.example/assets/site.css"].kind is UrlKind.RESOURCE
        assert refs["https://site.example/assets/app.js"].kind is UrlKind.RESOURCE
        assert refs["https://site.example/media/poster.jpg"].kind is UrlKind.IMAGE
        assert refs["https://site.example/media/clip.mp4"].kind is UrlKind.RESOURCE
        assert refs["https://site.example/assets/bg.webp"].kind is UrlKind.IMAGE
        assert "https://fonts.example.com/" not in refs
        assert all(ref.source == PAGE_URL for ref in refs.values())
        assert len(refs) == 10

    def test_code_samples_are_ignored(self):
        html = '<pre><a href="https://in-pre.example.com">x</a></pre><code><img src="/in-code.png"></code>'
        assert extract_html_references(html, PAGE_URL) == []

    def test_production_domains_are_rewritten(self):
        html = '<a href="https://www.prod.example/about/">About</a>'
        refs = extract_html_references(html, "http://localhost:4321/", ["www.prod.example"])

        assert refs[0].url == "http://localhost:4321/about/"
        assert not refs[0].external

    def test_style_tag_urls(self):
        html = "<style>.hero { background-image: url(\"/img/hero.jpg\"); }</style>"
        refs = extract_html_references(html, PAGE_URL)
        assert [(ref.url, ref.kind) for ref in refs] == [("https://site.example/img/hero.jpg", UrlKind.IMAGE)]


class TestResolveReference:
    def test_skips_non_http(self):
        assert resolve_reference("javascript:void(0)", PAGE_URL) is None
        assert resolve_reference("ftp://files.example.com/a", PAGE_URL) is None

    def test_resolves_relative(self):
        assert resolve_reference("../../", PAGE_URL) == "https://site.example/"


def test_rewrite_leaves_other_hosts_alone():
    url = "https://other.example/x"
    assert rewrite_production_url(url, "http://localhost:4321", ["prod.example"]) == url
