"""Unit tests for linkpreview.services.metadata: HTML head parsing."""

import pytest

from linkpreview.services.metadata import parse_metadata, to_absolute_url

BASE = "https://example.com/blog/post"


class TestParseMetadata:
    def test_full_head(self):
        html = """
        <html><head>
          <title>  Title Tag  </title>
          <meta property="og:title" content="OG Title">
          <meta name="description" content="Plain description">
          <meta property="og:description" content="OG description">
          <meta property="og:image" content="/images/cover.png">
          <link rel="icon" href="favicon.ico">
          <link rel="canonical" href="https://example.com/blog/post">
        </head><body><h1>ignored</h1></body></html>
        """
        meta = parse_metadata(html, BASE)
        assert meta.og_title == "OG Title"
        assert meta.title_tag == "Title Tag"
        assert meta.description == "OG description"
        assert meta.image == "https://example.com/images/cover.png"
        assert meta.icon == "https://example.com/blog/favicon.ico"
        assert meta.canonical == "https://example.com/blog/post"

    def test_description_precedence(self):
        html = """
        <meta name="description" content="plain">
        <meta name="twitter:description" content="twitter">
        """
        assert parse_metadata(html, BASE).description == "twitter"

    def test_first_occurrence_wins(self):
        html = """
        <meta property="og:title" content="first">
        <meta property="og:title" content="second">
        """
        assert parse_metadata(html, BASE).og_title == "first"

    def test_empty_content_is_skipped(self):
        html = """
        <meta property="og:title" content="">
        <meta property="og:title" content="real">
        """
        assert parse_metadata(html, BASE).og_title == "real"

    def test_twitter_image_fallback(self):
        html = '<meta name="twitter:image" content="https://cdn.example.com/t.jpg">'
        assert parse_metadata(html, BASE).image == "https://cdn.example.com/t.jpg"

    def test_non_http_image_dropped(self):
        html = '<meta property="og:image" content="javascript:alert(1)">'
        assert parse_metadata(html, BASE).image == ""

    def test_shortcut_icon(self):
        html = '<link rel="shortcut icon" href="//static.example.com/fav.png">'
        assert parse_metadata(html, BASE).icon == "https://static.example.com/fav.png"

    def test_first_icon_wins(self):
        html = """
        <link rel="icon" href="/a.png">
        <link rel="apple-touch-icon" href="/b.png">
        """
        assert parse_metadata(html, BASE).icon == "https://example.com/a.png"

    def test_empty_document(self):
        meta = parse_metadata("", BASE)
        assert meta.og_title == ""
        assert meta.title_tag == ""
        assert meta.description == ""
        assert meta.image == ""
        assert meta.icon == ""
        assert meta.canonical == ""

    def test_malformed_html(self):
        html = "<head><title>Broken<meta property='og:title' content='Still here'"
        meta = parse_metadata(html, BASE)
        assert isinstance(meta.title_tag, str)


class TestToAbsoluteUrl:
    @pytest.mark.parametrize(
        "rel,expected",
        [
            ("/x.png", "https://example.com/x.png"),
            ("../x.png", "https://example.com/x.png"),
            ("x.png", "https://example.com/blog/x.png"),
            ("//cdn.example.com/x.png", "https://cdn.example.com/x.png"),
            ("http://other.example/x.png", "http://other.example/x.png"),
            ("", ""),
            ("data:image/png;base64,AAAA", ""),
            ("mailto:a@example.com", ""),
        ],
    )
    def test_resolves(self, rel, expected):
        assert to_absolute_url(BASE, rel) == expected
