"""Tests for link extraction and URL rewriting."""

from lxml import html as lxml_html

from apos_static.processors import extract_internal_links, make_urls_relative
from apos_static.urls import canonicalize

PREVIEW = "http://127.0.0.1:4321"


def _attr_values(html: str, xpath: str) -> list[str]:
    return [str(value) for value in lxml_html.document_fromstring(html).xpath(xpath)]


class TestExtractInternalLinks:
    """Tests for extract_internal_links()."""

    def test_same_origin_paths_in_document_order(self) -> None:
        """Test internal links are kept as path+query, without fragments or duplicates."""
        html = """
        <html><body>
          <a href="/about">About</a>
          <a href="http://127.0.0.1:4321/contact#form">Contact</a>
          <a href="https://example.com/elsewhere">External</a>
          <a href="mailto:team@example.com">Mail</a>
          <a href="/about">About again</a>
          <a href="/articles/?page=2">Next</a>
          <a href="team">Relative</a>
          <a href="">Empty</a>
          <a>No href</a>
        </body></html>
        """

        links = extract_internal_links(html, PREVIEW)

        assert links == ["/about", "/contact", "/articles/?page=2", "/team"]

    def test_other_port_is_external(self) -> None:
        """Test the backend origin is not followed."""
        html = '<a href="http://127.0.0.1:3000/api/v1/">API</a>'

        assert extract_internal_links(html, PREVIEW) == []

    def test_blank_document(self) -> None:
        """Test blank HTML yields no links."""
        assert extract_internal_links("", PREVIEW) == []
        assert extract_internal_links("   ", PREVIEW) == []

    def test_links_agree_with_output_paths(self) -> None:
        """Test an extracted link canonicalizes to the same identity as its written file."""
        [link] = extract_internal_links('<a href="/articles/?page=2#top">2</a>', PREVIEW)

        assert canonicalize(link) == canonicalize("/articles?page=2")


class TestMakeUrlsRelative:
    """Tests for make_urls_relative()."""

    def test_preview_absolute_urls_become_root_relative(self) -> None:
        """Test preview-origin URLs keep path, query and fragment."""
        html = '<html><body><a href="http://127.0.0.1:4321/about/#team">A</a></body></html>'

        out = make_urls_relative(html, PREVIEW)

        assert _attr_values(out, "//a/@href") == ["/about/#team"]

    def test_query_strings_canonicalized(self) -> None:
        """Test query strings become path segments and fragments survive."""
        html = """<html><body>
          <a href="/articles?page=2">Next</a>
          <a href="http://127.0.0.1:4321/about?x=1#top">About</a>
          <a href="/search?q=&amp;tag=news">Search</a>
        </body></html>"""

        out = make_urls_relative(html, PREVIEW)

        assert _attr_values(out, "//a/@href") == [
            "/articles/page-2/",
            "/about/x-1/#top",
            "/search/tag-news/",
        ]

    def test_form_actions_rewritten(self) -> None:
        """Test form actions follow the same rules as links."""
        html = """<html><body>
          <form action="http://127.0.0.1:4321/search?scope=site"></form>
          <form action="/subscribe"></form>
        </body></html>"""

        out = make_urls_relative(html, PREVIEW)

        assert _attr_values(out, "//form/@action") == ["/search/scope-site/", "/subscribe"]

    def test_untouched_urls(self) -> None:
        """Test external, document-relative and scheme URLs are left alone."""
        hrefs = [
            "https://example.com/page?x=1",
            "http://127.0.0.1:3000/uploads/a.jpg",
            "docs?x=1",
            "#top",
            "mailto:team@example.com",
            "tel:+100",
            "//cdn.example.com/lib.js?v=1",
        ]
        body = "".join(f'<a href="{href}">x</a>' for href in hrefs)

        out = make_urls_relative(f"<html><body>{body}</body></html>", PREVIEW)

        assert _attr_values(out, "//a/@href") == hrefs

    def test_doctype_and_content_preserved(self) -> None:
        """Test serialization keeps the doctype and unrelated markup."""
        html = (
            "<!DOCTYPE html><html><head><title>Héllo</title></head>"
            '<body><p class="lead">Text</p><a href="/a?b=1">a</a></body></html>'
        )

        out = make_urls_relative(html, PREVIEW)

        assert out.lower().startswith("<!doctype html>")
        assert "Héllo" in out
        assert '<p class="lead">Text</p>' in out
        assert 'href="/a/b-1/"' in out

    def test_blank_input_returned_unchanged(self) -> None:
        """Test nothing to parse means nothing to rewrite."""
        assert make_urls_relative("", PREVIEW) == ""
