from __future__ import annotations

from backend.security import normalize_url
from crawler.links import extract_links


ORIGIN = normalize_url("https://example.com")


def _hrefs(html: str, page: str = "https://example.com/") -> list[str]:
    return [link.href for link in extract_links(html, normalize_url(page), ORIGIN)]


def test_query_and_fragment_variants_collapse_to_one_link():
    html = '<a href="/a?x=1">one</a><a href="/a#y">two</a><a href="/a">three</a>'
    assert _hrefs(html) == ["https://example.com/a"]


def test_default_ports_collapse_with_the_bare_host():
    html = (
        '<a href="https://example.com:443/a">explicit</a>'
        '<a href="/a">relative</a>'
        '<a href="https://EXAMPLE.com:8443/a">custom port</a>'
    )
    assert _hrefs(html) == ["https://example.com/a", "https://example.com:8443/a"]


def test_mailto_tel_and_fragment_links_are_skipped():
    html = (
        '<a href="mailto:hi@example.com">mail</a>'
        '<a href="tel:+100200">call</a>'
        '<a href="#pricing">jump</a>'
        '<a href="/contact">contact</a>'
    )
    assert _hrefs(html) == ["https://example.com/contact"]


def test_other_hosts_and_schemes_are_dropped():
    html = (
        '<a href="https://other.org/x">other</a>'
        '<a href="https://blog.example.com/post">subdomain</a>'
        '<a href="javascript:void(0)">js</a>'
        '<a href="ftp://example.com/file">ftp</a>'
        '<a href="https://example.com/kept">kept</a>'
    )
    assert _hrefs(html) == ["https://example.com/kept"]


def test_relative_links_resolve_against_the_page_and_keep_order():
    html = (
        "<a class='nav' href='guide'>guide</a>"
        '<A HREF="../about">about</A>'
        '<a data-x="1" href="/docs/intro">intro</a>'
        '<a href="guide">again</a>'
    )
    assert _hrefs(html, page="https://example.com/docs/start") == [
        "https://example.com/docs/guide",
        "https://example.com/about",
        "https://example.com/docs/intro",
    ]


def test_root_link_matches_origin_form():
    links = extract_links('<a href="https://example.com">home</a>', ORIGIN, ORIGIN)
    assert links == [ORIGIN]


def test_broken_markup_yields_no_links():
    assert _hrefs("<a href=unquoted>x</a><a href='unterminated>") == []
    assert _hrefs("") == []
