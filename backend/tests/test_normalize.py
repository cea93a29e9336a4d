"""Tests for transcript, HTML and markdown normalizers."""

from context_coach.ingest.normalize import (
    clean_transcript,
    extract_links,
    extract_title,
    html_to_text,
    markdown_to_text,
    normalize_url,
)


def test_transcript_drops_timestamps_markers_and_fillers() -> None:
    raw = "00:01 um I think we should use [Music] dependency injection\n01:15 you know for the services"
    cleaned = clean_transcript(raw)
    assert "00:01" not in cleaned
    assert "[Music]" not in cleaned
    assert "um" not in cleaned.split()
    assert "I think" not in cleaned
    assert "you know" not in cleaned
    assert "dependency injection" in cleaned


def test_transcript_longest_filler_phrase_wins() -> None:
    cleaned = clean_transcript("caching helps if you know what I mean in production")
    assert cleaned == "caching helps in production"


def test_transcript_repairs_missing_sentence_stop() -> None:
    assert clean_transcript("the cache is warm Then we query it") == "the cache is warm. Then we query it"


def test_empty_transcript() -> None:
    assert clean_transcript("") == ""


def test_html_to_text_drops_chrome() -> None:
    markup = (
        "<html><head><title>Guide</title><style>p { color: red }</style></head>"
        "<body><nav>Menu</nav><p>Hello &amp; welcome</p><script>track()</script></body></html>"
    )
    text = html_to_text(markup)
    assert "Hello & welcome" in text
    assert "Menu" not in text
    assert "track" not in text
    assert "color" not in text


def test_extract_links_same_site_under_base_path() -> None:
    markup = (
        '<a href="/docs/a#intro">A</a>'
        '<a href="https://other.example.com/docs/b">B</a>'
        '<a href="/blog/c">C</a>'
        '<a href="guide/d?page=2">D</a>'
        '<a href="mailto:team@example.com">Mail</a>'
        '<a href="/docs/a">A again</a>'
    )
    links = extract_links(markup, "https://example.com/docs/")
    assert links == ["https://example.com/docs/a", "https://example.com/docs/guide/d"]


def test_extract_links_resolves_against_page_but_keeps_scope() -> None:
    markup = '<a href="routing">Routing</a><a href="../../blog/x">Blog</a>'
    links = extract_links(markup, "https://example.com/docs/guide/intro", scope_url="https://example.com/docs/")
    assert links == ["https://example.com/docs/guide/routing"]


def test_extract_title() -> None:
    assert extract_title("<title> Routing &amp; Views </title>") == "Routing & Views"
    assert extract_title("<p>No title</p>") is None


def test_normalize_url_strips_query_and_fragment() -> None:
    assert normalize_url("https://example.com/docs/a?x=1#top") == "https://example.com/docs/a"


def test_markdown_to_text_keeps_blocks_as_paragraphs() -> None:
    text = markdown_to_text("# Title\n\nSome *bold* text\nnext line.\n\n- item one\n")
    assert text == "Title\n\nSome bold text next line.\n\nitem one"
