"""
Tests for parsing the LLM's article extraction response.
"""

import pytest

from news_agent.errors import ExtractionError
from news_agent.ingestion.structured_output import (
    ParseMethod,
    parse_strict,
    parse_pattern,
    build_stub,
    parse_article_response,
    STUB_TITLE,
    EMPTY_CONTENT_PLACEHOLDER,
)

RAW_TEXT = "Title: Foo\n\nContent: " + "Raw page text. " * 200


class TestStrictParse:
    """Test JSON extraction."""

    def test_fenced_json_block(self):
        response = 'Sure!\n```json\n{"title": "Foo", "content": "Body", "summary": "Short"}\n```'
        fields = parse_strict(response)
        assert fields['title'] == "Foo"
        assert fields['content'] == "Body"
        assert fields['summary'] == "Short"

    def test_outermost_braces_in_prose(self):
        response = 'Here you go: {"title": "Foo", "content": "Body"} hope it helps'
        assert parse_strict(response)['title'] == "Foo"

    def test_published_at_normalized_to_date(self):
        response = '{"title": "Foo", "content": "Body", "published_at": "2024-03-15T09:30:00Z"}'
        assert parse_strict(response)['published_at'] == "2024-03-15"

    def test_decoded_values_keep_quotes_and_markup(self):
        response = '{"title": "\\"Yes\\", she said", "content": "*Breaking* news ends with `code`"}'
        fields = parse_strict(response)
        assert fields['title'] == '"Yes", she said'
        assert fields['content'] == "*Breaking* news ends with `code`"

    def test_invalid_json_raises(self):
        with pytest.raises(ExtractionError):
            parse_strict('{"title": "Foo", content: }')

    def test_non_object_raises(self):
        with pytest.raises(ExtractionError):
            parse_strict('```json\n["Foo", "Body"]\n```')

    def test_no_json_raises(self):
        with pytest.raises(ExtractionError):
            parse_strict("No JSON here at all")


class TestPatternParse:
    """Test labelled-field extraction from free text."""

    def test_labelled_fields(self):
        response = "Title: Foo Bar\nContent: Some body text here.\nSummary: Short summary."
        fields = parse_pattern(response)
        assert fields['title'] == "Foo Bar"
        assert fields['content'] == "Some body text here."
        assert fields['summary'] == "Short summary."

    def test_markdown_labels(self):
        response = "**Title:** Foo\n\n**Content:** Body paragraph"
        fields = parse_pattern(response)
        assert fields['title'] == "Foo"
        assert fields['content'] == "Body paragraph"

    def test_date_label(self):
        response = "Title: Foo\nDate: 2023-11-02"
        assert parse_pattern(response)['published_at'] == "2023-11-02"

    def test_no_labels_raises(self):
        with pytest.raises(ExtractionError):
            parse_pattern("I'm sorry, I cannot help with that.")


class TestParseArticleResponse:
    """Test the full STRICT -> PATTERN -> STUB cascade."""

    def test_strict_wins(self):
        parsed = parse_article_response('{"title": "Foo", "content": "Body"}', RAW_TEXT)
        assert parsed.method == ParseMethod.STRICT
        assert parsed.title == "Foo"

    def test_falls_back_to_pattern(self):
        parsed = parse_article_response("Title: Foo\nContent: Body", RAW_TEXT)
        assert parsed.method == ParseMethod.PATTERN
        assert parsed.content == "Body"

    def test_falls_back_to_stub(self):
        parsed = parse_article_response("I cannot help with that.", RAW_TEXT)
        assert parsed.method == ParseMethod.STUB
        assert parsed.title == STUB_TITLE
        assert parsed.content == RAW_TEXT.strip()[:5000]

    def test_missing_content_filled_from_raw_text(self):
        parsed = parse_article_response('{"title": "Foo"}', RAW_TEXT)
        assert parsed.title == "Foo"
        assert parsed.content == RAW_TEXT.strip()[:1000]

    def test_missing_title_defaults(self):
        parsed = parse_article_response('{"content": "Body"}', RAW_TEXT)
        assert parsed.title == STUB_TITLE

    @pytest.mark.parametrize("response", ["", "{", "```json\n```", "null", "{}"])
    def test_never_raises_and_content_never_empty(self, response):
        parsed = parse_article_response(response, RAW_TEXT)
        assert parsed.content

    def test_stub_of_empty_page(self):
        parsed = build_stub("   ")
        assert parsed.content == EMPTY_CONTENT_PLACEHOLDER

    def test_stub_length_limit(self):
        assert len(build_stub("x" * 9000, max_chars=5000).content) == 5000
