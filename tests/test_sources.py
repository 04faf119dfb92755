"""
Tests for ingestion URL sources.
"""

import json
import queue

import pytest

from news_agent.ingestion.sources import (
    FileUrlSource,
    IterableUrlSource,
    QueueUrlSource,
    UrlSource,
    as_url_source,
    parse_url_message,
)


class TestParseUrlMessage:
    """Test queue message payload shapes."""

    def test_nested_value(self):
        message = json.dumps({"value": {"url": "https://example.com/a"}})
        assert parse_url_message(message) == "https://example.com/a"

    def test_flat_url(self):
        assert parse_url_message('{"url": "https://example.com/a"}') == "https://example.com/a"

    def test_bare_string(self):
        assert parse_url_message("https://example.com/a") == "https://example.com/a"

    def test_bytes_payload(self):
        assert parse_url_message(b'{"url": "https://example.com/a"}') == "https://example.com/a"

    @pytest.mark.parametrize("message", [
        None, "", "   ", '{"value": {}}', '{"title": "no url"}', "[1, 2]", "not a url with spaces",
    ])
    def test_no_url(self, message):
        assert parse_url_message(message) is None


class TestFileUrlSource:
    """Test reading URLs from files."""

    def test_csv_with_url_column(self, tmp_path):
        path = tmp_path / "articles.csv"
        path.write_text(
            "url,title\n"
            "https://example.com/a,A\n"
            ",missing\n"
            "https://example.com/b,B\n"
        )
        assert list(FileUrlSource(path)) == ["https://example.com/a", "https://example.com/b"]

    def test_csv_without_url_column(self, tmp_path):
        path = tmp_path / "articles.csv"
        path.write_text("link\nhttps://example.com/a\n")
        with pytest.raises(ValueError):
            FileUrlSource(path).read_urls()

    def test_plain_lines_with_comments(self, tmp_path):
        path = tmp_path / "urls.txt"
        path.write_text("# news\nhttps://example.com/a\n\n  https://example.com/b  \n")
        assert FileUrlSource(path).read_urls() == ["https://example.com/a", "https://example.com/b"]

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            FileUrlSource(tmp_path / "nope.csv").read_urls()


class TestQueueUrlSource:
    """Test consuming URLs from a queue."""

    def test_yields_until_stop(self):
        messages = queue.Queue()
        source = QueueUrlSource(messages)
        messages.put('{"value": {"url": "https://example.com/a"}}')
        messages.put("https://example.com/b")
        source.stop()

        assert list(source) == ["https://example.com/a", "https://example.com/b"]

    def test_skips_messages_without_url(self):
        messages = queue.Queue()
        source = QueueUrlSource(messages)
        messages.put('{"foo": 1}')
        messages.put('{"url": "https://example.com/a"}')
        source.stop()

        assert list(source) == ["https://example.com/a"]

    def test_redelivered_urls_are_not_deduplicated(self):
        messages = queue.Queue()
        source = QueueUrlSource(messages)
        messages.put("https://example.com/a")
        messages.put("https://example.com/a")
        source.stop()

        assert list(source) == ["https://example.com/a", "https://example.com/a"]

    def test_ack_recorded_and_forwarded(self):
        forwarded = []
        messages = queue.Queue()
        source = QueueUrlSource(messages, on_ack=lambda url, ok: forwarded.append((url, ok)))
        messages.put("https://example.com/a")
        messages.put("https://example.com/b")
        source.stop()
        urls = list(source)

        assert messages.unfinished_tasks == 2

        source.ack(urls[0], True)
        source.ack(urls[1], False)

        assert list(source.acknowledged) == [("https://example.com/a", True), ("https://example.com/b", False)]
        assert forwarded == list(source.acknowledged)
        assert messages.unfinished_tasks == 0

    def test_skipped_messages_and_stop_are_marked_done(self):
        messages = queue.Queue()
        source = QueueUrlSource(messages)
        messages.put('{"foo": 1}')
        source.stop()

        assert list(source) == []
        assert messages.unfinished_tasks == 0

    def test_ack_history_is_bounded(self):
        messages = queue.Queue()
        source = QueueUrlSource(messages)
        for i in range(QueueUrlSource.ACK_HISTORY + 5):
            messages.put(f"https://example.com/{i}")
        source.stop()

        for url in source:
            source.ack(url, True)

        assert len(source.acknowledged) == QueueUrlSource.ACK_HISTORY
        assert source.acknowledged[-1] == (f"https://example.com/{QueueUrlSource.ACK_HISTORY + 4}", True)


class TestAsUrlSource:
    """Test adapting plain iterables."""

    def test_wraps_list(self):
        source = as_url_source(["https://example.com/a"])
        assert isinstance(source, IterableUrlSource)
        assert list(source) == ["https://example.com/a"]
        source.ack("https://example.com/a", True)

    def test_passes_source_through(self):
        source = QueueUrlSource(queue.Queue())
        assert as_url_source(source) is source

    def test_base_class_is_abstract(self):
        with pytest.raises(NotImplementedError):
            iter(UrlSource())
