"""
CLI Tests for the News Agent

Commands are run in-process with the system facade mocked out.
"""

import logging
from unittest.mock import patch

import pytest

from news_agent import cli
from news_agent.ingestion.pipeline import BatchResult, ItemResult
from news_agent.models import QueryResult, SourceRef

from conftest import make_record


@pytest.fixture
def system():
    with patch('news_agent.cli.NewsAgentSystem') as system_cls, \
         patch('news_agent.cli.setup_logging'):
        yield system_cls.return_value


def run_cli(*args):
    """Run the CLI and return its exit code (0 when it returns normally)."""
    try:
        cli.main(list(args))
    except SystemExit as e:
        return e.code
    return 0


class TestCLICommands:
    """Test CLI command execution."""

    def test_no_command_shows_help(self, system, capsys):
        assert run_cli() == 1
        assert 'News Agent' in capsys.readouterr().out

    def test_help_lists_commands(self, capsys):
        assert run_cli('--help') == 0
        out = capsys.readouterr().out
        for command in ('ingest', 'ask', 'summarize', 'search', 'get', 'stats'):
            assert command in out

    def test_ask(self, system, capsys):
        system.process_query.return_value = QueryResult(
            answer="It rained.",
            sources=[SourceRef(id="1", title="Weather", url="https://example.com/w", date="2024-03-15")],
            mode="corpus",
            response_time=0.5
        )

        assert run_cli('ask', 'What happened?') == 0

        out = capsys.readouterr().out
        assert "It rained." in out
        assert "https://example.com/w" in out
        system.process_query.assert_called_once_with('What happened?')

    def test_ask_stream(self, system, capsys):
        def stream(question, callbacks):
            callbacks.emit_token("Hello ")
            callbacks.emit_token("world")
            callbacks.emit_complete(QueryResult(answer="Hello world", sources=[]))

        system.process_query_streaming.side_effect = stream

        assert run_cli('ask', 'Hi?', '--stream') == 0
        assert "Hello world" in capsys.readouterr().out

    def test_ask_stream_error(self, system, capsys):
        system.process_query_streaming.side_effect = (
            lambda question, callbacks: callbacks.emit_error(RuntimeError("model down"))
        )

        assert run_cli('ask', 'Hi?', '--stream') == 1
        assert "model down" in capsys.readouterr().out

    def test_ingest_url(self, system, capsys):
        system.ingest.return_value = make_record("Foo", "Body", url="https://example.com/a")

        assert run_cli('ingest', '--url', 'https://example.com/a') == 0

        out = capsys.readouterr().out
        assert "Successfully ingested" in out
        assert "example.com" in out
        system.shutdown.assert_called_once()

    def test_ingest_file(self, system, capsys, tmp_path):
        path = tmp_path / "urls.txt"
        path.write_text("https://example.com/a\nhttps://example.com/b\n")
        system.ingest_from_file.return_value = BatchResult(
            total=2, successful=1, failed=1, processing_time=1.0,
            details=[
                ItemResult(url="https://example.com/a", success=True),
                ItemResult(url="https://example.com/b", success=False, error="404"),
            ]
        )

        assert run_cli('ingest', '--file', str(path)) == 0

        out = capsys.readouterr().out
        assert "Successful: 1" in out
        assert "https://example.com/b: 404" in out

    def test_ingest_missing_file(self, system, capsys):
        assert run_cli('ingest', '--file', '/no/such/file.csv') == 1

    def test_ingest_requires_source(self, system):
        assert run_cli('ingest') == 1

    def test_summarize(self, system, capsys):
        system.summarize.return_value = QueryResult(answer="Short summary.", mode="single_document")

        assert run_cli('summarize', 'https://example.com/a') == 0
        assert "Short summary." in capsys.readouterr().out

    def test_summarize_degraded_exit_code(self, system):
        system.summarize.return_value = QueryResult(answer="error", mode="degraded")
        assert run_cli('summarize', 'https://example.com/a') == 1

    def test_search(self, system, capsys):
        record = make_record("Rates rise", "The bank raised rates.")
        system.search.return_value = [record]

        assert run_cli('search', 'rates', '--limit', '5') == 0

        out = capsys.readouterr().out
        assert "Rates rise" in out
        system.search.assert_called_once_with('rates', limit=5)

    def test_get_missing(self, system, capsys):
        system.get_by_id.return_value = None
        assert run_cli('get', 'abc') == 1

    def test_get(self, system, capsys):
        system.get_by_id.return_value = make_record("Foo", "Body text")
        assert run_cli('get', 'abc') == 0
        assert "Body text" in capsys.readouterr().out

    def test_stats(self, system, capsys):
        system.get_stats.return_value = {
            'total_articles': 7,
            'vector_store_stats': {'initialized': True, 'dimension': 768, 'index_type': 'IndexHNSWFlat', 'total_vectors': 8},
            'embedding_cache_stats': {'cache_size': 3, 'hit_rate': 0.5, 'hits': 2, 'misses': 2},
        }

        assert run_cli('stats') == 0
        assert "Total Articles: 7" in capsys.readouterr().out

    def test_command_error_exit_code(self, system, capsys):
        system.ingest.side_effect = ValueError("Invalid URL format: nope")
        assert run_cli('ingest', '--url', 'nope') == 1
        assert "Invalid URL format" in capsys.readouterr().out


class TestSetupLogging:
    """Test logging configuration."""

    def test_console_and_file_handlers(self, tmp_path):
        root = logging.getLogger()
        before = list(root.handlers)
        level = root.level
        try:
            cli.setup_logging("WARNING", str(tmp_path / "logs"))

            added = [h for h in root.handlers if h not in before]
            assert len(added) == 2
            assert root.level == logging.WARNING
            assert (tmp_path / "logs" / "news_agent.log").exists()
        finally:
            root.setLevel(level)
            for handler in root.handlers[:]:
                if handler not in before:
                    root.removeHandler(handler)
                    handler.close()
