"""
Test Suite for the RAG Service

Covers mode detection, single-document and corpus answers, degraded results,
streaming delivery and cancellation, and summaries.
"""

from unittest.mock import Mock

import pytest

from news_agent.errors import AccessDeniedError, IndexOperationError
from news_agent.ingestion.article_extractor import ArticleExtractor
from news_agent.models import SearchHit
from news_agent.query.rag_service import (
    RAGService,
    StreamingCallbacks,
    NO_INFORMATION_ANSWER,
    extract_url_from_query,
)
from news_agent.storage.vector_store import VectorStore

from conftest import make_record


@pytest.fixture
def article():
    return make_record("Foo", "Foo happened today.", url="https://example.com/a")


@pytest.fixture
def extractor(article):
    extractor = Mock(spec=ArticleExtractor)
    extractor.normalize.return_value = article
    return extractor


@pytest.fixture
def store():
    store = Mock(spec=VectorStore)
    store.query.return_value = []
    return store


@pytest.fixture
def rag(extractor, generator, store):
    return RAGService(extractor=extractor, generation_service=generator, vector_store=store)


class Recorder:
    """Collects streaming callbacks in order."""

    def __init__(self):
        self.events = []

    def callbacks(self) -> StreamingCallbacks:
        return StreamingCallbacks(
            on_token=lambda token: self.events.append(('token', token)),
            on_complete=lambda result: self.events.append(('complete', result)),
            on_error=lambda error: self.events.append(('error', error))
        )

    @property
    def tokens(self):
        return [value for kind, value in self.events if kind == 'token']

    def of_kind(self, kind):
        return [value for k, value in self.events if k == kind]


class TestExtractUrl:
    """Test URL detection in queries."""

    def test_no_url(self):
        assert extract_url_from_query("What happened in Canada?") is None

    def test_first_url_wins(self):
        query = "Compare https://a.example.com/1 with https://b.example.com/2"
        assert extract_url_from_query(query) == "https://a.example.com/1"

    def test_trailing_punctuation_stripped(self):
        assert extract_url_from_query("Summarize https://example.com/a.") == "https://example.com/a"
        assert extract_url_from_query("(see https://example.com/a)") == "https://example.com/a"

    def test_http_scheme(self):
        assert extract_url_from_query("read http://example.com/x now") == "http://example.com/x"


class TestSingleDocumentMode:
    """Test queries that name an article URL."""

    def test_exactly_one_source_with_url(self, rag, extractor, article):
        result = rag.answer("What is https://example.com/a about?")

        assert result.mode == "single_document"
        assert len(result.sources) == 1
        assert result.sources[0].url == "https://example.com/a"
        assert result.sources[0].id == article.id
        extractor.normalize.assert_called_once_with("https://example.com/a")

    def test_uses_first_url(self, rag, extractor):
        rag.answer("https://example.com/a vs https://example.com/b")
        extractor.normalize.assert_called_once_with("https://example.com/a")

    def test_article_stored_best_effort(self, rag, store, article):
        rag.answer("Tell me about https://example.com/a")
        store.add.assert_called_once_with(article)

    def test_store_failure_does_not_affect_answer(self, rag, store, generator):
        store.add.side_effect = IndexOperationError("disk full")

        result = rag.answer("Tell me about https://example.com/a")

        assert result.answer == generator.response
        assert len(result.sources) == 1

    def test_works_without_vector_store(self, extractor, generator):
        rag = RAGService(extractor=extractor, generation_service=generator, vector_store=None)
        result = rag.answer("Tell me about https://example.com/a")
        assert result.mode == "single_document"

    def test_prompt_has_article_and_question_without_url(self, rag, generator):
        rag.answer("What is https://example.com/a about?")

        prompt = generator.prompts[0]
        assert "Title: Foo" in prompt
        assert "Foo happened today." in prompt
        assert "What is  about?" in prompt or "What is about?" in prompt

    def test_fetch_failure_degrades(self, rag, extractor):
        extractor.normalize.side_effect = AccessDeniedError("denied", "https://example.com/a", 403)

        result = rag.answer("Tell me about https://example.com/a")

        assert result.is_degraded
        assert result.sources == []
        assert "denied" in result.answer


class TestCorpusMode:
    """Test general queries answered from retrieved articles."""

    def test_empty_index_gives_no_information_without_generation(self, extractor, generator, vector_store):
        rag = RAGService(extractor=extractor, generation_service=generator, vector_store=vector_store)

        result = rag.answer("What happened in Canada?")

        assert result.answer == NO_INFORMATION_ANSWER
        assert result.sources == []
        assert generator.calls == 0

    def test_sources_in_retrieval_order(self, rag, store, generator):
        records = [make_record(f"Article {i}", f"Body {i}", url=f"https://example.com/{i}") for i in range(3)]
        store.query.return_value = [SearchHit(record=r, distance=0.1 * i) for i, r in enumerate(records)]

        result = rag.answer("What's new?")

        assert result.mode == "corpus"
        assert [s.url for s in result.sources] == [r.url for r in records]
        assert result.answer == generator.response
        store.query.assert_called_once_with("What's new?", 3)

    def test_context_truncated_to_1000_chars(self, rag, store, generator):
        long_record = make_record("Long", "a" * 1500)
        short_record = make_record("Short", "b" * 10)
        store.query.return_value = [
            SearchHit(record=long_record, distance=0.1),
            SearchHit(record=short_record, distance=0.2),
        ]

        rag.answer("Anything?")

        prompt = generator.prompts[0]
        assert "a" * 1000 + "..." in prompt
        assert "a" * 1001 not in prompt
        assert "b" * 10 + "..." not in prompt
        assert "ARTICLE 1:" in prompt and "ARTICLE 2:" in prompt

    def test_retrieval_failure_degrades(self, rag, store):
        store.query.side_effect = IndexOperationError("broken")

        result = rag.answer("What's new?")

        assert result.is_degraded
        assert result.sources == []

    def test_missing_vector_store_degrades(self, extractor, generator):
        rag = RAGService(extractor=extractor, generation_service=generator, vector_store=None)
        assert rag.answer("What's new?").is_degraded

    def test_generation_failure_degrades(self, rag, store, generator):
        store.query.return_value = [SearchHit(record=make_record("A", "B"), distance=0.1)]
        generator.fail = True

        result = rag.answer("What's new?")

        assert result.is_degraded
        assert result.sources == []

    def test_generate_raises(self, rag, store, generator):
        store.query.return_value = [SearchHit(record=make_record("A", "B"), distance=0.1)]
        generator.fail = True

        with pytest.raises(Exception):
            rag.generate("What's new?")

    def test_empty_query_degrades(self, rag):
        assert rag.answer("   ").is_degraded


class TestStreaming:
    """Test token-by-token delivery."""

    def test_tokens_then_single_completion(self, rag, store, generator):
        store.query.return_value = [SearchHit(record=make_record("A", "B"), distance=0.1)]
        generator.tokens = ["The ", "answer ", "is ", "42."]
        recorder = Recorder()

        rag.answer_streaming("What's the answer?", recorder.callbacks())

        kinds = [kind for kind, _ in recorder.events]
        assert kinds == ['token'] * 4 + ['complete']
        completion = recorder.of_kind('complete')[0]
        assert completion.answer == "".join(recorder.tokens) == "The answer is 42."
        assert len(completion.sources) == 1

    def test_single_document_streaming(self, rag, generator):
        generator.tokens = ["Foo", " summary"]
        recorder = Recorder()

        rag.answer_streaming("Explain https://example.com/a", recorder.callbacks())

        completion = recorder.of_kind('complete')[0]
        assert completion.answer == "Foo summary"
        assert completion.sources[0].url == "https://example.com/a"

    def test_no_information_streamed_as_one_token(self, rag, generator):
        recorder = Recorder()

        rag.answer_streaming("What happened in Canada?", recorder.callbacks())

        assert recorder.tokens == [NO_INFORMATION_ANSWER]
        assert recorder.of_kind('complete')[0].answer == NO_INFORMATION_ANSWER
        assert generator.calls == 0

    def test_failure_before_tokens_gives_one_error(self, rag, store):
        store.query.side_effect = IndexOperationError("broken")
        recorder = Recorder()

        rag.answer_streaming("What's new?", recorder.callbacks())

        assert [kind for kind, _ in recorder.events] == ['error']

    def test_failure_mid_stream_gives_one_error(self, rag, store, generator):
        store.query.return_value = [SearchHit(record=make_record("A", "B"), distance=0.1)]
        generator.tokens = ["one", "two", "three"]
        generator.fail_after = 2
        recorder = Recorder()

        rag.answer_streaming("What's new?", recorder.callbacks())

        assert recorder.tokens == ["one", "two"]
        assert len(recorder.of_kind('error')) == 1
        assert recorder.of_kind('complete') == []

    def test_cancel_stops_callbacks_and_closes_stream(self, rag, store, generator):
        store.query.return_value = [SearchHit(record=make_record("A", "B"), distance=0.1)]
        generator.tokens = ["one", "two", "three", "four"]
        events = []
        callbacks = None

        def on_token(token):
            events.append(token)
            callbacks.cancel()

        callbacks = StreamingCallbacks(
            on_token=on_token,
            on_complete=lambda result: events.append('complete'),
            on_error=lambda error: events.append('error')
        )

        rag.answer_streaming("What's new?", callbacks)

        assert events == ["one"]
        assert generator.stream_closed

    def test_stream_closed_after_normal_completion(self, rag, store, generator):
        store.query.return_value = [SearchHit(record=make_record("A", "B"), distance=0.1)]
        rag.answer_streaming("What's new?", Recorder().callbacks())
        assert generator.stream_closed

    def test_raising_callback_does_not_escape(self, rag):
        callbacks = StreamingCallbacks(
            on_token=Mock(),
            on_complete=Mock(side_effect=RuntimeError("client gone")),
            on_error=Mock()
        )

        rag.answer_streaming("What happened in Canada?", callbacks)

        callbacks.on_error.assert_not_called()


class TestSummarize:
    """Test article summaries."""

    def test_summary_with_one_source(self, rag, generator, store, article):
        generator.response = "A concise summary."

        result = rag.summarize("https://example.com/a")

        assert result.answer == "A concise summary."
        assert [s.url for s in result.sources] == ["https://example.com/a"]
        store.add.assert_called_once_with(article)
        assert "professional news summarizer" in generator.prompts[0]

    def test_invalid_url_degrades_without_fetch(self, rag, extractor):
        result = rag.summarize("not-a-url")

        assert result.is_degraded
        assert "Invalid URL" in result.answer
        extractor.normalize.assert_not_called()

    def test_fetch_failure_degrades(self, rag, extractor):
        extractor.normalize.side_effect = AccessDeniedError("denied", "https://example.com/a", 403)
        result = rag.summarize("https://example.com/a")
        assert result.is_degraded
        assert result.sources == []
