"""
RAG Service for Question Answering over News Articles

Orchestrates retrieval-augmented answering:
1. Mode detection (a URL in the query targets that one article)
2. Article normalization or similarity retrieval from the vector store
3. Prompt construction with the article or retrieved context
4. LLM-based answer generation, blocking or streamed token by token
5. Source attribution
"""

import re
import time
import logging
import threading
from typing import Callable, List, Optional, Tuple

from ..errors import IndexUnavailableError, InvalidUrlError
from ..generation.ollama_chat import OllamaChatService
from ..ingestion.article_extractor import ArticleExtractor, validate_url
from ..models import ArticleRecord, QueryResult, SourceRef
from ..prompts import (
    build_article_prompt,
    build_corpus_prompt,
    build_summary_prompt,
    format_context,
)
from ..storage.vector_store import VectorStore

logger = logging.getLogger(__name__)

NO_INFORMATION_ANSWER = (
    "I don't have any information about that topic in my knowledge base. "
    "Try asking about a different topic or providing a URL to an article."
)

MODE_SINGLE_DOCUMENT = "single_document"
MODE_CORPUS = "corpus"
MODE_DEGRADED = "degraded"

URL_PATTERN = re.compile(r'https?://\S+')

# Sentence punctuation that commonly trails a URL typed in prose
_TRAILING_PUNCTUATION = '.,;:!?)]}\'"'


def extract_url_from_query(query: str) -> Optional[str]:
    """
    Find the first http(s) URL in a query.

    Args:
        query: Free-text user query

    Returns:
        The URL without trailing sentence punctuation, or None
    """
    match = URL_PATTERN.search(query or '')
    if not match:
        return None
    url = match.group(0).rstrip(_TRAILING_PUNCTUATION)
    return url or None


class StreamingCallbacks:
    """
    Receiver for a streamed answer.

    Exactly one of on_complete / on_error is delivered per request, after
    any on_token calls. Once `cancel()` is called (e.g. the consumer
    disconnected) no further callbacks are delivered.
    """

    def __init__(
        self,
        on_token: Callable[[str], None],
        on_complete: Callable[[QueryResult], None],
        on_error: Callable[[Exception], None]
    ):
        self.on_token = on_token
        self.on_complete = on_complete
        self.on_error = on_error
        self._cancelled = threading.Event()

    def cancel(self) -> None:
        self._cancelled.set()

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    def emit_token(self, token: str) -> None:
        if not self.cancelled:
            self.on_token(token)

    def emit_complete(self, result: QueryResult) -> None:
        if not self.cancelled:
            self.on_complete(result)

    def emit_error(self, error: Exception) -> None:
        if not self.cancelled:
            self.on_error(error)


class RAGService:
    """
    RAG (Retrieval-Augmented Generation) service for news question answering.

    A query naming a URL is answered from that single article (which is also
    stored, best effort). Any other query is answered from the top-k most
    similar stored articles.
    """

    def __init__(
        self,
        extractor: ArticleExtractor,
        generation_service: OllamaChatService,
        vector_store: Optional[VectorStore] = None,
        top_k: int = 3,
        context_chars: int = 1000
    ):
        """
        Initialize the RAG service.

        Args:
            extractor: Normalizes URLs into ArticleRecords
            generation_service: LLM used to write answers
            vector_store: Article index (None when the index is unavailable)
            top_k: Number of articles retrieved in corpus mode
            context_chars: Content characters kept per retrieved article
        """
        self.extractor = extractor
        self.generation_service = generation_service
        self.vector_store = vector_store
        self.top_k = top_k
        self.context_chars = context_chars

    # ------------------------------------------------------------------
    # Preparation shared by blocking and streaming answers
    # ------------------------------------------------------------------

    def _store_best_effort(self, record: ArticleRecord) -> None:
        """Store a normalized article; failures never affect the answer."""
        if self.vector_store is None:
            logger.warning(f"Vector store unavailable, not storing {record.url}")
            return
        try:
            self.vector_store.add(record)
        except Exception as e:
            logger.warning(f"Failed to store article in vector DB: {e}")

    def _prepare_single_document(self, url: str, query: str) -> Tuple[str, List[SourceRef]]:
        logger.info(f"Processing URL-specific query for: {url}")
        article = self.extractor.normalize(url)
        self._store_best_effort(article)

        question = query.replace(url, '').strip()
        prompt = build_article_prompt(article, question)
        return prompt, [article.to_source_ref()]

    def _prepare_corpus(self, query: str) -> Tuple[Optional[str], List[SourceRef]]:
        """
        Retrieve context for a general query.

        Returns:
            (prompt, sources); prompt is None when nothing was retrieved
        """
        logger.info(f"Processing general knowledge query: {query}")
        if self.vector_store is None:
            raise IndexUnavailableError("Vector database is not available")

        hits = self.vector_store.query(query, self.top_k)
        if not hits:
            logger.info("No relevant articles found for query")
            return None, []

        records = [hit.record for hit in hits]
        context = format_context(records, self.context_chars)
        return build_corpus_prompt(context, query), [record.to_source_ref() for record in records]

    def _prepare(self, query: str) -> Tuple[Optional[str], List[SourceRef], str]:
        if not query or not query.strip():
            raise ValueError("Query cannot be empty")

        url = extract_url_from_query(query)
        if url:
            prompt, sources = self._prepare_single_document(url, query)
            return prompt, sources, MODE_SINGLE_DOCUMENT

        prompt, sources = self._prepare_corpus(query)
        return prompt, sources, MODE_CORPUS

    # ------------------------------------------------------------------
    # Public operations
    # ------------------------------------------------------------------

    def degraded_result(
        self,
        error: Exception,
        action: str = "processing your query",
        start_time: Optional[float] = None
    ) -> QueryResult:
        """Explanatory answer returned in place of a failed request."""
        elapsed = time.time() - start_time if start_time is not None else 0.0
        return QueryResult(
            answer=(
                f"I encountered an error while {action}: {error}. "
                f"Please try again or rephrase your question."
            ),
            sources=[],
            mode=MODE_DEGRADED,
            response_time=elapsed
        )

    def generate(self, query: str) -> QueryResult:
        """
        Answer a query, raising on any failure.

        Args:
            query: Free-text question, optionally naming an article URL

        Returns:
            QueryResult with the answer and its sources

        Raises:
            ValueError: If the query is empty
            FetchError: If a named article cannot be fetched
            IndexUnavailableError / IndexOperationError: If retrieval fails
            GenerationError: If the LLM call fails
        """
        start_time = time.time()
        prompt, sources, mode = self._prepare(query)

        if prompt is None:
            answer = NO_INFORMATION_ANSWER
        else:
            answer = self.generation_service.invoke(prompt)

        return QueryResult(
            answer=answer,
            sources=sources,
            mode=mode,
            response_time=time.time() - start_time
        )

    def answer(self, query: str) -> QueryResult:
        """
        Answer a query. Never raises: failures become a degraded result.

        Args:
            query: Free-text question, optionally naming an article URL

        Returns:
            QueryResult (mode 'degraded' with empty sources on failure)
        """
        start_time = time.time()
        try:
            return self.generate(query)
        except Exception as e:
            logger.error(f"Query processing failed: {e}")
            return self.degraded_result(e, start_time=start_time)

    def answer_streaming(self, query: str, callbacks: StreamingCallbacks) -> None:
        """
        Answer a query, delivering tokens as the LLM produces them.

        Tokens arrive in generation order, followed by exactly one
        on_complete whose answer is their concatenation, or exactly one
        on_error. Never raises.

        Args:
            query: Free-text question, optionally naming an article URL
            callbacks: Receiver for tokens, completion and errors
        """
        start_time = time.time()
        try:
            result = self._stream(query, callbacks, start_time)
        except Exception as e:
            logger.error(f"Query streaming failed: {e}")
            self._deliver(callbacks.emit_error, e)
            return

        if result is not None:
            self._deliver(callbacks.emit_complete, result)

    def _stream(
        self,
        query: str,
        callbacks: StreamingCallbacks,
        start_time: float
    ) -> Optional[QueryResult]:
        """Run a streamed answer; returns None if the consumer cancelled."""
        prompt, sources, mode = self._prepare(query)
        if callbacks.cancelled:
            return None

        if prompt is None:
            callbacks.emit_token(NO_INFORMATION_ANSWER)
            return QueryResult(
                answer=NO_INFORMATION_ANSWER,
                sources=sources,
                mode=mode,
                response_time=time.time() - start_time
            )

        parts = []
        stream = self.generation_service.stream(prompt)
        try:
            for token in stream:
                if callbacks.cancelled:
                    logger.info("Streaming cancelled by consumer")
                    return None
                parts.append(token)
                callbacks.emit_token(token)
        finally:
            # Closing the generator releases the upstream model stream
            close = getattr(stream, 'close', None)
            if close is not None:
                close()

        if callbacks.cancelled:
            return None

        return QueryResult(
            answer=''.join(parts),
            sources=sources,
            mode=mode,
            response_time=time.time() - start_time
        )

    @staticmethod
    def _deliver(callback: Callable, value) -> None:
        try:
            callback(value)
        except Exception as e:
            logger.error(f"Streaming callback raised: {e}")

    def summarize(self, url: str) -> QueryResult:
        """
        Summarize the article at a URL. Never raises.

        Returns:
            QueryResult with the summary and one source, or a degraded result
        """
        start_time = time.time()
        try:
            return self.generate_summary(url)
        except Exception as e:
            logger.error(f"Summarization failed for {url}: {e}")
            return self.degraded_result(e, action="summarizing the article", start_time=start_time)

    def generate_summary(self, url: str) -> QueryResult:
        """
        Summarize the article at a URL, raising on any failure.

        Raises:
            InvalidUrlError: If the URL is malformed
            FetchError: If the article cannot be fetched
            GenerationError: If the LLM call fails
        """
        start_time = time.time()
        if not validate_url(url):
            raise InvalidUrlError(f"Invalid URL format: {url}")

        logger.info(f"Summarizing article from URL: {url}")
        article = self.extractor.normalize(url)
        self._store_best_effort(article)

        summary = self.generation_service.invoke(build_summary_prompt(article, article.summary))
        return QueryResult(
            answer=summary,
            sources=[article.to_source_ref()],
            mode=MODE_SINGLE_DOCUMENT,
            response_time=time.time() - start_time
        )
