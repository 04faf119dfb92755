"""
Main Pipeline System

Orchestrates all components into a cohesive system for article ingestion
and question answering.

This is the central integration point that coordinates:
- Article normalization and storage
- Retrieval-augmented answers, blocking and streamed
- Article summaries, search and lookup
- The response cache in front of the expensive calls
"""

import time
import logging
from typing import Callable, Dict, Iterable, List, Optional, Any, Union

from .config import Config, get_config
from .embeddings.ollama_service import OllamaEmbeddingService
from .errors import IndexUnavailableError
from .generation.ollama_chat import OllamaChatService
from .ingestion.article_extractor import ArticleExtractor
from .ingestion.pipeline import BatchResult, IngestionPipeline
from .ingestion.sources import FileUrlSource, UrlSource
from .models import ArticleRecord, QueryResult
from .query.rag_service import RAGService, StreamingCallbacks
from .storage.response_cache import (
    ResponseCache,
    article_key,
    query_key,
    search_key,
    summary_key,
)
from .storage.vector_store import VectorStore

logger = logging.getLogger(__name__)


class NewsAgentSystem:
    """
    Main system that integrates all components.

    Provides high-level methods for:
    - Article ingestion (single, batch, from file or queue)
    - Question answering, streaming answers and summaries
    - Similarity search and lookup by id
    - System statistics

    Every component can be injected; anything not supplied is built from the
    configuration.
    """

    def __init__(
        self,
        config: Optional[Config] = None,
        embedding_service: Optional[OllamaEmbeddingService] = None,
        generation_service: Optional[OllamaChatService] = None,
        extractor: Optional[ArticleExtractor] = None,
        vector_store: Optional[VectorStore] = None,
        cache: Optional[ResponseCache] = None,
        rag_service: Optional[RAGService] = None,
        ingestion_pipeline: Optional[IngestionPipeline] = None,
        show_progress: bool = True
    ):
        """
        Initialize the news agent system.

        Args:
            config: Configuration (default: global config)
            embedding_service: OllamaEmbeddingService instance (or None for default)
            generation_service: OllamaChatService instance (or None for default)
            extractor: ArticleExtractor instance (or None for default)
            vector_store: VectorStore instance (or None for default)
            cache: ResponseCache instance (or None for default)
            rag_service: RAGService instance (or None for default)
            ingestion_pipeline: IngestionPipeline instance (or None for default)
            show_progress: Show progress bars for batch ingestion
        """
        self.config = config or get_config()
        cfg = self.config

        self.embedding_service = embedding_service or OllamaEmbeddingService(
            model=cfg.ollama_embedding_model,
            base_url=cfg.ollama_base_url,
            enable_disk_cache=cfg.enable_disk_cache,
            cache_dir=cfg.embedding_cache_dir,
            expected_dimensions=cfg.embedding_dimensions or None,
            timeout=cfg.ollama_timeout
        )
        self.generation_service = generation_service or OllamaChatService(
            model=cfg.ollama_llm_model,
            base_url=cfg.ollama_base_url,
            temperature=cfg.llm_temperature,
            max_tokens=cfg.llm_max_tokens
        )

        fetch = cfg.get_fetch_config()
        self.extractor = extractor or ArticleExtractor(
            generation_service=self.generation_service,
            timeout=fetch['timeout'],
            max_redirects=fetch['max_redirects'],
            max_retries=fetch['max_retries'],
            retry_backoff=fetch['retry_backoff'],
            max_raw_chars=fetch['max_raw_chars']
        )
        self.vector_store = vector_store or VectorStore(
            embedding_service=self.embedding_service,
            index_path=cfg.faiss_index_path
        )
        self.cache = cache or ResponseCache()
        self.cache_ttls = cfg.get_cache_ttls()

        self.rag_service = rag_service or RAGService(
            extractor=self.extractor,
            generation_service=self.generation_service,
            vector_store=self.vector_store,
            top_k=cfg.top_k,
            context_chars=cfg.context_chars
        )
        self.ingestion_pipeline = ingestion_pipeline or IngestionPipeline(
            extractor=self.extractor,
            vector_store=self.vector_store,
            max_workers=cfg.max_workers,
            show_progress=show_progress
        )

        logger.info("NewsAgentSystem initialized successfully")

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> bool:
        """
        Open the vector store.

        A failure is logged and the system keeps running; index-dependent
        operations fail until the store can be opened.

        Returns:
            True if the vector store is ready
        """
        try:
            self.vector_store.initialize()
        except IndexUnavailableError as e:
            logger.error(f"Vector store unavailable at startup: {e}")
            return False
        return True

    def shutdown(self) -> None:
        """Persist the vector store and drop cached responses."""
        self.vector_store.shutdown()
        self.cache.clear()
        logger.info("NewsAgentSystem shut down")

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def process_query(self, query_text: str) -> QueryResult:
        """
        Answer a question, serving repeated questions from the cache.

        Never raises; failed answers are returned degraded and not cached.

        Args:
            query_text: Free-text question, optionally naming an article URL

        Returns:
            QueryResult with answer and sources
        """
        start_time = time.time()
        try:
            return self.cache.get_or_compute(
                query_key(query_text),
                self.cache_ttls['query'],
                lambda: self.rag_service.generate(query_text)
            )
        except Exception as e:
            logger.error(f"Error answering question: {e}")
            return self.rag_service.degraded_result(e, start_time=start_time)

    def process_query_streaming(self, query_text: str, callbacks: StreamingCallbacks) -> None:
        """Answer a question token by token (never cached)."""
        self.rag_service.answer_streaming(query_text, callbacks)

    def summarize(self, url: str) -> QueryResult:
        """
        Summarize the article at a URL (cached per URL). Never raises.

        Args:
            url: Article URL

        Returns:
            QueryResult with the summary and one source
        """
        start_time = time.time()
        try:
            return self.cache.get_or_compute(
                summary_key(url),
                self.cache_ttls['summary'],
                lambda: self.rag_service.generate_summary(url)
            )
        except Exception as e:
            logger.error(f"Error summarizing {url}: {e}")
            return self.rag_service.degraded_result(
                e, action="summarizing the article", start_time=start_time
            )

    def search(self, term: str, limit: int = 10) -> List[ArticleRecord]:
        """
        Similarity search over stored articles (cached).

        Args:
            term: Search text
            limit: Maximum number of articles

        Returns:
            Articles ordered by relevance, most similar first

        Raises:
            ValueError: If limit is negative
            IndexUnavailableError / IndexOperationError: If the search fails
        """
        return self.cache.get_or_compute(
            search_key(term, limit),
            self.cache_ttls['search'],
            lambda: [hit.record for hit in self.vector_store.query(term, limit)]
        )

    def get_by_id(self, article_id: str) -> Optional[ArticleRecord]:
        """
        Look up a stored article by id (cached).

        Misses are not cached, since an article stored later by a
        single-document query or summary may carry that id.

        Returns:
            The record, or None if no article has that id
        """
        key = article_key(article_id)
        record = self.cache.get(key)
        if record is not None:
            return record

        record = self.vector_store.find_by_id(article_id)
        if record is not None:
            self.cache.set(key, record, self.cache_ttls['article'])
        return record

    # ------------------------------------------------------------------
    # Ingestion
    # ------------------------------------------------------------------

    def ingest(self, url: str) -> ArticleRecord:
        """
        Ingest a single article and invalidate cached responses.

        Args:
            url: Article URL

        Returns:
            The stored record

        Raises:
            InvalidUrlError, FetchError, IndexUnavailableError, IndexOperationError
        """
        record = self.ingestion_pipeline.ingest_one(url)
        self.cache.clear()
        return record

    def ingest_batch(
        self,
        urls: Union[UrlSource, Iterable[str]],
        on_item_result: Optional[Callable[[str, bool], None]] = None
    ) -> BatchResult:
        """
        Ingest many articles with bounded concurrency.

        Args:
            urls: UrlSource or iterable of URLs
            on_item_result: Optional callback(url, success) per item

        Returns:
            BatchResult with totals and per-item details
        """
        result = self.ingestion_pipeline.ingest_batch(urls, on_item_result=on_item_result)
        if result.successful:
            self.cache.clear()
        return result

    def ingest_from_file(
        self,
        file_path: Optional[str] = None,
        on_item_result: Optional[Callable[[str, bool], None]] = None
    ) -> BatchResult:
        """
        Ingest articles listed in a file (CSV with a `url` column, or one URL per line).

        Args:
            file_path: Path to the file (default: configured articles file)
            on_item_result: Optional callback(url, success) per item

        Returns:
            BatchResult with totals and per-item details
        """
        source = FileUrlSource(file_path or self.config.articles_file)
        urls = source.read_urls()
        return self.ingest_batch(urls, on_item_result=on_item_result)

    # ------------------------------------------------------------------
    # Statistics
    # ------------------------------------------------------------------

    def get_stats(self) -> Dict[str, Any]:
        """
        Get comprehensive system statistics.

        Returns:
            Dictionary with statistics
        """
        vector_stats = self.vector_store.get_stats()

        return {
            'total_articles': vector_stats.get('total_articles', 0),
            'vector_store_stats': vector_stats,
            'response_cache_stats': self.cache.get_stats(),
            'embedding_cache_stats': self.embedding_service.get_cache_stats(),
            'extraction_stats': self.extractor.get_extraction_stats()
        }
