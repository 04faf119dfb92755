"""
Ingestion Pipeline

Normalizes article URLs and stores them in the vector store, one at a time
or as a batch processed by a bounded pool of worker threads.
"""

import time
import logging
import threading
from collections.abc import Sized
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import date
from typing import Callable, Iterable, List, Optional, Union
from urllib.parse import urlparse

from tqdm import tqdm

from ..errors import AccessDeniedError, InvalidUrlError
from ..models import ArticleRecord
from ..storage.vector_store import VectorStore
from .article_extractor import ArticleExtractor, validate_url
from .sources import UrlSource, as_url_source

logger = logging.getLogger(__name__)

BLOCKED_CONTENT_TEMPLATE = (
    "This article from {url} could not be accessed directly. The content was "
    "not available for processing due to website restrictions."
)


@dataclass
class ItemResult:
    """Outcome of ingesting one URL."""
    url: str
    success: bool
    article_id: Optional[str] = None
    error: Optional[str] = None
    processing_time: float = 0.0


@dataclass
class BatchResult:
    """Tally of a batch ingestion run."""
    total: int = 0
    successful: int = 0
    failed: int = 0
    processing_time: float = 0.0
    details: List[ItemResult] = field(default_factory=list)


def build_blocked_stub(url: str) -> ArticleRecord:
    """Placeholder record for a site that refuses scrapers."""
    host = urlparse(url).netloc
    return ArticleRecord.create(
        url=url,
        title=f"Article from {host}",
        content=BLOCKED_CONTENT_TEMPLATE.format(url=url),
        published_at=date.today().isoformat()
    )


class IngestionPipeline:
    """
    Fetch, normalize and store articles.

    A site that denies access still yields a stored stub record so the URL is
    known to the index; every other failure is reported per item and never
    aborts a batch.
    """

    def __init__(
        self,
        extractor: ArticleExtractor,
        vector_store: VectorStore,
        max_workers: int = 4,
        show_progress: bool = True
    ):
        """
        Initialize the ingestion pipeline.

        Args:
            extractor: Normalizes URLs into ArticleRecords
            vector_store: Destination index
            max_workers: Maximum URLs processed concurrently (default: 4)
            show_progress: Show a progress bar for batches
        """
        if max_workers < 1:
            raise ValueError("max_workers must be at least 1")

        self.extractor = extractor
        self.vector_store = vector_store
        self.max_workers = max_workers
        self.show_progress = show_progress

    def ingest_one(self, url: str) -> ArticleRecord:
        """
        Normalize and store one article.

        Args:
            url: Article URL

        Returns:
            The stored record (a stub if the site denied access)

        Raises:
            InvalidUrlError: If the URL is malformed
            FetchError: For fetch failures other than access denied
            IndexUnavailableError / IndexOperationError: If storing fails
        """
        if not validate_url(url):
            raise InvalidUrlError(f"Invalid URL format: {url}")

        logger.info(f"Processing article: {url}")
        try:
            record = self.extractor.normalize(url)
        except AccessDeniedError as e:
            logger.warning(f"Using fallback record for blocked site {urlparse(url).netloc}: {e}")
            record = build_blocked_stub(url)

        self.vector_store.add(record)
        logger.info(f"Article ingested successfully: {url} (id: {record.id})")
        return record

    def _process(self, url: str) -> ItemResult:
        start_time = time.time()
        try:
            record = self.ingest_one(url)
        except Exception as e:
            logger.warning(f"Failed to ingest article {url}: {e}")
            return ItemResult(
                url=url,
                success=False,
                error=str(e),
                processing_time=time.time() - start_time
            )

        return ItemResult(
            url=url,
            success=True,
            article_id=record.id,
            processing_time=time.time() - start_time
        )

    @staticmethod
    def _report(
        source: UrlSource,
        result: ItemResult,
        on_item_result: Optional[Callable[[str, bool], None]]
    ) -> None:
        """Deliver an item outcome to the caller and the source."""
        if on_item_result is not None:
            try:
                on_item_result(result.url, result.success)
            except Exception as e:
                logger.warning(f"Item result callback failed for {result.url}: {e}")
        try:
            source.ack(result.url, result.success)
        except Exception as e:
            logger.warning(f"Failed to acknowledge {result.url}: {e}")

    def ingest_batch(
        self,
        urls: Union[UrlSource, Iterable[str]],
        on_item_result: Optional[Callable[[str, bool], None]] = None
    ) -> BatchResult:
        """
        Ingest every URL from a source with bounded concurrency.

        At most `max_workers` URLs are in flight at once, so an unbounded
        queue source is consumed at the pace of the workers.

        Args:
            urls: UrlSource or iterable of URLs
            on_item_result: Optional callback(url, success) per item

        Returns:
            BatchResult with totals and per-item details
        """
        start_time = time.time()
        source = as_url_source(urls)
        total = len(urls) if isinstance(urls, Sized) else None

        details: List[ItemResult] = []
        details_lock = threading.Lock()
        in_flight = threading.BoundedSemaphore(self.max_workers)

        logger.info(f"Starting batch ingestion with {self.max_workers} workers")

        with tqdm(total=total, desc="Ingesting articles", disable=not self.show_progress) as pbar:

            def run(url: str) -> None:
                try:
                    result = self._process(url)
                    self._report(source, result, on_item_result)
                    with details_lock:
                        details.append(result)
                        pbar.update(1)
                finally:
                    in_flight.release()

            with ThreadPoolExecutor(max_workers=self.max_workers) as executor:
                for url in source:
                    in_flight.acquire()
                    executor.submit(run, url)

        successful = sum(1 for r in details if r.success)
        failed = len(details) - successful
        processing_time = time.time() - start_time

        logger.info(
            f"Batch ingestion complete: {successful} successful, {failed} failed "
            f"in {processing_time:.2f}s"
        )

        return BatchResult(
            total=len(details),
            successful=successful,
            failed=failed,
            processing_time=processing_time,
            details=details
        )
