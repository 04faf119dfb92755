"""
Article Extractor Module

Fetches news pages and normalizes them into ArticleRecords: HTML download
with retry and user-agent rotation, markup cleanup, then LLM structuring
with permissive parsing of the model's answer.
"""

import time
import random
import logging
import threading
from datetime import date
from typing import Dict, Optional
from urllib.parse import urlparse

import requests

from ..errors import (
    FetchError,
    AccessDeniedError,
    PageNotFoundError,
    RateLimitedError,
    UnreachableError,
    InvalidUrlError,
)
from ..generation.ollama_chat import OllamaChatService
from ..models import ArticleRecord
from ..prompts import build_extraction_prompt
from .parser import HTMLParser
from .structured_output import ParseMethod, parse_article_response, build_stub

logger = logging.getLogger(__name__)

# User agents for rotation
USER_AGENTS = [
    'Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36',
    'Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/605.1.15 (KHTML, like Gecko) Version/17.1 Safari/605.1.15',
    'Mozilla/5.0 (Windows NT 10.0; Win64; x64; rv:121.0) Gecko/20100101 Firefox/121.0',
    'Mozilla/5.0 (X11; Linux x86_64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36',
    'Mozilla/5.0 (iPhone; CPU iPhone OS 17_1 like Mac OS X) AppleWebKit/605.1.15 (KHTML, like Gecko) Version/17.1 Mobile/15E148 Safari/604.1',
]

BROWSER_HEADERS = {
    'Accept': 'text/html,application/xhtml+xml,application/xml;q=0.9,image/webp,*/*;q=0.8',
    'Accept-Language': 'en-US,en;q=0.5',
    'Referer': 'https://www.google.com/',
    'DNT': '1',
    'Connection': 'keep-alive',
    'Upgrade-Insecure-Requests': '1',
}


def validate_url(url: str) -> bool:
    """
    Check that a string is an absolute http(s) URL.

    Args:
        url: URL to validate

    Returns:
        True if valid, False otherwise
    """
    if not url or not isinstance(url, str) or url != url.strip():
        return False
    try:
        result = urlparse(url)
    except ValueError:
        return False
    return result.scheme in ('http', 'https') and bool(result.netloc)


class ArticleExtractor:
    """
    Normalizes article URLs into ArticleRecords.

    Features:
    - Randomized browser identity and bounded redirects
    - Retry with exponential backoff for transient fetch failures
    - Content-container text extraction
    - LLM structuring that never fails the caller
    - Thread-safe statistics for parallel ingestion
    """

    def __init__(
        self,
        generation_service: OllamaChatService,
        html_parser: Optional[HTMLParser] = None,
        timeout: int = 10,
        max_redirects: int = 5,
        max_retries: int = 3,
        retry_backoff: float = 1.0,
        max_raw_chars: int = 15000,
        stub_content_chars: int = 5000
    ):
        """
        Initialize the article extractor.

        Args:
            generation_service: LLM used to structure raw page text
            html_parser: HTML parser (default: new HTMLParser)
            timeout: Request timeout in seconds (default: 10)
            max_redirects: Maximum redirects followed per request (default: 5)
            max_retries: Maximum attempts for transient failures (default: 3)
            retry_backoff: Base delay in seconds for exponential backoff
            max_raw_chars: Raw text characters sent to the LLM (default: 15000)
            stub_content_chars: Raw text kept when structuring fails
        """
        self.generation_service = generation_service
        self.html_parser = html_parser or HTMLParser()
        self.timeout = timeout
        self.max_redirects = max_redirects
        self.max_retries = max_retries
        self.retry_backoff = retry_backoff
        self.max_raw_chars = max_raw_chars
        self.stub_content_chars = stub_content_chars

        # Sessions are not shared between threads
        self._thread_local = threading.local()

        # Statistics tracking
        self._stats = {
            'total_attempts': 0,
            'total_extracted': 0,
            'total_failed': 0,
            ParseMethod.STRICT.value: 0,
            ParseMethod.PATTERN.value: 0,
            ParseMethod.STUB.value: 0,
        }
        self._stats_lock = threading.Lock()

        logger.info(f"ArticleExtractor initialized with timeout={self.timeout}s, max_retries={self.max_retries}")

    def _get_user_agent(self) -> str:
        """Pick a random browser user agent."""
        return random.choice(USER_AGENTS)

    def _create_session(self) -> requests.Session:
        """
        Create a requests session with connection pooling.

        Returns:
            Configured requests session
        """
        session = requests.Session()
        session.headers.update(BROWSER_HEADERS)
        session.max_redirects = self.max_redirects
        adapter = requests.adapters.HTTPAdapter(
            pool_connections=10,
            pool_maxsize=20,
            max_retries=0  # We handle retries ourselves
        )
        session.mount('http://', adapter)
        session.mount('https://', adapter)
        return session

    def _get_session(self) -> requests.Session:
        """Get or create the session for the current thread."""
        if not hasattr(self._thread_local, 'session'):
            self._thread_local.session = self._create_session()
        return self._thread_local.session

    def _record(self, key: str) -> None:
        with self._stats_lock:
            self._stats[key] += 1

    def _fetch_once(self, url: str) -> str:
        """Perform one GET and classify any failure."""
        try:
            response = self._get_session().get(
                url,
                headers={'User-Agent': self._get_user_agent()},
                timeout=self.timeout
            )
        except requests.exceptions.TooManyRedirects as e:
            raise UnreachableError(
                f"Too many redirects (>{self.max_redirects}): {url}", url
            ) from e
        except requests.exceptions.Timeout as e:
            raise UnreachableError(
                f"Request timed out after {self.timeout}s: {url}", url
            ) from e
        except requests.exceptions.ConnectionError as e:
            raise UnreachableError(
                f"No response received from server: {url}. Check your network connection.", url
            ) from e
        except requests.exceptions.RequestException as e:
            raise FetchError(f"Failed to fetch content from URL: {url}. Error: {e}", url) from e

        status = response.status_code
        if status in (401, 403):
            raise AccessDeniedError(
                f"Access denied ({status}) - Website is blocking scrapers: {url}", url, status
            )
        if status == 404:
            raise PageNotFoundError(f"Page not found (404): {url}", url, status)
        if status == 429:
            raise RateLimitedError(f"Rate limited (429) - Too many requests to: {url}", url, status)
        if status >= 400:
            raise FetchError(f"Failed to fetch content from URL (status {status}): {url}", url, status)

        return response.text

    def fetch_html(self, url: str) -> str:
        """
        Fetch raw HTML, retrying transient failures with exponential backoff.

        Args:
            url: Article URL

        Returns:
            Response body as text

        Raises:
            InvalidUrlError: If the URL is malformed
            FetchError: (or a subclass) when the page cannot be retrieved
        """
        if not validate_url(url):
            raise InvalidUrlError(f"Invalid URL format: {url}")

        logger.info(f"Fetching content from: {url}")

        for attempt in range(self.max_retries):
            try:
                return self._fetch_once(url)
            except FetchError as e:
                if not e.is_transient or attempt == self.max_retries - 1:
                    logger.error(f"Error fetching content from {url}: {e}")
                    raise
                wait_time = self.retry_backoff * (2 ** attempt)
                logger.warning(
                    f"{e.kind.value} on attempt {attempt + 1}/{self.max_retries} for {url}, "
                    f"retrying in {wait_time:.1f}s"
                )
                time.sleep(wait_time)

        # max_retries is always >= 1, so the loop either returns or raises
        raise UnreachableError(f"Failed to fetch {url}", url)

    def extract_text(self, html: str) -> str:
        """Strip markup and return the text sent to the LLM."""
        return self.html_parser.extract_text(html)

    def structure(self, url: str, raw_text: str, html: Optional[str] = None) -> ArticleRecord:
        """
        Turn raw page text into an ArticleRecord with the LLM's help.

        Never raises for extraction problems: an LLM failure or an unparseable
        answer degrades to a stub record built from the raw text.

        Args:
            url: Article URL
            raw_text: Output of extract_text
            html: Original HTML, used for publish-date detection

        Returns:
            ArticleRecord with non-empty content
        """
        prompt = build_extraction_prompt(raw_text[:self.max_raw_chars])

        try:
            response_text = self.generation_service.invoke(prompt)
            parsed = parse_article_response(
                response_text,
                raw_text,
                stub_chars=self.stub_content_chars
            )
        except Exception as e:
            # Any LLM failure degrades to a stub; only fetch errors are fatal
            logger.error(f"Content structuring failed for {url}: {e}")
            parsed = build_stub(raw_text, self.stub_content_chars)

        self._record(parsed.method.value)

        published_at = parsed.published_at
        if not published_at and html:
            published_at = self.html_parser.extract_publish_date(html, url)

        return ArticleRecord.create(
            url=url,
            title=parsed.title,
            content=parsed.content,
            summary=parsed.summary,
            published_at=published_at or date.today().isoformat()
        )

    def normalize(self, url: str) -> ArticleRecord:
        """
        Fetch a URL and normalize it into an ArticleRecord.

        Args:
            url: Article URL

        Returns:
            Normalized ArticleRecord

        Raises:
            InvalidUrlError: If the URL is malformed
            FetchError: (or a subclass) when the page cannot be retrieved
        """
        self._record('total_attempts')
        try:
            html = self.fetch_html(url)
        except Exception:
            self._record('total_failed')
            raise

        raw_text = self.extract_text(html)
        record = self.structure(url, raw_text, html)
        self._record('total_extracted')

        logger.info(f"Normalized article from {url} (title: {record.title!r}, length: {len(record.content)} chars)")
        return record

    def get_extraction_stats(self) -> Dict:
        """
        Get extraction statistics.

        Returns:
            Dictionary with attempt counts, success rate and parse-method counts
        """
        with self._stats_lock:
            stats = dict(self._stats)

        attempts = stats['total_attempts']
        stats['success_rate'] = stats['total_extracted'] / attempts if attempts > 0 else 0.0
        return stats
