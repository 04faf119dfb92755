"""
URL Sources

Where ingestion URLs come from: a batch file or a message queue. A source
yields URLs and may be told whether each one was processed successfully.
Delivery is at-least-once; the pipeline does not deduplicate.
"""

import csv
import json
import queue
import logging
from collections import deque
from pathlib import Path
from typing import Iterable, Iterator, List, Optional, Union

logger = logging.getLogger(__name__)


def parse_url_message(message: Union[str, bytes, None]) -> Optional[str]:
    """
    Pull the article URL out of a queue message.

    Accepted shapes: JSON `{"value": {"url": ...}}`, JSON `{"url": ...}`,
    or the bare URL string.

    Args:
        message: Raw message payload

    Returns:
        The URL, or None if the message carries none
    """
    if message is None:
        return None
    if isinstance(message, bytes):
        message = message.decode('utf-8', errors='replace')

    text = message.strip()
    if not text:
        return None

    try:
        payload = json.loads(text)
    except json.JSONDecodeError:
        # Not JSON: treat a single token as the URL itself
        return text if not any(c.isspace() for c in text) else None

    if isinstance(payload, str):
        return payload.strip() or None
    if not isinstance(payload, dict):
        return None

    value = payload.get('value')
    if isinstance(value, dict) and value.get('url'):
        return str(value['url']).strip()
    if payload.get('url'):
        return str(payload['url']).strip()
    return None


class UrlSource:
    """
    Base class for ingestion URL sources.

    Subclasses implement `__iter__`. `ack` is called once per yielded URL
    with the processing outcome; the default does nothing.
    """

    def __iter__(self) -> Iterator[str]:
        raise NotImplementedError

    def ack(self, url: str, success: bool) -> None:
        pass


class IterableUrlSource(UrlSource):
    """Wraps a plain iterable of URLs."""

    def __init__(self, urls: Iterable[str]):
        self._urls = urls

    def __iter__(self) -> Iterator[str]:
        return iter(self._urls)


class FileUrlSource(UrlSource):
    """
    URLs read from a file.

    A `.csv` file must have a `url` column; rows without a URL are skipped.
    Any other file holds one URL per line, with blank lines and lines
    starting with '#' ignored.
    """

    def __init__(self, file_path: Union[str, Path]):
        self.file_path = Path(file_path)

    def read_urls(self) -> List[str]:
        """
        Read every URL in the file.

        Raises:
            FileNotFoundError: If the file does not exist
            ValueError: If a CSV file has no `url` column
        """
        if not self.file_path.exists():
            raise FileNotFoundError(f"URL file not found: {self.file_path}")

        with open(self.file_path, 'r', encoding='utf-8', newline='') as f:
            if self.file_path.suffix.lower() == '.csv':
                urls = self._read_csv(f)
            else:
                urls = self._read_lines(f)

        logger.info(f"Found {len(urls)} article URLs in {self.file_path}")
        return urls

    def _read_csv(self, f) -> List[str]:
        reader = csv.DictReader(f)
        if not reader.fieldnames or 'url' not in reader.fieldnames:
            raise ValueError(f"CSV file has no 'url' column: {self.file_path}")
        return [row['url'].strip() for row in reader if row.get('url') and row['url'].strip()]

    @staticmethod
    def _read_lines(f) -> List[str]:
        urls = []
        for line in f:
            line = line.strip()
            # Skip empty lines and comments
            if line and not line.startswith('#'):
                urls.append(line)
        return urls

    def __iter__(self) -> Iterator[str]:
        return iter(self.read_urls())


class QueueUrlSource(UrlSource):
    """
    URLs consumed from a message queue.

    Messages are taken from a `queue.Queue` until the `STOP` sentinel is
    received. Messages without a URL are logged and skipped. A URL's message
    is marked done only when `ack` reports its outcome, so `messages.join()`
    returns once every yielded URL has been processed. Recent outcomes are
    kept in `acknowledged` and each one is passed to `on_ack`, if given, so
    a transport can commit or redeliver it.
    """

    STOP = object()
    ACK_HISTORY = 1000

    def __init__(self, messages: "queue.Queue", on_ack=None):
        self.messages = messages
        self.on_ack = on_ack
        self.acknowledged = deque(maxlen=self.ACK_HISTORY)

    def __iter__(self) -> Iterator[str]:
        while True:
            message = self.messages.get()
            if message is self.STOP:
                self.messages.task_done()
                return
            url = parse_url_message(message)
            if not url:
                logger.warning(f"Message does not contain a URL in expected format: {message!r}")
                self.messages.task_done()
                continue
            logger.info(f"Processing article from queue: {url}")
            yield url

    def stop(self) -> None:
        """Ask the consumer to finish after the messages already queued."""
        self.messages.put(self.STOP)

    def ack(self, url: str, success: bool) -> None:
        """Record the outcome of a yielded URL and mark its message done."""
        try:
            self.acknowledged.append((url, success))
            if self.on_ack is not None:
                self.on_ack(url, success)
        finally:
            self.messages.task_done()


def as_url_source(urls: Union[UrlSource, Iterable[str]]) -> UrlSource:
    """Accept either a UrlSource or any iterable of URL strings."""
    if isinstance(urls, UrlSource):
        return urls
    return IterableUrlSource(urls)
