"""
Shared test doubles for the news agent test suite.

The embedding and generation capabilities are external services, so tests
run against deterministic stand-ins:
- HashEmbedder: bag-of-words vectors built from hashed tokens, so texts that
  share words are close in L2 distance
- ScriptedGenerator: returns canned responses and streams canned tokens
"""

import re
import hashlib
import threading
from typing import Iterator, List, Optional

import numpy as np
import pytest

from news_agent.errors import GenerationError
from news_agent.models import ArticleRecord
from news_agent.storage.response_cache import ResponseCache
from news_agent.storage.vector_store import VectorStore


class HashEmbedder:
    """Deterministic stand-in for OllamaEmbeddingService."""

    def __init__(self, dimension: int = 64):
        self.dimension = dimension
        self.calls = 0
        self.fail = False
        self._lock = threading.Lock()

    def generate_embedding(self, text: str, use_cache: bool = True) -> np.ndarray:
        with self._lock:
            self.calls += 1
        if self.fail:
            raise RuntimeError("embedding service down")

        vector = np.zeros(self.dimension, dtype=np.float32)
        for token in re.findall(r'\w+', text.lower()):
            bucket = int(hashlib.md5(token.encode('utf-8')).hexdigest(), 16) % self.dimension
            vector[bucket] += 1.0

        norm = np.linalg.norm(vector)
        if norm == 0:
            vector[0] = 1.0
            return vector
        return vector / norm

    def get_cache_stats(self):
        return {'cache_size': 0, 'hits': 0, 'misses': self.calls, 'hit_rate': 0.0}


class ScriptedGenerator:
    """Deterministic stand-in for OllamaChatService."""

    def __init__(self, response: str = "Generated answer", tokens: Optional[List[str]] = None):
        self.response = response
        self.tokens = tokens if tokens is not None else ["Generated", " ", "answer"]
        self.prompts: List[str] = []
        self.fail = False
        self.fail_after: Optional[int] = None
        self.stream_closed = False

    @property
    def calls(self) -> int:
        return len(self.prompts)

    def invoke(self, prompt: str) -> str:
        self.prompts.append(prompt)
        if self.fail:
            raise GenerationError("model unavailable")
        return self.response

    def stream(self, prompt: str) -> Iterator[str]:
        self.prompts.append(prompt)
        if self.fail:
            raise GenerationError("model unavailable")
        return self._stream_tokens()

    def _stream_tokens(self) -> Iterator[str]:
        try:
            for i, token in enumerate(self.tokens):
                if self.fail_after is not None and i >= self.fail_after:
                    raise GenerationError("stream interrupted")
                yield token
        finally:
            self.stream_closed = True


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def make_record(
    title: str,
    content: str,
    url: str = "https://example.com/article",
    published_at: Optional[str] = "2024-03-15"
) -> ArticleRecord:
    return ArticleRecord.create(url=url, title=title, content=content, published_at=published_at)


@pytest.fixture
def embedder():
    return HashEmbedder()


@pytest.fixture
def generator():
    return ScriptedGenerator()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def cache(clock):
    return ResponseCache(clock=clock)


@pytest.fixture
def index_path(tmp_path):
    return str(tmp_path / "faiss_index" / "articles.index")


@pytest.fixture
def vector_store(embedder, index_path):
    store = VectorStore(embedding_service=embedder, index_path=index_path)
    store.initialize()
    return store
