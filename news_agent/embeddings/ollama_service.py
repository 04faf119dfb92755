"""
Ollama Embedding Service

Turns text into vectors with a local Ollama embedding model. Stored articles
and incoming questions go through the same service, so they share one
embedding space.

Vectors are memoized per (model, text). An optional disk store keeps them
across restarts so re-indexing a corpus does not hit the model again.
"""

import os
import json
import hashlib
import logging
import threading
from pathlib import Path
from typing import Dict, Optional
from dataclasses import dataclass, asdict
from datetime import datetime

import numpy as np
import requests
from dotenv import load_dotenv

load_dotenv()

logger = logging.getLogger(__name__)

INDEX_FILENAME = 'cache_index.json'


class OllamaConnectionError(Exception):
    """Raised when the Ollama server cannot be reached."""
    pass


class OllamaModelError(Exception):
    """Raised when the embedding model is not pulled on the server."""
    pass


class EmbeddingDimensionError(Exception):
    """Raised when a returned vector has an unexpected length."""
    pass


@dataclass
class CacheStats:
    """Hit/miss counters for the embedding memo."""
    hits: int = 0
    misses: int = 0
    total_requests: int = 0
    cache_size: int = 0

    @property
    def hit_rate(self) -> float:
        if not self.total_requests:
            return 0.0
        return self.hits / self.total_requests

    def to_dict(self) -> Dict:
        stats = asdict(self)
        stats['hit_rate'] = self.hit_rate
        return stats


class EmbeddingDiskStore:
    """
    Directory of .npy vectors plus a JSON index describing them.

    Not thread-safe on its own; OllamaEmbeddingService calls it under its
    cache lock.
    """

    def __init__(self, directory: Path):
        self.directory = Path(directory)
        self.directory.mkdir(parents=True, exist_ok=True)
        self.index_path = self.directory / INDEX_FILENAME

    def _read_index(self) -> Dict[str, Dict]:
        if not self.index_path.exists():
            return {}
        with open(self.index_path, 'r') as f:
            return json.load(f)

    def load(self) -> Dict[str, np.ndarray]:
        """Return every vector listed in the index whose file still exists."""
        vectors = {}
        try:
            index = self._read_index()
        except (OSError, ValueError) as e:
            logger.error(f"Unreadable embedding cache index {self.index_path}: {e}")
            return vectors

        for key in index:
            vector_path = self.directory / f"{key}.npy"
            if vector_path.exists():
                vectors[key] = np.load(vector_path)
        return vectors

    def save(self, key: str, vector: np.ndarray, model: str) -> None:
        """Write one vector and record it in the index (atomic index rewrite)."""
        np.save(self.directory / f"{key}.npy", vector)

        index = self._read_index()
        index[key] = {
            'model': model,
            'dimensions': int(vector.shape[0]),
            'cached_at': datetime.now().isoformat()
        }

        tmp_path = self.index_path.with_suffix('.json.tmp')
        with open(tmp_path, 'w') as f:
            json.dump(index, f, indent=2)
        os.replace(tmp_path, self.index_path)

    def clear(self) -> None:
        for vector_path in self.directory.glob('*.npy'):
            vector_path.unlink()
        if self.index_path.exists():
            self.index_path.unlink()


class OllamaEmbeddingService:
    """
    Embedding capability backed by Ollama's /api/embeddings endpoint.

    Safe to share between ingestion workers and query threads; only the memo
    is guarded by a lock, so HTTP calls run concurrently.
    """

    def __init__(
        self,
        model: str = "nomic-embed-text",
        base_url: Optional[str] = None,
        enable_disk_cache: bool = True,
        cache_dir: Optional[str] = None,
        expected_dimensions: Optional[int] = None,
        max_input_chars: int = 8000,
        timeout: int = 30
    ):
        """
        Args:
            model: Ollama embedding model name
            base_url: Ollama base URL (default: OLLAMA_BASE_URL or http://localhost:11434)
            enable_disk_cache: Persist vectors under cache_dir
            cache_dir: Disk cache directory (default: data/embeddings/cache)
            expected_dimensions: Reject vectors of any other length (None = no check)
            max_input_chars: Longer inputs are truncated before embedding
            timeout: HTTP timeout in seconds
        """
        self.model = model
        self.base_url = (base_url or os.getenv('OLLAMA_BASE_URL', 'http://localhost:11434')).rstrip('/')
        self.expected_dimensions = expected_dimensions
        self.max_input_chars = max_input_chars
        self.timeout = timeout

        self._memo: Dict[str, np.ndarray] = {}
        self._stats = CacheStats()
        self._lock = threading.Lock()

        self.enable_disk_cache = enable_disk_cache
        self.cache_dir = Path(cache_dir or 'data/embeddings/cache')
        self._disk: Optional[EmbeddingDiskStore] = None

        if enable_disk_cache:
            self._disk = EmbeddingDiskStore(self.cache_dir)
            self._memo.update(self._disk.load())
            self._stats.cache_size = len(self._memo)
            logger.info(f"Loaded {len(self._memo)} embeddings from {self.cache_dir}")

        logger.info(f"Embedding model: {self.model} at {self.base_url}")

    def _cache_key(self, text: str) -> str:
        return hashlib.sha256(f"{self.model}\x00{text}".encode('utf-8')).hexdigest()

    def _call_api(self, method: str, endpoint: str, **kwargs) -> requests.Response:
        """
        Send one request to the Ollama server and map transport failures.

        Raises:
            OllamaConnectionError: Server unreachable or timed out
            OllamaModelError: Server answered 404 (model not pulled)
            RuntimeError: Any other HTTP failure
        """
        url = f"{self.base_url}{endpoint}"
        try:
            response = getattr(requests, method)(url, timeout=self.timeout, **kwargs)
            response.raise_for_status()
            return response
        except requests.exceptions.ConnectionError as e:
            raise OllamaConnectionError(
                f"Cannot reach Ollama at {self.base_url} (is `ollama serve` running?)"
            ) from e
        except requests.exceptions.Timeout as e:
            raise OllamaConnectionError(f"Ollama did not answer within {self.timeout}s") from e
        except requests.exceptions.HTTPError as e:
            status = e.response.status_code if e.response is not None else None
            if status == 404:
                raise OllamaModelError(
                    f"Model '{self.model}' is not available; run: ollama pull {self.model}"
                ) from e
            raise RuntimeError(f"Ollama returned HTTP {status} for {endpoint}") from e
        except requests.exceptions.RequestException as e:
            raise RuntimeError(f"Ollama request to {endpoint} failed: {e}") from e

    def verify_connection(self) -> bool:
        """
        Check that the Ollama server answers.

        Raises:
            OllamaConnectionError: If it does not
        """
        try:
            self._call_api('get', '/api/tags')
        except RuntimeError as e:
            raise OllamaConnectionError(str(e)) from e
        logger.info(f"Ollama reachable at {self.base_url}")
        return True

    def verify_model_available(self) -> bool:
        """
        Check that the embedding model is pulled (with or without :latest).

        Raises:
            OllamaModelError: If the model is missing
            OllamaConnectionError: If the server cannot be queried
        """
        try:
            response = self._call_api('get', '/api/tags')
        except RuntimeError as e:
            raise OllamaConnectionError(str(e)) from e

        names = {m.get('name') for m in response.json().get('models', [])}
        if self.model not in names and f"{self.model}:latest" not in names:
            raise OllamaModelError(
                f"Model '{self.model}' not found (available: {sorted(n for n in names if n)}). "
                f"Run: ollama pull {self.model}"
            )
        return True

    def _parse_embedding(self, response: requests.Response) -> np.ndarray:
        try:
            values = response.json()['embedding']
        except KeyError as e:
            raise RuntimeError(f"Unexpected embeddings response: missing {e}") from e

        vector = np.asarray(values, dtype=np.float32)
        if vector.size == 0:
            raise RuntimeError("Ollama returned an empty embedding")

        if self.expected_dimensions and vector.shape[0] != self.expected_dimensions:
            raise EmbeddingDimensionError(
                f"Model '{self.model}' produced {vector.shape[0]} dimensions, "
                f"expected {self.expected_dimensions}"
            )
        return vector

    def _remember(self, key: str, vector: np.ndarray) -> None:
        with self._lock:
            self._memo[key] = vector
            self._stats.cache_size = len(self._memo)
            if self._disk is None:
                return
            try:
                self._disk.save(key, vector, self.model)
            except OSError as e:
                # Memo still holds the vector
                logger.warning(f"Could not persist embedding {key[:8]}: {e}")

    def generate_embedding(self, text: str, use_cache: bool = True) -> np.ndarray:
        """
        Embed one text.

        Args:
            text: Input text (truncated to max_input_chars)
            use_cache: Read from and write to the memo

        Returns:
            float32 vector

        Raises:
            OllamaConnectionError, OllamaModelError, EmbeddingDimensionError,
            RuntimeError
        """
        text = text[:self.max_input_chars]
        key = self._cache_key(text)

        with self._lock:
            self._stats.total_requests += 1
            cached = self._memo.get(key) if use_cache else None
            if cached is not None:
                self._stats.hits += 1
                logger.debug(f"Embedding cache hit {key[:8]}")
                return cached
            self._stats.misses += 1

        response = self._call_api('post', '/api/embeddings', json={'model': self.model, 'prompt': text})
        vector = self._parse_embedding(response)

        if use_cache:
            self._remember(key, vector)
        return vector

    def get_cache_stats(self) -> Dict:
        with self._lock:
            return self._stats.to_dict()

    def clear_cache(self, clear_disk: bool = False) -> None:
        """Forget memoized vectors, and optionally the disk store as well."""
        with self._lock:
            self._memo.clear()
            self._stats = CacheStats()
            if clear_disk and self._disk is not None:
                try:
                    self._disk.clear()
                except OSError as e:
                    logger.error(f"Error clearing embedding cache at {self.cache_dir}: {e}")
                else:
                    logger.info(f"Cleared embedding cache at {self.cache_dir}")
