"""
Vector Store with FAISS HNSW Indexing

Durable similarity index of ArticleRecords. Vectors live in a FAISS HNSW
index; each vector's record is kept in a metadata list at the same position.
Both are persisted side by side as `<index_path>` and `<index_path>.metadata`
and loaded as a unit.
"""

import os
import pickle
import logging
import threading
from typing import List, Dict, Optional, Any

import faiss
import numpy as np
from dotenv import load_dotenv

from ..embeddings.ollama_service import OllamaEmbeddingService
from ..errors import IndexUnavailableError, IndexOperationError
from ..models import ArticleRecord, SearchHit

load_dotenv()

logger = logging.getLogger(__name__)

# A fresh index is seeded with one entry so the similarity engine never
# operates on an empty graph. It is never returned to callers.
PLACEHOLDER_ID = "__placeholder__"
PLACEHOLDER_TEXT = "Initial document for vector store initialization"


def document_text(record: ArticleRecord) -> str:
    """Text embedded for a stored record."""
    return f"{record.title}\n\n{record.content}"


def _is_placeholder(entry: Dict[str, Any]) -> bool:
    return entry.get('id') == PLACEHOLDER_ID


class VectorStore:
    """
    Article index backed by FAISS HNSW.

    Lifecycle: `initialize()` opens or creates the persisted index (it is also
    called lazily by every operation), `shutdown()` persists and releases it.

    Concurrency: `add` calls are serialized by a writer lock held across
    embed, append and persist. The index and metadata are only mutated or
    searched under a separate state lock, so readers never see a vector
    without its record.
    """

    def __init__(
        self,
        embedding_service: OllamaEmbeddingService,
        index_path: Optional[str] = None,
        M: int = 32,
        efConstruction: int = 200,
        efSearch: int = 128
    ):
        """
        Initialize the vector store handle (no I/O until initialize()).

        Args:
            embedding_service: Embedding capability shared with query encoding
            index_path: Path of the FAISS index file (default: from .env)
            M: Number of connections per node in HNSW graph
            efConstruction: Search depth during index construction
            efSearch: Search depth during queries
        """
        self.embedding_service = embedding_service
        self.index_path = index_path or os.getenv(
            'FAISS_INDEX_PATH',
            'data/faiss_index/articles.index'
        )
        self.metadata_path = self.index_path + '.metadata'
        self.M = M
        self.efConstruction = efConstruction
        self.efSearch = efSearch

        self.index: Optional[faiss.Index] = None
        # Record dicts, synchronized with index positions
        self.metadata: List[Dict[str, Any]] = []

        self._init_lock = threading.Lock()
        self._write_lock = threading.Lock()
        self._state_lock = threading.Lock()

    @property
    def is_initialized(self) -> bool:
        return self.index is not None

    @property
    def dimension(self) -> Optional[int]:
        return self.index.d if self.index is not None else None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def initialize(self) -> None:
        """
        Open the persisted index, or create and persist a new one.

        Safe to call repeatedly; a no-op once initialized.

        Raises:
            IndexUnavailableError: If the index can neither be loaded nor created
        """
        with self._init_lock:
            if self.index is not None:
                return

            try:
                if os.path.exists(self.index_path):
                    logger.info(f"Loading existing FAISS index from {self.index_path}")
                    self._load()
                else:
                    logger.info(f"Creating new FAISS index at {self.index_path}")
                    self._create()
            except IndexUnavailableError:
                raise
            except Exception as e:
                logger.error(f"Vector DB initialization failed: {e}")
                raise IndexUnavailableError(f"Failed to initialize vector database: {e}") from e

            logger.info(f"Vector database initialized with {self.count()} articles")

    def _ensure_initialized(self) -> None:
        if self.index is None:
            self.initialize()

    def _new_index(self, dimension: int) -> faiss.Index:
        index = faiss.IndexHNSWFlat(dimension, self.M)
        index.hnsw.efConstruction = self.efConstruction
        index.hnsw.efSearch = self.efSearch
        return index

    def _create(self) -> None:
        vector = self._to_vector(self.embedding_service.generate_embedding(PLACEHOLDER_TEXT))
        index = self._new_index(vector.shape[1])
        index.add(vector)

        self.index = index
        self.metadata = [{'id': PLACEHOLDER_ID, 'title': 'placeholder', 'content': PLACEHOLDER_TEXT}]
        try:
            self._persist()
        except Exception:
            self.index = None
            self.metadata = []
            raise

    def _load(self) -> None:
        loaded_index = faiss.read_index(self.index_path)

        if not isinstance(loaded_index, faiss.IndexHNSWFlat):
            raise IndexUnavailableError(
                f"Loaded index is not IndexHNSWFlat, got {type(loaded_index).__name__}"
            )

        if not os.path.exists(self.metadata_path):
            raise IndexUnavailableError(f"Metadata file missing: {self.metadata_path}")

        with open(self.metadata_path, 'rb') as f:
            loaded_metadata = pickle.load(f)

        if loaded_index.ntotal != len(loaded_metadata):
            raise IndexUnavailableError(
                f"Index has {loaded_index.ntotal} vectors but "
                f"metadata has {len(loaded_metadata)} entries"
            )

        loaded_index.hnsw.efSearch = self.efSearch
        self.index = loaded_index
        self.metadata = loaded_metadata

    def _persist(self) -> None:
        """
        Save FAISS index and metadata to disk with atomic writes.

        Caller must hold the writer lock (or be initializing).
        """
        os.makedirs(os.path.dirname(self.index_path) or '.', exist_ok=True)

        temp_index_path = self.index_path + '.tmp'
        temp_metadata_path = self.metadata_path + '.tmp'

        try:
            faiss.write_index(self.index, temp_index_path)
            with open(temp_metadata_path, 'wb') as f:
                pickle.dump(self.metadata, f, protocol=pickle.HIGHEST_PROTOCOL)

            # Atomic renames
            os.replace(temp_index_path, self.index_path)
            os.replace(temp_metadata_path, self.metadata_path)

        except Exception:
            for path in (temp_index_path, temp_metadata_path):
                if os.path.exists(path):
                    os.remove(path)
            raise

    def shutdown(self) -> None:
        """Persist the index and release it. A later call re-opens it lazily."""
        with self._write_lock:
            if self.index is None:
                return
            self._persist()
            with self._state_lock:
                self.index = None
                self.metadata = []
        logger.info("Vector database shut down")

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    def _to_vector(self, embedding) -> np.ndarray:
        vector = np.asarray(embedding, dtype=np.float32).reshape(1, -1)
        if self.index is not None and vector.shape[1] != self.index.d:
            raise IndexOperationError(
                f"Embedding dimension ({vector.shape[1]}) must match "
                f"index dimension ({self.index.d})"
            )
        return vector

    def _rollback(self) -> None:
        """
        Restore the last persisted index and metadata after a failed add.

        If the files cannot be read back the store drops its in-memory state
        and re-opens lazily on the next call. Caller must hold the writer lock.
        """
        with self._state_lock:
            try:
                self._load()
            except Exception as e:
                logger.error(f"Could not reload vector database after failed write: {e}")
                self.index = None
                self.metadata = []

    def add(self, record: ArticleRecord) -> None:
        """
        Embed a record, append it and persist before returning.

        A failed persist rolls the in-memory index back to the last persisted
        state, so a record reported as not stored is never searchable.

        Args:
            record: Article to store

        Raises:
            IndexUnavailableError: If the index cannot be opened
            IndexOperationError: If embedding, insertion or persistence fails
        """
        self._ensure_initialized()

        with self._write_lock:
            appended = False
            try:
                vector = self._to_vector(
                    self.embedding_service.generate_embedding(document_text(record))
                )
                with self._state_lock:
                    self.index.add(vector)
                    self.metadata.append(record.to_dict())
                    appended = True

                    if self.index.ntotal != len(self.metadata):
                        raise IndexOperationError("CRITICAL: Metadata out of sync with index")

                self._persist()

            except Exception as e:
                if appended:
                    self._rollback()
                if isinstance(e, IndexOperationError):
                    raise
                logger.error(f"Failed to store article {record.url}: {e}")
                raise IndexOperationError(
                    f"Failed to store article in vector database: {e}"
                ) from e

        logger.info(f"Article stored in vector database: {record.title}")

    def query(self, text: str, k: int = 3) -> List[SearchHit]:
        """
        Find the k stored articles nearest to a text.

        Args:
            text: Query text
            k: Number of results to return

        Returns:
            SearchHits ordered by ascending L2 distance (empty if none)

        Raises:
            ValueError: If k is negative
            IndexUnavailableError: If the index cannot be opened
            IndexOperationError: If embedding or search fails
        """
        if k < 0:
            raise ValueError(f"k must be non-negative, got {k}")
        if k == 0:
            return []

        self._ensure_initialized()

        try:
            vector = self._to_vector(self.embedding_service.generate_embedding(text))

            with self._state_lock:
                total = self.index.ntotal
                if total == 0:
                    return []
                # One extra slot in case the placeholder is among the nearest
                distances, indices = self.index.search(vector, min(k + 1, total))
                entries = [
                    (float(dist), self.metadata[idx])
                    for dist, idx in zip(distances[0], indices[0])
                    if 0 <= idx < len(self.metadata)
                ]

        except IndexOperationError:
            raise
        except Exception as e:
            logger.error(f"Vector DB query failed: {e}")
            raise IndexOperationError(f"Failed to query vector database: {e}") from e

        hits = [
            SearchHit(record=ArticleRecord.from_dict(entry), distance=dist)
            for dist, entry in entries
            if not _is_placeholder(entry)
        ]
        return hits[:k]

    def find_by_id(self, article_id: str) -> Optional[ArticleRecord]:
        """
        Look up a stored article by id.

        Scans the full metadata list; fine for moderate corpus sizes.

        Returns:
            The record, or None if absent
        """
        self._ensure_initialized()

        with self._state_lock:
            for entry in self.metadata:
                if entry.get('id') == article_id and not _is_placeholder(entry):
                    return ArticleRecord.from_dict(entry)
        return None

    def find_by_url(self, url: str) -> List[ArticleRecord]:
        """All stored records for a URL, oldest first."""
        self._ensure_initialized()

        with self._state_lock:
            return [
                ArticleRecord.from_dict(entry)
                for entry in self.metadata
                if entry.get('url') == url and not _is_placeholder(entry)
            ]

    def count(self) -> int:
        """
        Get the number of stored articles (placeholder excluded).

        Returns:
            Number of articles, 0 when not initialized
        """
        with self._state_lock:
            return sum(1 for entry in self.metadata if not _is_placeholder(entry))

    def get_stats(self) -> Dict:
        """
        Get statistics about the vector store.

        Returns:
            Dictionary with statistics
        """
        with self._state_lock:
            total_vectors = self.index.ntotal if self.index is not None else 0
            efSearch = self.index.hnsw.efSearch if self.index is not None else self.efSearch

        return {
            'initialized': self.is_initialized,
            'total_articles': self.count(),
            'total_vectors': total_vectors,
            'dimension': self.dimension,
            'M': self.M,
            'efConstruction': self.efConstruction,
            'efSearch': efSearch,
            'index_type': 'IndexHNSWFlat',
            'index_path': self.index_path
        }

    def __repr__(self) -> str:
        """String representation of the vector store."""
        return (
            f"VectorStore(articles={self.count()}, "
            f"dimension={self.dimension}, "
            f"M={self.M}, "
            f"path={self.index_path!r})"
        )
