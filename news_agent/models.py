"""
Data Models

Article records stored in the vector index and the results returned to
callers of the query layer.
"""

import uuid
from dataclasses import dataclass, field, asdict
from datetime import datetime
from typing import List, Dict, Optional, Any
from urllib.parse import urlparse


@dataclass(frozen=True)
class ArticleRecord:
    """
    Canonical unit of stored knowledge.

    Records are immutable once created; re-ingesting a URL produces a new
    record with a new id.
    """
    id: str
    url: str
    title: str
    content: str
    source: str
    created_at: str
    summary: Optional[str] = None
    published_at: Optional[str] = None

    @classmethod
    def create(
        cls,
        url: str,
        title: str,
        content: str,
        summary: Optional[str] = None,
        published_at: Optional[str] = None,
        source: Optional[str] = None,
        id: Optional[str] = None
    ) -> 'ArticleRecord':
        """
        Build a new record, generating the id, source and creation time.

        Args:
            url: Article URL
            title: Article title
            content: Article body (must be non-empty)
            summary: Optional short summary
            published_at: Optional ISO publish date
            source: Host of the article (default: derived from url)
            id: Explicit id (default: random uuid4 hex)

        Returns:
            New ArticleRecord

        Raises:
            ValueError: If content is empty
        """
        if not content or not content.strip():
            raise ValueError(f"Article content cannot be empty: {url}")

        return cls(
            id=id or uuid.uuid4().hex,
            url=url,
            title=title,
            content=content,
            source=source or urlparse(url).netloc,
            created_at=datetime.now().isoformat(),
            summary=summary,
            published_at=published_at
        )

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'ArticleRecord':
        """Rebuild a record from `to_dict` output, ignoring unknown keys."""
        return cls(
            id=data['id'],
            url=data.get('url', ''),
            title=data.get('title', 'Unknown'),
            content=data.get('content', ''),
            source=data.get('source', ''),
            created_at=data.get('created_at', ''),
            summary=data.get('summary'),
            published_at=data.get('published_at')
        )

    def to_source_ref(self) -> 'SourceRef':
        return SourceRef(
            id=self.id,
            title=self.title,
            url=self.url,
            date=self.published_at
        )


@dataclass(frozen=True)
class SourceRef:
    """Attribution for one article used to ground an answer."""
    id: str
    title: str
    url: str
    date: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class SearchHit:
    """A record returned by a similarity query with its L2 distance."""
    record: ArticleRecord
    distance: float

    @property
    def similarity(self) -> float:
        # Convert L2 distance to a (0, 1] similarity score
        return 1 / (1 + self.distance)


@dataclass
class QueryResult:
    """
    Answer produced by the query layer.

    Attributes:
        answer: Generated (or explanatory) answer text
        sources: Articles the answer is grounded on, in relevance order
        mode: 'single_document', 'corpus' or 'degraded'
        response_time: Seconds spent producing the answer
    """
    answer: str
    sources: List[SourceRef] = field(default_factory=list)
    mode: str = "corpus"
    response_time: float = 0.0

    @property
    def is_degraded(self) -> bool:
        return self.mode == "degraded"

    def to_dict(self) -> Dict[str, Any]:
        return {
            'answer': self.answer,
            'sources': [source.to_dict() for source in self.sources],
            'mode': self.mode,
            'response_time': self.response_time
        }
