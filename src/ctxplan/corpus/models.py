"""Data models for the document corpus."""

from __future__ import annotations

from collections.abc import Callable
from datetime import datetime, timezone
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field

Tokenizer = Callable[[str], int]


class PriorityTier(str, Enum):
    """Coarse importance of a document, independent of any request."""

    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"

    @property
    def rank(self) -> int:
        return _TIER_RANK[self]


_TIER_RANK = {
    PriorityTier.CRITICAL: 0,
    PriorityTier.HIGH: 1,
    PriorityTier.MEDIUM: 2,
    PriorityTier.LOW: 3,
}

# Known categories, in cluster order
CATEGORIES = ("strategic", "technical", "management", "reference")


class RawDocument(BaseModel):
    """A document as supplied by the corpus source, before indexing."""

    id: str
    document_type: str
    content: str
    name: str = ""
    category: str | None = None
    priority_tier: PriorityTier | None = None
    last_modified: datetime | None = None
    quality_score: float | None = None
    status: str = ""
    related_types: list[str] = Field(default_factory=list)
    # Set by a source that found the document but could not read its metadata
    load_error: str | None = None


class DocumentRecord(BaseModel):
    """One indexed corpus item. Immutable once created."""

    model_config = ConfigDict(frozen=True)

    id: str
    name: str = ""
    document_type: str
    category: str
    priority_tier: PriorityTier
    token_count: int
    quality_score: float
    last_modified: datetime
    related_types: frozenset[str] = frozenset()
    content: str

    @property
    def is_critical(self) -> bool:
        return self.priority_tier is PriorityTier.CRITICAL


class IndexingFailure(BaseModel):
    """A raw document that was rejected by the index."""

    model_config = ConfigDict(frozen=True)

    document_id: str
    message: str


class CorpusSnapshot(BaseModel):
    """An immutable view of the indexed corpus used for one or more requests."""

    model_config = ConfigDict(frozen=True)

    records: tuple[DocumentRecord, ...] = ()
    failures: tuple[IndexingFailure, ...] = ()
    indexed_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    def __len__(self) -> int:
        return len(self.records)

    def get(self, document_id: str) -> DocumentRecord | None:
        for record in self.records:
            if record.id == document_id:
                return record
        return None

    @property
    def total_tokens(self) -> int:
        return sum(r.token_count for r in self.records)


class TokenEstimator:
    """Estimate token counts for prose."""

    # Rough heuristic: 1 token ≈ 4 characters
    CHARS_PER_TOKEN = 4.0

    @classmethod
    def estimate(cls, text: str) -> int:
        """Estimate token count for a string. Empty text is zero tokens."""
        if not text:
            return 0
        return max(1, int(len(text) / cls.CHARS_PER_TOKEN))

