"""Data models for scoring and clustering."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field

from ctxplan.corpus.models import DocumentRecord, PriorityTier
from ctxplan.models import ClusteringStrategy


class ScoredDocument(BaseModel):
    """A record plus its relevance for one specific request."""

    model_config = ConfigDict(frozen=True)

    record: DocumentRecord
    relevance_score: float

    @property
    def id(self) -> str:
        return self.record.id

    @property
    def token_count(self) -> int:
        return self.record.token_count

    @property
    def priority_tier(self) -> PriorityTier:
        return self.record.priority_tier

    @property
    def is_critical(self) -> bool:
        return self.record.is_critical

    @property
    def sort_key(self) -> tuple[float, str]:
        """Relevance descending, ties broken by id."""
        return (-self.relevance_score, self.record.id)


class Cluster(BaseModel):
    """An ordered group of scored documents."""

    model_config = ConfigDict(frozen=True)

    tier: str
    strategy: ClusteringStrategy
    documents: tuple[ScoredDocument, ...] = ()
    # Per-document labels when they differ from `tier` (relevance quartiles)
    member_tiers: dict[str, str] = Field(default_factory=dict)

    def __len__(self) -> int:
        return len(self.documents)

    def label_for(self, document_id: str) -> str:
        return self.member_tiers.get(document_id, self.tier)

    @property
    def total_tokens(self) -> int:
        return sum(d.token_count for d in self.documents)
