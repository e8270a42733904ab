"""Document corpus: raw documents, indexed records and snapshots."""

from ctxplan.corpus.index import DocumentCorpusIndex
from ctxplan.corpus.models import (
    CorpusSnapshot,
    DocumentRecord,
    IndexingFailure,
    PriorityTier,
    RawDocument,
    TokenEstimator,
)
from ctxplan.corpus.relationships import RelationshipTable

__all__ = [
    "CorpusSnapshot",
    "DocumentCorpusIndex",
    "DocumentRecord",
    "IndexingFailure",
    "PriorityTier",
    "RawDocument",
    "RelationshipTable",
    "TokenEstimator",
]
