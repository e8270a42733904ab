"""Relevance scoring of indexed documents against a request.

    score = quality_weight * quality
          + relatedness_bonus   if target and document type are related
          + tier_bonus[tier]
          + recency_bonus * max(0, 1 - age_days / freshness_window)
          + hint_bonus * fraction of hint terms found in the content

Scoring is a pure function of (record, request, reference time), so documents
are scored independently on a bounded thread pool for large corpora.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Sequence
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timezone

from ctxplan.config import ScoringConfig
from ctxplan.corpus.models import DocumentRecord
from ctxplan.corpus.relationships import RelationshipTable
from ctxplan.models import ContextRequest
from ctxplan.ranking.models import ScoredDocument

logger = logging.getLogger("ctxplan.ranking")

HINT_BONUS = 10.0
_PARALLEL_THRESHOLD = 64
_WORD_RE = re.compile(r"[a-z0-9]{4,}")


class RelevanceScorer:
    """Scores documents for one target document type."""

    def __init__(
        self,
        config: ScoringConfig | None = None,
        relationships: RelationshipTable | None = None,
    ) -> None:
        self.config = config or ScoringConfig()
        self.relationships = relationships or RelationshipTable()

    def score(
        self,
        docs: Sequence[DocumentRecord],
        request: ContextRequest,
        reference_time: datetime | None = None,
    ) -> list[ScoredDocument]:
        """Score and order documents, relevance descending, ties by id."""
        ref = request.reference_time or reference_time or datetime.now(timezone.utc)
        if ref.tzinfo is None:
            ref = ref.replace(tzinfo=timezone.utc)
        hint_terms = _terms(request.hint_context) if request.hint_context else frozenset()

        def _one(record: DocumentRecord) -> ScoredDocument:
            return ScoredDocument(
                record=record,
                relevance_score=self.score_document(record, request.target_document_type, ref, hint_terms),
            )

        if len(docs) >= _PARALLEL_THRESHOLD and self.config.workers > 1:
            with ThreadPoolExecutor(max_workers=self.config.workers) as pool:
                scored = list(pool.map(_one, docs))
        else:
            scored = [_one(d) for d in docs]

        scored.sort(key=lambda s: s.sort_key)
        logger.debug(f"Scored {len(scored)} document(s) for {request.target_document_type}")
        return scored

    def score_document(
        self,
        record: DocumentRecord,
        target_type: str,
        reference_time: datetime,
        hint_terms: frozenset[str] = frozenset(),
    ) -> float:
        cfg = self.config
        score = record.quality_score * cfg.quality_weight

        if self.is_related(record, target_type):
            score += cfg.relatedness_bonus

        score += cfg.tier_bonus.get(record.priority_tier.value, 0.0)

        if cfg.freshness_window_days > 0:
            age_days = max(0.0, (reference_time - record.last_modified).total_seconds() / 86400)
            score += cfg.recency_bonus * max(0.0, 1.0 - age_days / cfg.freshness_window_days)

        if hint_terms:
            found = hint_terms & _terms(record.content)
            score += HINT_BONUS * len(found) / len(hint_terms)

        return round(score, 6)

    def is_related(self, record: DocumentRecord, target_type: str) -> bool:
        return (
            target_type in record.related_types
            or self.relationships.are_related(target_type, record.document_type)
        )


def _terms(text: str) -> frozenset[str]:
    return frozenset(_WORD_RE.findall(text.lower()))
