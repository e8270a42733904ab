"""Group and order scored documents before budget allocation.

Each strategy is a partition function with the same signature; the engine
looks it up by ClusteringStrategy. All of them are deterministic: within a
cluster documents are ordered by relevance descending, ties by id.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Sequence
from datetime import datetime, timezone

from ctxplan.corpus.models import CATEGORIES, PriorityTier
from ctxplan.models import ClusteringStrategy, ContextRequest
from ctxplan.ranking.models import Cluster, ScoredDocument

logger = logging.getLogger("ctxplan.ranking")

# Corpora larger than this default to hierarchical clustering
HIERARCHICAL_THRESHOLD = 50

# (label, max age in days); the last band is open-ended
TEMPORAL_BANDS: tuple[tuple[str, float | None], ...] = (
    ("0-30d", 30),
    ("31-90d", 90),
    ("91-365d", 365),
    ("older", None),
)

RELEVANCE_QUARTILES = ("critical", "high", "medium", "low")

Partitioner = Callable[[Sequence[ScoredDocument], datetime], list[Cluster]]


def _ordered(docs: Sequence[ScoredDocument]) -> tuple[ScoredDocument, ...]:
    return tuple(sorted(docs, key=lambda d: d.sort_key))


def _partition_hierarchical(docs: Sequence[ScoredDocument], ref: datetime) -> list[Cluster]:
    clusters = []
    for tier in PriorityTier:
        members = [d for d in docs if d.priority_tier is tier]
        if members:
            clusters.append(
                Cluster(tier=tier.value, strategy=ClusteringStrategy.HIERARCHICAL, documents=_ordered(members))
            )
    return clusters


def _partition_category(docs: Sequence[ScoredDocument], ref: datetime) -> list[Cluster]:
    by_category: dict[str, list[ScoredDocument]] = {}
    for doc in docs:
        by_category.setdefault(doc.record.category, []).append(doc)

    known = [c for c in CATEGORIES if c in by_category]
    unknown = sorted(c for c in by_category if c not in CATEGORIES)
    return [
        Cluster(tier=cat, strategy=ClusteringStrategy.CATEGORY, documents=_ordered(by_category[cat]))
        for cat in known + unknown
    ]


def _age_days(doc: ScoredDocument, ref: datetime) -> float:
    return max(0.0, (ref - doc.record.last_modified).total_seconds() / 86400)


def _partition_temporal(docs: Sequence[ScoredDocument], ref: datetime) -> list[Cluster]:
    bands: dict[str, list[ScoredDocument]] = {label: [] for label, _ in TEMPORAL_BANDS}
    for doc in docs:
        age = _age_days(doc, ref)
        for label, limit in TEMPORAL_BANDS:
            if limit is None or age <= limit:
                bands[label].append(doc)
                break
    return [
        Cluster(tier=label, strategy=ClusteringStrategy.TEMPORAL, documents=_ordered(bands[label]))
        for label, _ in TEMPORAL_BANDS
        if bands[label]
    ]


def _partition_relevance(docs: Sequence[ScoredDocument], ref: datetime) -> list[Cluster]:
    if not docs:
        return []
    ordered = _ordered(docs)
    return [
        Cluster(
            tier="relevance",
            strategy=ClusteringStrategy.RELEVANCE,
            documents=ordered,
            member_tiers=relevance_quartiles(ordered),
        )
    ]


def relevance_quartiles(ordered: Sequence[ScoredDocument]) -> dict[str, str]:
    """Label each document by the quartile of its rank. Reporting only."""
    n = len(ordered)
    return {
        doc.id: RELEVANCE_QUARTILES[min(3, (i * 4) // n)]
        for i, doc in enumerate(ordered)
    }


_PARTITIONERS: dict[ClusteringStrategy, Partitioner] = {
    ClusteringStrategy.HIERARCHICAL: _partition_hierarchical,
    ClusteringStrategy.CATEGORY: _partition_category,
    ClusteringStrategy.TEMPORAL: _partition_temporal,
    ClusteringStrategy.RELEVANCE: _partition_relevance,
}


class ClusteringEngine:
    """Turns scored documents into an ordered list of clusters."""

    @staticmethod
    def select_strategy(request: ContextRequest, corpus_size: int) -> ClusteringStrategy:
        if request.strategy_hint is not None:
            return request.strategy_hint
        if corpus_size > HIERARCHICAL_THRESHOLD:
            return ClusteringStrategy.HIERARCHICAL
        return ClusteringStrategy.RELEVANCE

    def cluster(
        self,
        scored: Sequence[ScoredDocument],
        strategy: ClusteringStrategy,
        reference_time: datetime | None = None,
    ) -> list[Cluster]:
        ref = reference_time or datetime.now(timezone.utc)
        if ref.tzinfo is None:
            ref = ref.replace(tzinfo=timezone.utc)
        clusters = _PARTITIONERS[strategy](scored, ref)
        logger.debug(
            f"{strategy.value} clustering: "
            + ", ".join(f"{c.tier}={len(c)}" for c in clusters)
        )
        return clusters


def flatten(clusters: Sequence[Cluster]) -> list[tuple[ScoredDocument, str]]:
    """Documents in allocation order with their cluster label, first occurrence wins."""
    seen: set[str] = set()
    ordered: list[tuple[ScoredDocument, str]] = []
    for cluster in clusters:
        for doc in cluster.documents:
            if doc.id in seen:
                continue
            seen.add(doc.id)
            ordered.append((doc, cluster.label_for(doc.id)))
    return ordered
