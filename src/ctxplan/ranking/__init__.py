"""Relevance scoring and clustering of indexed documents."""

from ctxplan.ranking.clustering import ClusteringEngine
from ctxplan.ranking.models import Cluster, ScoredDocument
from ctxplan.ranking.scorer import RelevanceScorer

__all__ = ["Cluster", "ClusteringEngine", "RelevanceScorer", "ScoredDocument"]
