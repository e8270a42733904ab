"""The public entry point: one request in, one ContextPlan out.

Only ConfigurationError escapes `plan_context`. Everything else that can go
wrong for a single document (indexing, compression, budget) ends up in the
plan's warnings or excluded documents.
"""

from __future__ import annotations

import logging
import threading
from typing import Any

from pydantic import ValidationError

from ctxplan.compression.pipeline import CompressionPipeline
from ctxplan.compression.techniques import Summarizer
from ctxplan.config import ProjectConfig
from ctxplan.corpus.models import CorpusSnapshot, Tokenizer
from ctxplan.corpus.relationships import RelationshipTable
from ctxplan.exceptions import ConfigurationError
from ctxplan.models import ContextPlan, ContextRequest, ExcludedDocument, ExclusionReason
from ctxplan.planning.allocator import BudgetAllocator
from ctxplan.planning.loader import HierarchicalLoader
from ctxplan.planning.registry import ProviderCapabilityRegistry, resolve_budget
from ctxplan.ranking.clustering import ClusteringEngine
from ctxplan.ranking.scorer import RelevanceScorer

logger = logging.getLogger("ctxplan.planning")

# (max corpus size, label) for the loading strategy reported in a plan
LOADING_STRATEGIES: tuple[tuple[int, str], ...] = (
    (10, "full-load"),
    (50, "clustered-load"),
    (100, "hierarchical-load"),
)


def loading_strategy_for(corpus_size: int) -> str:
    for limit, label in LOADING_STRATEGIES:
        if corpus_size <= limit:
            return label
    return "intelligent-load"


class ContextPlanner:
    """Plans context for requests against one immutable corpus snapshot.

    Usage:
        snapshot = DocumentCorpusIndex().index(raw_documents)
        planner = ContextPlanner(snapshot)
        plan = planner.plan_context(
            ContextRequest(target_document_type="project-charter", provider_id="openai")
        )
        prompt_context = plan.render()
    """

    def __init__(
        self,
        corpus: CorpusSnapshot,
        registry: ProviderCapabilityRegistry | None = None,
        config: ProjectConfig | None = None,
        summarizer: Summarizer | None = None,
        tokenizer: Tokenizer | None = None,
        relationships: RelationshipTable | None = None,
    ) -> None:
        self.corpus = corpus
        self.config = config or ProjectConfig()
        if registry is None:
            registry = ProviderCapabilityRegistry(safety_margin=self.config.allocation.safety_margin)
        elif self.config.providers:
            # Configured overrides apply to this planner only
            registry = registry.copy()
        self.registry = registry
        for override in self.config.providers:
            self.registry.register(
                override.provider_id, override.max_context_tokens, override.safety_margin
            )
        self.summarizer = summarizer
        self.tokenizer = tokenizer
        self.scorer = RelevanceScorer(self.config.scoring, relationships)
        self.clustering = ClusteringEngine()

    def plan_context(
        self,
        request: ContextRequest | dict[str, Any],
        cancel: threading.Event | None = None,
    ) -> ContextPlan:
        """Select, order and compress corpus documents to fit the request's budget.

        Raises:
            ConfigurationError: the request is malformed, or names an unknown
                provider without a max_tokens override.
        """
        request = self._validate(request)
        budget = resolve_budget(self.registry.snapshot(), request.provider_id, request.max_tokens)

        records = self.corpus.records
        reference_time = request.reference_time or self.corpus.indexed_at
        scored = self.scorer.score(records, request, reference_time)
        strategy = self.clustering.select_strategy(request, len(records))
        loading = loading_strategy_for(len(records))
        allocation = self.config.allocation

        logger.info(
            f"Planning {request.target_document_type}: {len(records)} document(s), "
            f"budget {budget:,} tokens, {strategy.value} clustering, {loading}"
        )

        with CompressionPipeline(self.tokenizer, self.config.compression, self.summarizer) as pipeline:
            allocator = BudgetAllocator(pipeline, allocation)
            if len(records) > allocation.large_corpus_threshold:
                loader = HierarchicalLoader(allocator, self.clustering)
                plan = loader.load_layered(
                    scored,
                    request,
                    allocation.layer_count,
                    allocation.docs_per_layer,
                    budget,
                    cancel=cancel,
                    strategy=strategy,
                    reference_time=reference_time,
                    loading_strategy=loading,
                )
            else:
                clusters = self.clustering.cluster(scored, strategy, reference_time)
                plan = allocator.allocate(
                    clusters,
                    budget,
                    request,
                    strategy=strategy,
                    cancel=cancel,
                    loading_strategy=loading,
                )

        return self._with_indexing_failures(plan)

    def _validate(self, request: ContextRequest | dict[str, Any]) -> ContextRequest:
        if not isinstance(request, ContextRequest):
            try:
                request = ContextRequest.model_validate(request)
            except ValidationError as e:
                raise ConfigurationError(f"Malformed context request: {e}") from e
        if request.max_tokens is None and not request.provider_id:
            raise ConfigurationError("Request needs a provider_id or a max_tokens override")
        return request

    def _with_indexing_failures(self, plan: ContextPlan) -> ContextPlan:
        """Account for raw documents the index rejected."""
        seen = {r.id for r in self.corpus.records}
        failed: list[ExcludedDocument] = []
        for failure in self.corpus.failures:
            if failure.document_id in seen:
                continue
            seen.add(failure.document_id)
            failed.append(
                ExcludedDocument(document_id=failure.document_id, reason=ExclusionReason.INDEXING_ERROR)
            )
        if not failed:
            return plan
        return plan.model_copy(
            update={"excluded_documents": plan.excluded_documents + tuple(failed)}
        )
