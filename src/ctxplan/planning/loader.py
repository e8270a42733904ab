"""Layered loading for corpora too large for one allocation pass.

Documents are taken in cluster order and cut into layers of `docs_per_layer`.
The first layer always carries every critical document when the request
preserves them. After the layers come up to `refinement_rounds` batches of the
documents left outside, so spare budget can still reach them. Documents past
the last batch are excluded as ``outside-loaded-layers``.

Layers and batches depend only on the order, never on the budget. Floors are
admitted once over the whole sequence and then spent layer by layer, so a
larger budget never loads less.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Sequence
from datetime import datetime

from ctxplan.compression.pipeline import CompressionCache
from ctxplan.models import (
    ClusteringStrategy,
    ContextPlan,
    ContextRequest,
    ExclusionReason,
)
from ctxplan.planning.allocator import (
    AllocationOutcome,
    BudgetAllocator,
    Slot,
    build_plan,
    excluded_entry,
    is_cancelled,
)
from ctxplan.ranking.clustering import ClusteringEngine, flatten
from ctxplan.ranking.models import ScoredDocument

logger = logging.getLogger("ctxplan.planning")


class HierarchicalLoader:
    """Drives a BudgetAllocator over successive priority layers."""

    def __init__(
        self,
        allocator: BudgetAllocator,
        clustering: ClusteringEngine | None = None,
        refinement_rounds: int | None = None,
    ) -> None:
        self.allocator = allocator
        self.clustering = clustering or ClusteringEngine()
        self.refinement_rounds = (
            allocator.config.refinement_rounds if refinement_rounds is None else refinement_rounds
        )

    def load_layered(
        self,
        scored: Sequence[ScoredDocument],
        request: ContextRequest,
        layer_count: int,
        docs_per_layer: int,
        budget_tokens: int,
        cancel: threading.Event | None = None,
        strategy: ClusteringStrategy | None = None,
        reference_time: datetime | None = None,
        loading_strategy: str = "intelligent-load",
    ) -> ContextPlan:
        strategy = strategy or self.clustering.select_strategy(request, len(scored))
        slots = flatten(self.clustering.cluster(scored, strategy, reference_time))
        layers, outside = self.build_layers(
            slots, layer_count, docs_per_layer, request.preserve_critical_documents
        )
        batch_size = max(1, docs_per_layer)
        window = outside[: max(0, self.refinement_rounds) * batch_size]
        outside = outside[len(window):]
        batches = [window[i:i + batch_size] for i in range(0, len(window), batch_size)]
        sequence = [slot for layer in layers for slot in layer] + window

        outcome = AllocationOutcome()
        if is_cancelled(cancel):
            logger.warning("Layered loading cancelled before it started")
            outcome.cancelled = True
            outcome.excluded.extend(excluded_entry(d, ExclusionReason.CANCELLED) for d, _ in sequence)
        else:
            self._load(layers, batches, sequence, request, budget_tokens, outcome, cancel)

        outcome.excluded.extend(
            excluded_entry(d, ExclusionReason.OUTSIDE_LOADED_LAYERS) for d, _ in outside
        )
        return build_plan(request, outcome, budget_tokens, strategy, loading_strategy)

    @staticmethod
    def build_layers(
        slots: Sequence[Slot],
        layer_count: int,
        docs_per_layer: int,
        preserve_critical: bool,
    ) -> tuple[list[list[Slot]], list[Slot]]:
        """Cut ordered slots into layers. Returns (layers, slots left outside)."""
        layer_count = max(1, layer_count)
        docs_per_layer = max(1, docs_per_layer)

        first: list[Slot] = []
        if preserve_critical:
            first = [s for s in slots if s[0].is_critical]
        taken = {doc.id for doc, _ in first}
        rest = [s for s in slots if s[0].id not in taken]

        fill = max(0, docs_per_layer - len(first))
        position = {doc.id: i for i, (doc, _) in enumerate(slots)}
        first = sorted(first + rest[:fill], key=lambda s: position[s[0].id])
        rest = rest[fill:]

        layers = [first] if first else []
        while rest and len(layers) < layer_count:
            layers.append(rest[:docs_per_layer])
            rest = rest[docs_per_layer:]
        return layers, rest

    def _load(
        self,
        layers: Sequence[Sequence[Slot]],
        batches: Sequence[Sequence[Slot]],
        sequence: Sequence[Slot],
        request: ContextRequest,
        budget_tokens: int,
        outcome: AllocationOutcome,
        cancel: threading.Event | None,
    ) -> None:
        allocator = self.allocator
        cache = CompressionCache()
        admission = allocator.admit(sequence, budget_tokens, request, cache)

        for number, layer in enumerate(layers, start=1):
            before = len(outcome.included)
            allocator.walk(layer, admission, budget_tokens, outcome, cancel, cache)
            logger.info(
                f"Layer {number}/{len(layers)}: {len(outcome.included) - before} of {len(layer)} "
                f"included, {outcome.tokens_used:,}/{budget_tokens:,} tokens used"
            )

        for number, batch in enumerate(batches, start=1):
            before = len(outcome.included)
            allocator.walk(batch, admission, budget_tokens, outcome, cancel, cache)
            logger.info(
                f"Refinement round {number}: {len(outcome.included) - before} more document(s), "
                f"{outcome.tokens_used:,}/{budget_tokens:,} tokens used"
            )
        allocator.finalize()
