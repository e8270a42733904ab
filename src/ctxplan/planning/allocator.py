"""Budget allocation.

Allocation runs in two passes over the documents in cluster order:

1. Admission. Every document has a floor, the smallest footprint the
   compression ladder can give it without external calls. Critical documents
   are reserved first (when the request preserves them). The rest are admitted
   by `admit_by_floor`: a document whose floor is larger than the whole budget
   is passed over, and among the runs of floors that fit, the one carrying the
   most relevance wins. A larger budget never admits less relevance.
2. Technique walk. Each admitted document gets the least aggressive technique
   that fits `budget - used - floors still reserved for later documents`.
   Because every later document keeps its floor reserved, the walk can never
   run out of room.

A critical document whose floor does not fit at all is either force-included
at best-effort compression (flagged in the plan warnings) or excluded with
``exceeds-budget-even-compressed``, depending on the request.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Sequence
from dataclasses import dataclass, field
from enum import Enum

from ctxplan.compression.models import CompressionCandidate
from ctxplan.compression.pipeline import CompressionCache, CompressionPipeline
from ctxplan.config import AllocationConfig
from ctxplan.models import (
    WARNING_CANCELLED,
    WARNING_CRITICAL_OVERFLOW,
    ClusteringStrategy,
    ContextPlan,
    ContextRequest,
    ExcludedDocument,
    ExclusionReason,
    IncludedDocument,
)
from ctxplan.ranking.clustering import flatten
from ctxplan.ranking.models import Cluster, ScoredDocument

logger = logging.getLogger("ctxplan.planning")

# A scored document with the cluster label it is allocated under
Slot = tuple[ScoredDocument, str]


class AllocationState(str, Enum):
    INITIALIZED = "initialized"
    ALLOCATING = "allocating"
    COMPRESSING = "compressing"
    FINALIZED = "finalized"


@dataclass
class AllocationOutcome:
    """Decisions of one or more allocation passes, before they become a plan."""

    included: list[IncludedDocument] = field(default_factory=list)
    excluded: list[ExcludedDocument] = field(default_factory=list)
    tokens_used: int = 0
    warnings: list[str] = field(default_factory=list)
    cancelled: bool = False


def is_cancelled(cancel: threading.Event | None) -> bool:
    return cancel is not None and cancel.is_set()


def included_entry(
    doc: ScoredDocument,
    label: str,
    candidate: CompressionCandidate,
    forced: bool = False,
) -> IncludedDocument:
    return IncludedDocument(
        document_id=doc.id,
        technique_applied=candidate.technique,
        tokens_used=candidate.result_token_count,
        original_tokens=doc.token_count,
        relevance_score=doc.relevance_score,
        priority_tier=doc.priority_tier,
        tier=label,
        estimated_quality_preservation=candidate.estimated_quality_preservation,
        reversible=candidate.reversible,
        omitted_chunks=candidate.omitted_chunks,
        forced=forced,
        content=candidate.content,
    )


def excluded_entry(doc: ScoredDocument, reason: ExclusionReason) -> ExcludedDocument:
    return ExcludedDocument(
        document_id=doc.id,
        reason=reason,
        original_tokens=doc.token_count,
        relevance_score=doc.relevance_score,
    )


def build_plan(
    request: ContextRequest,
    outcome: AllocationOutcome,
    budget_tokens: int,
    strategy: ClusteringStrategy,
    loading_strategy: str = "full-load",
) -> ContextPlan:
    """Freeze allocation decisions into a ContextPlan."""
    used = outcome.tokens_used
    warnings = list(outcome.warnings)
    if outcome.cancelled:
        warnings.append(WARNING_CANCELLED)
    return ContextPlan(
        target_document_type=request.target_document_type,
        included_documents=tuple(outcome.included),
        excluded_documents=tuple(outcome.excluded),
        total_tokens_used=used,
        budget_tokens=budget_tokens,
        utilization_percent=round(100.0 * used / budget_tokens, 2) if budget_tokens else 0.0,
        strategy_used=strategy,
        loading_strategy=loading_strategy,
        budget_exceeded=used > budget_tokens,
        warnings=tuple(dict.fromkeys(warnings)),
    )


@dataclass
class Admission:
    """Which documents of an ordered batch get a reserved floor."""

    floors: dict[str, CompressionCandidate]
    admitted: set[str] = field(default_factory=set)
    overflow: set[str] = field(default_factory=set)
    rejected: dict[str, ExclusionReason] = field(default_factory=dict)
    reserved: int = 0


def admit_by_floor(
    docs: Sequence[ScoredDocument],
    floor_of: dict[str, CompressionCandidate],
    capacity: int,
) -> set[str]:
    """Ids of `docs` whose floors are admitted against `capacity` tokens.

    For a trial capacity c, documents whose floor alone exceeds c are passed
    over and the longest run of the others whose floors add up to at most c is
    taken. Only capacities just below a floor can change that run, so those
    are the trials; the run with the most relevance wins, the larger trial on
    a tie.
    """
    floors = [floor_of[doc.id].result_token_count for doc in docs]
    trials = sorted({capacity} | {f - 1 for f in floors if 0 < f <= capacity})

    best: list[ScoredDocument] = []
    best_score = -1.0
    for trial in trials:
        taken: list[ScoredDocument] = []
        used = 0
        for doc, floor in zip(docs, floors):
            if floor > trial:
                continue
            if used + floor > trial:
                break
            taken.append(doc)
            used += floor
        score = sum(doc.relevance_score for doc in taken)
        if score >= best_score:
            best, best_score = taken, score
    return {doc.id for doc in best}


class BudgetAllocator:
    """Fits clustered documents into a token budget.

    Not safe to share between threads: one allocator drives one request at a
    time, and its `state` reflects the pass in progress.
    """

    def __init__(
        self,
        pipeline: CompressionPipeline,
        config: AllocationConfig | None = None,
    ) -> None:
        self.pipeline = pipeline
        self.config = config or AllocationConfig()
        self.state = AllocationState.INITIALIZED

    def allocate(
        self,
        clusters: Sequence[Cluster],
        budget_tokens: int,
        request: ContextRequest,
        strategy: ClusteringStrategy | None = None,
        cancel: threading.Event | None = None,
        cache: CompressionCache | None = None,
        loading_strategy: str = "full-load",
    ) -> ContextPlan:
        """Allocate every document of `clusters` and return the finished plan."""
        if strategy is None:
            strategy = clusters[0].strategy if clusters else ClusteringStrategy.RELEVANCE
        outcome = self.allocate_slots(flatten(clusters), budget_tokens, request, cancel, cache)
        plan = build_plan(request, outcome, budget_tokens, strategy, loading_strategy)
        logger.info(
            f"Plan for {request.target_document_type}: {len(plan.included_documents)} included, "
            f"{len(plan.excluded_documents)} excluded, "
            f"{plan.total_tokens_used:,}/{budget_tokens:,} tokens ({plan.utilization_percent:.1f}%)"
        )
        return plan

    def allocate_slots(
        self,
        slots: Sequence[Slot],
        budget_tokens: int,
        request: ContextRequest,
        cancel: threading.Event | None = None,
        cache: CompressionCache | None = None,
    ) -> AllocationOutcome:
        """Allocate documents already in processing order against `budget_tokens`."""
        cache = cache if cache is not None else CompressionCache()
        outcome = AllocationOutcome()

        if is_cancelled(cancel):
            logger.warning("Allocation cancelled before it started")
            outcome.excluded.extend(excluded_entry(doc, ExclusionReason.CANCELLED) for doc, _ in slots)
            outcome.cancelled = True
            self.finalize()
            return outcome

        admission = self.admit(slots, budget_tokens, request, cache)
        self.walk(slots, admission, budget_tokens, outcome, cancel, cache)
        self.finalize()
        return outcome

    def admit(
        self,
        slots: Sequence[Slot],
        budget_tokens: int,
        request: ContextRequest,
        cache: CompressionCache,
    ) -> Admission:
        """Reserve floors for the documents `walk` will include."""
        self.state = AllocationState.INITIALIZED
        self._enter(AllocationState.ALLOCATING)

        floors = self.pipeline.floors([doc.record for doc, _ in slots], cache)
        admission = Admission(floors={doc.id: f for (doc, _), f in zip(slots, floors)})
        floor_of = admission.floors

        if request.preserve_critical_documents:
            for doc, _ in slots:
                if not doc.is_critical:
                    continue
                floor = floor_of[doc.id].result_token_count
                if admission.reserved + floor <= budget_tokens:
                    admission.admitted.add(doc.id)
                    admission.reserved += floor
                else:
                    admission.overflow.add(doc.id)

        rest = [
            doc for doc, _ in slots
            if doc.id not in admission.admitted and doc.id not in admission.overflow
        ]
        # Forced critical documents already spend everything that is left
        if not admission.overflow:
            picked = admit_by_floor(rest, floor_of, budget_tokens - admission.reserved)
            admission.admitted |= picked
            admission.reserved += sum(floor_of[doc_id].result_token_count for doc_id in picked)

        for doc in rest:
            if doc.id in admission.admitted:
                continue
            if floor_of[doc.id].result_token_count > budget_tokens:
                admission.rejected[doc.id] = ExclusionReason.EXCEEDS_BUDGET_EVEN_COMPRESSED
            else:
                admission.rejected[doc.id] = ExclusionReason.BUDGET_EXHAUSTED

        logger.debug(
            f"Admitted {len(admission.admitted)} of {len(slots)} document(s), "
            f"{admission.reserved:,} tokens reserved, {len(admission.overflow)} critical overflow"
        )
        return admission

    def walk(
        self,
        slots: Sequence[Slot],
        admission: Admission,
        budget_tokens: int,
        outcome: AllocationOutcome,
        cancel: threading.Event | None,
        cache: CompressionCache,
    ) -> None:
        """Pick a technique for each slot, adding the decisions to `outcome`.

        `slots` may be any ordered part of what was admitted; later calls keep
        spending against the same `outcome.tokens_used` and `admission.reserved`.
        """
        for doc, label in slots:
            if doc.id in admission.rejected:
                outcome.excluded.append(excluded_entry(doc, admission.rejected[doc.id]))
                continue
            if is_cancelled(cancel):
                if not outcome.cancelled:
                    logger.warning(f"Allocation cancelled at {doc.id}")
                outcome.cancelled = True
                outcome.excluded.append(excluded_entry(doc, ExclusionReason.CANCELLED))
                continue

            floor = admission.floors[doc.id]
            room = budget_tokens - outcome.tokens_used
            if doc.id in admission.admitted:
                admission.reserved -= floor.result_token_count
                candidate = self._fit(doc, room - admission.reserved, floor, cache)
                forced = False
            else:
                target = max(room - admission.reserved, self.config.min_viable_tokens)
                self._enter(AllocationState.COMPRESSING)
                candidate = self.pipeline.compress(doc.record, target, cache)
                self._enter(AllocationState.ALLOCATING)
                forced = True
                logger.warning(
                    f"Critical document {doc.id} does not fit even compressed "
                    f"({candidate.result_token_count:,} tokens), including it over budget"
                )
                outcome.warnings.append(f"{WARNING_CRITICAL_OVERFLOW}:{doc.id}")

            outcome.tokens_used += candidate.result_token_count
            outcome.included.append(included_entry(doc, label, candidate, forced=forced))
            outcome.warnings.extend(candidate.warnings)
            logger.debug(
                f"{doc.id} [{label}]: {candidate.technique.value}, "
                f"{candidate.result_token_count:,} tokens, running total {outcome.tokens_used:,}"
            )

    def finalize(self) -> None:
        self._enter(AllocationState.FINALIZED)

    # -------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------

    def _fit(
        self,
        doc: ScoredDocument,
        target: int,
        floor: CompressionCandidate,
        cache: CompressionCache,
    ) -> CompressionCandidate:
        if doc.token_count <= target:
            return self.pipeline.compress(doc.record, target, cache)

        self._enter(AllocationState.COMPRESSING)
        candidate = self.pipeline.compress(doc.record, target, cache)
        if not candidate.fits(target):
            # The floor was reserved for this document, so it always fits
            candidate = floor.model_copy(
                update={"warnings": floor.warnings + candidate.warnings}
            )
        self._enter(AllocationState.ALLOCATING)
        return candidate

    def _enter(self, state: AllocationState) -> None:
        if state is not self.state:
            logger.debug(f"Allocator {self.state.value} -> {state.value}")
            self.state = state
