"""Tests for the budget allocator."""

from __future__ import annotations

from conftest import INDEXED_AT, CancelAfter, index_corpus, make_ledger, make_raw, word_tokenizer

from ctxplan.compression.models import CompressionCandidate, Technique
from ctxplan.compression.pipeline import CompressionPipeline
from ctxplan.corpus.models import CorpusSnapshot, DocumentRecord, PriorityTier, RawDocument
from ctxplan.models import ClusteringStrategy, ContextPlan, ContextRequest, ExclusionReason
from ctxplan.planning.allocator import AllocationState, BudgetAllocator, admit_by_floor
from ctxplan.ranking.clustering import ClusteringEngine
from ctxplan.ranking.models import ScoredDocument
from ctxplan.ranking.scorer import RelevanceScorer


def _plan(
    snapshot: CorpusSnapshot,
    budget: int,
    target: str = "quality-plan",
    strategy: ClusteringStrategy = ClusteringStrategy.RELEVANCE,
    cancel=None,
    **request_kwargs,
) -> tuple[ContextPlan, BudgetAllocator]:
    request = ContextRequest(target_document_type=target, max_tokens=budget, **request_kwargs)
    scored = RelevanceScorer().score(snapshot.records, request, INDEXED_AT)
    clusters = ClusteringEngine().cluster(scored, strategy, INDEXED_AT)
    with CompressionPipeline(word_tokenizer) as pipeline:
        allocator = BudgetAllocator(pipeline)
        plan = allocator.allocate(clusters, budget, request, cancel=cancel)
    return plan, allocator


def _tiny_corpus() -> CorpusSnapshot:
    """Documents too small to compress: their only form is the original."""
    return index_corpus([
        RawDocument(
            id="notes", document_type="meeting-notes", quality_score=100,
            content="alpha beta gamma delta epsilon", last_modified=INDEXED_AT,
        ),
        RawDocument(
            id="charter", document_type="project-charter", quality_score=0,
            content="one two three four", last_modified=INDEXED_AT,
        ),
    ])


class TestBudgetAllocator:
    def test_everything_fits(self, mixed_snapshot: CorpusSnapshot):
        plan, allocator = _plan(mixed_snapshot, 10_000)
        assert len(plan.included_documents) == len(mixed_snapshot)
        assert all(d.technique_applied is Technique.NONE for d in plan.included_documents)
        assert plan.total_tokens_used == mixed_snapshot.total_tokens
        assert plan.excluded_documents == ()
        assert allocator.state is AllocationState.FINALIZED

    def test_included_in_cluster_order(self, mixed_snapshot: CorpusSnapshot):
        plan, _ = _plan(mixed_snapshot, 10_000, strategy=ClusteringStrategy.HIERARCHICAL)
        tiers = [d.tier for d in plan.included_documents]
        order = ["critical", "high", "medium", "low"]
        assert tiers == sorted(tiers, key=order.index)

    def test_compression_when_tight(self, mixed_snapshot: CorpusSnapshot):
        plan, _ = _plan(mixed_snapshot, 2_000)
        assert plan.total_tokens_used <= 2_000
        assert any(d.technique_applied is not Technique.NONE for d in plan.included_documents)
        compressed = [d for d in plan.included_documents if d.technique_applied is not Technique.NONE]
        assert all(d.tokens_used < d.original_tokens for d in compressed)

    def test_budget_exhausted_reasons(self, mixed_snapshot: CorpusSnapshot):
        plan, _ = _plan(mixed_snapshot, 120, preserve_critical_documents=False)
        assert plan.total_tokens_used <= 120
        reasons = {d.reason for d in plan.excluded_documents}
        assert ExclusionReason.BUDGET_EXHAUSTED in reasons
        ids = plan.included_ids + plan.excluded_ids
        assert sorted(ids) == sorted(r.id for r in mixed_snapshot.records)

    def test_critical_documents_reserved_first(self):
        plan, _ = _plan(_tiny_corpus(), 6)
        assert plan.included_ids == ["charter"]
        assert plan.excluded("notes").reason is ExclusionReason.BUDGET_EXHAUSTED

    def test_without_preserve_order_decides(self):
        plan, _ = _plan(_tiny_corpus(), 6, preserve_critical_documents=False)
        assert plan.included_ids == ["notes"]
        assert plan.excluded("charter").reason is ExclusionReason.BUDGET_EXHAUSTED

    def test_exceeds_even_compressed(self):
        plan, _ = _plan(_tiny_corpus(), 3, preserve_critical_documents=False)
        assert plan.included_documents == ()
        assert {d.reason for d in plan.excluded_documents} == {
            ExclusionReason.EXCEEDS_BUDGET_EVEN_COMPRESSED
        }

    def test_critical_overflow_is_forced_and_flagged(self):
        plan, _ = _plan(_tiny_corpus(), 3)
        charter = plan.included("charter")
        assert charter is not None
        assert charter.forced
        assert plan.budget_exceeded
        assert "critical-document-overflow:charter" in plan.warnings
        assert plan.excluded("notes").reason is ExclusionReason.EXCEEDS_BUDGET_EVEN_COMPRESSED

    def test_cancelled_before_start(self, mixed_snapshot: CorpusSnapshot):
        cancel = CancelAfter(0)
        plan, allocator = _plan(mixed_snapshot, 10_000, cancel=cancel)
        assert plan.included_documents == ()
        assert {d.reason for d in plan.excluded_documents} == {ExclusionReason.CANCELLED}
        assert "cancelled" in plan.warnings
        assert allocator.state is AllocationState.FINALIZED

    def test_cancelled_mid_flight(self, mixed_snapshot: CorpusSnapshot):
        plan, _ = _plan(mixed_snapshot, 10_000, cancel=CancelAfter(2))
        assert len(plan.included_documents) == 1
        assert len(plan.excluded_documents) == len(mixed_snapshot) - 1
        assert all(d.reason is ExclusionReason.CANCELLED for d in plan.excluded_documents)
        assert plan.warnings == ("cancelled",)

    def test_reversible_chunks_record_omissions(self):
        snapshot = index_corpus([make_raw("big", 1000), make_raw("small", 100)])
        plan, _ = _plan(snapshot, 600)
        big = plan.included("big")
        assert big.technique_applied is Technique.CHUNK
        assert big.reversible
        assert big.omitted_chunks
        assert plan.total_tokens_used <= 600

    def test_oversized_document_does_not_block_the_rest(self):
        plan, _ = _plan(_oversized_first_corpus(), 200, preserve_critical_documents=False)
        assert plan.excluded("ledger").reason is ExclusionReason.EXCEEDS_BUDGET_EVEN_COMPRESSED
        assert sorted(plan.included_ids) == [f"note-{i}" for i in range(5)]
        assert plan.total_tokens_used == 25

    def test_relevance_never_drops_as_budget_grows(self):
        snapshot = _oversized_first_corpus()
        previous = 0.0
        for budget in range(20, 800, 20):
            plan, _ = _plan(snapshot, budget, preserve_critical_documents=False)
            assert plan.total_tokens_used <= budget
            assert plan.total_relevance >= previous - 1e-9
            previous = plan.total_relevance


class TestAdmitByFloor:
    def _docs(self, floors: dict[str, int], scores: dict[str, float]):
        docs = [_scored(doc_id, scores[doc_id]) for doc_id in floors]
        floor_of = {
            doc_id: CompressionCandidate(
                document_id=doc_id,
                technique=Technique.NONE,
                original_token_count=count,
                result_token_count=count,
                estimated_quality_preservation=1.0,
                content="x",
            )
            for doc_id, count in floors.items()
        }
        return docs, floor_of

    def test_passes_over_floor_larger_than_capacity(self):
        docs, floor_of = self._docs({"big": 50, "a": 5, "b": 5}, {"big": 9, "a": 1, "b": 1})
        assert admit_by_floor(docs, floor_of, 20) == {"a", "b"}

    def test_prefers_the_more_relevant_run(self):
        # "wide" fits alone but would crowd out three documents worth more
        docs, floor_of = self._docs(
            {"wide": 60, "a": 15, "b": 15, "c": 15},
            {"wide": 5, "a": 3, "b": 3, "c": 3},
        )
        assert admit_by_floor(docs, floor_of, 60) == {"a", "b", "c"}
        assert admit_by_floor(docs, floor_of, 120) == {"wide", "a", "b", "c"}

    def test_takes_the_larger_run_on_equal_relevance(self):
        docs, floor_of = self._docs({"a": 10, "b": 10}, {"a": 0, "b": 0})
        assert admit_by_floor(docs, floor_of, 20) == {"a", "b"}

    def test_no_capacity(self):
        docs, floor_of = self._docs({"a": 10}, {"a": 1})
        assert admit_by_floor(docs, floor_of, 0) == set()
        assert admit_by_floor(docs, floor_of, -5) == set()


def _oversized_first_corpus() -> CorpusSnapshot:
    """One high-quality document whose floor alone is over 200 tokens, then five small notes."""
    raws = [
        RawDocument(
            id="ledger", document_type="meeting-notes", quality_score=100,
            content=make_ledger(400), last_modified=INDEXED_AT,
        )
    ]
    raws += [
        RawDocument(
            id=f"note-{i}", document_type="meeting-notes", quality_score=10,
            content=f"alpha beta gamma delta item{i}", last_modified=INDEXED_AT,
        )
        for i in range(5)
    ]
    return index_corpus(raws)


def _scored(doc_id: str, score: float) -> ScoredDocument:
    record = DocumentRecord(
        id=doc_id,
        document_type="meeting-notes",
        category="reference",
        priority_tier=PriorityTier.LOW,
        token_count=10,
        quality_score=50,
        last_modified=INDEXED_AT,
        content="text",
    )
    return ScoredDocument(record=record, relevance_score=score)
