"""Tests for corpus indexing, relationships and the directory source."""

from __future__ import annotations

from datetime import datetime, timezone
from pathlib import Path

from conftest import INDEXED_AT, index_corpus, make_raw, word_tokenizer

from ctxplan.corpus.index import DEFAULT_QUALITY, DocumentCorpusIndex, infer_category, infer_priority
from ctxplan.corpus.models import PriorityTier, RawDocument, TokenEstimator
from ctxplan.corpus.relationships import RelationshipTable
from ctxplan.corpus.source import document_type_from_name, load_directory
from ctxplan.models import ContextRequest, ExclusionReason
from ctxplan.planning.planner import ContextPlanner


class TestTokenEstimator:
    def test_empty_is_zero(self):
        assert TokenEstimator.estimate("") == 0

    def test_chars_per_token(self):
        assert TokenEstimator.estimate("a" * 400) == 100
        assert TokenEstimator.estimate("hi") == 1


class TestDocumentCorpusIndex:
    def test_index_basic(self):
        snapshot = index_corpus([make_raw("a", 100), make_raw("b", 50, "project-charter")])
        assert len(snapshot) == 2
        assert snapshot.failures == ()
        assert snapshot.get("a").token_count == 100
        assert snapshot.total_tokens == 150
        assert snapshot.indexed_at == INDEXED_AT

    def test_priority_and_category_inferred(self):
        snapshot = index_corpus([
            make_raw("charter", 10, "project-charter"),
            make_raw("risks", 10, "risk-register"),
            make_raw("plan", 10, "project-plan"),
            make_raw("misc", 10, "whatever"),
        ])
        assert snapshot.get("charter").priority_tier is PriorityTier.CRITICAL
        assert snapshot.get("charter").category == "strategic"
        assert snapshot.get("risks").priority_tier is PriorityTier.HIGH
        assert snapshot.get("risks").category == "management"
        assert snapshot.get("plan").priority_tier is PriorityTier.MEDIUM
        assert snapshot.get("misc").priority_tier is PriorityTier.LOW
        assert snapshot.get("misc").category == "reference"

    def test_declared_metadata_wins(self):
        snapshot = index_corpus([
            make_raw("x", 10, "project-charter", priority_tier="low", category="Technical"),
        ])
        record = snapshot.get("x")
        assert record.priority_tier is PriorityTier.LOW
        assert record.category == "technical"

    def test_quality_defaults(self):
        snapshot = index_corpus([
            make_raw("draft", 10),
            make_raw("approved", 10, status="Approved"),
            make_raw("scored", 10, quality_score=140),
        ])
        assert snapshot.get("draft").quality_score == DEFAULT_QUALITY
        assert snapshot.get("approved").quality_score == DEFAULT_QUALITY + 20
        assert snapshot.get("scored").quality_score == 100

    def test_empty_content_is_reported_not_fatal(self):
        snapshot = index_corpus([
            make_raw("good", 20),
            RawDocument(id="empty", document_type="notes", content="   "),
        ])
        assert [r.id for r in snapshot.records] == ["good"]
        assert snapshot.failures[0].document_id == "empty"
        assert "empty" in snapshot.failures[0].message

    def test_critical_with_zero_tokens_fails(self):
        index = DocumentCorpusIndex(tokenizer=lambda text: 0)
        snapshot = index.index([
            RawDocument(id="charter", document_type="project-charter", content="text"),
            RawDocument(id="notes", document_type="notes", content="text"),
        ])
        assert [f.document_id for f in snapshot.failures] == ["charter"]
        assert snapshot.get("notes").token_count == 0

    def test_unmeasurable_document(self):
        def broken(text: str) -> int:
            if "boom" in text:
                raise ValueError("cannot tokenize")
            return word_tokenizer(text)

        snapshot = DocumentCorpusIndex(broken).index([
            RawDocument(id="ok", document_type="notes", content="fine words"),
            RawDocument(id="bad", document_type="notes", content="boom"),
        ])
        assert snapshot.get("ok") is not None
        assert snapshot.failures[0].document_id == "bad"

    def test_duplicate_ids(self):
        snapshot = index_corpus([make_raw("a", 10), make_raw("a", 20)])
        assert len(snapshot) == 1
        assert snapshot.get("a").token_count == 10
        assert snapshot.failures[0].message == "duplicate document id"

    def test_last_modified_defaults_to_index_time(self):
        raw = RawDocument(id="a", document_type="notes", content="some words")
        snapshot = index_corpus([raw])
        assert snapshot.get("a").last_modified == INDEXED_AT

    def test_naive_timestamps_become_utc(self):
        raw = RawDocument(
            id="a", document_type="notes", content="words", last_modified=datetime(2024, 6, 1)
        )
        snapshot = DocumentCorpusIndex().index([raw], indexed_at=datetime(2025, 1, 1))
        assert snapshot.get("a").last_modified.tzinfo == timezone.utc
        assert snapshot.indexed_at.tzinfo == timezone.utc


class TestInference:
    def test_infer_helpers(self):
        assert infer_priority("technical-specification") is PriorityTier.CRITICAL
        assert infer_category("benefits-realization-plan") == "strategic"
        assert PriorityTier.CRITICAL.rank < PriorityTier.LOW.rank


class TestRelationshipTable:
    def test_symmetric(self):
        table = RelationshipTable()
        assert table.are_related("project-charter", "risk-register")
        assert table.are_related("risk-register", "project-charter")

    def test_unknown_types(self):
        table = RelationshipTable()
        assert not table.are_related("unknown-a", "unknown-b")
        assert "unknown-a" not in table

    def test_add_edges(self):
        table = RelationshipTable({})
        table.add("meeting-notes", "project-plan")
        assert table.are_related("project-plan", "meeting-notes")
        assert table.related_to("meeting-notes") == {"project-plan"}


class TestDirectorySource:
    def test_load_directory(self, tmp_project: Path):
        raws = load_directory(tmp_project, ["node_modules"])
        ids = {r.id for r in raws}
        assert "docs/project-charter.md" in ids
        assert "meeting-notes.txt" in ids
        assert "empty.md" in ids
        assert not any("node_modules" in i for i in ids)
        assert not any(i.endswith(".png") for i in ids)

    def test_manifest_metadata(self, tmp_project: Path):
        raws = {r.id: r for r in load_directory(tmp_project, ["node_modules"])}
        charter = raws["docs/project-charter.md"]
        assert charter.priority_tier is PriorityTier.CRITICAL
        assert charter.quality_score == 90
        assert raws["docs/risk-register.md"].status == "approved"
        assert raws["meeting-notes.txt"].document_type == "meeting-notes"

    def test_index_directory_reports_empty_files(self, tmp_project: Path):
        snapshot = DocumentCorpusIndex().index(load_directory(tmp_project, ["node_modules"]))
        assert [f.document_id for f in snapshot.failures] == ["empty.md"]

    def test_invalid_manifest_entry_reported(self, tmp_path: Path):
        (tmp_path / "a.md").write_text("# A\n\nsome text")
        (tmp_path / "b.md").write_text("# B\n\nmore text")
        (tmp_path / "corpus.json").write_text('{"a.md": {"priority_tier": "urgent"}}')
        raws = {r.id: r for r in load_directory(tmp_path)}
        assert set(raws) == {"a.md", "b.md"}
        assert raws["a.md"].load_error == "invalid manifest entry (1 error(s))"
        assert raws["b.md"].load_error is None

        snapshot = index_corpus(list(raws.values()))
        assert [r.id for r in snapshot.records] == ["b.md"]
        assert [(f.document_id, f.message) for f in snapshot.failures] == [
            ("a.md", "invalid manifest entry (1 error(s))")
        ]

        request = ContextRequest(target_document_type="project-charter", max_tokens=1_000)
        plan = ContextPlanner(snapshot, tokenizer=word_tokenizer).plan_context(request)
        assert plan.excluded("a.md").reason is ExclusionReason.INDEXING_ERROR
        assert plan.included_ids == ["b.md"]

    def test_document_type_from_name(self):
        assert document_type_from_name("Project Charter v2") == "project-charter-v2"
        assert document_type_from_name("___") == "document"
