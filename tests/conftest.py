"""Shared test fixtures for ctxplan."""

from __future__ import annotations

import threading
import time
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

from ctxplan.corpus.index import DocumentCorpusIndex
from ctxplan.corpus.models import CorpusSnapshot, RawDocument

INDEXED_AT = datetime(2025, 1, 1, tzinfo=timezone.utc)

_SECTIONS = ("Objectives", "Scope", "Requirements", "Milestones", "Risks", "Budget", "Stakeholders")

_SENTENCES = (
    "The project delivers a customer portal with secure single sign-on for partners.",
    "Requirements cover account management, billing history and support ticket tracking.",
    "Milestones include discovery in March, pilot in June and general availability in October.",
    "The steering committee approves scope changes above ten percent of the budget.",
    "Integration with the legacy billing system is the largest technical risk identified.",
    "Acceptance criteria require response times under two seconds for ninety percent of requests.",
    "Stakeholders from finance, operations and customer support review every release.",
    "Data retention follows the regional privacy regulation and the internal audit policy.",
    "The architecture uses managed databases, an event queue and stateless web services.",
    "Training material and runbooks are handed over to operations before go-live.",
)


def word_tokenizer(text: str) -> int:
    """One token per whitespace-separated word."""
    return len(text.split())


def scaled_tokenizer(scale: int):
    """One word counts as `scale` tokens, for budgets in the millions."""

    def _count(text: str) -> int:
        return len(text.split()) * scale

    return _count


def make_content(words: int, seed: int = 0, appendix_words: int = 0) -> str:
    """Markdown prose with headings, exactly `words` whitespace tokens long."""
    parts: list[str] = []
    body_words = words - appendix_words
    total = 0
    section = seed
    sentence = seed

    while total < body_words:
        heading = f"## {_SECTIONS[section % len(_SECTIONS)]}"
        parts.append(heading)
        total += len(heading.split())
        section += 1
        for _ in range(3):
            if total >= body_words:
                break
            paragraph = (
                f"{_SENTENCES[sentence % len(_SENTENCES)]} "
                f"{_SENTENCES[(sentence + 3) % len(_SENTENCES)]}"
            )
            parts.append(paragraph)
            total += len(paragraph.split())
            sentence += 1

    excess = total - body_words
    while excess > 0:
        tail = parts[-1].split()
        cut = min(excess, len(tail))
        tail = tail[: len(tail) - cut]
        excess -= cut
        if tail:
            parts[-1] = " ".join(tail)
        else:
            parts.pop()

    if appendix_words:
        filler = " ".join(["boilerplate"] * max(0, appendix_words - 2))
        parts.append("## Appendix")
        if filler:
            parts.append(filler)

    return "\n\n".join(parts)


def make_ledger(lines: int) -> str:
    """Numbered one-line entries. Unlike make_content, no sentence repeats."""
    return "\n".join(
        f"Entry number{i} records decision{i} for workstream{i} and owner{i}." for i in range(lines)
    )


def make_raw(
    doc_id: str,
    words: int,
    document_type: str = "meeting-notes",
    age_days: float = 0,
    **meta,
) -> RawDocument:
    return RawDocument(
        id=doc_id,
        document_type=document_type,
        content=make_content(words, seed=sum(map(ord, doc_id))),
        last_modified=INDEXED_AT - timedelta(days=age_days),
        **meta,
    )


def index_corpus(raws: list[RawDocument], tokenizer=word_tokenizer) -> CorpusSnapshot:
    return DocumentCorpusIndex(tokenizer).index(raws, indexed_at=INDEXED_AT)


class FakeSummarizer:
    """Keeps the first words of the text that fit the target."""

    def __init__(self, scale: int = 1) -> None:
        self.scale = scale
        self.calls = 0
        self._lock = threading.Lock()

    def __call__(self, text: str, target_tokens: int, timeout: float) -> str:
        with self._lock:
            self.calls += 1
        keep = max(1, target_tokens // self.scale)
        return " ".join(text.split()[:keep])


class FailingSummarizer:
    """Behaves like a rate-limited provider."""

    def __init__(self) -> None:
        self.calls = 0
        self._lock = threading.Lock()

    def __call__(self, text: str, target_tokens: int, timeout: float) -> str:
        with self._lock:
            self.calls += 1
        raise RuntimeError("429 rate limited")


class SlowSummarizer:
    """Never answers within the timeout."""

    def __init__(self, delay: float = 0.5) -> None:
        self.delay = delay

    def __call__(self, text: str, target_tokens: int, timeout: float) -> str:
        time.sleep(self.delay)
        return "too late"


class CancelAfter(threading.Event):
    """Reports itself set after `checks` calls to is_set()."""

    def __init__(self, checks: int) -> None:
        super().__init__()
        self.checks = checks
        self._seen = 0

    def is_set(self) -> bool:
        self._seen += 1
        return self._seen > self.checks or super().is_set()


@pytest.fixture
def mixed_raws() -> list[RawDocument]:
    """A small corpus covering every tier, category and age band."""
    return [
        make_raw("charter", 400, "project-charter", age_days=5, status="approved"),
        make_raw("requirements", 900, "requirements-specification", age_days=40),
        make_raw("tech-spec", 700, "technical-specification", age_days=10),
        make_raw("risks", 300, "risk-register", age_days=100),
        make_raw("stakeholders", 250, "stakeholder-register", age_days=2),
        make_raw("benefits", 350, "benefits-realization-plan", age_days=400),
        make_raw("plan", 600, "project-plan", age_days=20),
        make_raw("comms", 200, "communication-plan", age_days=60),
        make_raw("quality", 220, "quality-plan", age_days=200),
        make_raw("notes-1", 150, "meeting-notes", age_days=1),
        make_raw("notes-2", 180, "meeting-notes", age_days=500),
        make_raw("glossary", 120, "glossary", age_days=30, quality_score=20),
    ]


@pytest.fixture
def mixed_snapshot(mixed_raws: list[RawDocument]) -> CorpusSnapshot:
    return index_corpus(mixed_raws)


@pytest.fixture
def tmp_project(tmp_path: Path) -> Path:
    """Create a temporary project directory with sample documents."""
    docs = tmp_path / "docs"
    docs.mkdir()
    (docs / "project-charter.md").write_text(
        "# Project Charter\n\n" + make_content(300, seed=1, appendix_words=40)
    )
    (docs / "requirements-specification.md").write_text(
        "# Requirements\n\n" + make_content(500, seed=2)
    )
    (docs / "risk-register.md").write_text("# Risk Register\n\n" + make_content(200, seed=3))
    (tmp_path / "meeting-notes.txt").write_text(make_content(120, seed=4))
    (tmp_path / "empty.md").write_text("")
    (tmp_path / "diagram.png").write_bytes(b"\x89PNG")

    node_modules = tmp_path / "node_modules"
    node_modules.mkdir()
    (node_modules / "readme.md").write_text("should be excluded")

    (tmp_path / "corpus.json").write_text(
        '{"docs/project-charter.md": {"priority_tier": "critical", "quality_score": 90},'
        ' "docs/risk-register.md": {"document_type": "risk-register", "status": "approved"}}'
    )
    return tmp_path
