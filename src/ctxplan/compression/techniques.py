"""Compression techniques.

Each technique takes a record and a target token count and returns a
CompressionCandidate, ``None`` when it does not apply to the document, or
raises CompressionFailure. Output sizes are bounded by the technique's
ratio window of the original token count:

    prioritized-trim   drop low-value sections (appendix, glossary, ...)
    chunk              keep the best chunks, at least chunk_min_ratio
    summarize          external summarizer, summarize_ratio window
    keyword-extract    key terms + key sentences, keyword_ratio window
"""

from __future__ import annotations

import math
import re
from collections import Counter
from collections.abc import Callable
from dataclasses import dataclass

from ctxplan.compression.models import CompressionCandidate, Technique
from ctxplan.config import CompressionConfig
from ctxplan.corpus.models import DocumentRecord, Tokenizer
from ctxplan.exceptions import CompressionFailure

# (text, target_tokens, timeout_s) -> summary; raises on any failure
Summarizer = Callable[[str, int, float], str]

_HEADING_RE = re.compile(r"^(#{1,6})\s+(.*?)\s*#*\s*$")
_WORD_RE = re.compile(r"[a-z][a-z0-9'-]{3,}")
_SENTENCE_SPLIT = re.compile(r"(?<=[.!?])\s+|\n+")
_SEPARATORS = ("\n\n", "\n", ". ", " ")
# Very large documents get fewer, larger chunks
_MAX_CHUNKS = 64

# Headings worth keeping when chunking, by document type
_HIGH_VALUE_HEADINGS: dict[str, tuple[str, ...]] = {
    "requirements-specification": (
        "requirements", "functional requirements", "non-functional requirements", "acceptance criteria",
    ),
    "technical-specification": (
        "architecture", "technical requirements", "system design", "api specifications",
    ),
    "project-charter": (
        "project objectives", "success criteria", "key deliverables", "project scope",
    ),
    "default": ("overview", "objectives", "requirements", "specifications", "summary", "scope"),
}

_STOP_WORDS = frozenset({
    "that", "this", "with", "from", "have", "been", "will", "should", "would",
    "could", "into", "when", "where", "what", "which", "there", "their", "about",
    "also", "just", "more", "some", "than", "them", "then", "these", "very",
    "after", "before", "between", "each", "other", "such", "only", "make",
    "like", "over", "back", "still", "through", "they", "were", "shall", "must",
    "does", "being", "here", "your", "those", "while", "within", "across",
})


@dataclass
class TechniqueContext:
    """What a technique needs besides the document itself."""

    tokenizer: Tokenizer
    config: CompressionConfig
    summarizer: Summarizer | None = None


@dataclass
class Chunk:
    index: int
    heading: str
    text: str
    tokens: int


def ratio_cap(target: int, original: int, lo: float, hi: float | None = None) -> int:
    """Clamp a target token count into [lo * original, hi * original]."""
    upper = original if hi is None else int(original * hi)
    return max(int(original * lo), min(max(target, 0), upper))


# ---------------------------------------------------------------------------
# Text helpers
# ---------------------------------------------------------------------------

def split_sections(text: str) -> list[tuple[int, str, str]]:
    """Split markdown into (level, heading, body) sections. Preamble has level 0."""
    sections: list[tuple[int, str, list[str]]] = [(0, "", [])]
    for line in text.split("\n"):
        m = _HEADING_RE.match(line)
        if m:
            sections.append((len(m.group(1)), m.group(2).strip(), [line]))
        else:
            sections[-1][2].append(line)
    return [
        (level, heading, "\n".join(lines))
        for level, heading, lines in sections
        if level or any(l.strip() for l in lines)
    ]


def split_to_limit(
    text: str, limit: int, tokenizer: Tokenizer, separators: tuple[str, ...] = _SEPARATORS
) -> list[str]:
    """Recursively split text into pieces of at most `limit` tokens where possible."""
    if tokenizer(text) <= limit or not separators:
        return [text]
    sep, rest = separators[0], separators[1:]
    parts = [p for p in text.split(sep) if p.strip()]
    if len(parts) <= 1:
        return split_to_limit(text, limit, tokenizer, rest)

    pieces: list[str] = []
    current: list[str] = []
    current_tokens = 0
    for part in parts:
        part_tokens = tokenizer(part)
        if part_tokens > limit:
            if current:
                pieces.append(sep.join(current))
                current, current_tokens = [], 0
            pieces.extend(split_to_limit(part, limit, tokenizer, rest))
            continue
        if current and current_tokens + part_tokens > limit:
            pieces.append(sep.join(current))
            current, current_tokens = [], 0
        current.append(part)
        current_tokens += part_tokens
    if current:
        pieces.append(sep.join(current))
    return pieces


def build_chunks(text: str, limit: int, tokenizer: Tokenizer) -> list[Chunk]:
    chunks: list[Chunk] = []
    for _, heading, body in split_sections(text):
        for piece in split_to_limit(body, limit, tokenizer):
            if piece.strip():
                chunks.append(Chunk(len(chunks), heading.lower(), piece, tokenizer(piece)))
    return chunks


def extract_keywords(text: str, limit: int = 20) -> list[str]:
    """Most frequent significant words, ties broken alphabetically."""
    counts = Counter(w for w in _WORD_RE.findall(text.lower()) if w not in _STOP_WORDS)
    return [w for w, _ in sorted(counts.items(), key=lambda kv: (-kv[1], kv[0]))[:limit]]


def key_sentences(text: str, keywords: list[str]) -> list[str]:
    """Sentences ordered by keyword density, ties by position."""
    keyword_set = set(keywords)
    seen: set[str] = set()
    scored = []
    for i, sentence in enumerate(_SENTENCE_SPLIT.split(text)):
        sentence = sentence.strip().lstrip("#-* ").strip()
        if len(sentence) < 20 or len(sentence) > 400 or sentence in seen:
            continue
        seen.add(sentence)
        words = _WORD_RE.findall(sentence.lower())
        if not words:
            continue
        hits = sum(1 for w in words if w in keyword_set)
        scored.append((-(hits / len(words)), i, sentence))
    scored.sort()
    return [s for _, _, s in scored]


def _candidate(
    record: DocumentRecord,
    technique: Technique,
    content: str,
    tokenizer: Tokenizer,
    quality: float,
    **extra,
) -> CompressionCandidate:
    return CompressionCandidate(
        document_id=record.id,
        technique=technique,
        content=content,
        original_token_count=record.token_count,
        result_token_count=tokenizer(content),
        estimated_quality_preservation=round(min(1.0, max(0.0, quality)), 3),
        **extra,
    )


# ---------------------------------------------------------------------------
# Techniques
# ---------------------------------------------------------------------------

def no_compression(record: DocumentRecord, target: int, ctx: TechniqueContext) -> CompressionCandidate:
    return CompressionCandidate(
        document_id=record.id,
        technique=Technique.NONE,
        content=record.content,
        original_token_count=record.token_count,
        result_token_count=record.token_count,
        estimated_quality_preservation=1.0,
    )


def prioritized_trim(record: DocumentRecord, target: int, ctx: TechniqueContext) -> CompressionCandidate | None:
    """Drop low-value sections, including their subsections."""
    low_value = [p.lower() for p in ctx.config.low_value_sections]
    kept: list[str] = []
    dropping_level: int | None = None
    dropped = False

    for level, heading, body in split_sections(record.content):
        if dropping_level is not None:
            if level == 0 or level > dropping_level:
                continue
            dropping_level = None
        if level and any(p in heading.lower() for p in low_value):
            dropping_level = level
            dropped = True
            continue
        kept.append(body)

    if not dropped:
        return None

    content = re.sub(r"\n{3,}", "\n\n", "\n".join(kept)).strip()
    if not content:
        return None
    result_tokens = ctx.tokenizer(content)
    dropped_ratio = 1 - result_tokens / max(record.token_count, 1)
    return _candidate(
        record, Technique.PRIORITIZED_TRIM, content, ctx.tokenizer,
        quality=1.0 - 0.25 * max(0.0, dropped_ratio),
    )


def chunk_select(record: DocumentRecord, target: int, ctx: TechniqueContext) -> CompressionCandidate | None:
    """Keep the highest-scoring chunks in original order, recording what was left out."""
    original = record.token_count
    cap = ratio_cap(target, original, ctx.config.chunk_min_ratio)
    limit = max(
        1,
        min(ctx.config.chunk_max_tokens, math.ceil(original / 8)),
        math.ceil(original / _MAX_CHUNKS),
    )
    chunks = build_chunks(record.content, limit, ctx.tokenizer)
    if len(chunks) < 2:
        return None

    keywords = set(extract_keywords(record.content))
    high = _HIGH_VALUE_HEADINGS.get(record.document_type, _HIGH_VALUE_HEADINGS["default"])
    scores: list[float] = []
    for chunk in chunks:
        words = _WORD_RE.findall(chunk.text.lower())
        density = sum(1 for w in words if w in keywords) / len(words) if words else 0.0
        heading_bonus = 1.0 if any(h in chunk.heading for h in high) else 0.0
        position_bonus = 0.5 / (1 + chunk.index)
        scores.append(heading_bonus + density + position_bonus)

    ranking = sorted(range(len(chunks)), key=lambda i: (-scores[i], i))
    selected: set[int] = set()
    used = 0
    for i in ranking:
        if used + chunks[i].tokens <= cap:
            selected.add(i)
            used += chunks[i].tokens
    if not selected:
        selected.add(ranking[0])

    # Omission markers cost tokens too, shed the weakest chunks until it fits
    while True:
        content = _assemble_chunks(chunks, selected)
        result_tokens = ctx.tokenizer(content)
        if result_tokens <= cap or len(selected) == 1:
            break
        selected.remove(max(selected, key=lambda i: (-scores[i], i)))

    kept_tokens = sum(chunks[i].tokens for i in selected)
    total_tokens = sum(c.tokens for c in chunks) or 1
    return CompressionCandidate(
        document_id=record.id,
        technique=Technique.CHUNK,
        content=content,
        original_token_count=original,
        result_token_count=result_tokens,
        estimated_quality_preservation=round(0.5 + 0.4 * kept_tokens / total_tokens, 3),
        chunk_count=len(chunks),
        omitted_chunks=tuple(i for i in range(len(chunks)) if i not in selected),
    )


def _assemble_chunks(chunks: list[Chunk], selected: set[int]) -> str:
    parts: list[str] = []
    gap = 0
    for chunk in chunks:
        if chunk.index in selected:
            if gap:
                parts.append(f"[... {gap} chunk(s) omitted ...]")
                gap = 0
            parts.append(chunk.text)
        else:
            gap += 1
    if gap:
        parts.append(f"[... {gap} chunk(s) omitted ...]")
    return "\n\n".join(parts)


def summarize(record: DocumentRecord, target: int, ctx: TechniqueContext) -> CompressionCandidate | None:
    """Delegate to the external summarizer. Not reversible."""
    if ctx.summarizer is None:
        return None
    lo, hi = ctx.config.summarize_ratio
    cap = max(1, ratio_cap(target, record.token_count, lo, hi))
    try:
        summary = ctx.summarizer(record.content, cap, ctx.config.summarize_timeout_s)
    except CompressionFailure:
        raise
    except Exception as e:
        raise CompressionFailure(Technique.SUMMARIZE.value, str(e) or type(e).__name__) from e
    if not summary or not summary.strip():
        raise CompressionFailure(Technique.SUMMARIZE.value, "empty summary")
    return _candidate(
        record, Technique.SUMMARIZE, summary.strip(), ctx.tokenizer,
        quality=ctx.config.summarize_quality,
    )


def keyword_extract(record: DocumentRecord, target: int, ctx: TechniqueContext) -> CompressionCandidate:
    """Key terms plus the densest sentences, grown until the ratio cap."""
    lo, hi = ctx.config.keyword_ratio
    cap = ratio_cap(target, record.token_count, lo, hi)
    tok = ctx.tokenizer
    keywords = extract_keywords(record.content)

    header = f"# {record.name} ({record.document_type}) [key terms]"
    lines = [header]
    used = tok(header)

    shown: list[str] = []
    for kw in keywords:
        line = "Keywords: " + ", ".join(shown + [kw])
        if shown and used + tok(line) > cap:
            break
        shown.append(kw)
    if shown:
        line = "Keywords: " + ", ".join(shown)
        lines.append(line)
        used += tok(line)

    for sentence in key_sentences(record.content, keywords):
        line = f"- {sentence}"
        cost = tok(line)
        if used + cost > cap:
            continue
        lines.append(line)
        used += cost

    return _candidate(
        record, Technique.KEYWORD_EXTRACT, "\n".join(lines), tok,
        quality=ctx.config.keyword_quality,
    )


TechniqueFn = Callable[[DocumentRecord, int, TechniqueContext], "CompressionCandidate | None"]

TECHNIQUES: dict[Technique, TechniqueFn] = {
    Technique.NONE: no_compression,
    Technique.PRIORITIZED_TRIM: prioritized_trim,
    Technique.CHUNK: chunk_select,
    Technique.SUMMARIZE: summarize,
    Technique.KEYWORD_EXTRACT: keyword_extract,
}
