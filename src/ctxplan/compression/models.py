"""Data models for document compression."""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, ConfigDict, Field


class Technique(str, Enum):
    """Compression techniques, in order of increasing aggressiveness."""

    NONE = "none"
    PRIORITIZED_TRIM = "prioritized-trim"
    CHUNK = "chunk"
    SUMMARIZE = "summarize"
    KEYWORD_EXTRACT = "keyword-extract"

    @property
    def reversible(self) -> bool:
        return self in (Technique.NONE, Technique.CHUNK)


LADDER: tuple[Technique, ...] = (
    Technique.NONE,
    Technique.PRIORITIZED_TRIM,
    Technique.CHUNK,
    Technique.SUMMARIZE,
    Technique.KEYWORD_EXTRACT,
)


class CompressionCandidate(BaseModel):
    """A document rendered by one technique, with its cost and quality."""

    model_config = ConfigDict(frozen=True)

    document_id: str
    technique: Technique
    content: str
    original_token_count: int
    result_token_count: int
    estimated_quality_preservation: float = Field(ge=0.0, le=1.0)
    # Chunk technique only: indices of the chunks left out, so the original
    # can be reassembled later by fetching them from the record.
    chunk_count: int = 0
    omitted_chunks: tuple[int, ...] = ()
    warnings: tuple[str, ...] = ()

    @property
    def reversible(self) -> bool:
        return self.technique.reversible

    def fits(self, target_tokens: int) -> bool:
        return self.result_token_count <= target_tokens


# Prefix of plan warnings raised by a failed technique:
# "compression-failure:<document id>:<technique>:<message>"
WARNING_COMPRESSION_FAILURE = "compression-failure"
