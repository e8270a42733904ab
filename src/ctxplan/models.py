"""Request and plan value objects exchanged with callers.

``ContextPlan`` serializes to JSON with the camelCase field names callers
outside the process expect (``includedDocuments``, ``totalTokensUsed``, ...).
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from ctxplan.compression.models import Technique
from ctxplan.corpus.models import PriorityTier


class ClusteringStrategy(str, Enum):
    """How documents are grouped and ordered before allocation."""

    HIERARCHICAL = "hierarchical"  # critical/high/medium/low tiers
    CATEGORY = "category"  # strategic -> technical -> management -> reference
    TEMPORAL = "temporal"  # recency bands
    RELEVANCE = "relevance"  # one globally ordered cluster


class ExclusionReason(str, Enum):
    BUDGET_EXHAUSTED = "budget-exhausted"
    EXCEEDS_BUDGET_EVEN_COMPRESSED = "exceeds-budget-even-compressed"
    CANCELLED = "cancelled"
    INDEXING_ERROR = "indexing-error"
    OUTSIDE_LOADED_LAYERS = "outside-loaded-layers"


WARNING_CANCELLED = "cancelled"
WARNING_CRITICAL_OVERFLOW = "critical-document-overflow"


class ContextRequest(BaseModel):
    """What the caller wants context for."""

    model_config = ConfigDict(frozen=True)

    target_document_type: str = Field(min_length=1)
    provider_id: str | None = None
    max_tokens: int | None = Field(default=None, gt=0)
    strategy_hint: ClusteringStrategy | None = None
    preserve_critical_documents: bool = True
    hint_context: str | None = None
    # Recency is measured from here; defaults to the corpus snapshot time
    reference_time: datetime | None = None


class _PlanModel(BaseModel):
    model_config = ConfigDict(
        frozen=True,
        alias_generator=to_camel,
        populate_by_name=True,
    )


class IncludedDocument(_PlanModel):
    document_id: str
    technique_applied: Technique
    tokens_used: int
    original_tokens: int
    relevance_score: float
    priority_tier: PriorityTier
    tier: str = ""  # cluster label the document was allocated from
    estimated_quality_preservation: float = 1.0
    reversible: bool = True
    omitted_chunks: tuple[int, ...] = ()
    forced: bool = False  # critical overflow, budget relaxed
    content: str = Field(default="", repr=False)


class ExcludedDocument(_PlanModel):
    document_id: str
    reason: ExclusionReason
    original_tokens: int = 0
    relevance_score: float | None = None


class ContextPlan(_PlanModel):
    """The engine's sole output: which documents, in which form, for one call."""

    target_document_type: str
    included_documents: tuple[IncludedDocument, ...] = ()
    excluded_documents: tuple[ExcludedDocument, ...] = ()
    total_tokens_used: int = 0
    budget_tokens: int = 0
    utilization_percent: float = 0.0
    strategy_used: ClusteringStrategy = ClusteringStrategy.RELEVANCE
    loading_strategy: str = "full-load"
    budget_exceeded: bool = False
    warnings: tuple[str, ...] = ()

    @property
    def included_ids(self) -> list[str]:
        return [d.document_id for d in self.included_documents]

    @property
    def excluded_ids(self) -> list[str]:
        return [d.document_id for d in self.excluded_documents]

    @property
    def total_relevance(self) -> float:
        return sum(d.relevance_score for d in self.included_documents)

    def included(self, document_id: str) -> IncludedDocument | None:
        for doc in self.included_documents:
            if doc.document_id == document_id:
                return doc
        return None

    def excluded(self, document_id: str) -> ExcludedDocument | None:
        for doc in self.excluded_documents:
            if doc.document_id == document_id:
                return doc
        return None

    def to_json(self, include_content: bool = False, indent: int | None = 2) -> str:
        exclude = None
        if not include_content:
            exclude = {"included_documents": {"__all__": {"content"}}}
        return self.model_dump_json(by_alias=True, exclude=exclude, indent=indent)

    def render(self, include_metadata: bool = True) -> str:
        """Render the included documents as prompt-ready text."""
        sections: list[str] = []

        if include_metadata:
            sections.append(f"# Project Context for: {self.target_document_type}")
            sections.append(
                f"# {len(self.included_documents)} documents "
                f"(~{self.total_tokens_used:,} tokens, {self.utilization_percent:.0f}% of budget)"
            )
            sections.append("")

        for doc in self.included_documents:
            sections.append(f"## {doc.document_id}")
            if include_metadata and doc.technique_applied is not Technique.NONE:
                sections.append(
                    f"# [{doc.technique_applied.value}] "
                    f"{doc.tokens_used:,} of {doc.original_tokens:,} tokens"
                )
            sections.append("")
            sections.append(doc.content)
            sections.append("")

        return "\n".join(sections)

    def summary(self) -> str:
        """Human-readable summary of what's in the plan."""
        lines = [
            f"Context plan for: {self.target_document_type}",
            f"Strategy: {self.strategy_used.value} ({self.loading_strategy})",
            f"Tokens: {self.total_tokens_used:,} / {self.budget_tokens:,} "
            f"({self.utilization_percent:.1f}%)",
            f"Documents: {len(self.included_documents)} included, "
            f"{len(self.excluded_documents)} excluded",
            "",
            "Included documents:",
        ]
        for doc in self.included_documents:
            marker = "!" if doc.forced else ">"
            lines.append(
                f"  {marker} {doc.document_id} [{doc.priority_tier.value}] "
                f"{doc.technique_applied.value} ~{doc.tokens_used}tok "
                f"score={doc.relevance_score:.1f}"
            )
        if self.excluded_documents:
            lines.append("")
            lines.append("Excluded documents:")
            for doc in self.excluded_documents:
                lines.append(f"    {doc.document_id}: {doc.reason.value}")
        if self.warnings:
            lines.append("")
            lines.append("Warnings:")
            for warning in self.warnings:
                lines.append(f"  - {warning}")

        return "\n".join(lines)
