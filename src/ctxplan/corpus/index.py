"""Normalize raw documents into scoring-ready records."""

from __future__ import annotations

import logging
from collections.abc import Iterable
from datetime import datetime, timezone

from ctxplan.corpus.models import (
    CorpusSnapshot,
    DocumentRecord,
    IndexingFailure,
    PriorityTier,
    RawDocument,
    TokenEstimator,
    Tokenizer,
)
from ctxplan.exceptions import IndexingError

logger = logging.getLogger("ctxplan.corpus")

# Priority by document type, used when the source does not declare one
_TYPE_PRIORITY: dict[str, PriorityTier] = {
    "project-charter": PriorityTier.CRITICAL,
    "requirements-specification": PriorityTier.CRITICAL,
    "technical-specification": PriorityTier.CRITICAL,
    "risk-register": PriorityTier.HIGH,
    "stakeholder-register": PriorityTier.HIGH,
    "benefits-realization-plan": PriorityTier.HIGH,
    "project-plan": PriorityTier.MEDIUM,
    "communication-plan": PriorityTier.MEDIUM,
    "quality-plan": PriorityTier.MEDIUM,
}

_TYPE_CATEGORY: dict[str, str] = {
    "strategic-business-case": "strategic",
    "project-charter": "strategic",
    "benefits-realization-plan": "strategic",
    "requirements-specification": "technical",
    "technical-specification": "technical",
    "architecture-document": "technical",
    "risk-register": "management",
    "stakeholder-register": "management",
    "project-plan": "management",
    "communication-plan": "management",
    "quality-plan": "management",
}

DEFAULT_QUALITY = 50.0
_APPROVED_STATUSES = {"approved", "published"}


def infer_priority(document_type: str) -> PriorityTier:
    return _TYPE_PRIORITY.get(document_type, PriorityTier.LOW)


def infer_category(document_type: str) -> str:
    return _TYPE_CATEGORY.get(document_type, "reference")


class DocumentCorpusIndex:
    """Builds an immutable CorpusSnapshot from raw documents.

    A bad document never fails the batch: it is reported in the snapshot's
    failure list and left out of the records.
    """

    def __init__(self, tokenizer: Tokenizer | None = None) -> None:
        self.tokenizer = tokenizer or TokenEstimator.estimate

    def index(
        self,
        raw_documents: Iterable[RawDocument],
        indexed_at: datetime | None = None,
    ) -> CorpusSnapshot:
        indexed_at = indexed_at or datetime.now(timezone.utc)
        if indexed_at.tzinfo is None:
            indexed_at = indexed_at.replace(tzinfo=timezone.utc)
        records: list[DocumentRecord] = []
        failures: list[IndexingFailure] = []
        seen: set[str] = set()

        for raw in raw_documents:
            try:
                if raw.id and raw.id in seen:
                    raise IndexingError(raw.id, "duplicate document id")
                record = self._index_one(raw, indexed_at)
            except IndexingError as e:
                logger.warning(f"Skipping document {e.document_id}: {e.message}")
                failures.append(IndexingFailure(document_id=e.document_id, message=e.message))
                seen.add(raw.id)
                continue
            seen.add(raw.id)
            records.append(record)

        logger.info(
            f"Indexed {len(records)} document(s), {len(failures)} rejected, "
            f"{sum(r.token_count for r in records):,} tokens"
        )
        return CorpusSnapshot(
            records=tuple(records),
            failures=tuple(failures),
            indexed_at=indexed_at,
        )

    def _index_one(self, raw: RawDocument, indexed_at: datetime) -> DocumentRecord:
        if not raw.id:
            raise IndexingError("<unnamed>", "missing document id")
        if raw.load_error:
            raise IndexingError(raw.id, raw.load_error)
        if not raw.content or not raw.content.strip():
            raise IndexingError(raw.id, "empty content")

        try:
            token_count = int(self.tokenizer(raw.content))
        except (TypeError, ValueError) as e:
            raise IndexingError(raw.id, f"token count could not be measured ({e})") from e
        if token_count < 0:
            raise IndexingError(raw.id, "tokenizer returned a negative count")

        priority = raw.priority_tier or infer_priority(raw.document_type)
        if priority is PriorityTier.CRITICAL and token_count == 0:
            raise IndexingError(raw.id, "critical document has zero measurable tokens")

        if raw.quality_score is not None:
            quality = raw.quality_score
        else:
            quality = DEFAULT_QUALITY
            if raw.status.lower() in _APPROVED_STATUSES:
                quality += 20
        quality = min(100.0, max(0.0, float(quality)))

        last_modified = raw.last_modified or indexed_at
        if last_modified.tzinfo is None:
            last_modified = last_modified.replace(tzinfo=timezone.utc)

        return DocumentRecord(
            id=raw.id,
            name=raw.name or raw.id,
            document_type=raw.document_type,
            category=(raw.category or infer_category(raw.document_type)).lower(),
            priority_tier=priority,
            token_count=token_count,
            quality_score=quality,
            last_modified=last_modified,
            related_types=frozenset(raw.related_types),
            content=raw.content,
        )
