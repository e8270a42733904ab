"""The compression ladder.

Techniques are tried in order of increasing aggressiveness, stopping at the
first one whose result fits the target. A failing technique (the external
summarizer timing out, rate limiting, erroring) is logged and skipped; it
never aborts compression. If nothing fits, the smallest candidate produced is
returned and the caller decides what to do with it.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Sequence
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FuturesTimeoutError

from ctxplan.compression.models import (
    LADDER,
    WARNING_COMPRESSION_FAILURE,
    CompressionCandidate,
    Technique,
)
from ctxplan.compression.techniques import (
    TECHNIQUES,
    Summarizer,
    TechniqueContext,
    no_compression,
    ratio_cap,
)
from ctxplan.config import CompressionConfig
from ctxplan.corpus.models import DocumentRecord, TokenEstimator, Tokenizer
from ctxplan.exceptions import CompressionFailure

logger = logging.getLogger("ctxplan.compression")


class CompressionCache:
    """Candidates keyed by document, technique and effective size cap.

    Lives for one allocation run only.
    """

    def __init__(self) -> None:
        self._entries: dict[tuple, CompressionCandidate | CompressionFailure | None] = {}
        self._lock = threading.Lock()

    def get(self, key: tuple):
        with self._lock:
            return self._entries.get(key, _MISSING)

    def put(self, key: tuple, value) -> None:
        with self._lock:
            self._entries[key] = value

    def __len__(self) -> int:
        return len(self._entries)


_MISSING = object()


class CompressionPipeline:
    """Shrinks individual documents toward a token target."""

    def __init__(
        self,
        tokenizer: Tokenizer | None = None,
        config: CompressionConfig | None = None,
        summarizer: Summarizer | None = None,
    ) -> None:
        self.tokenizer = tokenizer or TokenEstimator.estimate
        self.config = config or CompressionConfig()
        self._summarizer = summarizer
        self._summary_pool: ThreadPoolExecutor | None = None
        self._pool_lock = threading.Lock()
        self.context = TechniqueContext(
            tokenizer=self.tokenizer,
            config=self.config,
            summarizer=self._timed_summarize if summarizer else None,
        )

    def close(self) -> None:
        if self._summary_pool is not None:
            self._summary_pool.shutdown(wait=False)
            self._summary_pool = None

    def __enter__(self) -> CompressionPipeline:
        return self

    def __exit__(self, *exc) -> None:
        self.close()

    # -------------------------------------------------------------------
    # Main entry points
    # -------------------------------------------------------------------

    def compress(
        self,
        doc: DocumentRecord,
        target_tokens: int,
        cache: CompressionCache | None = None,
    ) -> CompressionCandidate:
        """Walk the ladder until a technique fits `target_tokens`."""
        smallest: CompressionCandidate | None = None
        warnings: list[str] = []

        for technique in LADDER:
            try:
                candidate = self._run(technique, doc, target_tokens, cache)
            except CompressionFailure as e:
                logger.warning(
                    f"{e.technique} failed for {doc.id} ({e.message}), falling through"
                )
                warnings.append(
                    f"{WARNING_COMPRESSION_FAILURE}:{doc.id}:{e.technique}:{e.message}"
                )
                continue
            if candidate is None:
                continue
            if smallest is None or candidate.result_token_count < smallest.result_token_count:
                smallest = candidate
            if candidate.fits(target_tokens):
                logger.debug(
                    f"{doc.id}: {technique.value} {doc.token_count} -> "
                    f"{candidate.result_token_count} tokens (target {target_tokens})"
                )
                return _with_warnings(candidate, warnings)

        assert smallest is not None  # the 'none' rung always produces a candidate
        logger.debug(
            f"{doc.id}: nothing fits {target_tokens} tokens, "
            f"smallest is {smallest.technique.value} at {smallest.result_token_count}"
        )
        return _with_warnings(smallest, warnings)

    def floor(self, doc: DocumentRecord, cache: CompressionCache | None = None) -> CompressionCandidate:
        """The smallest footprint this document can be given without external calls."""
        full = self._run(Technique.NONE, doc, 0, cache)
        keywords = self._run(Technique.KEYWORD_EXTRACT, doc, 0, cache)
        if keywords is not None and keywords.result_token_count < full.result_token_count:
            return keywords
        return full

    def floors(
        self, docs: Sequence[DocumentRecord], cache: CompressionCache | None = None
    ) -> list[CompressionCandidate]:
        """Floor footprints for many documents, computed on the worker pool."""
        return self._map(lambda d: self.floor(d, cache), docs)

    # -------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------

    def _map(self, fn, items: Sequence) -> list:
        if len(items) <= 1 or self.config.workers <= 1:
            return [fn(item) for item in items]
        with ThreadPoolExecutor(max_workers=self.config.workers) as pool:
            return list(pool.map(fn, items))

    def _cache_key(self, technique: Technique, doc: DocumentRecord, target: int) -> tuple:
        cfg = self.config
        if technique is Technique.CHUNK:
            cap = ratio_cap(target, doc.token_count, cfg.chunk_min_ratio)
        elif technique is Technique.SUMMARIZE:
            cap = ratio_cap(target, doc.token_count, *cfg.summarize_ratio)
        elif technique is Technique.KEYWORD_EXTRACT:
            cap = ratio_cap(target, doc.token_count, *cfg.keyword_ratio)
        else:
            cap = None
        return (doc.id, technique.value, cap)

    def _run(
        self,
        technique: Technique,
        doc: DocumentRecord,
        target: int,
        cache: CompressionCache | None,
    ) -> CompressionCandidate | None:
        if technique is Technique.NONE:
            return no_compression(doc, target, self.context)
        if cache is None:
            return TECHNIQUES[technique](doc, target, self.context)

        # A summarizer that failed once for a document is not retried in the same run
        failed_key = (doc.id, technique.value, "failed")
        failure = cache.get(failed_key)
        if isinstance(failure, CompressionFailure):
            raise failure

        key = self._cache_key(technique, doc, target)
        cached = cache.get(key)
        if cached is not _MISSING:
            return cached
        try:
            candidate = TECHNIQUES[technique](doc, target, self.context)
        except CompressionFailure as e:
            cache.put(failed_key, e)
            raise
        cache.put(key, candidate)
        return candidate

    def _timed_summarize(self, text: str, target_tokens: int, timeout: float) -> str:
        """Call the summarizer on the bounded pool and give up after `timeout`.

        A call that times out is left to finish in the background; its result is
        discarded.
        """
        with self._pool_lock:
            if self._summary_pool is None:
                self._summary_pool = ThreadPoolExecutor(
                    max_workers=max(1, self.config.workers),
                    thread_name_prefix="ctxplan-summarize",
                )
            pool = self._summary_pool
        future = pool.submit(self._summarizer, text, target_tokens, timeout)
        try:
            return future.result(timeout=timeout)
        except FuturesTimeoutError:
            raise CompressionFailure(
                Technique.SUMMARIZE.value, f"timed out after {timeout:g}s"
            ) from None


def _with_warnings(candidate: CompressionCandidate, warnings: list[str]) -> CompressionCandidate:
    if not warnings:
        return candidate
    return candidate.model_copy(update={"warnings": candidate.warnings + tuple(warnings)})


__all__ = ["CompressionCache", "CompressionPipeline"]
