"""Provider capability registry.

Maps an AI backend identity to its maximum context size and the safety
margin kept free of it. The registry can be refreshed between runs; an
allocation run only ever sees a frozen snapshot.
"""

from __future__ import annotations

import logging
import math
import threading
from collections.abc import Iterable, Mapping
from types import MappingProxyType

from pydantic import BaseModel, ConfigDict, Field

from ctxplan.exceptions import ConfigurationError

logger = logging.getLogger("ctxplan.planning")

DEFAULT_SAFETY_MARGIN = 0.05

DEFAULT_CAPACITIES: dict[str, int] = {
    "google-ai": 1_048_576,
    "google-ai-pro": 2_097_152,
    "openai": 128_000,
    "azure-openai": 128_000,
    "github-ai": 128_000,
    "anthropic": 200_000,
    "ollama": 8_192,
    "mistral": 32_768,
}


class ProviderCapability(BaseModel):
    """One backend's context limit."""

    model_config = ConfigDict(frozen=True)

    provider_id: str = Field(min_length=1)
    max_context_tokens: int = Field(gt=0)
    safety_margin: float = Field(default=DEFAULT_SAFETY_MARGIN, ge=0.0, lt=1.0)

    @property
    def budget_tokens(self) -> int:
        """Usable tokens once the safety margin is set aside."""
        return math.floor(self.max_context_tokens * (1.0 - self.safety_margin))


class ProviderCapabilityRegistry:
    """Thread-safe table of provider capabilities."""

    def __init__(
        self,
        capabilities: Iterable[ProviderCapability] | None = None,
        include_defaults: bool = True,
        safety_margin: float = DEFAULT_SAFETY_MARGIN,
    ) -> None:
        self.safety_margin = safety_margin
        self._lock = threading.Lock()
        self._table: dict[str, ProviderCapability] = {}
        if include_defaults:
            for provider_id, tokens in DEFAULT_CAPACITIES.items():
                self._table[provider_id] = ProviderCapability(
                    provider_id=provider_id,
                    max_context_tokens=tokens,
                    safety_margin=safety_margin,
                )
        for capability in capabilities or ():
            self._table[capability.provider_id] = capability

    def __contains__(self, provider_id: str) -> bool:
        with self._lock:
            return provider_id in self._table

    def __len__(self) -> int:
        with self._lock:
            return len(self._table)

    def register(
        self,
        provider_id: str,
        max_context_tokens: int,
        safety_margin: float | None = None,
    ) -> ProviderCapability:
        """Add or replace a provider."""
        capability = ProviderCapability(
            provider_id=provider_id,
            max_context_tokens=max_context_tokens,
            safety_margin=self.safety_margin if safety_margin is None else safety_margin,
        )
        with self._lock:
            self._table[provider_id] = capability
        logger.debug(f"Registered provider {provider_id}: {max_context_tokens:,} tokens")
        return capability

    def refresh(self, source: Iterable[tuple[str, int]] | Mapping[str, int]) -> int:
        """Load `(provider_id, max_context_tokens)` pairs from a capability source.

        Existing entries are replaced, others are kept. Returns the number of
        providers loaded.
        """
        pairs = source.items() if isinstance(source, Mapping) else source
        loaded = 0
        for provider_id, max_tokens in pairs:
            self.register(provider_id, int(max_tokens))
            loaded += 1
        logger.info(f"Refreshed {loaded} provider capabilit{'y' if loaded == 1 else 'ies'}")
        return loaded

    def snapshot(self) -> Mapping[str, ProviderCapability]:
        """A read-only copy that later registrations do not affect."""
        with self._lock:
            return MappingProxyType(dict(self._table))

    def copy(self) -> ProviderCapabilityRegistry:
        """An independent registry starting from the current entries."""
        return ProviderCapabilityRegistry(
            self.snapshot().values(), include_defaults=False, safety_margin=self.safety_margin
        )

    def get(self, provider_id: str) -> ProviderCapability | None:
        with self._lock:
            return self._table.get(provider_id)

    def budget_for(self, provider_id: str) -> int:
        capability = self.get(provider_id)
        if capability is None:
            raise ConfigurationError(
                f"Unknown provider '{provider_id}' and no max_tokens override given"
            )
        return capability.budget_tokens


def resolve_budget(
    snapshot: Mapping[str, ProviderCapability],
    provider_id: str | None,
    max_tokens: int | None,
) -> int:
    """Token budget for a request against a frozen registry snapshot.

    An explicit `max_tokens` is taken as the budget itself; a provider's
    capacity has its safety margin removed.
    """
    if max_tokens is not None:
        return max_tokens
    if not provider_id:
        raise ConfigurationError("Request needs a provider_id or a max_tokens override")
    capability = snapshot.get(provider_id)
    if capability is None:
        raise ConfigurationError(
            f"Unknown provider '{provider_id}' and no max_tokens override given"
        )
    return capability.budget_tokens
