"""Configuration management for ctxplan."""

from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field

CTXPLAN_DIR = ".ctxplan"
CONFIG_FILE = "config.json"
CORPUS_MANIFEST = "corpus.json"


class LLMConfig(BaseModel):
    """LLM provider used for the summarize compression technique."""

    provider: str = ""  # empty = summarization disabled
    model: str = "gpt-4o-mini"
    api_key_env: str = ""
    base_url: str | None = None
    temperature: float = 0.0

    @property
    def api_key(self) -> str | None:
        if self.api_key_env:
            return os.environ.get(self.api_key_env)
        env_map = {
            "openai": "OPENAI_API_KEY",
            "anthropic": "ANTHROPIC_API_KEY",
        }
        env_var = env_map.get(self.provider, "")
        return os.environ.get(env_var)


class ScoringConfig(BaseModel):
    """Relevance scoring weights."""

    quality_weight: float = 1.0
    relatedness_bonus: float = 50.0
    tier_bonus: dict[str, float] = Field(
        default_factory=lambda: {"critical": 30.0, "high": 15.0, "medium": 5.0, "low": 0.0}
    )
    recency_bonus: float = 10.0
    freshness_window_days: float = 30.0
    workers: int = 4


class CompressionConfig(BaseModel):
    """Compression ladder tuning."""

    workers: int = 4
    summarize_timeout_s: float = 30.0
    # Output bounds as fractions of the original token count
    chunk_min_ratio: float = 0.4
    summarize_ratio: tuple[float, float] = (0.2, 0.3)
    keyword_ratio: tuple[float, float] = (0.1, 0.2)
    summarize_quality: float = 0.88
    keyword_quality: float = 0.72
    chunk_max_tokens: int = 2000
    low_value_sections: list[str] = Field(
        default_factory=lambda: [
            "appendix",
            "appendices",
            "glossary",
            "references",
            "bibliography",
            "revision history",
            "document control",
            "disclaimer",
        ]
    )


class AllocationConfig(BaseModel):
    """Budget allocation and layered loading."""

    safety_margin: float = 0.05
    min_viable_tokens: int = 200
    large_corpus_threshold: int = 100
    layer_count: int = 4
    docs_per_layer: int = 25
    refinement_rounds: int = 3


class ProviderOverride(BaseModel):
    provider_id: str
    max_context_tokens: int
    safety_margin: float | None = None


class ProjectConfig(BaseModel):
    """Full project configuration."""

    name: str = ""
    root_path: str = "."
    llm: LLMConfig = Field(default_factory=LLMConfig)
    scoring: ScoringConfig = Field(default_factory=ScoringConfig)
    compression: CompressionConfig = Field(default_factory=CompressionConfig)
    allocation: AllocationConfig = Field(default_factory=AllocationConfig)
    providers: list[ProviderOverride] = Field(default_factory=list)
    exclude_patterns: list[str] = Field(
        default_factory=lambda: [
            ".ctxplan",
            ".git",
            "node_modules",
            "__pycache__",
            "*.tmp",
            "~$*",
        ]
    )


def find_project_root(start: Path | None = None) -> Path | None:
    """Walk up from `start` looking for a .ctxplan directory."""
    current = (start or Path.cwd()).resolve()
    while current != current.parent:
        if (current / CTXPLAN_DIR).is_dir():
            return current
        current = current.parent
    if (current / CTXPLAN_DIR).is_dir():
        return current
    return None


def get_ctxplan_dir(root: Path) -> Path:
    """Get the .ctxplan directory for a project root."""
    return root / CTXPLAN_DIR


def load_config(root: Path) -> ProjectConfig:
    """Load configuration from .ctxplan/config.json."""
    config_path = get_ctxplan_dir(root) / CONFIG_FILE
    if config_path.exists():
        data = json.loads(config_path.read_text())
        return ProjectConfig(**data)
    return ProjectConfig(name=root.name, root_path=str(root))


def save_config(root: Path, config: ProjectConfig) -> None:
    """Save configuration to .ctxplan/config.json."""
    cp_dir = get_ctxplan_dir(root)
    cp_dir.mkdir(parents=True, exist_ok=True)
    config_path = cp_dir / CONFIG_FILE
    config_path.write_text(json.dumps(config.model_dump(), indent=2))


def set_config_value(config: ProjectConfig, key: str, value: Any) -> ProjectConfig:
    """Set a nested config value using dot notation (e.g., 'allocation.safety_margin')."""
    parts = key.split(".")
    data = config.model_dump()
    target = data
    for part in parts[:-1]:
        if part not in target or not isinstance(target[part], dict):
            raise KeyError(f"Invalid config key: {key}")
        target = target[part]
    if parts[-1] not in target:
        raise KeyError(f"Invalid config key: {key}")
    target[parts[-1]] = value
    return ProjectConfig(**data)
