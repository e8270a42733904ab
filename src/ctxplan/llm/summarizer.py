"""Adapter that lets an LLM provider act as the compression summarizer.

The compression pipeline calls summarizers synchronously from worker threads,
so each call runs the provider's coroutine on its own event loop.
"""

from __future__ import annotations

import asyncio
import logging

from ctxplan.compression.models import Technique
from ctxplan.config import LLMConfig
from ctxplan.exceptions import CompressionFailure
from ctxplan.llm.base import LLMProvider, Message
from ctxplan.llm.factory import create_provider

logger = logging.getLogger("ctxplan.llm")


def get_summary_prompt(target_tokens: int) -> str:
    """System prompt for document summarization."""
    return f"""You condense project documents so they fit into a limited context window.

## Rules
- Keep decisions, requirements, constraints, owners, dates and figures.
- Drop boilerplate, repetition, revision history and formatting noise.
- Keep the document's section structure where it helps, using short headings.
- Do not add information that is not in the document.
- Stay under roughly {target_tokens} tokens.

Reply with the summary only.
"""


class LLMSummarizer:
    """Callable ``(text, target_tokens, timeout_s) -> summary`` backed by an LLM."""

    def __init__(self, provider: LLMProvider, temperature: float = 0.0) -> None:
        self.provider = provider
        self.temperature = temperature

    @classmethod
    def from_config(cls, config: LLMConfig) -> LLMSummarizer:
        return cls(create_provider(config), temperature=config.temperature)

    async def asummarize(self, text: str, target_tokens: int, timeout: float) -> str:
        messages = [
            Message(role="system", content=get_summary_prompt(target_tokens)),
            Message(role="user", content=text),
        ]
        try:
            response = await asyncio.wait_for(
                self.provider.complete(
                    messages,
                    temperature=self.temperature,
                    max_tokens=max(1, target_tokens),
                ),
                timeout=timeout,
            )
        except asyncio.TimeoutError:
            raise CompressionFailure(
                Technique.SUMMARIZE.value, f"timed out after {timeout:g}s"
            ) from None

        if response.truncated:
            logger.debug(f"Summary hit the {target_tokens} token limit, keeping it truncated")
        return response.content

    def __call__(self, text: str, target_tokens: int, timeout: float) -> str:
        return asyncio.run(self.asummarize(text, target_tokens, timeout))
