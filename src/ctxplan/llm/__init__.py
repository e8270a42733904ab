"""LLM providers used for the summarize compression technique."""

from ctxplan.llm.base import LLMProvider, LLMResponse, Message
from ctxplan.llm.factory import create_provider
from ctxplan.llm.summarizer import LLMSummarizer

__all__ = ["LLMProvider", "LLMResponse", "LLMSummarizer", "Message", "create_provider"]
