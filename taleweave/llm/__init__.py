"""LLM provider package backing the generation adapter."""

from .provider import LLMProvider, LLMResponse

__all__ = ["LLMProvider", "LLMResponse"]
