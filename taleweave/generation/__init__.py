"""Generation service contract, schemas and LLM adapter."""

from .service import GenerationService, LLMGenerationService

__all__ = ["GenerationService", "LLMGenerationService"]
