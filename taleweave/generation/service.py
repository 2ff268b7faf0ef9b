"""Generation service contract and its LLM-backed implementation."""

import logging
from abc import ABC, abstractmethod

from ..config import config
from ..llm.provider import LLMProvider
from .schemas import (
    ChapterSummary,
    ChapterSummaryRequest,
    ChoiceEffects,
    ChoiceRequest,
    NarratorEffects,
    NarratorRequest,
)

logger = logging.getLogger(__name__)


class GenerationService(ABC):
    """Turns a player's action into narrative effect data."""

    @abstractmethod
    async def analyze_choice(self, request: ChoiceRequest) -> ChoiceEffects:
        """Full mode: narrative plus vitals, relationship and objective effects."""

    @abstractmethod
    async def narrate_turn(self, request: NarratorRequest) -> NarratorEffects:
        """Reduced mode: narrative, scene, summary and time of day only."""

    @abstractmethod
    async def summarize_chapter(self, request: ChapterSummaryRequest) -> str:
        """Summary shown at a chapter break."""


CHOICE_SYSTEM = """You are the game master of an interactive story.
Given the player's choice and the story state (JSON), continue the story and
report its effects by calling the respond tool.
- Vitals are changes, not totals. Items is the full inventory afterwards.
- selected_scene_id must be one of the listed scenes unless you define new_scene.
- When must_create_objective is true you MUST provide new_objective.
- Only mark an objective completed if the choice clearly fulfils it."""

NARRATOR_SYSTEM = """You narrate an interactive story. Continue it from the
player's choice, pick the best matching scene id, update the one-sentence
progression summary and the time of day. Respond with the respond tool."""

SUMMARY_SYSTEM = """Summarize the last chapter of an interactive story in
one evocative paragraph, written in the story's genre."""


class LLMGenerationService(GenerationService):
    """Generation backed by structured LLM output."""

    def __init__(self, provider: LLMProvider | None = None, model: str | None = None):
        if provider is None:
            from ..llm.anthropic_provider import AnthropicProvider
            provider = AnthropicProvider(
                api_key=config.ANTHROPIC_API_KEY,
                default_model=config.GENERATION_MODEL or None,
            )
        self.provider = provider
        self.model = model

    @staticmethod
    def _messages(payload) -> list[dict[str, str]]:
        return [{"role": "user", "content": payload.model_dump_json(indent=2)}]

    async def analyze_choice(self, request: ChoiceRequest) -> ChoiceEffects:
        logger.info(f"Analyzing choice for {request.character.name} (objective due: {request.must_create_objective})")
        return await self.provider.complete_with_schema(
            self._messages(request),
            ChoiceEffects,
            system=CHOICE_SYSTEM,
            model=self.model,
            max_tokens=2048,
        )

    async def narrate_turn(self, request: NarratorRequest) -> NarratorEffects:
        return await self.provider.complete_with_schema(
            self._messages(request),
            NarratorEffects,
            system=NARRATOR_SYSTEM,
            model=self.model,
        )

    async def summarize_chapter(self, request: ChapterSummaryRequest) -> str:
        result = await self.provider.complete_with_schema(
            self._messages(request),
            ChapterSummary,
            system=SUMMARY_SYSTEM,
            model=self.model,
        )
        return result.summary
