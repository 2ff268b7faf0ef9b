"""
Shared test fixtures for the Taleweave test suite.

Provides:
- MockLLMProvider: deterministic LLM stub (no API keys needed)
- FakeGenerationService: queued effect payloads for the engine
- Database fixtures: in-memory SQLite, reset for every test
- Clock and engine factory
- Markers: live (needs API keys)
"""

import asyncio
import os
import random
from collections import deque
from datetime import datetime, timedelta, timezone
from typing import Any

import pytest

# Set test environment BEFORE any taleweave imports
os.environ["DATABASE_URL"] = "sqlite:///:memory:"
os.environ.setdefault("ANTHROPIC_API_KEY", "test-key")

from pydantic import BaseModel

from taleweave.core.engine import StoryEngine
from taleweave.db.record_store import SqlRecordStore, reset_record_store
from taleweave.db.session import reset_engine
from taleweave.generation.schemas import (
    ChapterSummaryRequest,
    ChoiceEffects,
    ChoiceRequest,
    NarratorEffects,
    NarratorRequest,
)
from taleweave.generation.service import GenerationService
from taleweave.llm.provider import LLMProvider, LLMResponse
from taleweave.media.assets import AssetStore, VisualAsset, VisualGenerator

START = datetime(2026, 3, 10, 12, 0, tzinfo=timezone.utc)


# ---------------------------------------------------------------------------
# MockLLMProvider: deterministic stub
# ---------------------------------------------------------------------------

class MockLLMProvider(LLMProvider):
    """LLM provider that returns canned responses from a queue.

    Usage:
        provider = MockLLMProvider()
        provider.queue_schema_response(ChoiceEffects(...))
        result = await provider.complete_with_schema(messages, ChoiceEffects)
    """

    def __init__(self):
        super().__init__(api_key="mock-key", default_model="mock-model")
        self._response_queue: deque[LLMResponse] = deque()
        self._schema_queue: deque[BaseModel] = deque()
        self._call_history: list[dict[str, Any]] = []

    def queue_response(self, content: str = "", **kwargs):
        self._response_queue.append(LLMResponse(content=content, model="mock-model", **kwargs))

    def queue_schema_response(self, instance: BaseModel):
        self._schema_queue.append(instance)

    @property
    def call_history(self) -> list[dict[str, Any]]:
        return self._call_history

    @property
    def name(self) -> str:
        return "mock"

    def get_default_model(self) -> str:
        return "mock-model"

    async def complete(self, messages, system=None, model=None, max_tokens=1024, temperature=0.7) -> LLMResponse:
        self._call_history.append({
            "method": "complete",
            "messages": messages,
            "system": system,
            "model": model,
        })
        if self._response_queue:
            return self._response_queue.popleft()
        return LLMResponse(content="mock response", model="mock-model")

    async def complete_with_schema(self, messages, schema, system=None, model=None, max_tokens=1024) -> BaseModel:
        self._call_history.append({
            "method": "complete_with_schema",
            "messages": messages,
            "schema": schema,
            "system": system,
            "model": model,
        })
        if self._schema_queue:
            return self._schema_queue.popleft()
        return schema()

    def _init_client(self):
        pass  # No real client needed


# ---------------------------------------------------------------------------
# Engine collaborators
# ---------------------------------------------------------------------------

class FakeGenerationService(GenerationService):
    """Generation stub: pops queued payloads, defaults to an empty effect."""

    def __init__(self):
        self.choices: deque[ChoiceEffects | Exception] = deque()
        self.narrations: deque[NarratorEffects | Exception] = deque()
        self.summaries: deque[str] = deque()
        self.requests: list[BaseModel] = []

    def queue_choice(self, effects: ChoiceEffects | Exception):
        self.choices.append(effects)

    def queue_narration(self, effects: NarratorEffects | Exception):
        self.narrations.append(effects)

    @staticmethod
    def _pop(queue, default):
        item = queue.popleft() if queue else default
        if isinstance(item, Exception):
            raise item
        return item

    async def analyze_choice(self, request: ChoiceRequest) -> ChoiceEffects:
        self.requests.append(request)
        return self._pop(self.choices, ChoiceEffects())

    async def narrate_turn(self, request: NarratorRequest) -> NarratorEffects:
        self.requests.append(request)
        return self._pop(self.narrations, NarratorEffects(new_scenario="Time passes."))

    async def summarize_chapter(self, request: ChapterSummaryRequest) -> str:
        self.requests.append(request)
        return self.summaries.popleft() if self.summaries else "A chapter closes."


class FakeVisualGenerator(VisualGenerator):
    def __init__(self):
        self.prompts: list[str] = []

    async def generate(self, prompt: str) -> VisualAsset:
        self.prompts.append(prompt)
        return VisualAsset(data=prompt.encode())


class MemoryAssetStore(AssetStore):
    def __init__(self):
        self.uploads: dict[str, bytes] = {}

    async def upload(self, asset: VisualAsset, folder: str) -> str:
        url = f"mem://{folder}/{len(self.uploads)}"
        self.uploads[url] = asset.data
        return url


class Clock:
    """Controllable time source, callable like utcnow()."""

    def __init__(self, now: datetime = START):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


async def _drain_feeds(rounds: int = 5) -> None:
    """Let feed consumer tasks drain their queues."""
    for _ in range(rounds):
        await asyncio.sleep(0)


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

@pytest.fixture(autouse=True)
def fresh_db():
    """Reset the in-memory database before each test."""
    reset_engine()
    reset_record_store()
    yield
    reset_engine()
    reset_record_store()


@pytest.fixture
def store():
    return SqlRecordStore()


@pytest.fixture
def clock():
    return Clock()


@pytest.fixture
def generation():
    return FakeGenerationService()


@pytest.fixture
def visuals():
    return FakeVisualGenerator()


@pytest.fixture
def assets():
    return MemoryAssetStore()


@pytest.fixture
def settle():
    """Awaitable that lets background feed consumers catch up."""
    return _drain_feeds


@pytest.fixture
def mock_provider():
    """Fresh MockLLMProvider instance."""
    return MockLLMProvider()


@pytest.fixture
def make_engine(store, generation, visuals, assets, clock):
    """Factory for engines sharing one store (one per account or device)."""

    def _make(account_id: str = "alice", **kwargs) -> StoryEngine:
        kwargs.setdefault("generation", generation)
        kwargs.setdefault("visuals", visuals)
        kwargs.setdefault("assets", assets)
        kwargs.setdefault("clock", clock)
        kwargs.setdefault("rng", random.Random(7))
        kwargs.setdefault("store", store)
        return StoryEngine(account_id, **kwargs)

    return _make
