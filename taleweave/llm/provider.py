"""Abstract LLM provider interface."""

import asyncio
import logging
from abc import ABC, abstractmethod
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any, TypeVar

from pydantic import BaseModel

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class LLMResponse:
    """Standard response from any LLM provider."""

    content: str
    """The text content of the response."""

    model: str = ""
    """The model that generated this response."""

    usage: dict[str, int] = field(default_factory=dict)
    """Token usage: {prompt_tokens, completion_tokens, total_tokens}."""

    raw_response: Any = None
    """The raw response object from the provider."""


class LLMProvider(ABC):
    """Abstract base class for LLM providers.

    Implementations must support:
    - Standard text completion
    - Structured output matching a Pydantic schema
    """

    def __init__(self, api_key: str, default_model: str | None = None):
        """Initialize the provider.

        Args:
            api_key: API key for the provider
            default_model: Default model to use
        """
        self.api_key = api_key
        self.default_model = default_model or self.get_default_model()
        self._client = None

    @property
    @abstractmethod
    def name(self) -> str:
        """Provider name (e.g., 'anthropic')."""
        pass

    @abstractmethod
    def get_default_model(self) -> str:
        """Get the default model for this provider."""
        pass

    @abstractmethod
    async def complete(
        self,
        messages: list[dict[str, str]],
        system: str | None = None,
        model: str | None = None,
        max_tokens: int = 1024,
        temperature: float = 0.7,
    ) -> LLMResponse:
        """Generate a text completion."""
        pass

    @abstractmethod
    async def complete_with_schema(
        self,
        messages: list[dict[str, str]],
        schema: type[BaseModel],
        system: str | None = None,
        model: str | None = None,
        max_tokens: int = 1024,
    ) -> BaseModel:
        """Generate a structured completion matching a Pydantic schema.

        Returns:
            Parsed Pydantic model instance
        """
        pass

    # ── Retry helper ──────────────────────────────────────────────

    @staticmethod
    def _is_retryable(exc: Exception) -> bool:
        """Check if an exception is a transient overload/rate-limit error."""
        cls_name = type(exc).__name__

        if cls_name in ("OverloadedError", "RateLimitError"):
            return True

        status = getattr(exc, "status_code", None)
        if status in (429, 529):
            return True

        err_body = getattr(exc, "body", None)
        if isinstance(err_body, dict):
            err_type = err_body.get("error", {}).get("type", "")
            if err_type in ("overloaded_error", "rate_limit_error"):
                return True

        return False

    async def _run_with_retry(
        self,
        sync_fn: Callable[..., T],
        max_retries: int = 3,
        base_delay: float = 2.0,
    ) -> T:
        """Run a synchronous SDK call in an executor with retry on overload.

        Usage:
            result = await self._run_with_retry(lambda: self._client.messages.create(**kwargs))
        """
        loop = asyncio.get_running_loop()
        last_exc = None
        for attempt in range(max_retries + 1):
            try:
                return await loop.run_in_executor(None, sync_fn)
            except Exception as exc:
                if not self._is_retryable(exc) or attempt == max_retries:
                    raise
                last_exc = exc
                delay = base_delay * (2 ** attempt)
                logger.warning(f"[{self.name}] {type(exc).__name__}, retrying in {delay:.0f}s "
                               f"(attempt {attempt + 1}/{max_retries})")
                await asyncio.sleep(delay)
        raise last_exc  # unreachable

    # ── Client lifecycle ─────────────────────────────────────────

    def _ensure_client(self):
        """Ensure the client is initialized (lazy loading)."""
        if self._client is None:
            self._init_client()

    @abstractmethod
    def _init_client(self):
        """Initialize the provider's client."""
        pass
