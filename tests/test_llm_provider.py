"""Tests for LLMProvider, LLMResponse, the Anthropic provider and MockLLMProvider.

Covers the provider abstraction, response dataclass, structured-output
parsing and retry logic.
"""

import asyncio
from types import SimpleNamespace
from unittest.mock import MagicMock

import pytest
from pydantic import BaseModel

from taleweave.llm.anthropic_provider import AnthropicProvider
from taleweave.llm.provider import LLMProvider, LLMResponse


class Verdict(BaseModel):
    value: str = "default"
    score: int = 0


def _message(*blocks, input_tokens=12, output_tokens=7):
    return SimpleNamespace(
        content=list(blocks),
        usage=SimpleNamespace(input_tokens=input_tokens, output_tokens=output_tokens),
    )


def _provider(*responses) -> AnthropicProvider:
    provider = AnthropicProvider(api_key="test-key")
    provider._client = MagicMock()
    provider._client.messages.create.side_effect = list(responses)
    return provider


# ---------------------------------------------------------------------------
# Tests: LLMResponse
# ---------------------------------------------------------------------------

class TestLLMResponse:
    def test_creation_with_defaults(self):
        resp = LLMResponse(content="Hello")
        assert resp.content == "Hello"
        assert resp.model == ""
        assert resp.usage == {}
        assert resp.raw_response is None

    def test_empty_content(self):
        resp = LLMResponse(content="")
        assert resp.content == ""


# ---------------------------------------------------------------------------
# Tests: MockLLMProvider (from conftest)
# ---------------------------------------------------------------------------

class TestMockProvider:
    def test_complete_returns_queued(self, mock_provider):
        mock_provider.queue_response("Hello from mock")
        resp = asyncio.run(mock_provider.complete(messages=[{"role": "user", "content": "Hi"}]))
        assert resp.content == "Hello from mock"

    def test_complete_default_response(self, mock_provider):
        """When no response is queued, should return default."""
        resp = asyncio.run(mock_provider.complete(messages=[{"role": "user", "content": "Hi"}]))
        assert resp.content == "mock response"

    def test_schema_default_instance(self, mock_provider):
        result = asyncio.run(mock_provider.complete_with_schema([], Verdict))
        assert result == Verdict()
        assert mock_provider.call_history[-1]["schema"] is Verdict


# ---------------------------------------------------------------------------
# Tests: AnthropicProvider
# ---------------------------------------------------------------------------

class TestAnthropicProvider:
    def test_default_model(self):
        provider = AnthropicProvider(api_key="test-key")
        assert provider.name == "anthropic"
        assert provider.default_model == provider.get_default_model()

    def test_complete_joins_text_blocks(self):
        provider = _provider(_message(
            SimpleNamespace(type="text", text="Once "),
            SimpleNamespace(type="text", text="upon a time"),
        ))
        resp = asyncio.run(provider.complete([{"role": "user", "content": "Begin"}], system="Narrate"))
        assert resp.content == "Once upon a time"
        assert resp.usage == {"prompt_tokens": 12, "completion_tokens": 7, "total_tokens": 19}
        kwargs = provider._client.messages.create.call_args.kwargs
        assert kwargs["system"] == "Narrate"

    def test_schema_uses_forced_tool(self):
        provider = _provider(_message(
            SimpleNamespace(type="tool_use", input={"value": "brave", "score": 3}),
        ))
        result = asyncio.run(provider.complete_with_schema([{"role": "user", "content": "?"}], Verdict))
        assert result == Verdict(value="brave", score=3)
        kwargs = provider._client.messages.create.call_args.kwargs
        assert kwargs["tool_choice"] == {"type": "tool", "name": "respond"}
        assert kwargs["tools"][0]["input_schema"] == Verdict.model_json_schema()

    def test_schema_tool_input_as_string(self):
        provider = _provider(_message(
            SimpleNamespace(type="tool_use", input='{"value": "quiet"}'),
        ))
        result = asyncio.run(provider.complete_with_schema([], Verdict))
        assert result.value == "quiet"

    def test_schema_falls_back_to_json_text(self):
        provider = _provider(_message(SimpleNamespace(type="text", text='{"score": 9}')))
        result = asyncio.run(provider.complete_with_schema([], Verdict))
        assert result.score == 9

    def test_schema_unparseable_raises(self):
        provider = _provider(_message(SimpleNamespace(type="text", text="no json here")))
        with pytest.raises(ValueError):
            asyncio.run(provider.complete_with_schema([], Verdict))


# ---------------------------------------------------------------------------
# Tests: _is_retryable / _run_with_retry
# ---------------------------------------------------------------------------

class TestIsRetryable:
    def test_overloaded_error(self):
        class OverloadedError(Exception):
            pass
        assert LLMProvider._is_retryable(OverloadedError()) is True

    def test_rate_limit_error(self):
        class RateLimitError(Exception):
            pass
        assert LLMProvider._is_retryable(RateLimitError()) is True

    def test_status_429(self):
        exc = Exception("rate limited")
        exc.status_code = 429
        assert LLMProvider._is_retryable(exc) is True

    def test_status_529(self):
        exc = Exception("overloaded")
        exc.status_code = 529
        assert LLMProvider._is_retryable(exc) is True

    def test_normal_error_not_retryable(self):
        assert LLMProvider._is_retryable(ValueError("bad value")) is False

    def test_anthropic_body_error(self):
        exc = Exception("api error")
        exc.body = {"error": {"type": "overloaded_error"}}
        assert LLMProvider._is_retryable(exc) is True

    def test_anthropic_body_rate_limit(self):
        exc = Exception("api error")
        exc.body = {"error": {"type": "rate_limit_error"}}
        assert LLMProvider._is_retryable(exc) is True


class TestRunWithRetry:
    def test_retries_transient_errors(self):
        busy = Exception("busy")
        busy.status_code = 529
        provider = _provider(busy, "done")

        result = asyncio.run(provider._run_with_retry(
            lambda: provider._client.messages.create(), base_delay=0,
        ))
        assert result == "done"
        assert provider._client.messages.create.call_count == 2

    def test_gives_up_on_permanent_errors(self):
        provider = _provider(ValueError("bad request"))
        with pytest.raises(ValueError):
            asyncio.run(provider.complete([]))
        assert provider._client.messages.create.call_count == 1
