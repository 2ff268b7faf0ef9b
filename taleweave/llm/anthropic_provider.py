"""Anthropic Claude LLM provider."""

import json
import logging

from pydantic import BaseModel

from .provider import LLMProvider, LLMResponse

logger = logging.getLogger(__name__)


class AnthropicProvider(LLMProvider):
    """Anthropic Claude provider implementation."""

    @property
    def name(self) -> str:
        return "anthropic"

    def get_default_model(self) -> str:
        return "claude-sonnet-4-5"

    def _init_client(self):
        """Initialize the Anthropic client."""
        import anthropic
        self._client = anthropic.Anthropic(api_key=self.api_key)

    @staticmethod
    def _usage(message) -> dict[str, int]:
        usage = getattr(message, "usage", None)
        if usage is None:
            return {}
        return {
            "prompt_tokens": usage.input_tokens,
            "completion_tokens": usage.output_tokens,
            "total_tokens": usage.input_tokens + usage.output_tokens,
        }

    async def complete(
        self,
        messages: list[dict[str, str]],
        system: str | None = None,
        model: str | None = None,
        max_tokens: int = 1024,
        temperature: float = 0.7,
    ) -> LLMResponse:
        """Generate a text completion using Claude."""
        self._ensure_client()

        model_name = model or self.default_model
        kwargs = {
            "model": model_name,
            "max_tokens": max_tokens,
            "temperature": temperature,
            "system": system if system else "",
            "messages": messages,
        }

        message = await self._run_with_retry(lambda: self._client.messages.create(**kwargs))
        text = "".join(
            block.text for block in message.content if getattr(block, "type", "") == "text"
        )
        return LLMResponse(
            content=text,
            model=model_name,
            usage=self._usage(message),
            raw_response=message,
        )

    async def complete_with_schema(
        self,
        messages: list[dict[str, str]],
        schema: type[BaseModel],
        system: str | None = None,
        model: str | None = None,
        max_tokens: int = 1024,
    ) -> BaseModel:
        """Generate a structured completion using a forced tool call."""
        self._ensure_client()

        model_name = model or self.default_model

        # Create tool for structured output
        tools = [{
            "name": "respond",
            "description": f"Provide your response as a {schema.__name__}",
            "input_schema": schema.model_json_schema(),
        }]

        kwargs = {
            "model": model_name,
            "max_tokens": max_tokens,
            "system": system if system else "",
            "messages": messages,
            "tools": tools,
            "tool_choice": {"type": "tool", "name": "respond"},
        }

        message = await self._run_with_retry(lambda: self._client.messages.create(**kwargs))

        text_content = ""
        for block in message.content:
            block_type = getattr(block, "type", "")
            if block_type == "tool_use":
                input_data = block.input
                if isinstance(input_data, str):
                    input_data = json.loads(input_data)
                return schema.model_validate(input_data)
            if block_type == "text":
                text_content += block.text

        # Fallback: the model answered in plain JSON text
        if text_content:
            try:
                return schema.model_validate(json.loads(text_content))
            except (json.JSONDecodeError, ValueError) as e:
                logger.warning(f"Unparseable {schema.__name__} text response: {e}")

        raise ValueError(f"Could not parse structured {schema.__name__} response from Claude")
