"""Anthropic (Claude) provider."""

import json
import logging
from typing import Any

import anthropic
from pydantic import ValidationError

from .provider import LLMProvider, Messages, SchemaT

logger = logging.getLogger(__name__)

# The one tool Claude is forced to call; its input is the structured answer
RESPOND_TOOL = "respond"


class AnthropicProvider(LLMProvider):
    """Claude over the Messages API.

    Structured output forces a single ``respond`` tool whose input schema is
    the Pydantic model's JSON schema. If the model answers in text anyway,
    the text is parsed as JSON.
    """

    name = "anthropic"
    default_model = "claude-sonnet-4-5"

    def _create_client(self) -> anthropic.Anthropic:
        return anthropic.Anthropic(api_key=self.api_key)

    async def complete_with_schema(
        self,
        messages: Messages,
        schema: type[SchemaT],
        system: str | None = None,
        model: str | None = None,
        max_tokens: int = 1024,
    ) -> SchemaT:
        request = {
            "model": model or self.model,
            "max_tokens": max_tokens,
            "system": system or "",
            "messages": messages,
            "tools": [{
                "name": RESPOND_TOOL,
                "description": f"Answer with a {schema.__name__}",
                "input_schema": schema.model_json_schema(),
            }],
            "tool_choice": {"type": "tool", "name": RESPOND_TOOL},
        }
        message = await self._call(lambda: self.client.messages.create(**request))
        self._log_usage(request["model"], message)

        text_parts = []
        for block in message.content:
            kind = getattr(block, "type", None)
            if kind == "tool_use":
                payload = block.input
                return schema.model_validate(json.loads(payload) if isinstance(payload, str) else payload)
            if kind == "text":
                text_parts.append(block.text)

        try:
            return schema.model_validate_json("".join(text_parts))
        except ValidationError as e:
            raise ValueError(f"Claude's answer is not a valid {schema.__name__}: {e}") from e

    @staticmethod
    def _log_usage(model: str, message: Any) -> None:
        usage = getattr(message, "usage", None)
        if usage is not None:
            logger.debug(f"{model}: {usage.input_tokens} in / {usage.output_tokens} out")
