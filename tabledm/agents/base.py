"""Structured-output agents."""

import logging
from abc import ABC, abstractmethod
from typing import Any

from pydantic import BaseModel

from ..llm import LLMProvider, get_llm_manager

logger = logging.getLogger(__name__)


class BaseAgent(ABC):
    """An LLM role with a fixed system prompt and a Pydantic output schema.

    The provider and model are looked up on every call, so new keys or a
    reset manager take effect without rebuilding agents.
    """

    agent_name: str = "unknown"
    max_tokens: int = 2048

    def __init__(self, model_override: str | None = None):
        self.model_override = model_override

    @property
    @abstractmethod
    def system_prompt(self) -> str:
        ...

    @property
    @abstractmethod
    def output_schema(self) -> type[BaseModel]:
        ...

    def resolve_model(self) -> tuple[LLMProvider, str]:
        manager = get_llm_manager()
        if self.model_override:
            return manager.get_provider(), self.model_override
        return manager.get_provider_for_agent(self.agent_name)

    async def call(self, user_message: str, max_tokens: int | None = None, **context: Any) -> BaseModel:
        """Ask the model, with ``context`` rendered as sections ahead of ``user_message``."""
        provider, model = self.resolve_model()
        logger.debug(f"{self.agent_name} -> {provider.name}/{model}")
        return await provider.complete_with_schema(
            messages=[{"role": "user", "content": render_prompt(user_message, context)}],
            schema=self.output_schema,
            system=self.system_prompt,
            model=model,
            max_tokens=max_tokens or self.max_tokens,
        )


def render_prompt(user_message: str, context: dict[str, Any]) -> str:
    """Lay out the user turn.

    Each non-empty context value becomes a titled section
    (``combat_state`` -> "## Combat State"), and the player's action
    always comes last.
    """
    sections = [
        f"## {key.replace('_', ' ').title()}\n{value}"
        for key, value in context.items()
        if value
    ]
    sections.append(f"## Player Action\n{user_message}")
    return "\n\n".join(sections)
