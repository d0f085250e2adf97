"""Picks the provider and model each agent talks to."""

import logging

from ..config import Config
from .anthropic_provider import AnthropicProvider
from .provider import LLMProvider

logger = logging.getLogger(__name__)

# Provider name -> (implementation, Config attribute holding its key)
PROVIDERS: dict[str, tuple[type[LLMProvider], str]] = {
    "anthropic": (AnthropicProvider, "ANTHROPIC_API_KEY"),
}

# Agent name -> Config attribute holding its model override
AGENT_MODEL_SETTINGS: dict[str, str] = {
    "narrator": "NARRATOR_MODEL",
}


class LLMManager:
    """Builds providers from configured keys and caches them."""

    def __init__(
        self,
        primary_provider: str | None = None,
        anthropic_api_key: str | None = None,
    ):
        """
        Args:
            primary_provider: Provider to prefer; defaults to LLM_PROVIDER
            anthropic_api_key: Overrides ANTHROPIC_API_KEY

        Raises:
            ValueError: no provider has a key
        """
        self._keys = {
            name: getattr(Config, key_setting) for name, (_, key_setting) in PROVIDERS.items()
        }
        if anthropic_api_key:
            self._keys["anthropic"] = anthropic_api_key

        available = self.list_available_providers()
        if not available:
            raise ValueError("No LLM API keys configured. Set ANTHROPIC_API_KEY")

        requested = (primary_provider or Config.LLM_PROVIDER or "").lower()
        if requested and requested not in available:
            logger.warning(f"LLM provider '{requested}' has no key; using {available[0]}")
        self._primary = requested if requested in available else available[0]
        self._providers: dict[str, LLMProvider] = {}

    @property
    def primary_provider(self) -> str:
        return self._primary

    def list_available_providers(self) -> list[str]:
        """Providers that have an API key."""
        return [name for name, key in self._keys.items() if key]

    def get_provider(self, provider_name: str | None = None) -> LLMProvider:
        name = provider_name or self._primary
        if name not in self._providers:
            if name not in PROVIDERS:
                raise ValueError(f"Unknown provider: {name}")
            if not self._keys.get(name):
                raise ValueError(f"No API key configured for {name}")
            provider_class, _ = PROVIDERS[name]
            self._providers[name] = provider_class(api_key=self._keys[name])
        return self._providers[name]

    def get_provider_for_agent(self, agent_name: str) -> tuple[LLMProvider, str]:
        """The primary provider plus the agent's model override, if one is set."""
        provider = self.get_provider()
        setting = AGENT_MODEL_SETTINGS.get(agent_name)
        override = getattr(Config, setting) if setting else ""
        return provider, override or provider.model


_manager: LLMManager | None = None


def get_llm_manager() -> LLMManager:
    """Get the global LLM manager, building it from config on first use."""
    global _manager
    if _manager is None:
        _manager = LLMManager()
        logger.info(f"LLM manager ready (primary provider: {_manager.primary_provider})")
    return _manager


def reset_llm_manager():
    global _manager
    _manager = None
