"""LLM provider package for TableDM."""

from .manager import LLMManager, get_llm_manager, reset_llm_manager
from .provider import LLMProvider, is_transient

__all__ = [
    "LLMProvider", "LLMManager", "get_llm_manager", "reset_llm_manager", "is_transient",
]
