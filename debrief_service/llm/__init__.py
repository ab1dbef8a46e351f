"""LLM adapter package."""
from debrief_service.llm.base import (
    LLMProvider,
    LLMConfig,
    LLMResponse,
    Message,
    PromptBuilder,
)
from debrief_service.llm.schemas import SESSION_DEBRIEF_SCHEMA

__all__ = [
    "LLMProvider",
    "LLMConfig",
    "LLMResponse",
    "Message",
    "PromptBuilder",
    "SESSION_DEBRIEF_SCHEMA",
    "get_llm_provider",
    "cleanup_llm_provider",
]


# Module-level singleton instance
_provider_instance: LLMProvider | None = None


def get_llm_provider() -> LLMProvider:
    """
    Get the singleton LLM provider instance.

    Returns the appropriate provider based on settings.
    Uses singleton pattern to reuse HTTP connections and prevent resource leaks.
    """
    global _provider_instance

    if _provider_instance is not None:
        return _provider_instance

    from debrief_service.config.settings import get_settings

    settings = get_settings()

    if settings.llm_provider == "openai":
        from debrief_service.llm.openai_provider import OpenAIProvider
        _provider_instance = OpenAIProvider()
    elif settings.llm_provider == "anthropic":
        raise ValueError("Anthropic provider not yet implemented")
    else:
        raise ValueError(f"Unknown LLM provider: {settings.llm_provider}")

    return _provider_instance


async def cleanup_llm_provider():
    """
    Clean up the LLM provider singleton.

    Closes HTTP connections and releases resources.
    Should be called during application shutdown.
    """
    global _provider_instance

    if _provider_instance is not None:
        await _provider_instance.close()
        _provider_instance = None
