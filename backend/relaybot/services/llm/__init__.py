"""Assistant provider factory."""

from relaybot.core.config import settings
from relaybot.services.llm.base import BaseAssistantProvider


def get_assistant_provider() -> BaseAssistantProvider:
    """Factory function that returns the configured assistant provider."""
    if settings.llm_provider == "openai":
        from relaybot.services.llm.openai_assistants import OpenAIAssistantsProvider
        return OpenAIAssistantsProvider()
    else:
        raise ValueError(f"Unknown LLM provider: {settings.llm_provider}")
