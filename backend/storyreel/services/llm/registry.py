"""Provider registry for the text LLM.

Routes ``providers.text.provider`` to the matching adapter implementation:
"gemini" goes to the google-genai SDK, "chat" to any OpenAI-compatible
chat completions endpoint.
"""

from __future__ import annotations

import logging
from typing import Optional

from storyreel.config import TextProviderConfig, settings
from storyreel.errors import ConfigurationError
from storyreel.services.llm.base import LLMAdapter

logger = logging.getLogger(__name__)


def get_adapter(config: Optional[TextProviderConfig] = None) -> LLMAdapter:
    """Return a configured LLM adapter.

    Args:
        config: Text provider configuration; defaults to the loaded settings.

    Returns:
        LLMAdapter ready for use.

    Raises:
        ConfigurationError: If the provider has no API key.
    """
    config = config or settings.providers.text
    if not config.api_key:
        raise ConfigurationError(
            "Text provider is not configured: set providers.text.api_key "
            "(or STORYREEL_PROVIDERS__TEXT__API_KEY)"
        )

    if config.provider == "gemini":
        from storyreel.services.llm.gemini_adapter import GeminiAdapter

        logger.debug("Routing %s to GeminiAdapter", config.model)
        return GeminiAdapter(model_id=config.model, api_key=config.api_key)

    from storyreel.services.llm.chat_adapter import ChatCompletionsAdapter

    logger.debug("Routing %s to ChatCompletionsAdapter (base_url=%s)", config.model, config.base_url)
    return ChatCompletionsAdapter(
        model_id=config.model,
        base_url=config.base_url,
        api_key=config.api_key,
        timeout=config.request_timeout,
    )
