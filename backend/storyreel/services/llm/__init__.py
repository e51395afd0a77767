"""Text LLM abstraction layer.

Provides a unified async interface for structured text generation across
providers (Gemini, OpenAI-compatible chat endpoints).

Usage:
    from storyreel.services.llm import get_adapter

    adapter = get_adapter()
    result = await adapter.generate_text(prompt, StoryboardOutput)
"""

from storyreel.services.llm.base import LLMAdapter
from storyreel.services.llm.registry import get_adapter

__all__ = ["LLMAdapter", "get_adapter"]
