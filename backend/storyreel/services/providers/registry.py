"""Process-wide provider instances.

Providers read configuration once, when first requested, and are reused
for the life of the process so their HTTP connection pools are shared.
"""

import logging
from typing import Optional

from storyreel.config import settings
from storyreel.services.providers.base import GenerationProvider
from storyreel.services.providers.task_api import TaskApiProvider

logger = logging.getLogger(__name__)

_providers: dict[str, GenerationProvider] = {}


def _build(kind: str) -> GenerationProvider:
    config = settings.providers.image if kind == "image" else settings.providers.video
    provider = TaskApiProvider(
        kind,
        config,
        max_attempts=settings.pipeline.retry_max_attempts,
        base_delay=settings.pipeline.retry_base_delay,
        default_duration=settings.pipeline.default_video_duration,
        default_ratio=settings.pipeline.default_aspect_ratio,
        default_size=settings.pipeline.default_image_size,
    )
    logger.debug(
        "Created %s provider (base_url=%s, configured=%s)",
        kind,
        config.base_url,
        provider.is_configured(),
    )
    return provider


def get_provider(kind: str) -> GenerationProvider:
    """Get or create the singleton provider for an artifact kind."""
    if kind not in _providers:
        _providers[kind] = _build(kind)
    return _providers[kind]


def get_image_provider() -> GenerationProvider:
    return get_provider("image")


def get_video_provider() -> GenerationProvider:
    return get_provider("video")


def register_provider(kind: str, provider: Optional[GenerationProvider]) -> None:
    """Replace (or with None, forget) the provider for a kind."""
    if provider is None:
        _providers.pop(kind, None)
    else:
        _providers[kind] = provider


async def close_providers() -> None:
    """Close all provider HTTP clients."""
    for provider in list(_providers.values()):
        await provider.close()
    _providers.clear()
