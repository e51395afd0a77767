"""Generation provider abstraction layer.

Usage:
    from storyreel.services.providers import get_video_provider, require_configured

    provider = require_configured(get_video_provider())
    handle = await provider.create_job(GenerationRequest(description="..."))
    report = await provider.poll_job(handle.job_id)
"""

from storyreel.services.providers.base import (
    GenerationProvider,
    GenerationRequest,
    JobHandle,
    JobStatusReport,
    ReferenceMaterial,
    normalize_status,
    require_configured,
)
from storyreel.services.providers.registry import (
    close_providers,
    get_image_provider,
    get_provider,
    get_video_provider,
    register_provider,
)

__all__ = [
    "GenerationProvider",
    "GenerationRequest",
    "JobHandle",
    "JobStatusReport",
    "ReferenceMaterial",
    "normalize_status",
    "require_configured",
    "close_providers",
    "get_image_provider",
    "get_provider",
    "get_video_provider",
    "register_provider",
]
