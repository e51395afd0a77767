"""Scene image generation.

Each scene gets its image from the image provider through the task
tracker: the call returns as soon as the provider accepts the job, and the
image is stored when a status check sees the job finish.
"""

import logging
import uuid
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from storyreel.db.models import Image, Scene
from storyreel.orchestrator.batch import BatchResult, run_batch
from storyreel.orchestrator.state import KIND_IMAGE, is_batch_eligible
from storyreel.services import project_service, task_tracker
from storyreel.services.file_manager import FileManager
from storyreel.services.providers import (
    GenerationProvider,
    GenerationRequest,
    get_image_provider,
    require_configured,
)

logger = logging.getLogger(__name__)


async def _start_image(
    session: AsyncSession,
    scene: Scene,
    style: Optional[str],
    provider: GenerationProvider,
) -> Image:
    request = GenerationRequest(description=scene.description, style=style)
    return await task_tracker.start_job(session, scene, KIND_IMAGE, provider, request)


async def generate_image(
    session: AsyncSession,
    scene_id: uuid.UUID,
    provider: Optional[GenerationProvider] = None,
) -> Image:
    """Start image generation for one scene.

    Returns:
        The in-flight Image placeholder carrying the provider task id.
    """
    provider = provider or get_image_provider()
    scene, project = await task_tracker.load_scene_project(session, scene_id)
    return await _start_image(session, scene, project.style, provider)


async def generate_all_images(
    session: AsyncSession,
    project_id: uuid.UUID,
    provider: Optional[GenerationProvider] = None,
) -> BatchResult:
    """Start image generation for every eligible scene, in order.

    Eligible: description confirmed and image status pending or failed.
    """
    provider = require_configured(provider or get_image_provider())
    project = await project_service.get_project(session, project_id)
    scenes = await project_service.list_scenes(session, project_id)
    eligible = [s for s in scenes if is_batch_eligible(s, KIND_IMAGE)]
    logger.info(
        "Project %s: generating images for %d of %d scenes",
        project_id, len(eligible), len(scenes),
    )

    style = project.style

    async def action(scene: Scene):
        image = await _start_image(session, scene, style, provider)
        return image.task_id, image.id

    return await run_batch(eligible, action, label=f"images[{project_id}]", session=session)


async def image_task_status(
    session: AsyncSession,
    task_id: str,
    provider: Optional[GenerationProvider] = None,
    file_manager: Optional[FileManager] = None,
) -> task_tracker.FinalizeResult:
    """Check an image job once, finalizing it if the provider is done."""
    provider = provider or get_image_provider()
    return await task_tracker.finalize_if_ready(
        session, task_id, provider, file_manager, kind=KIND_IMAGE
    )
