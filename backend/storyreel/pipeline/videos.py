"""Scene video generation and continuation.

A scene video starts from the scene's latest completed image. A
continuation starts from the last frame of an earlier video of the same
scene and is recorded in a video chain alongside its parent.
"""

import logging
import uuid
from dataclasses import dataclass
from typing import Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from storyreel.config import settings
from storyreel.db.models import Scene, Video
from storyreel.errors import ChainLinkError, InvalidRequestError, NotFoundError, StoryReelError
from storyreel.orchestrator.batch import BatchResult, run_batch
from storyreel.orchestrator.state import KIND_IMAGE, KIND_VIDEO, is_batch_eligible
from storyreel.services import material_service, project_service, task_tracker, video_chains
from storyreel.services.file_manager import FileManager, get_file_manager
from storyreel.services.frame_extractor import FrameExtractor, frame_extractor
from storyreel.services.providers import (
    GenerationProvider,
    GenerationRequest,
    get_video_provider,
    require_configured,
)

logger = logging.getLogger(__name__)


@dataclass
class ContinuationResult:
    video: Video
    first_frame_source: str  # provided, extracted, material, image
    chain_item_id: Optional[uuid.UUID] = None
    warning: Optional[str] = None


async def _first_frame_from_image(session: AsyncSession, scene: Scene) -> str:
    image = await task_tracker.latest_artifact(session, KIND_IMAGE, scene.id, completed_only=True)
    if image is None:
        raise InvalidRequestError("Scene has no completed image to start the video from")
    return image.url


async def _start_video(
    session: AsyncSession,
    scene: Scene,
    style: Optional[str],
    provider: GenerationProvider,
    *,
    description: Optional[str] = None,
    first_frame_url: Optional[str] = None,
    duration: Optional[int] = None,
) -> Video:
    if first_frame_url is None:
        first_frame_url = await _first_frame_from_image(session, scene)
    duration = duration or settings.pipeline.default_video_duration
    request = GenerationRequest(
        description=description or scene.description,
        style=style,
        source_image_url=first_frame_url,
        duration=duration,
        references=await material_service.reference_materials(session, scene.id),
    )
    return await task_tracker.start_job(
        session,
        scene,
        KIND_VIDEO,
        provider,
        request,
        source_image_url=first_frame_url,
        duration=float(duration),
    )


async def generate_video(
    session: AsyncSession,
    scene_id: uuid.UUID,
    duration: Optional[int] = None,
    provider: Optional[GenerationProvider] = None,
) -> Video:
    """Start video generation for one scene from its latest image.

    Returns:
        The in-flight Video placeholder carrying the provider task id.
    """
    provider = require_configured(provider or get_video_provider())
    scene, project = await task_tracker.load_scene_project(session, scene_id)
    return await _start_video(session, scene, project.style, provider, duration=duration)


async def generate_all_videos(
    session: AsyncSession,
    project_id: uuid.UUID,
    provider: Optional[GenerationProvider] = None,
) -> BatchResult:
    """Start video generation for every eligible scene, in order.

    Eligible: image completed and video status pending or failed. The project
    is moved to at least the ``videos`` stage before any job starts.
    """
    provider = require_configured(provider or get_video_provider())
    project = await project_service.get_project(session, project_id)
    if project_service.move_stage(project, "videos"):
        await session.commit()

    scenes = await project_service.list_scenes(session, project_id)
    eligible = [s for s in scenes if is_batch_eligible(s, KIND_VIDEO)]
    logger.info(
        "Project %s: generating videos for %d of %d scenes",
        project_id, len(eligible), len(scenes),
    )

    style = project.style

    async def action(scene: Scene):
        video = await _start_video(session, scene, style, provider)
        return video.task_id, video.id

    return await run_batch(eligible, action, label=f"videos[{project_id}]", session=session)


async def video_task_status(
    session: AsyncSession,
    task_id: str,
    provider: Optional[GenerationProvider] = None,
    file_manager: Optional[FileManager] = None,
) -> task_tracker.FinalizeResult:
    """Check a video job once, finalizing it if the provider is done."""
    provider = provider or get_video_provider()
    return await task_tracker.finalize_if_ready(
        session, task_id, provider, file_manager, kind=KIND_VIDEO
    )


# ---------------------------------------------------------------------------
# Continuation
# ---------------------------------------------------------------------------

async def extract_video_last_frame(
    video: Video,
    project_id: uuid.UUID,
    file_manager: FileManager,
    extractor: FrameExtractor,
):
    """Extract a video's last frame into the project's frames directory.

    Returns:
        (ExtractedFrame, StoredFile or None)
    """
    source = file_manager.resolve(video.storage_path) if video.storage_path else video.url
    result = await extractor.extract_last_frame(source, file_manager.frame_path(project_id, video.id))
    stored = file_manager.stored(result.frame_path) if result.success else None
    return result, stored


async def _continuation_first_frame(
    session: AsyncSession,
    scene: Scene,
    parent: Video,
    last_frame_url: Optional[str],
    file_manager: FileManager,
    extractor: FrameExtractor,
) -> tuple[str, str]:
    """Pick the first frame of a continuation and say where it came from."""
    if last_frame_url:
        return last_frame_url, "provided"

    extracted, stored = await extract_video_last_frame(parent, scene.project_id, file_manager, extractor)
    if stored is not None:
        return stored.url, "extracted"
    logger.info("Scene %s: server-side frame extraction unavailable (%s)", scene.id, extracted.error)

    material = await material_service.latest_material(session, scene.id, "image")
    if material is not None and material.url:
        return material.url, "material"

    image = await task_tracker.latest_artifact(session, KIND_IMAGE, scene.id, completed_only=True)
    if image is not None:
        return image.url, "image"

    raise InvalidRequestError(
        "No last frame available: extract the last frame of the parent video "
        "first, or provide last_frame_url"
    )


async def _link_continuation(
    session: AsyncSession,
    scene: Scene,
    parent_id: uuid.UUID,
    video_id: uuid.UUID,
) -> uuid.UUID:
    try:
        parent_item = await video_chains.lookup_chain_for_video(session, parent_id)
        if parent_item is None:
            chain = await video_chains.create_chain(
                session, scene.project_id, f"Chain for scene {scene.order_index + 1}"
            )
            await video_chains.append_to_chain(session, chain.id, parent_id)
            chain_id = chain.id
        else:
            chain_id = parent_item.chain_id
        item = await video_chains.append_to_chain(session, chain_id, video_id, parent_id)
    except (StoryReelError, SQLAlchemyError) as e:
        await session.rollback()
        raise ChainLinkError(str(e)) from e
    return item.id


async def continue_video(
    session: AsyncSession,
    scene_id: uuid.UUID,
    parent_video_id: uuid.UUID,
    description: str,
    last_frame_url: Optional[str] = None,
    *,
    duration: Optional[int] = None,
    provider: Optional[GenerationProvider] = None,
    file_manager: Optional[FileManager] = None,
    extractor: Optional[FrameExtractor] = None,
) -> ContinuationResult:
    """Generate a video that continues from the end of ``parent_video_id``.

    First frame, in order of preference: ``last_frame_url``, the parent's
    last frame extracted with ffmpeg, the scene's latest image material,
    the scene's latest image.

    The new video is appended to the parent's chain (a chain is created if
    the parent has none). Chain bookkeeping never fails the continuation:
    on error the result carries a warning and no chain item.

    Raises:
        InvalidRequestError: Empty description, parent from another scene,
            unfinished parent, or no usable first frame.
        NotFoundError: Scene or parent video does not exist.
    """
    if not description or not description.strip():
        raise InvalidRequestError("Description is required")
    provider = require_configured(provider or get_video_provider())
    file_manager = file_manager or get_file_manager()
    extractor = extractor or frame_extractor

    scene, project = await task_tracker.load_scene_project(session, scene_id)
    parent = await session.get(Video, parent_video_id)
    if parent is None:
        raise NotFoundError(f"Video not found: {parent_video_id}")
    if parent.scene_id != scene.id:
        raise InvalidRequestError("Parent video does not belong to this scene")
    if not parent.url and not parent.storage_path:
        raise InvalidRequestError("Parent video is not yet completed")

    first_frame, source = await _continuation_first_frame(
        session, scene, parent, last_frame_url, file_manager, extractor
    )
    logger.info("Scene %s: continuing video %s from %s frame", scene_id, parent_video_id, source)

    video = await _start_video(
        session,
        scene,
        project.style,
        provider,
        description=description.strip(),
        first_frame_url=first_frame,
        duration=duration,
    )
    result = ContinuationResult(video=video, first_frame_source=source)

    video_id = video.id
    try:
        result.chain_item_id = await _link_continuation(session, scene, parent_video_id, video_id)
    except ChainLinkError as e:
        await session.refresh(video)
        result.warning = f"Video {video_id} was created but could not be linked into a chain: {e}"
        logger.warning("Scene %s: %s", scene_id, result.warning)

    return result
