"""API route handlers and Pydantic request/response schemas."""

import logging
import uuid
from typing import Literal, Optional

from fastapi import APIRouter, BackgroundTasks, Depends, File, Form, UploadFile
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from storyreel import __version__
from storyreel.db import get_session
from storyreel.db.models import Image, Material, Project, Scene, Video, VideoChain, VideoChainItem
from storyreel.errors import InvalidRequestError, NotFoundError
from storyreel.orchestrator.batch import BatchResult
from storyreel.pipeline import images, stitcher, storyboard, videos
from storyreel.services import material_service, project_service, scene_service, task_tracker, video_chains
from storyreel.services.file_manager import FileManager, get_file_manager
from storyreel.services.frame_extractor import FrameExtractor, frame_extractor
from storyreel.services.llm import LLMAdapter, get_adapter
from storyreel.services.providers import GenerationProvider, get_image_provider, get_video_provider
from storyreel.workers.polling import POLL_STATUS, resume_poll, sweep_stale_tasks

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api")


def get_frame_extractor() -> FrameExtractor:
    return frame_extractor


async def get_text_adapter():
    """Per-request text LLM adapter, closed once the response is sent."""
    adapter = get_adapter()
    try:
        yield adapter
    finally:
        await adapter.close()


# ============================================================================
# Pydantic Schemas
# ============================================================================

class CreateProjectRequest(BaseModel):
    """Request schema for POST /api/projects."""
    title: str
    story: str = ""
    style: Optional[str] = None
    mode: Literal["story", "free"] = "story"


class UpdateProjectRequest(BaseModel):
    title: Optional[str] = None
    story: Optional[str] = None
    style: Optional[str] = None


class ProjectResponse(BaseModel):
    project_id: str
    title: str
    story: str
    style: Optional[str] = None
    stage: str
    mode: str
    output_path: Optional[str] = None
    created_at: str
    updated_at: str


class SceneResponse(BaseModel):
    scene_id: str
    project_id: str
    order_index: int
    description: str
    description_confirmed: bool
    image_status: str
    image_confirmed: bool
    video_status: str
    video_confirmed: bool
    mode: str
    image_id: Optional[str] = None
    image_url: Optional[str] = None
    video_id: Optional[str] = None
    video_url: Optional[str] = None


class ProjectDetailResponse(ProjectResponse):
    """Response schema for GET /api/projects/{id}."""
    scene_count: int
    scenes: list[SceneResponse]


class RegenerateScenesRequest(BaseModel):
    feedback: Optional[str] = None


class SceneDescriptionRequest(BaseModel):
    description: str = Field(min_length=1)


class ConfirmAllResponse(BaseModel):
    project_id: str
    kind: str
    confirmed: int
    stage: str


class TextMaterialRequest(BaseModel):
    content: str = Field(min_length=1)


class MaterialResponse(BaseModel):
    material_id: str
    scene_id: str
    type: str
    url: Optional[str] = None
    order_index: int
    content: Optional[str] = None
    original_name: Optional[str] = None
    content_type: Optional[str] = None
    size: Optional[int] = None
    created_at: str


class CreateChainRequest(BaseModel):
    name: str = Field(min_length=1, max_length=200)


class AppendChainItemRequest(BaseModel):
    video_id: uuid.UUID
    parent_video_id: Optional[uuid.UUID] = None


class ChainItemResponse(BaseModel):
    item_id: str
    video_id: str
    order_index: int
    parent_video_id: Optional[str] = None
    video_url: Optional[str] = None
    scene_id: Optional[str] = None


class ChainResponse(BaseModel):
    chain_id: str
    project_id: str
    name: str
    created_at: str
    items: list[ChainItemResponse] = []


class TaskStartedResponse(BaseModel):
    """Returned as soon as the provider accepts a generation job."""
    task_id: str
    kind: str
    scene_id: str
    artifact_id: str
    version: int
    status: str
    status_url: str


class GenerateVideoRequest(BaseModel):
    duration: Optional[int] = Field(default=None, ge=1, le=30)


class ContinueVideoRequest(BaseModel):
    parent_video_id: uuid.UUID
    description: str = Field(min_length=1)
    last_frame_url: Optional[str] = None
    duration: Optional[int] = Field(default=None, ge=1, le=30)


class ContinueVideoResponse(TaskStartedResponse):
    first_frame_source: str
    chain_item_id: Optional[str] = None
    warning: Optional[str] = None


class BatchItemResponse(BaseModel):
    scene_id: str
    order_index: int
    success: bool
    task_id: Optional[str] = None
    artifact_id: Optional[str] = None
    error: Optional[str] = None


class BatchResponse(BaseModel):
    project_id: str
    kind: str
    total_eligible: int
    succeeded_count: int
    failed_count: int
    results: list[BatchItemResponse]


class TaskStatusResponse(BaseModel):
    task_id: str
    kind: str
    success: bool
    status: str
    is_terminal: bool
    scene_id: str
    artifact_id: str
    url: Optional[str] = None
    error: Optional[str] = None
    warning: Optional[str] = None


class ResumePollResponse(BaseModel):
    task_id: str
    kind: str
    status: str
    status_url: str


class ExtractFrameResponse(BaseModel):
    success: bool
    video_id: str
    frame_url: Optional[str] = None
    needs_client_extraction: bool = False
    error: Optional[str] = None


class FrameExtractionStatus(BaseModel):
    ffmpeg_available: bool


class CombineResponse(BaseModel):
    project_id: str
    url: str
    storage_path: str
    clip_count: int


class SweepRequest(BaseModel):
    older_than_seconds: Optional[int] = Field(default=None, ge=0)


class SweepResponse(BaseModel):
    checked: int
    finalized: int
    expired: int
    task_ids: list[str]


# ============================================================================
# Converters
# ============================================================================

def _project_to_response(p: Project) -> ProjectResponse:
    return ProjectResponse(
        project_id=str(p.id),
        title=p.title,
        story=p.story,
        style=p.style,
        stage=p.stage,
        mode=p.mode,
        output_path=p.output_path,
        created_at=p.created_at.isoformat(),
        updated_at=p.updated_at.isoformat(),
    )


def _scene_to_response(
    s: Scene, image: Optional[Image] = None, video: Optional[Video] = None
) -> SceneResponse:
    return SceneResponse(
        scene_id=str(s.id),
        project_id=str(s.project_id),
        order_index=s.order_index,
        description=s.description,
        description_confirmed=s.description_confirmed,
        image_status=s.image_status,
        image_confirmed=s.image_confirmed,
        video_status=s.video_status,
        video_confirmed=s.video_confirmed,
        mode=s.mode,
        image_id=str(image.id) if image else None,
        image_url=(image.url or None) if image else None,
        video_id=str(video.id) if video else None,
        video_url=(video.url or None) if video else None,
    )


def _material_to_response(m: Material) -> MaterialResponse:
    payload = material_service.payload_of(m)
    data = payload.model_dump()
    return MaterialResponse(
        material_id=str(m.id),
        scene_id=str(m.scene_id),
        type=m.type,
        url=m.url or None,
        order_index=m.order_index,
        content=data.get("content"),
        original_name=data.get("original_name"),
        content_type=data.get("content_type"),
        size=data.get("size"),
        created_at=m.created_at.isoformat(),
    )


def _chain_item_to_response(item: VideoChainItem, video: Optional[Video] = None) -> ChainItemResponse:
    return ChainItemResponse(
        item_id=str(item.id),
        video_id=str(item.video_id),
        order_index=item.order_index,
        parent_video_id=str(item.parent_video_id) if item.parent_video_id else None,
        video_url=(video.url or None) if video else None,
        scene_id=str(video.scene_id) if video else None,
    )


def _chain_to_response(chain: VideoChain, items: Optional[list] = None) -> ChainResponse:
    return ChainResponse(
        chain_id=str(chain.id),
        project_id=str(chain.project_id),
        name=chain.name,
        created_at=chain.created_at.isoformat(),
        items=[_chain_item_to_response(item, video) for item, video in (items or [])],
    )


def _task_started(kind: str, artifact) -> TaskStartedResponse:
    return TaskStartedResponse(
        task_id=artifact.task_id,
        kind=kind,
        scene_id=str(artifact.scene_id),
        artifact_id=str(artifact.id),
        version=artifact.version,
        status="processing",
        status_url=f"/api/tasks/{kind}/{artifact.task_id}",
    )


def _batch_to_response(project_id: uuid.UUID, kind: str, batch: BatchResult) -> BatchResponse:
    return BatchResponse(
        project_id=str(project_id),
        kind=kind,
        total_eligible=batch.total_eligible,
        succeeded_count=batch.succeeded_count,
        failed_count=batch.failed_count,
        results=[
            BatchItemResponse(
                scene_id=str(r.unit_id),
                order_index=r.order_index,
                success=r.success,
                task_id=r.task_id,
                artifact_id=str(r.artifact_id) if r.artifact_id else None,
                error=r.error,
            )
            for r in batch.results
        ],
    )


def _task_status(task_id: str, result: task_tracker.FinalizeResult) -> TaskStatusResponse:
    return TaskStatusResponse(
        task_id=task_id,
        kind=result.kind,
        success=result.success,
        status=result.status,
        is_terminal=result.is_terminal,
        scene_id=str(result.scene_id),
        artifact_id=str(result.artifact_id),
        url=result.artifact_url,
        error=result.error,
        warning=result.warning,
    )


def _provider_for(kind: str) -> GenerationProvider:
    return get_image_provider() if kind == "image" else get_video_provider()


# ============================================================================
# Projects
# ============================================================================

@router.post("/projects", status_code=201, response_model=ProjectResponse)
async def create_project(request: CreateProjectRequest, session: AsyncSession = Depends(get_session)):
    """Create a project in the draft stage."""
    project = await project_service.create_project(
        session, request.title, request.story, request.style, request.mode
    )
    return _project_to_response(project)


@router.get("/projects", response_model=list[ProjectResponse])
async def list_projects(session: AsyncSession = Depends(get_session)):
    return [_project_to_response(p) for p in await project_service.list_projects(session)]


@router.get("/projects/{project_id}", response_model=ProjectDetailResponse)
async def get_project_detail(project_id: uuid.UUID, session: AsyncSession = Depends(get_session)):
    """Project with every scene and each scene's latest image and video."""
    detail = await project_service.get_project_detail(session, project_id)
    base = _project_to_response(detail.project)
    return ProjectDetailResponse(
        **base.model_dump(),
        scene_count=len(detail.scenes),
        scenes=[_scene_to_response(d.scene, d.image, d.video) for d in detail.scenes],
    )


@router.patch("/projects/{project_id}", response_model=ProjectResponse)
async def update_project(
    project_id: uuid.UUID,
    request: UpdateProjectRequest,
    session: AsyncSession = Depends(get_session),
):
    project = await project_service.update_project(
        session, project_id, title=request.title, story=request.story, style=request.style
    )
    return _project_to_response(project)


@router.delete("/projects/{project_id}")
async def delete_project(project_id: uuid.UUID, session: AsyncSession = Depends(get_session)):
    """Delete a project with its scenes, artifacts, materials and chains."""
    await project_service.delete_project(session, project_id)
    return {"status": "deleted", "project_id": str(project_id)}


# ============================================================================
# Scenes
# ============================================================================

@router.post("/projects/{project_id}/scenes/generate", status_code=201, response_model=list[SceneResponse])
async def generate_scenes(
    project_id: uuid.UUID,
    session: AsyncSession = Depends(get_session),
    adapter: LLMAdapter = Depends(get_text_adapter),
):
    """Break the project's story into scenes with the text LLM."""
    scenes = await storyboard.generate_scenes(session, project_id, adapter)
    return [_scene_to_response(s) for s in scenes]


@router.post("/projects/{project_id}/scenes/regenerate", response_model=list[SceneResponse])
async def regenerate_scenes(
    project_id: uuid.UUID,
    request: RegenerateScenesRequest,
    session: AsyncSession = Depends(get_session),
    adapter: LLMAdapter = Depends(get_text_adapter),
):
    """Replace all scenes, guided by the previous scenes and optional feedback."""
    scenes = await storyboard.regenerate_scenes(session, project_id, request.feedback, adapter)
    return [_scene_to_response(s) for s in scenes]


@router.post("/projects/{project_id}/scenes", status_code=201, response_model=SceneResponse)
async def create_free_scene(
    project_id: uuid.UUID,
    request: SceneDescriptionRequest,
    session: AsyncSession = Depends(get_session),
):
    """Append a hand-written scene."""
    scene = await scene_service.create_free_scene(session, project_id, request.description)
    return _scene_to_response(scene)


@router.patch("/scenes/{scene_id}", response_model=SceneResponse)
async def update_scene_description(
    scene_id: uuid.UUID,
    request: SceneDescriptionRequest,
    session: AsyncSession = Depends(get_session),
):
    scene = await scene_service.update_description(session, scene_id, request.description)
    return _scene_to_response(scene)


@router.post("/scenes/{scene_id}/confirm/{kind}", response_model=SceneResponse)
async def confirm_scene(
    scene_id: uuid.UUID,
    kind: Literal["description", "image", "video"],
    session: AsyncSession = Depends(get_session),
):
    """Confirm a scene's description, image or video. Confirmation is final."""
    if kind == "description":
        scene = await scene_service.confirm_description(session, scene_id)
    elif kind == "image":
        scene = await scene_service.confirm_image(session, scene_id)
    else:
        scene = await scene_service.confirm_video(session, scene_id)
    return _scene_to_response(scene)


@router.post("/projects/{project_id}/confirm-all/{kind}", response_model=ConfirmAllResponse)
async def confirm_all(
    project_id: uuid.UUID,
    kind: Literal["description", "image", "video"],
    session: AsyncSession = Depends(get_session),
):
    if kind == "description":
        confirmed = await scene_service.confirm_all_descriptions(session, project_id)
    elif kind == "image":
        confirmed = await scene_service.confirm_all_images(session, project_id)
    else:
        confirmed = await scene_service.confirm_all_videos(session, project_id)
    project = await project_service.get_project(session, project_id)
    return ConfirmAllResponse(
        project_id=str(project_id), kind=kind, confirmed=confirmed, stage=project.stage
    )


@router.post("/scenes/{scene_id}/reset/{kind}", response_model=SceneResponse)
async def reset_scene(
    scene_id: uuid.UUID,
    kind: Literal["image", "video"],
    session: AsyncSession = Depends(get_session),
):
    """Release a scene stuck in processing back to pending."""
    scene = await scene_service.reset_scene_status(session, scene_id, kind)
    return _scene_to_response(scene)


# ============================================================================
# Materials
# ============================================================================

@router.get("/scenes/{scene_id}/materials", response_model=list[MaterialResponse])
async def list_materials(
    scene_id: uuid.UUID,
    type: Optional[str] = None,
    session: AsyncSession = Depends(get_session),
):
    await scene_service.get_scene(session, scene_id)
    return [_material_to_response(m) for m in await material_service.list_materials(session, scene_id, type)]


@router.post("/scenes/{scene_id}/materials/text", status_code=201, response_model=MaterialResponse)
async def add_text_material(
    scene_id: uuid.UUID,
    request: TextMaterialRequest,
    session: AsyncSession = Depends(get_session),
):
    material = await material_service.add_text_material(session, scene_id, request.content)
    return _material_to_response(material)


@router.post("/scenes/{scene_id}/materials/upload", status_code=201, response_model=MaterialResponse)
async def upload_material(
    scene_id: uuid.UUID,
    type: Literal["image", "video", "audio"] = Form(...),
    file: UploadFile = File(...),
    session: AsyncSession = Depends(get_session),
    file_manager: FileManager = Depends(get_file_manager),
):
    """Upload an image, video or audio file as scene material."""
    data = await file.read()
    material = await material_service.add_file_material(
        session,
        scene_id,
        type,
        file.filename or "upload",
        data,
        file_manager,
        content_type=file.content_type,
    )
    return _material_to_response(material)


@router.delete("/materials/{material_id}")
async def delete_material(material_id: uuid.UUID, session: AsyncSession = Depends(get_session)):
    """Delete a material record; the stored file is kept."""
    await material_service.delete_material(session, material_id)
    return {"status": "deleted", "material_id": str(material_id)}


# ============================================================================
# Video chains
# ============================================================================

@router.get("/projects/{project_id}/chains", response_model=list[ChainResponse])
async def list_chains(project_id: uuid.UUID, session: AsyncSession = Depends(get_session)):
    await project_service.get_project(session, project_id)
    views = [await video_chains.get_chain_with_items(session, c.id)
             for c in await video_chains.list_chains(session, project_id)]
    return [_chain_to_response(v.chain, v.items) for v in views]


@router.post("/projects/{project_id}/chains", status_code=201, response_model=ChainResponse)
async def create_chain(
    project_id: uuid.UUID,
    request: CreateChainRequest,
    session: AsyncSession = Depends(get_session),
):
    chain = await video_chains.create_chain(session, project_id, request.name)
    return _chain_to_response(chain)


@router.get("/chains/{chain_id}", response_model=ChainResponse)
async def get_chain(chain_id: uuid.UUID, session: AsyncSession = Depends(get_session)):
    view = await video_chains.get_chain_with_items(session, chain_id)
    return _chain_to_response(view.chain, view.items)


@router.post("/chains/{chain_id}/items", status_code=201, response_model=ChainItemResponse)
async def append_chain_item(
    chain_id: uuid.UUID,
    request: AppendChainItemRequest,
    session: AsyncSession = Depends(get_session),
):
    item = await video_chains.append_to_chain(
        session, chain_id, request.video_id, request.parent_video_id
    )
    return _chain_item_to_response(item, await session.get(Video, item.video_id))


@router.delete("/chains/{chain_id}")
async def delete_chain(chain_id: uuid.UUID, session: AsyncSession = Depends(get_session)):
    await video_chains.delete_chain(session, chain_id)
    return {"status": "deleted", "chain_id": str(chain_id)}


@router.delete("/videos/{video_id}/chain")
async def remove_video_from_chain(video_id: uuid.UUID, session: AsyncSession = Depends(get_session)):
    removed = await video_chains.remove_video_from_chain(session, video_id)
    if not removed:
        raise NotFoundError(f"Video {video_id} is not in a chain")
    return {"status": "removed", "video_id": str(video_id)}


# ============================================================================
# Image generation
# ============================================================================

@router.post("/scenes/{scene_id}/image", status_code=202, response_model=TaskStartedResponse)
async def generate_image(
    scene_id: uuid.UUID,
    session: AsyncSession = Depends(get_session),
    provider: GenerationProvider = Depends(get_image_provider),
):
    """Start image generation; poll the returned status_url for the result."""
    image = await images.generate_image(session, scene_id, provider)
    return _task_started("image", image)


@router.post("/projects/{project_id}/images", response_model=BatchResponse)
async def generate_all_images(
    project_id: uuid.UUID,
    session: AsyncSession = Depends(get_session),
    provider: GenerationProvider = Depends(get_image_provider),
):
    """Start image generation for every eligible scene, one at a time."""
    batch = await images.generate_all_images(session, project_id, provider)
    return _batch_to_response(project_id, "image", batch)


@router.get("/tasks/image/{task_id}", response_model=TaskStatusResponse)
async def image_task_status(
    task_id: str,
    session: AsyncSession = Depends(get_session),
    provider: GenerationProvider = Depends(get_image_provider),
    file_manager: FileManager = Depends(get_file_manager),
):
    result = await images.image_task_status(session, task_id, provider, file_manager)
    return _task_status(task_id, result)


# ============================================================================
# Video generation
# ============================================================================

@router.post("/scenes/{scene_id}/video", status_code=202, response_model=TaskStartedResponse)
async def generate_video(
    scene_id: uuid.UUID,
    request: Optional[GenerateVideoRequest] = None,
    session: AsyncSession = Depends(get_session),
    provider: GenerationProvider = Depends(get_video_provider),
):
    """Start video generation from the scene's latest image."""
    duration = request.duration if request else None
    video = await videos.generate_video(session, scene_id, duration, provider)
    return _task_started("video", video)


@router.post("/projects/{project_id}/videos", response_model=BatchResponse)
async def generate_all_videos(
    project_id: uuid.UUID,
    session: AsyncSession = Depends(get_session),
    provider: GenerationProvider = Depends(get_video_provider),
):
    batch = await videos.generate_all_videos(session, project_id, provider)
    return _batch_to_response(project_id, "video", batch)


@router.get("/tasks/video/{task_id}", response_model=TaskStatusResponse)
async def video_task_status(
    task_id: str,
    session: AsyncSession = Depends(get_session),
    provider: GenerationProvider = Depends(get_video_provider),
    file_manager: FileManager = Depends(get_file_manager),
):
    result = await videos.video_task_status(session, task_id, provider, file_manager)
    return _task_status(task_id, result)


@router.post("/scenes/{scene_id}/video/continue", status_code=202, response_model=ContinueVideoResponse)
async def continue_video(
    scene_id: uuid.UUID,
    request: ContinueVideoRequest,
    session: AsyncSession = Depends(get_session),
    provider: GenerationProvider = Depends(get_video_provider),
    file_manager: FileManager = Depends(get_file_manager),
    extractor: FrameExtractor = Depends(get_frame_extractor),
):
    """Generate a video continuing from the last frame of an earlier one."""
    result = await videos.continue_video(
        session,
        scene_id,
        request.parent_video_id,
        request.description,
        request.last_frame_url,
        duration=request.duration,
        provider=provider,
        file_manager=file_manager,
        extractor=extractor,
    )
    started = _task_started("video", result.video)
    return ContinueVideoResponse(
        **started.model_dump(),
        first_frame_source=result.first_frame_source,
        chain_item_id=str(result.chain_item_id) if result.chain_item_id else None,
        warning=result.warning,
    )


@router.post("/videos/{video_id}/extract-last-frame", response_model=ExtractFrameResponse)
async def extract_last_frame(
    video_id: uuid.UUID,
    session: AsyncSession = Depends(get_session),
    file_manager: FileManager = Depends(get_file_manager),
    extractor: FrameExtractor = Depends(get_frame_extractor),
):
    """Extract a video's last frame on the server when ffmpeg is available.

    When it is not, the response asks the client to extract the frame and
    upload it as an image material.
    """
    video = await session.get(Video, video_id)
    if video is None:
        raise NotFoundError(f"Video not found: {video_id}")
    if not video.url and not video.storage_path:
        raise InvalidRequestError("Video is not yet completed")
    scene = await scene_service.get_scene(session, video.scene_id)

    result, stored = await videos.extract_video_last_frame(video, scene.project_id, file_manager, extractor)
    return ExtractFrameResponse(
        success=result.success,
        video_id=str(video_id),
        frame_url=stored.url if stored else None,
        needs_client_extraction=result.needs_client_extraction,
        error=result.error,
    )


@router.get("/frame-extraction", response_model=FrameExtractionStatus)
async def frame_extraction_status(extractor: FrameExtractor = Depends(get_frame_extractor)):
    return FrameExtractionStatus(ffmpeg_available=await extractor.check_available())


# ============================================================================
# Background polling and remediation
# ============================================================================

@router.post("/tasks/{kind}/{task_id}/resume", status_code=202, response_model=ResumePollResponse)
async def resume_task_poll(
    kind: Literal["image", "video"],
    task_id: str,
    background_tasks: BackgroundTasks,
    session: AsyncSession = Depends(get_session),
):
    """Keep polling a job on the server until it finishes."""
    kind, artifact = await task_tracker.find_job(session, task_id, kind)
    if not artifact.is_in_flight:
        status = "completed" if artifact.url else "failed"
    else:
        status = "processing"
        background_tasks.add_task(resume_poll, task_id, kind=kind, provider=_provider_for(kind))
    return ResumePollResponse(
        task_id=task_id, kind=kind, status=status, status_url=f"/api/tasks/{kind}/{task_id}"
    )


@router.get("/tasks/polls")
async def background_polls():
    """In-memory state of background polls started by this process."""
    return POLL_STATUS


@router.post("/tasks/sweep", response_model=SweepResponse)
async def sweep_tasks(
    request: Optional[SweepRequest] = None,
    session: AsyncSession = Depends(get_session),
    file_manager: FileManager = Depends(get_file_manager),
):
    """Settle jobs stuck in flight past the stale threshold."""
    older_than = request.older_than_seconds if request else None
    result = await sweep_stale_tasks(session, older_than, file_manager=file_manager)
    return SweepResponse(
        checked=result.checked,
        finalized=result.finalized,
        expired=result.expired,
        task_ids=result.task_ids,
    )


# ============================================================================
# Output
# ============================================================================

@router.post("/projects/{project_id}/combine", response_model=CombineResponse)
async def combine_videos(
    project_id: uuid.UUID,
    session: AsyncSession = Depends(get_session),
    file_manager: FileManager = Depends(get_file_manager),
    extractor: FrameExtractor = Depends(get_frame_extractor),
):
    """Concatenate every scene's latest video into the project's final cut."""
    combined = await stitcher.combine_videos(session, project_id, file_manager, extractor)
    return CombineResponse(
        project_id=str(project_id),
        url=combined.url,
        storage_path=combined.storage_path,
        clip_count=combined.clip_count,
    )


@router.get("/health")
async def health_check():
    """Health check endpoint."""
    return {
        "status": "ok",
        "version": __version__,
    }
