"""Project persistence and stage bookkeeping."""

import logging
import uuid
from dataclasses import dataclass, field
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from storyreel.db.models import Image, Project, Scene, Video
from storyreel.errors import InvalidRequestError, NotFoundError
from storyreel.orchestrator.state import advance_stage, reachable_stage

logger = logging.getLogger(__name__)

PROJECT_MODES = frozenset({"story", "free"})


@dataclass
class SceneDetail:
    scene: Scene
    image: Optional[Image] = None
    video: Optional[Video] = None


@dataclass
class ProjectDetail:
    project: Project
    scenes: list[SceneDetail] = field(default_factory=list)


async def create_project(
    session: AsyncSession,
    title: str,
    story: str = "",
    style: Optional[str] = None,
    mode: str = "story",
) -> Project:
    """Create a project in the draft stage."""
    title = title.strip()
    if not title:
        raise InvalidRequestError("Project title is required")
    if mode not in PROJECT_MODES:
        raise InvalidRequestError(f"Unknown project mode: {mode}")
    if mode == "story" and not story.strip():
        raise InvalidRequestError("A story is required for story-mode projects")

    project = Project(title=title, story=story, style=style, mode=mode, stage="draft")
    session.add(project)
    await session.commit()
    logger.info("Created project %s (%s)", project.id, mode)
    return project


async def get_project(session: AsyncSession, project_id: uuid.UUID) -> Project:
    project = await session.get(Project, project_id)
    if project is None:
        raise NotFoundError(f"Project not found: {project_id}")
    return project


async def list_projects(session: AsyncSession) -> list[Project]:
    result = await session.execute(select(Project).order_by(Project.created_at.desc()))
    return list(result.scalars().all())


async def list_scenes(session: AsyncSession, project_id: uuid.UUID) -> list[Scene]:
    result = await session.execute(
        select(Scene).where(Scene.project_id == project_id).order_by(Scene.order_index)
    )
    return list(result.scalars().all())


async def _latest_by_scene(session: AsyncSession, model, scene_ids: list[uuid.UUID]) -> dict:
    if not scene_ids:
        return {}
    result = await session.execute(
        select(model).where(model.scene_id.in_(scene_ids)).order_by(model.version)
    )
    latest = {}
    for row in result.scalars().all():
        latest[row.scene_id] = row  # ascending order, last one wins
    return latest


async def get_project_detail(session: AsyncSession, project_id: uuid.UUID) -> ProjectDetail:
    """Project with its scenes and each scene's latest image and video."""
    project = await get_project(session, project_id)
    scenes = await list_scenes(session, project_id)
    ids = [s.id for s in scenes]
    images = await _latest_by_scene(session, Image, ids)
    videos = await _latest_by_scene(session, Video, ids)
    return ProjectDetail(
        project=project,
        scenes=[SceneDetail(scene=s, image=images.get(s.id), video=videos.get(s.id)) for s in scenes],
    )


async def update_project(
    session: AsyncSession,
    project_id: uuid.UUID,
    *,
    title: Optional[str] = None,
    story: Optional[str] = None,
    style: Optional[str] = None,
) -> Project:
    """Edit project content. The story is frozen once scenes exist."""
    project = await get_project(session, project_id)
    if title is not None:
        if not title.strip():
            raise InvalidRequestError("Project title is required")
        project.title = title.strip()
    if story is not None and story != project.story:
        if project.stage != "draft":
            raise InvalidRequestError("The story can only be edited in the draft stage")
        project.story = story
    if style is not None:
        project.style = style
    await session.commit()
    return project


async def delete_project(session: AsyncSession, project_id: uuid.UUID) -> None:
    """Delete a project; scenes, artifacts, materials and chains cascade."""
    project = await get_project(session, project_id)
    await session.delete(project)
    await session.commit()
    logger.info("Deleted project %s", project_id)


def move_stage(project: Project, target: str) -> bool:
    """Move a project forward to ``target`` if that is later than its stage.

    Returns:
        True if the stage changed.
    """
    new_stage = advance_stage(project.stage, target)
    if new_stage != project.stage:
        logger.info("Project %s: stage %s -> %s", project.id, project.stage, new_stage)
        project.stage = new_stage
        return True
    return False


async def refresh_stage(session: AsyncSession, project_id: uuid.UUID) -> Project:
    """Re-evaluate stage completion after a scene-level change.

    Does not commit; callers commit alongside their own change.
    """
    project = await get_project(session, project_id)
    scenes = await list_scenes(session, project_id)
    move_stage(project, reachable_stage(project.stage, scenes))
    return project
