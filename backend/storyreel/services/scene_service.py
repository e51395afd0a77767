"""Scene-level state changes: description edits, confirmations, remediation.

Confirmations are one-way. Every confirmation re-evaluates whether all of
the project's scenes now satisfy the current stage's completion predicate,
and moves the project forward if so. There is no separate "advance stage"
operation.
"""

import logging
import uuid
from datetime import datetime, timezone

from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from storyreel.db.models import Scene, artifact_model
from storyreel.errors import InvalidRequestError, NotFoundError
from storyreel.orchestrator.state import (
    PENDING,
    can_confirm,
    check_transition,
    confirmed_of,
    status_of,
)
from storyreel.services import project_service

logger = logging.getLogger(__name__)

MAX_DESCRIPTION_LENGTH = 4000


async def get_scene(session: AsyncSession, scene_id: uuid.UUID) -> Scene:
    scene = await session.get(Scene, scene_id)
    if scene is None:
        raise NotFoundError(f"Scene not found: {scene_id}")
    return scene


def _clean_description(description: str) -> str:
    description = (description or "").strip()
    if not description:
        raise InvalidRequestError("Description is required")
    if len(description) > MAX_DESCRIPTION_LENGTH:
        raise InvalidRequestError(
            f"Description exceeds {MAX_DESCRIPTION_LENGTH} characters"
        )
    return description


async def update_description(session: AsyncSession, scene_id: uuid.UUID, description: str) -> Scene:
    """Edit a scene description; confirmed descriptions are frozen."""
    description = _clean_description(description)
    scene = await get_scene(session, scene_id)
    if scene.description_confirmed:
        raise InvalidRequestError("Scene description is confirmed and can no longer be edited")
    scene.description = description
    await session.commit()
    return scene


# ---------------------------------------------------------------------------
# Single-scene confirmations
# ---------------------------------------------------------------------------

async def confirm_description(session: AsyncSession, scene_id: uuid.UUID) -> Scene:
    scene = await get_scene(session, scene_id)
    if not scene.description.strip():
        raise InvalidRequestError("Cannot confirm an empty description")
    scene.description_confirmed = True
    await project_service.refresh_stage(session, scene.project_id)
    await session.commit()
    return scene


async def _confirm_artifact(session: AsyncSession, scene_id: uuid.UUID, kind: str) -> Scene:
    scene = await get_scene(session, scene_id)
    if confirmed_of(scene, kind):
        return scene
    if not can_confirm(scene, kind):
        raise InvalidRequestError(
            f"Scene {kind} is {status_of(scene, kind)}; only a completed {kind} can be confirmed"
        )
    setattr(scene, f"{kind}_confirmed", True)
    await project_service.refresh_stage(session, scene.project_id)
    await session.commit()
    logger.info("Scene %s: %s confirmed", scene.id, kind)
    return scene


async def confirm_image(session: AsyncSession, scene_id: uuid.UUID) -> Scene:
    return await _confirm_artifact(session, scene_id, "image")


async def confirm_video(session: AsyncSession, scene_id: uuid.UUID) -> Scene:
    return await _confirm_artifact(session, scene_id, "video")


# ---------------------------------------------------------------------------
# Project-wide confirmations
# ---------------------------------------------------------------------------

async def _confirm_all(session: AsyncSession, project_id: uuid.UUID, kind: str) -> int:
    """Confirm every scene that can be confirmed; return how many are confirmed.

    The stage only advances if, afterwards, every scene is confirmed.
    """
    await project_service.get_project(session, project_id)
    scenes = await project_service.list_scenes(session, project_id)

    confirmed = 0
    for scene in scenes:
        if kind == "description":
            if scene.description.strip():
                scene.description_confirmed = True
            if scene.description_confirmed:
                confirmed += 1
        elif can_confirm(scene, kind):
            setattr(scene, f"{kind}_confirmed", True)
            confirmed += 1

    project = await project_service.refresh_stage(session, project_id)
    await session.commit()
    logger.info(
        "Project %s: %d/%d scene %ss confirmed (stage=%s)",
        project_id, confirmed, len(scenes), kind, project.stage,
    )
    return confirmed


async def confirm_all_descriptions(session: AsyncSession, project_id: uuid.UUID) -> int:
    return await _confirm_all(session, project_id, "description")


async def confirm_all_images(session: AsyncSession, project_id: uuid.UUID) -> int:
    return await _confirm_all(session, project_id, "image")


async def confirm_all_videos(session: AsyncSession, project_id: uuid.UUID) -> int:
    return await _confirm_all(session, project_id, "video")


# ---------------------------------------------------------------------------
# Scene creation and removal
# ---------------------------------------------------------------------------

async def create_free_scene(session: AsyncSession, project_id: uuid.UUID, description: str) -> Scene:
    """Append a hand-written scene; its description counts as confirmed."""
    description = _clean_description(description)
    project = await project_service.get_project(session, project_id)

    result = await session.execute(
        select(func.max(Scene.order_index)).where(Scene.project_id == project_id)
    )
    current = result.scalar_one_or_none()
    scene = Scene(
        project_id=project_id,
        order_index=0 if current is None else current + 1,
        description=description,
        description_confirmed=True,
        mode="free",
    )
    session.add(scene)
    project_service.move_stage(project, "scenes")
    await session.commit()
    logger.info("Project %s: free scene %s added at %d", project_id, scene.id, scene.order_index)
    return scene


async def create_scenes(
    session: AsyncSession, project_id: uuid.UUID, descriptions: list[str]
) -> list[Scene]:
    """Insert story scenes in order, starting at order_index 0. Does not commit."""
    scenes = [
        Scene(project_id=project_id, order_index=i, description=text, mode="story")
        for i, text in enumerate(descriptions)
    ]
    session.add_all(scenes)
    return scenes


async def delete_scenes(session: AsyncSession, project_id: uuid.UUID) -> int:
    """Delete every scene of a project. Does not commit."""
    result = await session.execute(delete(Scene).where(Scene.project_id == project_id))
    return result.rowcount or 0


# ---------------------------------------------------------------------------
# Remediation
# ---------------------------------------------------------------------------

async def reset_scene_status(session: AsyncSession, scene_id: uuid.UUID, kind: str) -> Scene:
    """Manually release a scene stuck in ``processing``.

    In-flight placeholder rows for the scene are marked abandoned so a late
    poll cannot flip the scene again; their task ids are kept.
    """
    scene = await get_scene(session, scene_id)
    current = status_of(scene, kind)
    check_transition(kind, current, PENDING, confirmed_of(scene, kind))

    model = artifact_model(kind)
    result = await session.execute(
        select(model).where(
            model.scene_id == scene_id,
            model.task_id.is_not(None),
            model.storage_path == "",
            model.url == "",
            model.error_message.is_(None),
        )
    )
    now = datetime.now(timezone.utc)
    abandoned = 0
    for artifact in result.scalars().all():
        artifact.error_message = "Abandoned by manual reset"
        artifact.completed_at = now
        abandoned += 1

    setattr(scene, f"{kind}_status", PENDING)
    await session.commit()
    logger.warning(
        "Scene %s: %s reset from %s to pending (%d in-flight job(s) abandoned)",
        scene_id, kind, current, abandoned,
    )
    return scene


def scene_summary(scene: Scene) -> str:
    """One-line status used by the CLI."""
    parts = [
        "desc:" + ("confirmed" if scene.description_confirmed else "draft"),
        f"image:{scene.image_status}" + ("*" if scene.image_confirmed else ""),
        f"video:{scene.video_status}" + ("*" if scene.video_confirmed else ""),
    ]
    return " ".join(parts)

