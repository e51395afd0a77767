"""Create -> poll -> finalize lifecycle for one generation job.

A job is persisted as a placeholder artifact row the moment the provider
accepts it: ``task_id`` set, ``storage_path``/``url`` empty. That row is the
resumability contract. Any later poller can find the job by task id and
finish it, whether the original request is still alive or not.

Usage:
    artifact = await start_job(session, scene, "video", provider, request)
    result = await finalize_if_ready(session, artifact.task_id, provider)
"""

import asyncio
import logging
import uuid
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Optional

from sqlalchemy import func, inspect, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from storyreel.config import settings
from storyreel.db.models import Project, Scene, Video, VideoChainItem, artifact_model
from storyreel.errors import InvalidRequestError, NotFoundError
from storyreel.orchestrator.state import (
    COMPLETED,
    FAILED,
    PROCESSING,
    check_transition,
    generation_precondition,
    status_of,
)
from storyreel.services.file_manager import FileManager, get_file_manager
from storyreel.services.providers.base import (
    GenerationProvider,
    GenerationRequest,
    require_configured,
)

logger = logging.getLogger(__name__)

# Serializes read-max-then-insert of artifact versions per (scene, kind).
# The unique constraint on (scene_id, version) backs this across processes.
# Entries are dropped once no task holds or waits on them.
_version_locks: dict[tuple[uuid.UUID, str], asyncio.Lock] = {}
_version_lock_users: dict[tuple[uuid.UUID, str], int] = {}

_VERSION_INSERT_ATTEMPTS = 3


@asynccontextmanager
async def _version_lock(scene_id: uuid.UUID, kind: str):
    key = (scene_id, kind)
    lock = _version_locks.setdefault(key, asyncio.Lock())
    _version_lock_users[key] = _version_lock_users.get(key, 0) + 1
    try:
        async with lock:
            yield
    finally:
        _version_lock_users[key] -= 1
        if not _version_lock_users[key]:
            del _version_lock_users[key]
            del _version_locks[key]


@dataclass
class FinalizeResult:
    """Outcome of one finalize/status check."""

    kind: str
    status: str
    scene_id: uuid.UUID
    artifact_id: uuid.UUID
    artifact_url: Optional[str] = None
    error: Optional[str] = None
    warning: Optional[str] = None

    @property
    def success(self) -> bool:
        return self.status != FAILED

    @property
    def is_terminal(self) -> bool:
        return self.status in (COMPLETED, FAILED)


@dataclass
class TerminalResult:
    """Outcome of a bounded polling loop."""

    status: str
    attempts: int
    timed_out: bool
    result: Any = None


# ---------------------------------------------------------------------------
# Version helpers
# ---------------------------------------------------------------------------

async def next_version(session: AsyncSession, kind: str, scene_id: uuid.UUID) -> int:
    """Return max(version) + 1 for a scene's artifacts of one kind."""
    model = artifact_model(kind)
    result = await session.execute(
        select(func.max(model.version)).where(model.scene_id == scene_id)
    )
    current = result.scalar_one_or_none()
    return (current or 0) + 1


async def latest_artifact(
    session: AsyncSession,
    kind: str,
    scene_id: uuid.UUID,
    *,
    completed_only: bool = False,
):
    """Return the highest-version artifact of a kind for a scene, or None."""
    model = artifact_model(kind)
    stmt = select(model).where(model.scene_id == scene_id)
    if completed_only:
        stmt = stmt.where(model.url != "")
    result = await session.execute(stmt.order_by(model.version.desc()).limit(1))
    return result.scalar_one_or_none()


async def find_job(session: AsyncSession, task_id: str, kind: Optional[str] = None):
    """Locate the artifact row carrying a provider task id.

    Returns:
        (kind, artifact) tuple.

    Raises:
        NotFoundError: No artifact references the task id.
    """
    kinds = (kind,) if kind else ("video", "image")
    for candidate in kinds:
        model = artifact_model(candidate)
        result = await session.execute(
            select(model).where(model.task_id == task_id).order_by(model.version.desc()).limit(1)
        )
        artifact = result.scalar_one_or_none()
        if artifact is not None:
            return candidate, artifact
    raise NotFoundError(f"No generation task found for id {task_id}")


def _set_scene_status(scene: Scene, kind: str, status: str) -> None:
    setattr(scene, f"{kind}_status", status)


# ---------------------------------------------------------------------------
# Job creation
# ---------------------------------------------------------------------------

async def start_job(
    session: AsyncSession,
    scene: Scene,
    kind: str,
    provider: GenerationProvider,
    request: GenerationRequest,
    **artifact_fields,
):
    """Create a provider job and persist its in-flight placeholder.

    Order of effects:
    1. configuration and scene preconditions are checked; failures raise
       without touching the database
    2. the scene's status becomes ``processing``
    3. the provider job is created; on any error the scene becomes
       ``failed`` and the error is re-raised
    4. a placeholder artifact with the next version and the task id is
       inserted; if that fails the scene becomes ``failed`` and the error
       is re-raised

    Returns:
        The placeholder Image or Video row.
    """
    require_configured(provider)
    reason = generation_precondition(scene, kind)
    if reason:
        raise InvalidRequestError(reason)
    check_transition(kind, status_of(scene, kind), PROCESSING, False)

    scene_id = scene.id
    _set_scene_status(scene, kind, PROCESSING)
    await session.commit()

    try:
        handle = await provider.create_job(request)
    except Exception as e:
        logger.warning("Scene %s: %s task creation failed: %s", scene_id, kind, e)
        _set_scene_status(scene, kind, FAILED)
        await session.commit()
        raise

    model = artifact_model(kind)
    try:
        async with _version_lock(scene_id, kind):
            for attempt in range(1, _VERSION_INSERT_ATTEMPTS + 1):
                version = await next_version(session, kind, scene_id)
                artifact = model(
                    scene_id=scene_id,
                    version=version,
                    task_id=handle.job_id,
                    storage_path="",
                    url="",
                    prompt=request.description,
                    **artifact_fields,
                )
                session.add(artifact)
                try:
                    await session.commit()
                except IntegrityError:
                    # Another process took this version; recompute and retry
                    await session.rollback()
                    logger.warning(
                        "Scene %s: %s version %d collided (attempt %d)",
                        scene_id, kind, version, attempt,
                    )
                    if attempt == _VERSION_INSERT_ATTEMPTS:
                        raise
                    continue
                break
    except Exception:
        await session.rollback()
        logger.error(
            "Scene %s: placeholder for %s task %s could not be stored; the job is orphaned",
            scene_id, kind, handle.job_id,
        )
        failed_scene = await session.get(Scene, scene_id)
        if failed_scene is not None:
            _set_scene_status(failed_scene, kind, FAILED)
            await session.commit()
        raise

    # A rolled-back collision expires the caller's scene
    if inspect(scene).expired:
        await session.refresh(scene)
    logger.info(
        "Scene %s: %s task %s started as version %d",
        scene_id, kind, handle.job_id, artifact.version,
    )
    return artifact


# ---------------------------------------------------------------------------
# Finalization
# ---------------------------------------------------------------------------

def _stored_result(kind: str, artifact) -> FinalizeResult:
    """Describe an artifact whose job is no longer in flight."""
    if artifact.url:
        status = COMPLETED
    elif artifact.error_message is not None:
        status = FAILED
    else:
        status = PROCESSING
    return FinalizeResult(
        kind=kind,
        status=status,
        scene_id=artifact.scene_id,
        artifact_id=artifact.id,
        artifact_url=artifact.url or None,
        error=artifact.error_message,
    )


async def _is_latest(session: AsyncSession, kind: str, artifact) -> bool:
    latest = await latest_artifact(session, kind, artifact.scene_id)
    return latest is not None and latest.id == artifact.id


def _store_artifact(
    kind: str,
    artifact,
    scene: Scene,
    data: bytes,
    file_manager: FileManager,
):
    if kind == "image":
        return file_manager.save_image(scene.project_id, scene.order_index, artifact.version, data)
    return file_manager.save_video(scene.project_id, scene.order_index, artifact.version, data)


async def finalize_if_ready(
    session: AsyncSession,
    task_id: str,
    provider: GenerationProvider,
    file_manager: Optional[FileManager] = None,
    *,
    kind: Optional[str] = None,
) -> FinalizeResult:
    """Poll a job once and persist its outcome if it is terminal.

    - still pending/processing: no mutation, safe to call repeatedly
    - completed: artifact downloaded and stored, row updated in place,
      scene ``completed``. A download/storage failure is reported as a
      warning; the scene is still marked completed and the row keeps the
      provider URL so the asset stays reachable
    - failed: row records the error, scene ``failed``

    Rows that are already finalized are reported from the database without
    calling the provider.
    """
    kind, artifact = await find_job(session, task_id, kind)
    if not artifact.is_in_flight:
        return _stored_result(kind, artifact)

    require_configured(provider)
    report = await provider.poll_job(task_id)

    if not report.is_terminal:
        return FinalizeResult(
            kind=kind,
            status=report.status,
            scene_id=artifact.scene_id,
            artifact_id=artifact.id,
        )

    scene = await session.get(Scene, artifact.scene_id)
    if scene is None:
        raise NotFoundError(f"Scene not found: {artifact.scene_id}")
    owns_scene = await _is_latest(session, kind, artifact)
    now = datetime.now(timezone.utc)

    if report.status == FAILED:
        artifact.error_message = report.error_message or "Generation failed"
        artifact.completed_at = now
        if owns_scene:
            _set_scene_status(scene, kind, FAILED)
        await session.commit()
        logger.warning("Scene %s: %s task %s failed: %s", scene.id, kind, task_id, artifact.error_message)
        return FinalizeResult(
            kind=kind,
            status=FAILED,
            scene_id=scene.id,
            artifact_id=artifact.id,
            error=artifact.error_message,
        )

    warning = None
    file_manager = file_manager or get_file_manager()
    try:
        data = await provider.download_artifact(report.artifact_ref)
        stored = _store_artifact(kind, artifact, scene, data, file_manager)
        artifact.storage_path = stored.storage_path
        artifact.url = stored.url
    except Exception as e:
        warning = f"Generated {kind} could not be saved locally: {e}"
        logger.warning("Scene %s: %s", scene.id, warning)
        artifact.storage_path = ""
        artifact.url = report.artifact_ref

    if kind == "video" and artifact.duration is None:
        artifact.duration = float(settings.pipeline.default_video_duration)
    artifact.completed_at = now
    if owns_scene:
        _set_scene_status(scene, kind, COMPLETED)
    await session.commit()

    if owns_scene:
        await supersede_previous(session, kind, artifact, file_manager)

    logger.info("Scene %s: %s task %s completed -> %s", scene.id, kind, task_id, artifact.url)
    return FinalizeResult(
        kind=kind,
        status=COMPLETED,
        scene_id=scene.id,
        artifact_id=artifact.id,
        artifact_url=artifact.url,
        warning=warning,
    )


async def supersede_previous(
    session: AsyncSession,
    kind: str,
    keep,
    file_manager: Optional[FileManager] = None,
    *,
    purge: Optional[bool] = None,
) -> int:
    """Purge older finished artifacts of a scene once a newer one completes.

    Only runs when ``pipeline.purge_superseded_artifacts`` is enabled (or
    ``purge=True``). Videos that belong to a continuation chain and rows
    still in flight are kept.

    Returns:
        Number of rows removed.
    """
    if purge is None:
        purge = settings.pipeline.purge_superseded_artifacts
    if not purge:
        return 0

    model = artifact_model(kind)
    stmt = select(model).where(
        model.scene_id == keep.scene_id,
        model.version < keep.version,
    )
    if model is Video:
        chained = select(VideoChainItem.video_id)
        parents = select(VideoChainItem.parent_video_id).where(
            VideoChainItem.parent_video_id.is_not(None)
        )
        stmt = stmt.where(model.id.not_in(chained), model.id.not_in(parents))
    result = await session.execute(stmt)

    removed = 0
    for old in result.scalars().all():
        if old.is_in_flight:
            continue
        if old.storage_path and file_manager is not None:
            try:
                file_manager.resolve(old.storage_path).unlink(missing_ok=True)
            except (OSError, ValueError) as e:
                logger.warning("Could not remove %s: %s", old.storage_path, e)
        await session.delete(old)
        removed += 1

    if removed:
        await session.commit()
        logger.info("Scene %s: purged %d superseded %s artifact(s)", keep.scene_id, removed, kind)
    return removed


async def expire_job(session: AsyncSession, kind: str, artifact, reason: str) -> None:
    """Give up on an in-flight job.

    The row keeps its task id for auditing; the error marks it as no longer
    in flight. The scene is marked failed if this was its latest job and it
    is still processing.
    """
    artifact.error_message = reason
    artifact.completed_at = datetime.now(timezone.utc)
    if await _is_latest(session, kind, artifact):
        scene = await session.get(Scene, artifact.scene_id)
        if scene is not None and status_of(scene, kind) == PROCESSING:
            _set_scene_status(scene, kind, FAILED)
    await session.commit()
    logger.warning("%s task %s expired: %s", kind, artifact.task_id, reason)


async def in_flight_jobs(
    session: AsyncSession,
    kind: str,
    *,
    older_than: Optional[datetime] = None,
    project_id: Optional[uuid.UUID] = None,
) -> list:
    """List placeholder rows still waiting on the provider."""
    model = artifact_model(kind)
    stmt = select(model).where(
        model.task_id.is_not(None),
        model.storage_path == "",
        model.url == "",
        model.error_message.is_(None),
    )
    if older_than is not None:
        stmt = stmt.where(model.created_at < older_than)
    if project_id is not None:
        stmt = stmt.join(Scene, Scene.id == model.scene_id).where(Scene.project_id == project_id)
    result = await session.execute(stmt.order_by(model.created_at))
    return list(result.scalars().all())


# ---------------------------------------------------------------------------
# Bounded polling
# ---------------------------------------------------------------------------

async def poll_until_terminal(
    poll: Callable[[str], Awaitable[Any]],
    job_id: str,
    interval: float,
    max_attempts: int,
    *,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> TerminalResult:
    """Call ``poll(job_id)`` until it reports a terminal status.

    ``poll`` returns any object with a ``status`` attribute (a
    JobStatusReport or a FinalizeResult). Exceeding ``max_attempts`` is a
    timeout, not a failure: the last observed status is returned with
    ``timed_out=True`` and nothing is mutated here.
    """
    last = None
    for attempt in range(1, max_attempts + 1):
        last = await poll(job_id)
        if last.status in (COMPLETED, FAILED):
            return TerminalResult(status=last.status, attempts=attempt, timed_out=False, result=last)
        if attempt < max_attempts:
            await sleep(interval)

    logger.warning(
        "Task %s still %s after %d polls",
        job_id, getattr(last, "status", "unknown"), max_attempts,
    )
    return TerminalResult(
        status=getattr(last, "status", PROCESSING),
        attempts=max_attempts,
        timed_out=True,
        result=last,
    )


async def load_scene_project(session: AsyncSession, scene_id: uuid.UUID) -> tuple[Scene, Project]:
    """Fetch a scene and its project or raise NotFoundError."""
    scene = await session.get(Scene, scene_id)
    if scene is None:
        raise NotFoundError(f"Scene not found: {scene_id}")
    project = await session.get(Project, scene.project_id)
    if project is None:
        raise NotFoundError(f"Project not found: {scene.project_id}")
    return scene, project

