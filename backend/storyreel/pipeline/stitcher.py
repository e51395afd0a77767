"""Combine a completed project's scene videos into one file.

Uses the ffmpeg concat demuxer with stream copy, so clips are joined as hard
cuts without re-encoding. Each scene contributes its latest completed video,
in scene order.
"""

import asyncio
import logging
import subprocess
import uuid
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from storyreel.errors import ConfigurationError, InvalidRequestError, StoryReelError
from storyreel.orchestrator.state import KIND_VIDEO
from storyreel.services import project_service, task_tracker
from storyreel.services.file_manager import FileManager, get_file_manager
from storyreel.services.frame_extractor import FrameExtractor, frame_extractor

logger = logging.getLogger(__name__)


@dataclass
class CombinedVideo:
    project_id: uuid.UUID
    storage_path: str
    url: str
    clip_count: int


async def combine_videos(
    session: AsyncSession,
    project_id: uuid.UUID,
    file_manager: Optional[FileManager] = None,
    ffmpeg: Optional[FrameExtractor] = None,
) -> CombinedVideo:
    """Concatenate every scene's latest video into ``output/final.mp4``.

    Args:
        session: Async database session
        project_id: Project to combine; must be in the completed stage
        file_manager: Storage root (defaults to the process-wide one)
        ffmpeg: Provides the ffmpeg binary and its availability probe

    Raises:
        InvalidRequestError: Project not completed, or a scene has no
            locally stored video.
        ConfigurationError: ffmpeg is not installed.
        StoryReelError: ffmpeg failed.
    """
    file_manager = file_manager or get_file_manager()
    ffmpeg = ffmpeg or frame_extractor

    project = await project_service.get_project(session, project_id)
    if project.stage != "completed":
        raise InvalidRequestError(
            f"Project is in the {project.stage} stage; all scene videos must be confirmed first"
        )
    if not await ffmpeg.check_available():
        raise ConfigurationError("ffmpeg is required to combine videos but was not found")

    clip_paths: list[Path] = []
    for scene in await project_service.list_scenes(session, project_id):
        video = await task_tracker.latest_artifact(session, KIND_VIDEO, scene.id, completed_only=True)
        if video is None or not video.storage_path:
            raise InvalidRequestError(
                f"Scene {scene.order_index + 1} has no locally stored video to combine"
            )
        path = file_manager.resolve(video.storage_path)
        if not path.exists():
            raise InvalidRequestError(f"Missing clip file for scene {scene.order_index + 1}: {path}")
        clip_paths.append(path)

    output_path = file_manager.get_output_path(project.id, "final.mp4")
    logger.info("Project %s: combining %d clips", project_id, len(clip_paths))
    try:
        await asyncio.to_thread(_stitch_concat_demuxer, clip_paths, output_path, ffmpeg.ffmpeg_bin)
    except subprocess.CalledProcessError as e:
        stderr = e.stderr.decode(errors="replace") if e.stderr else "No error output"
        logger.error("Project %s: ffmpeg error: %s", project_id, stderr)
        raise StoryReelError(f"Video stitching failed: {stderr[-500:]}") from e

    stored = file_manager.stored(output_path)
    project.output_path = stored.storage_path
    await session.commit()
    logger.info("Project %s: combined video -> %s", project_id, stored)
    return CombinedVideo(
        project_id=project.id,
        storage_path=stored.storage_path,
        url=stored.url,
        clip_count=len(clip_paths),
    )


def _stitch_concat_demuxer(clip_paths: list[Path], output_path: Path, ffmpeg_bin: str = "ffmpeg") -> None:
    """Stitch videos using the ffmpeg concat demuxer (hard cuts, stream copy)."""
    list_file = output_path.parent / "concat_list.txt"

    try:
        with open(list_file, "w") as f:
            for clip_path in clip_paths:
                f.write(f"file '{clip_path.resolve()}'\n")

        # -safe 0 allows absolute paths in the list file
        subprocess.run(
            [
                ffmpeg_bin,
                "-y",
                "-f", "concat",
                "-safe", "0",
                "-i", str(list_file),
                "-c", "copy",
                str(output_path),
            ],
            check=True,
            capture_output=True,
        )
        logger.info("Concat demuxer stitching complete: %s", output_path)

    finally:
        if list_file.exists():
            list_file.unlink()
