"""
File management service for storyreel.

Handles structured filesystem artifact storage with path traversal protection.
Creates per-project directories with subdirectories for images, videos,
extracted frames, uploaded materials and combined output.
"""
import uuid
from dataclasses import dataclass
from pathlib import Path

from storyreel.config import settings

PROJECT_SUBDIRS = ("images", "videos", "frames", "materials", "output")


@dataclass
class StoredFile:
    storage_path: str  # relative to the media root
    url: str

    def __str__(self) -> str:
        return self.storage_path


class FileManager:
    """
    Manage filesystem artifacts for projects.

    Creates structured directories:
    - {base_dir}/{project_id}/images/ - generated scene images
    - {base_dir}/{project_id}/videos/ - generated scene videos
    - {base_dir}/{project_id}/frames/ - extracted last frames
    - {base_dir}/{project_id}/materials/ - uploaded scene materials
    - {base_dir}/{project_id}/output/ - combined project video

    Storage paths handed back to callers are relative to base_dir so the
    media root can move without rewriting database rows.
    """

    def __init__(self, base_dir: str | Path | None = None, public_base_url: str | None = None):
        """
        Initialize FileManager with base directory.

        Args:
            base_dir: Root directory for all project artifacts.
                     If None, uses settings.storage.media_dir
            public_base_url: URL prefix the media root is served under.
                     If None, uses settings.storage.public_base_url
        """
        if base_dir is None:
            base_dir = settings.storage.media_dir
        if public_base_url is None:
            public_base_url = settings.storage.public_base_url

        self.base_dir = Path(base_dir).resolve()
        self.base_dir.mkdir(parents=True, exist_ok=True)
        self.public_base_url = public_base_url.rstrip("/")

    def get_project_dir(self, project_id: uuid.UUID) -> Path:
        """
        Get or create project directory with subdirectories.

        Raises:
            ValueError: If project_id creates path outside base_dir (traversal attack)
        """
        project_dir = (self.base_dir / str(project_id)).resolve()

        if not project_dir.is_relative_to(self.base_dir):
            raise ValueError("Invalid project path")

        project_dir.mkdir(exist_ok=True)
        for name in PROJECT_SUBDIRS:
            (project_dir / name).mkdir(exist_ok=True)

        return project_dir

    def resolve(self, storage_path: str) -> Path:
        """Absolute path for a stored relative path, refusing escapes."""
        path = (self.base_dir / storage_path).resolve()
        if not path.is_relative_to(self.base_dir):
            raise ValueError("Invalid storage path")
        return path

    def url_for(self, storage_path: str) -> str:
        return f"{self.public_base_url}/{storage_path}"

    def _write(self, project_id: uuid.UUID, subdir: str, filename: str, data: bytes) -> StoredFile:
        project_dir = self.get_project_dir(project_id)
        filepath = project_dir / subdir / filename
        filepath.write_bytes(data)
        relative = filepath.relative_to(self.base_dir).as_posix()
        return StoredFile(storage_path=relative, url=self.url_for(relative))

    def save_image(
        self, project_id: uuid.UUID, scene_idx: int, version: int, data: bytes, ext: str = "png"
    ) -> StoredFile:
        """Save a generated image for a scene version."""
        return self._write(project_id, "images", f"scene_{scene_idx}_v{version}.{ext}", data)

    def save_video(
        self, project_id: uuid.UUID, scene_idx: int, version: int, data: bytes
    ) -> StoredFile:
        """Save a generated video for a scene version."""
        return self._write(project_id, "videos", f"scene_{scene_idx}_v{version}.mp4", data)

    def save_material(
        self, project_id: uuid.UUID, original_name: str, data: bytes
    ) -> StoredFile:
        """Save an uploaded material under a collision-free name."""
        suffix = Path(original_name).suffix.lower()
        return self._write(project_id, "materials", f"{uuid.uuid4().hex}{suffix}", data)

    def frame_path(self, project_id: uuid.UUID, video_id: uuid.UUID) -> Path:
        """Location for the extracted last frame of a video."""
        return self.get_project_dir(project_id) / "frames" / f"{video_id}_last.png"

    def stored(self, path: Path) -> StoredFile:
        """Describe a file already written under the media root."""
        relative = path.resolve().relative_to(self.base_dir).as_posix()
        return StoredFile(storage_path=relative, url=self.url_for(relative))

    def get_output_path(
        self, project_id: uuid.UUID, filename: str = "final.mp4"
    ) -> Path:
        """
        Get path for the combined project video.

        Args:
            project_id: UUID of the project
            filename: Output filename (default: 'final.mp4')
        """
        project_dir = self.get_project_dir(project_id)
        return project_dir / "output" / filename


_file_manager: FileManager | None = None


def get_file_manager() -> FileManager:
    """Get or create the singleton FileManager."""
    global _file_manager
    if _file_manager is None:
        _file_manager = FileManager()
    return _file_manager
