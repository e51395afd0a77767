"""Shared fixtures: isolated settings, a per-test SQLite database, fakes.

Settings are read once at import time, so the environment is pinned here
before anything from storyreel is imported.
"""

import os
import tempfile
from pathlib import Path

_TMP_ROOT = Path(tempfile.mkdtemp(prefix="storyreel-tests-"))
os.environ["STORYREEL_STORAGE__MEDIA_DIR"] = str(_TMP_ROOT / "media")
os.environ["STORYREEL_STORAGE__DATABASE_URL"] = f"sqlite+aiosqlite:///{_TMP_ROOT / 'default.db'}"
os.environ["STORYREEL_STORAGE__PUBLIC_BASE_URL"] = "/media"
# Never pick up a developer's real credentials
for _kind in ("TEXT", "IMAGE", "VIDEO"):
    os.environ[f"STORYREEL_PROVIDERS__{_kind}__API_KEY"] = ""

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from storyreel.db import init_database
from storyreel.db.engine import build_engine
from storyreel.db.models import Image, Project, Scene, Video
from storyreel.services.file_manager import FileManager
from storyreel.services.frame_extractor import ExtractedFrame, FrameExtractor
from storyreel.services.providers import (
    GenerationProvider,
    JobHandle,
    JobStatusReport,
)

STORY = (
    "An old keeper tends a lighthouse on a cliff. One stormy night a small "
    "boat loses its way, and the keeper relights the broken lamp to guide it home."
)


# ---------------------------------------------------------------------------
# Fakes
# ---------------------------------------------------------------------------

class FakeProvider(GenerationProvider):
    """In-memory generation provider with scriptable job outcomes."""

    def __init__(self, kind: str, *, configured: bool = True):
        self.kind = kind
        self.configured = configured
        self.requests = []
        self.statuses: dict[str, JobStatusReport] = {}
        self.poll_calls = 0
        self.create_error = None
        self.poll_error = None
        self.download_error = None
        self.artifact_bytes = b"artifact-bytes"
        self._counter = 0

    def is_configured(self) -> bool:
        return self.configured

    async def create_job(self, request):
        if self.create_error is not None:
            raise self.create_error
        self._counter += 1
        job_id = f"{self.kind}-task-{self._counter}"
        self.requests.append(request)
        self.statuses[job_id] = JobStatusReport(status="processing")
        return JobHandle(job_id=job_id, initial_status="processing")

    async def poll_job(self, job_id: str) -> JobStatusReport:
        self.poll_calls += 1
        if self.poll_error is not None:
            raise self.poll_error
        return self.statuses.get(job_id, JobStatusReport(status="processing"))

    async def download_artifact(self, ref: str) -> bytes:
        if self.download_error is not None:
            raise self.download_error
        return self.artifact_bytes

    def complete(self, job_id: str, ref: str | None = None) -> None:
        self.statuses[job_id] = JobStatusReport(
            status="completed", artifact_ref=ref or f"https://cdn.example.com/{job_id}"
        )

    def fail(self, job_id: str, message: str = "content policy violation") -> None:
        self.statuses[job_id] = JobStatusReport(status="failed", error_message=message)


class StubFrameExtractor(FrameExtractor):
    """Frame extractor that writes a placeholder file instead of running ffmpeg."""

    def __init__(self, available: bool = True):
        super().__init__(ffmpeg_bin="ffmpeg-stub")
        self._available = available
        self.sources = []

    async def extract_last_frame(self, source, out_path: Path) -> ExtractedFrame:
        self.sources.append(str(source))
        if not self._available:
            return ExtractedFrame(
                success=False,
                needs_client_extraction=True,
                error="ffmpeg is not available on the server",
            )
        out_path.parent.mkdir(parents=True, exist_ok=True)
        out_path.write_bytes(b"png")
        return ExtractedFrame(success=True, frame_path=out_path)


# ---------------------------------------------------------------------------
# Database
# ---------------------------------------------------------------------------

@pytest.fixture
async def engine(tmp_path):
    test_engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}")
    await init_database(test_engine)
    yield test_engine
    await test_engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)


@pytest.fixture
async def session(session_factory):
    async with session_factory() as db_session:
        yield db_session


@pytest.fixture
def file_manager(tmp_path):
    return FileManager(tmp_path / "media", "http://media.example.com/media")


@pytest.fixture
def image_provider():
    return FakeProvider("image")


@pytest.fixture
def video_provider():
    return FakeProvider("video")


@pytest.fixture
def extractor():
    return StubFrameExtractor(available=True)


@pytest.fixture
def no_ffmpeg():
    return StubFrameExtractor(available=False)


# ---------------------------------------------------------------------------
# Row factories
# ---------------------------------------------------------------------------

@pytest.fixture
def make_project(session):
    async def _make(
        title: str = "The Lighthouse",
        story: str = STORY,
        style: str | None = "cinematic",
        mode: str = "story",
        stage: str = "draft",
    ) -> Project:
        project = Project(title=title, story=story, style=style, mode=mode, stage=stage)
        session.add(project)
        await session.commit()
        return project

    return _make


@pytest.fixture
def make_scene(session):
    async def _make(project: Project, order_index: int = 0, description: str | None = None, **fields) -> Scene:
        scene = Scene(
            project_id=project.id,
            order_index=order_index,
            description=description or f"Scene {order_index}: waves crash below the lighthouse",
            **fields,
        )
        session.add(scene)
        await session.commit()
        return scene

    return _make


@pytest.fixture
def make_image(session):
    async def _make(scene: Scene, version: int = 1, url: str = "", **fields) -> Image:
        image = Image(scene_id=scene.id, version=version, url=url, storage_path=fields.pop("storage_path", ""), **fields)
        session.add(image)
        await session.commit()
        return image

    return _make


@pytest.fixture
def make_video(session):
    async def _make(scene: Scene, version: int = 1, url: str = "", **fields) -> Video:
        video = Video(scene_id=scene.id, version=version, url=url, storage_path=fields.pop("storage_path", ""), **fields)
        session.add(video)
        await session.commit()
        return video

    return _make
