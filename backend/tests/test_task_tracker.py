"""Job lifecycle: create, poll, finalize, expire."""

import asyncio

import httpx
import pytest
from sqlalchemy.exc import IntegrityError

from storyreel.db.models import Image, Scene, Video
from storyreel.errors import ConfigurationError, InvalidRequestError, NotFoundError, ProviderError
from storyreel.services import task_tracker
from storyreel.services.providers import GenerationRequest, JobStatusReport


async def _ready_scene(make_project, make_scene, **fields):
    project = await make_project(stage="images")
    fields.setdefault("description_confirmed", True)
    scene = await make_scene(project, **fields)
    return project, scene


# ---------------------------------------------------------------------------
# start_job
# ---------------------------------------------------------------------------

async def test_start_job_persists_placeholder(session, make_project, make_scene, image_provider):
    _, scene = await _ready_scene(make_project, make_scene)

    image = await task_tracker.start_job(
        session, scene, "image", image_provider, GenerationRequest(description=scene.description)
    )

    assert image.task_id == "image-task-1"
    assert image.version == 1
    assert image.url == "" and image.storage_path == ""
    assert image.is_in_flight
    assert scene.image_status == "processing"


async def test_versions_increase_per_scene(session, make_project, make_scene, image_provider):
    _, scene = await _ready_scene(make_project, make_scene)
    request = GenerationRequest(description=scene.description)

    first = await task_tracker.start_job(session, scene, "image", image_provider, request)
    image_provider.complete(first.task_id)
    await task_tracker.finalize_if_ready(session, first.task_id, image_provider, kind="image",
                                         file_manager=None)
    second = await task_tracker.start_job(session, scene, "image", image_provider, request)

    assert (first.version, second.version) == (1, 2)


async def test_unconfigured_provider_fails_before_mutation(session, make_project, make_scene, image_provider):
    _, scene = await _ready_scene(make_project, make_scene)
    image_provider.configured = False

    with pytest.raises(ConfigurationError):
        await task_tracker.start_job(
            session, scene, "image", image_provider, GenerationRequest(description="x")
        )

    assert scene.image_status == "pending"
    assert image_provider.requests == []


async def test_precondition_checked_before_mutation(session, make_project, make_scene, image_provider):
    _, scene = await _ready_scene(make_project, make_scene, description_confirmed=False)

    with pytest.raises(InvalidRequestError, match="description must be confirmed"):
        await task_tracker.start_job(
            session, scene, "image", image_provider, GenerationRequest(description="x")
        )
    assert scene.image_status == "pending"


async def test_create_failure_marks_scene_failed(session, make_project, make_scene, image_provider):
    _, scene = await _ready_scene(make_project, make_scene)
    image_provider.create_error = ProviderError("quota exceeded", status_code=429)

    with pytest.raises(ProviderError):
        await task_tracker.start_job(
            session, scene, "image", image_provider, GenerationRequest(description="x")
        )

    await session.refresh(scene)
    assert scene.image_status == "failed"
    assert await task_tracker.latest_artifact(session, "image", scene.id) is None


async def test_concurrent_starts_get_distinct_versions(session_factory, make_project, make_scene, image_provider):
    _, scene = await _ready_scene(make_project, make_scene)
    request = GenerationRequest(description=scene.description)

    async with session_factory() as first, session_factory() as second:
        results = await asyncio.gather(
            task_tracker.start_job(first, await first.get(Scene, scene.id), "image", image_provider, request),
            task_tracker.start_job(second, await second.get(Scene, scene.id), "image", image_provider, request),
        )

    assert sorted(image.version for image in results) == [1, 2]
    assert len({image.task_id for image in results}) == 2
    assert task_tracker._version_locks == {}


def _stale_versions(monkeypatch, stale_calls: int):
    """Make next_version return the taken version 1 for the first calls."""
    real_next_version = task_tracker.next_version
    calls = []

    async def stale_next_version(session, kind, scene_id):
        calls.append(scene_id)
        if len(calls) <= stale_calls:
            return 1
        return await real_next_version(session, kind, scene_id)

    monkeypatch.setattr(task_tracker, "next_version", stale_next_version)
    return calls


async def test_version_collision_is_retried(
    session, monkeypatch, make_project, make_scene, make_image, image_provider
):
    _, scene = await _ready_scene(make_project, make_scene)
    await make_image(scene, version=1, url="http://media.example.com/media/old.png")
    calls = _stale_versions(monkeypatch, stale_calls=1)

    image = await task_tracker.start_job(
        session, scene, "image", image_provider, GenerationRequest(description=scene.description)
    )

    assert len(calls) == 2
    assert image.version == 2
    assert image.task_id == "image-task-1"
    assert scene.image_status == "processing"


async def test_version_collision_exhausted_marks_scene_failed(
    session, session_factory, monkeypatch, make_project, make_scene, make_image, image_provider
):
    _, scene = await _ready_scene(make_project, make_scene)
    await make_image(scene, version=1, url="http://media.example.com/media/old.png")
    scene_id = scene.id
    calls = _stale_versions(monkeypatch, stale_calls=10)

    with pytest.raises(IntegrityError):
        await task_tracker.start_job(
            session, scene, "image", image_provider, GenerationRequest(description="x")
        )

    assert len(calls) == 3
    assert task_tracker._version_locks == {}
    async with session_factory() as fresh:
        assert (await fresh.get(Scene, scene_id)).image_status == "failed"
        with pytest.raises(NotFoundError):
            await task_tracker.find_job(fresh, "image-task-1")


# ---------------------------------------------------------------------------
# finalize_if_ready
# ---------------------------------------------------------------------------

async def test_finalize_pending_is_idempotent(session, make_project, make_scene, image_provider, file_manager):
    _, scene = await _ready_scene(make_project, make_scene)
    image = await task_tracker.start_job(
        session, scene, "image", image_provider, GenerationRequest(description="x")
    )

    for _ in range(3):
        result = await task_tracker.finalize_if_ready(session, image.task_id, image_provider, file_manager)
        assert result.status == "processing"
        assert not result.is_terminal

    await session.refresh(image)
    assert image.is_in_flight
    assert scene.image_status == "processing"


async def test_finalize_completed_stores_artifact(session, make_project, make_scene, image_provider, file_manager):
    project, scene = await _ready_scene(make_project, make_scene)
    image = await task_tracker.start_job(
        session, scene, "image", image_provider, GenerationRequest(description="x")
    )
    image_provider.complete(image.task_id)

    result = await task_tracker.finalize_if_ready(session, image.task_id, image_provider, file_manager)

    assert result.status == "completed"
    assert result.warning is None
    assert image.storage_path == f"{project.id}/images/scene_0_v1.png"
    assert result.artifact_url == f"http://media.example.com/media/{image.storage_path}"
    assert file_manager.resolve(image.storage_path).read_bytes() == b"artifact-bytes"
    assert image.completed_at is not None
    assert scene.image_status == "completed"


async def test_finalize_already_done_skips_provider(session, make_project, make_scene, image_provider, file_manager):
    _, scene = await _ready_scene(make_project, make_scene)
    image = await task_tracker.start_job(
        session, scene, "image", image_provider, GenerationRequest(description="x")
    )
    image_provider.complete(image.task_id)
    await task_tracker.finalize_if_ready(session, image.task_id, image_provider, file_manager)
    calls = image_provider.poll_calls

    again = await task_tracker.finalize_if_ready(session, image.task_id, image_provider, file_manager)

    assert again.status == "completed"
    assert image_provider.poll_calls == calls


async def test_finalize_failed_records_error(session, make_project, make_scene, image_provider, file_manager):
    _, scene = await _ready_scene(make_project, make_scene)
    image = await task_tracker.start_job(
        session, scene, "image", image_provider, GenerationRequest(description="x")
    )
    image_provider.fail(image.task_id, "nsfw content detected")

    result = await task_tracker.finalize_if_ready(session, image.task_id, image_provider, file_manager)

    assert result.status == "failed"
    assert result.error == "nsfw content detected"
    assert image.error_message == "nsfw content detected"
    assert scene.image_status == "failed"


async def test_download_failure_keeps_remote_url(session, make_project, make_scene, image_provider, file_manager):
    _, scene = await _ready_scene(make_project, make_scene)
    image = await task_tracker.start_job(
        session, scene, "image", image_provider, GenerationRequest(description="x")
    )
    image_provider.complete(image.task_id, "https://cdn.example.com/final.png")
    image_provider.download_error = httpx.ConnectError("connection reset")

    result = await task_tracker.finalize_if_ready(session, image.task_id, image_provider, file_manager)

    assert result.status == "completed"
    assert "could not be saved locally" in result.warning
    assert image.url == "https://cdn.example.com/final.png"
    assert image.storage_path == ""
    assert scene.image_status == "completed"


async def test_superseded_job_does_not_touch_scene(session, make_project, make_scene, image_provider, file_manager):
    _, scene = await _ready_scene(make_project, make_scene)
    request = GenerationRequest(description="x")
    old = await task_tracker.start_job(session, scene, "image", image_provider, request)
    await task_tracker.expire_job(session, "image", old, "test")
    new = await task_tracker.start_job(session, scene, "image", image_provider, request)

    image_provider.fail(old.task_id)
    await task_tracker.finalize_if_ready(session, old.task_id, image_provider, file_manager)

    assert new.version == 2
    assert scene.image_status == "processing"


async def test_video_finalize_fills_default_duration(session, make_project, make_scene, video_provider, file_manager):
    _, scene = await _ready_scene(make_project, make_scene, image_status="completed")
    video = await task_tracker.start_job(
        session, scene, "video", video_provider,
        GenerationRequest(description="x", source_image_url="http://img"),
    )
    video_provider.complete(video.task_id)

    await task_tracker.finalize_if_ready(session, video.task_id, video_provider, file_manager)

    assert video.duration == 5.0
    assert video.storage_path.endswith("videos/scene_0_v1.mp4")
    assert scene.video_status == "completed"


async def test_unknown_task_id(session, image_provider):
    with pytest.raises(NotFoundError):
        await task_tracker.finalize_if_ready(session, "nope", image_provider)


async def test_find_job_searches_both_kinds(session, make_project, make_scene, make_video):
    _, scene = await _ready_scene(make_project, make_scene)
    video = await make_video(scene, task_id="shared-id")

    kind, found = await task_tracker.find_job(session, "shared-id")

    assert kind == "video"
    assert found.id == video.id


# ---------------------------------------------------------------------------
# Superseded artifact purge
# ---------------------------------------------------------------------------

async def test_purge_keeps_chained_videos(session, make_project, make_scene, make_video, file_manager):
    from storyreel.services import video_chains

    project, scene = await _ready_scene(make_project, make_scene)
    chained = await make_video(scene, version=1, url="http://v1")
    loose = await make_video(scene, version=2, url="http://v2")
    keep = await make_video(scene, version=3, url="http://v3")
    chain = await video_chains.create_chain(session, project.id, "main")
    await video_chains.append_to_chain(session, chain.id, chained.id)

    removed = await task_tracker.supersede_previous(session, "video", keep, file_manager, purge=True)

    assert removed == 1
    assert await session.get(Video, loose.id) is None
    assert await session.get(Video, chained.id) is not None


async def test_purge_disabled_by_default(session, make_project, make_scene, make_image):
    _, scene = await _ready_scene(make_project, make_scene)
    await make_image(scene, version=1, url="http://i1")
    keep = await make_image(scene, version=2, url="http://i2")

    assert await task_tracker.supersede_previous(session, "image", keep) == 0


# ---------------------------------------------------------------------------
# Expiry and in-flight listing
# ---------------------------------------------------------------------------

async def test_expire_job_fails_processing_scene(session, make_project, make_scene, image_provider):
    _, scene = await _ready_scene(make_project, make_scene)
    image = await task_tracker.start_job(
        session, scene, "image", image_provider, GenerationRequest(description="x")
    )

    await task_tracker.expire_job(session, "image", image, "gave up")

    assert image.error_message == "gave up"
    assert image.task_id == "image-task-1"
    assert not image.is_in_flight
    assert (await session.get(Scene, scene.id)).image_status == "failed"
    assert await task_tracker.in_flight_jobs(session, "image") == []


async def test_in_flight_jobs_filters_by_project(session, make_project, make_scene, make_image):
    first, scene_a = await _ready_scene(make_project, make_scene)
    second, scene_b = await _ready_scene(make_project, make_scene)
    await make_image(scene_a, task_id="a")
    await make_image(scene_b, task_id="b")
    await make_image(scene_b, version=2, task_id="c", url="http://done")

    jobs = await task_tracker.in_flight_jobs(session, "image", project_id=second.id)

    assert [j.task_id for j in jobs] == ["b"]
    assert all(isinstance(j, Image) for j in jobs)


# ---------------------------------------------------------------------------
# poll_until_terminal
# ---------------------------------------------------------------------------

async def test_poll_until_terminal_stops_on_completion():
    statuses = iter(["pending", "processing", "completed"])
    sleeps = []

    async def poll(job_id):
        return JobStatusReport(status=next(statuses))

    async def fake_sleep(seconds):
        sleeps.append(seconds)

    outcome = await task_tracker.poll_until_terminal(poll, "job", 2.5, 10, sleep=fake_sleep)

    assert outcome.status == "completed"
    assert outcome.attempts == 3
    assert not outcome.timed_out
    assert sleeps == [2.5, 2.5]


async def test_poll_until_terminal_times_out_without_failing():
    async def poll(job_id):
        return JobStatusReport(status="processing")

    async def no_sleep(seconds):
        return None

    outcome = await task_tracker.poll_until_terminal(poll, "job", 1, 4, sleep=no_sleep)

    assert outcome.timed_out
    assert outcome.status == "processing"
    assert outcome.attempts == 4
