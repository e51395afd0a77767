"""ffmpeg probe caching, client fallback and the combine-videos gates."""

import threading

import pytest

from storyreel.errors import ConfigurationError, InvalidRequestError
from storyreel.pipeline import stitcher
from storyreel.services.frame_extractor import FrameExtractor


def test_probe_runs_once(monkeypatch):
    extractor = FrameExtractor(ffmpeg_bin="ffmpeg")
    calls = []

    def fake_probe():
        calls.append(1)
        return True

    monkeypatch.setattr(extractor, "_probe", fake_probe)

    assert extractor.is_available()
    assert extractor.initialize()
    assert extractor.is_available()
    assert len(calls) == 1

    extractor.reset()
    extractor.is_available()
    assert len(calls) == 2


def test_missing_binary_is_unavailable():
    extractor = FrameExtractor(ffmpeg_bin="definitely-not-ffmpeg-7c1e")

    assert extractor.is_available() is False


async def test_first_async_probe_runs_off_the_loop(monkeypatch):
    extractor = FrameExtractor(ffmpeg_bin="ffmpeg")
    probe_threads = []

    def fake_probe():
        probe_threads.append(threading.current_thread())
        return False

    monkeypatch.setattr(extractor, "_probe", fake_probe)

    assert await extractor.check_available() is False
    assert await extractor.check_available() is False
    assert len(probe_threads) == 1
    assert probe_threads[0] is not threading.main_thread()


async def test_extract_without_ffmpeg_asks_client(tmp_path):
    extractor = FrameExtractor(ffmpeg_bin="definitely-not-ffmpeg-7c1e")

    result = await extractor.extract_last_frame("http://cdn/v.mp4", tmp_path / "last.png")

    assert not result.success
    assert result.needs_client_extraction
    assert not (tmp_path / "last.png").exists()


async def test_combine_requires_completed_project(session, make_project, file_manager, extractor):
    project = await make_project(stage="videos")

    with pytest.raises(InvalidRequestError, match="videos stage"):
        await stitcher.combine_videos(session, project.id, file_manager, extractor)


async def test_combine_requires_ffmpeg(session, make_project, file_manager, no_ffmpeg):
    project = await make_project(stage="completed")

    with pytest.raises(ConfigurationError, match="ffmpeg"):
        await stitcher.combine_videos(session, project.id, file_manager, no_ffmpeg)


async def test_combine_requires_local_clips(session, make_project, make_scene, make_video, file_manager, extractor):
    project = await make_project(stage="completed")
    scene = await make_scene(project, video_status="completed", video_confirmed=True)
    await make_video(scene, url="https://cdn.example.com/remote-only.mp4")

    with pytest.raises(InvalidRequestError, match="no locally stored video"):
        await stitcher.combine_videos(session, project.id, file_manager, extractor)
