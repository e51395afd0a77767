"""Provider HTTP retry policy and the task-API adapter, over httpx.MockTransport."""

import json

import httpx
import pytest

from storyreel.config import GenerationProviderConfig
from storyreel.errors import (
    ConfigurationError,
    InvalidRequestError,
    ProviderAuthError,
    ProviderError,
    ProviderTimeoutError,
)
from storyreel.services.providers import GenerationRequest, ReferenceMaterial, normalize_status, require_configured
from storyreel.services.providers.http import ProviderHttpClient
from storyreel.services.providers.task_api import (
    CREATE_PATH,
    QUERY_PATH,
    TaskApiProvider,
    build_image_params,
    build_video_params,
    style_suffix,
)


class Recorder:
    """MockTransport handler replaying scripted responses in order."""

    def __init__(self, *responses):
        self.responses = list(responses)
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        item = self.responses.pop(0) if len(self.responses) > 1 else self.responses[0]
        if isinstance(item, Exception):
            raise item
        return item

    @property
    def bodies(self) -> list[dict]:
        return [json.loads(r.content) for r in self.requests if r.content]


def _client(handler, max_attempts=3) -> ProviderHttpClient:
    return ProviderHttpClient(
        "https://api.test",
        "secret",
        max_attempts=max_attempts,
        base_delay=0,
        transport=httpx.MockTransport(handler),
    )


def _provider(kind, handler, **config) -> TaskApiProvider:
    config.setdefault("api_key", "secret")
    config.setdefault("base_url", "https://api.test")
    config.setdefault("model", f"{kind}-model")
    return TaskApiProvider(
        kind,
        GenerationProviderConfig(**config),
        base_delay=0,
        transport=httpx.MockTransport(handler),
    )


def _ok(data) -> httpx.Response:
    return httpx.Response(200, json={"code": 200, "data": data})


# ---------------------------------------------------------------------------
# Status normalization
# ---------------------------------------------------------------------------

@pytest.mark.parametrize(
    "raw,expected",
    [
        ("RUNNING", "processing"),
        ("running", "processing"),
        ("processing", "processing"),
        ("SUCCESS", "completed"),
        ("succeeded", "completed"),
        ("completed", "completed"),
        ("FAILED", "failed"),
        ("cancelled", "failed"),
        ("queued", "pending"),
        (None, "pending"),
    ],
)
def test_normalize_status(raw, expected):
    assert normalize_status(raw) == expected


# ---------------------------------------------------------------------------
# Retry policy
# ---------------------------------------------------------------------------

async def test_auth_failure_is_not_retried():
    handler = Recorder(httpx.Response(401, json={"message": "invalid key"}))

    with pytest.raises(ProviderAuthError, match="invalid key"):
        await _client(handler).post_json("/x", {})

    assert len(handler.requests) == 1


async def test_auth_failure_is_a_configuration_error():
    handler = Recorder(httpx.Response(403, json={}))

    with pytest.raises(ConfigurationError):
        await _client(handler).post_json("/x", {})


async def test_server_errors_retried_until_exhausted():
    handler = Recorder(httpx.Response(502, text="bad gateway"))

    with pytest.raises(ProviderError) as excinfo:
        await _client(handler).post_json("/x", {})

    assert len(handler.requests) == 3
    assert excinfo.value.status_code == 502
    assert not isinstance(excinfo.value, ProviderTimeoutError)


async def test_transient_error_recovers():
    handler = Recorder(
        httpx.ConnectError("connection refused"),
        httpx.Response(500, json={"message": "busy"}),
        _ok({"task_id": "t-1"}),
    )

    body = await _client(handler).post_json("/x", {"a": 1})

    assert body["data"]["task_id"] == "t-1"
    assert len(handler.requests) == 3
    assert handler.requests[-1].headers["Authorization"] == "Bearer secret"


async def test_timeout_is_terminal_within_call():
    handler = Recorder(httpx.ReadTimeout("slow"))

    with pytest.raises(ProviderTimeoutError, match="timed out"):
        await _client(handler).post_json("/x", {})

    assert len(handler.requests) == 1


async def test_envelope_error_code_is_provider_error():
    handler = Recorder(httpx.Response(200, json={"code": 4001, "message": "insufficient balance"}))

    with pytest.raises(ProviderError) as excinfo:
        await _client(handler, max_attempts=2).post_json("/x", {})

    assert "insufficient balance" in excinfo.value.message
    assert excinfo.value.error_code == "4001"
    assert len(handler.requests) == 2


# ---------------------------------------------------------------------------
# Task API adapter
# ---------------------------------------------------------------------------

async def test_create_image_job():
    handler = Recorder(_ok({"task_id": "img-1", "status": "pending", "price": 0.02}))
    provider = _provider("image", handler, channel="fast")

    handle = await provider.create_job(GenerationRequest(description="A lighthouse", style="anime"))

    assert (handle.job_id, handle.initial_status) == ("img-1", "pending")
    assert handler.requests[0].url.path == CREATE_PATH
    body = handler.bodies[0]
    assert body["model"] == "image-model"
    assert body["channel"] == "fast"
    assert body["params"]["prompt"] == "A lighthouse" + style_suffix("anime")
    assert body["params"]["num_images"] == 1


async def test_create_job_without_task_id():
    handler = Recorder(_ok({}))

    with pytest.raises(ProviderError, match="task id"):
        await _provider("image", handler).create_job(GenerationRequest(description="x"))


async def test_poll_video_job_states():
    handler = Recorder(
        _ok({"status": "RUNNING"}),
        _ok({"status": "SUCCESS", "output": {"video_url": "https://cdn/v.mp4"}}),
    )
    provider = _provider("video", handler)

    running = await provider.poll_job("vid-1")
    done = await provider.poll_job("vid-1")

    assert running.status == "processing" and not running.is_terminal
    assert (done.status, done.artifact_ref) == ("completed", "https://cdn/v.mp4")
    assert handler.requests[0].url.path == QUERY_PATH
    assert handler.bodies[0] == {"task_id": "vid-1"}


async def test_poll_image_job_reads_images_list():
    handler = Recorder(_ok({"status": "completed", "output": {"images": [{"url": "https://cdn/i.png"}]}}))

    report = await _provider("image", handler).poll_job("img-1")

    assert report.artifact_ref == "https://cdn/i.png"


async def test_poll_failed_and_missing_output():
    handler = Recorder(
        _ok({"status": "failed", "error": "content filtered"}),
        _ok({"status": "succeeded", "output": {}}),
    )
    provider = _provider("video", handler)

    failed = await provider.poll_job("v")
    no_url = await provider.poll_job("v")

    assert (failed.status, failed.error_message) == ("failed", "content filtered")
    assert no_url.status == "failed"
    assert "without an artifact URL" in no_url.error_message


async def test_download_artifact_fetches_url():
    handler = Recorder(httpx.Response(200, content=b"\x00mp4", headers={"content-type": "video/mp4"}))

    data = await _provider("video", handler).download_artifact("https://cdn.test/v.mp4")

    assert data == b"\x00mp4"
    assert str(handler.requests[0].url) == "https://cdn.test/v.mp4"
    assert "Authorization" not in handler.requests[0].headers


def test_unconfigured_provider_fails_fast():
    provider = _provider("video", Recorder(_ok({})), api_key="")

    assert not provider.is_configured()
    with pytest.raises(ConfigurationError, match="video provider is not configured"):
        require_configured(provider)


# ---------------------------------------------------------------------------
# Params
# ---------------------------------------------------------------------------

def test_unknown_style_falls_back_to_realistic():
    assert style_suffix("vaporwave") == style_suffix("realistic")
    assert style_suffix(None) == style_suffix("realistic")


def test_image_size_mapping():
    assert build_image_params(GenerationRequest(description="x", size="4K"), "2K")["image_size"] == "auto_4K"
    assert build_image_params(GenerationRequest(description="x"), "2K")["image_size"] == "auto_2K"


def test_video_params_first_frame_mode():
    request = GenerationRequest(
        description="The boat sails",
        source_image_url="https://img/first.png",
        references=[ReferenceMaterial(type="text", content="Slow dolly-in")],
    )

    params = build_video_params(request, "seedance_2.0_fast", 5, "16:9")

    assert params["functionMode"] == "first_last_frames"
    assert params["filePaths"] == ["https://img/first.png"]
    assert params["prompt"] == "The boat sails\nSlow dolly-in"
    assert (params["duration"], params["ratio"], params["model"]) == (5, "16:9", "seedance_2.0_fast")


def test_video_params_omni_reference_mode():
    request = GenerationRequest(
        description="The boat sails",
        source_image_url="https://img/first.png",
        duration=10,
        references=[
            ReferenceMaterial(type="video", url="https://ref/motion.mp4"),
            ReferenceMaterial(type="audio", url="https://ref/waves.mp3"),
        ],
    )

    params = build_video_params(request, None, 5, "16:9")

    assert params["functionMode"] == "omni_reference"
    assert params["image_files"] == ["https://img/first.png"]
    assert params["video_files"] == ["https://ref/motion.mp4"]
    assert params["audio_files"] == ["https://ref/waves.mp3"]
    assert params["prompt"].startswith("@image_file_1")
    assert params["prompt"].endswith("in rhythm with @audio_file_1")
    assert params["duration"] == 10
    assert "model" not in params


def test_video_params_need_first_frame():
    with pytest.raises(InvalidRequestError):
        build_video_params(GenerationRequest(description="x"), None, 5, "16:9")
