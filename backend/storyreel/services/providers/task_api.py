"""Adapter for the xskill-style asynchronous tasks API.

Both image and video generation go through the same two endpoints:

    POST /api/v3/tasks/create  {model, params, channel}  -> data.task_id
    POST /api/v3/tasks/query   {task_id}                 -> data.status, data.output, data.error

Only the ``params`` body and the location of the output URL differ by kind.
"""

import logging
from typing import Any, Optional

import httpx

from storyreel.config import GenerationProviderConfig
from storyreel.errors import InvalidRequestError, ProviderError
from storyreel.services.providers.base import (
    GenerationProvider,
    GenerationRequest,
    JobHandle,
    JobStatusReport,
    normalize_status,
)
from storyreel.services.providers.http import ProviderHttpClient

logger = logging.getLogger(__name__)

CREATE_PATH = "/api/v3/tasks/create"
QUERY_PATH = "/api/v3/tasks/query"

# ---------------------------------------------------------------------------
# Prompt helpers
# ---------------------------------------------------------------------------

STYLE_SUFFIXES: dict[str, str] = {
    "realistic": ", photorealistic, high quality, natural lighting, sharp details, 8k resolution",
    "anime": ", anime style, vibrant colors, clean lines, Japanese animation, high detail",
    "cartoon": ", cartoon style, bright colors, playful, exaggerated features",
    "cinematic": ", cinematic, dramatic lighting, film grain, professional cinematography, 8k",
    "watercolor": ", watercolor painting style, soft edges, delicate colors, artistic",
    "oil_painting": ", oil painting style, thick brushstrokes, rich colors, classical art",
    "sketch": ", pencil sketch style, detailed linework, grayscale, artistic drawing",
    "cyberpunk": ", cyberpunk style, neon lights, futuristic, dark atmosphere, tech aesthetic",
    "fantasy": ", fantasy style, magical elements, ethereal, dreamlike, mystical",
    "scifi": ", sci-fi style, futuristic, high-tech, space age, advanced technology",
}

# Requested size -> vendor image_size
IMAGE_SIZES: dict[str, str] = {
    "1K": "auto",
    "2K": "auto_2K",
    "4K": "auto_4K",
    "720p": "auto",
    "1080p": "auto_2K",
}


def style_suffix(style: Optional[str]) -> str:
    """Prompt suffix for a visual style; unknown styles fall back to realistic."""
    return STYLE_SUFFIXES.get(style or "realistic", STYLE_SUFFIXES["realistic"])


def build_image_params(request: GenerationRequest, default_size: str) -> dict[str, Any]:
    size = IMAGE_SIZES.get(request.size or default_size, "auto_2K")
    return {
        "prompt": request.description + style_suffix(request.style),
        "image_size": size,
        "num_images": 1,
    }


def build_video_params(
    request: GenerationRequest,
    variant: Optional[str],
    default_duration: int,
    default_ratio: str,
) -> dict[str, Any]:
    """Build video params.

    With no reference media the first frame drives the clip. Image, video or
    audio references switch to omni-reference mode, where the first frame is
    the first of the image files. Text references are appended to the prompt.
    """
    if not request.source_image_url:
        raise InvalidRequestError("Video generation requires a first-frame image URL")

    prompt = request.description
    images = [request.source_image_url]
    videos: list[str] = []
    audios: list[str] = []
    for ref in request.references:
        if ref.type == "text" and ref.content:
            prompt += "\n" + ref.content
        elif ref.type == "image" and ref.url:
            images.append(ref.url)
        elif ref.type == "video" and ref.url:
            videos.append(ref.url)
        elif ref.type == "audio" and ref.url:
            audios.append(ref.url)

    params: dict[str, Any] = {
        "ratio": request.aspect_ratio or default_ratio,
        "duration": request.duration or default_duration,
    }
    if variant:
        params["model"] = variant

    if len(images) > 1 or videos or audios:
        ref_prompt = f"@image_file_1 {prompt}"
        if videos:
            ref_prompt = (
                f"@image_file_1 performs following the motion and camera work "
                f"of @video_file_1, {prompt}"
            )
        if audios:
            ref_prompt += " in rhythm with @audio_file_1"
        params.update(
            prompt=ref_prompt,
            functionMode="omni_reference",
            image_files=images,
        )
        if videos:
            params["video_files"] = videos
        if audios:
            params["audio_files"] = audios
    else:
        params.update(
            prompt=prompt,
            functionMode="first_last_frames",
            filePaths=images,
        )
    return params


def _extract_artifact_url(kind: str, output: Optional[dict]) -> Optional[str]:
    if not output:
        return None
    if kind == "video":
        return output.get("video_url")
    images = output.get("images") or []
    if images:
        first = images[0]
        return first if isinstance(first, str) else first.get("url")
    return output.get("image_url")


# ---------------------------------------------------------------------------
# Adapter
# ---------------------------------------------------------------------------

class TaskApiProvider(GenerationProvider):
    """Generation provider backed by the tasks API for one artifact kind."""

    def __init__(
        self,
        kind: str,
        config: GenerationProviderConfig,
        *,
        max_attempts: int = 3,
        base_delay: float = 2.0,
        default_duration: int = 5,
        default_ratio: str = "16:9",
        default_size: str = "2K",
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        if kind not in ("image", "video"):
            raise ValueError(f"Unsupported generation kind: {kind}")
        self.kind = kind
        self.config = config
        self.default_duration = default_duration
        self.default_ratio = default_ratio
        self.default_size = default_size
        self.http = ProviderHttpClient(
            config.base_url,
            config.api_key,
            timeout=config.request_timeout,
            max_attempts=max_attempts,
            base_delay=base_delay,
            transport=transport,
        )

    def is_configured(self) -> bool:
        return bool(self.config.api_key)

    def build_params(self, request: GenerationRequest) -> dict[str, Any]:
        if self.kind == "image":
            return build_image_params(request, self.default_size)
        return build_video_params(
            request, self.config.variant, self.default_duration, self.default_ratio
        )

    async def create_job(self, request: GenerationRequest) -> JobHandle:
        params = self.build_params(request)
        body = await self.http.post_json(
            CREATE_PATH,
            {"model": self.config.model, "params": params, "channel": self.config.channel},
        )
        data = body.get("data") or {}
        task_id = data.get("task_id")
        if not task_id:
            raise ProviderError(
                str(body.get("message") or "Provider response did not include a task id")
            )
        logger.info(
            "%s task created: %s (price=%s)", self.kind, task_id, data.get("price")
        )
        return JobHandle(job_id=task_id, initial_status=normalize_status(data.get("status")))

    async def poll_job(self, job_id: str) -> JobStatusReport:
        body = await self.http.post_json(QUERY_PATH, {"task_id": job_id})
        data = body.get("data") or {}
        raw_status = data.get("status")
        status = normalize_status(raw_status)
        logger.debug("%s task %s raw status=%s -> %s", self.kind, job_id, raw_status, status)

        if status == "failed":
            return JobStatusReport(
                status="failed",
                error_message=data.get("error") or f"{self.kind} generation failed",
            )
        if status == "completed":
            url = _extract_artifact_url(self.kind, data.get("output"))
            if not url:
                return JobStatusReport(
                    status="failed",
                    error_message="Provider reported completion without an artifact URL",
                )
            return JobStatusReport(status="completed", artifact_ref=url)
        return JobStatusReport(status=status)

    async def download_artifact(self, ref: str) -> bytes:
        return await self.http.get_bytes(ref)

    async def close(self) -> None:
        await self.http.close()
