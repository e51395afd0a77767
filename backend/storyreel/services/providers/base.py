"""Abstract base class for generation provider adapters.

A provider runs one kind of asynchronous generation job (image or video):
create a job, poll it, download the artifact. Vendor status strings are
normalized to pending, processing, completed or failed before they leave
the adapter.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Optional

from storyreel.errors import ConfigurationError

_PROCESSING_STATUSES = frozenset({"running", "processing", "in_progress", "started", "generating"})
_COMPLETED_STATUSES = frozenset({"success", "succeeded", "completed", "complete", "done", "finished"})
_FAILED_STATUSES = frozenset({"failed", "failure", "error", "cancelled", "canceled", "expired"})


def normalize_status(raw: Optional[str]) -> str:
    """Map a vendor status string onto pending/processing/completed/failed."""
    value = (raw or "").strip().lower()
    if value in _PROCESSING_STATUSES:
        return "processing"
    if value in _COMPLETED_STATUSES:
        return "completed"
    if value in _FAILED_STATUSES:
        return "failed"
    return "pending"


@dataclass
class ReferenceMaterial:
    """Scene material forwarded to the provider as extra guidance."""

    type: str  # image, video, audio, text
    url: Optional[str] = None
    content: Optional[str] = None


@dataclass
class GenerationRequest:
    """Input for one generation job."""

    description: str
    style: Optional[str] = None
    source_image_url: Optional[str] = None  # first frame, video only
    duration: Optional[int] = None
    size: Optional[str] = None
    aspect_ratio: Optional[str] = None
    references: list[ReferenceMaterial] = field(default_factory=list)


@dataclass
class JobHandle:
    job_id: str
    initial_status: str


@dataclass
class JobStatusReport:
    status: str
    artifact_ref: Optional[str] = None
    error_message: Optional[str] = None

    @property
    def is_terminal(self) -> bool:
        return self.status in ("completed", "failed")


class GenerationProvider(ABC):
    """Uniform interface to an external generative service."""

    #: "image" or "video"
    kind: str = ""

    @abstractmethod
    def is_configured(self) -> bool:
        """Return True if credentials are present. Never touches the network."""
        ...

    @abstractmethod
    async def create_job(self, request: GenerationRequest) -> JobHandle:
        """Submit a generation job.

        Raises:
            ProviderAuthError: Credentials rejected.
            ProviderTimeoutError: The request timed out.
            ProviderError: Vendor rejected the request after retries.
        """
        ...

    @abstractmethod
    async def poll_job(self, job_id: str) -> JobStatusReport:
        """Return the normalized status of a job."""
        ...

    @abstractmethod
    async def download_artifact(self, ref: str) -> bytes:
        """Fetch the bytes of a completed artifact."""
        ...

    async def close(self) -> None:
        """Release network resources."""
        return None


def require_configured(provider: GenerationProvider) -> GenerationProvider:
    """Fail fast with a configuration error before any network call."""
    if not provider.is_configured():
        raise ConfigurationError(
            f"{provider.kind or 'generation'} provider is not configured: missing API key"
        )
    return provider
