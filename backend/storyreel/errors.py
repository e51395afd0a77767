"""Error taxonomy shared by services, pipeline steps and the API layer.

Every error carries the HTTP status the API surfaces it with, so route
handlers raise domain errors and a single exception handler translates them.
"""

from typing import Optional


class StoryReelError(Exception):
    """Base class for all domain errors."""

    http_status: int = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ConfigurationError(StoryReelError):
    """A required provider credential or setting is missing.

    Fails fast, never retried.
    """

    http_status = 503


class ProviderAuthError(ConfigurationError):
    """Provider rejected our credentials (HTTP 401/403)."""


class InvalidRequestError(StoryReelError):
    """Malformed input or an unmet scene/project precondition.

    Raised before any state mutation.
    """

    http_status = 400


class NotFoundError(StoryReelError):
    """Referenced project, scene, artifact or chain does not exist."""

    http_status = 404


class ProviderError(StoryReelError):
    """Provider rejected the request or the job failed after retries."""

    http_status = 502

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        error_code: Optional[str] = None,
    ):
        super().__init__(message)
        self.status_code = status_code
        self.error_code = error_code


class ProviderTimeoutError(ProviderError):
    """A single provider request exceeded its timeout."""

    http_status = 504


class PollTimeoutError(StoryReelError):
    """Polling gave up before the job reached a terminal state.

    The outcome is unknown; the owning scene stays ``processing``.
    """

    http_status = 504


class ChainLinkError(StoryReelError):
    """Linking a video into a continuation chain failed.

    Non-fatal for the caller: the generated video is kept.
    """
