"""HTTP transport shared by task-API providers.

Wraps an httpx.AsyncClient with the provider retry policy:
- 401/403 raise ProviderAuthError immediately, never retried
- a request timeout raises ProviderTimeoutError, not retried within the call
- any other HTTP or network failure is retried up to ``max_attempts`` times,
  sleeping ``base_delay * attempt`` between attempts
- exhaustion raises ProviderError carrying the last vendor status code
"""

import logging
from typing import Any, Optional

import httpx
from tenacity import (
    RetryError,
    before_sleep_log,
    retry,
    retry_if_exception,
    stop_after_attempt,
    wait_incrementing,
)

from storyreel.errors import ProviderAuthError, ProviderError, ProviderTimeoutError

logger = logging.getLogger(__name__)

_AUTH_STATUSES = frozenset({401, 403})


def _is_retriable(exc: BaseException) -> bool:
    """Retry vendor/network failures, but not timeouts or auth failures."""
    return isinstance(exc, ProviderError) and not isinstance(exc, ProviderTimeoutError)


def _error_message(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text[:200] or f"HTTP {response.status_code}"
    if isinstance(body, dict):
        return str(body.get("message") or body.get("error") or f"HTTP {response.status_code}")
    return f"HTTP {response.status_code}"


class ProviderHttpClient:
    """Async JSON client for one provider endpoint."""

    def __init__(
        self,
        base_url: str,
        api_key: str,
        *,
        timeout: float = 60.0,
        max_attempts: int = 3,
        base_delay: float = 2.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.timeout = timeout
        self.max_attempts = max_attempts
        self.base_delay = base_delay
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                follow_redirects=True,
                timeout=httpx.Timeout(self.timeout),
                transport=self._transport,
            )
        return self._client

    async def _send(self, method: str, url: str, **kwargs) -> httpx.Response:
        """Issue one request and map failures onto the error taxonomy."""
        try:
            response = await self.client.request(method, url, **kwargs)
        except httpx.TimeoutException as e:
            raise ProviderTimeoutError("Request timed out") from e
        except httpx.TransportError as e:
            raise ProviderError(f"Network error: {e}") from e

        if response.status_code in _AUTH_STATUSES:
            raise ProviderAuthError(
                f"Provider rejected credentials (HTTP {response.status_code}): "
                f"{_error_message(response)}"
            )
        if response.status_code >= 400:
            raise ProviderError(
                _error_message(response), status_code=response.status_code
            )
        return response

    async def _with_retry(self, method: str, url: str, **kwargs) -> httpx.Response:
        @retry(
            stop=stop_after_attempt(self.max_attempts),
            wait=wait_incrementing(start=self.base_delay, increment=self.base_delay),
            retry=retry_if_exception(_is_retriable),
            before_sleep=before_sleep_log(logger, logging.WARNING),
        )
        async def _call() -> httpx.Response:
            response = await self._send(method, url, **kwargs)
            self._check_envelope(response)
            return response

        try:
            return await _call()
        except RetryError as e:
            last = e.last_attempt.exception()
            raise ProviderError(
                f"Failed after {self.max_attempts} attempts: {last}",
                status_code=getattr(last, "status_code", None),
                error_code=getattr(last, "error_code", None),
            ) from last

    def _check_envelope(self, response: httpx.Response) -> None:
        """Task APIs wrap payloads as {"code": 200, "data": ...}."""
        if not response.headers.get("content-type", "").startswith("application/json"):
            return
        body = response.json()
        if isinstance(body, dict) and "code" in body and body["code"] != 200:
            raise ProviderError(
                str(body.get("message") or f"API error: code {body['code']}"),
                status_code=response.status_code,
                error_code=str(body["code"]),
            )

    async def post_json(self, path: str, payload: dict[str, Any]) -> dict[str, Any]:
        """POST a JSON body and return the decoded response."""
        logger.debug("POST %s%s", self.base_url, path)
        response = await self._with_retry(
            "POST",
            path,
            json=payload,
            headers={"Authorization": f"Bearer {self.api_key}"},
        )
        return response.json()

    async def get_bytes(self, url: str) -> bytes:
        """GET an artifact URL and return the body.

        Artifact URLs usually point at a CDN, so no credentials are sent.
        """
        logger.debug("GET %s", url)
        response = await self._with_retry("GET", url)
        return response.content

    async def close(self):
        """Close the underlying HTTP client."""
        if self._client and not self._client.is_closed:
            await self._client.aclose()
            self._client = None
