"""OpenAI-compatible chat adapter for the LLM abstraction layer.

Talks to any ``/chat/completions`` endpoint (Zhipu GLM, OpenAI, local
gateways) over httpx with bearer auth.

Structured output is requested by appending a compact schema description to
the system prompt. Models still occasionally wrap the JSON in code fences or
prose, so the reply is unwrapped before validation.
"""

import json
import logging
import re
from typing import Optional, Type

import httpx
from pydantic import BaseModel
from tenacity import before_sleep_log, retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from storyreel.errors import ProviderAuthError, ProviderError
from storyreel.services.llm.base import LLMAdapter

logger = logging.getLogger(__name__)

_JSON_OBJECT = re.compile(r"\{[\s\S]*\}")


def _schema_instruction(schema: Type[BaseModel]) -> str:
    """Build a concise JSON schema instruction to append to the system prompt."""
    schema_json = json.dumps(schema.model_json_schema(), indent=2)
    return (
        "\n\nIMPORTANT: You MUST respond with a single JSON object (no markdown, "
        "no commentary, no code fences). The JSON must conform to this schema:\n"
        f"```json\n{schema_json}\n```\n"
        "Return ONLY the JSON object."
    )


def extract_json(raw: str) -> str:
    """Pull the JSON object out of a model reply.

    Raises:
        ValueError: If the reply contains no JSON object.
    """
    stripped = raw.strip()
    if stripped.startswith("```"):
        first_newline = stripped.find("\n")
        stripped = stripped[first_newline + 1:] if first_newline != -1 else ""
        if stripped.endswith("```"):
            stripped = stripped[:-3].rstrip()
    match = _JSON_OBJECT.search(stripped)
    if match is None:
        raise ValueError(f"No JSON object in model reply: {raw[:200]!r}")
    return match.group(0)


class ChatCompletionsAdapter(LLMAdapter):
    """LLM adapter for OpenAI-compatible chat completion APIs."""

    def __init__(
        self,
        model_id: str,
        base_url: str,
        api_key: str,
        *,
        timeout: float = 60.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self._model_id = model_id
        self._base_url = base_url.rstrip("/")
        self._api_key = api_key
        self._timeout = timeout
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self._base_url,
                timeout=self._timeout,
                transport=self._transport,
            )
        return self._client

    def is_configured(self) -> bool:
        return bool(self._api_key)

    async def _complete(self, messages: list[dict], temperature: float) -> str:
        response = await self.client.post(
            "/chat/completions",
            json={
                "model": self._model_id,
                "messages": messages,
                "temperature": temperature,
            },
            headers={"Authorization": f"Bearer {self._api_key}"},
        )
        if response.status_code in (401, 403):
            raise ProviderAuthError(f"Text provider rejected credentials (HTTP {response.status_code})")
        if response.status_code >= 400:
            raise ProviderError(
                f"Text provider error: HTTP {response.status_code}: {response.text[:200]}",
                status_code=response.status_code,
            )
        data = response.json()
        try:
            return data["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError) as exc:
            raise ProviderError("Text provider returned no completion") from exc

    async def generate_text(
        self,
        prompt: str,
        schema: Type[BaseModel],
        *,
        temperature: float = 0.7,
        system_prompt: Optional[str] = None,
        max_retries: int = 3,
    ) -> BaseModel:
        """Generate structured text through a chat completion.

        Args:
            prompt: User prompt to send.
            schema: Pydantic model class for structured JSON output.
            temperature: Sampling temperature.
            system_prompt: Optional system instruction.
            max_retries: Attempts on transport, HTTP or validation failure.

        Returns:
            Validated Pydantic model instance.
        """
        schema_suffix = _schema_instruction(schema)
        messages = [
            {"role": "system", "content": (system_prompt or "") + schema_suffix},
            {"role": "user", "content": prompt},
        ]

        @retry(
            stop=stop_after_attempt(max_retries),
            wait=wait_exponential(multiplier=1, min=2, max=30),
            # ProviderAuthError is a ConfigurationError, so it is never retried
            retry=retry_if_exception_type((httpx.TransportError, ProviderError, ValueError)),
            before_sleep=before_sleep_log(logger, logging.WARNING),
            reraise=True,
        )
        async def _call() -> BaseModel:
            raw = await self._complete(messages, temperature)
            return schema.model_validate_json(extract_json(raw))

        return await _call()

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None
