"""LLM client used for sales-intent categorization."""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from typing import Any, Protocol

import httpx

from ..core.config import LlmSettings

LOGGER = logging.getLogger(__name__)

# Status codes worth another attempt; every other HTTP error is final.
_RETRYABLE_STATUS = frozenset({408, 429, 500, 502, 503, 504})
_MAX_BACKOFF_SECONDS = 8.0


class LLMError(RuntimeError):
    """Raised when the LLM provider fails to respond as expected."""


class LLMClient(Protocol):
    """Protocol describing the minimal LLM client behaviour."""

    @property
    def provider_id(self) -> str:
        """Identifier describing the backing model/provider."""
        raise NotImplementedError

    def generate(self, prompt: str) -> str:
        """Return the raw text completion for ``prompt``."""
        raise NotImplementedError


def build_generate_payload(settings: LlmSettings, prompt: str) -> dict[str, Any]:
    """Return the ``/api/generate`` body for a non-streaming JSON completion."""
    options: dict[str, Any] = {"temperature": settings.temperature}
    if settings.max_output_tokens is not None:
        options["num_predict"] = settings.max_output_tokens
    return {
        "model": settings.model,
        "prompt": prompt,
        "stream": False,
        "format": "json",
        "options": options,
    }


class OllamaClient:
    """Synchronous client for a local Ollama server.

    Transport failures and the status codes in ``_RETRYABLE_STATUS`` are
    retried up to ``settings.max_attempts`` times with exponential backoff.
    A malformed body is never retried.
    """

    def __init__(
        self,
        settings: LlmSettings,
        *,
        client: httpx.Client | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.settings = settings
        self._client = client
        self._sleep = sleep

    @property
    def provider_id(self) -> str:
        return f"ollama:{self.settings.model}"

    def generate(self, prompt: str) -> str:
        """Send ``prompt`` to the model and return its completion text."""
        if not self.settings.base_url:
            raise LLMError("LLM base URL is not configured")
        url = self.settings.base_url.rstrip("/") + "/api/generate"
        payload = build_generate_payload(self.settings, prompt)
        attempts = self.settings.max_attempts
        for attempt in range(1, attempts + 1):
            try:
                response = self._post(url, payload)
            except httpx.TransportError as exc:
                reason = str(exc) or type(exc).__name__
            else:
                if response.is_success:
                    return _completion_text(response)
                if response.status_code not in _RETRYABLE_STATUS:
                    raise LLMError(f"LLM request rejected with HTTP {response.status_code}")
                reason = f"HTTP {response.status_code}"
            LOGGER.warning("LLM attempt %d/%d failed: %s", attempt, attempts, reason)
            if attempt < attempts:
                self._sleep(min(2.0**attempt, _MAX_BACKOFF_SECONDS))
        raise LLMError(f"LLM request failed after {attempts} attempt(s)")

    def _post(self, url: str, payload: dict[str, Any]) -> httpx.Response:
        timeout = self.settings.timeout_seconds
        if self._client is None:
            return httpx.post(url, json=payload, timeout=timeout)
        return self._client.post(url, json=payload, timeout=timeout)


def _completion_text(response: httpx.Response) -> str:
    try:
        data = response.json()
    except ValueError as exc:
        raise LLMError("LLM returned invalid JSON") from exc
    text = data.get("response") if isinstance(data, dict) else None
    if not isinstance(text, str):
        raise LLMError("LLM response missing 'response' field")
    return text


__all__ = ["LLMClient", "LLMError", "OllamaClient", "build_generate_payload"]
