"""JSON-mode chat client for the entity-resolution fallback.

Talks to Mistral's OpenAI-compatible endpoint through the official OpenAI SDK.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Mapping
from typing import Any, Protocol

from openai import (
    APIConnectionError,
    APIStatusError,
    APITimeoutError,
    OpenAI,
    OpenAIError,
    RateLimitError,
)

from tools.backoff import SleepFn, call_with_retry

logger = logging.getLogger(__name__)

DEFAULT_MODEL = "mistral-large-latest"
DEFAULT_BASE_URL = "https://api.mistral.ai/v1"


class LLMError(RuntimeError):
    """Base error for LLM provider failures."""

    def __init__(self, message: str, code: str = "LLM_ERROR") -> None:
        super().__init__(message)
        self.code = code


class LLMTransientError(LLMError):
    """Timeouts, rate limits, connection drops and 5xx responses."""


class ChatJSONClient(Protocol):
    """Minimal contract for a JSON-object chat completion."""

    def complete_json(
        self, *, system_prompt: str, user_payload: Mapping[str, Any]
    ) -> dict[str, Any] | None:
        ...


class MistralChatClient:
    """Chat completions in JSON mode, temperature 0, single bounded retry."""

    def __init__(
        self,
        api_key: str,
        *,
        model: str = DEFAULT_MODEL,
        base_url: str = DEFAULT_BASE_URL,
        timeout: float = 15.0,
        client: Any | None = None,
        max_attempts: int = 2,
        retry_delay: float = 1.0,
        sleep: SleepFn | None = None,
    ) -> None:
        if not api_key:
            raise ValueError("MISTRAL_API_KEY is required to create a MistralChatClient.")
        self._model = model
        self._max_attempts = max_attempts
        self._retry_delay = retry_delay
        self._sleep = sleep
        self._client = client or OpenAI(
            api_key=api_key, base_url=base_url, timeout=timeout, max_retries=0
        )

    @property
    def model(self) -> str:
        return self._model

    def complete_json(
        self, *, system_prompt: str, user_payload: Mapping[str, Any]
    ) -> dict[str, Any] | None:
        """Return the decoded JSON object, or None when the content is not a JSON object."""
        messages = [
            {"role": "system", "content": system_prompt},
            {"role": "user", "content": json.dumps(dict(user_payload))},
        ]

        def _invoke() -> Any:
            try:
                return self._client.chat.completions.create(
                    model=self._model,
                    messages=messages,
                    temperature=0,
                    response_format={"type": "json_object"},
                )
            except APITimeoutError as exc:
                raise LLMTransientError("LLM request timed out", code="LLM_TIMEOUT") from exc
            except APIConnectionError as exc:
                raise LLMTransientError(f"LLM connection failed: {exc}", code="LLM_CONNECTION") from exc
            except RateLimitError as exc:
                raise LLMTransientError("Rate limited by LLM provider", code="LLM_429") from exc
            except APIStatusError as exc:
                if exc.status_code >= 500:
                    raise LLMTransientError(
                        f"LLM provider error: {exc.status_code}", code="LLM_5XX"
                    ) from exc
                raise LLMError(
                    f"LLM request failed: {exc.status_code}", code=f"LLM_{exc.status_code}"
                ) from exc
            except OpenAIError as exc:
                raise LLMError(f"LLM request failed: {exc}") from exc

        response = call_with_retry(
            _invoke,
            retry_on=(LLMTransientError,),
            label="llm.complete_json",
            max_attempts=self._max_attempts,
            delay=self._retry_delay,
            sleep=self._sleep,
        )
        return parse_json_object(_extract_message_text(response))


def _extract_message_text(response: Any) -> str | None:
    choices = getattr(response, "choices", None) or []
    if not choices:
        return None
    content = getattr(choices[0].message, "content", None)
    if isinstance(content, list):
        return "".join(
            part.get("text", "") for part in content if isinstance(part, dict)
        ).strip()
    if isinstance(content, str):
        return content.strip()
    return None


def parse_json_object(text: str | None) -> dict[str, Any] | None:
    """Decode `text` as a JSON object; anything else is treated as absent."""
    if not text:
        return None
    try:
        payload = json.loads(text)
    except ValueError:
        logger.debug("llm.content.not_json", extra={"preview": text[:80]})
        return None
    return payload if isinstance(payload, dict) else None
