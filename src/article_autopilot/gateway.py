"""
Thin layer over an OpenAI-compatible chat-completions gateway.

Three call shapes are used by the pipeline:
- a free JSON reply (``response_format=json_object``) read from ``message.content``
- a forced function call whose ``arguments`` carry the structured payload
- an image-modality request whose reply carries a base64 data URL in ``message.images``

HTTP failures are translated into the pipeline's error taxonomy here so callers
never handle SDK exceptions directly.
"""

from __future__ import annotations

import json
import logging
import time
from typing import Any, Callable, Dict, List, Optional, TypeVar

import httpx
from openai import APIError, APIStatusError, OpenAI

from .config import Settings, get_settings
from .errors import (
    ConfigurationError,
    ImageGenerationFailure,
    QuotaExhausted,
    RateLimited,
    UpstreamGenerationFailure,
)
from .retry import RetryPolicy, RetrySuccess, with_retry

logger = logging.getLogger(__name__)

T = TypeVar("T")

RATE_LIMIT_MESSAGE = "Rate limit exceeded. Please try again in a moment."
QUOTA_MESSAGE = "AI credits exhausted. Please add credits to continue."


def _require_api_key(settings: Settings) -> str:
    if not settings.ai_api_key:
        raise ConfigurationError(
            "AI_API_KEY is required. Set it in the environment or .env file."
        )
    return settings.ai_api_key


def build_client(
    settings: Optional[Settings] = None, *, http_client: Optional[httpx.Client] = None
) -> OpenAI:
    """Create an OpenAI client; SDK-level retries are off so our policies decide."""
    settings = settings or get_settings()
    return OpenAI(
        api_key=_require_api_key(settings),
        base_url=settings.ai_base_url,
        max_retries=0,
        http_client=http_client,
    )


def classify_status_error(exc: APIStatusError, *, step: str) -> UpstreamGenerationFailure:
    """Map a non-2xx gateway answer to the matching failure kind."""
    status_code = exc.status_code
    if status_code == 429:
        return RateLimited(RATE_LIMIT_MESSAGE, status_code=status_code)
    if status_code == 402:
        return QuotaExhausted(QUOTA_MESSAGE, status_code=status_code)
    return UpstreamGenerationFailure(
        f"{step} failed: AI gateway error {status_code}", status_code=status_code
    )


def _create_completion(client: OpenAI, *, step: str, **kwargs: Any):
    try:
        return client.chat.completions.create(**kwargs)
    except APIStatusError as exc:
        logger.error("%s gateway error: %s %s", step, exc.status_code, exc.message)
        raise classify_status_error(exc, step=step) from exc
    except APIError as exc:
        logger.error("%s request failed: %s", step, exc)
        raise UpstreamGenerationFailure(f"{step} request failed: {exc}") from exc


def _first_message(response: Any, *, step: str):
    choices = getattr(response, "choices", None) or []
    if not choices or choices[0].message is None:
        raise UpstreamGenerationFailure(f"{step} response contained no choices.")
    return choices[0].message


def complete_json(
    client: OpenAI,
    *,
    model: str,
    messages: List[Dict[str, str]],
    step: str,
) -> Dict[str, Any]:
    """Request a JSON-object reply and return it parsed."""
    response = _create_completion(
        client,
        step=step,
        model=model,
        messages=messages,
        response_format={"type": "json_object"},
    )
    content = _first_message(response, step=step).content
    if not content or not content.strip():
        raise UpstreamGenerationFailure(f"{step} response missing content.")
    try:
        data = json.loads(content)
    except json.JSONDecodeError as exc:
        logger.error("Failed to parse %s JSON: %s", step, content[:500])
        raise UpstreamGenerationFailure(f"Invalid {step} response format") from exc
    if not isinstance(data, dict):
        raise UpstreamGenerationFailure(f"Invalid {step} response format")
    return data


def call_tool(
    client: OpenAI,
    *,
    model: str,
    messages: List[Dict[str, str]],
    tool_name: str,
    description: str,
    parameters: Dict[str, Any],
    step: str,
) -> Dict[str, Any]:
    """Force a single function call and return its parsed arguments."""
    response = _create_completion(
        client,
        step=step,
        model=model,
        messages=messages,
        tools=[
            {
                "type": "function",
                "function": {
                    "name": tool_name,
                    "description": description,
                    "parameters": parameters,
                },
            }
        ],
        tool_choice={"type": "function", "function": {"name": tool_name}},
    )
    tool_calls = _first_message(response, step=step).tool_calls or []
    if not tool_calls or tool_calls[0].function.name != tool_name:
        raise UpstreamGenerationFailure("Invalid AI response format")
    arguments = tool_calls[0].function.arguments or ""
    try:
        data = json.loads(arguments)
    except json.JSONDecodeError as exc:
        logger.error("Failed to parse %s arguments: %s", step, arguments[:500])
        raise UpstreamGenerationFailure("Invalid AI response format") from exc
    if not isinstance(data, dict):
        raise UpstreamGenerationFailure("Invalid AI response format")
    return data


def generate_image(client: OpenAI, *, model: str, prompt: str) -> str:
    """
    Ask the image model for one picture and return it as a ``data:image/...`` URL.

    Raises ImageGenerationFailure; ``retryable`` is False only for 4xx answers
    other than 429.
    """
    try:
        response = client.chat.completions.create(
            model=model,
            messages=[{"role": "user", "content": prompt}],
            extra_body={"modalities": ["image", "text"]},
        )
    except APIStatusError as exc:
        status_code = exc.status_code
        retryable = status_code == 429 or status_code >= 500
        raise ImageGenerationFailure(
            f"Image generation error: {status_code}",
            retryable=retryable,
            status_code=status_code,
        ) from exc
    except APIError as exc:
        raise ImageGenerationFailure(f"Image request failed: {exc}") from exc

    # ``images`` is a gateway extension, so read it from the dumped payload.
    payload = response.model_dump()
    choices = payload.get("choices") or [{}]
    message = choices[0].get("message") or {}
    images = message.get("images") or []
    url = None
    if images and isinstance(images[0], dict):
        url = (images[0].get("image_url") or {}).get("url")
    if not url:
        raise ImageGenerationFailure("No image URL in response")
    return url


def _text_call_retryable(exc: BaseException) -> bool:
    if isinstance(exc, RateLimited):
        return True
    status_code = getattr(exc, "status_code", None)
    return isinstance(exc, UpstreamGenerationFailure) and (status_code or 0) >= 500


def run_text_call(
    operation: Callable[[], T],
    *,
    settings: Optional[Settings] = None,
    label: str,
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """
    Run a text-model call under the configured policy, re-raising the final error.

    With the default ``text_max_attempts=1`` this is a single call.
    """
    settings = settings or get_settings()
    policy = RetryPolicy(
        max_attempts=max(1, settings.text_max_attempts),
        backoff_seconds=settings.image_backoff_seconds,
        retry_on=_text_call_retryable,
    )
    result = with_retry(lambda _attempt: operation(), policy, sleep=sleep, label=label)
    if isinstance(result, RetrySuccess):
        return result.value
    if result.last_error is None:
        raise UpstreamGenerationFailure(f"{label} failed without an error.")
    raise result.last_error
