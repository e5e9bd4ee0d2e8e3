import json

import httpx
import pytest

from article_autopilot.config import Settings
from article_autopilot.gateway import build_client


@pytest.fixture
def settings(tmp_path):
    return Settings(
        ai_api_key="test-key",
        ai_base_url="https://gateway.test/v1",
        data_dir=tmp_path,
        public_base_url="https://cdn.test/storage",
        image_backoff_seconds=2.0,
        cron_secret=None,
    )


def chat_completion(message):
    return {
        "id": "chatcmpl-test",
        "object": "chat.completion",
        "created": 1700000000,
        "model": "test-model",
        "choices": [{"index": 0, "finish_reason": "stop", "message": message}],
    }


@pytest.fixture
def make_openai(settings):
    """Build a real OpenAI client whose HTTP traffic goes to ``handler``."""

    def _make(handler):
        http_client = httpx.Client(transport=httpx.MockTransport(handler))
        return build_client(settings, http_client=http_client)

    return _make


@pytest.fixture
def reply():
    """Return a handler that answers every request with the given status and body."""

    def _reply(message=None, *, status_code=200, body=None, seen=None):
        def handler(request: httpx.Request) -> httpx.Response:
            if seen is not None:
                seen.append(json.loads(request.content))
            if status_code != 200:
                return httpx.Response(status_code, json=body or {"error": {"message": "nope"}})
            return httpx.Response(200, json=chat_completion(message))

        return handler

    return _reply
