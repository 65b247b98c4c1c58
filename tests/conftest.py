"""
Shared fixtures: an in-process fake of the model API.

Requests go through a real httpx client (and a real AsyncOpenAI client on
top of it) over httpx.MockTransport, so status handling is exercised end
to end without network access.
"""

import json
import time
from typing import List

import httpx
import pytest

from ai_vision_guard.config.loader import ApiConfig, AppConfig, LimitsConfig, StorageConfig

AUTH_URL = "https://auth.test/api/v2/oauth"
BASE_URL = "https://api.test/api/v1"
AUTH_KEY = "Y2xpZW50OnNlY3JldA=="


def completion_body(content) -> dict:
    """Chat completion JSON with a single choice."""
    return {
        "id": "chatcmpl-1",
        "object": "chat.completion",
        "created": 1704110400,
        "model": "GigaChat-Max",
        "choices": [
            {
                "index": 0,
                "finish_reason": "stop",
                "message": {"role": "assistant", "content": content},
            }
        ],
    }


def file_body(file_id: str = "3f1c9a2e-0000-4000-8000-000000000001") -> dict:
    """File upload JSON."""
    return {
        "id": file_id,
        "object": "file",
        "bytes": 3,
        "created_at": 1704110400,
        "filename": "image.jpg",
        "purpose": "general",
        "status": "processed",
    }


class FakeModelApi:
    """Scripted token, chat completion, file and download endpoints.

    Each script is a list of (status, json body) pairs consumed in order;
    when a script runs out its last entry is repeated.
    """

    def __init__(self):
        self.token_calls = 0
        self.token_requests: List[httpx.Request] = []
        self.chat_requests: List[httpx.Request] = []
        self.file_requests: List[httpx.Request] = []
        self.download_requests: List[httpx.Request] = []
        self.chat_script = [(200, completion_body("Cup: ceramic, glaze"))]
        self.file_script = [(200, file_body())]
        self.downloads = {}
        self.token_status = 200

    @staticmethod
    def _next(script):
        return script.pop(0) if len(script) > 1 else script[0]

    @property
    def requests(self) -> List[httpx.Request]:
        return self.token_requests + self.chat_requests + self.file_requests

    def bearer_tokens(self, requests: List[httpx.Request]) -> List[str]:
        return [r.headers["Authorization"].removeprefix("Bearer ") for r in requests]

    def chat_payload(self, index: int = -1) -> dict:
        return json.loads(self.chat_requests[index].content)

    def handler(self, request: httpx.Request) -> httpx.Response:
        url = str(request.url)
        if url == AUTH_URL:
            self.token_requests.append(request)
            if self.token_status != 200:
                return httpx.Response(self.token_status, text="invalid credentials")
            self.token_calls += 1
            return httpx.Response(200, json={
                "access_token": f"token-{self.token_calls}",
                "expires_at": int((time.time() + 1800) * 1000),
            })
        if url == f"{BASE_URL}/chat/completions":
            self.chat_requests.append(request)
            status, body = self._next(self.chat_script)
            return httpx.Response(status, json=body)
        if url == f"{BASE_URL}/files":
            self.file_requests.append(request)
            status, body = self._next(self.file_script)
            return httpx.Response(status, json=body)
        if url in self.downloads:
            self.download_requests.append(request)
            status, content, headers = self.downloads[url]
            return httpx.Response(status, content=content, headers=headers)
        return httpx.Response(404, text=f"no route for {url}")

    def http_client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self.handler))


@pytest.fixture
def fake_api() -> FakeModelApi:
    return FakeModelApi()


@pytest.fixture
def app_config(tmp_path) -> AppConfig:
    return AppConfig(
        api=ApiConfig(auth_url=AUTH_URL, base_url=BASE_URL),
        limits=LimitsConfig(
            request_timeout_seconds=5.0,
            max_auth_retries=2,
            max_upload_bytes=1024,
        ),
        storage=StorageConfig(db_path=str(tmp_path / "content.db")),
    )
