"""
pytest 配置：伪造 NIM 上游 + ASGI 客户端
"""
import json
import os
import sys
from typing import Callable, List, Optional

import httpx
import pytest

# 项目根目录加入 path（main.py 位于根目录）
sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

import main  # noqa: E402
from nim_proxy import openai_api  # noqa: E402
from nim_proxy.config import settings  # noqa: E402
from nim_proxy.services.network_manager import NetworkManager  # noqa: E402
from nim_proxy.services.openai_service import ChatCompletionService  # noqa: E402


class ChunkStream(httpx.AsyncByteStream):
    """按给定分块返回的上游 SSE 流，记录是否被关闭"""

    def __init__(self, chunks: List[bytes], error: Optional[Exception] = None):
        self.chunks = chunks
        self.error = error
        self.closed = False
        self.sent = 0

    async def __aiter__(self):
        for chunk in self.chunks:
            self.sent += 1
            yield chunk
        if self.error is not None:
            raise self.error

    async def aclose(self) -> None:
        self.closed = True


class FakeUpstream:
    """记录所有上游请求，并交给当前 handler 生成响应"""

    def __init__(self) -> None:
        self.requests: List[httpx.Request] = []
        self.handler: Callable[[httpx.Request], httpx.Response] = lambda request: httpx.Response(
            200, json=completion_payload("ok")
        )

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return self.handler(request)

    def bodies(self) -> List[dict]:
        return [json.loads(request.content) for request in self.requests]


def completion_payload(content: str, reasoning: Optional[str] = None, usage: Optional[dict] = None) -> dict:
    message = {"role": "assistant", "content": content}
    if reasoning is not None:
        message["reasoning_content"] = reasoning
    payload = {
        "id": "nim-1",
        "object": "chat.completion",
        "choices": [{"index": 0, "message": message, "finish_reason": "stop"}],
    }
    if usage is not None:
        payload["usage"] = usage
    return payload


def sse_frame(delta: dict, finish_reason: Optional[str] = None) -> bytes:
    data = {
        "id": "nim-stream",
        "object": "chat.completion.chunk",
        "choices": [{"index": 0, "delta": delta, "finish_reason": finish_reason}],
    }
    return f"data: {json.dumps(data)}\n\n".encode("utf-8")


@pytest.fixture
def fake_upstream() -> FakeUpstream:
    return FakeUpstream()


@pytest.fixture
def network(fake_upstream: FakeUpstream) -> NetworkManager:
    return NetworkManager(transport=httpx.MockTransport(fake_upstream))


@pytest.fixture
def configured(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(settings, "NIM_API_KEY", "test-key")
    monkeypatch.setattr(settings, "NIM_API_BASE", "https://nim.test/v1")


@pytest.fixture
def service(network: NetworkManager, configured: None) -> ChatCompletionService:
    return ChatCompletionService(network=network, show_reasoning=True, enable_thinking=False, keepalive=False)


@pytest.fixture
async def api_client(service: ChatCompletionService, monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setattr(openai_api, "service", service)
    transport = httpx.ASGITransport(app=main.app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
        yield client
    await service.network.cleanup_clients()
