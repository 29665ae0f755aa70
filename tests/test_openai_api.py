#!/usr/bin/env python
# -*- coding: utf-8 -*-

"""
端到端测试：OpenAI 接口 -> 伪造的 NIM 上游
"""

import json

import httpx
import pytest

from conftest import ChunkStream, completion_payload, sse_frame
from nim_proxy import openai_api
from nim_proxy.config import MODEL_MAPPING, settings

USER_MESSAGES = [{"role": "user", "content": "你好"}]


def data_frames(text: str) -> list:
    return [line[len("data: "):] for line in text.split("\n") if line.startswith("data: ")]


async def test_list_models(api_client):
    response = await api_client.get("/v1/models")

    assert response.status_code == 200
    body = response.json()
    assert body["object"] == "list"
    assert [m["id"] for m in body["data"]] == list(MODEL_MAPPING)
    assert all(m["object"] == "model" and m["owned_by"] == "nvidia-nim-proxy" for m in body["data"])


async def test_health(api_client):
    response = await api_client.get("/health")

    assert response.status_code == 200
    assert response.json()["status"] == "ok"
    assert response.json()["reasoning_display"] == settings.SHOW_REASONING


async def test_unknown_endpoint_envelope(api_client):
    response = await api_client.get("/v1/embeddings")

    assert response.status_code == 404
    assert response.json() == {
        "error": {
            "message": "Endpoint /v1/embeddings not found",
            "type": "invalid_request_error",
            "code": 404,
        }
    }


@pytest.mark.parametrize("method, path", [
    ("POST", "/health"),
    ("DELETE", "/v1/chat/completions"),
    ("PUT", "/v1/models"),
])
async def test_wrong_method_gets_not_found_envelope(api_client, method, path):
    response = await api_client.request(method, path)

    assert response.status_code == 404
    assert response.json() == {
        "error": {
            "message": f"Endpoint {path} not found",
            "type": "invalid_request_error",
            "code": 404,
        }
    }


async def test_alias_routes_without_probe(api_client, fake_upstream):
    fake_upstream.handler = lambda request: httpx.Response(
        200, json=completion_payload("answer", reasoning="steps", usage={"prompt_tokens": 1, "completion_tokens": 2, "total_tokens": 3})
    )

    response = await api_client.post("/v1/chat/completions", json={"model": "gpt-4o", "messages": USER_MESSAGES})

    assert response.status_code == 200
    assert len(fake_upstream.requests) == 1
    assert fake_upstream.bodies()[0] == {
        "model": "deepseek-ai/deepseek-v3.1",
        "messages": USER_MESSAGES,
        "temperature": 0.6,
        "max_tokens": 9024,
        "stream": False,
    }
    body = response.json()
    assert body["model"] == "gpt-4o"
    assert body["choices"][0]["message"]["content"] == "<think>\nsteps\n</think>\n\nanswer"
    assert body["usage"]["total_tokens"] == 3


async def test_explicit_zero_temperature_forwarded(api_client, fake_upstream):
    await api_client.post(
        "/v1/chat/completions",
        json={"model": "gpt-4o", "messages": USER_MESSAGES, "temperature": 0},
    )

    assert fake_upstream.bodies()[0]["temperature"] == 0


async def test_array_content_model_gets_structured_messages(api_client, fake_upstream):
    await api_client.post("/v1/chat/completions", json={"model": "kimi", "messages": USER_MESSAGES})

    assert fake_upstream.bodies()[0]["messages"] == [
        {"role": "user", "content": [{"type": "text", "text": "你好"}]}
    ]


async def test_unmapped_model_probed_once(api_client, fake_upstream):
    payload = {"model": "nvidia/custom-model", "messages": USER_MESSAGES}

    await api_client.post("/v1/chat/completions", json=payload)
    await api_client.post("/v1/chat/completions", json=payload)

    bodies = fake_upstream.bodies()
    assert [b["max_tokens"] for b in bodies] == [1, 9024, 9024]
    assert all(b["model"] == "nvidia/custom-model" for b in bodies)


async def test_missing_credential(api_client, fake_upstream, monkeypatch):
    monkeypatch.setattr(settings, "NIM_API_KEY", "")

    response = await api_client.post("/v1/chat/completions", json={"model": "gpt-4o", "messages": USER_MESSAGES})

    assert response.status_code == 500
    assert response.json()["error"]["type"] == "configuration_error"
    assert response.json()["error"]["code"] == 500
    assert fake_upstream.requests == []
    assert (await api_client.get("/health")).status_code == 200


@pytest.mark.parametrize("payload", [
    {"model": "gpt-4o", "messages": []},
    {"model": "gpt-4o"},
])
async def test_messages_required(api_client, fake_upstream, payload):
    response = await api_client.post("/v1/chat/completions", json=payload)

    assert response.status_code == 400
    assert response.json()["error"]["type"] == "invalid_request_error"
    assert response.json()["error"]["code"] == 400
    assert fake_upstream.requests == []


@pytest.mark.parametrize(
    "status, body, message",
    [
        (401, {"detail": "Authentication failed"}, "Authentication failed"),
        (422, {"error": {"message": "max_tokens too large"}}, "max_tokens too large"),
        (502, None, "Upstream returned status 502"),
    ],
)
async def test_upstream_error_envelope(api_client, fake_upstream, status, body, message):
    fake_upstream.handler = lambda request: httpx.Response(status, json=body) if body else httpx.Response(status)

    response = await api_client.post("/v1/chat/completions", json={"model": "gpt-4o", "messages": USER_MESSAGES})

    assert response.status_code == status
    assert response.json() == {"error": {"message": message, "type": "upstream_error", "code": status}}


async def test_upstream_transport_error(api_client, fake_upstream):
    def refuse(request):
        raise httpx.ConnectError("connection refused")

    fake_upstream.handler = refuse

    response = await api_client.post("/v1/chat/completions", json={"model": "gpt-4o", "messages": USER_MESSAGES})

    assert response.status_code == 500
    assert response.json()["error"]["message"] == "connection refused"


async def test_streaming_merges_reasoning(api_client, fake_upstream):
    raw = b"".join([
        sse_frame({"role": "assistant", "reasoning_content": "A"}),
        sse_frame({"reasoning_content": "B"}),
        sse_frame({"content": "C"}),
        b"data: {broken\n\n",
        sse_frame({}, finish_reason="stop"),
        b"data: [DONE]\n\n",
    ])
    stream = ChunkStream([raw[:50], raw[50:123], raw[123:]])
    fake_upstream.handler = lambda request: httpx.Response(
        200, stream=stream, headers={"content-type": "text/event-stream"}
    )

    response = await api_client.post(
        "/v1/chat/completions",
        json={"model": "gemini-pro", "messages": USER_MESSAGES, "stream": True},
    )

    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/event-stream")
    assert fake_upstream.bodies()[0]["stream"] is True
    assert fake_upstream.bodies()[0]["model"] == "qwen/qwen3-next-80b-a3b-thinking"

    frames = data_frames(response.text)
    assert frames[-1] == "[DONE]"
    assert "{broken" in frames
    content = "".join(
        json.loads(f)["choices"][0]["delta"]["content"]
        for f in frames
        if f not in ("[DONE]", "{broken")
    )
    assert content == "<think>\nAB</think>\n\nC"
    assert stream.closed


async def test_streaming_upstream_error_is_json(api_client, fake_upstream):
    fake_upstream.handler = lambda request: httpx.Response(429, json={"detail": "Too many requests"})

    response = await api_client.post(
        "/v1/chat/completions",
        json={"model": "gpt-4o", "messages": USER_MESSAGES, "stream": True},
    )

    assert response.status_code == 429
    assert response.json()["error"]["message"] == "Too many requests"


async def test_request_body_not_serialized_below_debug(api_client, fake_upstream, monkeypatch):
    class FailingEncoder:
        @staticmethod
        def dumps(obj):
            raise AssertionError("request body serialized outside debug level")

    monkeypatch.setattr(settings, "LOG_LEVEL", "info")
    monkeypatch.setattr(openai_api, "json_lib", FailingEncoder())

    response = await api_client.post("/v1/chat/completions", json={"model": "gpt-4o", "messages": USER_MESSAGES})

    assert response.status_code == 200
