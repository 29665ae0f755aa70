"""Service layer orchestrating OpenAI-compatible chat completions against NIM."""

from __future__ import annotations

import time
from typing import AsyncIterator, List, Optional, Tuple

import httpx

from ..helpers import (
    debug_log,
    error_log,
    bind_request_context,
    request_stage_log,
    json_lib,
)
from ..config import settings
from ..errors import ConfigurationError, InvalidRequestError, UpstreamError
from ..message_processor import MessageProcessor
from ..model_resolver import ModelResolution, ModelResolver, ValidatedModelCache
from ..request_builder import build_upstream_request
from ..schemas import OpenAIRequest, UpstreamRequest
from .network_manager import NetworkManager, network_manager
from .response_transcoder import ResponseTranscoder


class ChatCompletionService:
    """Encapsulate chat completion workflow independent of FastAPI layer."""

    def __init__(
        self,
        network: Optional[NetworkManager] = None,
        cache: Optional[ValidatedModelCache] = None,
        show_reasoning: Optional[bool] = None,
        enable_thinking: Optional[bool] = None,
        keepalive: Optional[bool] = None,
    ) -> None:
        self.network = network or network_manager
        self.cache = cache if cache is not None else ValidatedModelCache()
        self.resolver = ModelResolver(self.cache, self.network)
        self.processor = MessageProcessor()
        self.transcoder = ResponseTranscoder(show_reasoning=show_reasoning, keepalive=keepalive)
        self.enable_thinking = settings.ENABLE_THINKING_MODE if enable_thinking is None else enable_thinking

    def ensure_configured(self) -> None:
        if not settings.NIM_API_KEY:
            raise ConfigurationError("NIM_API_KEY is not configured")

    def validate_messages(self, messages: List) -> None:
        if not messages:
            raise InvalidRequestError("messages must be a non-empty array")

    async def prepare(self, request: OpenAIRequest) -> Tuple[ModelResolution, UpstreamRequest]:
        """解析模型、统一消息格式并构建上游请求"""
        resolution = await self.resolver.resolve(request.model)
        bind_request_context(upstream_model=resolution.upstream_model)
        request_stage_log(
            "resolved",
            "模型已解析",
            upstream_model=resolution.upstream_model,
            source=resolution.source.value,
        )

        messages = [msg.model_dump(exclude_none=True) for msg in request.messages]
        messages = self.processor.normalize_messages(resolution.upstream_model, messages)

        upstream = build_upstream_request(
            resolution.upstream_model,
            messages,
            temperature=request.temperature,
            max_tokens=request.max_tokens,
            stream=request.stream,
            enable_thinking=self.enable_thinking,
        )
        return resolution, upstream

    async def complete(self, request: OpenAIRequest, upstream: UpstreamRequest) -> dict:
        """非流式：一次请求，整体转码"""
        client = await self.network.get_client()
        http_request = self.network.build_request(client, upstream.model_dump(exclude_none=True))

        request_stage_log("upstream_request", "向上游发起非流式请求", upstream_model=upstream.model)
        request_start_time = time.perf_counter()
        try:
            response = await client.send(http_request)
        except httpx.HTTPError as exc:
            error_log("上游请求失败", error=str(exc), error_type=type(exc).__name__)
            raise UpstreamError.from_transport(exc) from exc

        elapsed = (time.perf_counter() - request_start_time) * 1000
        debug_log("⏱️ 非流式上游耗时", elapsed_ms=f"{elapsed:.2f}ms")

        if not response.is_success:
            raise self._upstream_error(response.status_code, response.content)

        try:
            payload = json_lib.loads(response.content)
        except ValueError:
            payload = None
        if not isinstance(payload, dict):
            error_log("上游返回非JSON响应", body=response.text[:200])
            raise UpstreamError("Upstream returned an invalid JSON response", status_code=502)

        request_stage_log(
            "upstream_response",
            "NIM 响应成功",
            choices=len(payload.get("choices") or []),
            completion_tokens=(payload.get("usage") or {}).get("completion_tokens"),
        )
        return self.transcoder.transcode_completion(payload, request.model)

    async def open_stream(self, upstream: UpstreamRequest) -> httpx.Response:
        """
        Open the upstream SSE response and check its status.

        Errors raised here happen before any byte reaches the caller, so they
        still become a JSON error envelope with the upstream status.
        """
        client = await self.network.get_client()
        http_request = self.network.build_request(client, upstream.model_dump(exclude_none=True))

        request_stage_log("upstream_request", "向上游发起流式请求", upstream_model=upstream.model)
        request_start_time = time.perf_counter()
        try:
            response = await client.send(http_request, stream=True)
        except httpx.HTTPError as exc:
            error_log("上游请求失败", error=str(exc), error_type=type(exc).__name__)
            raise UpstreamError.from_transport(exc) from exc

        ttfb = (time.perf_counter() - request_start_time) * 1000
        debug_log("⏱️ 上游TTFB (首字节时间)", ttfb_ms=f"{ttfb:.2f}ms")

        if not response.is_success:
            try:
                body = await response.aread()
            except httpx.HTTPError:
                body = b""
            finally:
                await response.aclose()
            raise self._upstream_error(response.status_code, body)

        request_stage_log("upstream_stream_ready", "NIM 响应成功，开始处理 SSE 流")
        return response

    async def stream_response(self, response: httpx.Response) -> AsyncIterator[str]:
        """
        Re-frame the upstream SSE stream for the caller.

        The upstream response is always closed on exit, including when the
        caller disconnects and the generator is cancelled or closed.
        """
        state = self.transcoder.new_state()
        chunk_count = 0
        try:
            async for chunk in response.aiter_bytes():
                chunk_count += 1
                for frame in self.transcoder.feed(state, chunk):
                    yield frame
            for frame in self.transcoder.flush(state):
                yield frame
            request_stage_log("stream_finished", "上游流结束", chunks=chunk_count)
        except httpx.HTTPError as exc:
            # 流已开始，无法再返回错误响应，直接结束
            error_log("流式传输中上游出错", error=str(exc), error_type=type(exc).__name__, chunks=chunk_count)
        finally:
            await response.aclose()
            debug_log("[STREAM] 上游连接已关闭", chunks=chunk_count)

    def _upstream_error(self, status_code: int, body: bytes) -> UpstreamError:
        try:
            parsed = json_lib.loads(body) if body else None
        except ValueError:
            parsed = body.decode("utf-8", errors="ignore")

        error_log(
            "上游返回错误",
            status_code=status_code,
            error_detail=(body or b"")[:200].decode("utf-8", errors="ignore"),
        )
        return UpstreamError.from_response(status_code, parsed)


chat_completion_service = ChatCompletionService()
