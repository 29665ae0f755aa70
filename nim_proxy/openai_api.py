"""
OpenAI API endpoints
"""

import time
from contextlib import aclosing

from fastapi import APIRouter
from fastapi.responses import StreamingResponse

from .config import MODEL_MAPPING, settings
from .helpers import (
    error_log,
    debug_log,
    bind_request_context,
    reset_request_context,
    request_stage_log,
    json_lib,
)
from .schemas import OpenAIRequest, ModelsResponse, Model
from .services.openai_service import chat_completion_service

router = APIRouter()

service = chat_completion_service

_CONTEXT_KEYS = ("model", "upstream_model", "mode")


@router.get("/v1/models")
async def list_models():
    """List caller-facing model aliases"""
    current_time = int(time.time())
    return ModelsResponse(
        data=[
            Model(id=alias, created=current_time, owned_by="nvidia-nim-proxy")
            for alias in MODEL_MAPPING
        ]
    )


@router.post("/v1/chat/completions")
async def chat_completions(request: OpenAIRequest):
    """处理 chat completion 请求，支持流式和非流式"""
    mode = "stream" if request.stream else "non_stream"
    bind_request_context(model=request.model, mode=mode)
    request_stage_log(
        "received",
        "收到客户端请求",
        stream=request.stream,
        message_count=len(request.messages),
    )
    if settings.LOG_LEVEL == "debug":
        debug_log("客户端请求体详情", request_body=json_lib.dumps(request.model_dump()))

    stream_opened = False
    try:
        service.ensure_configured()
        service.validate_messages(request.messages)

        _, upstream = await service.prepare(request)

        if not request.stream:
            result = await service.complete(request, upstream)
            request_stage_log("non_stream_ready", "非流式结果已生成")
            return result

        upstream_response = await service.open_stream(upstream)
        stream_opened = True
    except Exception as exc:
        error_log("[REQUEST] 请求处理失败", error=str(exc), error_type=type(exc).__name__)
        raise
    finally:
        # 流式上下文由生成器结束时清理
        if not stream_opened:
            reset_request_context(*_CONTEXT_KEYS)

    async def stream_response():
        try:
            request_stage_log("stream_dispatch", "开始推送流式响应数据")
            # 调用方断开时立即关闭内层生成器，释放上游连接
            async with aclosing(service.stream_response(upstream_response)) as frames:
                async for chunk in frames:
                    yield chunk
        finally:
            request_stage_log("stream_cleanup", "流式上下文清理")
            reset_request_context(*_CONTEXT_KEYS)

    return StreamingResponse(
        stream_response(),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
            "X-Accel-Buffering": "no",
        },
    )
