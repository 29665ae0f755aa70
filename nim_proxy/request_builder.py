"""
Upstream request assembly
"""

from typing import Any, Dict, List, Optional

from .config import settings, THINKING_MODELS
from .helpers import debug_log
from .schemas import UpstreamRequest


def supports_thinking(model: str) -> bool:
    return model in THINKING_MODELS


def build_upstream_request(
    model: str,
    messages: List[Dict[str, Any]],
    temperature: Optional[float] = None,
    max_tokens: Optional[int] = None,
    stream: Optional[bool] = None,
    enable_thinking: Optional[bool] = None,
) -> UpstreamRequest:
    """
    Build the NIM request body.

    Only ``None`` falls back to a default: an explicit ``temperature=0`` is kept.
    The thinking sub-object is attached only when thinking mode is enabled and
    the model declares support for it.
    """
    if enable_thinking is None:
        enable_thinking = settings.ENABLE_THINKING_MODE

    request = UpstreamRequest(
        model=model,
        messages=messages,
        temperature=settings.DEFAULT_TEMPERATURE if temperature is None else temperature,
        max_tokens=settings.DEFAULT_MAX_TOKENS if max_tokens is None else max_tokens,
        stream=bool(stream),
    )

    if enable_thinking and supports_thinking(model):
        request.extra_body = {"chat_template_kwargs": {"thinking": True}}

    debug_log(
        "[REQUEST] 上游请求已构建",
        model=model,
        temperature=request.temperature,
        max_tokens=request.max_tokens,
        stream=request.stream,
        thinking=request.extra_body is not None,
    )
    return request
