#!/usr/bin/env python
# -*- coding: utf-8 -*-

"""
响应转码模块 - NIM 响应 -> OpenAI 响应

NIM 的推理模型把思考过程放在 reasoning_content，正文放在 content。
OpenAI 格式没有 reasoning_content 字段，开启 SHOW_REASONING 时把思考内容
用 <think> ... </think> 包裹后并入 content；关闭时直接丢弃思考内容。

流式模式下上游 chunk 边界与行边界、JSON 边界都不对齐，需要按行缓冲：
每个请求独立持有一个 TranscoderState（思考区间是否打开 + 未完成行缓冲）。
"""

import time
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from ..config import settings
from ..helpers import json_lib, debug_log


DATA_PREFIX = "data: "
DONE_SENTINEL = "[DONE]"
KEEPALIVE_FRAME = ":keepalive\n\n"

THINK_OPEN = "<think>\n"
THINK_CLOSE = "</think>\n\n"


@dataclass
class TranscoderState:
    """单个流式请求的转码状态，不跨请求复用"""
    reasoning_open: bool = False
    buffer: bytes = b""


class ResponseTranscoder:
    """响应转码器，自身无状态，流式状态由调用方按请求传入"""

    def __init__(self, show_reasoning: Optional[bool] = None, keepalive: Optional[bool] = None):
        self.show_reasoning = settings.SHOW_REASONING if show_reasoning is None else show_reasoning
        self.keepalive = settings.STREAM_KEEPALIVE if keepalive is None else keepalive

    # ------------------------------------------------------------------
    # 非流式
    # ------------------------------------------------------------------

    def transcode_completion(self, payload: Dict[str, Any], model: str) -> Dict[str, Any]:
        """把上游完整响应转换为 OpenAI chat.completion"""
        choices = []
        for choice in payload.get("choices") or []:
            message = choice.get("message") or {}
            content = message.get("content") or ""
            reasoning = message.get("reasoning_content")

            if self.show_reasoning and reasoning:
                content = f"{THINK_OPEN}{reasoning}\n{THINK_CLOSE}{content}"

            choices.append({
                "index": choice.get("index"),
                "message": {
                    "role": message.get("role", "assistant"),
                    "content": content,
                },
                "finish_reason": choice.get("finish_reason"),
            })

        usage = payload.get("usage")
        if usage is None:
            usage = {"prompt_tokens": 0, "completion_tokens": 0, "total_tokens": 0}

        return {
            "id": f"chatcmpl-{int(time.time() * 1000)}",
            "object": "chat.completion",
            "created": int(time.time()),
            "model": model,
            "choices": choices,
            "usage": usage,
        }

    # ------------------------------------------------------------------
    # 流式
    # ------------------------------------------------------------------

    def new_state(self) -> TranscoderState:
        return TranscoderState()

    def feed(self, state: TranscoderState, chunk: bytes) -> List[str]:
        """
        处理一个上游网络块，返回需要写给调用方的 SSE 片段

        只处理完整的行，最后一个不完整片段留在 state.buffer 中等待下一块。
        """
        frames = [KEEPALIVE_FRAME] if self.keepalive else []

        state.buffer += chunk
        *lines, state.buffer = state.buffer.split(b"\n")

        for raw_line in lines:
            frame = self.transcode_line(state, raw_line.decode("utf-8", errors="replace"))
            if frame is not None:
                frames.append(frame)
        return frames

    def flush(self, state: TranscoderState) -> List[str]:
        """上游结束时处理缓冲区中没有换行结尾的最后一行"""
        if not state.buffer:
            return []
        line = state.buffer.decode("utf-8", errors="replace")
        state.buffer = b""
        frame = self.transcode_line(state, line)
        return [frame] if frame is not None else []

    def transcode_line(self, state: TranscoderState, line: str) -> Optional[str]:
        line = line.rstrip("\r")
        if not line.startswith(DATA_PREFIX):
            return None

        payload = line[len(DATA_PREFIX):]
        if payload.strip() == DONE_SENTINEL:
            return f"{line}\n\n"

        try:
            data = json_lib.loads(payload)
        except ValueError:
            debug_log("[STREAM] 无法解析的上游数据行，原样转发", line=line[:200])
            return f"{line}\n\n"

        if not isinstance(data, dict):
            return f"{line}\n\n"

        choices = data.get("choices")
        if isinstance(choices, list) and choices and isinstance(choices[0], dict):
            delta = choices[0].get("delta")
            if isinstance(delta, dict):
                self.merge_delta(state, delta)

        return f"{DATA_PREFIX}{json_lib.dumps(data)}\n\n"

    def merge_delta(self, state: TranscoderState, delta: Dict[str, Any]) -> None:
        """把 reasoning_content 并入 content（就地修改 delta）"""
        reasoning = delta.pop("reasoning_content", None)
        content = delta.get("content")

        if not self.show_reasoning:
            delta["content"] = content or ""
            return

        merged = ""
        if reasoning:
            if not state.reasoning_open:
                merged = THINK_OPEN
                state.reasoning_open = True
            merged += reasoning

        if content:
            if state.reasoning_open:
                merged += THINK_CLOSE
                state.reasoning_open = False
            merged += content

        delta["content"] = merged
