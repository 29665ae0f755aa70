#!/usr/bin/env python
# -*- coding: utf-8 -*-

"""
消息处理器模块 - 按目标模型要求统一 content 格式

部分 NIM 模型只接受数组格式的 content（[{"type": "text", "text": ...}]），
其余模型只接受纯文本。
"""

from typing import Any, Dict, List

from .config import ARRAY_CONTENT_MODELS
from .helpers import debug_log


def requires_array_content(model: str) -> bool:
    """目标模型是否要求数组格式的 content"""
    return any(entry.split("/", 1)[-1] in model for entry in ARRAY_CONTENT_MODELS)


def flatten_content(parts: List[Any]) -> str:
    """拼接所有 text 类型片段，丢弃其他类型"""
    return "\n".join(
        part.get("text") or ""
        for part in parts
        if isinstance(part, dict) and part.get("type") == "text"
    )


class MessageProcessor:
    """
    消息处理器类

    只负责 content 形态转换，role、顺序及其它字段原样保留。
    """

    def normalize_messages(self, model: str, messages: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        """
        将消息列表转换为目标模型要求的 content 格式

        Args:
            model: 已解析的上游模型名
            messages: 原始消息列表（不会被修改）

        Returns:
            新的消息列表
        """
        array_format = requires_array_content(model)
        debug_log("[MESSAGE] 统一 content 格式", model=model, array_format=array_format, count=len(messages))
        return [self.normalize_message(msg, array_format) for msg in messages]

    def normalize_message(self, message: Dict[str, Any], array_format: bool) -> Dict[str, Any]:
        content = message.get("content")

        if array_format and isinstance(content, str):
            return {**message, "content": [{"type": "text", "text": content}]}

        if not array_format and isinstance(content, list):
            return {**message, "content": flatten_content(content)}

        return dict(message)
