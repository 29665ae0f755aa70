#!/usr/bin/env python
# -*- coding: utf-8 -*-

"""
模型解析模块 - 将调用方模型名映射为 NIM 模型

解析顺序（命中即返回）：
1. 静态映射表 MODEL_MAPPING
2. 已验证模型缓存
3. 上游探测（5 秒超时，一次 max_tokens=1 的请求）
4. 按模型名关键词回退到大/中/小三档默认模型
"""

import threading
from dataclasses import dataclass
from enum import Enum
from typing import Iterable, Mapping, Optional

import httpx

from .config import settings, MODEL_MAPPING
from .helpers import info_log, debug_log, perf_timer
from .services.network_manager import NetworkManager


class ValidatedModelCache:
    """进程内已确认可用的上游模型集合（线程安全，只增不减）"""

    def __init__(self, models: Iterable[str] = ()) -> None:
        self._lock = threading.Lock()
        self._models = set(models)

    def __contains__(self, model: object) -> bool:
        with self._lock:
            return model in self._models

    def __len__(self) -> int:
        with self._lock:
            return len(self._models)

    def add(self, model: str) -> None:
        with self._lock:
            self._models.add(model)

    def snapshot(self) -> frozenset:
        with self._lock:
            return frozenset(self._models)


class ProbeOutcome(str, Enum):
    CONFIRMED = "confirmed"
    REJECTED = "rejected"        # 上游 4xx：不是有效模型
    UNREACHABLE = "unreachable"  # 5xx / 超时 / 网络错误


@dataclass(frozen=True)
class ProbeResult:
    outcome: ProbeOutcome
    status_code: Optional[int] = None
    error: Optional[str] = None

    @property
    def confirmed(self) -> bool:
        return self.outcome is ProbeOutcome.CONFIRMED


class ResolutionSource(str, Enum):
    ALIAS = "alias"
    CACHED = "cached"
    PROBED = "probed"
    FALLBACK = "fallback"


@dataclass(frozen=True)
class ModelResolution:
    requested: str
    upstream_model: str
    source: ResolutionSource
    probe: Optional[ProbeResult] = None


def fallback_model(model: str) -> str:
    """按模型名关键词选择默认档位"""
    model_lower = model.lower()
    if any(key in model_lower for key in ("gpt-4", "claude-opus", "405b")):
        return settings.LARGE_MODEL
    if any(key in model_lower for key in ("claude", "gemini", "70b")):
        return settings.MEDIUM_MODEL
    return settings.SMALL_MODEL


class ModelResolver:
    """调用方模型名 -> 上游模型名，永不抛出异常"""

    def __init__(
        self,
        cache: ValidatedModelCache,
        network: NetworkManager,
        mapping: Mapping[str, str] = MODEL_MAPPING,
    ) -> None:
        self.cache = cache
        self.network = network
        self.mapping = mapping

    async def resolve(self, model: str) -> ModelResolution:
        mapped = self.mapping.get(model)
        if mapped:
            info_log("[MODEL] 命中映射表", model=model, upstream_model=mapped)
            return ModelResolution(model, mapped, ResolutionSource.ALIAS)

        if model in self.cache:
            info_log("[MODEL] 使用已验证模型", model=model)
            return ModelResolution(model, model, ResolutionSource.CACHED)

        info_log("[MODEL] 不在映射表中，尝试直连探测", model=model)
        probe = await self.probe(model)
        if probe.confirmed:
            self.cache.add(model)
            info_log("[MODEL] 探测成功，加入缓存", model=model)
            return ModelResolution(model, model, ResolutionSource.PROBED, probe)

        selected = fallback_model(model)
        info_log(
            "[MODEL] 探测未通过，按规模回退",
            model=model,
            outcome=probe.outcome.value,
            status_code=probe.status_code,
            upstream_model=selected,
        )
        return ModelResolution(model, selected, ResolutionSource.FALLBACK, probe)

    async def probe(self, model: str) -> ProbeResult:
        """发起一次最小请求确认上游是否存在该模型"""
        body = {
            "model": model,
            "messages": [{"role": "user", "content": "test"}],
            "max_tokens": 1,
        }
        try:
            client = await self.network.get_client()
            request = self.network.build_request(client, body, timeout=self.network.probe_timeout)
            with perf_timer(f"model_probe {model}"):
                response = await client.send(request)
        except httpx.HTTPError as exc:
            debug_log("[MODEL] 探测请求失败", model=model, error=str(exc))
            return ProbeResult(ProbeOutcome.UNREACHABLE, error=str(exc) or type(exc).__name__)

        status = response.status_code
        if 200 <= status < 300:
            return ProbeResult(ProbeOutcome.CONFIRMED, status_code=status)
        if status < 500:
            return ProbeResult(ProbeOutcome.REJECTED, status_code=status)
        return ProbeResult(ProbeOutcome.UNREACHABLE, status_code=status)
