"""Shared HTTP client management for NIM upstream calls."""

from __future__ import annotations

import asyncio
from typing import Dict, Optional

import httpx

from ..helpers import info_log, debug_log, error_log
from ..config import settings


_CONNECTION_POOL_CONFIG: Dict[str, object] = {
    "limits": httpx.Limits(
        max_keepalive_connections=20,
        max_connections=100,
        keepalive_expiry=30,
    ),
    "http2": True,
}


class NetworkManager:
    """Own the shared upstream client plus the per-call timeouts."""

    def __init__(self, transport: Optional[httpx.AsyncBaseTransport] = None) -> None:
        self._client: Optional[httpx.AsyncClient] = None
        self._client_lock = asyncio.Lock()
        self._transport = transport

    @property
    def upstream_timeout(self) -> httpx.Timeout:
        return httpx.Timeout(
            connect=10.0,
            read=settings.UPSTREAM_TIMEOUT,
            write=30.0,
            pool=10.0,
        )

    @property
    def probe_timeout(self) -> httpx.Timeout:
        return httpx.Timeout(settings.PROBE_TIMEOUT)

    def auth_headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {settings.NIM_API_KEY}",
            "Content-Type": "application/json",
        }

    async def get_client(self) -> httpx.AsyncClient:
        async with self._client_lock:
            if self._client is None:
                info_log("[CLIENT] 创建上游客户端", base=settings.NIM_API_BASE)
                if self._transport is not None:
                    self._client = httpx.AsyncClient(
                        transport=self._transport,
                        timeout=self.upstream_timeout,
                    )
                else:
                    self._client = httpx.AsyncClient(
                        timeout=self.upstream_timeout,
                        **_CONNECTION_POOL_CONFIG,
                    )
            return self._client

    def build_request(
        self,
        client: httpx.AsyncClient,
        body: dict,
        timeout: Optional[httpx.Timeout] = None,
    ) -> httpx.Request:
        debug_log("[UPSTREAM] 构建请求", url=settings.chat_completions_url, model=body.get("model"))
        return client.build_request(
            "POST",
            settings.chat_completions_url,
            json=body,
            headers=self.auth_headers(),
            timeout=timeout or self.upstream_timeout,
        )

    async def cleanup_clients(self) -> None:
        async with self._client_lock:
            client = self._client
            self._client = None

        if client:
            try:
                await client.aclose()
                info_log("[CLIENT] 上游客户端已关闭")
            except Exception as exc:  # pragma: no cover - 问题记录即可
                error_log("[CLIENT] 关闭上游客户端失败", error=str(exc))


network_manager = NetworkManager()
