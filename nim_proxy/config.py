"""
FastAPI application configuration module
"""

import os
from functools import lru_cache
from types import MappingProxyType

from dotenv import load_dotenv
from pydantic_settings import BaseSettings

# 加载.env文件,覆盖电脑自身环境变量
load_dotenv(override=True)


def _env_flag(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")


class Settings(BaseSettings):
    """Application settings"""

    # NVIDIA NIM upstream
    NIM_API_BASE: str = os.getenv("NIM_API_BASE", "https://integrate.api.nvidia.com/v1")
    NIM_API_KEY: str = os.getenv("NIM_API_KEY", "")

    # Server Configuration
    LISTEN_PORT: int = int(os.getenv("PORT", "3000"))
    UVICORN_WORKERS: int = int(os.getenv("UVICORN_WORKERS", "1"))
    # 长连接/慢模型：监听层超时（秒）
    SERVER_TIMEOUT: int = int(os.getenv("SERVER_TIMEOUT", "300"))

    # Upstream timeouts (seconds)
    PROBE_TIMEOUT: float = float(os.getenv("PROBE_TIMEOUT", "5"))
    UPSTREAM_TIMEOUT: float = float(os.getenv("UPSTREAM_TIMEOUT", "120"))

    # Reasoning display: merge reasoning_content into content wrapped in <think>
    SHOW_REASONING: bool = _env_flag("SHOW_REASONING", "true")
    # Thinking mode: ask supporting models to emit reasoning
    ENABLE_THINKING_MODE: bool = _env_flag("ENABLE_THINKING_MODE", "false")
    # Emit an SSE comment per upstream chunk so idle proxies keep the connection
    STREAM_KEEPALIVE: bool = _env_flag("STREAM_KEEPALIVE", "true")

    # Fallback tiers for unknown model names
    LARGE_MODEL: str = os.getenv("LARGE_MODEL", "meta/llama-3.1-405b-instruct")
    MEDIUM_MODEL: str = os.getenv("MEDIUM_MODEL", "meta/llama-3.1-70b-instruct")
    SMALL_MODEL: str = os.getenv("SMALL_MODEL", "meta/llama-3.1-8b-instruct")

    # Sampling defaults
    DEFAULT_TEMPERATURE: float = float(os.getenv("DEFAULT_TEMPERATURE", "0.6"))
    DEFAULT_MAX_TOKENS: int = int(os.getenv("DEFAULT_MAX_TOKENS", "9024"))

    # Logging Configuration - 支持三个等级：false, info, debug
    _log_level_str: str = os.getenv("LOG_LEVEL", "info").lower()
    LOG_LEVEL: str = _log_level_str if _log_level_str in ["false", "info", "debug"] else "info"

    @property
    def chat_completions_url(self) -> str:
        return f"{self.NIM_API_BASE.rstrip('/')}/chat/completions"


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()


settings = get_settings()

# Model Mapping Configuration - OpenAI 模型名 -> NIM 模型
MODEL_MAPPING = MappingProxyType({
    "gpt-3.5-turbo": "nvidia/llama-3.1-nemotron-ultra-253b-v1",
    "gpt-4": "qwen/qwen3-coder-480b-a35b-instruct",
    "gpt-4-turbo": "moonshotai/kimi-k2.5-instruct",
    "gpt-4-turbo-preview": "moonshotai/kimi-k2.5-instruct",
    "gpt-4o": "deepseek-ai/deepseek-v3.1",
    "gpt-4o-mini": "meta/llama-3.1-70b-instruct",
    "claude-3-opus": "openai/gpt-oss-120b",
    "claude-3-sonnet": "openai/gpt-oss-20b",
    "claude-3-5-sonnet": "openai/gpt-oss-120b",
    "gemini-pro": "qwen/qwen3-next-80b-a3b-thinking",
    "kimi-k2.5": "moonshotai/kimi-k2.5-instruct",
    "kimi": "moonshotai/kimi-k2.5-instruct",
})

# 需要数组格式 content 的模型
ARRAY_CONTENT_MODELS = (
    "moonshotai/kimi-k2.5-instruct",
    "moonshotai/kimi-k2-instruct-0905",
)

# 支持 thinking 参数的模型
THINKING_MODELS = frozenset({
    "qwen/qwen3-next-80b-a3b-thinking",
    "qwen/qwq-32b-preview",
})
