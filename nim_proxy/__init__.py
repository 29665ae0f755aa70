"""
nim_proxy package - OpenAI-compatible proxy for NVIDIA NIM
"""

from .config import settings, MODEL_MAPPING
from .helpers import debug_log, configure_structlog
from .schemas import OpenAIRequest, ModelsResponse, Model, Message, ContentPart

__all__ = [
    "settings",
    "MODEL_MAPPING",
    "debug_log",
    "configure_structlog",
    "OpenAIRequest",
    "ModelsResponse",
    "Model",
    "Message",
    "ContentPart",
]
