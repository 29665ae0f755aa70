"""
Application data models
"""

from typing import Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict


class ContentPart(BaseModel):
    """Content part model for OpenAI's structured content format"""
    model_config = ConfigDict(extra="allow")

    type: str
    text: Optional[str] = None


class Message(BaseModel):
    """Chat message model"""
    model_config = ConfigDict(extra="allow")

    role: Literal["system", "user", "assistant"]
    content: Optional[Union[str, List[ContentPart]]] = None


class OpenAIRequest(BaseModel):
    """OpenAI-compatible request model"""
    model_config = ConfigDict(extra="allow")

    model: str
    messages: List[Message]
    stream: Optional[bool] = False
    temperature: Optional[float] = None
    max_tokens: Optional[int] = None


class UpstreamRequest(BaseModel):
    """Request body sent to NIM /chat/completions"""
    model: str
    messages: List[Dict[str, Any]]
    temperature: float
    max_tokens: int
    stream: bool = False
    extra_body: Optional[Dict[str, Any]] = None


class Model(BaseModel):
    """Model information for listing"""
    id: str
    object: str = "model"
    created: int
    owned_by: str


class ModelsResponse(BaseModel):
    """Models list response model"""
    object: str = "list"
    data: List[Model]


class ErrorDetail(BaseModel):
    message: str
    type: str
    code: int


class ErrorResponse(BaseModel):
    """Caller-facing error envelope"""
    error: ErrorDetail
