"""
Caller-facing error types

Every error is rendered as ``{"error": {"message", "type", "code"}}``.
"""

from typing import Any, Optional

import httpx

from .schemas import ErrorDetail, ErrorResponse


class ProxyError(Exception):
    """Base class for errors returned to the caller as an error envelope"""

    status_code: int = 500
    error_type: str = "api_error"

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code

    def to_payload(self) -> dict:
        return ErrorResponse(
            error=ErrorDetail(message=self.message, type=self.error_type, code=self.status_code)
        ).model_dump()


class ConfigurationError(ProxyError):
    """Proxy deployment is missing required configuration (e.g. the NIM credential)"""

    status_code = 500
    error_type = "configuration_error"


class InvalidRequestError(ProxyError):
    status_code = 400
    error_type = "invalid_request_error"


class UpstreamError(ProxyError):
    """NIM call failed: transport error, timeout or non-2xx status"""

    error_type = "upstream_error"

    @classmethod
    def from_response(cls, status_code: int, body: Any) -> "UpstreamError":
        message = extract_error_message(body, f"Upstream returned status {status_code}")
        return cls(message, status_code=status_code)

    @classmethod
    def from_transport(cls, exc: httpx.HTTPError) -> "UpstreamError":
        return cls(extract_error_message(None, str(exc)), status_code=500)


def extract_error_message(body: Any, fallback: Optional[str] = None) -> str:
    """
    Pick the most specific message available

    Precedence: structured ``detail`` -> ``error.message`` / ``error`` /
    ``message`` -> fallback (transport error text) -> generic text.
    """
    if isinstance(body, dict):
        detail = body.get("detail")
        if detail:
            return detail if isinstance(detail, str) else str(detail)

        error = body.get("error")
        if isinstance(error, dict) and error.get("message"):
            return str(error["message"])
        if isinstance(error, str) and error:
            return error

        if body.get("message"):
            return str(body["message"])
    elif isinstance(body, str) and body.strip():
        return body.strip()[:500]

    return fallback or "Internal server error"
