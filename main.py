#!/usr/bin/env python
# -*- coding: utf-8 -*-

"""
Main application entry point - OpenAI to NVIDIA NIM proxy
"""

from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from nim_proxy.config import settings
from nim_proxy.errors import InvalidRequestError, ProxyError
from nim_proxy.helpers import info_log, error_log
from nim_proxy.openai_api import router as openai_router
from nim_proxy.services.network_manager import network_manager

SERVICE_NAME = "OpenAI to NVIDIA NIM Proxy"


@asynccontextmanager
async def lifespan(app: FastAPI):
    info_log(
        f"{SERVICE_NAME} 启动",
        port=settings.LISTEN_PORT,
        upstream=settings.NIM_API_BASE,
        reasoning_display="ENABLED" if settings.SHOW_REASONING else "DISABLED",
        thinking_mode="ENABLED" if settings.ENABLE_THINKING_MODE else "DISABLED",
        server_timeout=f"{settings.SERVER_TIMEOUT}s",
        upstream_timeout=f"{settings.UPSTREAM_TIMEOUT}s",
        probe_timeout=f"{settings.PROBE_TIMEOUT}s",
    )
    if not settings.NIM_API_KEY:
        error_log("NIM_API_KEY 未配置，所有补全请求将返回 500")
    yield
    await network_manager.cleanup_clients()


# Create FastAPI app
app = FastAPI(
    title=SERVICE_NAME,
    description="OpenAI-compatible API server for NVIDIA NIM",
    version="1.0.0",
    lifespan=lifespan,
)

# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include API router
app.include_router(openai_router)


@app.exception_handler(ProxyError)
async def handle_proxy_error(request: Request, exc: ProxyError):
    return JSONResponse(status_code=exc.status_code, content=exc.to_payload())


@app.exception_handler(RequestValidationError)
async def handle_validation_error(request: Request, exc: RequestValidationError):
    errors = exc.errors()
    if errors:
        location = ".".join(str(part) for part in errors[0].get("loc", ()) if part != "body")
        message = f"{location}: {errors[0].get('msg')}" if location else str(errors[0].get("msg"))
    else:
        message = "Invalid request body"
    return JSONResponse(status_code=400, content=InvalidRequestError(message).to_payload())


@app.exception_handler(StarletteHTTPException)
async def handle_http_exception(request: Request, exc: StarletteHTTPException):
    # 未匹配的路径或方法统一返回 404
    if exc.status_code in (404, 405):
        error = InvalidRequestError(f"Endpoint {request.url.path} not found", status_code=404)
        return JSONResponse(status_code=404, content=error.to_payload())
    error = InvalidRequestError(str(exc.detail), status_code=exc.status_code)
    return JSONResponse(status_code=exc.status_code, content=error.to_payload(), headers=exc.headers)


@app.exception_handler(Exception)
async def handle_unexpected_error(request: Request, exc: Exception):
    error_log("未处理的异常", path=request.url.path, error=str(exc), error_type=type(exc).__name__)
    return JSONResponse(status_code=500, content=ProxyError("Internal server error").to_payload())


@app.get("/health")
async def health():
    """Health check endpoint"""
    return {
        "status": "ok",
        "service": SERVICE_NAME,
        "reasoning_display": settings.SHOW_REASONING,
        "thinking_mode": settings.ENABLE_THINKING_MODE,
    }


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "main:app",
        host="0.0.0.0",
        port=settings.LISTEN_PORT,
        workers=settings.UVICORN_WORKERS,
        http="httptools",
        timeout_keep_alive=settings.SERVER_TIMEOUT,
        reload=False,
        log_level="info",
    )
