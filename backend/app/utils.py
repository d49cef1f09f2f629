from __future__ import annotations

import logging
from contextvars import ContextVar
from uuid import uuid4

from fastapi import Request
from fastapi.middleware.cors import CORSMiddleware
from starlette.middleware.base import BaseHTTPMiddleware

from .settings import settings

# Context variable for request ID (accessible throughout the request lifecycle)
request_id_ctx: ContextVar[str] = ContextVar("request_id", default="")


def add_cors(app):
    origins = settings.allow_origins
    if not origins:
        # Default is explicit opt-in; skip middleware when nothing configured
        return
    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["*"],
    )


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):  # type: ignore[override]
        response = await call_next(request)
        headers = {
            "X-Frame-Options": "DENY",
            "X-Content-Type-Options": "nosniff",
            "Referrer-Policy": "no-referrer",
            # the app sends the device position in the request body, never via the browser API
            "Permissions-Policy": "camera=(), microphone=(), geolocation=()",
        }
        if request.url.scheme in {"https", "wss"}:
            headers["Strict-Transport-Security"] = "max-age=63072000; includeSubDomains"
        for key, value in headers.items():
            response.headers.setdefault(key, value)
        return response


def add_security_headers(app):
    app.add_middleware(SecurityHeadersMiddleware)


class RequestIDMiddleware(BaseHTTPMiddleware):
    """
    Attach a request ID to every request.

    Reuses an incoming X-Request-ID header when present, stores the value in
    `request_id_ctx` for log processors and echoes it back on the response.
    """

    async def dispatch(self, request: Request, call_next):  # type: ignore[override]
        request_id = request.headers.get("X-Request-ID") or str(uuid4())
        request_id_ctx.set(request_id)
        request.state.request_id = request_id
        response = await call_next(request)
        response.headers["X-Request-ID"] = request_id
        return response


class RequestIDLogFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        request_id = request_id_ctx.get("")
        record.request_id = request_id if request_id else "-"  # type: ignore[attr-defined]
        return True


def add_request_id_tracing(app):
    """Add request ID middleware and configure logging."""
    app.add_middleware(RequestIDMiddleware)
    logging.getLogger().addFilter(RequestIDLogFilter())


def get_request_id() -> str:
    """Get the current request ID from context."""
    return request_id_ctx.get("")
