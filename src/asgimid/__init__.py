# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""asgimid: middleware and helpers composed around ASGI request handlers.

- ``ErrorHandler``: error-raising handlers to exactly one HTTP response
- ``JSONHandler``: typed functions to POST+JSON endpoints
- ``TraceMiddleware`` / ``LogMiddleware``: trace IDs and entry/exit log lines
- ``SessionMiddleware`` + ``csrf_token`` / ``csrf_check``: cookie sessions
- ``RateLimitedTransport``: outbound httpx requests gated by a limiter
"""

from __future__ import annotations

from .config import MiddlewareConfig
from .context import Env, context_session, get_request, get_response_writer, trace_id
from .err_handler import ErrorHandler, err, errorf
from .errors import (
    CodedError,
    CSRFError,
    MiddlewareError,
    NoCookieError,
    NoSessionError,
    Responder,
    find_responder,
    http_error,
    is_no_session,
    status_text,
)
from .json_handler import JSONHandler, json_handler, respond_json
from .log_middleware import LogMiddleware
from .logging_config import configure, configure_from
from .session import (
    InMemorySessionStore,
    Session,
    SessionMiddleware,
    SessionStore,
    csrf_check,
    csrf_token,
    get_session,
)
from .stack import build_limiter, build_stack
from .trace import TraceMiddleware
from .transport import Limiter, RateLimitedTransport, TokenBucketLimiter, limited_client
from .writer import ResponseCapture, ResponseWriter

__all__ = [
    "CSRFError",
    "CodedError",
    "Env",
    "ErrorHandler",
    "InMemorySessionStore",
    "JSONHandler",
    "Limiter",
    "LogMiddleware",
    "MiddlewareConfig",
    "MiddlewareError",
    "NoCookieError",
    "NoSessionError",
    "RateLimitedTransport",
    "Responder",
    "ResponseCapture",
    "ResponseWriter",
    "Session",
    "SessionMiddleware",
    "SessionStore",
    "TokenBucketLimiter",
    "TraceMiddleware",
    "build_limiter",
    "build_stack",
    "configure",
    "configure_from",
    "context_session",
    "csrf_check",
    "csrf_token",
    "err",
    "errorf",
    "find_responder",
    "get_request",
    "get_response_writer",
    "get_session",
    "http_error",
    "is_no_session",
    "json_handler",
    "limited_client",
    "respond_json",
    "status_text",
    "trace_id",
]
