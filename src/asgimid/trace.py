# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Trace ASGI middleware: attaches a per-request trace ID.

The ID comes from the first non-blank of ``X-Trace-Id``,
``Idempotency-Key`` and ``X-Idempotency-Key`` (whitespace-trimmed), or is
16 random bytes hex-encoded. It is stored in ``scope["state"]`` (read it
back with ``trace_id(scope)``) and bound into structlog contextvars while
the downstream app runs, so structured log lines carry it too.
"""

from __future__ import annotations

import logging
import secrets

import structlog
from starlette.datastructures import Headers
from starlette.types import ASGIApp, Receive, Scope, Send

from .context import TRACE_ID_KEY, trace_id
from .err_handler import errorf
from .errors import TraceIDError
from .writer import ResponseWriter

logger = logging.getLogger(__name__)

TRACE_HEADERS: tuple[str, ...] = ("x-trace-id", "idempotency-key", "x-idempotency-key")
TRACE_ID_BYTES = 16

__all__ = ["TRACE_HEADERS", "TraceMiddleware", "get_trace_id", "trace_id"]


def get_trace_id(scope: Scope) -> str:
    """Pick the trace ID for a request, generating one when no header has it.

    Raises ``TraceIDError`` if the system RNG fails.
    """
    headers = Headers(scope=scope)
    for name in TRACE_HEADERS:
        value = headers.get(name, "").strip()
        if value:
            return value
    try:
        return secrets.token_hex(TRACE_ID_BYTES)
    except OSError as exc:
        raise TraceIDError(f"computing random trace ID: {exc}") from exc


class TraceMiddleware:
    """Pure ASGI middleware decorating each HTTP request with a trace ID.

    Non-HTTP scopes (lifespan, websocket) pass through unconditionally.
    """

    def __init__(self, app: ASGIApp) -> None:
        self.app = app

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        scope.setdefault("state", {})

        try:
            value = get_trace_id(scope)
        except TraceIDError as exc:
            writer = ResponseWriter(send)
            await errorf(writer, 500, "getting trace ID: %s", exc)
            await writer.finish()
            return

        scope["state"][TRACE_ID_KEY] = value
        with structlog.contextvars.bound_contextvars(trace_id=value):
            await self.app(scope, receive, send)
