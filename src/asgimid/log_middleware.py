# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Request logging ASGI middleware.

Emits one line on entry and one on exit of every HTTP request::

    < GET /foo [3f0c...]
    > 200 GET /foo [3f0c...]

The bracketed trace ID appears only when ``TraceMiddleware`` ran first.
The exit status is whatever the downstream app wrote, 0 if nothing.
"""

from __future__ import annotations

import logging

from starlette.types import ASGIApp, Receive, Scope, Send

from .context import trace_id
from .writer import ResponseCapture, ResponseWriter

logger = logging.getLogger(__name__)


def request_url(scope: Scope) -> str:
    """Return the request target: path plus ``?query`` when present."""
    path = scope.get("path", "")
    query = scope.get("query_string", b"")
    if query:
        return f"{path}?{query.decode('latin-1')}"
    return path


class LogMiddleware:
    """Pure ASGI middleware logging request entry and exit."""

    def __init__(self, app: ASGIApp) -> None:
        self.app = app

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        method = scope.get("method", "")
        url = request_url(scope)
        tid = trace_id(scope)
        suffix = f" [{tid}]" if tid else ""

        logger.info("< %s %s%s", method, url, suffix)
        capture = ResponseCapture(ResponseWriter(send))
        try:
            await self.app(scope, receive, capture)
        finally:
            logger.info("> %d %s %s%s", capture.code, method, url, suffix)
