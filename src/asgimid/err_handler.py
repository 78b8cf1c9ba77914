# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Error-raising handlers as ASGI apps.

A handler is ``async def handler(writer, request) -> None``. It may write
a response itself, raise, or do neither; ``ErrorHandler`` turns every
outcome into exactly one HTTP response:

1. Raised exception with a ``Responder`` in its cause chain (such as
   ``CodedError``): the responder writes the response.
2. Raised exception, nothing written yet: 500 with the message as body.
3. Raised exception after a status was written: left as is.
4. No exception, nothing written: 204, or 200 if bytes went out.
5. No exception, status written: left as is.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable

from starlette.requests import Request
from starlette.types import Receive, Scope, Send

from .errors import find_responder, http_error, status_text
from .writer import ResponseCapture, ResponseSink, ResponseWriter

logger = logging.getLogger(__name__)

Handler = Callable[[ResponseSink, Request], Awaitable[None]]


async def errorf(writer: ResponseSink, code: int, format: str = "", *args: object) -> None:
    """Log and reply with a plain-text error.

    A *code* of 0 means 500. An empty *format* uses the status text;
    otherwise the body is ``format % args``.
    """
    if code == 0:
        code = 500
    if not format:
        message = status_text(code)
    elif args:
        message = format % args
    else:
        message = format
    logger.warning("%s", message)
    await http_error(writer, message, code)


class ErrorHandler:
    """ASGI app wrapping an error-raising handler.

    Constructor:
        ``ErrorHandler(handler)``

    ``serve(writer, request)`` runs the same disposition against an
    existing sink, for composition inside other handlers.
    """

    def __init__(self, handler: Handler) -> None:
        self.handler = handler

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            return
        scope.setdefault("state", {})
        writer = ResponseWriter(send)
        await self.serve(writer, Request(scope, receive))
        await writer.finish()

    async def serve(self, writer: ResponseSink, request: Request) -> None:
        capture = ResponseCapture(writer)
        try:
            await self.handler(capture, request)
        except Exception as exc:
            await _dispose_error(exc, writer, capture)
            return

        if capture.code == 0:
            await writer.write_header(204 if capture.bytes_written == 0 else 200)


async def _dispose_error(exc: Exception, writer: ResponseSink, capture: ResponseCapture) -> None:
    responder = find_responder(exc)
    if responder is not None:
        logger.debug("handler responded via %s: %s", type(responder).__name__, exc)
        await responder.respond(writer)
    elif capture.code == 0:
        logger.error("handler error: %s", exc, exc_info=exc)
        await http_error(writer, str(exc) or type(exc).__name__, 500)
    else:
        logger.warning("handler error after status %d was written: %s", capture.code, exc)


def err(handler: Handler) -> ErrorHandler:
    """Wrap *handler* as an ASGI app. Decorator-friendly alias of ``ErrorHandler``."""
    return ErrorHandler(handler)
