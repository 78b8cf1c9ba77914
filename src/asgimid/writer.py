# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Response sinks over an ASGI ``send`` callable.

``ResponseWriter`` buffers headers until the status line goes out, so code
can decide on a status late (``write_header``) or implicitly (first
``write`` sends 200). ``ResponseCapture`` wraps any sink and records the
status code and byte count that passed through it.

Every sink is itself an ASGI ``send`` callable, so it can be handed to a
downstream ASGI app unchanged: ``http.response.start`` and
``http.response.body`` messages are translated into the sink's own
operations, anything else is forwarded as-is.
"""

from __future__ import annotations

import logging

from starlette.datastructures import MutableHeaders
from starlette.types import Message, Send

logger = logging.getLogger(__name__)


class ResponseSink:
    """Common ASGI ``send`` face shared by all sinks."""

    headers: MutableHeaders

    async def write_header(self, code: int) -> None:
        raise NotImplementedError

    async def write(self, data: bytes) -> int:
        raise NotImplementedError

    async def finish(self) -> None:
        raise NotImplementedError

    async def _forward(self, message: Message) -> None:
        raise NotImplementedError

    async def __call__(self, message: Message) -> None:
        kind = message["type"]
        if kind == "http.response.start":
            for name, value in message.get("headers", []):
                self.headers.append(name.decode("latin-1"), value.decode("latin-1"))
            await self.write_header(message["status"])
        elif kind == "http.response.body":
            body = message.get("body", b"")
            if body:
                await self.write(body)
            if not message.get("more_body", False):
                await self.finish()
        else:
            await self._forward(message)


class ResponseWriter(ResponseSink):
    """Incremental HTTP response over an ASGI ``send`` callable."""

    def __init__(self, send: Send) -> None:
        self._send = send
        self.headers = MutableHeaders()
        self.status = 0
        self.started = False
        self.finished = False

    async def write_header(self, code: int) -> None:
        """Send the status line and buffered headers. Later calls are ignored."""
        if self.started:
            logger.warning("superfluous write_header(%d): response already started with %d", code, self.status)
            return
        self.started = True
        self.status = code
        await self._send({"type": "http.response.start", "status": code, "headers": self.headers.raw})

    async def write(self, data: bytes) -> int:
        """Send a body chunk, starting the response with 200 if needed."""
        if self.finished:
            logger.warning("write of %d bytes after response finished", len(data))
            return 0
        if not self.started:
            await self.write_header(200)
        if not data:
            return 0
        await self._send({"type": "http.response.body", "body": bytes(data), "more_body": True})
        return len(data)

    async def finish(self) -> None:
        """End the response body. Idempotent."""
        if self.finished:
            return
        if not self.started:
            await self.write_header(200)
        self.finished = True
        await self._send({"type": "http.response.body", "body": b"", "more_body": False})

    async def _forward(self, message: Message) -> None:
        await self._send(message)


class ResponseCapture(ResponseSink):
    """Records the status code and byte count written through a sink.

    ``code`` stays 0 until the first ``write_header`` or ``write``; a
    ``write`` with no status yet records 200. Every ``write_header`` updates
    ``code`` and is still delegated.
    """

    def __init__(self, writer: ResponseSink) -> None:
        self.writer = writer
        self.code = 0
        self.bytes_written = 0

    @property
    def headers(self) -> MutableHeaders:  # type: ignore[override]
        return self.writer.headers

    async def write_header(self, code: int) -> None:
        self.code = code
        await self.writer.write_header(code)

    async def write(self, data: bytes) -> int:
        if self.code == 0:
            self.code = 200
        n = await self.writer.write(data)
        self.bytes_written += n
        return n

    async def finish(self) -> None:
        await self.writer.finish()

    async def _forward(self, message: Message) -> None:
        await self.writer(message)
