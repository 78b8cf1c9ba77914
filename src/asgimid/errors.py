# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""asgimid exception hierarchy and error-reply helpers.

All asgimid-specific errors inherit from MiddlewareError, allowing callers
to catch the base class for any middleware failure or specific subclasses
for targeted handling.

Wrapping follows the stdlib idiom ``raise Outer("prefix: ...") from inner``;
the explicit ``__cause__`` chain is what ``iter_chain`` walks.
"""

from __future__ import annotations

from collections.abc import Iterator
from http import HTTPStatus
from typing import Protocol, runtime_checkable


def status_text(code: int) -> str:
    """Return the canonical reason phrase for *code*, or ``""`` if unknown."""
    try:
        return HTTPStatus(code).phrase
    except ValueError:
        return ""


async def http_error(writer, message: str, code: int) -> None:
    """Reply with *message* as a plain-text body and status *code*.

    Any ``Content-Length`` already set by upstream code is dropped.
    """
    if "content-length" in writer.headers:
        del writer.headers["content-length"]
    writer.headers["content-type"] = "text/plain; charset=utf-8"
    writer.headers["x-content-type-options"] = "nosniff"
    await writer.write_header(code)
    await writer.write((message + "\n").encode("utf-8"))


@runtime_checkable
class Responder(Protocol):
    """An object that knows how to fully respond to an HTTP request."""

    async def respond(self, writer) -> None: ...


def iter_chain(exc: BaseException | None) -> Iterator[BaseException]:
    """Yield *exc* and then each explicit ``__cause__`` behind it."""
    seen: set[int] = set()
    while exc is not None and id(exc) not in seen:
        seen.add(id(exc))
        yield exc
        exc = exc.__cause__


def find_responder(exc: BaseException | None) -> Responder | None:
    """Return the first Responder in the cause chain of *exc*, if any."""
    for link in iter_chain(exc):
        if isinstance(link, Responder):
            return link
    return None


class MiddlewareError(Exception):
    """Base exception for all asgimid errors."""


class CodedError(MiddlewareError):
    """An error carrying an HTTP status code and an optional cause.

    Raising one from a handler wrapped by ``ErrorHandler`` controls the
    status code of the pending response::

        raise CodedError(409)
        raise CodedError(400, exc) from exc
    """

    def __init__(self, code: int, cause: BaseException | None = None) -> None:
        self.code = code
        self.cause = cause
        super().__init__(code, cause)
        if cause is not None:
            self.__cause__ = cause

    def __str__(self) -> str:
        text = f"HTTP {self.code}"
        phrase = status_text(self.code)
        if phrase:
            text += f": {phrase}"
        if self.cause is not None:
            text += f": {self.cause}"
        return text

    def __repr__(self) -> str:
        return f"CodedError(code={self.code}, cause={self.cause!r})"

    async def respond(self, writer) -> None:
        await http_error(writer, str(self), self.code)


class CSRFError(MiddlewareError):
    """An invalid CSRF token was presented."""

    def __init__(self, message: str = "CSRF check failed") -> None:
        super().__init__(message)


class TokenDecodeError(MiddlewareError):
    """A CSRF token was not valid unpadded base64url."""


class NoSessionError(MiddlewareError):
    """The session store holds no session for the given key."""

    def __init__(self, message: str = "no session") -> None:
        super().__init__(message)


class NoCookieError(MiddlewareError):
    """The request carries no cookie with the configured session name."""

    def __init__(self, cookie_name: str) -> None:
        super().__init__(f"getting session cookie: named cookie {cookie_name!r} not present")
        self.cookie_name = cookie_name


class SessionInactiveError(MiddlewareError):
    """The session was found but is canceled or past its expiry."""


class SessionLookupError(MiddlewareError):
    """The session store failed for a reason other than a missing session."""


class TraceIDError(MiddlewareError):
    """A random trace ID could not be generated."""


class JSONArgumentError(MiddlewareError):
    """A JSON request body could not be decoded into the declared input type."""


class JSONResponseError(MiddlewareError):
    """A handler result could not be encoded as JSON."""


def is_no_session(exc: BaseException | None) -> bool:
    """True when the cause chain of *exc* holds a missing cookie or session."""
    return any(isinstance(link, (NoSessionError, NoCookieError)) for link in iter_chain(exc))
