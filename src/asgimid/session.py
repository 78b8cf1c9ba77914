# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Cookie sessions and CSRF tokens.

Session flow (``SessionMiddleware``):
1. Read the session key from the configured cookie.
2. Look it up in the ``SessionStore``.
3. Missing cookie or unknown key: 403. Any other store failure: 500.
4. Canceled or expired session: 403.
5. On success: store the session in ``scope["state"]`` (read it back with
   ``context_session(scope)``) and call the inner app.

CSRF token format: ``base64url(nonce || HMAC-SHA256(nonce, csrf_key))``
without padding, with a 16-byte random nonce (48 raw bytes total).

- ``hmac.compare_digest`` constant-time comparison
- nonce entropy via ``secrets.token_bytes``
- ``csrf_check`` does not look at session liveness; pair it with
  ``SessionMiddleware``.
"""

from __future__ import annotations

import base64
import hashlib
import hmac
import logging
import re
import secrets
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Protocol, runtime_checkable

from starlette.requests import Request
from starlette.types import ASGIApp, Receive, Scope, Send

from .context import SESSION_KEY, context_session
from .err_handler import ErrorHandler
from .errors import (
    CodedError,
    CSRFError,
    NoCookieError,
    NoSessionError,
    SessionInactiveError,
    SessionLookupError,
    TokenDecodeError,
    is_no_session,
)
from .writer import ResponseSink

logger = logging.getLogger(__name__)

CSRF_KEY_LEN = hashlib.sha256().digest_size  # 32
CSRF_NONCE_LEN = 16
CSRF_TOKEN_LEN = CSRF_NONCE_LEN + CSRF_KEY_LEN  # 48

_B64URL_RE = re.compile(r"[A-Za-z0-9_-]*")

__all__ = [
    "CSRF_TOKEN_LEN",
    "InMemorySessionStore",
    "MemorySession",
    "Session",
    "SessionMiddleware",
    "SessionStore",
    "context_session",
    "csrf_check",
    "csrf_token",
    "get_session",
    "is_no_session",
]


# ---------------------------------------------------------------------------
# Protocols
# ---------------------------------------------------------------------------


@runtime_checkable
class Session(Protocol):
    """A session held in a ``SessionStore``."""

    def csrf_key(self) -> bytes:
        """Persistent 32-byte secret for CSRF protection."""
        ...

    def active(self) -> bool:
        """True from creation until the session is canceled."""
        ...

    def expires_at(self) -> float:
        """Expiry as ``time.time()`` seconds."""
        ...


class SessionStore(Protocol):
    """Persistent storage for sessions."""

    async def get(self, key: str) -> Session:
        """Return the session for *key*; raise ``NoSessionError`` if none."""
        ...

    async def cancel(self, key: str) -> None:
        """Cancel the session for *key*. Silently succeeds if absent, canceled or expired."""
        ...


# ---------------------------------------------------------------------------
# In-memory store
# ---------------------------------------------------------------------------


@dataclass(slots=True)
class MemorySession:
    """Session record kept by ``InMemorySessionStore``."""

    key: str
    expires: float  # time.time() deadline
    secret: bytes = field(default_factory=lambda: secrets.token_bytes(CSRF_KEY_LEN), repr=False)
    canceled: bool = False

    def csrf_key(self) -> bytes:
        return self.secret

    def active(self) -> bool:
        return not self.canceled

    def expires_at(self) -> float:
        return self.expires


class InMemorySessionStore:
    """Dict-backed ``SessionStore``.

    Keys carry 256 bits of entropy via ``secrets.token_urlsafe(32)``.
    Nothing is persisted; suitable for tests and single-process development.
    """

    def __init__(self, *, ttl: float = 3600.0, clock: Callable[[], float] = time.time) -> None:
        if ttl <= 0:
            raise ValueError(f"ttl must be > 0, got {ttl}")
        self._sessions: dict[str, MemorySession] = {}
        self._ttl = ttl
        self._clock = clock

    def create(self, *, ttl: float | None = None) -> MemorySession:
        """Create and store a new active session."""
        key = secrets.token_urlsafe(32)
        session = MemorySession(key=key, expires=self._clock() + (ttl if ttl is not None else self._ttl))
        self._sessions[key] = session
        return session

    async def get(self, key: str) -> MemorySession:
        session = self._sessions.get(key)
        if session is None:
            raise NoSessionError()
        return session

    async def cancel(self, key: str) -> None:
        session = self._sessions.get(key)
        if session is not None:
            session.canceled = True

    def purge_expired(self) -> int:
        """Drop expired and canceled sessions. Returns the number removed."""
        now = self._clock()
        stale = [k for k, s in self._sessions.items() if s.canceled or s.expires <= now]
        for k in stale:
            del self._sessions[k]
        return len(stale)

    def __len__(self) -> int:
        return len(self._sessions)


# ---------------------------------------------------------------------------
# Lookup + middleware
# ---------------------------------------------------------------------------


async def get_session(store: SessionStore, cookie_name: str, request: Request) -> Session:
    """Look up the session named by the request's *cookie_name* cookie.

    Raises ``NoCookieError`` when the cookie is absent; store errors propagate.
    """
    key = request.cookies.get(cookie_name)
    if key is None:
        raise NoCookieError(cookie_name)
    return await store.get(key)


def session_valid(session: Session, now: float) -> bool:
    """True iff *session* is active and expires after *now*."""
    return session.active() and session.expires_at() > now


class SessionMiddleware:
    """Pure ASGI middleware requiring an active, unexpired session.

    Constructor:
        ``SessionMiddleware(app, store, cookie_name, *, clock=time.time)``

    Non-HTTP scopes pass through unconditionally.
    """

    def __init__(
        self,
        app: ASGIApp,
        store: SessionStore,
        cookie_name: str,
        *,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.app = app
        self.store = store
        self.cookie_name = cookie_name
        self.clock = clock
        self._handler = ErrorHandler(self._serve)

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return
        await self._handler(scope, receive, send)

    async def _serve(self, writer: ResponseSink, request: Request) -> None:
        try:
            session = await get_session(self.store, self.cookie_name, request)
        except Exception as exc:
            if is_no_session(exc):
                logger.info("Session rejected: %s", exc)
                raise CodedError(403, exc) from exc
            raise SessionLookupError(f"getting session: {exc}") from exc

        if not session_valid(session, self.clock()):
            logger.info("Session rejected: inactive or expired")
            raise CodedError(403, SessionInactiveError("session inactive or expired"))

        request.scope["state"][SESSION_KEY] = session
        await self.app(request.scope, request.receive, writer)


# ---------------------------------------------------------------------------
# CSRF
# ---------------------------------------------------------------------------


def _csrf_sum(session: Session, nonce: bytes) -> bytes:
    return hmac.new(session.csrf_key(), nonce[:CSRF_NONCE_LEN], hashlib.sha256).digest()


def _b64encode(raw: bytes) -> str:
    return base64.urlsafe_b64encode(raw).rstrip(b"=").decode("ascii")


def _b64decode(token: str) -> bytes:
    if not _B64URL_RE.fullmatch(token):
        raise TokenDecodeError("decoding base64: illegal base64url character in token")
    data = token.encode("ascii")
    try:
        return base64.urlsafe_b64decode(data + b"=" * (-len(data) % 4))
    except ValueError as exc:
        raise TokenDecodeError(f"decoding base64: {exc}") from exc


def csrf_token(session: Session) -> str:
    """Generate a fresh CSRF token bound to *session*'s CSRF key.

    Pages served to a session should embed one; state-changing requests
    should present it back for ``csrf_check``.
    """
    nonce = secrets.token_bytes(CSRF_NONCE_LEN)
    return _b64encode(nonce + _csrf_sum(session, nonce))


def csrf_check(session: Session, token: str) -> None:
    """Validate *token* against *session*.

    Raises ``CSRFError`` on a wrong length or MAC, ``TokenDecodeError``
    when *token* is not unpadded base64url.
    """
    raw = _b64decode(token)
    if len(raw) != CSRF_TOKEN_LEN:
        raise CSRFError()
    want = _csrf_sum(session, raw)
    if not hmac.compare_digest(raw[CSRF_NONCE_LEN:], want):
        raise CSRFError()
