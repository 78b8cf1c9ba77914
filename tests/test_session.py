# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Tests for SessionMiddleware, get_session and InMemorySessionStore."""

from __future__ import annotations

import time
from unittest.mock import AsyncMock

import pytest
from starlette.requests import Request

from asgimid.context import SESSION_KEY, context_session
from asgimid.errors import NoCookieError, NoSessionError
from asgimid.session import (
    InMemorySessionStore,
    MemorySession,
    Session,
    SessionMiddleware,
    get_session,
    session_valid,
)
from tests._asgi_helpers import client_for, make_scope, run_app

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _capture_app():
    """Returns (app, captured) where captured records the downstream session; sends nothing."""
    captured: dict = {}

    async def app(scope, receive, send):
        captured["session"] = context_session(scope)

    return app, captured


def _cookie(value: str, name: str = "cookie") -> list[tuple[bytes, bytes]]:
    return [(b"cookie", f"{name}={value}".encode("latin-1"))]


@pytest.fixture
def session(store):
    return store.create()


# ---------------------------------------------------------------------------
# TestSessionMiddleware
# ---------------------------------------------------------------------------


class TestSessionMiddleware:
    async def test_valid_session_passes(self, store, session):
        app, captured = _capture_app()
        mw = SessionMiddleware(app, store, "cookie")
        scope = make_scope(headers=_cookie(session.key))

        rec = await run_app(mw, scope)
        assert rec.status == 204
        assert rec.body == b""
        assert captured["session"] is session
        assert scope["state"][SESSION_KEY] is session

    async def test_unknown_key_403(self, store, session):
        app, captured = _capture_app()
        rec = await run_app(SessionMiddleware(app, store, "cookie"), make_scope(headers=_cookie("bar")))
        assert rec.status == 403
        assert rec.body.decode().startswith("HTTP 403: Forbidden: no session")
        assert captured == {}

    async def test_no_cookie_403(self, store):
        app, captured = _capture_app()
        rec = await run_app(SessionMiddleware(app, store, "cookie"), make_scope())
        assert rec.status == 403
        assert "not present" in rec.body.decode()
        assert captured == {}

    async def test_other_cookie_name_403(self, store, session):
        app, _ = _capture_app()
        scope = make_scope(headers=_cookie(session.key, name="other"))
        rec = await run_app(SessionMiddleware(app, store, "cookie"), scope)
        assert rec.status == 403

    async def test_canceled_session_403(self, store, session):
        await store.cancel(session.key)
        app, captured = _capture_app()
        rec = await run_app(SessionMiddleware(app, store, "cookie"), make_scope(headers=_cookie(session.key)))
        assert rec.status == 403
        assert rec.body.decode().strip() == "HTTP 403: Forbidden: session inactive or expired"
        assert captured == {}

    async def test_expired_session_403(self, store, session):
        app, _ = _capture_app()
        mw = SessionMiddleware(app, store, "cookie", clock=lambda: session.expires + 1)
        rec = await run_app(mw, make_scope(headers=_cookie(session.key)))
        assert rec.status == 403

    async def test_expiry_boundary_is_expired(self, store, session):
        app, _ = _capture_app()
        mw = SessionMiddleware(app, store, "cookie", clock=lambda: session.expires)
        rec = await run_app(mw, make_scope(headers=_cookie(session.key)))
        assert rec.status == 403

    async def test_store_failure_500(self):
        failing = AsyncMock()
        failing.get.side_effect = RuntimeError("db unavailable")
        app, captured = _capture_app()
        rec = await run_app(SessionMiddleware(app, failing, "cookie"), make_scope(headers=_cookie("foo")))
        assert rec.status == 500
        assert rec.body.decode().strip() == "getting session: db unavailable"
        assert captured == {}

    async def test_downstream_response_passes_through(self, store, session):
        async def app(scope, receive, send):
            await send({"type": "http.response.start", "status": 201, "headers": [(b"x-made", b"1")]})
            await send({"type": "http.response.body", "body": b"created"})

        async with client_for(SessionMiddleware(app, store, "sid")) as client:
            resp = await client.get("/", headers={"cookie": f"sid={session.key}"})
        assert resp.status_code == 201
        assert resp.headers["x-made"] == "1"
        assert resp.text == "created"

    async def test_store_receives_cookie_value(self):
        mock_store = AsyncMock()
        mock_store.get.return_value = MemorySession(key="foo", expires=time.time() + 60)
        app, captured = _capture_app()
        rec = await run_app(SessionMiddleware(app, mock_store, "cookie"), make_scope(headers=_cookie("foo")))
        mock_store.get.assert_awaited_once_with("foo")
        assert rec.status == 204

    async def test_non_http_passthrough(self, store):
        app, captured = _capture_app()
        await run_app(SessionMiddleware(app, store, "cookie"), make_scope(scope_type="lifespan"))
        assert captured == {"session": None}


# ---------------------------------------------------------------------------
# get_session / session_valid
# ---------------------------------------------------------------------------


class TestGetSession:
    async def test_found(self, store, session):
        request = Request(make_scope(headers=_cookie(session.key, name="sid")))
        assert await get_session(store, "sid", request) is session

    async def test_missing_cookie(self, store):
        with pytest.raises(NoCookieError, match="getting session cookie"):
            await get_session(store, "sid", Request(make_scope()))

    async def test_missing_session(self, store):
        with pytest.raises(NoSessionError):
            await get_session(store, "sid", Request(make_scope(headers=_cookie("nope", name="sid"))))


class TestSessionValid:
    def test_active_future(self):
        assert session_valid(MemorySession(key="k", expires=100.0), now=50.0)

    def test_past(self):
        assert not session_valid(MemorySession(key="k", expires=100.0), now=150.0)

    def test_canceled(self):
        assert not session_valid(MemorySession(key="k", expires=100.0, canceled=True), now=50.0)


# ---------------------------------------------------------------------------
# InMemorySessionStore
# ---------------------------------------------------------------------------


class TestInMemorySessionStore:
    def test_create(self, store):
        s = store.create()
        assert isinstance(s, Session)
        assert len(s.csrf_key()) == 32
        assert s.active()
        assert s.expires_at() > time.time()
        assert len(store) == 1

    def test_keys_unique(self, store):
        assert store.create().key != store.create().key
        assert store.create().csrf_key() != store.create().csrf_key()

    async def test_cancel_idempotent(self, store, session):
        await store.cancel(session.key)
        await store.cancel(session.key)
        await store.cancel("never-existed")
        assert not session.active()

    async def test_get_unknown(self, store):
        with pytest.raises(NoSessionError, match="no session"):
            await store.get("missing")

    def test_purge_expired(self):
        now = [1000.0]
        store = InMemorySessionStore(ttl=10, clock=lambda: now[0])
        store.create()
        keep = store.create(ttl=100)
        now[0] = 1050.0
        assert store.purge_expired() == 1
        assert len(store) == 1
        assert store._sessions[keep.key] is keep

    def test_invalid_ttl(self):
        with pytest.raises(ValueError, match="ttl"):
            InMemorySessionStore(ttl=0)
