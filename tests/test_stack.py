# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""End-to-end tests for build_stack: Trace -> Log -> Session -> JSON handler."""

from __future__ import annotations

import json
import logging

import pytest
import structlog
from pydantic import BaseModel

from asgimid.config import MiddlewareConfig
from asgimid.context import Env
from asgimid.json_handler import JSONHandler
from asgimid.log_middleware import LogMiddleware
from asgimid.logging_config import ACCESS_LOGGER, _StderrHandler
from asgimid.session import MemorySession, SessionMiddleware, csrf_check, csrf_token
from asgimid.stack import build_limiter, build_stack
from asgimid.trace import TraceMiddleware
from asgimid.transport import TokenBucketLimiter
from tests._asgi_helpers import client_for


class Greeting(BaseModel):
    name: str


class Reply(BaseModel):
    message: str
    trace_id: str
    csrf: str


async def greet(ctx: Env, body: Greeting) -> Reply:
    session = ctx.session
    return Reply(message=f"hello {body.name}", trace_id=ctx.trace_id, csrf=csrf_token(session))


_JSON = {"content-type": "application/json"}


class TestBuildStack:
    def test_order(self, store):
        app = build_stack(JSONHandler(greet), store=store)
        assert isinstance(app, TraceMiddleware)
        assert isinstance(app.app, LogMiddleware)
        assert isinstance(app.app.app, SessionMiddleware)

    def test_without_store_skips_session(self):
        app = build_stack(JSONHandler(greet))
        assert isinstance(app.app, LogMiddleware)
        assert isinstance(app.app.app, JSONHandler)

    async def test_full_request(self, store, caplog):
        session = store.create()
        app = build_stack(JSONHandler(greet), store=store, config=MiddlewareConfig(cookie_name="sid"))

        with caplog.at_level(logging.INFO, logger="asgimid.log_middleware"):
            async with client_for(app) as client:
                resp = await client.post(
                    "/greet",
                    json={"name": "ada"},
                    headers={**_JSON, "x-trace-id": "t-1", "cookie": f"sid={session.key}"},
                )

        assert resp.status_code == 200
        assert resp.headers["content-type"].startswith("application/json")
        data = resp.json()
        assert data["message"] == "hello ada"
        assert data["trace_id"] == "t-1"
        csrf_check(session, data["csrf"])

        lines = [r.getMessage() for r in caplog.records if r.name == "asgimid.log_middleware"]
        assert lines == ["< POST /greet [t-1]", "> 200 POST /greet [t-1]"]

    async def test_missing_session_is_403_and_logged(self, store, caplog):
        app = build_stack(JSONHandler(greet), store=store)
        with caplog.at_level(logging.INFO, logger="asgimid.log_middleware"):
            async with client_for(app) as client:
                resp = await client.post("/greet", json={"name": "ada"}, headers={**_JSON, "x-trace-id": "t-2"})

        assert resp.status_code == 403
        assert resp.headers["content-type"] == "text/plain; charset=utf-8"
        lines = [r.getMessage() for r in caplog.records if r.name == "asgimid.log_middleware"]
        assert lines[-1] == "> 403 POST /greet [t-2]"

    async def test_generated_trace_id(self, store):
        session: MemorySession = store.create()
        app = build_stack(JSONHandler(greet), store=store)
        async with client_for(app) as client:
            resp = await client.post("/", json={"name": "x"}, headers={**_JSON, "cookie": f"session={session.key}"})
        assert resp.status_code == 200
        assert len(resp.json()["trace_id"]) == 32


class TestBuildLimiter:
    def test_default(self):
        limiter = build_limiter()
        assert isinstance(limiter, TokenBucketLimiter)
        assert limiter.remaining == 10

    def test_from_config(self):
        limiter = build_limiter(MiddlewareConfig(rate=1.0, burst=3))
        assert limiter.remaining == 3


class TestStackLogging:
    @pytest.fixture(autouse=True)
    def _reset_logging(self):
        root = logging.getLogger()
        access = logging.getLogger(ACCESS_LOGGER)
        old_handlers, old_level, old_access = root.handlers[:], root.level, access.level
        yield
        root.handlers = old_handlers
        root.setLevel(old_level)
        access.setLevel(old_access)
        structlog.reset_defaults()

    def test_configure_logging_from_config(self):
        config = MiddlewareConfig(json_logs=True, log_level="WARNING", access_log=False)
        build_stack(JSONHandler(greet), config=config, configure_logging=True)
        root = logging.getLogger()
        assert root.level == logging.WARNING
        assert sum(isinstance(h, _StderrHandler) for h in root.handlers) == 1
        assert logging.getLogger(ACCESS_LOGGER).level == logging.WARNING

    def test_logging_untouched_by_default(self):
        before = logging.getLogger().handlers[:]
        build_stack(JSONHandler(greet))
        assert logging.getLogger().handlers == before

    async def test_json_request_lines_end_to_end(self, store, capsys):
        session = store.create()
        config = MiddlewareConfig(json_logs=True)
        app = build_stack(JSONHandler(greet), store=store, config=config, configure_logging=True)
        headers = {**_JSON, "x-trace-id": "t-9", "cookie": f"session={session.key}"}
        async with client_for(app) as client:
            resp = await client.post("/greet", json={"name": "ada"}, headers=headers)
        assert resp.status_code == 200

        lines = [json.loads(line) for line in capsys.readouterr().err.strip().splitlines()]
        request_lines = [line for line in lines if line["logger"] == ACCESS_LOGGER]
        assert [line["event"] for line in request_lines] == ["< POST /greet [t-9]", "> 200 POST /greet [t-9]"]
        assert all(line["trace_id"] == "t-9" for line in request_lines)
