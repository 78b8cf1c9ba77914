# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Per-request context values. Leaf module with minimal dependencies.

Values live in ``scope["state"]`` under module-private keys so they cannot
collide with keys set by other middleware. Dependency graph:
context.py <- trace.py, session.py, json_handler.py (acyclic).
"""

from __future__ import annotations

import dataclasses
from collections.abc import Mapping
from typing import Any

from starlette.requests import Request

from .writer import ResponseSink

TRACE_ID_KEY = "asgimid.trace_id"
SESSION_KEY = "asgimid.session"
REQUEST_KEY = "asgimid.request"
WRITER_KEY = "asgimid.writer"


def _state(scope: Mapping[str, Any]) -> Mapping[str, Any]:
    return scope.get("state") or {}


def trace_id(scope: Mapping[str, Any]) -> str:
    """Return the trace ID set by ``TraceMiddleware``, or ``""``."""
    value = _state(scope).get(TRACE_ID_KEY)
    return value if isinstance(value, str) else ""


def context_session(scope: Mapping[str, Any]):
    """Return the session attached by ``SessionMiddleware``, or None."""
    return _state(scope).get(SESSION_KEY)


def get_request(scope: Mapping[str, Any]) -> Request | None:
    """Return the pending request inside a JSON-adapted call, else None."""
    value = _state(scope).get(REQUEST_KEY)
    return value if isinstance(value, Request) else None


def get_response_writer(scope: Mapping[str, Any]) -> ResponseSink | None:
    """Return the pending response writer inside a JSON-adapted call, else None."""
    value = _state(scope).get(WRITER_KEY)
    return value if isinstance(value, ResponseSink) else None


@dataclasses.dataclass(frozen=True, slots=True)
class Env:
    """Per-request environment passed to JSON-adapted functions.

    A function whose first parameter is annotated ``Env`` receives one.
    """

    scope: dict = dataclasses.field(repr=False)
    request: Request
    writer: ResponseSink = dataclasses.field(repr=False)

    @property
    def trace_id(self) -> str:
        return trace_id(self.scope)

    @property
    def session(self):
        return context_session(self.scope)
