# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Standard middleware chain.

Wrapping order is reverse of execution: last wrap = outermost.
Request flow: Trace → Log → Session (optional) → App
"""

from __future__ import annotations

import logging

from starlette.types import ASGIApp

from .config import MiddlewareConfig
from .log_middleware import LogMiddleware
from .logging_config import configure_from
from .session import SessionMiddleware, SessionStore
from .trace import TraceMiddleware
from .transport import TokenBucketLimiter

logger = logging.getLogger(__name__)


def build_stack(
    app: ASGIApp,
    *,
    store: SessionStore | None = None,
    config: MiddlewareConfig | None = None,
    configure_logging: bool = False,
) -> ASGIApp:
    """Wrap *app* in the standard chain. The session layer needs a *store*.

    With *configure_logging*, the root logger is set up from *config* first
    (see ``logging_config.configure_from``). Leave it off when the host
    application owns logging.
    """
    config = config or MiddlewareConfig()
    if configure_logging:
        configure_from(config)

    # 3. Session (innermost, closest to app)
    if store is not None:
        app = SessionMiddleware(app, store, config.cookie_name)
        logger.info("Session middleware enabled (cookie=%s)", config.cookie_name)

    # 2. Log
    app = LogMiddleware(app)

    # 1. Trace (outermost)
    app = TraceMiddleware(app)
    return app


def build_limiter(config: MiddlewareConfig | None = None) -> TokenBucketLimiter:
    """Token bucket for outbound requests sized by *config*."""
    config = config or MiddlewareConfig()
    return TokenBucketLimiter(config.rate, config.burst)
