# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Logging setup for services composed with asgimid.

One stderr handler on the root logger renders stdlib and structlog records
alike. The ``trace_id`` bound by ``TraceMiddleware`` is merged into every
record emitted while a request is served; in JSON mode records outside a
request carry ``"trace_id": null`` so the key is always present.

The request lines of ``LogMiddleware`` go to ``ACCESS_LOGGER``; with
``access_log=False`` that logger only passes warnings and above.

Reconfiguring replaces only the handler installed here, never handlers
added by the host application.
"""

from __future__ import annotations

import logging
import sys

import structlog

from .config import MiddlewareConfig

ACCESS_LOGGER = "asgimid.log_middleware"


class _StderrHandler(logging.StreamHandler):
    """The handler ``configure`` owns; marks it for replacement."""


def _default_trace_id(logger, method_name, event_dict):
    event_dict.setdefault("trace_id", None)
    return event_dict


def _processors(json_output: bool) -> list:
    chain: list = [structlog.contextvars.merge_contextvars]
    if json_output:
        chain.append(_default_trace_id)
    chain += [
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
    ]
    return chain


def _level(name: str) -> int:
    value = logging.getLevelName(name.upper())
    return value if isinstance(value, int) else logging.INFO


def configure(*, json_output: bool = False, level: str = "INFO", access_log: bool = True) -> None:
    """Install the structlog bridge on the root logger.

    Args:
        json_output: JSON lines instead of console rendering.
        level: Root logger level; unknown names fall back to INFO.
        access_log: False raises ``ACCESS_LOGGER`` to WARNING.
    """
    processors = _processors(json_output)
    renderer = structlog.processors.JSONRenderer() if json_output else structlog.dev.ConsoleRenderer()

    structlog.configure(
        processors=[*processors, structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    handler = _StderrHandler(sys.stderr)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            processors=[structlog.stdlib.ProcessorFormatter.remove_processors_meta, renderer],
            foreign_pre_chain=processors,
        )
    )

    root = logging.getLogger()
    for old in [h for h in root.handlers if isinstance(h, _StderrHandler)]:
        root.removeHandler(old)
    root.addHandler(handler)
    root.setLevel(_level(level))

    logging.getLogger(ACCESS_LOGGER).setLevel(logging.NOTSET if access_log else logging.WARNING)


def configure_from(config: MiddlewareConfig) -> None:
    """``configure`` with the logging fields of *config*."""
    configure(json_output=config.json_logs, level=config.log_level, access_log=config.access_log)
