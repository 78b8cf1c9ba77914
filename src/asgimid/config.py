# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Middleware stack configuration.

Immutable, validated on construction. ``from_env()`` overlays
``ASGIMID_*`` environment variables on the defaults; blank or unparsable
values keep the default.
"""

from __future__ import annotations

import logging
import os
from contextlib import suppress
from dataclasses import dataclass, replace

_TRUE_VALUES = ("1", "true", "yes")


@dataclass(frozen=True, slots=True)
class MiddlewareConfig:
    """Immutable configuration for ``build_stack`` and outbound clients."""

    cookie_name: str = "session"
    json_logs: bool = False  # JSON lines instead of console rendering
    log_level: str = "INFO"
    access_log: bool = True  # LogMiddleware request lines
    rate: float = 10.0  # outbound requests/sec
    burst: int = 10

    def __post_init__(self) -> None:
        if not self.cookie_name:
            raise ValueError("cookie_name must not be empty")
        if not isinstance(logging.getLevelName(self.log_level.upper()), int):
            raise ValueError(f"unknown log_level: {self.log_level}")
        if self.rate <= 0:
            raise ValueError(f"rate must be > 0, got {self.rate}")
        if self.burst <= 0:
            raise ValueError(f"burst must be > 0, got {self.burst}")

    @classmethod
    def from_env(cls) -> MiddlewareConfig:
        cfg = cls()

        env_cookie = os.environ.get("ASGIMID_COOKIE_NAME", "").strip()
        if env_cookie:
            cfg = replace(cfg, cookie_name=env_cookie)

        env_json = os.environ.get("ASGIMID_JSON_LOGS", "").strip().lower()
        if env_json:
            cfg = replace(cfg, json_logs=env_json in _TRUE_VALUES)

        env_access = os.environ.get("ASGIMID_ACCESS_LOG", "").strip().lower()
        if env_access:
            cfg = replace(cfg, access_log=env_access in _TRUE_VALUES)

        env_level = os.environ.get("ASGIMID_LOG_LEVEL", "").strip().upper()
        if env_level:
            with suppress(ValueError):
                cfg = replace(cfg, log_level=env_level)

        env_rate = os.environ.get("ASGIMID_RATE", "").strip()
        if env_rate:
            with suppress(ValueError):
                cfg = replace(cfg, rate=float(env_rate))

        env_burst = os.environ.get("ASGIMID_BURST", "").strip()
        if env_burst:
            with suppress(ValueError):
                cfg = replace(cfg, burst=int(env_burst))

        return cfg
