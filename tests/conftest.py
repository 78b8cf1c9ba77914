# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Shared test configuration and fixtures."""

try:
    import asgimid  # noqa: F401
except ImportError:
    raise ImportError("asgimid is not installed. Run: pip install -e '.[dev]'") from None

import pytest
import structlog


@pytest.fixture(autouse=True)
def _clear_contextvars():
    """Keep structlog contextvars from leaking between tests."""
    structlog.contextvars.clear_contextvars()
    yield
    structlog.contextvars.clear_contextvars()


@pytest.fixture
def store():
    """Fresh InMemorySessionStore."""
    from asgimid.session import InMemorySessionStore

    return InMemorySessionStore()
