"""
Shared pytest fixtures and configuration for referral-spine tests.

This module provides:
- Quiet structlog configuration per test (``capture_logs`` still works)
- Settings cache isolation
- Collaborator doubles for the resolver (in-memory store, mock client)

Usage:
    Fixtures are auto-discovered by pytest. Use them as function arguments:

    def test_something(resolver, mock_client):
        resolver.initiate()
        ...
"""

import sys
from collections.abc import Callable, Generator
from pathlib import Path
from typing import Any
from unittest.mock import MagicMock

import pytest
import structlog

# Ensure referral package is importable
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from referral.core.settings import clear_settings_cache
from referral.parser import QueryParamReferrerParser
from referral.resolver import AttributionResolver
from referral.store import InMemoryReferrerStore


# =============================================================================
# Test Markers Configuration
# =============================================================================


def pytest_collection_modifyitems(config: pytest.Config, items: list[pytest.Item]) -> None:
    """Auto-mark tests based on their location."""
    for item in items:
        test_path = Path(item.fspath).relative_to(Path(__file__).parent)

        if "integration" in str(test_path):
            item.add_marker(pytest.mark.integration)

        markers = {mark.name for mark in item.iter_markers()}
        if not markers.intersection({"unit", "integration"}):
            item.add_marker(pytest.mark.unit)


# =============================================================================
# Isolation Fixtures
# =============================================================================


@pytest.fixture(autouse=True)
def quiet_structlog() -> Generator[None, None, None]:
    """
    Route structlog output nowhere and never cache loggers.

    Loggers stay lazy so ``structlog.testing.capture_logs`` sees every
    event, and nothing is printed into CLI runner output.
    """
    structlog.configure(
        processors=[structlog.processors.KeyValueRenderer()],
        logger_factory=structlog.ReturnLoggerFactory(),
        cache_logger_on_first_use=False,
    )
    yield
    structlog.reset_defaults()
    structlog.contextvars.clear_contextvars()


@pytest.fixture(autouse=True)
def clean_settings_cache() -> Generator[None, None, None]:
    """Clear the cached settings before and after each test."""
    clear_settings_cache()
    yield
    clear_settings_cache()


# =============================================================================
# Collaborator Fixtures
# =============================================================================


@pytest.fixture
def store() -> InMemoryReferrerStore:
    """Empty in-memory store: nothing checked previously."""
    return InMemoryReferrerStore()


@pytest.fixture
def parser() -> QueryParamReferrerParser:
    """Parser returning the utm_campaign value verbatim."""
    return QueryParamReferrerParser()


@pytest.fixture
def mock_client() -> MagicMock:
    """
    Service client double: discoverable, connect() records the callback.

    Fire the completion event with the ``complete`` fixture.
    """
    client = MagicMock(spec=["discover", "connect", "disconnect"])
    client.discover.return_value = True
    return client


@pytest.fixture
def resolver(store: InMemoryReferrerStore, parser: QueryParamReferrerParser, mock_client: MagicMock) -> AttributionResolver:
    """Resolver wired to the in-memory store, default parser and mock client."""
    return AttributionResolver(store, parser, mock_client)


@pytest.fixture
def complete(mock_client: MagicMock) -> Callable[..., None]:
    """Deliver the completion event registered through ``mock_client.connect``."""

    def _complete(code: int, payload: Any = "") -> None:
        on_complete = mock_client.connect.call_args.args[0]
        on_complete(code, lambda: payload)

    return _complete
