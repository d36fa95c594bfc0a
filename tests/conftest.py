"""
Pytest configuration for the MAA remote control bot tests.

This module provides:
1. Async test support without pytest-asyncio
2. Common fixtures (registry, context, notifier, HTTP client)
3. Test constants
"""

import asyncio
import functools
from unittest.mock import AsyncMock, MagicMock

import pytest
from fastapi.testclient import TestClient

from task_controller.context import AppContext
from task_controller.main import create_app
from task_controller.registry import TaskRegistry


# -----------------------------------------------------------------------------
# Test Constants
# -----------------------------------------------------------------------------
OPERATOR_ID = 424242
STRANGER_ID = 777
DEVICE_ID = "dev1"
SESSION_ID = "u1"


# -----------------------------------------------------------------------------
# Async Test Support
# -----------------------------------------------------------------------------
def async_test(func):
    """
    Decorator to run async tests without pytest-asyncio.

    Usage:
        @async_test
        async def test_something(self):
            result = await some_async_function()
            assert result is not None
    """
    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        return asyncio.run(func(*args, **kwargs))
    return wrapper


# -----------------------------------------------------------------------------
# Common Fixtures
# -----------------------------------------------------------------------------
@pytest.fixture
def registry():
    """Open-enrollment registry."""
    return TaskRegistry()


@pytest.fixture
def single_session_registry(registry):
    """Registry holding exactly one device with one user session."""
    registry.poll(DEVICE_ID, SESSION_ID)
    return registry


@pytest.fixture
def allow_list_registry():
    """Registry admitting only device A."""
    return TaskRegistry(allowed_devices={"A": "Living Room Tablet"})


@pytest.fixture
def mock_notifier():
    """Notifier recording everything sent to the operator."""
    notifier = MagicMock()
    notifier.send_text = AsyncMock()
    notifier.send_photo = AsyncMock()
    return notifier


@pytest.fixture
def app_context(registry, mock_notifier):
    return AppContext(registry=registry, operator_id=OPERATOR_ID, notifier=mock_notifier)


@pytest.fixture
def client(app_context):
    """Create test client for the FastAPI app."""
    return TestClient(create_app(app_context))


# -----------------------------------------------------------------------------
# Session Configuration
# -----------------------------------------------------------------------------
def pytest_configure(config):
    """Configure pytest session."""
    config.addinivalue_line(
        "markers", "asyncio: mark test as async (custom implementation)"
    )
