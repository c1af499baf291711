"""Pytest bootstrap for backend test runs.

Environment variables must be in place before `livechat` is imported, because
the settings object and the application engine are built at import time.
"""
import os

os.environ.setdefault("DATABASE_URL", "sqlite:///./test_livechat_app.db")
os.environ.setdefault("TESTING", "true")

import pytest

from livechat.core.config import settings


@pytest.fixture(scope="session", autouse=True)
def force_testing_mode():
    """Force TESTING=True so the socket notifier never schedules deliveries."""
    settings.TESTING = True


@pytest.fixture(scope="session")
def anyio_backend():
    return "asyncio"
