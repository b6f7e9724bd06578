# tests/conftest.py
import logging
from unittest.mock import MagicMock

import pytest

from provisioning.config_models import AppSettings, WaitSettings


@pytest.fixture
def app_settings():
    """AppSettings with a short wait budget and plain symbols."""
    return AppSettings(
        log_prefix="[TEST]",
        wait=WaitSettings(max_attempts=3, delay_seconds=0.5),
        symbols={
            "success": "✅",
            "error": "❌",
            "warning": "!",
            "info": "ℹ️",
            "gear": "⚙️",
        },
    )


@pytest.fixture
def mock_logger():
    """Fixture to create a mock logger for testing."""
    return MagicMock(spec=logging.Logger)


@pytest.fixture
def fake_connection():
    """A DB-API style connection whose cursor is a context manager."""
    conn = MagicMock()
    cursor = MagicMock()
    conn.cursor.return_value.__enter__.return_value = cursor
    conn.cursor.return_value.__exit__.return_value = False
    conn.fake_cursor = cursor
    return conn
