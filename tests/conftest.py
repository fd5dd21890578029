"""
pytest configuration for queue-to-db tests.

Adds src directory to Python path for imports and provides shared fixtures.
"""

import sys
from pathlib import Path

import pytest

# Add src directory to Python path
src_dir = Path(__file__).parent.parent / "src"
sys.path.insert(0, str(src_dir))

from core.logging import clear_log_context, clear_message_context  # noqa: E402


@pytest.fixture
def config_values():
    """Minimal valid settings, as they would arrive from the environment."""
    return {
        "db_host": "db.local",
        "db_port": 5432,
        "db_user": "iot",
        "db_password": "db-secret",
        "db_schema": "iot",
        "queue_host": "kafka.local",
        "queue_port": 9092,
        "queue_user": "iot",
        "queue_password": "queue-secret",
    }


@pytest.fixture
def runtime_config(config_values):
    from config.config import RuntimeConfig

    return RuntimeConfig(**config_values)


@pytest.fixture(autouse=True)
def _reset_log_context():
    clear_log_context()
    clear_message_context()
    yield
    clear_log_context()
    clear_message_context()
