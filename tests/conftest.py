"""
pytest configuration for kafka_gateway tests.

Adds src directory to Python path for imports and isolates every test from
gateway environment variables and process-wide registries.
"""

import sys
from pathlib import Path

import pytest

# Add src directory to Python path
src_dir = Path(__file__).parent.parent / "src"
sys.path.insert(0, str(src_dir))

GATEWAY_ENV_VARS = (
    "KAFKA_REST_PROXY_URL",
    "KAFKA_CONSUMER_RETRY_INTERVAL",
    "KAFKA_PRODUCER_RETRY_INTERVAL",
    "KAFKA_PRODUCER_RETRY_TIMES",
    "KAFKA_REST_REQUEST_TIMEOUT",
    "KAFKA_REST_POLL_INTERVAL",
    "KAFKA_REST_SHUTDOWN_TIMEOUT",
)


@pytest.fixture(autouse=True)
def clean_gateway_env(monkeypatch):
    """Start every test with gateway environment variables unset."""
    for var in GATEWAY_ENV_VARS:
        monkeypatch.delenv(var, raising=False)


@pytest.fixture(autouse=True)
def reset_process_registries():
    """Forget the default gateway URL/client and shutdown hooks after each test."""
    yield
    from kafka_gateway.connection import default_connection
    from kafka_gateway.lifecycle import shutdown_hooks

    default_connection.set_url(None)
    default_connection.reset()
    shutdown_hooks.clear()
