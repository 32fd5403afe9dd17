"""Pytest configuration and shared fixtures."""

import pytest

# Shared fixtures (mock_mqtt, mock_hardware, bridge_harness) live in the
# package so downstream hardware adapters can reuse them.
pytest_plugins = ["jema2mqtt.testing._plugin"]


def pytest_configure(config: pytest.Config) -> None:
    """Configure pytest markers."""
    config.addinivalue_line(
        "markers", "unit: Unit tests (fast, no external dependencies)"
    )
    config.addinivalue_line(
        "markers", "integration: Integration tests (in-memory end-to-end lifecycle)"
    )
